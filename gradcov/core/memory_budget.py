"""
Memory sizing for the dense matrices.

Peak usage is the larger of two phases:
- covariance phase: gradient matrix (N × P) plus covariance (P × P), both in
  the collection dtype
- eigen phase: covariance, its cast to the eigensolver dtype when that differs,
  plus eigenvectors (P × P) and eigenvalues (P) in the eigensolver dtype; the
  gradient matrix is released before this phase
"""

import gc
import logging
from typing import Dict, Optional

import psutil
import torch

from gradcov_exceptions import InsufficientMemoryError

logger = logging.getLogger(__name__)

GB = 1024 ** 3


def _itemsize(dtype: torch.dtype) -> int:
    return torch.empty((), dtype=dtype).element_size()


def estimate_bytes(
    n_examples: int,
    n_params: int,
    dtype: torch.dtype = torch.float64,
    eigen_dtype: Optional[torch.dtype] = None,
) -> Dict[str, int]:
    """Bytes needed by each dense matrix and by the two pipeline phases."""
    eigen_dtype = eigen_dtype or dtype
    itemsize = _itemsize(dtype)
    eigen_itemsize = _itemsize(eigen_dtype)

    gradients = n_examples * n_params * itemsize
    covariance = n_params * n_params * itemsize
    eigenvectors = n_params * n_params * eigen_itemsize
    cast = eigenvectors if eigen_dtype != dtype else 0

    covariance_phase = gradients + covariance
    eigen_phase = covariance + cast + eigenvectors + n_params * eigen_itemsize
    return {
        'gradients': gradients,
        'covariance': covariance,
        'eigenvectors': eigenvectors,
        'covariance_phase': covariance_phase,
        'eigen_phase': eigen_phase,
        'peak': max(covariance_phase, eigen_phase),
    }


def available_bytes() -> int:
    return psutil.virtual_memory().available


def check_memory(
    n_examples: int,
    n_params: int,
    dtype: torch.dtype = torch.float64,
    eigen_dtype: Optional[torch.dtype] = None,
) -> Dict[str, int]:
    """
    Raise if the peak footprint does not fit in available system memory.

    Raises:
        InsufficientMemoryError: peak > available memory
    """
    sizes = estimate_bytes(n_examples, n_params, dtype, eigen_dtype)
    available = available_bytes()
    logger.info(
        f"Memory estimate: gradients {sizes['gradients'] / GB:.3f}GB, "
        f"covariance {sizes['covariance'] / GB:.3f}GB, peak {sizes['peak'] / GB:.3f}GB "
        f"({available / GB:.2f}GB available)"
    )
    if sizes['peak'] > available:
        raise InsufficientMemoryError(
            'hessian estimation', sizes['peak'] / GB, available / GB,
            "Reduce the number of examples with max_load or use float32"
        )
    return sizes


def release():
    """Return freed tensor memory to the allocator."""
    gc.collect()
    if torch.cuda.is_available():
        torch.cuda.empty_cache()
