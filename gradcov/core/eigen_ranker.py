"""
Eigendecomposition and Ranking
==============================

The symmetric eigensolver returns P eigenvalues and a P × P matrix with the
eigenvectors on its columns. Callers must not rely on the order of that
output. Ranking is a separate step:

    order = stable argsort of eigenvalues, descending
    values  ← values[order]
    vectors ← vectors[:, order]

Ties keep the order they arrived in from the solver, so identical inputs
always produce identical rankings. Values and columns go through the same
permutation; column i stays the eigenvector of value i.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
import torch

from gradcov_exceptions import NumericalError

logger = logging.getLogger(__name__)


@dataclass
class EigenResult:
    """Ranked eigenpairs of the gradient covariance."""
    eigenvalues: torch.Tensor   # (P,), descending
    eigenvectors: torch.Tensor  # (P, P), column i pairs with eigenvalues[i]

    @property
    def n_params(self) -> int:
        return self.eigenvalues.shape[0]

    def validate(self):
        """Check shapes and descending order."""
        p = self.n_params
        if tuple(self.eigenvectors.shape) != (p, p):
            raise ValueError(
                f"Eigenvector matrix has shape {tuple(self.eigenvectors.shape)}, expected ({p}, {p})"
            )
        if p > 1 and bool((self.eigenvalues[:-1] < self.eigenvalues[1:]).any()):
            raise ValueError("Eigenvalues are not sorted in descending order")

    def to_numpy(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.eigenvalues.cpu().numpy(), self.eigenvectors.cpu().numpy()


def rank_eigenpairs(values: torch.Tensor, vectors: torch.Tensor) -> EigenResult:
    """
    Sort eigenpairs by descending eigenvalue, permuting columns in lockstep.

    Args:
        values: (P,) eigenvalues in any order
        vectors: (P, P) eigenvectors on the columns, paired with ``values``
    """
    if values.dim() != 1 or vectors.dim() != 2 or vectors.shape[1] != values.shape[0]:
        raise ValueError(
            f"Mismatched eigenpairs: values {tuple(values.shape)}, vectors {tuple(vectors.shape)}"
        )
    if torch.isnan(values).any():
        raise NumericalError('eigen ranking', "NaN eigenvalues cannot be ordered")

    order = torch.sort(values, descending=True, stable=True).indices
    return EigenResult(
        eigenvalues=values.index_select(0, order),
        eigenvectors=vectors.index_select(1, order),
    )


class EigenRanker:
    """Full symmetric eigendecomposition followed by deterministic ranking."""

    def __init__(self, dtype: Optional[torch.dtype] = torch.float64):
        self.dtype = dtype

    def decompose(self, covariance: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """Unordered eigenpairs of a symmetric matrix."""
        if covariance.dim() != 2 or covariance.shape[0] != covariance.shape[1]:
            raise ValueError(f"Covariance must be square, got shape {tuple(covariance.shape)}")
        if not torch.isfinite(covariance).all():
            raise NumericalError('eigendecomposition', "covariance has non-finite entries")

        matrix = covariance if self.dtype is None else covariance.to(self.dtype)
        try:
            values, vectors = torch.linalg.eigh(matrix)
        except torch.linalg.LinAlgError as e:
            raise NumericalError('eigendecomposition', f"eigensolver failed to converge: {e}") from e
        return values, vectors

    def rank(self, covariance: torch.Tensor) -> EigenResult:
        logger.info("Performing the eigendecomposition.")
        values, vectors = self.decompose(covariance)

        logger.info("Sorting the eigen values-vectors")
        return rank_eigenpairs(values, vectors)


def summarize_spectrum(result: EigenResult, eps: float = 1e-12) -> Dict[str, Any]:
    """
    Diagnostic metrics of a ranked spectrum.

    - spectral gap: λ₁ - λ₂
    - condition number: λ_max / smallest eigenvalue above ``eps``
    - effective rank: exp(H(p)) with p = λ/Σλ over positive eigenvalues
    """
    eigs = result.eigenvalues.to(torch.float64)
    metrics = {
        'n_eigenvalues': int(eigs.numel()),
        'largest_eigenvalue': float(eigs[0]) if eigs.numel() else 0.0,
        'trace': float(eigs.sum()),
        'n_negative': int((eigs < -eps).sum()),
    }

    if eigs.numel() >= 2:
        metrics['spectral_gap'] = float(eigs[0] - eigs[1])
    else:
        metrics['spectral_gap'] = 0.0

    positive = eigs[eigs > eps]
    if positive.numel() > 0:
        metrics['condition_number'] = float(positive[0] / positive[-1])
        p = positive / positive.sum()
        entropy = -(p * torch.log(p)).sum()
        metrics['effective_rank'] = float(torch.exp(entropy))
    else:
        metrics['condition_number'] = math.inf
        metrics['effective_rank'] = 0.0

    return metrics
