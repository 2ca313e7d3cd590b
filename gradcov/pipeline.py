"""
Hessian estimation pipeline: collect → covariance → eigen → write.

Each stage fully materializes its output before the next begins. The
gradient matrix is released as soon as the covariance exists, before the
eigendecomposition allocates its P × P output.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import torch
import torch.nn as nn

from gradcov_exceptions import GradCovError
from .core.covariance_estimator import CovarianceConfig, CovarianceEstimator
from .core.eigen_ranker import EigenRanker, EigenResult, summarize_spectrum
from .core.gradient_collector import CollectorConfig, GradientCollector, mean_squared_norm
from .core.memory_budget import check_memory, release
from .core.parameter_layout import ParameterLayout
from .core.result_writer import ResultWriter, WriterConfig

logger = logging.getLogger(__name__)


@dataclass
class EstimatorConfig:
    """Settings for a full estimation run."""
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    covariance: CovarianceConfig = field(default_factory=CovarianceConfig)
    writer: WriterConfig = field(default_factory=WriterConfig)
    eigen_dtype: torch.dtype = torch.float64
    check_memory: bool = True


@contextmanager
def stage(name: str):
    """Tag failures of one pipeline stage with its name."""
    try:
        yield
    except GradCovError as e:
        e.with_stage(name)
        raise


def estimate_hessian(
    model: nn.Module,
    dataset,
    criterion,
    config: Optional[EstimatorConfig] = None,
) -> EigenResult:
    """
    Ranked eigendecomposition of the per-example gradient covariance.

    Args:
        model: Trained model
        dataset: Object with ``n_examples``, ``set_example(i)``, ``inputs`` and ``targets``
        criterion: Callable ``(outputs, targets) -> scalar loss``
        config: Run settings. If None, uses defaults.
    """
    config = config or EstimatorConfig()

    with stage('collect'):
        layout = ParameterLayout.from_model(model)
        logger.info(f"{layout.n_params} parameters.")
        if config.check_memory:
            check_memory(dataset.n_examples, layout.n_params, config.collector.dtype, config.eigen_dtype)

        gradients = GradientCollector(config.collector).collect(model, dataset, criterion, layout)
        logger.info(f"mean_norm2 = {mean_squared_norm(gradients)}")

    with stage('covariance'):
        covariance = CovarianceEstimator(config.covariance).estimate(gradients)

    del gradients
    release()

    with stage('eigen'):
        result = EigenRanker(config.eigen_dtype).rank(covariance)

    summary = summarize_spectrum(result)
    logger.info(
        f"Spectrum: largest={summary['largest_eigenvalue']:.6g}, trace={summary['trace']:.6g}, "
        f"gap={summary['spectral_gap']:.6g}, effective_rank={summary['effective_rank']:.3f}, "
        f"negative={summary['n_negative']}"
    )
    return result


def run(
    model: nn.Module,
    dataset,
    criterion,
    label: str = '',
    config: Optional[EstimatorConfig] = None,
) -> Path:
    """Estimate the Hessian spectrum and write it; returns the output directory."""
    config = config or EstimatorConfig()
    result = estimate_hessian(model, dataset, criterion, config)

    with stage('write'):
        return ResultWriter(config.writer).write(result, label)
