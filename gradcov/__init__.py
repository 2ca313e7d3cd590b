"""
Gradient-Covariance Hessian Estimation
======================================

Estimates the Hessian of a trained model's loss via the empirical covariance
of per-example parameter gradients and writes its full, ranked
eigendecomposition.

Pipeline:
- GradientCollector: one flattened gradient per example, as an (N × P) matrix
- CovarianceEstimator: centers the matrix and forms Gᵀ G / (N - 1)
- EigenRanker: full symmetric eigendecomposition, ranked by descending eigenvalue
- ResultWriter: eigenvals_full.txt / eigenvecs_full.txt under hessian<label>/

Quick Start:
    from gradcov import MatDataSet, build_criterion, run

    dataset = MatDataSet.from_file('train.mat', n_inputs=784, n_classes=10)
    output_dir = run(model, dataset, build_criterion('nll'), label='_run1')
"""

from gradcov.core import (
    ParameterGroup,
    ParameterLayout,
    accumulate_gradients,
    CollectorConfig,
    GradientCollector,
    mean_squared_norm,
    merge_rows,
    CovarianceConfig,
    CovarianceEstimator,
    EigenRanker,
    EigenResult,
    rank_eigenpairs,
    summarize_spectrum,
    ResultWriter,
    WriterConfig,
    read_results,
)
from gradcov.data import ClassFormat, MatDataSet, Criterion, build_criterion, load_model
from gradcov.pipeline import EstimatorConfig, estimate_hessian, run

__all__ = [
    'ParameterGroup',
    'ParameterLayout',
    'accumulate_gradients',
    'CollectorConfig',
    'GradientCollector',
    'mean_squared_norm',
    'merge_rows',
    'CovarianceConfig',
    'CovarianceEstimator',
    'EigenRanker',
    'EigenResult',
    'rank_eigenpairs',
    'summarize_spectrum',
    'ResultWriter',
    'WriterConfig',
    'read_results',
    'ClassFormat',
    'MatDataSet',
    'Criterion',
    'build_criterion',
    'load_model',
    'EstimatorConfig',
    'estimate_hessian',
    'run',
]

__version__ = '1.0.0'
