"""
GradCov Core Module
===================

Core stages of the gradient-covariance Hessian estimate.
"""

from .parameter_layout import ParameterGroup, ParameterLayout
from .gradient_scope import accumulate_gradients
from .gradient_collector import CollectorConfig, GradientCollector, mean_squared_norm, merge_rows
from .covariance_estimator import CovarianceConfig, CovarianceEstimator
from .eigen_ranker import EigenRanker, EigenResult, rank_eigenpairs, summarize_spectrum
from .result_writer import ResultWriter, WriterConfig, read_results

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
]
