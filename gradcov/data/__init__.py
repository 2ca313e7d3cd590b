"""Dataset, criterion and model adapters."""

from .mat_dataset import ClassFormat, MatDataSet, read_matrix_file
from .criteria import CRITERIA, Criterion, build_criterion
from .model_loading import load_model

__all__ = [
    'ClassFormat',
    'MatDataSet',
    'read_matrix_file',
    'CRITERIA',
    'Criterion',
    'build_criterion',
    'load_model',
]
