"""Loss criteria used to produce per-example gradients."""

import logging
from typing import Optional

import torch
import torch.nn.functional as F

from gradcov_exceptions import ConfigurationError
from .mat_dataset import ClassFormat

logger = logging.getLogger(__name__)

CRITERIA = ('nll', 'cross_entropy', 'mse')


class Criterion:
    """
    Scalar loss of a model output against the current example's targets.

    - 'nll': model outputs log-probabilities (class negative log-likelihood)
    - 'cross_entropy': model outputs logits
    - 'mse': squared error against one-hot encoded targets
    """

    def __init__(self, name: str = 'nll', n_classes: Optional[int] = None):
        if name not in CRITERIA:
            raise ConfigurationError('criterion', f"unknown criterion '{name}'", list(CRITERIA))
        if name == 'mse' and not (n_classes and n_classes > 0):
            raise ConfigurationError('n_classes', "required for the 'mse' criterion")
        self.name = name
        self.n_classes = n_classes
        self.class_format = ClassFormat(n_classes) if name == 'mse' else None

    def __call__(self, outputs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        if self.name == 'nll':
            return F.nll_loss(outputs, targets.long())
        if self.name == 'cross_entropy':
            return F.cross_entropy(outputs, targets.long())
        one_hot = self.class_format.one_hot(targets, dtype=outputs.dtype)
        return F.mse_loss(outputs, one_hot, reduction='sum')

    def __repr__(self):
        return f"Criterion(name={self.name!r})"


def build_criterion(name: str = 'nll', n_classes: Optional[int] = None) -> Criterion:
    return Criterion(name, n_classes)
