"""
Empirical Gradient Covariance
=============================

For the gradient matrix G ∈ ℝ^(N×P) (rows = per-example gradients):

    μ   = (1/N) Σᵢ gᵢ                     column means
    G̃   = G - 1μᵀ                         centered in place
    C   = G̃ᵀ G̃ / (N - 1)                  unbiased covariance, P × P

The dense P × P matrix is always materialized: O(P²·N) time, O(P²) memory.
C is symmetric by construction; rounding can leave it asymmetric in the
last bits, so the estimator replaces it with (C + Cᵀ)/2 unless
``symmetrize`` is disabled.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import torch

from gradcov_exceptions import DataError, NumericalError

logger = logging.getLogger(__name__)


@dataclass
class CovarianceConfig:
    """Configuration for covariance estimation."""
    symmetrize: bool = True
    check_finite: bool = True


class CovarianceEstimator:
    """Center a gradient matrix and form its empirical covariance."""

    def __init__(self, config: Optional[CovarianceConfig] = None):
        self.config = config or CovarianceConfig()

    @staticmethod
    def column_means(gradients: torch.Tensor) -> torch.Tensor:
        """Per-parameter mean across examples (column sums accumulated row by row, then divided by N)."""
        n_examples = gradients.shape[0]
        if n_examples == 0:
            raise DataError("Cannot average an empty gradient matrix", 0, 1)

        sums = torch.zeros(gradients.shape[1], dtype=gradients.dtype, device=gradients.device)
        for row in gradients:
            sums += row
        return sums.mul_(1.0 / n_examples)

    @staticmethod
    def center_(gradients: torch.Tensor, means: torch.Tensor) -> torch.Tensor:
        """Subtract the column means from every row, overwriting ``gradients``."""
        gradients.sub_(means.unsqueeze(0))
        return gradients

    def estimate(self, gradients: torch.Tensor) -> torch.Tensor:
        """
        Compute the (P × P) covariance of the gradient rows.

        Mutates ``gradients``: on return it holds the centered matrix.

        Raises:
            DataError: fewer than two examples (the N - 1 denominator)
            NumericalError: non-finite covariance entries
        """
        if gradients.dim() != 2:
            raise DataError(f"Gradient matrix must be 2-D, got shape {tuple(gradients.shape)}")

        n_examples = gradients.shape[0]
        if n_examples < 2:
            raise DataError("Covariance needs at least two examples", n_examples, 2)

        logger.info("Computing the mean of the gradients.")
        means = self.column_means(gradients)

        logger.info("Centering the gradients.")
        self.center_(gradients, means)

        logger.info("Computing the covariance.")
        covariance = gradients.T @ gradients
        covariance.mul_(1.0 / (n_examples - 1.0))

        if self.config.symmetrize:
            covariance = (covariance + covariance.T).mul_(0.5)

        if self.config.check_finite and not torch.isfinite(covariance).all():
            n_bad = int((~torch.isfinite(covariance)).sum())
            raise NumericalError('covariance', f"{n_bad} non-finite entries")

        return covariance
