#!/usr/bin/env python3
"""
Tests for gradient centering and covariance estimation.

Run with:
    python -m pytest gradcov/tests/test_covariance_estimator.py -v
"""

import unittest
import sys
import os

import numpy as np
import torch

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from gradcov_exceptions import DataError, NumericalError
from gradcov.core.covariance_estimator import CovarianceConfig, CovarianceEstimator


class TestCovarianceEstimator(unittest.TestCase):
    """Covariance of per-example gradients."""

    def test_three_by_two_scenario(self):
        gradients = torch.tensor([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]], dtype=torch.float64)

        covariance = CovarianceEstimator().estimate(gradients)

        torch.testing.assert_close(
            gradients, torch.tensor([[-2.0, -2.0], [0.0, 0.0], [2.0, 2.0]], dtype=torch.float64)
        )
        torch.testing.assert_close(
            covariance, torch.tensor([[4.0, 4.0], [4.0, 4.0]], dtype=torch.float64)
        )

    def test_column_means(self):
        gradients = torch.tensor([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]], dtype=torch.float64)
        means = CovarianceEstimator.column_means(gradients)
        torch.testing.assert_close(means, torch.tensor([3.0, 4.0], dtype=torch.float64))

    def test_matches_numpy_cov(self):
        torch.manual_seed(0)
        gradients = torch.randn(40, 7, dtype=torch.float64) * torch.arange(1, 8, dtype=torch.float64)
        expected = np.cov(gradients.numpy(), rowvar=False)

        covariance = CovarianceEstimator().estimate(gradients.clone())

        np.testing.assert_allclose(covariance.numpy(), expected, rtol=1e-10, atol=1e-12)

    def test_symmetric(self):
        torch.manual_seed(1)
        gradients = torch.randn(25, 12, dtype=torch.float64)
        covariance = CovarianceEstimator().estimate(gradients)
        self.assertTrue(torch.equal(covariance, covariance.T))

    def test_symmetric_without_explicit_symmetrize(self):
        torch.manual_seed(2)
        gradients = torch.randn(25, 12, dtype=torch.float64)
        covariance = CovarianceEstimator(CovarianceConfig(symmetrize=False)).estimate(gradients)
        self.assertLess(float((covariance - covariance.T).abs().max()), 1e-12)

    def test_centered_columns_have_zero_mean(self):
        torch.manual_seed(4)
        gradients = torch.randn(30, 5, dtype=torch.float64) + 10.0
        CovarianceEstimator().estimate(gradients)
        np.testing.assert_allclose(gradients.mean(dim=0).numpy(), np.zeros(5), atol=1e-12)

    def test_diagonal_is_non_negative(self):
        torch.manual_seed(5)
        covariance = CovarianceEstimator().estimate(torch.randn(10, 6, dtype=torch.float64))
        self.assertTrue(torch.all(torch.diagonal(covariance) >= 0))

    def test_single_parameter_is_sample_variance(self):
        values = torch.tensor([[1.0], [2.0], [4.0], [7.0]], dtype=torch.float64)
        expected = float(torch.var(values[:, 0], unbiased=True))

        covariance = CovarianceEstimator().estimate(values.clone())

        self.assertEqual(tuple(covariance.shape), (1, 1))
        self.assertAlmostEqual(float(covariance[0, 0]), expected)

    def test_two_examples_denominator_is_one(self):
        gradients = torch.tensor([[1.0], [3.0]], dtype=torch.float64)
        covariance = CovarianceEstimator().estimate(gradients)
        self.assertAlmostEqual(float(covariance[0, 0]), 2.0)

    def test_fewer_than_two_examples(self):
        with self.assertRaises(DataError):
            CovarianceEstimator().estimate(torch.ones(1, 3, dtype=torch.float64))
        with self.assertRaises(DataError):
            CovarianceEstimator().estimate(torch.empty(0, 3, dtype=torch.float64))

    def test_non_finite_entries(self):
        gradients = torch.tensor([[1.0, float('inf')], [2.0, 3.0], [0.0, 1.0]], dtype=torch.float64)
        with self.assertRaises(NumericalError):
            CovarianceEstimator().estimate(gradients)


if __name__ == '__main__':
    unittest.main()
