#!/usr/bin/env python3
"""
End-to-end tests for the estimation pipeline and the CLI.

Run with:
    python -m pytest gradcov/tests/test_pipeline.py -v
"""

import unittest
import sys
import os
import tempfile
from pathlib import Path
from unittest import mock

import numpy as np
import torch
import torch.nn as nn

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from gradcov_exceptions import DataError, InsufficientMemoryError
from gradcov.core.gradient_collector import CollectorConfig, GradientCollector
from gradcov.core.memory_budget import estimate_bytes
from gradcov.core.result_writer import EIGENVALUES_FILE, EIGENVECTORS_FILE, WriterConfig, read_results
from gradcov.data import MatDataSet, build_criterion
from gradcov.pipeline import EstimatorConfig, estimate_hessian, run
import hessian_estimator


def make_classifier(seed=0):
    torch.manual_seed(seed)
    return nn.Sequential(nn.Linear(3, 4), nn.Tanh(), nn.Linear(4, 2), nn.LogSoftmax(dim=1))


def make_dataset(n_examples=12, seed=1):
    generator = torch.Generator().manual_seed(seed)
    inputs = torch.randn(n_examples, 3, generator=generator)
    targets = torch.randint(0, 2, (n_examples,), generator=generator)
    return MatDataSet.from_tensors(inputs, targets, n_classes=2)


def quiet_config(output_root='.'):
    return EstimatorConfig(
        collector=CollectorConfig(show_progress=False),
        writer=WriterConfig(output_root=output_root),
        check_memory=False,
    )


class TestEstimateHessian(unittest.TestCase):
    """Collect → covariance → eigen."""

    def test_matches_direct_computation(self):
        model = make_classifier()
        dataset = make_dataset()
        criterion = build_criterion('nll')

        result = estimate_hessian(model, dataset, criterion, quiet_config())

        gradients = GradientCollector(CollectorConfig(show_progress=False)).collect(model, dataset, criterion)
        covariance = np.cov(gradients.numpy(), rowvar=False)
        expected = np.sort(np.linalg.eigvalsh(covariance))[::-1]

        self.assertEqual(result.n_params, 26)
        np.testing.assert_allclose(result.eigenvalues.numpy(), expected, atol=1e-10)
        for i in range(result.n_params):
            v = result.eigenvectors[:, i].numpy()
            np.testing.assert_allclose(covariance @ v, result.eigenvalues[i].item() * v, atol=1e-9)

    def test_empty_dataset_fails_in_collect(self):
        dataset = MatDataSet.from_tensors(torch.empty(0, 3), torch.empty(0, dtype=torch.long))
        with self.assertRaises(DataError) as ctx:
            estimate_hessian(make_classifier(), dataset, build_criterion('nll'), quiet_config())
        self.assertEqual(ctx.exception.stage, 'collect')

    def test_single_example_fails_in_covariance(self):
        with self.assertRaises(DataError) as ctx:
            estimate_hessian(make_classifier(), make_dataset(1), build_criterion('nll'), quiet_config())
        self.assertEqual(ctx.exception.stage, 'covariance')

    def test_memory_check(self):
        config = quiet_config()
        config.check_memory = True
        with mock.patch('gradcov.core.memory_budget.available_bytes', return_value=1024):
            with self.assertRaises(InsufficientMemoryError):
                estimate_hessian(make_classifier(), make_dataset(), build_criterion('nll'), config)

    def test_memory_estimate(self):
        sizes = estimate_bytes(10, 4, torch.float64)
        self.assertEqual(sizes['gradients'], 10 * 4 * 8)
        self.assertEqual(sizes['covariance'], 16 * 8)
        self.assertEqual(sizes['peak'], max(40 * 8 + 16 * 8, 2 * 16 * 8 + 4 * 8))

    def test_memory_estimate_eigen_dtype(self):
        sizes = estimate_bytes(10, 4, torch.float32, eigen_dtype=torch.float64)
        self.assertEqual(sizes['gradients'], 10 * 4 * 4)
        self.assertEqual(sizes['covariance'], 16 * 4)
        self.assertEqual(sizes['eigenvectors'], 16 * 8)
        self.assertEqual(sizes['eigen_phase'], 16 * 4 + 2 * 16 * 8 + 4 * 8)
        self.assertEqual(sizes['peak'], sizes['eigen_phase'])

    def test_memory_check_uses_eigen_dtype(self):
        config = quiet_config()
        config.check_memory = True
        config.collector.dtype = torch.float32
        single_precision = estimate_bytes(12, 26, torch.float32)['peak']
        with mock.patch('gradcov.core.memory_budget.available_bytes', return_value=single_precision):
            with self.assertRaises(InsufficientMemoryError):
                estimate_hessian(make_classifier(), make_dataset(), build_criterion('nll'), config)


class TestRun(unittest.TestCase):
    """Full runs with result files."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_writes_ranked_results(self):
        out = run(make_classifier(), make_dataset(), build_criterion('nll'), '_test', quiet_config(self.root))

        self.assertEqual(out, self.root / 'hessian_test')
        loaded = read_results(out)
        loaded.validate()
        self.assertEqual(tuple(loaded.eigenvectors.shape), (26, 26))

    def test_deterministic(self):
        first = run(make_classifier(), make_dataset(), build_criterion('nll'), 'a', quiet_config(self.root))
        second = run(make_classifier(), make_dataset(), build_criterion('nll'), 'b', quiet_config(self.root))

        self.assertEqual((first / EIGENVALUES_FILE).read_text(), (second / EIGENVALUES_FILE).read_text())
        self.assertEqual((first / EIGENVECTORS_FILE).read_text(), (second / EIGENVECTORS_FILE).read_text())

    def test_failure_writes_nothing(self):
        with self.assertRaises(DataError):
            run(make_classifier(), make_dataset(1), build_criterion('nll'), '', quiet_config(self.root))
        self.assertEqual(list(self.root.iterdir()), [])


class TestCommandLine(unittest.TestCase):
    """hessian_estimator.main()."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

        dataset = make_dataset(8)
        rows = torch.cat([dataset._inputs, dataset._targets.unsqueeze(1).float()], dim=1).tolist()
        lines = [f"{len(rows)} {len(rows[0])}"] + [' '.join(repr(v) for v in row) for row in rows]
        self.data_path = self.root / 'train.txt'
        self.data_path.write_text('\n'.join(lines) + '\n')

        self.model_path = self.root / 'model.pt'
        torch.save(make_classifier(), self.model_path)

    def tearDown(self):
        self._tmp.cleanup()

    def base_args(self):
        return [
            '--n-inputs', '3',
            '--n-classes', '2',
            '--data-filename', str(self.data_path),
            '--model-filename', str(self.model_path),
            '--output-root', str(self.root),
            '--no-progress',
            '--skip-memory-check',
        ]

    def test_success(self):
        code = hessian_estimator.main(self.base_args() + ['--model-label', '_cli', '--write-binary'])

        self.assertEqual(code, 0)
        out = self.root / 'hessian_cli'
        values = np.loadtxt(out / EIGENVALUES_FILE)
        self.assertEqual(values.shape, (26,))
        self.assertTrue(np.all(np.diff(values) <= 0))
        self.assertTrue((out / 'eigenvecs_full.bin').is_file())

    def test_max_load(self):
        code = hessian_estimator.main(self.base_args() + ['--max-load', '5'])
        self.assertEqual(code, 0)
        self.assertTrue((self.root / 'hessian' / EIGENVALUES_FILE).is_file())

    def test_missing_data_file(self):
        args = self.base_args()
        args[args.index('--data-filename') + 1] = str(self.root / 'missing.txt')
        self.assertEqual(hessian_estimator.main(args), 1)

    def test_too_few_examples(self):
        code = hessian_estimator.main(self.base_args() + ['--max-load', '1'])
        self.assertEqual(code, 1)
        self.assertFalse((self.root / 'hessian').exists())

    def test_failure_logged_once(self):
        with self.assertLogs(level='ERROR') as logs:
            code = hessian_estimator.main(self.base_args() + ['--max-load', '1'])

        self.assertEqual(code, 1)
        self.assertEqual(len(logs.records), 1)
        self.assertIn("during 'covariance'", logs.output[0])

    def test_nan_label(self):
        lines = self.data_path.read_text().splitlines()
        values = lines[1].split()
        values[-1] = 'nan'
        lines[1] = ' '.join(values)
        self.data_path.write_text('\n'.join(lines) + '\n')

        self.assertEqual(hessian_estimator.main(self.base_args()), 1)
        self.assertFalse((self.root / 'hessian').exists())

    def test_invalid_n_inputs(self):
        args = self.base_args()
        args[args.index('--n-inputs') + 1] = '0'
        self.assertEqual(hessian_estimator.main(args), 1)

    def test_missing_required_argument(self):
        with self.assertRaises(SystemExit) as ctx:
            hessian_estimator.main(['--n-inputs', '3'])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == '__main__':
    unittest.main()
