#!/usr/bin/env python3
"""
Full-Eigen Hessian Estimator
============================

Estimates the Hessian of a trained classifier with the covariance
approximation. The covariance of the per-example gradients is fully
computed, and so is its eigendecomposition.

Usage:
    python hessian_estimator.py --n-inputs 784 --n-classes 10 \\
        --data-filename train.mat --model-filename model.pt --model-label _mnist

Results land in ``hessian<model-label>/eigenvals_full.txt`` and
``hessian<model-label>/eigenvecs_full.txt``.
"""

import argparse
import logging
import sys

import torch

from gradcov_exceptions import GradCovError, ConfigurationError
from gradcov.core.gradient_collector import CollectorConfig
from gradcov.core.result_writer import WriterConfig
from gradcov.data import CRITERIA, MatDataSet, build_criterion, load_model
from gradcov.pipeline import EstimatorConfig, run

logger = logging.getLogger(__name__)

DTYPES = {'float32': torch.float32, 'float64': torch.float64}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate the Hessian with the gradient covariance approximation "
                    "(full covariance, full eigendecomposition)."
    )

    # Required inputs
    parser.add_argument("--n-inputs", type=int, required=True, help="Number of inputs")
    parser.add_argument("--n-classes", type=int, required=True, help="Number of targets")
    parser.add_argument("--data-filename", required=True, help="Filename for the data")
    parser.add_argument("--model-filename", required=True, help="The model filename")

    # Options
    parser.add_argument(
        "--model-label",
        default="",
        help="Label used to describe the model (output goes to hessian<label>/)"
    )
    parser.add_argument(
        "--max-load",
        type=int,
        default=-1,
        help="Max number of examples to load (-1 loads all)"
    )
    parser.add_argument("--binary-mode", action="store_true", help="Binary mode for data files")
    parser.add_argument(
        "--criterion",
        choices=CRITERIA,
        default="nll",
        help="Loss criterion (nll expects log-probability outputs)"
    )
    parser.add_argument("--output-root", default=".", help="Directory holding the hessian<label>/ folder")
    parser.add_argument("--write-binary", action="store_true", help="Also write float64 .bin result files")
    parser.add_argument(
        "--dtype",
        choices=sorted(DTYPES),
        default="float64",
        help="Storage dtype of the gradient matrix"
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    parser.add_argument("--skip-memory-check", action="store_true", help="Do not check available memory up front")
    parser.add_argument(
        "--log-level",
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help="Logging verbosity"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> EstimatorConfig:
    if args.n_inputs <= 0:
        raise ConfigurationError('n_inputs', f"must be positive, got {args.n_inputs}")
    if args.n_classes <= 0:
        raise ConfigurationError('n_classes', f"must be positive, got {args.n_classes}")

    return EstimatorConfig(
        collector=CollectorConfig(dtype=DTYPES[args.dtype], show_progress=not args.no_progress),
        writer=WriterConfig(output_root=args.output_root, write_binary=args.write_binary),
        check_memory=not args.skip_memory_check,
    )


def main(argv=None) -> int:
    """Main entry point for CLI usage."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = config_from_args(args)
        dataset = MatDataSet.from_file(
            args.data_filename,
            n_inputs=args.n_inputs,
            n_classes=args.n_classes,
            max_load=args.max_load,
            binary=args.binary_mode,
        )
        model = load_model(args.model_filename)
        criterion = build_criterion(args.criterion, n_classes=args.n_classes)

        output_dir = run(model, dataset, criterion, label=args.model_label, config=config)
    except GradCovError as e:
        where = f" during '{e.stage}'" if e.stage else ""
        logger.error(f"Hessian estimation failed{where}: {e}")
        return 1

    logger.info(f"Results written to {output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
