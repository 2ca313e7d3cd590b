"""
Per-example Gradient Collection
===============================

Drives a trained model over every example of a dataset and stores one
flattened parameter gradient per example as a row of a dense (n × p) matrix.

For example i (dataset order, no shuffling):
1. zero the derivative buffers
2. forward the model, forward the criterion
3. backward the criterion and the model
4. copy the concatenated derivative buffers into row i
5. zero the derivative buffers again

Steps 1 and 5 are handled by ``accumulate_gradients``; skipping them lets
gradients from different examples leak into each other.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import torch
import torch.nn as nn
from tqdm import tqdm

from gradcov_exceptions import DataError, NumericalError
from .gradient_scope import accumulate_gradients
from .parameter_layout import ParameterLayout

logger = logging.getLogger(__name__)


@dataclass
class CollectorConfig:
    """Configuration for gradient collection."""
    dtype: torch.dtype = torch.float64  # storage dtype of the gradient matrix
    show_progress: bool = True
    progress_ticks: int = 10  # coarse progress messages per pass
    eval_mode: bool = True


class GradientCollector:
    """
    Assemble the per-example gradient matrix of a model.

    Args:
        config: Collection settings. If None, uses defaults.
    """

    def __init__(self, config: Optional[CollectorConfig] = None):
        self.config = config or CollectorConfig()

    def collect(
        self,
        model: nn.Module,
        dataset,
        criterion,
        layout: Optional[ParameterLayout] = None,
        start: int = 0,
        stop: Optional[int] = None,
    ) -> torch.Tensor:
        """
        Collect gradients for examples ``start`` to ``stop`` (default: all).

        Args:
            model: Trained model
            dataset: Object with ``n_examples``, ``set_example(i)``, ``inputs`` and ``targets``
            criterion: Callable ``(outputs, targets) -> scalar loss``
            layout: Parameter layout (built from the model if omitted)

        Returns:
            Gradient matrix of shape (stop - start, n_params); row k holds the
            gradient of example ``start + k``.
        """
        n_examples = dataset.n_examples
        if n_examples == 0:
            raise DataError("Dataset is empty, no gradients to collect", 0, 1)

        stop = n_examples if stop is None else stop
        if not 0 <= start < stop <= n_examples:
            raise DataError(f"Invalid example range [{start}, {stop}) for {n_examples} examples")

        layout = layout or ParameterLayout.from_model(model)
        n_rows = stop - start
        gradients = torch.empty(n_rows, layout.n_params, dtype=self.config.dtype)
        logger.info(f"Collecting gradients: {n_rows} examples x {layout.n_params} parameters")

        ticks = max(1, self.config.progress_ticks)
        next_tick = 1
        iterator = range(start, stop)
        if self.config.show_progress:
            iterator = tqdm(iterator, desc="Gradients", unit="ex", leave=False)

        for row, index in enumerate(iterator):
            dataset.set_example(index)
            with accumulate_gradients(model, layout, eval_mode=self.config.eval_mode):
                outputs = model(dataset.inputs)
                loss = criterion(outputs, dataset.targets)
                if not torch.isfinite(loss).all():
                    raise NumericalError(
                        'gradient collection', f"non-finite loss at example {index}",
                        {'loss': float(loss.detach().sum())}
                    )
                loss.backward()
                layout.gather(model, gradients[row])

            if not self.config.show_progress and (row + 1) * ticks >= next_tick * n_rows:
                logger.info(f"Gradient collection {100 * (row + 1) // n_rows}% done")
                next_tick = ((row + 1) * ticks) // n_rows + 1

        if not torch.isfinite(gradients).all():
            raise NumericalError('gradient collection', "non-finite gradient entries")

        return gradients


def mean_squared_norm(gradients: torch.Tensor) -> float:
    """Mean squared Euclidean norm of the gradient rows (call before centering)."""
    if gradients.shape[0] == 0:
        raise DataError("Gradient matrix has no rows", 0, 1)
    return float((gradients * gradients).sum(dim=1).mean())


def merge_rows(partials: Dict[int, torch.Tensor], n_examples: int, n_params: int) -> torch.Tensor:
    """
    Merge partial gradient matrices into one (n_examples × n_params) matrix.

    Args:
        partials: Maps the first example index of each block to its rows,
            e.g. the outputs of ``collect(start=..., stop=...)`` run with
            independent model copies.

    Every example index must be covered exactly once.
    """
    if not partials:
        raise DataError("No partial gradient matrices to merge", 0, 1)

    dtype = next(iter(partials.values())).dtype
    merged = torch.empty(n_examples, n_params, dtype=dtype)
    covered = torch.zeros(n_examples, dtype=torch.bool)

    for start, block in sorted(partials.items()):
        stop = start + block.shape[0]
        if block.shape[1] != n_params:
            raise DataError(f"Block at {start} has {block.shape[1]} columns, expected {n_params}")
        if start < 0 or stop > n_examples:
            raise DataError(f"Block [{start}, {stop}) outside [0, {n_examples})")
        if covered[start:stop].any():
            raise DataError(f"Block [{start}, {stop}) overlaps an earlier block")
        merged[start:stop] = block
        covered[start:stop] = True

    if not covered.all():
        missing = int((~covered).sum())
        raise DataError(f"{missing} example rows missing after merge")

    return merged
