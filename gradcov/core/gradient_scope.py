"""
Scoped gradient accumulation.

The model's ``.grad`` buffers are shared across examples. Each example gets
its own scope: buffers are zeroed on entry, the caller runs one
forward/backward pass and extracts the gradient, and the buffers are zeroed
again on every exit path, including failures.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass

import torch
import torch.nn as nn

from .parameter_layout import ParameterLayout

logger = logging.getLogger(__name__)


@dataclass
class GradientState:
    """Model state that a scope must put back on exit."""
    training_mode: bool
    gradient_enabled: bool

    @classmethod
    def capture(cls, model: nn.Module) -> "GradientState":
        return cls(training_mode=model.training, gradient_enabled=torch.is_grad_enabled())

    def restore(self, model: nn.Module):
        model.train(self.training_mode)
        torch.set_grad_enabled(self.gradient_enabled)


@contextmanager
def accumulate_gradients(model: nn.Module, layout: ParameterLayout, eval_mode: bool = True):
    """
    Context manager for one zero/accumulate/extract/zero cycle.

    Args:
        model: The model whose derivative buffers are used
        layout: Flattened layout of those buffers
        eval_mode: Run the model in eval mode (deterministic dropout/batch norm)

    Yields:
        The model, with zeroed derivative buffers and grad mode enabled
    """
    state = GradientState.capture(model)
    layout.zero_(model)
    try:
        if eval_mode:
            model.eval()
        torch.set_grad_enabled(True)
        yield model
    finally:
        layout.zero_(model)
        state.restore(model)
