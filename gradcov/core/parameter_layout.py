"""
Flattened view over a model's derivative buffers.

A torch model keeps one ``.grad`` tensor per parameter. The estimator works on
the concatenation of all of them, so the layout records, once per run, the
ordered list of (name, shape, numel, offset) descriptors. The same order is
used for the gradient matrix columns, the covariance indices and the
eigenvector rows.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

import torch
import torch.nn as nn

from gradcov_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParameterGroup:
    """One contiguous group of the flattened parameter vector."""
    name: str
    shape: Tuple[int, ...]
    numel: int
    offset: int

    @property
    def stop(self) -> int:
        return self.offset + self.numel


class ParameterLayout:
    """
    Ordered descriptors for the trainable parameters of a model.

    The layout is tied to the parameter order of ``named_parameters()``;
    only parameters with ``requires_grad=True`` are included.
    """

    def __init__(self, groups: List[ParameterGroup]):
        self.groups = list(groups)
        self.n_params = sum(g.numel for g in self.groups)

    @classmethod
    def from_model(cls, model: nn.Module) -> "ParameterLayout":
        groups = []
        offset = 0
        for name, param in model.named_parameters():
            if not param.requires_grad:
                continue
            numel = param.numel()
            groups.append(ParameterGroup(name, tuple(param.shape), numel, offset))
            offset += numel

        if not groups:
            raise ConfigurationError("model", "has no trainable parameters")

        layout = cls(groups)
        logger.debug(f"Parameter layout: {len(groups)} groups, {layout.n_params} parameters")
        return layout

    def __len__(self):
        return len(self.groups)

    def __iter__(self):
        return iter(self.groups)

    def _parameters(self, model: nn.Module):
        params = dict(model.named_parameters())
        for group in self.groups:
            param = params.get(group.name)
            if param is None or tuple(param.shape) != group.shape:
                raise ConfigurationError(
                    "model", f"parameter '{group.name}' does not match the layout"
                )
            yield group, param

    def zero_(self, model: nn.Module):
        """Zero every derivative buffer covered by the layout."""
        for _, param in self._parameters(model):
            if param.grad is not None:
                param.grad.detach_()
                param.grad.zero_()

    def gather(self, model: nn.Module, out: torch.Tensor) -> torch.Tensor:
        """
        Copy the derivative buffers into ``out`` (a length ``n_params`` view).

        Parameters that received no gradient contribute zeros.
        """
        if out.numel() != self.n_params:
            raise ValueError(f"Output row has {out.numel()} entries, layout needs {self.n_params}")

        for group, param in self._parameters(model):
            view = out[group.offset:group.stop]
            if param.grad is None:
                view.zero_()
            else:
                view.copy_(param.grad.detach().reshape(-1))
        return out
