"""
Matrix-file datasets.

Data files hold one example per row: ``n_inputs`` input values followed by a
single target column holding the class index.

ASCII layout::

    n_rows n_cols
    v00 v01 ... v0(n_cols-1)
    ...

Binary layout: two little-endian int32 values (``n_rows``, ``n_cols``)
followed by ``n_rows * n_cols`` little-endian float32 values, row-major.
"""

import logging
import math
from pathlib import Path
from typing import Optional, Union

import numpy as np
import torch

from gradcov_exceptions import DataError, DataFormatError

logger = logging.getLogger(__name__)


def read_matrix_file(path: Union[str, Path], binary: bool = False, max_load: int = -1) -> np.ndarray:
    """
    Read a matrix file into a float64 array of shape (n_rows, n_cols).

    Args:
        path: File to read
        binary: Binary layout instead of ASCII
        max_load: Load at most this many rows (<= 0 loads every row)
    """
    path = Path(path)
    if not path.is_file():
        raise DataFormatError(str(path), "file does not exist")

    if binary:
        raw = path.read_bytes()
        if len(raw) < 8:
            raise DataFormatError(str(path), "missing binary header")
        n_rows, n_cols = (int(v) for v in np.frombuffer(raw[:8], dtype='<i4'))
        body = np.frombuffer(raw[8:], dtype='<f4')
    else:
        tokens = path.read_text().split()
        if len(tokens) < 2:
            raise DataFormatError(str(path), "missing header")
        try:
            n_rows, n_cols = int(tokens[0]), int(tokens[1])
            body = np.array(tokens[2:], dtype=np.float64)
        except ValueError as e:
            raise DataFormatError(str(path), f"non-numeric entry ({e})") from e

    if n_rows < 0 or n_cols <= 0:
        raise DataFormatError(str(path), f"invalid header {n_rows} x {n_cols}")
    if body.size < n_rows * n_cols:
        raise DataFormatError(
            str(path), f"header announces {n_rows * n_cols} values, found {body.size}"
        )

    if max_load is not None and max_load > 0:
        n_rows = min(n_rows, max_load)

    matrix = body[:n_rows * n_cols].astype(np.float64).reshape(n_rows, n_cols)
    logger.info(f"Loaded {n_rows} rows x {n_cols} columns from {path}")
    return matrix


class ClassFormat:
    """Class-index targets with a fixed number of classes."""

    def __init__(self, n_classes: int):
        if n_classes < 1:
            raise ValueError(f"n_classes must be positive, got {n_classes}")
        self.n_classes = n_classes

    def to_index(self, value: float) -> int:
        value = float(value)
        if not (math.isfinite(value) and value.is_integer() and 0 <= value < self.n_classes):
            raise DataError(f"Invalid class label {value} for {self.n_classes} classes")
        return int(value)

    def one_hot(self, index: torch.Tensor, dtype=torch.float32) -> torch.Tensor:
        return torch.nn.functional.one_hot(index.long(), self.n_classes).to(dtype)


class MatDataSet:
    """
    In-memory dataset exposing the current example through ``set_example``.

    After ``set_example(i)``, ``inputs`` is a (1, n_inputs) float tensor and
    ``targets`` a (1,) long tensor holding the class index.
    """

    def __init__(self, inputs: torch.Tensor, targets: torch.Tensor, class_format: Optional[ClassFormat] = None):
        if inputs.dim() != 2:
            raise DataError(f"Inputs must be 2-D, got shape {tuple(inputs.shape)}")
        if targets.shape[0] != inputs.shape[0]:
            raise DataError(
                f"Inputs have {inputs.shape[0]} rows but targets have {targets.shape[0]}"
            )
        self._inputs = inputs
        self._targets = targets
        self.class_format = class_format
        self.n_examples = inputs.shape[0]
        self.n_inputs = inputs.shape[1]
        self.current = None
        self.inputs = None
        self.targets = None

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        n_inputs: int,
        n_classes: int,
        max_load: int = -1,
        binary: bool = False,
    ) -> "MatDataSet":
        matrix = read_matrix_file(path, binary=binary, max_load=max_load)
        if matrix.shape[1] != n_inputs + 1:
            raise DataFormatError(
                str(path), f"expected {n_inputs + 1} columns (inputs + target), found {matrix.shape[1]}"
            )

        class_format = ClassFormat(n_classes)
        labels = [class_format.to_index(v) for v in matrix[:, n_inputs]]
        inputs = torch.from_numpy(np.ascontiguousarray(matrix[:, :n_inputs])).float()
        targets = torch.tensor(labels, dtype=torch.long)
        return cls(inputs, targets, class_format)

    @classmethod
    def from_tensors(cls, inputs: torch.Tensor, targets: torch.Tensor, n_classes: Optional[int] = None) -> "MatDataSet":
        class_format = ClassFormat(n_classes) if n_classes else None
        return cls(inputs, targets, class_format)

    def set_example(self, index: int):
        if not 0 <= index < self.n_examples:
            raise DataError(f"Example index {index} out of range [0, {self.n_examples})")
        self.current = index
        self.inputs = self._inputs[index:index + 1]
        self.targets = self._targets[index:index + 1]

    def __len__(self):
        return self.n_examples
