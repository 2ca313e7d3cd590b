"""
Result serialization.

One result set per run, in ``<output_root>/<prefix><label>/``:

- ``eigenvals_full.txt``: one eigenvalue per line, descending
- ``eigenvecs_full.txt``: P lines of P space-separated values; line j is row
  j of the eigenvector matrix, so column i read down the lines is
  eigenvector i
- ``eigenvals_full.bin`` / ``eigenvecs_full.bin`` (optional): float64,
  row-major

Files are staged under temporary names and moved into place only once every
file has been written. A failed run leaves no result files behind.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

import numpy as np
import torch

from gradcov_exceptions import ResultWriteError
from .eigen_ranker import EigenResult

logger = logging.getLogger(__name__)

EIGENVALUES_FILE = 'eigenvals_full.txt'
EIGENVECTORS_FILE = 'eigenvecs_full.txt'
EIGENVALUES_BINARY_FILE = 'eigenvals_full.bin'
EIGENVECTORS_BINARY_FILE = 'eigenvecs_full.bin'


@dataclass
class WriterConfig:
    """Configuration for result output."""
    output_root: Union[str, Path] = '.'
    prefix: str = 'hessian'
    float_format: str = '.17g'  # round-trips float64 exactly
    write_binary: bool = False


class ResultWriter:
    """Write ranked eigenpairs under a label-specific directory."""

    def __init__(self, config: WriterConfig = None):
        self.config = config or WriterConfig()

    def output_dir(self, label: str = '') -> Path:
        return Path(self.config.output_root) / f"{self.config.prefix}{label or ''}"

    def _format(self, value: float) -> str:
        return format(float(value), self.config.float_format)

    def _render_eigenvalues(self, values: np.ndarray) -> str:
        return ''.join(self._format(v) + '\n' for v in values)

    def _render_eigenvectors(self, vectors: np.ndarray) -> str:
        return ''.join(' '.join(self._format(v) for v in row) + '\n' for row in vectors)

    def _stage(self, directory: Path, name: str, payload: Union[str, bytes]) -> Path:
        binary = isinstance(payload, bytes)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix='.tmp', dir=directory)
        try:
            with os.fdopen(fd, 'wb' if binary else 'w') as handle:
                handle.write(payload)
        except BaseException:
            os.unlink(tmp_name)
            raise
        return Path(tmp_name)

    def write(self, result: EigenResult, label: str = '') -> Path:
        """
        Write ``result`` and return the output directory.

        Raises:
            ResultWriteError: the directory or either file cannot be written
        """
        values, vectors = result.to_numpy()
        directory = self.output_dir(label)

        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResultWriteError(str(directory), e.strerror or str(e)) from e

        logger.info(f"Saving the results to {directory}")
        payloads = [
            (EIGENVALUES_FILE, self._render_eigenvalues(values)),
            (EIGENVECTORS_FILE, self._render_eigenvectors(vectors)),
        ]
        if self.config.write_binary:
            payloads.append((EIGENVALUES_BINARY_FILE, values.astype('<f8').tobytes()))
            payloads.append((EIGENVECTORS_BINARY_FILE, np.ascontiguousarray(vectors, dtype='<f8').tobytes()))

        staged: List[Tuple[Path, Path]] = []
        published: List[Path] = []
        try:
            for name, payload in payloads:
                staged.append((self._stage(directory, name, payload), directory / name))
            for tmp_path, final_path in staged:
                os.replace(tmp_path, final_path)
                published.append(final_path)
        except OSError as e:
            for tmp_path, _ in staged:
                if tmp_path.exists():
                    tmp_path.unlink()
            for final_path in published:
                final_path.unlink()
            failed = getattr(e, 'filename', None) or str(directory)
            raise ResultWriteError(str(failed), e.strerror or str(e)) from e

        return directory


def read_results(directory: Union[str, Path]) -> EigenResult:
    """Read a text result set written by ``ResultWriter``."""
    directory = Path(directory)
    values = np.loadtxt(directory / EIGENVALUES_FILE, dtype=np.float64, ndmin=1)
    vectors = np.loadtxt(directory / EIGENVECTORS_FILE, dtype=np.float64, ndmin=2)
    return EigenResult(torch.from_numpy(values), torch.from_numpy(vectors))
