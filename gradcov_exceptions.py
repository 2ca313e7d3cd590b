#!/usr/bin/env python3
"""
GradCov Exception Classes
=========================

Exception hierarchy for the gradient-covariance Hessian estimator.

Every failure aborts the run. Exceptions carry the name of the pipeline
stage that raised them (``collect``, ``covariance``, ``eigen``, ``write``)
once they pass through the pipeline, so the CLI can report where it broke.
"""


class GradCovError(Exception):
    """Base exception for all gradcov errors."""

    stage = None

    def with_stage(self, stage: str) -> "GradCovError":
        """Tag the exception with the pipeline stage (first tag wins)."""
        if self.stage is None:
            self.stage = stage
        return self


class DataError(GradCovError):
    """Raised when the dataset cannot support the estimate (empty, n < 2, bad index)."""

    def __init__(self, reason: str, n_examples: int = None, required: int = None):
        self.reason = reason
        self.n_examples = n_examples
        self.required = required
        msg = reason
        if n_examples is not None and required is not None:
            msg += f" (got {n_examples} examples, need at least {required})"
        super().__init__(msg)


class DataFormatError(DataError):
    """Raised when a data file has an unexpected layout."""

    def __init__(self, path: str, issue: str):
        self.path = path
        self.issue = issue
        super().__init__(f"Malformed data file '{path}': {issue}")


class NumericalError(GradCovError):
    """Raised when numerical computation fails (NaN, inf, eigensolver non-convergence)."""

    def __init__(self, operation: str, issue: str, values: dict = None):
        self.operation = operation
        self.issue = issue
        self.values = values or {}
        msg = f"Numerical failure in '{operation}': {issue}"
        if values:
            msg += f" (values: {values})"
        super().__init__(msg)


class ResultWriteError(GradCovError, OSError):
    """Raised when result files cannot be written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot write results to '{path}': {reason}")


class ConfigurationError(GradCovError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, parameter: str, issue: str, valid_values: list = None):
        self.parameter = parameter
        self.issue = issue
        self.valid_values = valid_values
        msg = f"Configuration error for '{parameter}': {issue}"
        if valid_values:
            msg += f". Valid values: {valid_values}"
        super().__init__(msg)


class ModelLoadError(GradCovError):
    """Raised when a trained model cannot be loaded."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load model from '{path}': {reason}")


class InsufficientMemoryError(GradCovError):
    """Raised when the dense matrices do not fit in available memory."""

    def __init__(self, operation: str, required_gb: float, available_gb: float, suggestion: str = None):
        self.operation = operation
        self.required_gb = required_gb
        self.available_gb = available_gb
        self.suggestion = suggestion
        msg = (f"'{operation}' requires ~{required_gb:.2f}GB memory, "
               f"but only {available_gb:.2f}GB available")
        if suggestion:
            msg += f". {suggestion}"
        super().__init__(msg)
