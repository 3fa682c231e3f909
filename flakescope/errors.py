"""Error taxonomy for fatal analysis failures.

Only conditions that make an analysis impossible are raised.  Recoverable
parsing anomalies are collected as warning strings on the result objects
instead.
"""

from __future__ import annotations

from pathlib import Path


class AnalysisError(Exception):
    """Base class for fatal analysis errors.

    Every subclass names the offending path and the expectation that was
    violated, so the CLI can print the message as-is.
    """

    def __init__(self, path: str | Path | None, message: str) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class MissingInputError(AnalysisError):
    """A required input file or directory does not exist."""

    def __init__(self, path: str | Path, expectation: str = "") -> None:
        message = f"Input not found: {path}"
        if expectation:
            message += f" ({expectation})"
        super().__init__(path, message)


class EmptyInputError(AnalysisError):
    """An input exists but holds no usable data."""


class MalformedInputError(AnalysisError):
    """An input lacks the structure required to analyze it at all."""


class OutputPermissionError(AnalysisError):
    """A report could not be written because of file permissions."""

    def __init__(self, path: str | Path, reason: str = "") -> None:
        message = f"Permission denied: cannot write report to {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(path, message)
