"""
Error types raised by the comparison engine.

Only load-time and emit-time failures are raised. Comparison-time anomalies
(schema mismatches, duplicate identities) degrade to flagged records.
"""
from pathlib import Path
from typing import Union


class ParityError(Exception):
    """Base class for fatal errors surfaced to the command line."""


class ParseError(ParityError):
    """An export file or folder could not be loaded."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class ReportWriteError(ParityError):
    """The rendered report could not be written to its destination."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Could not write report to {self.path}: {reason}")
