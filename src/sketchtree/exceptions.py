from __future__ import annotations

from pathlib import Path
from typing import Sequence


class SketchTreeError(Exception):
    """Base class for sketchtree exceptions."""

    exit_code: int = 1


class SketchTreeUsageError(SketchTreeError):
    """Raised when command arguments or inputs are invalid."""

    exit_code = 2


class InsufficientInputs(SketchTreeUsageError):
    """Raised when fewer genomes are supplied than a tree needs."""


class InvalidParameter(SketchTreeUsageError):
    """Raised when a numeric parameter is outside its defined range."""


class InputValidationError(SketchTreeUsageError):
    """Raised after validating every input, listing all offending files."""

    def __init__(self, message: str, offenders: Sequence[Path] = ()) -> None:
        self.offenders = list(offenders)
        details = "\n".join(f"  - {path}" for path in self.offenders)
        super().__init__(f"{message}\n{details}" if details else message)


class InvalidFormat(InputValidationError):
    """Raised when inputs do not start with a FASTA header line."""


class MultiRecordNotAllowed(InputValidationError):
    """Raised when inputs hold more than one FASTA record."""


class SketchFailure(SketchTreeError):
    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Failed to sketch {path}: {reason}")


class DistanceEstimationFailure(SketchTreeError):
    def __init__(self, pair: tuple[str, str], reason: str) -> None:
        self.pair = pair
        super().__init__(f"Failed to estimate distance between {pair[0]} and {pair[1]}: {reason}")


class AssemblyInconsistency(SketchTreeError):
    """Raised when the distance set cannot fill a complete matrix."""

    def __init__(self, message: str, pair: tuple[str, str] | None = None) -> None:
        self.pair = pair
        super().__init__(message)


class SolverFailure(SketchTreeError):
    """Raised when neighbor joining cannot produce a tree."""


class OutlierDetected(SketchTreeError):
    def __init__(self, outliers: Sequence[tuple[str, int]]) -> None:
        self.outliers = list(outliers)
        listed = ", ".join(f"{genome_id} ({size} bp)" for genome_id, size in self.outliers)
        super().__init__(f"Genome size outliers detected: {listed}")
