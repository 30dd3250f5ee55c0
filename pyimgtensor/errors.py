"""Exception hierarchy for pyimgtensor.

Every error also derives from the closest builtin exception so callers that
already handle ``ValueError`` / ``IndexError`` / ``TypeError`` keep working.
"""

from __future__ import annotations

from typing import Iterable, Optional


class TensorCoreError(Exception):
    """Base class for all pyimgtensor errors."""

    kind = "TensorCoreError"


class ShapeError(TensorCoreError, ValueError):
    """Dimension, data-length or layout mismatch."""

    kind = "ShapeError"


class BoundsError(TensorCoreError, ValueError):
    """A region lies (partially) outside the source buffer."""

    kind = "BoundsError"


class ChannelIndexError(TensorCoreError, IndexError):
    """A channel or axis index is out of range."""

    kind = "IndexError"


class DtypeError(TensorCoreError, TypeError):
    """Unsupported numeric type or values outside the dtype range."""

    kind = "DtypeError"


class UnsupportedOperationError(TensorCoreError, ValueError):
    """Unknown augmentation/operation name or unsupported parameters."""

    kind = "UnsupportedOperationError"


class ValidationError(TensorCoreError, ValueError):
    """Aggregate error carrying every issue found during validation."""

    kind = "ValidationError"

    def __init__(self, issues: Iterable[str], message: Optional[str] = None) -> None:
        self.issues = [str(i) for i in issues]
        if message is None:
            message = "; ".join(self.issues) if self.issues else "validation failed"
        super().__init__(message)


class CacheCapacityError(TensorCoreError, MemoryError):
    """A single cache entry cannot fit into the configured byte budget."""

    kind = "CacheCapacityError"


def error_kind(exc: BaseException) -> str:
    """Return the public error kind name for `exc`."""

    kind = getattr(exc, "kind", None)
    if isinstance(kind, str):
        return kind
    return type(exc).__name__


__all__ = [
    "BoundsError",
    "CacheCapacityError",
    "ChannelIndexError",
    "DtypeError",
    "ShapeError",
    "TensorCoreError",
    "UnsupportedOperationError",
    "ValidationError",
    "error_kind",
]
