"""Buffer validation.

`validate` is the report-producing entry point and never raises. The
`check_buffer` / `require_valid` helpers are used by every operation to fail
fast with a typed error before any samples are touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

import numpy as np

from pyimgtensor.buffer import IMAGE_CHANNELS, DType, PixelBuffer
from pyimgtensor.config.options import ValidationConstraints
from pyimgtensor.errors import DtypeError, ShapeError, ValidationError

_FLOAT_TOL = 1e-6


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    issues: list[str] = field(default_factory=list)

    def raise_for_issues(self) -> None:
        if not self.valid:
            raise ValidationError(self.issues)


def _shape_issues(buf: PixelBuffer) -> list[str]:
    issues: list[str] = []
    if buf.width <= 0:
        issues.append(f"width must be positive, got {buf.width}")
    if buf.height <= 0:
        issues.append(f"height must be positive, got {buf.height}")
    if buf.channels <= 0:
        issues.append(f"channels must be positive, got {buf.channels}")
    if not issues and buf.data.size != buf.expected_length:
        issues.append(
            f"data length {buf.data.size} does not match "
            f"{buf.width}x{buf.height}x{buf.channels}={buf.expected_length}"
        )
    return issues


def _range_issues(buf: PixelBuffer) -> list[str]:
    data = buf.data
    if data.size == 0:
        return []

    if buf.dtype is DType.UINT8:
        if data.dtype == np.uint8:
            return []
        if not np.issubdtype(data.dtype, np.number):
            return [f"uint8 buffer holds non-numeric samples of dtype {data.dtype}"]
        values = data.astype(np.float64, copy=False)
        issues: list[str] = []
        if not np.all(np.isfinite(values)):
            issues.append("uint8 buffer contains non-finite samples")
            return issues
        lo, hi = float(values.min()), float(values.max())
        if lo < 0.0 or hi > 255.0:
            issues.append(f"uint8 samples must lie in [0, 255], got min={lo:g}, max={hi:g}")
        if not np.all(values == np.floor(values)):
            issues.append("uint8 buffer contains non-integer samples")
        return issues

    values = data.astype(np.float64, copy=False)
    if not np.all(np.isfinite(values)):
        return ["float32 buffer contains NaN or infinite samples"]
    if buf.normalized:
        lo, hi = float(values.min()), float(values.max())
        if lo < 0.0 - _FLOAT_TOL or hi > 1.0 + _FLOAT_TOL:
            return [f"normalized float32 samples must lie in [0, 1], got min={lo:.6f}, max={hi:.6f}"]
    return []


def _constraint_issues(buf: PixelBuffer, constraints: ValidationConstraints) -> list[str]:
    c = constraints
    w, h = buf.width, buf.height
    issues: list[str] = []
    if c.min_width is not None and w < c.min_width:
        issues.append(f"width {w} is less than minimum {c.min_width}")
    if c.min_height is not None and h < c.min_height:
        issues.append(f"height {h} is less than minimum {c.min_height}")
    if c.max_width is not None and w > c.max_width:
        issues.append(f"width {w} exceeds maximum {c.max_width}")
    if c.max_height is not None and h > c.max_height:
        issues.append(f"height {h} exceeds maximum {c.max_height}")
    if c.channels is not None and buf.channels != c.channels:
        issues.append(f"expected {c.channels} channels, got {buf.channels}")
    if c.min_pixels is not None and w * h < c.min_pixels:
        issues.append(f"pixel count {w * h} is less than minimum {c.min_pixels}")
    if c.aspect_ratio is not None and h > 0:
        actual = float(w) / float(h)
        if abs(actual - c.aspect_ratio) > c.aspect_ratio_tolerance:
            issues.append(
                f"aspect ratio {actual:.4f} differs from expected {c.aspect_ratio:.4f} "
                f"by more than {c.aspect_ratio_tolerance:g}"
            )
    return issues


ConstraintsLike = Union[ValidationConstraints, Mapping[str, Any], None]


def _as_constraints(constraints: ConstraintsLike) -> tuple[Optional[ValidationConstraints], list[str]]:
    if constraints is None or isinstance(constraints, ValidationConstraints):
        return constraints, []
    try:
        return ValidationConstraints.from_dict(constraints), []
    except ValidationError as exc:
        return None, list(exc.issues)


def validate(buf: Any, constraints: ConstraintsLike = None) -> ValidationReport:
    """Check a buffer and return a report. Never raises.

    `constraints` may be a :class:`ValidationConstraints` or the raw mapping
    it parses from; malformed constraint options are reported as issues.
    """

    if not isinstance(buf, PixelBuffer):
        return ValidationReport(valid=False, issues=[f"expected PixelBuffer, got {type(buf).__name__}"])

    try:
        parsed, issues = _as_constraints(constraints)
        issues.extend(_shape_issues(buf))
        if not issues:
            issues.extend(_range_issues(buf))
        if parsed is not None:
            issues.extend(_constraint_issues(buf, parsed))
    except Exception as exc:  # noqa: BLE001 - report boundary, validate never raises
        issues = [f"validation failed: {exc}"]
    return ValidationReport(valid=not issues, issues=issues)


def check_buffer(buf: Any, *, image: bool = False) -> PixelBuffer:
    """Raise the first violated buffer contract as a typed error.

    With ``image=True`` the channel count is further restricted to 1, 3 or 4.
    """

    if not isinstance(buf, PixelBuffer):
        raise TypeError(f"Expected PixelBuffer, got {type(buf).__name__}")

    shape_issues = _shape_issues(buf)
    if shape_issues:
        raise ShapeError(shape_issues[0])
    range_issues = _range_issues(buf)
    if range_issues:
        raise DtypeError(range_issues[0])
    if image and buf.channels not in IMAGE_CHANNELS:
        raise ShapeError(
            f"image operations require 1, 3 or 4 channels, got {buf.channels}"
        )
    return buf


def require_valid(buf: Any, constraints: ConstraintsLike = None) -> PixelBuffer:
    """Like :func:`validate` but raises :class:`ValidationError` with every issue."""

    validate(buf, constraints).raise_for_issues()
    return buf
