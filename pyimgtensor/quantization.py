"""Linear (affine) quantization between float samples and fixed-point integers.

    scale      = (max - min) / (qmax - qmin)
    zero_point = clamp(round(qmin - min / scale), qmin, qmax)
    q          = clamp(round(x / scale) + zero_point, qmin, qmax)
    x'         = (q - zero_point) * scale

The asymmetric range is widened to include 0 first, so ``min <= 0 <= max``
and every derived zero point lies in ``[qmin, qmax]``. Symmetric mode pins
``zero_point = 0`` and uses ``scale = max(|min|, |max|) / qmax``; it refuses
negative data for unsigned dtypes. Rounding is half-to-even throughout. For
any sample the params were derived from, the round-trip error is at most
``scale / 2`` plus float rounding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from pyimgtensor.buffer import DType, Layout, PixelBuffer
from pyimgtensor.errors import DtypeError, ShapeError
from pyimgtensor.validation import check_buffer

logger = logging.getLogger(__name__)


class QuantDtype(str, Enum):
    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def range(self) -> tuple[int, int]:
        info = np.iinfo(self.numpy_dtype)
        return int(info.min), int(info.max)


def parse_quant_dtype(raw: str | QuantDtype) -> QuantDtype:
    if isinstance(raw, QuantDtype):
        return raw
    try:
        return QuantDtype(str(raw).strip().lower())
    except Exception as exc:  # noqa: BLE001 - value validation helper
        raise DtypeError(
            f"Unknown quantization dtype: {raw!r}. Expected int8, uint8 or int16."
        ) from exc


@dataclass(frozen=True)
class QuantizationParams:
    scale: float
    zero_point: int
    qmin: int
    qmax: int
    dtype: QuantDtype

    @classmethod
    def for_dtype(cls, scale: float, zero_point: int, dtype: str | QuantDtype) -> "QuantizationParams":
        qd = parse_quant_dtype(dtype)
        qmin, qmax = qd.range
        return cls(scale=float(scale), zero_point=int(zero_point), qmin=qmin, qmax=qmax, dtype=qd)

    @property
    def representable_range(self) -> tuple[float, float]:
        return (
            (self.qmin - self.zero_point) * self.scale,
            (self.qmax - self.zero_point) * self.scale,
        )


@dataclass(frozen=True, eq=False)
class QuantizedBuffer:
    """Integer samples plus the parameters needed to dequantize them.

    `params` holds one entry for per-tensor quantization and one entry per
    channel for per-channel quantization.
    """

    data: NDArray
    width: int
    height: int
    channels: int
    layout: Layout
    params: tuple[QuantizationParams, ...]
    normalized: bool = False

    @property
    def per_channel(self) -> bool:
        return len(self.params) > 1


ParamsLike = Union[QuantizationParams, Sequence[QuantizationParams]]


def _round_half_even(values: Any) -> Any:
    return np.rint(values)


def _params_from_range(lo: float, hi: float, dtype: QuantDtype, symmetric: bool) -> QuantizationParams:
    qmin, qmax = dtype.range
    if symmetric:
        if qmin == 0 and lo < 0.0:
            raise DtypeError(
                f"symmetric {dtype.value} quantization cannot represent negative values (min={lo:g})"
            )
        scale = max(abs(lo), abs(hi)) / float(qmax)
        zero_point = 0
    else:
        # The grid must contain 0 so the zero point lands inside [qmin, qmax].
        lo, hi = min(lo, 0.0), max(hi, 0.0)
        scale = (hi - lo) / float(qmax - qmin)
        zero_point = None

    if scale == 0.0 or not np.isfinite(scale):
        # Constant input: any scale represents it; keep the grid at unit steps.
        return QuantizationParams(scale=1.0, zero_point=0, qmin=qmin, qmax=qmax, dtype=dtype)

    if zero_point is None:
        zero_point = int(_round_half_even(qmin - lo / scale))
        zero_point = max(qmin, min(qmax, zero_point))
    return QuantizationParams(scale=float(scale), zero_point=int(zero_point), qmin=qmin, qmax=qmax, dtype=dtype)


def _float_values(source: Any) -> NDArray:
    if isinstance(source, PixelBuffer):
        check_buffer(source)
        values = source.values().astype(np.float64)
    else:
        values = np.asarray(source, dtype=np.float64).reshape(-1)
    if values.size == 0:
        raise ShapeError("cannot derive quantization parameters from empty data")
    if not np.all(np.isfinite(values)):
        raise DtypeError("quantization input contains NaN or infinite values")
    return values


def calculate_quantization_params(
    source: Any,
    dtype: str | QuantDtype = QuantDtype.INT8,
    symmetric: bool = False,
) -> QuantizationParams:
    """Derive per-tensor params from the value range of a buffer or array."""

    values = _float_values(source)
    params = _params_from_range(float(values.min()), float(values.max()), parse_quant_dtype(dtype), bool(symmetric))
    logger.debug("quantization params %s", params)
    return params


def _channel_view(buf: PixelBuffer, values: NDArray) -> NDArray:
    """Reshape flat samples so axis 0 (CHW) or axis 1 (HWC) indexes channels."""

    if buf.layout is Layout.HWC:
        return values.reshape(-1, buf.channels)
    return values.reshape(buf.channels, -1)


def calculate_per_channel_params(
    buf: PixelBuffer,
    dtype: str | QuantDtype = QuantDtype.INT8,
    symmetric: bool = False,
) -> tuple[QuantizationParams, ...]:
    check_buffer(buf)
    qd = parse_quant_dtype(dtype)
    view = _channel_view(buf, _float_values(buf))
    axis = 0 if buf.layout is Layout.HWC else 1
    lows, highs = view.min(axis=axis), view.max(axis=axis)
    return tuple(_params_from_range(float(lo), float(hi), qd, bool(symmetric)) for lo, hi in zip(lows, highs))


def quantize_values(values: Any, params: QuantizationParams) -> NDArray:
    """Quantize raw float values with per-tensor params."""

    x = np.asarray(values, dtype=np.float64)
    q = _round_half_even(x / params.scale) + params.zero_point
    return np.clip(q, params.qmin, params.qmax).astype(params.dtype.numpy_dtype)


def dequantize_values(values: Any, params: QuantizationParams) -> NDArray:
    q = np.asarray(values, dtype=np.float64)
    return (q - params.zero_point) * params.scale


def _as_param_tuple(params: ParamsLike) -> tuple[QuantizationParams, ...]:
    if isinstance(params, QuantizationParams):
        return (params,)
    out = tuple(params)
    if not out or not all(isinstance(p, QuantizationParams) for p in out):
        raise TypeError("params must be QuantizationParams or a non-empty sequence of them")
    if len({p.dtype for p in out}) != 1:
        raise DtypeError("per-channel params must share one quantization dtype")
    return out


def _channel_vectors(buf_layout: Layout, params: tuple[QuantizationParams, ...]) -> tuple[NDArray, NDArray, NDArray, NDArray]:
    shape = (1, -1) if buf_layout is Layout.HWC else (-1, 1)
    scale = np.asarray([p.scale for p in params], dtype=np.float64).reshape(shape)
    zp = np.asarray([p.zero_point for p in params], dtype=np.float64).reshape(shape)
    qmin = np.asarray([p.qmin for p in params], dtype=np.float64).reshape(shape)
    qmax = np.asarray([p.qmax for p in params], dtype=np.float64).reshape(shape)
    return scale, zp, qmin, qmax


def quantize(buf: PixelBuffer, params: ParamsLike) -> QuantizedBuffer:
    """Quantize every sample; a sequence of params quantizes per channel."""

    check_buffer(buf)
    plist = _as_param_tuple(params)
    values = buf.values().astype(np.float64)

    if len(plist) == 1:
        q = quantize_values(values, plist[0])
    else:
        if len(plist) != buf.channels:
            raise ShapeError(f"expected {buf.channels} per-channel params, got {len(plist)}")
        view = _channel_view(buf, values)
        scale, zp, qmin, qmax = _channel_vectors(buf.layout, plist)
        q = np.clip(_round_half_even(view / scale) + zp, qmin, qmax)
        q = q.reshape(-1).astype(plist[0].dtype.numpy_dtype)

    return QuantizedBuffer(
        data=q,
        width=buf.width,
        height=buf.height,
        channels=buf.channels,
        layout=buf.layout,
        params=plist,
        normalized=buf.normalized if buf.dtype is DType.FLOAT32 else False,
    )


def quantize_per_channel(buf: PixelBuffer, dtype: str | QuantDtype = QuantDtype.INT8, symmetric: bool = False) -> QuantizedBuffer:
    return quantize(buf, calculate_per_channel_params(buf, dtype=dtype, symmetric=symmetric))


def dequantize(qbuf: QuantizedBuffer, params: Optional[ParamsLike] = None) -> PixelBuffer:
    """Map integers back to float32 samples: ``(q - zero_point) * scale``."""

    plist = qbuf.params if params is None else _as_param_tuple(params)
    expected = qbuf.width * qbuf.height * qbuf.channels
    q = np.asarray(qbuf.data, dtype=np.float64).reshape(-1)
    if q.size != expected:
        raise ShapeError(
            f"quantized data length {q.size} does not match "
            f"{qbuf.width}x{qbuf.height}x{qbuf.channels}={expected}"
        )

    if len(plist) == 1:
        x = dequantize_values(q, plist[0])
    else:
        if len(plist) != qbuf.channels:
            raise ShapeError(f"expected {qbuf.channels} per-channel params, got {len(plist)}")
        view = q.reshape(-1, qbuf.channels) if qbuf.layout is Layout.HWC else q.reshape(qbuf.channels, -1)
        scale, zp, _, _ = _channel_vectors(qbuf.layout, plist)
        x = ((view - zp) * scale).reshape(-1)

    if qbuf.normalized:
        # Rounding can step just past the unit interval at the edges.
        x = np.clip(x, 0.0, 1.0)

    return PixelBuffer(
        data=x.astype(np.float32),
        width=qbuf.width,
        height=qbuf.height,
        channels=qbuf.channels,
        layout=qbuf.layout,
        dtype=DType.FLOAT32,
        normalized=qbuf.normalized,
    )


def dequantize_per_channel(qbuf: QuantizedBuffer) -> PixelBuffer:
    return dequantize(qbuf)
