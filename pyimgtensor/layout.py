"""Layout conversion, dtype casts and normalization presets."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Union

import numpy as np
from numpy.typing import NDArray

from pyimgtensor.buffer import DType, Layout, PixelBuffer, parse_dtype, parse_layout
from pyimgtensor.config.options import NormalizationOptions
from pyimgtensor.errors import DtypeError, UnsupportedOperationError
from pyimgtensor.validation import check_buffer

logger = logging.getLogger(__name__)

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

NormalizationLike = Union[NormalizationOptions, str, Mapping[str, Any], None]


def convert_layout(buf: PixelBuffer, target_layout: str | Layout) -> PixelBuffer:
    """Reorder samples between interleaved (HWC) and planar (CHW) layouts.

    Converting to the layout the buffer already has returns the buffer
    unchanged.
    """

    check_buffer(buf)
    target = parse_layout(target_layout)
    if buf.layout is target:
        return buf

    arr = buf.to_array()
    order = (2, 0, 1) if target is Layout.CHW else (1, 2, 0)
    logger.debug("convert_layout %s -> %s for %dx%dx%d", buf.layout.value, target.value,
                 buf.width, buf.height, buf.channels)
    return PixelBuffer.from_array(
        np.transpose(arr, order),
        layout=target,
        normalized=buf.normalized,
        dtype=buf.dtype,
    )


def _as_unit255(buf: PixelBuffer) -> NDArray:
    """Float64 samples on the [0, 255] scale, in the buffer's own layout."""

    values = buf.to_array().astype(np.float64)
    if buf.dtype is DType.FLOAT32 and buf.normalized:
        values = values * 255.0
    return values


def cast_dtype(buf: PixelBuffer, target_dtype: str | DType, normalized: bool = False) -> PixelBuffer:
    """Cast between uint8 and float32.

    - uint8 → float32 divides by 255 when `normalized` is true.
    - float32 → uint8 rescales normalized input to [0, 255], clamps, then
      rounds half-to-even before truncating to integers.
    - float32 → float32 switches between the [0, 1] and [0, 255] scales.
    """

    check_buffer(buf)
    target = parse_dtype(target_dtype)

    if target is DType.UINT8:
        if buf.dtype is DType.UINT8:
            return buf
        values = np.rint(np.clip(_as_unit255(buf), 0.0, 255.0)).astype(np.uint8)
        return buf.with_array(values, dtype=DType.UINT8, normalized=False)

    if buf.dtype is DType.FLOAT32 and buf.normalized == bool(normalized):
        return buf

    values = _as_unit255(buf)
    if normalized:
        values = values / 255.0
    return buf.with_array(values.astype(np.float32), dtype=DType.FLOAT32, normalized=bool(normalized))


def _parse_normalization(options: NormalizationLike) -> NormalizationOptions:
    if options is None:
        return NormalizationOptions()
    if isinstance(options, NormalizationOptions):
        return options
    return NormalizationOptions.from_dict(options)


def _channel_vectors(opts: NormalizationOptions, channels: int) -> tuple[NDArray, NDArray]:
    if opts.preset == "imagenet":
        mean, std = IMAGENET_MEAN, IMAGENET_STD
    elif opts.preset == "custom":
        mean, std = opts.mean or (), opts.std or ()
    else:
        raise UnsupportedOperationError(
            f"normalization preset {opts.preset!r} has no per-channel mean/std"
        )

    # Channels without statistics (e.g. alpha) pass through unchanged.
    mean_vec = np.zeros(channels, dtype=np.float64)
    std_vec = np.ones(channels, dtype=np.float64)
    n = min(channels, len(mean))
    mean_vec[:n] = np.asarray(mean[:n], dtype=np.float64)
    std_vec[:n] = np.asarray(std[:n], dtype=np.float64)
    return mean_vec, std_vec


def _broadcast(vec: NDArray, layout: Layout) -> NDArray:
    if layout is Layout.HWC:
        return vec.reshape(1, 1, -1)
    return vec.reshape(-1, 1, 1)


def normalize(buf: PixelBuffer, options: NormalizationLike = None) -> PixelBuffer:
    """Convert a buffer to float32 using a normalization preset.

    Only the ``scale`` preset yields ``normalized=True``; standardized
    presets produce values outside [0, 1] and are flagged unnormalized.
    """

    check_buffer(buf)
    opts = _parse_normalization(options)
    values = _as_unit255(buf)

    if opts.preset == "raw":
        out, is_unit = values, False
    elif opts.preset == "scale":
        out, is_unit = values / 255.0, True
    elif opts.preset == "tensorflow":
        out, is_unit = values / 127.5 - 1.0, False
    else:
        mean_vec, std_vec = _channel_vectors(opts, buf.channels)
        out = (values / 255.0 - _broadcast(mean_vec, buf.layout)) / _broadcast(std_vec, buf.layout)
        is_unit = False

    logger.debug("normalize preset=%s shape=%s", opts.preset, buf.shape)
    return buf.with_array(out.astype(np.float32), dtype=DType.FLOAT32, normalized=is_unit)


def denormalize(buf: PixelBuffer, options: NormalizationLike = None) -> PixelBuffer:
    """Invert :func:`normalize`, returning float32 samples on the [0, 255] scale."""

    check_buffer(buf)
    if buf.dtype is not DType.FLOAT32:
        raise DtypeError(f"denormalize expects a float32 buffer, got {buf.dtype.value}")
    opts = _parse_normalization(options)
    values = buf.to_array().astype(np.float64)

    if opts.preset == "raw":
        out = values
    elif opts.preset == "scale":
        out = values * 255.0
    elif opts.preset == "tensorflow":
        out = (values + 1.0) * 127.5
    else:
        mean_vec, std_vec = _channel_vectors(opts, buf.channels)
        out = (values * _broadcast(std_vec, buf.layout) + _broadcast(mean_vec, buf.layout)) * 255.0

    return buf.with_array(out.astype(np.float32), dtype=DType.FLOAT32, normalized=False)
