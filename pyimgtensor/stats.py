"""Per-channel statistics and descriptive metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np
from numpy.typing import NDArray

from pyimgtensor.buffer import DType, Layout, PixelBuffer
from pyimgtensor.validation import check_buffer

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 256

_COLOR_SPACES = {1: "grayscale", 3: "rgb", 4: "rgba"}


@dataclass(frozen=True)
class ImageStatistics:
    """Statistics in the buffer's own value units.

    `histogram` holds one 256-bin histogram per channel over the [0, 255]
    scale. Samples are rounded to the nearest 8-bit level before binning,
    after rescaling when the buffer is normalized float.
    """

    per_channel_mean: list[float]
    per_channel_std: list[float]
    per_channel_min: list[float]
    per_channel_max: list[float]
    mean: float
    std: float
    min: float
    max: float
    histogram: list[list[int]]
    pixel_count: int


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    channels: int
    estimated_color_depth: int
    bits_per_channel: int
    aspect_ratio: float
    has_alpha: bool
    color_space: str
    layout: str
    dtype: str
    normalized: bool
    size_bytes: int


def _channel_matrix(buf: PixelBuffer) -> NDArray:
    """Samples as ``(pixel_count, channels)`` float64."""

    arr = buf.to_array().astype(np.float64)
    if buf.layout is Layout.HWC:
        return arr.reshape(-1, buf.channels)
    return arr.reshape(buf.channels, -1).T


def _histograms(samples: NDArray, buf: PixelBuffer) -> NDArray:
    scaled = samples * 255.0 if buf.dtype is DType.FLOAT32 and buf.normalized else samples
    # Nearest 8-bit level, the same one cast_dtype would produce.
    bins = np.clip(np.rint(scaled), 0, HISTOGRAM_BINS - 1).astype(np.int64)
    # Offset each channel into its own bin range so one bincount covers all.
    offsets = np.arange(buf.channels, dtype=np.int64) * HISTOGRAM_BINS
    counts = np.bincount((bins + offsets).reshape(-1), minlength=HISTOGRAM_BINS * buf.channels)
    return counts.reshape(buf.channels, HISTOGRAM_BINS)


def get_image_statistics(buf: PixelBuffer) -> ImageStatistics:
    """Mean/std (population)/min/max per channel and overall, plus histograms."""

    check_buffer(buf)
    samples = _channel_matrix(buf)
    hist = _histograms(samples, buf)

    stats = ImageStatistics(
        per_channel_mean=[float(v) for v in samples.mean(axis=0)],
        per_channel_std=[float(v) for v in samples.std(axis=0)],
        per_channel_min=[float(v) for v in samples.min(axis=0)],
        per_channel_max=[float(v) for v in samples.max(axis=0)],
        mean=float(samples.mean()),
        std=float(samples.std()),
        min=float(samples.min()),
        max=float(samples.max()),
        histogram=[[int(c) for c in row] for row in hist],
        pixel_count=int(buf.pixel_count),
    )
    logger.debug("statistics for %dx%dx%d: mean=%.4f std=%.4f", buf.width, buf.height,
                 buf.channels, stats.mean, stats.std)
    return stats


def get_image_metadata(buf: PixelBuffer) -> ImageMetadata:
    """Describe dimensions, depth and aspect ratio of `buf`."""

    check_buffer(buf)
    bits = 8 * buf.dtype.itemsize
    return ImageMetadata(
        width=buf.width,
        height=buf.height,
        channels=buf.channels,
        estimated_color_depth=int(bits * buf.channels),
        bits_per_channel=int(bits),
        aspect_ratio=float(buf.width) / float(buf.height),
        has_alpha=buf.channels == 4,
        color_space=_COLOR_SPACES.get(buf.channels, "unknown"),
        layout=buf.layout.value,
        dtype=buf.dtype.value,
        normalized=buf.normalized,
        size_bytes=buf.nbytes,
    )


DEFAULT_BLUR_THRESHOLD = 100.0


@dataclass(frozen=True)
class BlurReport:
    """Variance of the Laplacian over the luma plane, on the [0, 255] scale."""

    score: float
    threshold: float
    is_blurry: bool


def _luma_255(buf: PixelBuffer) -> NDArray:
    hwc = buf.to_hwc_array().astype(np.float32)
    if buf.dtype is DType.FLOAT32 and buf.normalized:
        hwc = hwc * 255.0
    if buf.channels == 1:
        return hwc[..., 0]
    code = cv2.COLOR_RGBA2GRAY if buf.channels == 4 else cv2.COLOR_RGB2GRAY
    return cv2.cvtColor(np.ascontiguousarray(hwc), code)


def detect_blur(
    buf: PixelBuffer,
    threshold: float = DEFAULT_BLUR_THRESHOLD,
    *,
    max_size: int | None = None,
) -> BlurReport:
    """Score sharpness as the variance of the 3x3 Laplacian.

    Low variance means few edges; the image is reported blurry when the
    score falls below `threshold`. With `max_size`, the luma plane is first
    shrunk so its longer side is at most that many pixels.
    """

    check_buffer(buf, image=True)
    if max_size is not None and int(max_size) <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")

    gray = _luma_255(buf)
    if max_size is not None and max(buf.width, buf.height) > int(max_size):
        factor = float(max_size) / float(max(buf.width, buf.height))
        size = (max(1, int(round(buf.width * factor))), max(1, int(round(buf.height * factor))))
        gray = cv2.resize(gray, size, interpolation=cv2.INTER_AREA)

    score = float(cv2.Laplacian(gray.astype(np.float64), cv2.CV_64F).var())
    report = BlurReport(score=score, threshold=float(threshold), is_blurry=score < float(threshold))
    logger.debug("blur score %.2f (threshold %.2f)", score, report.threshold)
    return report
