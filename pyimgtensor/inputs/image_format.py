from __future__ import annotations

from enum import Enum
from typing import Any

import numpy as np

from pyimgtensor.buffer import DType, Layout, PixelBuffer
from pyimgtensor.errors import DtypeError, ShapeError


class ImageFormat(str, Enum):
    """Supported explicit input formats for in-memory images."""

    BGR_U8_HWC = "bgr_u8_hwc"
    RGB_U8_HWC = "rgb_u8_hwc"
    RGBA_U8_HWC = "rgba_u8_hwc"
    GRAY_U8_HW = "gray_u8_hw"
    RGB_F32_CHW = "rgb_f32_chw"


def parse_image_format(raw: str | ImageFormat) -> ImageFormat:
    if isinstance(raw, ImageFormat):
        return raw
    try:
        return ImageFormat(str(raw).strip().lower())
    except Exception as exc:  # noqa: BLE001 - value validation helper
        raise ValueError(f"Unknown image format: {raw!r}") from exc


def _require_ndarray(image: Any) -> np.ndarray:
    if not isinstance(image, np.ndarray):
        raise TypeError(f"Expected np.ndarray, got {type(image)}")
    return image


def _require_u8(arr: np.ndarray, fmt: ImageFormat) -> None:
    if arr.dtype != np.uint8:
        raise DtypeError(f"Expected dtype=uint8 for {fmt.value}, got {arr.dtype}")


def buffer_from_numpy(image: Any, *, input_format: str | ImageFormat) -> PixelBuffer:
    """Wrap an in-memory image as a :class:`PixelBuffer`.

    The declared `input_format` is trusted and never guessed. BGR input is
    reordered to RGB; float CHW input must already lie in [0, 1] and becomes
    a normalized float32 CHW buffer.
    """

    fmt = parse_image_format(input_format)
    arr = _require_ndarray(image)

    if fmt is ImageFormat.GRAY_U8_HW:
        _require_u8(arr, fmt)
        if arr.ndim != 2:
            raise ShapeError(f"Expected shape (H,W) for {fmt.value}, got {arr.shape}")
        return PixelBuffer.from_array(arr, layout=Layout.HWC)

    if fmt in (ImageFormat.BGR_U8_HWC, ImageFormat.RGB_U8_HWC, ImageFormat.RGBA_U8_HWC):
        _require_u8(arr, fmt)
        channels = 4 if fmt is ImageFormat.RGBA_U8_HWC else 3
        if arr.ndim != 3 or arr.shape[2] != channels:
            raise ShapeError(f"Expected shape (H,W,{channels}) for {fmt.value}, got {arr.shape}")
        if fmt is ImageFormat.BGR_U8_HWC:
            arr = arr[..., ::-1]
        return PixelBuffer.from_array(np.ascontiguousarray(arr), layout=Layout.HWC)

    if fmt is ImageFormat.RGB_F32_CHW:
        if arr.ndim != 3 or arr.shape[0] != 3:
            raise ShapeError(f"Expected shape (3,H,W) for {fmt.value}, got {arr.shape}")
        if arr.dtype not in (np.float32, np.float64):
            raise DtypeError(f"Expected dtype=float32/float64 for {fmt.value}, got {arr.dtype}")
        max_val = float(np.max(arr))
        min_val = float(np.min(arr))
        if max_val > 1.0 + 1e-6 or min_val < 0.0 - 1e-6:
            raise DtypeError(
                f"Expected values in [0,1] for {fmt.value}. Got min={min_val:.6f}, max={max_val:.6f}."
            )
        return PixelBuffer.from_array(
            np.clip(arr, 0.0, 1.0), layout=Layout.CHW, dtype=DType.FLOAT32, normalized=True
        )

    raise RuntimeError(f"Unhandled image format: {fmt}")
