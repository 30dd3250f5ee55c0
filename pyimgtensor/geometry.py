"""Crop family, patch/channel extraction, mirroring and letterboxing.

All regions are strict: a region that does not fit inside the source raises
:class:`BoundsError` instead of being clamped, so every crop in a batch has
exactly the requested shape.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Union

import cv2
import numpy as np
from numpy.typing import NDArray

from pyimgtensor.buffer import CropRegion, Layout, PixelBuffer
from pyimgtensor.config.options import LETTERBOX_COLOR, parse_region
from pyimgtensor.errors import BoundsError, ChannelIndexError, ShapeError
from pyimgtensor.validation import check_buffer

logger = logging.getLogger(__name__)

FIVE_CROP_NAMES = ("top_left", "top_right", "bottom_left", "bottom_right", "center")
TEN_CROP_NAMES = FIVE_CROP_NAMES + tuple(f"{name}_flipped" for name in FIVE_CROP_NAMES)

FlipDirection = Literal["horizontal", "vertical", "both"]
RegionLike = Union[CropRegion, Mapping[str, Any]]

_FLIP_CODES = {"horizontal": 1, "vertical": 0, "both": -1}


@dataclass(frozen=True)
class Crop:
    """A crop together with where it came from."""

    region: CropRegion
    buffer: PixelBuffer


@dataclass(frozen=True)
class GridPatch:
    row: int
    column: int
    region: CropRegion
    buffer: PixelBuffer


def _slice(arr: NDArray, layout: Layout, region: CropRegion) -> NDArray:
    ys = slice(region.y, region.bottom)
    xs = slice(region.x, region.right)
    if layout is Layout.HWC:
        return arr[ys, xs, :]
    return arr[:, ys, xs]


def _check_region(buf: PixelBuffer, region: CropRegion) -> None:
    if region.width <= 0 or region.height <= 0:
        raise ShapeError(f"region size must be positive, got {region.width}x{region.height}")
    if (
        region.x < 0
        or region.y < 0
        or region.right > buf.width
        or region.bottom > buf.height
    ):
        raise BoundsError(
            f"region x={region.x}, y={region.y}, {region.width}x{region.height} "
            f"exceeds source bounds {buf.width}x{buf.height}"
        )


def _check_crop_size(buf: PixelBuffer, crop_width: int, crop_height: int) -> tuple[int, int]:
    cw, ch = int(crop_width), int(crop_height)
    if cw <= 0 or ch <= 0:
        raise ShapeError(f"crop size must be positive, got {cw}x{ch}")
    if cw > buf.width or ch > buf.height:
        raise BoundsError(f"crop size {cw}x{ch} exceeds source {buf.width}x{buf.height}")
    return cw, ch


def extract_patch(buf: PixelBuffer, region: RegionLike) -> PixelBuffer:
    """Copy a rectangular region out of `buf`."""

    check_buffer(buf)
    reg = parse_region(region)
    _check_region(buf, reg)
    return buf.with_array(_slice(buf.to_array(), buf.layout, reg))


def five_crop_regions(width: int, height: int, crop_width: int, crop_height: int) -> list[CropRegion]:
    """Regions in contract order: top-left, top-right, bottom-left, bottom-right, center."""

    right = width - crop_width
    bottom = height - crop_height
    origins = [
        (0, 0),
        (right, 0),
        (0, bottom),
        (right, bottom),
        (right // 2, bottom // 2),
    ]
    return [CropRegion(x=x, y=y, width=crop_width, height=crop_height) for x, y in origins]


def five_crop(buf: PixelBuffer, crop_width: int, crop_height: int) -> list[PixelBuffer]:
    check_buffer(buf)
    cw, ch = _check_crop_size(buf, crop_width, crop_height)
    arr = buf.to_array()
    return [
        buf.with_array(_slice(arr, buf.layout, region))
        for region in five_crop_regions(buf.width, buf.height, cw, ch)
    ]


def ten_crop(
    buf: PixelBuffer,
    crop_width: int,
    crop_height: int,
    *,
    include_flips: bool = True,
) -> list[PixelBuffer]:
    """Five crops of the source followed by five crops of its horizontal mirror.

    The whole source is mirrored before cropping, so the sixth crop is the
    top-left corner of the mirrored image. With ``include_flips=False`` only
    the first five crops are returned.
    """

    crops = five_crop(buf, crop_width, crop_height)
    if not include_flips:
        return crops
    return crops + five_crop(flip(buf, "horizontal"), crop_width, crop_height)


def extract_channel(buf: PixelBuffer, channel_index: int) -> PixelBuffer:
    """Return a single-channel buffer holding channel `channel_index`."""

    check_buffer(buf)
    idx = int(channel_index)
    if idx < 0 or idx >= buf.channels:
        raise ChannelIndexError(
            f"channel index {idx} out of range for buffer with {buf.channels} channels"
        )
    arr = buf.to_array()
    plane = arr[:, :, idx] if buf.layout is Layout.HWC else arr[idx]
    return buf.with_array(plane)


def flip(buf: PixelBuffer, direction: FlipDirection = "horizontal") -> PixelBuffer:
    check_buffer(buf)
    code = _FLIP_CODES.get(str(direction))
    if code is None:
        raise ValueError(f"Unknown flip direction: {direction!r}")

    hwc = np.ascontiguousarray(buf.to_hwc_array())
    flipped = cv2.flip(hwc, code).reshape(hwc.shape)
    if buf.layout is Layout.CHW:
        flipped = np.transpose(flipped, (2, 0, 1))
    return buf.with_array(flipped)


def random_crop(
    buf: PixelBuffer,
    width: int,
    height: int,
    *,
    seed: int,
    count: int = 1,
) -> list[Crop]:
    """Draw `count` crops at positions sampled from a generator seeded by `seed`."""

    check_buffer(buf)
    cw, ch = _check_crop_size(buf, width, height)
    if int(count) < 1:
        raise ValueError(f"count must be >= 1, got {count}")

    rng = np.random.default_rng(int(seed))
    arr = buf.to_array()
    max_x = buf.width - cw
    max_y = buf.height - ch
    crops: list[Crop] = []
    for _ in range(int(count)):
        x = int(rng.integers(0, max_x + 1))
        y = int(rng.integers(0, max_y + 1))
        region = CropRegion(x=x, y=y, width=cw, height=ch)
        crops.append(Crop(region=region, buffer=buf.with_array(_slice(arr, buf.layout, region))))
    return crops


def _pad_to(arr: NDArray, layout: Layout, height: int, width: int) -> NDArray:
    if layout is Layout.HWC:
        pad = ((0, height - arr.shape[0]), (0, width - arr.shape[1]), (0, 0))
    else:
        pad = ((0, 0), (0, height - arr.shape[1]), (0, width - arr.shape[2]))
    return np.pad(arr, pad, mode="constant", constant_values=0)


def extract_grid(
    buf: PixelBuffer,
    rows: int,
    columns: int,
    *,
    overlap: int = 0,
    include_partial: bool = False,
) -> list[GridPatch]:
    """Split `buf` into a ``rows x columns`` grid of equally sized patches.

    Patch size is ``(size + overlap * (n - 1)) // n`` per axis and patches
    advance by ``patch - overlap``. Edge patches that would run past the
    source are skipped unless `include_partial`, in which case they are
    zero-padded on the bottom/right to the full patch size.
    """

    check_buffer(buf)
    n_rows, n_cols, ov = int(rows), int(columns), int(overlap)
    if n_rows < 1 or n_cols < 1:
        raise ValueError(f"rows/columns must be >= 1, got {(n_rows, n_cols)}")
    if ov < 0:
        raise ValueError(f"overlap must be non-negative, got {ov}")

    patch_w = (buf.width + ov * (n_cols - 1)) // n_cols
    patch_h = (buf.height + ov * (n_rows - 1)) // n_rows
    if patch_w <= 0 or patch_h <= 0:
        raise ShapeError(f"grid {n_rows}x{n_cols} with overlap {ov} yields empty patches")
    stride_x = max(1, patch_w - ov)
    stride_y = max(1, patch_h - ov)

    arr = buf.to_array()
    patches: list[GridPatch] = []
    for row in range(n_rows):
        for col in range(n_cols):
            x, y = col * stride_x, row * stride_y
            partial = x + patch_w > buf.width or y + patch_h > buf.height
            if partial and not include_partial:
                continue
            region = CropRegion(
                x=x,
                y=y,
                width=min(patch_w, buf.width - x),
                height=min(patch_h, buf.height - y),
            )
            if region.width <= 0 or region.height <= 0:
                continue
            tile = _slice(arr, buf.layout, region)
            if partial:
                tile = _pad_to(tile, buf.layout, patch_h, patch_w)
            patches.append(GridPatch(row=row, column=col, region=region, buffer=buf.with_array(tile)))

    logger.debug("extract_grid %dx%d -> %d patches of %dx%d", n_rows, n_cols, len(patches), patch_w, patch_h)
    return patches


BOX_FORMATS = ("xyxy", "xywh", "cxcywh")


@dataclass(frozen=True)
class LetterboxInfo:
    """How a letterboxed image maps back onto its source.

    `padding` is ``(left, top, right, bottom)``; sizes are ``(width, height)``.
    `scale_x`/`scale_y` are the exact per-axis ratios after rounding to whole
    pixels (and to the stride), which is what box mapping uses.
    """

    scale: float
    scale_x: float
    scale_y: float
    padding: tuple[int, int, int, int]
    original_size: tuple[int, int]
    letterboxed_size: tuple[int, int]

    @property
    def offset(self) -> tuple[int, int]:
        return self.padding[0], self.padding[1]

    @property
    def target_size(self) -> tuple[int, int]:
        left, top, right, bottom = self.padding
        w, h = self.letterboxed_size
        return w + left + right, h + top + bottom


@dataclass(frozen=True)
class Letterbox:
    buffer: PixelBuffer
    info: LetterboxInfo


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def _pad_values(buf: PixelBuffer, pad_color: Any) -> tuple[float, ...]:
    values = [float(v) for v in np.atleast_1d(np.asarray(pad_color, dtype=np.float64))]
    if not values:
        raise ValueError("pad_color must hold at least one value")
    color_channels = 3 if buf.channels == 4 else buf.channels
    if len(values) == 1:
        values = values * color_channels
    if len(values) < color_channels:
        raise ValueError(f"pad_color needs {color_channels} values, got {len(values)}")
    values = values[: buf.channels]
    if len(values) < buf.channels:
        # Padding is opaque.
        values.append(255.0)
    if buf.normalized:
        values = [v / 255.0 for v in values]
    return tuple(values)


def letterbox(
    buf: PixelBuffer,
    target_width: int,
    target_height: int,
    *,
    pad_color: Any = LETTERBOX_COLOR,
    scale_up: bool = True,
    stride: int | None = None,
    center: bool = True,
) -> Letterbox:
    """Resize `buf` to fit the target box keeping its aspect ratio, then pad.

    The scale is ``min(target_w / w, target_h / h)``, capped at 1 unless
    `scale_up`. With `stride`, the resized size is rounded up to a multiple
    of it (never past the target). Padding is split evenly when `center`,
    otherwise it all goes right and bottom. `pad_color` is on the 0..255
    scale; a missing alpha value pads opaque.
    """

    check_buffer(buf, image=True)
    tw, th = int(target_width), int(target_height)
    if tw <= 0 or th <= 0:
        raise ShapeError(f"letterbox target must be positive, got {tw}x{th}")
    if stride is not None and int(stride) <= 0:
        raise ValueError(f"stride must be positive, got {stride}")

    scale = min(tw / buf.width, th / buf.height)
    if not scale_up:
        scale = min(scale, 1.0)
    new_w = max(1, min(tw, _round_half_up(buf.width * scale)))
    new_h = max(1, min(th, _round_half_up(buf.height * scale)))
    if stride is not None:
        s = int(stride)
        new_w = min(tw, -(-new_w // s) * s)
        new_h = min(th, -(-new_h // s) * s)

    pad_w, pad_h = tw - new_w, th - new_h
    left, top = (pad_w // 2, pad_h // 2) if center else (0, 0)
    right, bottom = pad_w - left, pad_h - top

    hwc = np.ascontiguousarray(buf.to_hwc_array())
    if (new_w, new_h) != (buf.width, buf.height):
        hwc = cv2.resize(hwc, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
    value = _pad_values(buf, pad_color)
    padded = cv2.copyMakeBorder(
        hwc, top, bottom, left, right, cv2.BORDER_CONSTANT, value=value + (0.0,) * (4 - len(value))
    )
    padded = padded.reshape(th, tw, buf.channels)
    if buf.layout is Layout.CHW:
        padded = np.transpose(padded, (2, 0, 1))

    info = LetterboxInfo(
        scale=float(scale),
        scale_x=new_w / buf.width,
        scale_y=new_h / buf.height,
        padding=(left, top, right, bottom),
        original_size=(buf.width, buf.height),
        letterboxed_size=(new_w, new_h),
    )
    logger.debug("letterbox %dx%d -> %dx%d padding=%s", buf.width, buf.height, tw, th, info.padding)
    return Letterbox(buffer=buf.with_array(padded), info=info)


def _to_xyxy(boxes: NDArray, box_format: str) -> NDArray:
    if box_format == "xyxy":
        return boxes.copy()
    out = np.empty_like(boxes)
    if box_format == "xywh":
        out[:, :2] = boxes[:, :2]
        out[:, 2:] = boxes[:, :2] + boxes[:, 2:]
    else:
        half = boxes[:, 2:] / 2.0
        out[:, :2] = boxes[:, :2] - half
        out[:, 2:] = boxes[:, :2] + half
    return out


def _from_xyxy(boxes: NDArray, box_format: str) -> NDArray:
    if box_format == "xyxy":
        return boxes
    out = np.empty_like(boxes)
    size = boxes[:, 2:] - boxes[:, :2]
    if box_format == "xywh":
        out[:, :2] = boxes[:, :2]
    else:
        out[:, :2] = boxes[:, :2] + size / 2.0
    out[:, 2:] = size
    return out


def reverse_letterbox(
    boxes: Any,
    info: LetterboxInfo,
    *,
    box_format: str = "xyxy",
    clip: bool = True,
) -> NDArray:
    """Map boxes from letterboxed coordinates back onto the source image.

    `boxes` is ``(N, 4+)`` (or a single box of 4+ values); only the first
    four columns are coordinates and any extra columns (scores, classes)
    are passed through. With `clip`, corners are clamped to the source.
    """

    fmt = str(box_format).lower()
    if fmt not in BOX_FORMATS:
        raise ValueError(f"Unknown box format: {box_format!r}. Expected one of {', '.join(BOX_FORMATS)}.")
    arr = np.asarray(boxes, dtype=np.float64)
    single = arr.ndim == 1
    arr = np.atleast_2d(arr)
    if arr.ndim != 2 or arr.shape[1] < 4:
        raise ShapeError(f"boxes must have shape (N, 4+), got {np.shape(boxes)}")

    out = arr.copy()
    xyxy = _to_xyxy(arr[:, :4], fmt)
    left, top = info.offset
    xyxy[:, [0, 2]] = (xyxy[:, [0, 2]] - left) / info.scale_x
    xyxy[:, [1, 3]] = (xyxy[:, [1, 3]] - top) / info.scale_y
    if clip:
        w, h = info.original_size
        xyxy[:, [0, 2]] = np.clip(xyxy[:, [0, 2]], 0.0, float(w))
        xyxy[:, [1, 3]] = np.clip(xyxy[:, [1, 3]], 0.0, float(h))
    out[:, :4] = _from_xyxy(xyxy, fmt)
    return out[0] if single else out
