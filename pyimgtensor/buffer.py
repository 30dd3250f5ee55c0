from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from pyimgtensor.errors import DtypeError, ShapeError

IMAGE_CHANNELS = (1, 3, 4)


class Layout(str, Enum):
    """Memory ordering of a pixel tensor."""

    HWC = "HWC"
    CHW = "CHW"


class DType(str, Enum):
    """Sample type stored in a :class:`PixelBuffer`."""

    UINT8 = "uint8"
    FLOAT32 = "float32"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def itemsize(self) -> int:
        return int(self.numpy_dtype.itemsize)


def parse_layout(raw: str | Layout) -> Layout:
    if isinstance(raw, Layout):
        return raw
    text = str(raw).strip().upper()
    # Batched spellings are accepted for single images.
    if text in ("NHWC", "NCHW"):
        text = text[1:]
    try:
        return Layout(text)
    except Exception as exc:  # noqa: BLE001 - value validation helper
        raise ShapeError(f"Unknown layout: {raw!r}. Expected 'HWC' or 'CHW'.") from exc


def parse_dtype(raw: str | DType) -> DType:
    if isinstance(raw, DType):
        return raw
    try:
        return DType(str(raw).strip().lower())
    except Exception as exc:  # noqa: BLE001 - value validation helper
        raise DtypeError(f"Unknown dtype: {raw!r}. Expected 'uint8' or 'float32'.") from exc


@dataclass(frozen=True)
class CropRegion:
    """Rectangle in source pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return int(self.x + self.width)

    @property
    def bottom(self) -> int:
        return int(self.y + self.height)


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """Decoded pixel samples plus shape/layout/dtype metadata.

    `data` is stored as a flat, read-only numpy array. Construction does not
    enforce the ``len(data) == width * height * channels`` invariant so that
    :func:`pyimgtensor.validation.validate` can report on foreign buffers;
    every operation checks it before touching the samples.

    Callers handing in an existing array transfer ownership: the buffer keeps
    a read-only view and does not copy.
    """

    data: NDArray
    width: int
    height: int
    channels: int
    layout: Layout = Layout.HWC
    dtype: DType = DType.UINT8
    normalized: bool = False

    def __post_init__(self) -> None:
        arr = np.asarray(self.data)
        if arr.ndim != 1:
            arr = arr.reshape(-1)
        if arr.flags.writeable:
            arr = arr.view()
            arr.flags.writeable = False
        object.__setattr__(self, "data", arr)
        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))
        object.__setattr__(self, "channels", int(self.channels))
        object.__setattr__(self, "layout", parse_layout(self.layout))
        object.__setattr__(self, "dtype", parse_dtype(self.dtype))
        object.__setattr__(self, "normalized", bool(self.normalized))

    # ------------------------------------------------------------------ shape
    @property
    def expected_length(self) -> int:
        return int(self.width * self.height * self.channels)

    @property
    def shape(self) -> tuple[int, int, int]:
        if self.layout is Layout.HWC:
            return (self.height, self.width, self.channels)
        return (self.channels, self.height, self.width)

    @property
    def pixel_count(self) -> int:
        return int(self.width * self.height)

    @property
    def nbytes(self) -> int:
        return int(self.data.size * self.dtype.itemsize)

    # ----------------------------------------------------------------- access
    def values(self) -> NDArray:
        """Flat samples in the declared storage dtype."""

        target = self.dtype.numpy_dtype
        if self.data.dtype == target:
            return self.data
        return np.asarray(self.data, dtype=target)

    def to_array(self) -> NDArray:
        """Samples reshaped to ``(H, W, C)`` or ``(C, H, W)`` per layout."""

        if self.data.size != self.expected_length:
            raise ShapeError(
                f"data length {self.data.size} does not match "
                f"{self.width}x{self.height}x{self.channels}={self.expected_length}"
            )
        return self.values().reshape(self.shape)

    def to_hwc_array(self) -> NDArray:
        arr = self.to_array()
        if self.layout is Layout.CHW:
            return np.transpose(arr, (1, 2, 0))
        return arr

    # ------------------------------------------------------------ constructors
    @classmethod
    def from_array(
        cls,
        array: Any,
        *,
        layout: str | Layout = Layout.HWC,
        normalized: bool = False,
        dtype: Optional[str | DType] = None,
    ) -> "PixelBuffer":
        """Build a buffer from a 2D ``(H, W)`` or 3D array in `layout` order."""

        arr = np.asarray(array)
        lay = parse_layout(layout)
        if arr.ndim == 2:
            arr = arr[..., None] if lay is Layout.HWC else arr[None, ...]
        if arr.ndim != 3:
            raise ShapeError(f"Expected a 2D or 3D array, got shape {arr.shape}")

        if dtype is None:
            if arr.dtype == np.uint8:
                target = DType.UINT8
            elif np.issubdtype(arr.dtype, np.floating):
                target = DType.FLOAT32
            else:
                raise DtypeError(
                    f"Cannot infer buffer dtype from array dtype {arr.dtype}; pass dtype explicitly"
                )
        else:
            target = parse_dtype(dtype)

        if lay is Layout.HWC:
            height, width, channels = arr.shape
        else:
            channels, height, width = arr.shape

        flat = np.ascontiguousarray(arr, dtype=target.numpy_dtype).reshape(-1)
        return cls(
            data=flat,
            width=int(width),
            height=int(height),
            channels=int(channels),
            layout=lay,
            dtype=target,
            normalized=bool(normalized) if target is DType.FLOAT32 else False,
        )

    def with_array(self, array: NDArray, **changes: Any) -> "PixelBuffer":
        """Return a new buffer sharing this one's metadata unless overridden."""

        arr = np.asarray(array)
        meta: dict[str, Any] = {
            "layout": self.layout,
            "normalized": self.normalized,
            "dtype": self.dtype,
        }
        meta.update(changes)
        return PixelBuffer.from_array(arr, **meta)

    def replace(self, **changes: Any) -> "PixelBuffer":
        return replace(self, **changes)

    # ------------------------------------------------------------------ dunder
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and self.channels == other.channels
            and self.layout is other.layout
            and self.dtype is other.dtype
            and self.normalized == other.normalized
            and np.array_equal(self.data, other.data)
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"PixelBuffer(width={self.width}, height={self.height}, channels={self.channels}, "
            f"layout={self.layout.value}, dtype={self.dtype.value}, normalized={self.normalized})"
        )
