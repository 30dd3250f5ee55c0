from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from pyimgtensor.buffer import DType, Layout, PixelBuffer
from pyimgtensor.errors import ShapeError
from pyimgtensor.validation import check_buffer


@dataclass(frozen=True, eq=False)
class Tensor:
    """Flat samples with an explicit row-major shape."""

    data: NDArray
    shape: tuple[int, ...]

    def to_array(self) -> NDArray:
        return self.data.reshape(self.shape)


@dataclass(frozen=True, eq=False)
class BatchBuffer:
    """Same-shape buffers stacked along a new leading batch axis."""

    data: NDArray
    batch_size: int
    width: int
    height: int
    channels: int
    layout: Layout
    dtype: DType
    normalized: bool = False

    @property
    def shape(self) -> tuple[int, int, int, int]:
        if self.layout is Layout.HWC:
            return (self.batch_size, self.height, self.width, self.channels)
        return (self.batch_size, self.channels, self.height, self.width)

    @property
    def nbytes(self) -> int:
        return int(self.data.size * self.dtype.itemsize)

    def to_array(self) -> NDArray:
        return self.data.reshape(self.shape)


def _check_permutation(shape: Sequence[int], order: Sequence[int]) -> None:
    if len(order) != len(shape):
        raise ShapeError(f"order has {len(order)} axes but shape has {len(shape)}")
    if sorted(int(o) for o in order) != list(range(len(shape))):
        raise ShapeError(f"order {list(order)} is not a permutation of 0..{len(shape) - 1}")


def permute(data: Any, shape: Optional[Sequence[int]], order: Sequence[int]) -> Tensor:
    """Reorder the axes of a flat row-major tensor.

    `order[i]` names the input axis that becomes output axis `i`, so the
    output shape is ``[shape[o] for o in order]``. A :class:`PixelBuffer` may be
    passed as `data`; its layout shape is used when `shape` is None.
    """

    if isinstance(data, PixelBuffer):
        check_buffer(data)
        if shape is None:
            shape = data.shape
        flat = data.values()
    else:
        flat = np.asarray(data).reshape(-1)
    if shape is None:
        raise ShapeError("shape is required for raw arrays")

    dims = tuple(int(s) for s in shape)
    if any(d < 0 for d in dims):
        raise ShapeError(f"shape must be non-negative, got {dims}")
    _check_permutation(dims, order)
    expected = int(np.prod(dims, dtype=np.int64))
    if flat.size != expected:
        raise ShapeError(f"data length {flat.size} does not match shape {dims} (expected {expected})")

    axes = tuple(int(o) for o in order)
    out = np.ascontiguousarray(flat.reshape(dims).transpose(axes)).reshape(-1)
    return Tensor(data=out, shape=tuple(dims[a] for a in axes))


def concatenate_to_batch(buffers: Sequence[PixelBuffer]) -> BatchBuffer:
    """Stack buffers into one batch tensor with a leading batch axis.

    Every buffer must share width, height, channels, layout, dtype and
    normalization scale with the first one.
    """

    items = list(buffers)
    if not items:
        raise ShapeError("cannot concatenate an empty sequence of buffers")

    first = check_buffer(items[0])
    for i, buf in enumerate(items[1:], start=1):
        check_buffer(buf)
        mismatches = [
            f"{name}: expected {want}, got {got}"
            for name, want, got in (
                ("width", first.width, buf.width),
                ("height", first.height, buf.height),
                ("channels", first.channels, buf.channels),
                ("layout", first.layout.value, buf.layout.value),
                ("dtype", first.dtype.value, buf.dtype.value),
                ("normalized", first.normalized, buf.normalized),
            )
            if want != got
        ]
        if mismatches:
            raise ShapeError(f"buffer {i} is incompatible with buffer 0 ({'; '.join(mismatches)})")

    data = np.concatenate([buf.values() for buf in items])
    return BatchBuffer(
        data=data,
        batch_size=len(items),
        width=first.width,
        height=first.height,
        channels=first.channels,
        layout=first.layout,
        dtype=first.dtype,
        normalized=first.normalized,
    )


def split_batch(batch: BatchBuffer) -> list[PixelBuffer]:
    """Inverse of :func:`concatenate_to_batch`."""

    per_item = batch.width * batch.height * batch.channels
    if batch.data.size != per_item * batch.batch_size:
        raise ShapeError(
            f"batch data length {batch.data.size} does not match "
            f"{batch.batch_size}x{per_item}"
        )
    return [
        PixelBuffer(
            data=batch.data[i * per_item:(i + 1) * per_item],
            width=batch.width,
            height=batch.height,
            channels=batch.channels,
            layout=batch.layout,
            dtype=batch.dtype,
            normalized=batch.normalized,
        )
        for i in range(batch.batch_size)
    ]
