from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pyimgtensor.buffer import PixelBuffer
from pyimgtensor.tensor_ops import BatchBuffer
from pyimgtensor.utils.optional_deps import require
from pyimgtensor.validation import check_buffer


def _torch() -> Any:
    return require("torch", extra="torch", purpose="torch tensor conversion")


def to_torch(buf: PixelBuffer, *, device: Optional[str] = None):
    """Convert a buffer to a torch tensor shaped by its layout.

    HWC buffers become ``(H, W, C)`` tensors and CHW buffers ``(C, H, W)``.
    The dtype is kept (``torch.uint8`` or ``torch.float32``).
    """

    torch = _torch()
    check_buffer(buf)
    t = torch.from_numpy(np.array(buf.to_array(), copy=True))
    if device is not None:
        t = t.to(device)
    return t


def batch_to_torch(batch: BatchBuffer, *, device: Optional[str] = None):
    """Convert a :class:`BatchBuffer` to an ``NHWC`` or ``NCHW`` tensor."""

    torch = _torch()
    if not isinstance(batch, BatchBuffer):
        raise TypeError(f"Expected BatchBuffer, got {type(batch)}")
    t = torch.from_numpy(np.array(batch.to_array(), copy=True))
    if device is not None:
        t = t.to(device)
    return t
