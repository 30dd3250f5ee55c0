"""Input/output collaborators.

Callers declare in-memory formats explicitly (no guessing) and encoded
images are decoded with Pillow into :class:`~pyimgtensor.buffer.PixelBuffer`.
The torch bridge lives in :mod:`pyimgtensor.inputs.torch_ops` and is only
imported on demand.
"""

from __future__ import annotations

from .decode import ImageSource, decode_bytes, decode_source, encode_buffer, read_uri_bytes
from .image_format import ImageFormat, buffer_from_numpy, parse_image_format

__all__ = [
    "ImageFormat",
    "ImageSource",
    "buffer_from_numpy",
    "decode_bytes",
    "decode_source",
    "encode_buffer",
    "parse_image_format",
    "read_uri_bytes",
]
