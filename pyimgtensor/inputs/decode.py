"""Decode collaborator: turns an image source into a :class:`PixelBuffer`.

Decoding is backed by Pillow. Only local sources are handled here: file
paths, ``file://`` and ``data:`` URIs, encoded bytes, numpy arrays with an
explicit :class:`ImageFormat` and ready-made buffers. Network URIs are left to
the caller.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import unquote

import numpy as np
from PIL import Image, UnidentifiedImageError

from pyimgtensor.buffer import PixelBuffer
from pyimgtensor.cache.buffers import make_cache_key
from pyimgtensor.config.options import OptionReader
from pyimgtensor.errors import ShapeError, UnsupportedOperationError, ValidationError
from pyimgtensor.inputs.image_format import buffer_from_numpy
from pyimgtensor.layout import cast_dtype
from pyimgtensor.validation import check_buffer

logger = logging.getLogger(__name__)

_PIL_MODES = {1: "L", 3: "RGB", 4: "RGBA"}
_KEEP_MODES = ("L", "RGB", "RGBA")
_NETWORK_SCHEMES = ("http://", "https://", "ftp://")


@dataclass(frozen=True)
class ImageSource:
    """Where an image comes from.

    Exactly one of `uri` / `inline_data` is expected. `inline_data` may hold
    encoded bytes, a numpy array (with ``decode_hints["format"]``) or a
    :class:`PixelBuffer`. Recognized hints: ``format`` (numpy input format)
    and ``mode`` (Pillow mode to convert to, e.g. ``"L"`` or ``"RGB"``).
    """

    uri: Optional[str] = None
    inline_data: Any = None
    decode_hints: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "ImageSource":
        if isinstance(data, ImageSource):
            return data
        if isinstance(data, (str, Path)):
            return cls(uri=str(data))
        if isinstance(data, (bytes, bytearray, np.ndarray, PixelBuffer)):
            return cls(inline_data=data)

        r = OptionReader(data, name="source")
        uri = r.get_str("uri", "path", default=None)
        inline = r.get("inline_data", "inlineData", "data", default=None)
        b64 = r.get_str("base64", default=None)
        hints = r.get("decode_hints", "decodeHints", "hints", default=None) or {}
        if b64 is not None:
            try:
                inline = base64.b64decode(b64, validate=True)
            except (binascii.Error, ValueError):
                r.issues.append("source.base64 is not valid base64")
        if not isinstance(hints, Mapping):
            r.issues.append(f"source.decode_hints must be a dict/object, got {type(hints).__name__}")
            hints = {}
        if uri is None and inline is None:
            r.issues.append("source requires a uri or inline data")
        r.finish()
        return cls(uri=uri, inline_data=inline, decode_hints=dict(hints))

    def cache_key(self) -> Optional[str]:
        """Key for the decode cache, or None when the source is not cacheable."""

        inline = self.inline_data
        if inline is not None:
            if not isinstance(inline, (bytes, bytearray, memoryview)):
                return None
            inline = bytes(inline)
        return make_cache_key(self.uri, inline_data=inline, hints=self.decode_hints)


def _data_uri_bytes(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise ValidationError([f"malformed data URI: {uri[:32]!r}"])
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(["data URI payload is not valid base64"]) from exc
    return unquote(payload).encode("latin-1")


def read_uri_bytes(uri: str) -> bytes:
    text = str(uri)
    if text.startswith("data:"):
        return _data_uri_bytes(text)
    if text.lower().startswith(_NETWORK_SCHEMES):
        raise UnsupportedOperationError(f"network URIs are not decoded locally: {text}")
    if text.startswith("file://"):
        text = unquote(text[len("file://"):])
    path = Path(text)
    if not path.is_file():
        raise FileNotFoundError(f"Unable to read image: {text}")
    return path.read_bytes()


def _target_mode(img: Image.Image, requested: Optional[str]) -> str:
    if requested:
        return str(requested)
    if img.mode in _KEEP_MODES:
        return img.mode
    if img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        return "RGBA"
    if img.mode in ("I;16", "I", "F"):
        return "L"
    return "RGB"


def decode_bytes(data: bytes, *, mode: Optional[str] = None) -> PixelBuffer:
    """Decode encoded image bytes (PNG, JPEG, ...) into a uint8 HWC buffer."""

    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            target = _target_mode(img, mode)
            converted = img if img.mode == target else img.convert(target)
            arr = np.asarray(converted, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError([f"cannot decode image data: {exc}"]) from exc
    except ValueError as exc:
        raise ValidationError([f"cannot convert image to mode {mode!r}: {exc}"]) from exc
    return PixelBuffer.from_array(arr)


def decode_source(source: Any) -> PixelBuffer:
    """Resolve `source` (an :class:`ImageSource` or anything it accepts) to pixels."""

    src = ImageSource.from_dict(source)
    hints = dict(src.decode_hints)
    inline = src.inline_data

    if isinstance(inline, PixelBuffer):
        return check_buffer(inline)
    if isinstance(inline, np.ndarray):
        fmt = hints.get("format", hints.get("input_format"))
        if fmt is None:
            raise ValidationError(["numpy input requires decode_hints['format']"])
        return buffer_from_numpy(inline, input_format=fmt)

    mode = hints.get("mode")
    if inline is not None:
        if not isinstance(inline, (bytes, bytearray, memoryview)):
            raise ValidationError([f"unsupported inline data of type {type(inline).__name__}"])
        buf = decode_bytes(bytes(inline), mode=mode)
    elif src.uri is not None:
        buf = decode_bytes(read_uri_bytes(src.uri), mode=mode)
    else:
        raise ValidationError(["source requires a uri or inline data"])

    logger.debug("decoded %s -> %r", src.uri or "<inline>", buf)
    return buf


def encode_buffer(buf: PixelBuffer, format: str = "PNG", *, quality: Optional[int] = None) -> bytes:
    """Encode a 1/3/4-channel buffer to image bytes.

    Float buffers are cast to uint8 first (normalized input is rescaled).
    JPEG drops an alpha channel.
    """

    check_buffer(buf, image=True)
    u8 = cast_dtype(buf, "uint8")
    arr = np.ascontiguousarray(u8.to_hwc_array())
    if u8.channels == 1:
        arr = arr[:, :, 0]
    if u8.channels not in _PIL_MODES:
        raise ShapeError(f"cannot encode {u8.channels}-channel buffer")

    img = Image.fromarray(arr)
    fmt = str(format).upper()
    if fmt in ("JPG", "JPEG"):
        fmt = "JPEG"
        if img.mode == "RGBA":
            img = img.convert("RGB")

    save_kwargs: dict[str, Any] = {}
    if quality is not None:
        save_kwargs["quality"] = int(quality)
    out = BytesIO()
    try:
        img.save(out, format=fmt, **save_kwargs)
    except (KeyError, ValueError) as exc:
        raise UnsupportedOperationError(f"unsupported image format: {format!r}") from exc
    return out.getvalue()
