"""Built-in augmentation ops.

Every op has the signature ``(buf, params) -> PixelBuffer`` and reads its
parameters through :class:`~pyimgtensor.config.options.OptionReader`, so
unknown or mistyped keys are reported as :class:`ValidationError`.

Value ops work in the buffer's own units. Offsets such as the brightness
delta or the noise std are given as a fraction of the full value range
(255 for uint8 and unnormalized float32, 1.0 for normalized float32).
Results are clamped to the dtype's range: [0, 255] for uint8, [0, 1] for
normalized float32 and not at all for unnormalized float32.

Randomized ops require an explicit ``seed``.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from pyimgtensor.augmentation.registry import register_augmentation
from pyimgtensor.buffer import DType, Layout, PixelBuffer
from pyimgtensor.config.options import NORMALIZATION_PRESETS, NormalizationOptions, OptionReader
from pyimgtensor.errors import UnsupportedOperationError, ValidationError
from pyimgtensor.geometry import flip
from pyimgtensor.layout import normalize

_LUMA_WEIGHTS = np.asarray([0.299, 0.587, 0.114], dtype=np.float64)

# Counter-clockwise quarter turns -> cv2 rotate code.
_ROTATE_CODES = {
    1: cv2.ROTATE_90_COUNTERCLOCKWISE,
    2: cv2.ROTATE_180,
    3: cv2.ROTATE_90_CLOCKWISE,
}


def _full_scale(buf: PixelBuffer) -> float:
    return 1.0 if (buf.dtype is DType.FLOAT32 and buf.normalized) else 255.0


def _value_bounds(buf: PixelBuffer) -> Optional[tuple[float, float]]:
    if buf.dtype is DType.UINT8:
        return 0.0, 255.0
    if buf.normalized:
        return 0.0, 1.0
    return None


def _hwc_float(buf: PixelBuffer) -> NDArray:
    return buf.to_hwc_array().astype(np.float64)


def _from_hwc(buf: PixelBuffer, hwc: NDArray) -> PixelBuffer:
    """Clamp/round float64 HWC samples into `buf`'s dtype and layout."""

    values = np.asarray(hwc, dtype=np.float64)
    bounds = _value_bounds(buf)
    if bounds is not None:
        values = np.clip(values, bounds[0], bounds[1])
    if buf.dtype is DType.UINT8:
        values = np.rint(values)
    out = values.astype(buf.dtype.numpy_dtype)
    if buf.layout is Layout.CHW:
        out = np.transpose(out, (2, 0, 1))
    return buf.with_array(out)


def _seed(r: OptionReader) -> Any:
    return r.get_int("seed", required=True, minimum=0)


# --------------------------------------------------------------------- geometry
@register_augmentation("flip", tags=("geometric",))
def flip_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    r = OptionReader(params, name="flip")
    direction = r.get_str("direction", "mode", default="horizontal", choices=("horizontal", "vertical", "both"))
    r.finish()
    return flip(buf, direction)


@register_augmentation("hflip", aliases=("horizontal_flip",), tags=("geometric",))
def hflip_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    OptionReader(params, name="hflip").finish()
    return flip(buf, "horizontal")


@register_augmentation("vflip", aliases=("vertical_flip",), tags=("geometric",))
def vflip_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    OptionReader(params, name="vflip").finish()
    return flip(buf, "vertical")


@register_augmentation("rotate", aliases=("rotation",), tags=("geometric",))
def rotate_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Rotate by a multiple of 90 degrees; positive angles turn counter-clockwise."""

    r = OptionReader(params, name="rotate")
    angle = r.get_float("angle", "degrees", required=True)
    r.finish()

    turns = float(angle) / 90.0
    if not math.isfinite(turns) or turns != math.floor(turns):
        raise UnsupportedOperationError(
            f"rotate only supports multiples of 90 degrees, got {angle!r}"
        )
    k = int(turns) % 4
    if k == 0:
        return buf

    hwc = np.ascontiguousarray(buf.to_hwc_array())
    rotated = cv2.rotate(hwc, _ROTATE_CODES[k])
    new_h, new_w = (buf.width, buf.height) if k % 2 else (buf.height, buf.width)
    rotated = rotated.reshape(new_h, new_w, buf.channels)
    if buf.layout is Layout.CHW:
        rotated = np.transpose(rotated, (2, 0, 1))
    return buf.with_array(rotated)


# ----------------------------------------------------------------------- values
def _color_count(buf: PixelBuffer) -> int:
    return 3 if buf.channels == 4 else buf.channels


def _require_rgb(buf: PixelBuffer, name: str) -> None:
    if buf.channels not in (3, 4):
        raise UnsupportedOperationError(f"{name} requires 3 or 4 channels, got {buf.channels}")


def _shift_brightness(buf: PixelBuffer, hwc: NDArray, delta: float) -> None:
    hwc[..., :_color_count(buf)] += float(delta) * _full_scale(buf)


def _scale_contrast(buf: PixelBuffer, hwc: NDArray, factor: float) -> None:
    n_color = _color_count(buf)
    color = hwc[..., :n_color]
    mean = float(color.mean())
    hwc[..., :n_color] = mean + (color - mean) * float(factor)


def _scale_saturation(buf: PixelBuffer, hwc: NDArray, factor: float) -> None:
    rgb = hwc[..., :3]
    gray = (rgb @ _LUMA_WEIGHTS)[..., None]
    hwc[..., :3] = gray + (rgb - gray) * float(factor)


def _rotate_hue(buf: PixelBuffer, hwc: NDArray, delta: float) -> None:
    # Float HSV from cv2 keeps hue in degrees [0, 360).
    scale = _full_scale(buf)
    rgb = np.ascontiguousarray(hwc[..., :3] / scale, dtype=np.float32)
    hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)
    hsv[..., 0] = np.mod(hsv[..., 0] + float(delta) * 360.0, 360.0)
    hwc[..., :3] = cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB).astype(np.float64) * scale


@register_augmentation("brightness", tags=("color",))
def brightness_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Add ``delta * full_scale`` to every color sample (alpha is untouched)."""

    r = OptionReader(params, name="brightness")
    delta = r.get_float("delta", "value", required=True)
    r.finish()

    hwc = _hwc_float(buf)
    _shift_brightness(buf, hwc, delta)
    return _from_hwc(buf, hwc)


@register_augmentation("contrast", tags=("color",))
def contrast_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Scale distances from the mean by `factor` (1.0 leaves the image unchanged)."""

    r = OptionReader(params, name="contrast")
    factor = r.get_float("factor", "value", required=True)
    r.finish()
    if factor < 0:
        raise ValidationError([f"contrast.factor must be >= 0, got {factor}"])

    hwc = _hwc_float(buf)
    _scale_contrast(buf, hwc, factor)
    return _from_hwc(buf, hwc)


@register_augmentation("saturation", tags=("color",))
def saturation_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Blend each pixel with its luma: 0 gives grayscale, 1 is identity."""

    r = OptionReader(params, name="saturation")
    factor = r.get_float("factor", "value", required=True)
    r.finish()
    if factor < 0:
        raise ValidationError([f"saturation.factor must be >= 0, got {factor}"])
    _require_rgb(buf, "saturation")

    hwc = _hwc_float(buf)
    _scale_saturation(buf, hwc, factor)
    return _from_hwc(buf, hwc)


@register_augmentation("hue", aliases=("hue_shift",), tags=("color",))
def hue_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Rotate hue by `delta` turns of the color wheel (0.5 is 180 degrees)."""

    r = OptionReader(params, name="hue")
    delta = r.get_float("delta", "value", required=True)
    r.finish()
    _require_rgb(buf, "hue")

    hwc = _hwc_float(buf)
    _rotate_hue(buf, hwc, delta)
    return _from_hwc(buf, hwc)


def _jitter_range(r: OptionReader, key: str, *, multiplicative: bool) -> Optional[tuple[float, float]]:
    """A number ``v`` means ``[-v, v]`` (additive) or ``[max(0, 1 - v), 1 + v]``."""

    raw = r.get(key, default=None)
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        v = float(raw)
        if v < 0:
            r.issues.append(f"color_jitter.{key} must be >= 0, got {raw!r}")
            return None
        return (max(0.0, 1.0 - v), 1.0 + v) if multiplicative else (-v, v)
    if (
        isinstance(raw, (list, tuple))
        and len(raw) == 2
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in raw)
        and float(raw[0]) <= float(raw[1])
    ):
        lo, hi = float(raw[0]), float(raw[1])
        if multiplicative and lo < 0:
            r.issues.append(f"color_jitter.{key} factors must be >= 0, got {raw!r}")
            return None
        return lo, hi
    r.issues.append(f"color_jitter.{key} must be a number or a [min, max] pair, got {raw!r}")
    return None


@register_augmentation("color_jitter", aliases=("colorjitter",), randomized=True, tags=("color",))
def color_jitter_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Random brightness, contrast, saturation and hue, in that order.

    Each of ``brightness``/``hue`` (additive) and ``contrast``/``saturation``
    (multiplicative) takes a number or a ``[min, max]`` range. One value per
    adjustment is drawn in that order from a generator seeded by ``seed``;
    adjustments that are left out or land on their neutral value are skipped.
    """

    r = OptionReader(params, name="color_jitter")
    seed = _seed(r)
    ranges = {
        "brightness": _jitter_range(r, "brightness", multiplicative=False),
        "contrast": _jitter_range(r, "contrast", multiplicative=True),
        "saturation": _jitter_range(r, "saturation", multiplicative=True),
        "hue": _jitter_range(r, "hue", multiplicative=False),
    }
    hue_range = ranges["hue"]
    if hue_range is not None and not (-0.5 <= hue_range[0] and hue_range[1] <= 0.5):
        r.issues.append(f"color_jitter.hue must lie within [-0.5, 0.5], got {hue_range}")
    r.finish()

    rng = np.random.default_rng(int(seed))
    drawn: dict[str, float] = {}
    for name, bounds in ranges.items():
        if bounds is None:
            continue
        lo, hi = bounds
        drawn[name] = lo if lo == hi else float(rng.uniform(lo, hi))

    hwc = _hwc_float(buf)
    if drawn.get("brightness", 0.0) != 0.0:
        _shift_brightness(buf, hwc, drawn["brightness"])
    if drawn.get("contrast", 1.0) != 1.0:
        _scale_contrast(buf, hwc, drawn["contrast"])
    if drawn.get("saturation", 1.0) != 1.0:
        _require_rgb(buf, "color_jitter.saturation")
        _scale_saturation(buf, hwc, drawn["saturation"])
    if drawn.get("hue", 0.0) != 0.0:
        _require_rgb(buf, "color_jitter.hue")
        _rotate_hue(buf, hwc, drawn["hue"])
    return _from_hwc(buf, hwc)


@register_augmentation("noise", aliases=("gaussian_noise",), randomized=True, tags=("noise",))
def noise_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Additive noise drawn from a generator seeded by ``seed``.

    ``distribution`` is ``gaussian`` (``mean``/``std``) or ``uniform``
    (``[mean - std, mean + std]``); both are fractions of the full scale.
    """

    r = OptionReader(params, name="noise")
    seed = _seed(r)
    std = r.get_float("std", "stddev", "intensity", default=0.05)
    mean = r.get_float("mean", default=0.0)
    distribution = r.get_str("distribution", "type", default="gaussian", choices=("gaussian", "uniform"))
    if std is not None and std < 0:
        r.issues.append(f"noise.std must be >= 0, got {std}")
    r.finish()

    rng = np.random.default_rng(int(seed))
    hwc = _hwc_float(buf)
    n_color = _color_count(buf)
    scale = _full_scale(buf)
    shape = hwc[..., :n_color].shape
    if distribution == "uniform":
        noise = rng.uniform(mean - std, mean + std, size=shape)
    else:
        noise = rng.normal(mean, std, size=shape)
    hwc[..., :n_color] += noise * scale
    return _from_hwc(buf, hwc)


@register_augmentation("normalize", tags=("color",))
def normalize_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    r = OptionReader(params, name="normalize")
    preset = r.get_str("preset", default="scale", choices=NORMALIZATION_PRESETS)
    mean = r.get_floats("mean")
    std = r.get_floats("std")
    r.finish()
    return normalize(buf, NormalizationOptions(preset=preset, mean=mean, std=std))


@register_augmentation("cutout", aliases=("random_erasing",), randomized=True, tags=("occlusion",))
def cutout_op(buf: PixelBuffer, params: Mapping[str, Any]) -> PixelBuffer:
    """Fill ``num_cutouts`` random rectangles with ``fill_value``.

    Each rectangle covers a fraction of the image area drawn from
    ``[min_size, max_size]`` with a width/height ratio drawn from
    ``[min_aspect, max_aspect]``; it is clipped to the image.
    """

    r = OptionReader(params, name="cutout")
    seed = _seed(r)
    num = r.get_int("num_cutouts", "numCutouts", default=1, minimum=0)
    min_size = r.get_float("min_size", "minSize", default=0.02)
    max_size = r.get_float("max_size", "maxSize", default=0.33)
    min_aspect = r.get_float("min_aspect", "minAspect", default=0.3)
    max_aspect = r.get_float("max_aspect", "maxAspect", default=3.3)
    fill_raw = r.get("fill_value", "fillValue", default=0)
    if min_size is not None and max_size is not None and not 0.0 < min_size <= max_size <= 1.0:
        r.issues.append(f"cutout size range must satisfy 0 < min_size <= max_size <= 1, got {(min_size, max_size)}")
    if min_aspect is not None and max_aspect is not None and not 0.0 < min_aspect <= max_aspect:
        r.issues.append(f"cutout aspect range must satisfy 0 < min_aspect <= max_aspect, got {(min_aspect, max_aspect)}")
    fill = np.zeros(buf.channels, dtype=np.float64)
    try:
        fill[:] = np.broadcast_to(np.asarray(fill_raw, dtype=np.float64).reshape(-1), (buf.channels,))
    except (TypeError, ValueError):
        r.issues.append(
            f"cutout.fill_value must be a number or {buf.channels} numbers, got {fill_raw!r}"
        )
    r.finish()

    rng = np.random.default_rng(int(seed))
    hwc = _hwc_float(buf)
    area = float(buf.width * buf.height)
    for _ in range(int(num)):
        target = rng.uniform(min_size, max_size) * area
        aspect = rng.uniform(min_aspect, max_aspect)
        cw = min(int(math.sqrt(target * aspect)), buf.width)
        ch = min(int(math.sqrt(target / aspect)), buf.height)
        if cw <= 0 or ch <= 0:
            continue
        x = int(rng.integers(0, buf.width - cw + 1))
        y = int(rng.integers(0, buf.height - ch + 1))
        hwc[y:y + ch, x:x + cw, :] = fill
    return _from_hwc(buf, hwc)
