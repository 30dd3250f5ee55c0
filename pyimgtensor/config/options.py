"""Typed option structs for every operation.

Callers at the host boundary pass loose mappings (JSON/YAML payloads, keyword
dicts). Each struct offers ``from_dict`` which accepts snake_case keys as well
as the camelCase spelling used by existing clients, rejects unknown keys and
reports every problem at once through :class:`ValidationError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from pyimgtensor.buffer import CropRegion, DType, Layout, parse_dtype, parse_layout
from pyimgtensor.errors import TensorCoreError, ValidationError

NORMALIZATION_PRESETS = ("raw", "scale", "imagenet", "tensorflow", "custom")
QUANT_DTYPES = ("int8", "uint8", "int16")

DEFAULT_CACHE_BYTES = 256 * 1024 * 1024

_MISSING = object()


class OptionReader:
    """Collects typed values from a mapping and accumulates issues."""

    def __init__(self, data: Any, *, name: str) -> None:
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ValidationError([f"{name} must be a dict/object, got {type(data).__name__}"])
        self._data = dict(data)
        self._name = name
        self._used: set[str] = set()
        self.issues: list[str] = []

    def _raw(self, keys: tuple[str, ...]) -> tuple[str, Any]:
        for key in keys:
            if key in self._data:
                self._used.add(key)
                return key, self._data[key]
        return keys[0], _MISSING

    def get(self, *keys: str, default: Any = None) -> Any:
        _, value = self._raw(keys)
        return default if value is _MISSING else value

    def get_int(
        self,
        *keys: str,
        default: Any = None,
        minimum: Optional[int] = None,
        required: bool = False,
    ) -> Any:
        key, value = self._raw(keys)
        if value is _MISSING or value is None:
            if required:
                self.issues.append(f"{self._name}.{key} is required")
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            self.issues.append(f"{self._name}.{key} must be an integer, got {value!r}")
            return default
        out = int(value)
        if minimum is not None and out < minimum:
            self.issues.append(f"{self._name}.{key} must be >= {minimum}, got {out}")
        return out

    def get_float(self, *keys: str, default: Any = None, required: bool = False) -> Any:
        key, value = self._raw(keys)
        if value is _MISSING or value is None:
            if required:
                self.issues.append(f"{self._name}.{key} is required")
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.issues.append(f"{self._name}.{key} must be a number, got {value!r}")
            return default
        return float(value)

    def get_bool(self, *keys: str, default: bool = False) -> bool:
        key, value = self._raw(keys)
        if value is _MISSING or value is None:
            return default
        if not isinstance(value, bool):
            self.issues.append(f"{self._name}.{key} must be a boolean, got {value!r}")
            return default
        return value

    def get_str(self, *keys: str, default: Any = None, choices: Optional[tuple[str, ...]] = None) -> Any:
        key, value = self._raw(keys)
        if value is _MISSING or value is None:
            return default
        text = str(value).strip()
        if choices is not None and text.lower() not in choices:
            self.issues.append(
                f"{self._name}.{key} must be one of {', '.join(choices)}, got {value!r}"
            )
            return default
        return text.lower() if choices is not None else text

    def get_floats(self, *keys: str) -> Optional[tuple[float, ...]]:
        key, value = self._raw(keys)
        if value is _MISSING or value is None:
            return None
        if not isinstance(value, (list, tuple)) or not value:
            self.issues.append(f"{self._name}.{key} must be a non-empty list of numbers, got {value!r}")
            return None
        try:
            return tuple(float(v) for v in value)
        except Exception:  # noqa: BLE001 - validation boundary
            self.issues.append(f"{self._name}.{key} must contain numbers, got {value!r}")
            return None

    def finish(self) -> None:
        unknown = sorted(set(self._data) - self._used)
        for key in unknown:
            self.issues.append(f"{self._name}: unknown option {key!r}")
        if self.issues:
            raise ValidationError(self.issues)


def _typed(reader: OptionReader, factory: Any, **kwargs: Any) -> Any:
    reader.finish()
    try:
        return factory(**kwargs)
    except ValidationError:
        raise
    except TensorCoreError as exc:
        raise ValidationError([str(exc)]) from exc


@dataclass(frozen=True)
class NormalizationOptions:
    """How float samples are scaled.

    Presets:
    - ``raw``: cast only, values stay in [0, 255]
    - ``scale``: divide by 255 into [0, 1] (default)
    - ``imagenet``: scale, then standardize with ImageNet mean/std
    - ``tensorflow``: map into [-1, 1]
    - ``custom``: scale, then standardize with caller-provided `mean`/`std`
    """

    preset: str = "scale"
    mean: Optional[tuple[float, ...]] = None
    std: Optional[tuple[float, ...]] = None

    def __post_init__(self) -> None:
        preset = str(self.preset).lower()
        object.__setattr__(self, "preset", preset)
        issues: list[str] = []
        if preset not in NORMALIZATION_PRESETS:
            issues.append(
                f"normalization.preset must be one of {', '.join(NORMALIZATION_PRESETS)}, got {self.preset!r}"
            )
        if preset == "custom":
            if self.mean is None or self.std is None:
                issues.append("normalization preset 'custom' requires mean and std")
            elif len(self.mean) != len(self.std):
                issues.append(
                    f"normalization mean/std length mismatch: {len(self.mean)} vs {len(self.std)}"
                )
            elif any(float(s) == 0.0 for s in self.std):
                issues.append("normalization std must not contain zeros")
        if issues:
            raise ValidationError(issues)

    @classmethod
    def from_dict(cls, data: Any) -> "NormalizationOptions":
        if isinstance(data, str):
            data = {"preset": data}
        r = OptionReader(data, name="normalization")
        preset = r.get_str("preset", default="scale")
        mean = r.get_floats("mean")
        std = r.get_floats("std")
        return _typed(r, cls, preset=preset, mean=mean, std=std)


@dataclass(frozen=True)
class PixelDataOptions:
    layout: Layout = Layout.HWC
    dtype: DType = DType.FLOAT32
    normalization: NormalizationOptions = field(default_factory=NormalizationOptions)

    @classmethod
    def from_dict(cls, data: Any) -> "PixelDataOptions":
        r = OptionReader(data, name="pixel")
        layout = r.get("layout", "data_layout", "dataLayout", default=Layout.HWC)
        dtype = r.get("dtype", "output_format", "outputFormat", default=DType.FLOAT32)
        norm_raw = r.get("normalization", default=None)
        normalization = NormalizationOptions()
        try:
            layout = parse_layout(layout)
        except TensorCoreError as exc:
            r.issues.append(str(exc))
        try:
            dtype = parse_dtype(dtype)
        except TensorCoreError as exc:
            r.issues.append(str(exc))
        if norm_raw is not None:
            try:
                normalization = NormalizationOptions.from_dict(norm_raw)
            except ValidationError as exc:
                r.issues.extend(exc.issues)
        return _typed(r, cls, layout=layout, dtype=dtype, normalization=normalization)


@dataclass(frozen=True)
class CropOptions:
    crop_width: int = 224
    crop_height: int = 224
    include_flips: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> "CropOptions":
        r = OptionReader(data, name="crop")
        w = r.get_int("crop_width", "cropWidth", "width", default=224, minimum=1)
        h = r.get_int("crop_height", "cropHeight", "height", default=224, minimum=1)
        flips = r.get_bool("include_flips", "includeFlips", default=True)
        return _typed(r, cls, crop_width=w, crop_height=h, include_flips=flips)


@dataclass(frozen=True)
class RandomCropOptions:
    seed: int
    width: int = 224
    height: int = 224
    count: int = 1

    @classmethod
    def from_dict(cls, data: Any) -> "RandomCropOptions":
        r = OptionReader(data, name="random_crop")
        seed = r.get_int("seed", required=True, minimum=0)
        w = r.get_int("width", default=224, minimum=1)
        h = r.get_int("height", default=224, minimum=1)
        count = r.get_int("count", default=1, minimum=1)
        return _typed(r, cls, seed=seed, width=w, height=h, count=count)


@dataclass(frozen=True)
class GridOptions:
    rows: int
    columns: int
    overlap: int = 0
    include_partial: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "GridOptions":
        r = OptionReader(data, name="grid")
        rows = r.get_int("rows", required=True, minimum=1)
        columns = r.get_int("columns", "cols", required=True, minimum=1)
        overlap = r.get_int("overlap", default=0, minimum=0)
        partial = r.get_bool("include_partial", "includePartial", default=False)
        return _typed(r, cls, rows=rows, columns=columns, overlap=overlap, include_partial=partial)


@dataclass(frozen=True)
class QuantizationOptions:
    dtype: str = "int8"
    symmetric: bool = False
    per_channel: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "QuantizationOptions":
        r = OptionReader(data, name="quantization")
        dtype = r.get_str("dtype", default="int8", choices=QUANT_DTYPES)
        symmetric = r.get_bool("symmetric", default=False)
        mode = r.get_str("mode", default=None, choices=("per-tensor", "per-channel"))
        per_channel = r.get_bool("per_channel", "perChannel", default=mode == "per-channel")
        return _typed(r, cls, dtype=dtype, symmetric=symmetric, per_channel=per_channel)


LETTERBOX_COLOR = (114.0, 114.0, 114.0)


@dataclass(frozen=True)
class LetterboxOptions:
    """Target box for letterboxing; `size` sets width and height together."""

    width: int
    height: int
    pad_color: tuple[float, ...] = LETTERBOX_COLOR
    scale_up: bool = True
    stride: Optional[int] = None
    center: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> "LetterboxOptions":
        r = OptionReader(data, name="letterbox")
        size = r.get_int("size", "target_size", "targetSize", minimum=1)
        w = r.get_int("width", "target_width", "targetWidth", default=size, minimum=1)
        h = r.get_int("height", "target_height", "targetHeight", default=size, minimum=1)
        if w is None or h is None:
            r.issues.append("letterbox requires width and height (or size)")
        raw_pad = r.get("pad_color", "padColor", default=None)
        if isinstance(raw_pad, (int, float)) and not isinstance(raw_pad, bool):
            pad_color = (float(raw_pad),)
        else:
            pad_color = r.get_floats("pad_color", "padColor") or LETTERBOX_COLOR
        return _typed(
            r,
            cls,
            width=w,
            height=h,
            pad_color=pad_color,
            scale_up=r.get_bool("scale_up", "scaleUp", default=True),
            stride=r.get_int("stride", minimum=1),
            center=r.get_bool("center", default=True),
        )


@dataclass(frozen=True)
class ValidationConstraints:
    min_width: Optional[int] = None
    min_height: Optional[int] = None
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    channels: Optional[int] = None
    aspect_ratio: Optional[float] = None
    aspect_ratio_tolerance: float = 0.1
    min_pixels: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ValidationConstraints":
        r = OptionReader(data, name="constraints")
        kwargs = {
            "min_width": r.get_int("min_width", "minWidth", minimum=1),
            "min_height": r.get_int("min_height", "minHeight", minimum=1),
            "max_width": r.get_int("max_width", "maxWidth", minimum=1),
            "max_height": r.get_int("max_height", "maxHeight", minimum=1),
            "channels": r.get_int("channels", "required_channels", "requiredChannels", minimum=1),
            "aspect_ratio": r.get_float("aspect_ratio", "aspectRatio"),
            "aspect_ratio_tolerance": r.get_float(
                "aspect_ratio_tolerance", "aspectRatioTolerance", default=0.1
            ),
            "min_pixels": r.get_int("min_pixels", "minPixels", minimum=1),
        }
        return _typed(r, cls, **kwargs)


def parse_region(data: Any) -> CropRegion:
    """Parse ``{x, y, width, height}`` into a :class:`CropRegion`."""

    if isinstance(data, CropRegion):
        return data
    r = OptionReader(data, name="patch")
    x = r.get_int("x", required=True)
    y = r.get_int("y", required=True)
    w = r.get_int("width", required=True, minimum=1)
    h = r.get_int("height", required=True, minimum=1)
    return _typed(r, CropRegion, x=x, y=y, width=w, height=h)


@dataclass(frozen=True)
class BatchOptions:
    """Shared settings for a batch call.

    `operation` is used for items that do not name one. `shared` maps an
    operation name to options applied to every item running it; per-item
    options override them key by key.
    """

    max_workers: int = 1
    operation: Optional[str] = None
    shared: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "BatchOptions":
        r = OptionReader(data, name="batch")
        workers = r.get_int("max_workers", "concurrency", default=1, minimum=1)
        operation = r.get_str("operation", default=None)
        shared = r.get("shared", "options", default=None) or {}
        if not isinstance(shared, Mapping):
            r.issues.append(f"batch.shared must be a dict/object, got {type(shared).__name__}")
            shared = {}
        return _typed(r, cls, max_workers=workers, operation=operation, shared=dict(shared))


@dataclass(frozen=True)
class CacheConfig:
    max_bytes: int = DEFAULT_CACHE_BYTES
    max_entries: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "CacheConfig":
        r = OptionReader(data, name="cache")
        max_bytes = r.get_int("max_bytes", "maxBytes", default=DEFAULT_CACHE_BYTES, minimum=1)
        max_entries = r.get_int("max_entries", "maxEntries", "max_size", "maxSize", minimum=1)
        return _typed(r, cls, max_bytes=max_bytes, max_entries=max_entries)


@dataclass(frozen=True)
class CoreConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    pixel: PixelDataOptions = field(default_factory=PixelDataOptions)
    batch: BatchOptions = field(default_factory=BatchOptions)

    @classmethod
    def from_dict(cls, data: Any) -> "CoreConfig":
        r = OptionReader(data, name="config")
        sections: dict[str, Any] = {}
        for name, parser in (
            ("cache", CacheConfig.from_dict),
            ("pixel", PixelDataOptions.from_dict),
            ("batch", BatchOptions.from_dict),
        ):
            raw = r.get(name, default=None)
            if raw is None:
                continue
            try:
                sections[name] = parser(raw)
            except ValidationError as exc:
                r.issues.extend(exc.issues)
        return _typed(r, cls, **sections)

    @classmethod
    def from_file(cls, path: str | Path) -> "CoreConfig":
        from pyimgtensor.config.io import load_config

        return cls.from_dict(load_config(path))
