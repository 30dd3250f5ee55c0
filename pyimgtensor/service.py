"""Host-facing entry points.

:class:`VisionCore` resolves an image source (through the decode cache) and
routes it to one named operation. :meth:`VisionCore.process_batch` runs many
such requests with per-item failure isolation.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pyimgtensor.augmentation import apply_augmentations
from pyimgtensor.buffer import DType, PixelBuffer
from pyimgtensor.cache import BufferCache, CacheStats
from pyimgtensor.config.options import (
    BatchOptions,
    CoreConfig,
    CropOptions,
    GridOptions,
    LetterboxOptions,
    OptionReader,
    PixelDataOptions,
    QuantizationOptions,
    RandomCropOptions,
    ValidationConstraints,
    parse_region,
)
from pyimgtensor.errors import UnsupportedOperationError, ValidationError, error_kind
from pyimgtensor.geometry import (
    extract_channel,
    extract_grid,
    extract_patch,
    five_crop,
    flip,
    letterbox,
    random_crop,
    ten_crop,
)
from pyimgtensor.inputs.decode import ImageSource, decode_source
from pyimgtensor.layout import cast_dtype, convert_layout, normalize
from pyimgtensor.quantization import calculate_quantization_params, quantize, quantize_per_channel
from pyimgtensor.stats import DEFAULT_BLUR_THRESHOLD, detect_blur, get_image_metadata, get_image_statistics
from pyimgtensor.tensor_ops import permute
from pyimgtensor.validation import validate

logger = logging.getLogger(__name__)

Handler = Callable[[PixelBuffer, Any], Any]
Decoder = Callable[[ImageSource], PixelBuffer]


@dataclass(frozen=True)
class ErrorRecord:
    kind: str
    message: str
    issues: List[str] = field(default_factory=list)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorRecord":
        issues = list(exc.issues) if isinstance(exc, ValidationError) else []
        return cls(kind=error_kind(exc), message=str(exc), issues=issues)


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one batch item: `value` on success, `error` otherwise."""

    index: int
    operation: str
    value: Any = None
    error: Optional[ErrorRecord] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchItem:
    source: Any
    operation: Optional[str] = None
    options: Any = None

    @classmethod
    def from_obj(cls, obj: Any) -> "BatchItem":
        if isinstance(obj, BatchItem):
            return obj
        if isinstance(obj, tuple):
            if len(obj) == 2:
                return cls(source=obj[0], options=obj[1])
            if len(obj) == 3:
                return cls(source=obj[0], operation=obj[1], options=obj[2])
            raise ValidationError([f"batch item tuple must have 2 or 3 entries, got {len(obj)}"])
        r = OptionReader(obj, name="batch item")
        source = r.get("source", "image", default=None)
        operation = r.get_str("operation", "op", default=None)
        options = r.get("options", default=None)
        if source is None:
            r.issues.append("batch item requires a source")
        r.finish()
        return cls(source=source, operation=operation, options=options)


def _merge_options(shared: Any, own: Any) -> Any:
    if isinstance(shared, Mapping) and isinstance(own, Mapping):
        return {**shared, **own}
    return own if own is not None else shared


# ------------------------------------------------------------------- handlers
def _pixel_data(buf: PixelBuffer, options: Any, default: PixelDataOptions) -> PixelBuffer:
    opts = default if options is None else PixelDataOptions.from_dict(options)
    if opts.dtype is DType.FLOAT32:
        out = normalize(buf, opts.normalization)
    else:
        out = cast_dtype(buf, DType.UINT8)
    return convert_layout(out, opts.layout)


def _channel(buf: PixelBuffer, options: Any) -> PixelBuffer:
    r = OptionReader(options, name="channel")
    idx = r.get_int("channel", "channel_index", "channelIndex", "index", required=True)
    r.finish()
    return extract_channel(buf, idx)


def _flip(buf: PixelBuffer, options: Any) -> PixelBuffer:
    r = OptionReader(options, name="flip")
    direction = r.get_str("direction", default="horizontal", choices=("horizontal", "vertical", "both"))
    r.finish()
    return flip(buf, direction)


def _layout(buf: PixelBuffer, options: Any) -> PixelBuffer:
    r = OptionReader(options, name="layout")
    target = r.get_str("layout", "data_layout", "dataLayout", default=None)
    if target is None:
        r.issues.append("layout.layout is required")
    r.finish()
    return convert_layout(buf, target)


def _permute(buf: PixelBuffer, options: Any):
    r = OptionReader(options, name="permute")
    order = r.get("order", "axes", default=None)
    if not isinstance(order, (list, tuple)):
        r.issues.append(f"permute.order must be a list of axes, got {order!r}")
    r.finish()
    return permute(buf, None, order)


def _five_crop(buf: PixelBuffer, options: Any) -> List[PixelBuffer]:
    opts = CropOptions.from_dict(options)
    return five_crop(buf, opts.crop_width, opts.crop_height)


def _ten_crop(buf: PixelBuffer, options: Any) -> List[PixelBuffer]:
    opts = CropOptions.from_dict(options)
    return ten_crop(buf, opts.crop_width, opts.crop_height, include_flips=opts.include_flips)


def _random_crop(buf: PixelBuffer, options: Any):
    opts = RandomCropOptions.from_dict(options)
    return random_crop(buf, opts.width, opts.height, seed=opts.seed, count=opts.count)


def _grid(buf: PixelBuffer, options: Any):
    opts = GridOptions.from_dict(options)
    return extract_grid(
        buf, opts.rows, opts.columns, overlap=opts.overlap, include_partial=opts.include_partial
    )


def _quantize(buf: PixelBuffer, options: Any):
    opts = QuantizationOptions.from_dict(options)
    if opts.per_channel:
        return quantize_per_channel(buf, dtype=opts.dtype, symmetric=opts.symmetric)
    params = calculate_quantization_params(buf, dtype=opts.dtype, symmetric=opts.symmetric)
    return quantize(buf, params)


def _letterbox(buf: PixelBuffer, options: Any):
    opts = LetterboxOptions.from_dict(options)
    return letterbox(
        buf,
        opts.width,
        opts.height,
        pad_color=opts.pad_color,
        scale_up=opts.scale_up,
        stride=opts.stride,
        center=opts.center,
    )


def _blur(buf: PixelBuffer, options: Any):
    r = OptionReader(options, name="blur")
    threshold = r.get_float("threshold", default=DEFAULT_BLUR_THRESHOLD)
    max_size = r.get_int("max_size", "maxSize", "downsample_size", "downsampleSize", minimum=1)
    r.finish()
    return detect_blur(buf, threshold, max_size=max_size)


def _validate(buf: PixelBuffer, options: Any):
    constraints = None if options is None else ValidationConstraints.from_dict(options)
    return validate(buf, constraints)


class VisionCore:
    """Resolve image sources and dispatch operations on the decoded pixels.

    Operations are pure; the only shared state is the decode cache, which
    serializes its own access. One instance may serve many threads.
    """

    def __init__(
        self,
        config: Optional[CoreConfig] = None,
        *,
        decoder: Optional[Decoder] = None,
        cache: Optional[BufferCache] = None,
    ) -> None:
        self.config = config or CoreConfig()
        self.decoder: Decoder = decoder or decode_source
        self.cache = cache if cache is not None else BufferCache.from_config(self.config.cache)
        self._handlers: Dict[str, Handler] = {
            "pixel_data": lambda buf, opts: _pixel_data(buf, opts, self.config.pixel),
            "statistics": lambda buf, opts: get_image_statistics(buf),
            "metadata": lambda buf, opts: get_image_metadata(buf),
            "validate": _validate,
            "five_crop": _five_crop,
            "ten_crop": _ten_crop,
            "patch": lambda buf, opts: extract_patch(buf, parse_region(opts)),
            "channel": _channel,
            "flip": _flip,
            "layout": _layout,
            "permute": _permute,
            "augment": apply_augmentations,
            "quantize": _quantize,
            "random_crop": _random_crop,
            "grid": _grid,
            "letterbox": _letterbox,
            "blur": _blur,
        }

    @property
    def operations(self) -> List[str]:
        return sorted(self._handlers)

    def resolve(self, source: Any) -> PixelBuffer:
        """Decode `source`, going through the cache when it has a stable key."""

        src = ImageSource.from_dict(source)
        key = src.cache_key()
        if key is None:
            return self.decoder(src)
        return self.cache.get_or_create(key, lambda: self.decoder(src))

    def run(self, source: Any, operation: str, options: Any = None) -> Any:
        handler = self._handlers.get(str(operation))
        if handler is None:
            raise UnsupportedOperationError(
                f"Unknown operation {operation!r}. Available operations: {', '.join(self.operations)}"
            )
        buf = self.resolve(source)
        return handler(buf, options)

    def _run_item(self, index: int, raw: Any, batch: BatchOptions) -> BatchItemResult:
        operation = batch.operation or ""
        try:
            item = BatchItem.from_obj(raw)
            operation = item.operation or batch.operation or ""
            if not operation:
                raise ValidationError([f"batch item {index} does not name an operation"])
            options = _merge_options(batch.shared.get(operation), item.options)
            value = self.run(item.source, operation, options)
        except Exception as exc:  # noqa: BLE001 - batch items are isolated from each other
            logger.warning("batch item %d (%s) failed: %s: %s", index, operation or "?", error_kind(exc), exc)
            return BatchItemResult(index=index, operation=operation, error=ErrorRecord.from_exception(exc))
        return BatchItemResult(index=index, operation=operation, value=value)

    def process_batch(
        self,
        items: Iterable[Any],
        batch_options: Any = None,
    ) -> List[BatchItemResult]:
        """Run every item independently and return results in input order.

        Each item is ``(source, options)``, ``(source, operation, options)``,
        a :class:`BatchItem` or a mapping with ``source``/``operation``/
        ``options``. A failing item yields an :class:`ErrorRecord` and never
        affects its siblings.
        """

        if batch_options is None:
            batch = self.config.batch
        elif isinstance(batch_options, BatchOptions):
            batch = batch_options
        else:
            batch = BatchOptions.from_dict(batch_options)

        entries: Sequence[Any] = list(items)
        if batch.max_workers > 1 and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=batch.max_workers) as executor:
                results = list(
                    executor.map(lambda pair: self._run_item(pair[0], pair[1], batch), enumerate(entries))
                )
        else:
            results = [self._run_item(i, raw, batch) for i, raw in enumerate(entries)]

        failed = sum(1 for r in results if not r.ok)
        logger.info("batch finished: %d items, %d failed", len(results), failed)
        return results

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()


_default_core: Optional[VisionCore] = None
_default_lock = threading.Lock()


def get_default_core() -> VisionCore:
    """Process-wide :class:`VisionCore` used by the module-level helpers."""

    global _default_core
    with _default_lock:
        if _default_core is None:
            _default_core = VisionCore()
        return _default_core


def run(source: Any, operation: str, options: Any = None) -> Any:
    return get_default_core().run(source, operation, options)


def process_batch(items: Iterable[Any], batch_options: Any = None) -> List[BatchItemResult]:
    return get_default_core().process_batch(items, batch_options)


def clear_cache() -> None:
    get_default_core().clear_cache()


def get_cache_stats() -> CacheStats:
    return get_default_core().get_cache_stats()
