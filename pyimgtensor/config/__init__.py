from __future__ import annotations

from .io import load_config
from .options import (
    BatchOptions,
    CacheConfig,
    CoreConfig,
    CropOptions,
    GridOptions,
    LetterboxOptions,
    NormalizationOptions,
    PixelDataOptions,
    QuantizationOptions,
    RandomCropOptions,
    ValidationConstraints,
    parse_region,
)

__all__ = [
    "BatchOptions",
    "CacheConfig",
    "CoreConfig",
    "CropOptions",
    "GridOptions",
    "LetterboxOptions",
    "NormalizationOptions",
    "PixelDataOptions",
    "QuantizationOptions",
    "RandomCropOptions",
    "ValidationConstraints",
    "load_config",
    "parse_region",
]
