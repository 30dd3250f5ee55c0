"""pyimgtensor - image <-> tensor buffers for machine-learning pipelines.

Keep top-level imports lightweight: exports are loaded on first access so
that `import pyimgtensor` stays cheap and the optional torch bridge is only
imported when asked for.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    # Modules
    "augmentation",
    "cache",
    "config",
    "inputs",
    "utils",
    # Core types
    "PixelBuffer",
    "Layout",
    "DType",
    "CropRegion",
    # Layout
    "convert_layout",
    "cast_dtype",
    "normalize",
    "denormalize",
    # Validation
    "validate",
    "check_buffer",
    # Geometry
    "extract_patch",
    "five_crop",
    "ten_crop",
    "extract_channel",
    "flip",
    "random_crop",
    "extract_grid",
    "letterbox",
    "reverse_letterbox",
    # Tensor ops
    "permute",
    "concatenate_to_batch",
    "split_batch",
    # Stats
    "get_image_statistics",
    "get_image_metadata",
    "detect_blur",
    # Augmentation
    "apply_augmentations",
    "AugmentationStep",
    # Quantization
    "calculate_quantization_params",
    "quantize",
    "dequantize",
    # Cache / service
    "BufferCache",
    "VisionCore",
    "process_batch",
    "clear_cache",
    "get_cache_stats",
]


_LAZY_SUBMODULES = {
    "augmentation",
    "cache",
    "config",
    "inputs",
    "utils",
}

_LAZY_EXPORTS = {
    "PixelBuffer": ("buffer", "PixelBuffer"),
    "Layout": ("buffer", "Layout"),
    "DType": ("buffer", "DType"),
    "CropRegion": ("buffer", "CropRegion"),
    "convert_layout": ("layout", "convert_layout"),
    "cast_dtype": ("layout", "cast_dtype"),
    "normalize": ("layout", "normalize"),
    "denormalize": ("layout", "denormalize"),
    "validate": ("validation", "validate"),
    "check_buffer": ("validation", "check_buffer"),
    "extract_patch": ("geometry", "extract_patch"),
    "five_crop": ("geometry", "five_crop"),
    "ten_crop": ("geometry", "ten_crop"),
    "extract_channel": ("geometry", "extract_channel"),
    "flip": ("geometry", "flip"),
    "random_crop": ("geometry", "random_crop"),
    "extract_grid": ("geometry", "extract_grid"),
    "letterbox": ("geometry", "letterbox"),
    "reverse_letterbox": ("geometry", "reverse_letterbox"),
    "permute": ("tensor_ops", "permute"),
    "concatenate_to_batch": ("tensor_ops", "concatenate_to_batch"),
    "split_batch": ("tensor_ops", "split_batch"),
    "get_image_statistics": ("stats", "get_image_statistics"),
    "get_image_metadata": ("stats", "get_image_metadata"),
    "detect_blur": ("stats", "detect_blur"),
    "apply_augmentations": ("augmentation", "apply_augmentations"),
    "AugmentationStep": ("augmentation", "AugmentationStep"),
    "calculate_quantization_params": ("quantization", "calculate_quantization_params"),
    "quantize": ("quantization", "quantize"),
    "dequantize": ("quantization", "dequantize"),
    "BufferCache": ("cache", "BufferCache"),
    "VisionCore": ("service", "VisionCore"),
    "process_batch": ("service", "process_batch"),
    "clear_cache": ("service", "clear_cache"),
    "get_cache_stats": ("service", "get_cache_stats"),
}


def __getattr__(name: str) -> Any:  # pragma: no cover - thin delegation
    if name in _LAZY_SUBMODULES:
        module = import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module

    target = _LAZY_EXPORTS.get(name)
    if target is not None:
        module_name, attr = target
        module = import_module(f"{__name__}.{module_name}")
        value = getattr(module, attr)
        globals()[name] = value
        return value

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
