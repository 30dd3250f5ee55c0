"""Composable, seed-reproducible augmentation pipeline."""

from __future__ import annotations

from pyimgtensor.augmentation import ops as _ops  # noqa: F401 - registers built-in ops
from pyimgtensor.augmentation.pipeline import (
    AugmentationPipeline,
    AugmentationStep,
    apply_augmentations,
    parse_augmentation_spec,
)
from pyimgtensor.augmentation.registry import (
    AUGMENTATION_REGISTRY,
    AugmentationRegistry,
    list_augmentations,
    register_augmentation,
)

__all__ = [
    "AUGMENTATION_REGISTRY",
    "AugmentationPipeline",
    "AugmentationRegistry",
    "AugmentationStep",
    "apply_augmentations",
    "list_augmentations",
    "parse_augmentation_spec",
    "register_augmentation",
]
