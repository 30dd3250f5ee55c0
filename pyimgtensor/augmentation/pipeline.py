from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Sequence, Union

from pyimgtensor.augmentation.registry import AUGMENTATION_REGISTRY, AugmentationFn
from pyimgtensor.buffer import PixelBuffer
from pyimgtensor.config.options import OptionReader
from pyimgtensor.errors import ValidationError
from pyimgtensor.validation import check_buffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AugmentationStep:
    """One ``{op_name, params}`` entry of an augmentation spec."""

    op_name: str
    params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "AugmentationStep":
        r = OptionReader(data, name="augmentation step")
        op_name = r.get_str("op_name", "opName", "op", "name", default=None)
        params = r.get("params", default=None) or {}
        if op_name is None:
            r.issues.append("augmentation step requires an op_name")
        if not isinstance(params, Mapping):
            r.issues.append(f"augmentation step params must be a dict/object, got {type(params).__name__}")
            params = {}
        r.finish()
        return cls(op_name=str(op_name), params=dict(params))


AugmentationSpecLike = Union[
    Sequence[Union[AugmentationStep, Mapping[str, Any]]],
    Mapping[str, Any],
    None,
]


def _legacy_steps(data: Mapping[str, Any]) -> List[AugmentationStep]:
    """Convert the flat ``{rotation, horizontalFlip, brightness, ...}`` form.

    Steps run in a fixed order: rotation, horizontal flip, vertical flip,
    brightness, contrast, saturation. Neutral values are skipped.
    """

    r = OptionReader(data, name="augmentation")
    rotation = r.get_float("rotation", default=0.0)
    hflip = r.get_bool("horizontal_flip", "horizontalFlip", "flipHorizontal", default=False)
    vflip = r.get_bool("vertical_flip", "verticalFlip", "flipVertical", default=False)
    brightness = r.get_float("brightness", default=0.0)
    contrast = r.get_float("contrast", default=1.0)
    saturation = r.get_float("saturation", default=1.0)
    r.finish()

    steps: List[AugmentationStep] = []
    if rotation:
        steps.append(AugmentationStep("rotate", {"angle": rotation}))
    if hflip:
        steps.append(AugmentationStep("hflip"))
    if vflip:
        steps.append(AugmentationStep("vflip"))
    if brightness:
        steps.append(AugmentationStep("brightness", {"delta": brightness}))
    if contrast != 1.0:
        steps.append(AugmentationStep("contrast", {"factor": contrast}))
    if saturation != 1.0:
        steps.append(AugmentationStep("saturation", {"factor": saturation}))
    return steps


def parse_augmentation_spec(spec: AugmentationSpecLike) -> List[AugmentationStep]:
    """Normalize a spec into an ordered list of steps.

    Accepts a sequence of steps (dataclasses or ``{op_name, params}``
    mappings), a mapping with a ``steps`` list, or the flat legacy mapping.
    """

    if spec is None:
        return []
    if isinstance(spec, Mapping):
        if "steps" in spec:
            r = OptionReader(spec, name="augmentation")
            raw_steps = r.get("steps", default=None)
            r.finish()
            return parse_augmentation_spec(raw_steps or [])
        return _legacy_steps(spec)
    if isinstance(spec, (str, bytes)) or not isinstance(spec, Iterable):
        raise ValidationError([f"augmentation spec must be a list of steps, got {type(spec).__name__}"])

    steps: List[AugmentationStep] = []
    issues: List[str] = []
    for i, item in enumerate(spec):
        if isinstance(item, AugmentationStep):
            steps.append(item)
            continue
        try:
            steps.append(AugmentationStep.from_dict(item))
        except ValidationError as exc:
            issues.extend(f"step {i}: {issue}" for issue in exc.issues)
    if issues:
        raise ValidationError(issues)
    return steps


class AugmentationPipeline:
    """Ordered augmentation steps applied one after another.

    All op names are resolved when the pipeline is built, so an unknown op
    fails before any step runs.
    """

    def __init__(self, steps: Iterable[AugmentationStep]) -> None:
        self.steps = list(steps)
        self._fns: List[AugmentationFn] = [AUGMENTATION_REGISTRY.get(s.op_name) for s in self.steps]

    @classmethod
    def from_spec(cls, spec: AugmentationSpecLike) -> "AugmentationPipeline":
        return cls(parse_augmentation_spec(spec))

    def __call__(self, buf: PixelBuffer) -> PixelBuffer:
        out = check_buffer(buf, image=True)
        for step, fn in zip(self.steps, self._fns):
            out = fn(out, step.params)
            logger.debug("augmentation %s -> %r", step.op_name, out)
        return out

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        format_string = self.__class__.__name__ + '('
        for step in self.steps:
            format_string += '\n'
            format_string += f'    {step.op_name}({dict(step.params)})'
        format_string += '\n)'
        return format_string


def apply_augmentations(buf: PixelBuffer, spec: AugmentationSpecLike) -> PixelBuffer:
    """Apply every step of `spec` in order and return the final buffer.

    An unknown op raises :class:`UnsupportedOperationError` before any step
    has been applied; no partial result is returned.
    """

    check_buffer(buf, image=True)
    return AugmentationPipeline.from_spec(spec)(buf)
