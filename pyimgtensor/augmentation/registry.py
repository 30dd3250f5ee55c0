from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pyimgtensor.buffer import PixelBuffer
from pyimgtensor.errors import UnsupportedOperationError

AugmentationFn = Callable[[PixelBuffer, Mapping[str, Any]], PixelBuffer]


@dataclass
class AugmentationEntry:
    name: str
    fn: AugmentationFn
    randomized: bool
    tags: tuple[str, ...]


class AugmentationRegistry:
    """Maps op names (and their aliases) to augmentation functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, AugmentationEntry] = {}
        self._aliases: Dict[str, str] = {}

    def register(
        self,
        name: str,
        fn: AugmentationFn,
        *,
        aliases: Iterable[str] = (),
        randomized: bool = False,
        tags: Optional[Iterable[str]] = None,
        overwrite: bool = False,
    ) -> None:
        key = str(name)
        if not overwrite and (key in self._registry or key in self._aliases):
            raise KeyError(f"Augmentation {key!r} already exists. Set overwrite=True to replace it.")
        self._registry[key] = AugmentationEntry(
            name=key,
            fn=fn,
            randomized=bool(randomized),
            tags=tuple(str(t) for t in (tags or ())),
        )
        for alias in aliases:
            self._aliases[str(alias)] = key

    def resolve(self, name: str) -> str:
        key = str(name)
        return self._aliases.get(key, key)

    def info(self, name: str) -> AugmentationEntry:
        key = self.resolve(name)
        try:
            return self._registry[key]
        except KeyError as exc:
            available = ", ".join(sorted(self._registry)) or "<empty>"
            raise UnsupportedOperationError(
                f"Unknown augmentation {name!r}. Available augmentations: {available}"
            ) from exc

    def get(self, name: str) -> AugmentationFn:
        return self.info(name).fn

    def available(self, *, tags: Optional[Iterable[str]] = None) -> List[str]:
        if tags is None:
            return sorted(self._registry)
        tag_set = {str(t) for t in tags}
        return sorted(
            entry.name for entry in self._registry.values() if tag_set.issubset(entry.tags)
        )

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) in self._registry


AUGMENTATION_REGISTRY = AugmentationRegistry()


def register_augmentation(
    name: str,
    *,
    aliases: Iterable[str] = (),
    randomized: bool = False,
    tags: Optional[Iterable[str]] = None,
    overwrite: bool = False,
) -> Callable[[AugmentationFn], AugmentationFn]:
    def decorator(fn: AugmentationFn) -> AugmentationFn:
        AUGMENTATION_REGISTRY.register(
            name,
            fn,
            aliases=aliases,
            randomized=randomized,
            tags=tags,
            overwrite=overwrite,
        )
        return fn

    return decorator


def list_augmentations(*, tags: Optional[Iterable[str]] = None) -> List[str]:
    return AUGMENTATION_REGISTRY.available(tags=tags)
