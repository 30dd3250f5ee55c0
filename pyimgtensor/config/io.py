from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from pyimgtensor.utils.optional_deps import require

CONFIG_SUFFIXES = (".json", ".yml", ".yaml")


def _read(config_path: Path) -> Any:
    suffix = config_path.suffix.lower()
    if suffix not in CONFIG_SUFFIXES:
        raise ValueError(
            f"Unsupported config extension: {suffix!r} for {str(config_path)!r}. "
            f"Supported: {', '.join(CONFIG_SUFFIXES)}."
        )
    with config_path.open("r", encoding="utf-8") as f:
        if suffix == ".json":
            return json.load(f)
        yaml = require("yaml", extra="yaml", purpose="YAML config files")
        return yaml.safe_load(f)


def load_config(path: str | Path, *, section: Optional[str] = None) -> dict[str, Any]:
    """Load a JSON (or, with PyYAML installed, YAML) config into a dict.

    With `section`, the named top-level entry is returned when present and
    the whole document otherwise, so a file may hold either a full core
    config or just the options of one section (e.g. validation constraints).
    An empty document loads as ``{}``.
    """

    config_path = Path(path)
    data = _read(config_path)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            "Config must be an object/dict at the top level, "
            f"got {type(data).__name__} from {str(config_path)!r}."
        )

    if section is not None and section in data:
        data = data[section]
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(
                f"Config section {section!r} must be an object/dict, "
                f"got {type(data).__name__} from {str(config_path)!r}."
            )
    return dict(data)
