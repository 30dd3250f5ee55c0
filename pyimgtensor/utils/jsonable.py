from __future__ import annotations

import dataclasses
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np


def to_jsonable(value: Any, *, include_data: bool = True) -> Any:
    """Convert reports, buffers and numpy values into JSON-serializable values.

    - `pathlib.Path` → `str`
    - `Enum` members → their value
    - `numpy` scalars → builtin Python scalars via `.item()`
    - `numpy.ndarray` → nested Python lists via `.tolist()`
    - dataclasses (reports, buffers, params) → dicts of their fields
    - Recurses through `dict` / `list` / `tuple`

    With ``include_data=False`` flat sample arrays of buffers are replaced by
    their length, which keeps CLI output readable for large images.
    """

    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        if not include_data and value.ndim == 1 and value.size > 256:
            return {"length": int(value.size), "dtype": str(value.dtype)}
        return value.tolist()

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_jsonable(getattr(value, f.name), include_data=include_data)
            for f in dataclasses.fields(value)
        }

    if isinstance(value, dict):
        return {str(k): to_jsonable(v, include_data=include_data) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v, include_data=include_data) for v in value]
    return value
