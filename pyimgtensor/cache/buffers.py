from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote
from typing import Any, Callable, Mapping, Optional

from pyimgtensor.buffer import PixelBuffer
from pyimgtensor.config.options import DEFAULT_CACHE_BYTES, CacheConfig
from pyimgtensor.errors import CacheCapacityError
from pyimgtensor.utils.jsonable import to_jsonable

logger = logging.getLogger(__name__)


def make_cache_key(
    uri: Optional[str] = None,
    *,
    inline_data: Optional[bytes] = None,
    hints: Optional[Mapping[str, Any]] = None,
) -> str:
    """Return a stable key for a decode request.

    Local files contribute their resolved path, mtime and size so an edited
    file does not hit a stale entry. Inline payloads are keyed by content.
    """

    meta: dict[str, Any] = {}
    if inline_data is not None:
        meta["inline_sha256"] = hashlib.sha256(bytes(inline_data)).hexdigest()
    if uri is not None:
        text = str(uri)
        path_text = unquote(text[len("file://"):]) if text.startswith("file://") else text
        meta["uri"] = text
        if not text.startswith("data:"):
            p = Path(path_text)
            try:
                st = p.stat()
            except OSError:
                pass
            else:
                meta.update(
                    {
                        "uri": str(p.resolve()),
                        "mtime_ns": int(getattr(st, "st_mtime_ns", int(st.st_mtime * 1e9))),
                        "size": int(st.st_size),
                    }
                )
    if hints:
        meta["hints"] = to_jsonable(dict(hints))
    encoded = json.dumps(meta, sort_keys=True, default=repr).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


@dataclass
class CacheEntry:
    key: str
    buffer: PixelBuffer
    size_bytes: int
    last_access: float


@dataclass(frozen=True)
class CacheStats:
    entry_count: int
    total_bytes: int
    hit_count: int
    miss_count: int
    eviction_count: int
    max_bytes: int
    max_entries: Optional[int] = None


class BufferCache:
    """Bounded LRU cache of decoded buffers.

    Bounded by total payload bytes and, optionally, by entry count. All
    access to the entry map happens under one lock; cached buffers are
    immutable and may be shared freely once returned.
    """

    def __init__(self, max_bytes: int = DEFAULT_CACHE_BYTES, max_entries: Optional[int] = None) -> None:
        if int(max_bytes) <= 0:
            raise ValueError(f"max_bytes must be positive, got {max_bytes}")
        if max_entries is not None and int(max_entries) <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_bytes = int(max_bytes)
        self.max_entries = None if max_entries is None else int(max_entries)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._total_bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_config(cls, config: CacheConfig) -> "BufferCache":
        return cls(max_bytes=config.max_bytes, max_entries=config.max_entries)

    def get(self, key: str) -> Optional[PixelBuffer]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            entry.last_access = time.monotonic()
            self._hits += 1
            return entry.buffer

    def put(self, key: str, buffer: PixelBuffer) -> None:
        size = int(buffer.nbytes)
        if size > self.max_bytes:
            logger.warning(
                "cache entry %s of %d bytes exceeds the %d byte budget", key[:12], size, self.max_bytes
            )
            raise CacheCapacityError(
                f"entry of {size} bytes exceeds cache budget of {self.max_bytes} bytes"
            )
        with self._lock:
            old = self._entries.pop(key, None)
            if old is not None:
                self._total_bytes -= old.size_bytes
            self._entries[key] = CacheEntry(
                key=key, buffer=buffer, size_bytes=size, last_access=time.monotonic()
            )
            self._total_bytes += size
            self._evict_locked()

    def _evict_locked(self) -> None:
        while self._entries and (
            self._total_bytes > self.max_bytes
            or (self.max_entries is not None and len(self._entries) > self.max_entries)
        ):
            key, entry = self._entries.popitem(last=False)
            self._total_bytes -= entry.size_bytes
            self._evictions += 1
            logger.debug("evicted cache entry %s (%d bytes)", key[:12], entry.size_bytes)

    def get_or_create(self, key: str, factory: Callable[[], PixelBuffer]) -> PixelBuffer:
        """Return the cached buffer for `key`, building and storing it on a miss.

        `factory` runs outside the lock; concurrent misses on one key may both
        build, and the last writer wins. A buffer larger than the whole budget
        is returned without being stored.
        """

        cached = self.get(key)
        if cached is not None:
            return cached
        buffer = factory()
        try:
            self.put(key, buffer)
        except CacheCapacityError:
            logger.debug("serving entry %s uncached", key[:12])
        return buffer

    def clear(self) -> None:
        """Drop every entry and reset the hit/miss/eviction counters."""

        with self._lock:
            n = len(self._entries)
            self._entries.clear()
            self._total_bytes = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0
        logger.info("buffer cache cleared (%d entries)", n)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entry_count=len(self._entries),
                total_bytes=self._total_bytes,
                hit_count=self._hits,
                miss_count=self._misses,
                eviction_count=self._evictions,
                max_bytes=self.max_bytes,
                max_entries=self.max_entries,
            )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
