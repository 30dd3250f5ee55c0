from __future__ import annotations

from .buffers import BufferCache, CacheEntry, CacheStats, make_cache_key

__all__ = ["BufferCache", "CacheEntry", "CacheStats", "make_cache_key"]
