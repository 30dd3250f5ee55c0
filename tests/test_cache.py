import os
import threading
from urllib.parse import quote

import numpy as np
import pytest

from pyimgtensor.buffer import PixelBuffer
from pyimgtensor.cache import BufferCache, make_cache_key
from pyimgtensor.config.options import CacheConfig
from pyimgtensor.errors import CacheCapacityError


def _buf(nbytes: int, value: int = 0) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((1, nbytes, 1), value, dtype=np.uint8))


def test_get_miss_then_hit_counts() -> None:
    cache = BufferCache(max_bytes=100)
    assert cache.get("a") is None
    buf = _buf(10)
    cache.put("a", buf)
    assert cache.get("a") is buf

    stats = cache.stats()
    assert (stats.hit_count, stats.miss_count) == (1, 1)
    assert stats.entry_count == 1
    assert stats.total_bytes == 10


def test_evicts_least_recently_used_by_bytes() -> None:
    cache = BufferCache(max_bytes=30)
    cache.put("a", _buf(10))
    cache.put("b", _buf(10))
    cache.put("c", _buf(10))
    cache.get("a")  # a becomes most recent
    cache.put("d", _buf(10))

    assert "b" not in cache
    assert all(k in cache for k in ("a", "c", "d"))
    stats = cache.stats()
    assert stats.total_bytes <= 30
    assert stats.eviction_count == 1
    assert (stats.hit_count, stats.miss_count) == (1, 0)


def test_large_entry_evicts_several() -> None:
    cache = BufferCache(max_bytes=30)
    for key in ("a", "b", "c"):
        cache.put(key, _buf(10))
    cache.put("big", _buf(25))
    assert len(cache) == 1
    assert cache.stats().eviction_count == 3


def test_max_entries_bound() -> None:
    cache = BufferCache(max_bytes=1000, max_entries=2)
    for key in ("a", "b", "c"):
        cache.put(key, _buf(1))
    assert len(cache) == 2
    assert "a" not in cache


def test_replacing_key_adjusts_total_bytes() -> None:
    cache = BufferCache(max_bytes=100)
    cache.put("a", _buf(10))
    cache.put("a", _buf(40))
    stats = cache.stats()
    assert stats.entry_count == 1
    assert stats.total_bytes == 40


def test_entry_larger_than_budget_raises() -> None:
    cache = BufferCache(max_bytes=8)
    with pytest.raises(CacheCapacityError):
        cache.put("a", _buf(9))
    assert len(cache) == 0


def test_get_or_create_builds_once() -> None:
    cache = BufferCache(max_bytes=100)
    calls = []

    def factory() -> PixelBuffer:
        calls.append(1)
        return _buf(4, value=len(calls))

    first = cache.get_or_create("k", factory)
    second = cache.get_or_create("k", factory)
    assert first is second
    assert len(calls) == 1


def test_clear_resets_entries_and_counters() -> None:
    cache = BufferCache(max_bytes=10)
    cache.put("a", _buf(6))
    cache.put("b", _buf(6))
    cache.get("b")
    cache.get("zzz")
    cache.clear()

    stats = cache.stats()
    assert stats.entry_count == 0
    assert stats.total_bytes == 0
    assert (stats.hit_count, stats.miss_count, stats.eviction_count) == (0, 0, 0)


def test_from_config() -> None:
    cache = BufferCache.from_config(CacheConfig.from_dict({"maxBytes": 64, "maxEntries": 3}))
    stats = cache.stats()
    assert (stats.max_bytes, stats.max_entries) == (64, 3)


@pytest.mark.parametrize("kwargs", [{"max_bytes": 0}, {"max_bytes": 10, "max_entries": 0}])
def test_rejects_non_positive_bounds(kwargs) -> None:
    with pytest.raises(ValueError):
        BufferCache(**kwargs)


def test_cache_key_for_inline_data_is_content_based() -> None:
    assert make_cache_key(inline_data=b"abc") == make_cache_key(inline_data=b"abc")
    assert make_cache_key(inline_data=b"abc") != make_cache_key(inline_data=b"abd")


def test_cache_key_includes_hints() -> None:
    a = make_cache_key("image.png", hints={"mode": "RGB"})
    b = make_cache_key("image.png", hints={"mode": "L"})
    assert a != b
    assert a == make_cache_key("image.png", hints={"mode": "RGB"})


def test_cache_key_changes_when_file_changes(tmp_path) -> None:
    path = tmp_path / "img.bin"
    path.write_bytes(b"1234")
    before = make_cache_key(str(path))
    assert make_cache_key(f"file://{path}") == before

    path.write_bytes(b"123456")
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
    assert make_cache_key(str(path)) != before


def test_cache_key_unquotes_file_uri(tmp_path) -> None:
    path = tmp_path / "my image.bin"
    path.write_bytes(b"1234")
    uri = "file://" + quote(str(path))
    assert "%20" in uri
    before = make_cache_key(uri)
    assert before == make_cache_key(str(path))

    path.write_bytes(b"123456")
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
    assert make_cache_key(uri) != before


def test_get_or_create_serves_oversized_entry_uncached() -> None:
    cache = BufferCache(max_bytes=8)
    big = _buf(9)
    assert cache.get_or_create("big", lambda: big) is big
    assert len(cache) == 0
    assert cache.stats().total_bytes == 0


def test_concurrent_access_keeps_byte_accounting_consistent() -> None:
    cache = BufferCache(max_bytes=64, max_entries=6)
    keys = [f"k{i}" for i in range(12)]
    errors = []
    start = threading.Barrier(8)

    def worker(seed: int) -> None:
        try:
            start.wait()
            for step in range(300):
                key = keys[(seed * 7 + step) % len(keys)]
                size = 1 + (seed + step) % 16
                if step % 3 == 0:
                    cache.put(key, _buf(size))
                elif step % 3 == 1:
                    cache.get(key)
                else:
                    cache.get_or_create(key, lambda: _buf(size))
        except Exception as exc:  # noqa: BLE001 - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    stats = cache.stats()
    with cache._lock:
        live_bytes = sum(entry.size_bytes for entry in cache._entries.values())
        live_count = len(cache._entries)
    assert stats.total_bytes == live_bytes
    assert stats.entry_count == live_count
    assert stats.total_bytes <= 64
    assert stats.entry_count <= 6
    assert stats.hit_count + stats.miss_count == 8 * 200
