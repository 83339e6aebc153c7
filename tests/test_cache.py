import json

from theoryprep.cache import CacheLayer, overview_key
from theoryprep.storage import MemoryStorage


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_write_then_peek_memory():
    cache = CacheLayer(MemoryStorage())
    cache.write("k", {"a": 1})
    assert cache.peek_memory("k") == {"a": 1}


def test_peek_falls_back_to_persistent_store():
    storage = MemoryStorage()
    CacheLayer(storage).write("k", [1, 2])
    fresh = CacheLayer(storage)
    assert fresh.peek_memory("k") is None
    assert fresh.peek("k") == [1, 2]
    assert fresh.peek_memory("k") == [1, 2]


def test_version_mismatch_is_a_miss():
    storage = MemoryStorage()
    CacheLayer(storage, version=1).write("k", "old")
    assert CacheLayer(storage, version=2).peek("k") is None


def test_read_respects_max_age():
    clock = Clock()
    cache = CacheLayer(MemoryStorage(), clock=clock)
    cache.write("k", "v")
    clock.now += 5
    assert cache.read("k", max_age_ms=10_000) == "v"
    clock.now += 10
    assert cache.read("k", max_age_ms=10_000) is None


def test_envelope_shape():
    storage = MemoryStorage()
    CacheLayer(storage, clock=Clock()).write("k", "v")
    assert json.loads(storage.get_item("k")) == {"version": 1, "savedAt": 1_000_000, "data": "v"}


def test_invalidate_removes_both_layers():
    storage = MemoryStorage()
    cache = CacheLayer(storage)
    cache.write("k", "v")
    cache.invalidate("k")
    assert cache.peek("k") is None
    assert storage.get_item("k") is None


def test_keys_are_scoped_by_language_and_user():
    assert overview_key("u1", "ru") != overview_key("u1", "uz-Latn")
    assert overview_key("u1", "ru") != overview_key("u2", "ru")


def test_empty_value_is_served_from_memory():
    storage = MemoryStorage()
    cache = CacheLayer(storage)
    cache.write("k", [])
    storage.remove_item("k")
    assert cache.peek("k") == []
