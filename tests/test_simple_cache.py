"""Unit tests for the in-memory TaggedTTLCache and the RecordCache facade."""

import threading
from datetime import datetime, timezone

from app.schemas.records import Record
from app.utils.simple_cache import RecordCache, TaggedTTLCache


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def _record(record_id: str, owner_id: str | None = "42", **overrides) -> Record:
    base = {
        "id": record_id,
        "destination": f"https://example.com/{record_id}",
        "image_key": f"qr-images/{record_id}.png",
        "owner_id": owner_id,
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }
    base.update(overrides)
    return Record(**base)


def _record_cache(cache: TaggedTTLCache) -> RecordCache:
    return RecordCache(
        cache,
        record_ttl_seconds=600,
        image_ttl_seconds=3600,
        owner_list_ttl_seconds=300,
    )


def test_set_and_get_updates_hit_miss_counters() -> None:
    cache = TaggedTTLCache(default_ttl_seconds=10)

    assert cache.get("missing") is None

    cache.set("key", {"v": 1})

    assert cache.get("key") == {"v": 1}

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_entry_expires_after_its_own_ttl() -> None:
    fake_time = FakeTime()
    cache = TaggedTTLCache(default_ttl_seconds=300, clock=fake_time)
    cache.set("k", "v", ttl_seconds=1)

    fake_time.advance(0.5)
    assert cache.get("k") == "v"

    fake_time.advance(1.0)
    assert cache.get("k") is None
    assert cache.stats()["evictions"] == 1


def test_invalidate_by_tags_removes_every_intersecting_entry() -> None:
    cache = TaggedTTLCache(default_ttl_seconds=60)
    cache.set("a", 1, tags=["owner:42", "record:a"])
    cache.set("b", 2, tags=["owner:42"])
    cache.set("c", 3, tags=["owner:7"])
    cache.set("d", 4)

    removed = cache.invalidate_by_tags(["owner:42"])

    assert removed == 2
    assert cache.get("a") is None
    assert cache.get("b") is None
    assert cache.get("c") == 3
    assert cache.get("d") == 4


def test_invalidate_by_no_tags_is_noop() -> None:
    cache = TaggedTTLCache(default_ttl_seconds=60)
    cache.set("a", 1, tags=["x"])

    assert cache.invalidate_by_tags([]) == 0
    assert cache.get("a") == 1


def test_sweep_removes_expired_entries() -> None:
    fake_time = FakeTime()
    cache = TaggedTTLCache(default_ttl_seconds=10, clock=fake_time)
    cache.set("short", 1, ttl_seconds=1)
    cache.set("long", 2, ttl_seconds=100)

    fake_time.advance(5)

    assert cache.sweep() == 1
    assert cache.stats()["entries"] == 1
    assert cache.get("long") == 2


def test_lru_eviction_removes_least_recently_used() -> None:
    cache = TaggedTTLCache(default_ttl_seconds=100, max_entries=2)
    cache.set("a", {"v": 1})
    cache.set("b", {"v": 2})

    # Access "a" so that "b" becomes least recently used
    assert cache.get("a") == {"v": 1}

    cache.set("c", {"v": 3})

    assert cache.get("a") == {"v": 1}
    assert cache.get("c") == {"v": 3}
    assert cache.get("b") is None


def test_clear_resets_state() -> None:
    cache = TaggedTTLCache(default_ttl_seconds=10)
    cache.set("a", {"v": 1})
    cache.set("b", {"v": 2})
    cache.get("a")

    cache.clear()

    stats = cache.stats()
    assert stats["entries"] == 0
    assert stats["hits"] == 0
    assert stats["misses"] == 0
    assert stats["evictions"] == 0


def test_thread_safety_under_concurrent_sets() -> None:
    cache = TaggedTTLCache(default_ttl_seconds=30, max_entries=None)
    total_keys = 50

    def _writer(idx: int) -> None:
        cache.set(f"k-{idx}", {"v": idx}, tags=[f"t-{idx % 5}"])

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.stats()["entries"] == total_keys
    assert cache.invalidate_by_tags(["t-0"]) == 10


def test_record_invalidation_keeps_image_entry() -> None:
    records = _record_cache(TaggedTTLCache(default_ttl_seconds=60))
    record = _record("r1")
    records.set_record(record)
    records.set_image_key("r1", record.image_key)
    records.set_owner_records("42", [record, _record("r2")])

    records.invalidate_record("r1")

    assert records.get_record("r1") is None
    assert records.get_owner_records("42") is None
    assert records.get_image_key("r1") == "qr-images/r1.png"


def test_owner_invalidation_drops_owner_entries_only() -> None:
    records = _record_cache(TaggedTTLCache(default_ttl_seconds=60))
    records.set_record(_record("r1", owner_id="42"))
    records.set_record(_record("r2", owner_id="7"))
    records.set_record(_record("r3", owner_id=None))

    records.invalidate_owner("42")

    assert records.get_record("r1") is None
    assert records.get_record("r2") is not None
    assert records.get_record("r3") is not None


def test_forget_drops_image_entry_too() -> None:
    records = _record_cache(TaggedTTLCache(default_ttl_seconds=60))
    record = _record("r1")
    records.set_record(record)
    records.set_image_key("r1", record.image_key)

    records.forget("r1", "42")

    assert records.get_record("r1") is None
    assert records.get_image_key("r1") is None


def test_record_cache_uses_per_kind_ttls() -> None:
    fake_time = FakeTime()
    records = _record_cache(TaggedTTLCache(default_ttl_seconds=60, clock=fake_time))
    record = _record("r1")
    records.set_record(record)
    records.set_image_key("r1", record.image_key)

    fake_time.advance(601)

    assert records.get_record("r1") is None
    assert records.get_image_key("r1") == record.image_key
