"""Unit tests for the bounded, TTL-validated record store."""

import sys
import os
import asyncio
import json

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "nanocontext_server"))

from nanocontext.config import EngineConfig
from nanocontext.models import ContextRecord
from nanocontext.observability.tracing import get_metrics, reset_metrics
from nanocontext.storage.kv import CapacityExceeded, MemoryKV, StorageFault
from nanocontext.storage.record_store import STORE_KEY, ContextRecordStore


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class RecordLimitKV(MemoryKV):
    """Rejects payloads holding more than ``limit`` records."""

    def __init__(self, limit):
        super().__init__()
        self.limit = limit

    async def put(self, key, value):
        if len(json.loads(value)["records"]) > self.limit:
            raise CapacityExceeded("too many records")
        await super().put(key, value)


class BrokenWriteKV(MemoryKV):
    async def put(self, key, value):
        raise StorageFault("disk unavailable")


class FlakyReadKV(MemoryKV):
    """Fails the next ``failures`` reads, then behaves normally."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    async def get(self, key):
        if self.failures:
            self.failures -= 1
            raise StorageFault("transient read failure")
        return await super().get(key)


def _record(fp, created_at=0.0, last_used_at=0.0, usage_count=0, **overrides):
    fields = dict(
        fingerprint=fp,
        summary_text=f"Summary for {fp}",
        tone="formal",
        intent="report",
        source_model_id="gpt-test",
        text_length=100,
        created_at=created_at,
        last_used_at=last_used_at,
        usage_count=usage_count,
    )
    fields.update(overrides)
    return ContextRecord(**fields)


def setup_function():
    reset_metrics()


def test_put_then_get_returns_copy_and_counts_usage():
    """Reads return copies and record usage."""
    async def scenario():
        clock = FakeClock(10.0)
        store = ContextRecordStore(MemoryKV(), EngineConfig(), clock=clock)
        await store.put(_record("fp1", created_at=5.0))

        first = await store.get("fp1")
        assert first.usage_count == 1
        assert first.last_used_at == 10.0

        first.summary_text = "mutated by caller"
        second = await store.get("fp1")
        assert second.summary_text == "Summary for fp1"
        assert second.usage_count == 2

    asyncio.run(scenario())


def test_get_missing_returns_none():
    """Unknown fingerprints return None."""
    async def scenario():
        store = ContextRecordStore(MemoryKV(), EngineConfig())
        assert await store.get("nope") is None

    asyncio.run(scenario())


def test_expired_record_is_invisible_until_cleared():
    """Expired records are hidden but counted until cleared."""
    async def scenario():
        clock = FakeClock(0.0)
        store = ContextRecordStore(MemoryKV(), EngineConfig(expiry_duration=100), clock=clock)
        await store.put(_record("fp1", created_at=0.0))

        clock.now = 99.0
        assert await store.get("fp1") is not None

        clock.now = 100.0
        assert await store.get("fp1") is None
        assert await store.count() == 1

        assert await store.clear_expired() == 1
        assert await store.count() == 0
        assert get_metrics()["expired_cleanup_count"] == 1

    asyncio.run(scenario())


def test_eviction_removes_least_recently_used():
    """The least recently used record is evicted first."""
    async def scenario():
        clock = FakeClock(10.0)
        store = ContextRecordStore(MemoryKV(), EngineConfig(max_records=3), clock=clock)
        await store.put(_record("r1", created_at=1.0))
        await store.put(_record("r2", created_at=2.0))
        await store.put(_record("r3", created_at=3.0))
        await store.get("r1")  # r1.last_used_at -> 10.0

        await store.put(_record("r4", created_at=4.0))
        assert await store.count() == 3
        assert sorted(await store.fingerprints()) == ["r1", "r3", "r4"]
        assert get_metrics()["eviction_count"] == 1

    asyncio.run(scenario())


def test_eviction_ties_broken_by_usage_count():
    """Ties on last use evict the least used record."""
    async def scenario():
        store = ContextRecordStore(MemoryKV(), EngineConfig(max_records=2), clock=FakeClock(20.0))
        await store.put(_record("busy", created_at=1.0, last_used_at=5.0, usage_count=4))
        await store.put(_record("idle", created_at=1.0, last_used_at=5.0, usage_count=0))
        await store.put(_record("fresh", created_at=9.0))
        assert sorted(await store.fingerprints()) == ["busy", "fresh"]

    asyncio.run(scenario())


def test_count_never_exceeds_max_records():
    """The store never holds more than max_records."""
    async def scenario():
        store = ContextRecordStore(MemoryKV(), EngineConfig(max_records=5), clock=FakeClock(100.0))
        for i in range(20):
            await store.put(_record(f"fp{i}", created_at=float(i)))
            assert await store.count() <= 5

    asyncio.run(scenario())


def test_records_survive_a_new_store_instance():
    """Records persist across store instances."""
    async def scenario():
        kv = MemoryKV()
        clock = FakeClock(50.0)
        await ContextRecordStore(kv, EngineConfig(), clock=clock).put(_record("fp1", created_at=40.0))

        reopened = ContextRecordStore(kv, EngineConfig(), clock=clock)
        record = await reopened.get("fp1")
        assert record is not None
        assert record.summary_text == "Summary for fp1"
        assert record.tone == "formal"
        assert record.created_at == 40.0

    asyncio.run(scenario())


def test_corrupt_persisted_state_is_discarded():
    """Corrupt payloads are deleted and the store starts empty."""
    async def scenario():
        kv = MemoryKV()
        await kv.put(STORE_KEY, "{not valid json")
        store = ContextRecordStore(kv, EngineConfig())
        assert await store.count() == 0
        assert await kv.get(STORE_KEY) is None

    asyncio.run(scenario())


def test_capacity_fault_triggers_emergency_eviction():
    """A capacity fault halves the collection and retries once."""
    async def scenario():
        store = ContextRecordStore(RecordLimitKV(limit=4), EngineConfig(), clock=FakeClock(100.0))
        for i in range(5):
            await store.put(_record(f"fp{i}", created_at=float(i)))

        assert await store.count() == 2
        assert sorted(await store.fingerprints()) == ["fp3", "fp4"]
        assert get_metrics()["emergency_eviction_count"] == 1

    asyncio.run(scenario())


def test_failed_persist_drops_the_put():
    """A put that cannot be persisted is dropped."""
    async def scenario():
        store = ContextRecordStore(BrokenWriteKV(), EngineConfig(), clock=FakeClock(10.0))
        await store.put(_record("fp1", created_at=1.0))
        assert await store.get("fp1") is None
        assert get_metrics()["storage_fault_count"] >= 1

    asyncio.run(scenario())


def test_update_fields_merges_editable_fields_only():
    """Only summary, tone and intent are editable."""
    async def scenario():
        store = ContextRecordStore(MemoryKV(), EngineConfig(), clock=FakeClock(10.0))
        await store.put(_record("fp1", created_at=1.0))

        updated = await store.update_fields("fp1", tone="casual", fingerprint="other", intent=None)
        assert updated.tone == "casual"
        assert updated.intent == "report"
        assert updated.fingerprint == "fp1"

        assert await store.update_fields("missing", tone="casual") is None

    asyncio.run(scenario())


def test_remove_and_clear():
    """remove reports presence; clear drops everything."""
    async def scenario():
        kv = MemoryKV()
        store = ContextRecordStore(kv, EngineConfig(), clock=FakeClock(10.0))
        await store.put(_record("fp1", created_at=1.0))
        await store.put(_record("fp2", created_at=1.0))

        assert await store.remove("fp1") is True
        assert await store.remove("fp1") is False
        assert await store.fingerprints() == ["fp2"]

        await store.clear()
        assert await store.count() == 0
        assert await kv.get(STORE_KEY) is None

    asyncio.run(scenario())


def test_cleanup_if_due_respects_interval():
    """Cleanup waits for the configured interval."""
    async def scenario():
        clock = FakeClock(0.0)
        config = EngineConfig(expiry_duration=10, cleanup_interval=100)
        store = ContextRecordStore(MemoryKV(), config, clock=clock)
        await store.put(_record("old", created_at=0.0))

        clock.now = 50.0
        assert await store.cleanup_if_due() == 0
        assert await store.count() == 1

        clock.now = 100.0
        assert await store.cleanup_if_due() == 1
        assert await store.count() == 0

    asyncio.run(scenario())


def test_list_stats():
    """Stats split valid and expired records."""
    async def scenario():
        clock = FakeClock(0.0)
        store = ContextRecordStore(MemoryKV(), EngineConfig(expiry_duration=10), clock=clock)
        await store.put(_record("old", created_at=0.0))
        clock.now = 8.0
        await store.put(_record("new", created_at=8.0))
        clock.now = 12.0

        stats = await store.list_stats()
        assert stats.total == 2
        assert stats.valid == 1
        assert stats.expired == 1
        assert stats.oldest_created_at == 0.0
        assert stats.newest_created_at == 8.0
        assert stats.estimated_size_bytes > 0
        assert stats.last_cleanup_at == 0.0

    asyncio.run(scenario())


def test_transient_read_fault_keeps_persisted_records():
    """A failed load is retried later instead of overwriting the stored collection."""
    async def scenario():
        kv = FlakyReadKV(failures=0)
        clock = FakeClock(100.0)
        seeded = ContextRecordStore(kv, EngineConfig(), clock=clock)
        for i in range(5):
            await seeded.put(_record(f"fp{i}", created_at=float(i)))

        kv.failures = 1
        reopened = ContextRecordStore(kv, EngineConfig(), clock=clock)
        await reopened.put(_record("new", created_at=50.0))  # dropped: nothing loaded yet
        assert await reopened.count() == 5

        await reopened.put(_record("new", created_at=50.0))
        fresh = ContextRecordStore(kv, EngineConfig(), clock=clock)
        assert sorted(await fresh.fingerprints()) == ["fp0", "fp1", "fp2", "fp3", "fp4", "new"]

    asyncio.run(scenario())


def test_load_trims_collection_to_max_records():
    """A collection saved under a larger ceiling is trimmed on load."""
    async def scenario():
        kv = MemoryKV()
        clock = FakeClock(100.0)
        large = ContextRecordStore(kv, EngineConfig(max_records=10), clock=clock)
        for i in range(5):
            await large.put(_record(f"fp{i}", created_at=float(i)))

        small = ContextRecordStore(kv, EngineConfig(max_records=3), clock=clock)
        assert await small.count() == 3
        assert sorted(await small.fingerprints()) == ["fp2", "fp3", "fp4"]

    asyncio.run(scenario())
