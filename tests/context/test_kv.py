"""Unit tests for the durable key-value backends."""

import sys
import os
import asyncio

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "nanocontext_server"))

from nanocontext.storage.kv import CapacityExceeded, FileKV, MemoryKV, StorageFault


def test_memory_kv_put_get_delete():
    """MemoryKV supports the full key-value contract."""
    async def scenario():
        kv = MemoryKV()
        assert await kv.get("k") is None
        await kv.put("k", "value")
        assert await kv.get("k") == "value"
        assert await kv.keys() == ["k"]
        await kv.delete("k")
        assert await kv.get("k") is None
        await kv.delete("k")  # deleting a missing key is a no-op

    asyncio.run(scenario())


def test_memory_kv_quota():
    """Writes past the quota raise CapacityExceeded."""
    async def scenario():
        kv = MemoryKV(capacity_bytes=10)
        await kv.put("a", "12345")
        await kv.put("a", "1234567890")  # replacing a value does not double count
        with pytest.raises(CapacityExceeded):
            await kv.put("b", "x")
        assert await kv.get("b") is None

    asyncio.run(scenario())


def test_capacity_exceeded_is_storage_fault():
    """Capacity faults are storage faults."""
    assert issubclass(CapacityExceeded, StorageFault)


def test_file_kv_round_trip(tmp_path):
    """FileKV stores each key as a file under its root."""
    async def scenario():
        kv = FileKV(tmp_path / "store")
        assert await kv.get("nanocontext:records") is None
        await kv.put("nanocontext:records", '{"x": 1}')
        assert await kv.get("nanocontext:records") == '{"x": 1}'
        assert await kv.keys() == ["nanocontext:records"]
        await kv.delete("nanocontext:records")
        assert await kv.keys() == []

    asyncio.run(scenario())


def test_file_kv_overwrite_leaves_no_temp_files(tmp_path):
    """Atomic writes leave only the final file behind."""
    async def scenario():
        kv = FileKV(tmp_path)
        await kv.put("key", "first")
        await kv.put("key", "second")
        assert await kv.get("key") == "second"

    asyncio.run(scenario())
    assert [p.suffix for p in tmp_path.iterdir()] == [".json"]


def test_file_kv_quota(tmp_path):
    """FileKV enforces its byte quota across keys."""
    async def scenario():
        kv = FileKV(tmp_path, max_bytes=8)
        await kv.put("a", "1234")
        with pytest.raises(CapacityExceeded):
            await kv.put("b", "123456")
        await kv.put("a", "12345678")
        assert await kv.get("a") == "12345678"

    asyncio.run(scenario())


def test_file_kv_read_failure_is_storage_fault(tmp_path):
    """OS read errors surface as StorageFault."""
    async def scenario():
        kv = FileKV(tmp_path)
        # A directory where the value file should be makes the read fail.
        kv._path("key").mkdir(parents=True)
        with pytest.raises(StorageFault):
            await kv.get("key")

    asyncio.run(scenario())
