"""Bounded, durable store of context records keyed by fingerprint.

The store owns the physical collection: it enforces the ``max_records``
ceiling, TTL validity and the single write path to the durable backend.
All map access is serialised through one ``asyncio.Lock``.

Eviction order is ascending ``(last_used_at, usage_count)``: oldest-accessed
first, ties broken by least-used.

Persistence is advisory. A capacity fault triggers an emergency eviction
that keeps the most-favoured half and retries once; if that also fails the
``put`` is dropped and logged. Callers never see a storage error.

Only a corrupt payload is discarded wholesale. A read fault leaves the store
unloaded; writes are refused (and puts dropped) until a later access loads
the persisted collection, so a transient fault never overwrites it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from nanocontext.config import EngineConfig
from nanocontext.models import ContextRecord, StoreStats
from nanocontext.observability.tracing import STORAGE_OPERATION, record_metric, timed
from nanocontext.storage.compression import CorruptPersistedState, decode_store, encode_store
from nanocontext.storage.kv import CapacityExceeded, DurableKV, StorageFault

logger = logging.getLogger(__name__)

STORE_KEY = "nanocontext:records"
MUTABLE_FIELDS = frozenset({"summary_text", "tone", "intent"})


def _eviction_order(record: ContextRecord) -> tuple[float, int]:
    return (record.last_used_at, record.usage_count)


class ContextRecordStore:
    """Fingerprint -> ``ContextRecord`` map persisted through a ``DurableKV``."""

    def __init__(
        self,
        kv: DurableKV,
        config: EngineConfig | None = None,
        *,
        storage_key: str = STORE_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._config = config or EngineConfig.from_env()
        self._storage_key = storage_key
        self._clock = clock
        self._records: Dict[str, ContextRecord] = {}
        self._lock = asyncio.Lock()
        self._loaded = False
        self._last_cleanup_at: Optional[float] = None
        self._estimated_size_bytes = 0

    @property
    def config(self) -> EngineConfig:
        return self._config

    # -- Lazy load ----------------------------------------------------

    async def _ensure_loaded(self) -> None:
        """Load the persisted collection on first access (lock held)."""
        if self._loaded:
            return
        if self._last_cleanup_at is None:
            self._last_cleanup_at = self._clock()

        try:
            with timed(STORAGE_OPERATION, action="load"):
                payload = await self._kv.get(self._storage_key)
        except StorageFault:
            # Stay unloaded: writes are refused until a load succeeds.
            record_metric("storage_fault_count")
            logger.exception("record_store.load failed; retrying on next access")
            return

        self._loaded = True
        if payload is None:
            return

        try:
            records, metadata = decode_store(payload)
        except CorruptPersistedState as exc:
            logger.warning("record_store.load discarding persisted state: %s", exc)
            await self._discard_persisted()
            return

        self._records = records
        self._estimated_size_bytes = metadata.estimated_size_bytes
        if metadata.last_cleanup_at is not None:
            self._last_cleanup_at = metadata.last_cleanup_at
        logger.debug("record_store.load restored %d records", len(records))

        evicted = self._evict_to(self._config.max_records)
        if evicted:
            record_metric("eviction_count", evicted)
            logger.info("record_store.load trimmed %d records over max_records", evicted)

    async def _discard_persisted(self) -> None:
        try:
            await self._kv.delete(self._storage_key)
        except StorageFault:
            record_metric("storage_fault_count")
            logger.exception("record_store failed to delete corrupt state")

    # -- Persistence --------------------------------------------------

    async def _write(self) -> None:
        payload, metadata = encode_store(self._records, self._last_cleanup_at)
        with timed(STORAGE_OPERATION, action="persist", records=len(self._records)):
            await self._kv.put(self._storage_key, payload)
        self._estimated_size_bytes = metadata.estimated_size_bytes

    async def _persist(self) -> bool:
        """Write the collection; returns ``False`` when the write was dropped."""
        if not self._loaded:
            logger.warning("record_store.persist skipped; persisted state not loaded yet")
            return False
        try:
            await self._write()
            return True
        except CapacityExceeded:
            record_metric("storage_fault_count")
            removed = self._emergency_evict()
            logger.warning("record_store capacity exceeded; emergency eviction removed %d records", removed)
        except StorageFault:
            record_metric("storage_fault_count")
            logger.exception("record_store.persist failed")
            return False

        try:
            await self._write()
            return True
        except StorageFault:
            record_metric("storage_fault_count")
            logger.exception("record_store.persist retry after emergency eviction failed")
            return False

    # -- Eviction -----------------------------------------------------

    def _evict_to(self, ceiling: int) -> int:
        excess = len(self._records) - ceiling
        if excess <= 0:
            return 0
        ordered = sorted(self._records.values(), key=_eviction_order)
        for record in ordered[:excess]:
            del self._records[record.fingerprint]
        return excess

    def _emergency_evict(self) -> int:
        removed = self._evict_to(len(self._records) // 2)
        record_metric("emergency_eviction_count")
        return removed

    # -- Public API ---------------------------------------------------

    async def get(self, fingerprint: str) -> Optional[ContextRecord]:
        """Return a copy of a valid record, recording the read as usage."""
        async with self._lock:
            await self._ensure_loaded()
            record = self._records.get(fingerprint)
            if record is None:
                return None
            now = self._clock()
            if not record.is_valid(self._config.expiry_duration, now):
                logger.debug("record_store.get %s expired", fingerprint)
                return None
            record.last_used_at = max(now, record.created_at)
            record.usage_count += 1
            await self._persist()
            return record.copy()

    async def put(self, record: ContextRecord) -> None:
        """Insert or replace *record*, evicting past ``max_records``."""
        async with self._lock:
            await self._ensure_loaded()
            previous = self._records.get(record.fingerprint)
            self._records[record.fingerprint] = record.copy()

            evicted = self._evict_to(self._config.max_records)
            if evicted:
                record_metric("eviction_count", evicted)
                logger.debug("record_store.put evicted %d records", evicted)

            if not await self._persist():
                if previous is not None:
                    self._records[record.fingerprint] = previous
                else:
                    self._records.pop(record.fingerprint, None)
                logger.warning("record_store.put dropped record %s", record.fingerprint)

    async def remove(self, fingerprint: str) -> bool:
        async with self._lock:
            await self._ensure_loaded()
            if self._records.pop(fingerprint, None) is None:
                return False
            await self._persist()
            return True

    async def clear(self) -> None:
        async with self._lock:
            await self._ensure_loaded()
            self._records.clear()
            self._estimated_size_bytes = 0
            await self._discard_persisted()

    async def update_fields(self, fingerprint: str, **fields: Any) -> Optional[ContextRecord]:
        """Merge user edits of ``summary_text``/``tone``/``intent``.

        Other keys are ignored. No-op (returns ``None``) when absent.
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            logger.warning("record_store.update_fields ignoring immutable fields %s", sorted(unknown))

        async with self._lock:
            await self._ensure_loaded()
            record = self._records.get(fingerprint)
            if record is None:
                return None
            for name in MUTABLE_FIELDS & set(fields):
                value = fields[name]
                if value is not None:
                    setattr(record, name, value)
            record.last_used_at = max(self._clock(), record.created_at)
            await self._persist()
            return record.copy()

    async def count(self) -> int:
        """Physical record count, expired records included."""
        async with self._lock:
            await self._ensure_loaded()
            return len(self._records)

    async def fingerprints(self) -> List[str]:
        async with self._lock:
            await self._ensure_loaded()
            return list(self._records)

    async def list_stats(self) -> StoreStats:
        async with self._lock:
            await self._ensure_loaded()
            now = self._clock()
            records = list(self._records.values())
            valid = sum(1 for r in records if r.is_valid(self._config.expiry_duration, now))
            created = [r.created_at for r in records]
            return StoreStats(
                total=len(records),
                valid=valid,
                expired=len(records) - valid,
                estimated_size_bytes=self._estimated_size_bytes,
                oldest_created_at=min(created) if created else None,
                newest_created_at=max(created) if created else None,
                last_cleanup_at=self._last_cleanup_at,
            )

    async def clear_expired(self) -> int:
        """Physically drop TTL-expired records; returns how many."""
        async with self._lock:
            await self._ensure_loaded()
            now = self._clock()
            expired = [
                fp
                for fp, record in self._records.items()
                if not record.is_valid(self._config.expiry_duration, now)
            ]
            for fp in expired:
                del self._records[fp]
            self._last_cleanup_at = now
            await self._persist()

        if expired:
            record_metric("expired_cleanup_count", len(expired))
            logger.info("record_store cleared %d expired records", len(expired))
        return len(expired)

    async def cleanup_if_due(self) -> int:
        """Run ``clear_expired`` once ``cleanup_interval`` has elapsed."""
        async with self._lock:
            await self._ensure_loaded()
            last = self._last_cleanup_at or 0.0
            due = self._clock() - last >= self._config.cleanup_interval
        if not due:
            return 0
        return await self.clear_expired()
