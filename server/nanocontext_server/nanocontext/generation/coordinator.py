"""Generation Coordinator: decides when to (re)generate context and does it once.

Per-fingerprint lifecycle (transient, only while work is in flight):

    IDLE -> DEBOUNCING -> GENERATING -> {SUCCEEDED, FAILED} -> IDLE

Debouncing lives in ``generation.debounce``; this module covers the rest:

- Change detection: regenerate only when Jaccard similarity between the old
  and new snapshot drops below ``update_threshold``.
- Cache-hit path: a valid stored record is returned without calling the
  summarizer.
- Request coalescing: concurrent requests for the same
  ``(fingerprint, model)`` share one in-flight summarizer call.
- Large-text path: inputs over ``max_input_length`` are head/tail truncated
  but keyed under the fingerprint of the untruncated text.

Every failure degrades to ``None``; nothing here raises to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from nanocontext.config import EngineConfig
from nanocontext.models import ContextRecord, ModelRef
from nanocontext.observability.tracing import (
    CONTEXT_GENERATION,
    get_metrics,
    get_timing_stats,
    log_with_context,
    record_metric,
    timed,
)
from nanocontext.generation.summarizer import GenerationFault, Summarizer
from nanocontext.generation.truncation import smart_truncate
from nanocontext.similarity.fingerprint import fingerprint as compute_fingerprint
from nanocontext.similarity.jaccard import jaccard_similarity
from nanocontext.storage.compression import ELLIPSIS, truncate_summary
from nanocontext.storage.record_store import ContextRecordStore

logger = logging.getLogger(__name__)

TRUNCATED_ANNOTATION = " (generated from truncated large text)"
MAX_SUMMARY_LENGTH = 1000

UpdateCallback = Callable[[ContextRecord], Union[None, Awaitable[None]]]


class ContextCoordinator:
    """Owns the decision to create or refresh context records."""

    def __init__(
        self,
        store: ContextRecordStore,
        summarizer: Summarizer,
        config: EngineConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._summarizer = summarizer
        self._config = config or store.config
        self._clock = clock
        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> ContextRecordStore:
        return self._store

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def fingerprint(self, text: str) -> str:
        return compute_fingerprint(text, self._config.fingerprint_algorithm)

    # -- Change detection ---------------------------------------------

    async def check_and_update(
        self,
        current_text: str,
        previous_text: str,
        model: Optional[ModelRef],
        on_update: Optional[UpdateCallback] = None,
    ) -> Optional[ContextRecord]:
        """Regenerate context when *current_text* differs enough from *previous_text*."""
        if not self._config.enabled or not self._config.auto_generate:
            return None

        if current_text == previous_text:
            return None

        similarity = jaccard_similarity(current_text, previous_text)
        if similarity >= self._config.update_threshold:
            logger.debug("check_and_update: similarity %.3f, no update needed", similarity)
            return None

        logger.info("Text similarity: %.3f, triggering context update", similarity)
        record = await self.generate_for_text(current_text, model)

        if record is not None and on_update is not None:
            await self._notify(on_update, record)

        return record

    async def _notify(self, on_update: UpdateCallback, record: ContextRecord) -> None:
        try:
            result = on_update(record.copy())
            if inspect.isawaitable(result):
                await result
        except Exception:
            record_metric("callback_failure_count")
            logger.exception("check_and_update: context update callback failed")

    # -- Generation ---------------------------------------------------

    def _rejection_reason(self, text: Any, model: Optional[ModelRef]) -> Optional[str]:
        if not self._config.enabled:
            return "disabled"
        if not isinstance(text, str) or not text.strip():
            return "empty"
        if len(text) < self._config.min_input_length:
            return "too_short"
        if model is None or not model.id:
            return "no_model"
        return None

    async def generate_for_text(
        self,
        text: str,
        model: Optional[ModelRef],
        *,
        timeout: Optional[float] = None,
    ) -> Optional[ContextRecord]:
        """Return context for *text*, generating it at most once per content."""
        reason = self._rejection_reason(text, model)
        if reason is not None:
            record_metric("input_rejected_count")
            logger.debug("generate_for_text rejected input: %s", reason)
            return None

        truncated = len(text) > self._config.max_input_length
        key = self.fingerprint(text)

        try:
            cached = await self._store.get(key)
        except Exception:
            logger.exception("generate_for_text: store lookup failed")
            cached = None
        if cached is not None:
            record_metric("cache_hit_count")
            log_with_context(logging.DEBUG, "context cache hit", fingerprint=key, model_id=model.id)
            return cached
        record_metric("cache_miss_count")

        flight_key = (key, model.id)
        task = self._in_flight.get(flight_key)
        if task is not None:
            record_metric("coalesced_request_count")
            log_with_context(logging.DEBUG, "joining in-flight generation", fingerprint=key, model_id=model.id)
        else:
            source = smart_truncate(text, self._config.max_input_length) if truncated else text
            if truncated:
                logger.info(
                    "generate_for_text: processing large text with truncation (%d -> %d chars)",
                    len(text),
                    len(source),
                )
            task = asyncio.ensure_future(
                self._generate(source, key, model, len(text), truncated, timeout)
            )
            self._in_flight[flight_key] = task
            task.add_done_callback(lambda done, k=flight_key: self._release(k, done))

        try:
            return await asyncio.shield(task)
        except Exception:
            logger.exception("generate_for_text: in-flight generation failed")
            return None

    def _release(self, flight_key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._in_flight.get(flight_key) is task:
            del self._in_flight[flight_key]

    async def _generate(
        self,
        source: str,
        key: str,
        model: ModelRef,
        original_length: int,
        truncated: bool,
        timeout: Optional[float],
    ) -> Optional[ContextRecord]:
        limit = timeout if timeout is not None else self._config.generation_timeout
        record_metric("generation_attempt_count")
        log_with_context(
            logging.INFO,
            "generating context",
            fingerprint=key,
            model_id=model.id,
            chars=len(source),
            original_chars=original_length,
        )

        try:
            with timed(CONTEXT_GENERATION, model_id=model.id, chars=len(source)):
                result = await asyncio.wait_for(
                    self._summarizer.generate_summary(source, model), timeout=limit
                )
        except asyncio.TimeoutError:
            record_metric("generation_timeout_count")
            record_metric("generation_failure")
            logger.warning("Context generation timed out after %.1fs for %s", limit, key)
            return None
        except GenerationFault as exc:
            record_metric("generation_failure")
            logger.warning("Context generation failed for %s: %s", key, exc)
            return None
        except Exception:
            record_metric("generation_failure")
            logger.exception("Context generation failed for %s", key)
            return None

        summary = result.summary
        annotation = TRUNCATED_ANNOTATION if truncated else ""
        summary_limit = MAX_SUMMARY_LENGTH - len(annotation) - len(ELLIPSIS)
        summary_text = truncate_summary(summary.summary_text, summary_limit) + annotation
        now = self._clock()
        record = ContextRecord(
            fingerprint=key,
            summary_text=summary_text,
            tone=summary.tone,
            intent=summary.intent,
            source_model_id=result.model.id,
            text_length=original_length,
            key_arguments=list(summary.key_arguments),
            confidence=summary.confidence,
            created_at=now,
            last_used_at=now,
            usage_count=0,
        )

        try:
            await self._store.put(record)
        except Exception:
            logger.exception("generate_for_text: failed to store record %s", key)

        record_metric("generation_success")
        log_with_context(
            logging.INFO,
            "context generated",
            fingerprint=key,
            model_id=result.model.id,
            used_fallback=result.used_fallback,
        )
        return record.copy()

    # -- Lookups ------------------------------------------------------

    async def get_context_for_text(
        self, text: str, reference_text: Optional[str] = None
    ) -> Optional[ContextRecord]:
        """Stored context for *text*, without generating.

        On a miss, the record of *reference_text* (typically the previous
        snapshot) is reused when the two are at least ``cache_threshold``
        similar.
        """
        key = self.fingerprint(text) if isinstance(text, str) else ""
        if not key:
            return None
        try:
            record = await self._store.get(key)
            if record is not None or not reference_text:
                return record

            reference_key = self.fingerprint(reference_text)
            if not reference_key or reference_key == key:
                return None
            if jaccard_similarity(text, reference_text) < self._config.cache_threshold:
                return None
            return await self._store.get(reference_key)
        except Exception:
            logger.exception("get_context_for_text: store lookup failed")
            return None

    # -- Diagnostics --------------------------------------------------

    async def get_monitoring_data(self) -> Dict[str, Any]:
        try:
            stats = asdict(await self._store.list_stats())
        except Exception:
            logger.exception("get_monitoring_data: store stats unavailable")
            stats = {}
        return {
            "service": {
                "config": self._config.as_dict(),
                "store_stats": stats,
                "generation_in_progress": self.in_flight_count,
            },
            "metrics": get_metrics(),
            "performance": get_timing_stats(),
        }

    async def generate_diagnostic_report(self) -> str:
        data = await self.get_monitoring_data()
        service = data["service"]
        stats = service["store_stats"]
        config = service["config"]

        lines = ["=== Nano Context Diagnostic Report ===", "", "Service Status:"]
        lines.append(f"  Enabled: {config['enabled']}")
        lines.append(f"  Auto Generate: {config['auto_generate']}")
        lines.append(f"  Generation in Progress: {service['generation_in_progress']}")
        lines.append("")
        lines.append("Record Store:")
        for name in ("total", "valid", "expired", "estimated_size_bytes"):
            lines.append(f"  {name}: {stats.get(name, 'n/a')}")
        lines.append("")
        lines.append("Metrics:")
        for name, value in sorted(data["metrics"].items()):
            lines.append(f"  {name}: {value:g}")
        lines.append("")
        lines.append("Performance:")
        if not data["performance"]:
            lines.append("  no operations recorded")
        for operation, timing in sorted(data["performance"].items()):
            lines.append(
                f"  {operation}: count={int(timing['count'])} avg={timing['avg_ms']:.2f}ms "
                f"min={timing['min_ms']:.2f}ms max={timing['max_ms']:.2f}ms"
            )
        return "\n".join(lines) + "\n"
