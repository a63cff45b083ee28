"""Observability setup for the context-awareness engine.

Provides OpenTelemetry tracing, per-operation timing and structured logging
with correlation fields. Counters cover similarity checks, the generation
path and the record store.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from opentelemetry import trace

from nanocontext import config as cfg

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("nanocontext")

SLOW_OPERATION_THRESHOLD_MS = 100.0

# Timed operation names.
JACCARD_SIMILARITY = "jaccard_similarity"
CONTEXT_GENERATION = "context_generation"
STORAGE_OPERATION = "storage_operation"

# ── Metrics counters (simple in-process) ─────────────────────────────

_DEFAULT_METRICS: Dict[str, float] = {
    "similarity_check_count": 0,
    "cache_hit_count": 0,
    "cache_miss_count": 0,
    "coalesced_request_count": 0,
    "input_rejected_count": 0,
    "generation_attempt_count": 0,
    "generation_success": 0,
    "generation_failure": 0,
    "generation_timeout_count": 0,
    "callback_failure_count": 0,
    "debounced_trigger_count": 0,
    "storage_fault_count": 0,
    "emergency_eviction_count": 0,
    "eviction_count": 0,
    "expired_cleanup_count": 0,
}

_metrics: Dict[str, float] = dict(_DEFAULT_METRICS)

# operation -> {count, total_ms, min_ms, max_ms, last_updated}
_timings: Dict[str, Dict[str, float]] = {}


def record_metric(name: str, value: float = 1.0) -> None:
    """Increment / accumulate a named metric."""
    _metrics[name] = _metrics.get(name, 0) + value


def get_metrics() -> Dict[str, float]:
    """Return a snapshot of current metrics."""
    return dict(_metrics)


def reset_metrics() -> None:
    """Reset all metric counters and timing stats (testing helper)."""
    _metrics.clear()
    _metrics.update(_DEFAULT_METRICS)
    _timings.clear()


def record_timing(operation: str, duration_ms: float, **metadata: Any) -> None:
    """Fold one measured duration into the per-operation stats."""
    stats = _timings.get(operation)
    if stats is None:
        stats = {"count": 0, "total_ms": 0.0, "min_ms": duration_ms, "max_ms": duration_ms}
        _timings[operation] = stats
    stats["count"] += 1
    stats["total_ms"] += duration_ms
    stats["min_ms"] = min(stats["min_ms"], duration_ms)
    stats["max_ms"] = max(stats["max_ms"], duration_ms)
    stats["last_updated"] = time.time()

    record_metric(f"{operation}_count")
    record_metric(f"{operation}_ms_total", duration_ms)

    if duration_ms > SLOW_OPERATION_THRESHOLD_MS:
        logger.warning("Slow operation detected: %s took %.2fms | %s", operation, duration_ms, metadata)


def get_timing_stats() -> Dict[str, Dict[str, float]]:
    """Per-operation count/min/max/avg in milliseconds."""
    snapshot: Dict[str, Dict[str, float]] = {}
    for operation, stats in _timings.items():
        entry = dict(stats)
        entry["avg_ms"] = stats["total_ms"] / stats["count"] if stats["count"] else 0.0
        snapshot[operation] = entry
    return snapshot


@contextmanager
def timed(operation: str, **metadata: Any) -> Iterator[None]:
    """Time the enclosed block inside an OpenTelemetry span."""
    start = time.perf_counter()
    with _tracer.start_as_current_span(operation) as span:
        for key, value in metadata.items():
            if isinstance(value, (str, bool, int, float)):
                span.set_attribute(f"nanocontext.{key}", value)
        try:
            yield
        finally:
            record_timing(operation, (time.perf_counter() - start) * 1000, **metadata)


# ── Structured logging helper ────────────────────────────────────────

def log_with_context(
    level: int,
    message: str,
    *,
    fingerprint: str = "",
    model_id: str = "",
    **extra: Any,
) -> None:
    """Emit a structured log line with correlation fields."""
    fields = {
        "fingerprint": fingerprint,
        "model_id": model_id,
        **extra,
    }
    logger.log(level, "%s | %s", message, fields)


# ── Optional OpenTelemetry bootstrap ─────────────────────────────────

def init_otel() -> None:
    """Initialise OpenTelemetry tracing if ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set."""
    endpoint = cfg.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        logger.info("OTEL endpoint not configured; tracing disabled.")
        return

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({"service.name": "nanocontext"})
        provider = TracerProvider(resource=resource)
        exporter = OTLPSpanExporter(endpoint=endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        logger.info("OpenTelemetry tracing initialised (endpoint=%s)", endpoint)
    except ImportError:
        logger.warning("OpenTelemetry SDK not installed; tracing disabled.")
    except Exception:
        logger.exception("OpenTelemetry initialisation failed")
