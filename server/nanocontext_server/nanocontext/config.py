"""Centralised configuration for the context-awareness engine.

All values are read from environment variables with sensible defaults.
``EngineConfig`` bundles the per-session options handed to the store,
coordinator and debouncer through their constructors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict


def _bool_env(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() in ("true", "1", "yes")


def _int_env(name: str, default: int = 0) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float = 0.0) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# ── Core ─────────────────────────────────────────────────────────────
NANO_CONTEXT_ENABLED: bool = _bool_env("NANO_CONTEXT_ENABLED", True)
NANO_CONTEXT_AUTO_GENERATE: bool = _bool_env("NANO_CONTEXT_AUTO_GENERATE", True)

# ── Similarity thresholds ────────────────────────────────────────────
NANO_CONTEXT_UPDATE_THRESHOLD: float = _float_env("NANO_CONTEXT_UPDATE_THRESHOLD", 0.8)
NANO_CONTEXT_CACHE_THRESHOLD: float = _float_env("NANO_CONTEXT_CACHE_THRESHOLD", 0.95)

# ── Record store ─────────────────────────────────────────────────────
NANO_CONTEXT_MAX_RECORDS: int = _int_env("NANO_CONTEXT_MAX_RECORDS", 100)
NANO_CONTEXT_EXPIRY_SECONDS: float = _float_env("NANO_CONTEXT_EXPIRY_SECONDS", 7 * 86_400)
NANO_CONTEXT_CLEANUP_INTERVAL_SECONDS: float = _float_env(
    "NANO_CONTEXT_CLEANUP_INTERVAL_SECONDS", 86_400
)
NANO_CONTEXT_STORE_PATH: str = os.getenv(
    "NANO_CONTEXT_STORE_PATH", str(Path.home() / ".nanocontext" / "store")
)
NANO_CONTEXT_STORE_MAX_BYTES: int = _int_env("NANO_CONTEXT_STORE_MAX_BYTES", 0)  # 0 = unbounded
NANO_CONTEXT_FINGERPRINT_ALGORITHM: str = os.getenv(
    "NANO_CONTEXT_FINGERPRINT_ALGORITHM", "rolling32"
)  # rolling32|sha256

# ── Generation ───────────────────────────────────────────────────────
NANO_CONTEXT_DEBOUNCE_SECONDS: float = _float_env("NANO_CONTEXT_DEBOUNCE_SECONDS", 2.0)
NANO_CONTEXT_MAX_INPUT_LENGTH: int = _int_env("NANO_CONTEXT_MAX_INPUT_LENGTH", 10_000)
NANO_CONTEXT_MIN_INPUT_LENGTH: int = _int_env("NANO_CONTEXT_MIN_INPUT_LENGTH", 50)
NANO_CONTEXT_GENERATION_TIMEOUT_SECONDS: float = _float_env(
    "NANO_CONTEXT_GENERATION_TIMEOUT_SECONDS", 30.0
)

# ── Azure OpenAI (reference model backend) ───────────────────────────
AZURE_OPENAI_ENDPOINT: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_API_KEY: str = os.getenv("AZURE_OPENAI_API_KEY", "")
AZURE_OPENAI_DEPLOYMENT: str = os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-5-mini")
AZURE_OPENAI_API_VERSION: str = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-01")

# ── Observability ────────────────────────────────────────────────────
OTEL_EXPORTER_OTLP_ENDPOINT: str = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")

FINGERPRINT_ALGORITHMS = frozenset({"rolling32", "sha256"})


@dataclass(frozen=True)
class EngineConfig:
    """Immutable per-session engine options.

    Durations are expressed in seconds.
    """

    update_threshold: float = NANO_CONTEXT_UPDATE_THRESHOLD
    cache_threshold: float = NANO_CONTEXT_CACHE_THRESHOLD
    max_records: int = NANO_CONTEXT_MAX_RECORDS
    expiry_duration: float = NANO_CONTEXT_EXPIRY_SECONDS
    debounce_window: float = NANO_CONTEXT_DEBOUNCE_SECONDS
    max_input_length: int = NANO_CONTEXT_MAX_INPUT_LENGTH
    min_input_length: int = NANO_CONTEXT_MIN_INPUT_LENGTH
    generation_timeout: float = NANO_CONTEXT_GENERATION_TIMEOUT_SECONDS
    cleanup_interval: float = NANO_CONTEXT_CLEANUP_INTERVAL_SECONDS
    fingerprint_algorithm: str = NANO_CONTEXT_FINGERPRINT_ALGORITHM
    enabled: bool = NANO_CONTEXT_ENABLED
    auto_generate: bool = NANO_CONTEXT_AUTO_GENERATE

    def __post_init__(self) -> None:
        for name in ("update_threshold", "cache_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.max_records <= 0:
            raise ValueError(f"max_records must be positive, got {self.max_records}")
        if self.max_input_length <= 0:
            raise ValueError(f"max_input_length must be positive, got {self.max_input_length}")
        if self.min_input_length < 0:
            raise ValueError(f"min_input_length cannot be negative, got {self.min_input_length}")
        for name in ("expiry_duration", "debounce_window", "generation_timeout", "cleanup_interval"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.fingerprint_algorithm not in FINGERPRINT_ALGORITHMS:
            raise ValueError(f"Unknown fingerprint algorithm: {self.fingerprint_algorithm!r}")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from the current environment.

        Re-reads the variables at call time; the class defaults are frozen at
        import.
        """
        return cls(
            update_threshold=_float_env("NANO_CONTEXT_UPDATE_THRESHOLD", 0.8),
            cache_threshold=_float_env("NANO_CONTEXT_CACHE_THRESHOLD", 0.95),
            max_records=_int_env("NANO_CONTEXT_MAX_RECORDS", 100),
            expiry_duration=_float_env("NANO_CONTEXT_EXPIRY_SECONDS", 7 * 86_400),
            debounce_window=_float_env("NANO_CONTEXT_DEBOUNCE_SECONDS", 2.0),
            max_input_length=_int_env("NANO_CONTEXT_MAX_INPUT_LENGTH", 10_000),
            min_input_length=_int_env("NANO_CONTEXT_MIN_INPUT_LENGTH", 50),
            generation_timeout=_float_env("NANO_CONTEXT_GENERATION_TIMEOUT_SECONDS", 30.0),
            cleanup_interval=_float_env("NANO_CONTEXT_CLEANUP_INTERVAL_SECONDS", 86_400),
            fingerprint_algorithm=os.getenv("NANO_CONTEXT_FINGERPRINT_ALGORITHM", "rolling32"),
            enabled=_bool_env("NANO_CONTEXT_ENABLED", True),
            auto_generate=_bool_env("NANO_CONTEXT_AUTO_GENERATE", True),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
