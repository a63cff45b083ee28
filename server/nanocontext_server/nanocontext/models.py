"""Data models for the context-awareness engine."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional

# Placeholder values produced when a summary carries no real tone/intent signal.
GENERIC_TONE = "neutral"
GENERIC_INTENT = "general purpose text"


@dataclass(frozen=True)
class ModelRef:
    """Reference to the AI model a summary is requested from."""

    id: str
    name: str = ""
    provider: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass
class ContextSummary:
    """Structured fields extracted from a summarizer response."""

    summary_text: str
    tone: str
    intent: str
    key_arguments: List[str] = field(default_factory=list)
    confidence: float = 1.0


@dataclass
class ModelResponse:
    """Result of a ``send_to_model`` call.

    ``error`` is set instead of raising when the backend fails.
    """

    result_text: str = ""
    actual_model: Optional[ModelRef] = None
    used_fallback: bool = False
    error: Optional[str] = None


@dataclass
class ContextRecord:
    """Cached AI-generated semantic summary of a text snapshot.

    ``fingerprint`` and ``created_at`` never change after creation; only the
    usage fields and the user-editable summary fields are mutated.
    """

    fingerprint: str
    summary_text: str
    tone: str
    intent: str
    source_model_id: str
    text_length: int
    key_arguments: List[str] = field(default_factory=list)
    confidence: float = 1.0
    created_at: float = field(default_factory=time.time)
    last_used_at: float = 0.0
    usage_count: int = 0

    def __post_init__(self) -> None:
        if self.last_used_at < self.created_at:
            self.last_used_at = self.created_at

    def is_valid(self, expiry_duration: float, now: Optional[float] = None) -> bool:
        """True while the record is younger than *expiry_duration* seconds."""
        now = time.time() if now is None else now
        return now - self.created_at < expiry_duration

    def copy(self) -> "ContextRecord":
        return replace(self, key_arguments=list(self.key_arguments))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StoreStats:
    """Snapshot of the record collection."""

    total: int = 0
    valid: int = 0
    expired: int = 0
    estimated_size_bytes: int = 0
    oldest_created_at: Optional[float] = None
    newest_created_at: Optional[float] = None
    last_cleanup_at: Optional[float] = None
