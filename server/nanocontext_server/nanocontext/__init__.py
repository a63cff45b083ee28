"""Context-awareness engine for nano-context.

Similarity engine: Jaccard change detection and content fingerprints.
Record store: bounded, TTL-validated, durable cache of context records.
Generation: change-gated, coalesced, debounced summary generation.
Prompts: merging stored context into editing-action prompts.
"""

from nanocontext.config import EngineConfig
from nanocontext.models import ContextRecord, ModelRef
from nanocontext.generation.coordinator import ContextCoordinator
from nanocontext.storage.record_store import ContextRecordStore

__all__ = [
    "EngineConfig",
    "ContextRecord",
    "ModelRef",
    "ContextCoordinator",
    "ContextRecordStore",
]
