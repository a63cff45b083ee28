"""Compact persisted representation of the record collection.

Records are stored with short JSON keys, dictionary-coded tone/intent values,
summaries truncated at a sentence or word boundary and only the model id.
Decoding is all-or-nothing: a schema mismatch or any malformed record raises
``CorruptPersistedState`` for the whole payload.
"""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nanocontext.models import ContextRecord

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
COMPACT_RECORD_VERSION = 1

MAX_STORED_SUMMARY = 150
MIN_BOUNDARY_OFFSET = 100
FINGERPRINT_PREFIX_LENGTH = 12
MAX_STORED_ARGUMENTS = 3
MAX_ARGUMENT_LENGTH = 30
LITERAL_CODE_MAX_LENGTH = 32
ELLIPSIS = "..."

TONE_CODES: Dict[str, str] = {
    "formal": "f",
    "casual": "c",
    "technical": "t",
    "creative": "cr",
    "persuasive": "p",
    "academic": "a",
    "professional": "pr",
    "friendly": "fr",
    "neutral": "n",
    "conversational": "co",
}

INTENT_CODES: Dict[str, str] = {
    "general purpose text": "g",
    "documentation": "d",
    "explanation": "e",
    "instruction": "i",
    "description": "de",
    "analysis": "a",
    "summary": "s",
    "proposal": "p",
    "report": "r",
    "email": "em",
    "article": "ar",
    "blog post": "b",
}

TONE_EXPANSIONS = {code: value for value, code in TONE_CODES.items()}
INTENT_EXPANSIONS = {code: value for value, code in INTENT_CODES.items()}


class CorruptPersistedState(ValueError):
    """Persisted store payload cannot be trusted."""


class CompactRecord(BaseModel):
    """One persisted record, keyed by short aliases on disk."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(COMPACT_RECORD_VERSION, alias="v")
    fingerprint_prefix: str = Field(alias="h")
    summary: str = Field(alias="d")
    tone_code: str = Field(alias="t")
    intent_code: str = Field(alias="i")
    top_arguments: List[str] = Field(default_factory=list, alias="a", max_length=MAX_STORED_ARGUMENTS)
    model_id: str = Field(alias="m")
    created_at_millis: int = Field(alias="ts")
    last_used_at_millis: int = Field(alias="lu")
    usage_count: int = Field(0, alias="u", ge=0)
    confidence: float = Field(1.0, alias="c")
    text_length: int = Field(0, alias="l", ge=0)


class StoreMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_records: int = Field(0, alias="totalRecords")
    estimated_size_bytes: int = Field(0, alias="estimatedSizeBytes")
    last_cleanup_at: Optional[float] = Field(None, alias="lastCleanupAt")


class StoreFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field(alias="schemaVersion")
    records: Dict[str, CompactRecord] = Field(default_factory=dict)
    metadata: StoreMetadata = Field(default_factory=StoreMetadata)


def truncate_summary(summary: str, limit: int = MAX_STORED_SUMMARY) -> str:
    """Shorten *summary* to about *limit* chars without cutting a word.

    Prefers the last sentence end past ``MIN_BOUNDARY_OFFSET``, then the last
    space; a single unbroken run of characters is hard-cut. Cuts that are not
    at a sentence end get an ellipsis.
    """
    if len(summary) <= limit:
        return summary

    truncated = summary[:limit]
    last_sentence_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_sentence_end > MIN_BOUNDARY_OFFSET:
        return truncated[: last_sentence_end + 1]

    # A cut exactly at a word end needs no backtracking.
    if summary[limit].isspace():
        return truncated.rstrip() + ELLIPSIS

    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space].rstrip() + ELLIPSIS

    return truncated + ELLIPSIS


def _encode_code(value: str, codes: Dict[str, str]) -> str:
    return codes.get(value.lower(), value[:LITERAL_CODE_MAX_LENGTH])


def compress_record(record: ContextRecord) -> CompactRecord:
    return CompactRecord(
        version=COMPACT_RECORD_VERSION,
        fingerprint_prefix=record.fingerprint[:FINGERPRINT_PREFIX_LENGTH],
        summary=truncate_summary(record.summary_text),
        tone_code=_encode_code(record.tone, TONE_CODES),
        intent_code=_encode_code(record.intent, INTENT_CODES),
        top_arguments=[arg[:MAX_ARGUMENT_LENGTH] for arg in record.key_arguments[:MAX_STORED_ARGUMENTS]],
        model_id=record.source_model_id,
        created_at_millis=int(record.created_at * 1000),
        last_used_at_millis=int(record.last_used_at * 1000),
        usage_count=record.usage_count,
        confidence=round(record.confidence, 2),
        text_length=record.text_length,
    )


def decompress_record(compact: CompactRecord, fingerprint: str) -> ContextRecord:
    """Rebuild a full record; the truncated summary is kept as-is."""
    if compact.version != COMPACT_RECORD_VERSION:
        raise CorruptPersistedState(f"unsupported record version {compact.version}")
    if not fingerprint.startswith(compact.fingerprint_prefix):
        raise CorruptPersistedState(f"fingerprint prefix mismatch for {fingerprint!r}")
    return ContextRecord(
        fingerprint=fingerprint,
        summary_text=compact.summary,
        tone=TONE_EXPANSIONS.get(compact.tone_code, compact.tone_code),
        intent=INTENT_EXPANSIONS.get(compact.intent_code, compact.intent_code),
        source_model_id=compact.model_id,
        text_length=compact.text_length,
        key_arguments=list(compact.top_arguments),
        confidence=compact.confidence,
        created_at=compact.created_at_millis / 1000,
        last_used_at=compact.last_used_at_millis / 1000,
        usage_count=compact.usage_count,
    )


def compress_batch(records: Dict[str, ContextRecord]) -> Dict[str, CompactRecord]:
    """Compress every record, skipping (and logging) any that fail."""
    compressed: Dict[str, CompactRecord] = {}
    for key, record in records.items():
        try:
            compressed[key] = compress_record(record)
        except Exception:
            logger.exception("compress_batch: failed to compress record %s", key)
    return compressed


def decompress_batch(compressed: Dict[str, CompactRecord]) -> Dict[str, ContextRecord]:
    return {key: decompress_record(compact, key) for key, compact in compressed.items()}


def compression_ratio(record: ContextRecord, compact: CompactRecord) -> float:
    """Compact JSON size over full JSON size (1.0 on failure)."""
    try:
        original_size = len(json.dumps(record.to_dict()))
        compact_size = len(compact.model_dump_json(by_alias=True))
        return compact_size / original_size
    except Exception:
        logger.exception("compression_ratio: failed to measure record %s", record.fingerprint)
        return 1.0


def encode_store(
    records: Dict[str, ContextRecord], last_cleanup_at: Optional[float]
) -> Tuple[str, StoreMetadata]:
    """Serialise the collection; returns the payload and its metadata."""
    compressed = compress_batch(records)
    records_json = json.dumps(
        {key: compact.model_dump(by_alias=True) for key, compact in compressed.items()},
        separators=(",", ":"),
    )
    metadata = StoreMetadata(
        total_records=len(compressed),
        estimated_size_bytes=len(records_json.encode("utf-8")),
        last_cleanup_at=last_cleanup_at,
    )
    store_file = StoreFile(schema_version=SCHEMA_VERSION, records=compressed, metadata=metadata)
    return store_file.model_dump_json(by_alias=True), metadata


def decode_store(payload: str) -> Tuple[Dict[str, ContextRecord], StoreMetadata]:
    """Parse a persisted payload; raises ``CorruptPersistedState`` on any defect."""
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise CorruptPersistedState(f"malformed store payload: {exc}") from exc

    if not isinstance(raw, dict) or raw.get("schemaVersion") != SCHEMA_VERSION:
        found = raw.get("schemaVersion") if isinstance(raw, dict) else None
        raise CorruptPersistedState(f"schema version mismatch: {found!r} != {SCHEMA_VERSION!r}")

    try:
        store_file = StoreFile.model_validate(raw)
    except ValidationError as exc:
        raise CorruptPersistedState(f"invalid store payload: {exc}") from exc

    return decompress_batch(store_file.records), store_file.metadata
