"""Head/tail truncation for oversized inputs.

Keeps the first ~60% and last ~40% of the available budget around a marker,
on the heuristic that openings and closings carry more context-defining
signal than the middle of a long document.
"""

from __future__ import annotations

TRUNCATION_MARKER = "\n\n[... content truncated ...]\n\n"
HEAD_SHARE = 0.6
TAIL_SHARE = 0.4


def smart_truncate(text: str, max_length: int) -> str:
    """Fit *text* into *max_length* characters, marker included."""
    if len(text) <= max_length:
        return text

    available = max_length - len(TRUNCATION_MARKER)
    if available <= 0:
        return text[:max_length]

    head_length = int(available * HEAD_SHARE)
    tail_length = int(available * TAIL_SHARE)
    tail = text[len(text) - tail_length:] if tail_length else ""
    return text[:head_length] + TRUNCATION_MARKER + tail
