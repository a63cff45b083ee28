"""Content fingerprints used as cache keys.

``rolling32`` is a 32-bit polynomial rolling hash (base 31) rendered in base
36. Collisions are possible and surface as a cache hit on different content.
``sha256`` trades a longer key for collision resistance. Consumers treat the
result as an opaque key either way.
"""

from __future__ import annotations

import hashlib

from nanocontext.similarity.jaccard import normalize_text

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def rolling_hash32(text: str) -> int:
    """Signed 32-bit ``h = h * 31 + code_unit`` over UTF-16 code units."""
    h = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + code_unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def fingerprint(text: str, algorithm: str = "rolling32") -> str:
    """Stable key for the normalised form of *text*.

    Case and whitespace differences collapse to the same fingerprint. Empty
    or contentless text yields ``""``.
    """
    normalized = normalize_text(text)
    if not normalized:
        return ""
    if algorithm == "sha256":
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    if algorithm != "rolling32":
        raise ValueError(f"Unknown fingerprint algorithm: {algorithm!r}")
    return _to_base36(abs(rolling_hash32(normalized)))
