# File: aeo_scout/utils.py
"""aeo_scout.utils: small helpers for hashing, rounding and text statistics."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Sequence

__all__: Sequence[str] = (
    "content_hash",
    "digest",
    "round_half_up",
    "clamp_score",
    "word_count",
    "collapse_whitespace",
)

_WS_RE = re.compile(r"\s+")


def content_hash(text: str) -> str:
    """SHA-256 hex digest of *text* (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def digest(*parts: object) -> str:
    """Stable digest of several values joined with ``||``."""
    return content_hash("||".join(str(p) for p in parts))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (74.5 -> 75)."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def clamp_score(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp *value* into ``[low, high]``."""
    return max(low, min(high, value))


def collapse_whitespace(text: str) -> str:
    """Replace runs of whitespace with a single space and strip the ends."""
    return _WS_RE.sub(" ", text).strip()


def word_count(text: str) -> int:
    """Number of whitespace separated tokens in *text*."""
    return len(text.split())
