"""Text processing helpers."""

from __future__ import annotations

import re

WHITESPACE_RE = re.compile(r"\s+")
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def trim_to_sentences(text: str, max_chars: int) -> str | None:
    """Keep leading whole sentences that fit in ``max_chars``; hard-cut if none fit."""
    clean = (text or "").strip()
    if not clean:
        return None
    if len(clean) <= max_chars:
        return clean
    kept: list[str] = []
    total = 0
    for sentence in SENTENCE_SPLIT_RE.split(clean):
        addition = len(sentence) if not kept else len(sentence) + 1
        if total + addition > max_chars:
            break
        kept.append(sentence)
        total += addition
    return " ".join(kept) or clean[:max_chars]


def trim_to_max_chars(text: str, max_chars: int) -> str:
    """Cut at the last sentence end before ``max_chars`` when one is reasonably far in."""
    if len(text) <= max_chars:
        return text
    prefix = text[:max_chars]
    last_punct = max(prefix.rfind("."), prefix.rfind("!"), prefix.rfind("?"))
    if last_punct > 40:
        return prefix[: last_punct + 1]
    return prefix


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))
