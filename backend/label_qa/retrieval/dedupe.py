"""Deduplication helpers."""

from __future__ import annotations

from typing import Iterable, Sequence

from label_qa.models.entities import Hit

LABEL_KEY_FIELDS: tuple[str, ...] = ("label_id", "product_key")


def label_key(hit: Hit, fields: Sequence[str] = LABEL_KEY_FIELDS) -> str:
    """Return the grouping key of the label a hit belongs to, falling back to the hit id."""
    for name in fields:
        value = hit.source.get(name)
        if value is not None and value != "":
            return str(value)
    return hit.id


def cap_per_label(hits: Iterable[Hit], max_per_label: int) -> list[Hit]:
    """Keep at most ``max_per_label`` hits per label while preserving order."""
    hits = list(hits)
    if max_per_label <= 0:
        return hits
    seen: dict[str, int] = {}
    kept: list[Hit] = []
    for hit in hits:
        key = label_key(hit)
        count = seen.get(key, 0)
        if count < max_per_label:
            kept.append(hit)
            seen[key] = count + 1
    return kept


__all__ = ["LABEL_KEY_FIELDS", "label_key", "cap_per_label"]
