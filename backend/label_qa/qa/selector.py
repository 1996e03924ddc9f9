"""Deterministic citation selection over retrieved label chunks."""

from __future__ import annotations

import logging
from typing import Sequence

from label_qa.models.entities import Citation, Hit
from label_qa.utils.text import clamp, normalize, trim_to_sentences

logger = logging.getLogger(__name__)

MAX_CITATIONS_LIMIT = 5
MIN_QUOTE_CHARS = 100
MAX_QUOTE_CHARS = 1200


def chunk_id_of(hit: Hit) -> str:
    return str(hit.source.get("chunk_id") or hit.id)


def select_citations(
    question: str,
    hits: Sequence[Hit],
    max_citations: int = 3,
    max_chars: int = 600,
    prefer_distinct_labels: bool = True,
) -> list[Citation]:
    """Pick up to ``max_citations`` quotes, at most one per label when ``prefer_distinct_labels``.

    Quotes keep whole leading sentences within ``max_chars``. Hits with empty
    text are skipped.
    """
    max_citations = clamp(max_citations, 0, MAX_CITATIONS_LIMIT)
    max_chars = clamp(max_chars, MIN_QUOTE_CHARS, MAX_QUOTE_CHARS)
    if not question or not hits or max_citations == 0:
        return []

    citations: list[Citation] = []
    seen_labels: set[str] = set()
    for hit in hits:
        chunk_id = chunk_id_of(hit)
        label_id = hit.source.get("label_id")
        if prefer_distinct_labels:
            label = str(hit.source.get("set_id") or label_id or chunk_id)
            if label in seen_labels:
                continue
            seen_labels.add(label)
        quote = trim_to_sentences(normalize(str(hit.source.get("text") or "")), max_chars)
        if not quote:
            continue
        section = hit.source.get("section")
        citations.append(
            Citation(
                chunk_id=chunk_id,
                text=quote,
                section=str(section) if section is not None else None,
                label_id=str(label_id) if label_id is not None else None,
            )
        )
        if len(citations) >= max_citations:
            break
    logger.debug("citations selected", extra={"ctx_candidates": len(hits), "ctx_picked": len(citations)})
    return citations


__all__ = ["select_citations", "chunk_id_of"]
