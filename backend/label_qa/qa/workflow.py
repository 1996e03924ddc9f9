"""Retrieve, select citations, answer."""

from __future__ import annotations

import logging
import time
from dataclasses import replace

from label_qa.core.errors import RetrievalValidationError
from label_qa.models.entities import AskResult, Hit
from label_qa.qa.answerer import AnswerGenerator, answer_question
from label_qa.qa.selector import chunk_id_of, select_citations
from label_qa.retrieval.search import RetrievalService

logger = logging.getLogger(__name__)


async def run_ask(
    question: str,
    service: RetrievalService,
    generator: AnswerGenerator,
    max_citations: int = 3,
    max_chars: int = 600,
) -> AskResult:
    """Answer ``question`` from label chunks.

    Retrieval runs in ``auto`` mode with every source field and no highlight.
    Selected citation quotes replace the chunk text handed to the generator.
    """
    if not question or not question.strip():
        raise RetrievalValidationError("question is required")
    started = time.perf_counter()
    outcome = await service.retrieve(question, highlight=False, source_fields=["*"], strategy="auto")
    retrieve_ms = (time.perf_counter() - started) * 1000

    by_chunk: dict[str, Hit] = {}
    for hit in outcome.hits:
        by_chunk.setdefault(chunk_id_of(hit), hit)

    citations = select_citations(question, outcome.hits, max_citations=max_citations, max_chars=max_chars)
    selected = [
        replace(by_chunk[citation.chunk_id], source={**by_chunk[citation.chunk_id].source, "text": citation.text})
        for citation in citations
        if citation.chunk_id in by_chunk
    ]

    result = await answer_question(
        question,
        selected,
        generator,
        max_per_label=service.settings.max_per_label or 1,
        max_context_chars=service.settings.max_context_chars,
    )
    logger.info(
        "ask done",
        extra={
            "ctx_strategy": outcome.strategy,
            "ctx_hits": len(outcome.hits),
            "ctx_citations": len(selected),
            "ctx_model": result.model,
            "ctx_retrieve_ms": round(retrieve_ms, 1),
            "ctx_total_ms": round((time.perf_counter() - started) * 1000, 1),
        },
    )
    return AskResult(answer=result.answer, citations=result.citations, strategy=outcome.strategy, model=result.model)


__all__ = ["run_ask"]
