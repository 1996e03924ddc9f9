"""Search orchestration."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Mapping, Sequence

from label_qa.clients.embeddings import Embedder, embedder_from_settings
from label_qa.clients.opensearch import SearchBackend, backend_from_settings, extract_hits
from label_qa.core.config import Settings, get_settings
from label_qa.core.errors import EmbeddingFailure, RetrievalValidationError, StrategyExecutionFailure
from label_qa.core.logging import elide_vectors
from label_qa.core.metrics import HYBRID_BRANCH_FAILURES, RETRIEVAL_COUNT, RETRIEVAL_LATENCY, STRATEGY_FAILURES
from label_qa.models.entities import (
    Hit,
    HybridInfo,
    HybridOptions,
    HybridResult,
    RetrievalOutcome,
    RetrieveOptions,
    StrategyResult,
)
from label_qa.retrieval.dedupe import cap_per_label
from label_qa.retrieval.fusion import diversify_hits, rrf_fuse
from label_qa.retrieval.strategies import (
    CHUNK_SIZE,
    TEXT_FIELD,
    QueryPlan,
    Strategy,
    build_ann_toplevel_body,
    build_lexical_body,
    highlight_clause,
    select_strategies,
    source_selection,
    validate_filter,
)

logger = logging.getLogger(__name__)


async def embed_query(
    query: str,
    query_vector: Sequence[float] | None,
    embedder: Embedder,
) -> tuple[list[float], bool]:
    """Return the query vector and whether an embedding call was made."""
    if query_vector is not None and len(query_vector) > 0:
        return list(query_vector), False
    try:
        vectors = await embedder.embed([query])
    except Exception as exc:
        raise EmbeddingFailure(f"Failed to embed query: {exc}") from exc
    vector = vectors[0] if vectors else None
    if not vector:
        raise EmbeddingFailure("Failed to embed query: provider returned no vector")
    return list(vector), True


async def execute_strategy(
    backend: SearchBackend,
    index: str,
    name: str,
    body: Mapping[str, Any],
    timeout: float | None = None,
) -> StrategyResult:
    """Run one search body and parse its hits; malformed responses raise."""
    call = backend.search(index, body)
    try:
        response = await (asyncio.wait_for(call, timeout) if timeout else call)
    except asyncio.TimeoutError:
        raise StrategyExecutionFailure(name, f"timed out after {timeout}s") from None
    raw_hits = extract_hits(response)
    if raw_hits is None:
        raise StrategyExecutionFailure(name, "response has no hits array")
    if not all(isinstance(item, Mapping) and "_id" in item for item in raw_hits):
        raise StrategyExecutionFailure(name, "response contains hits without an _id")
    return StrategyResult(name=name, hits=[Hit.from_raw(item) for item in raw_hits])


async def retrieve_with_info(query: str, options: RetrieveOptions | None = None) -> RetrievalOutcome:
    """Try strategies in priority order and return hits from the first that executes cleanly.

    A pinned strategy re-raises its failure. In ``auto`` mode failures are logged
    and the next strategy is tried; when all of them fail the result is empty
    rather than an error.
    """
    options = options or RetrieveOptions()
    settings = options.settings or get_settings()
    started = time.perf_counter()

    strategy = Strategy.parse(options.strategy)
    filter = validate_filter(options.filter)
    source = source_selection(options.source_fields)
    top_k = _positive(options.top_k, settings.top_k, "top_k")
    cap = _non_negative(options.cap, top_k, "cap")
    num_candidates = _positive(options.num_candidates, max(500, top_k * 50), "num_candidates")
    index = options.index or settings.index_chunks
    backend = options.backend or backend_from_settings(settings)
    embedder = options.embedder or embedder_from_settings(settings)

    vector, _ = await embed_query(query, options.query_vector, embedder)
    embed_ms = (time.perf_counter() - started) * 1000

    plan = QueryPlan(
        query_text=query,
        vector=vector,
        size=top_k,
        num_candidates=num_candidates,
        filter=filter,
        source=source,
        highlight=highlight_clause() if options.highlight else None,
    )
    for name, body in select_strategies(strategy, plan):
        logger.debug("retrieval request", extra={"ctx_index": index, "ctx_strategy": name, "ctx_body": elide_vectors(body)})
        search_started = time.perf_counter()
        try:
            hits = (await execute_strategy(backend, index, name, body, options.timeout)).hits
        except Exception as exc:
            STRATEGY_FAILURES.labels(strategy=name).inc()
            if strategy is not Strategy.AUTO:
                raise
            logger.warning("strategy %s failed: %s", name, exc, extra={"ctx_strategy": name})
            continue
        search_ms = (time.perf_counter() - search_started) * 1000
        raw_count = len(hits)
        if options.max_per_label:
            hits = cap_per_label(hits, options.max_per_label)
        capped = hits[:cap]
        RETRIEVAL_COUNT.labels(mode="single", strategy=name).inc()
        RETRIEVAL_LATENCY.labels(mode="single").observe(time.perf_counter() - started)
        logger.debug(
            "retrieval done",
            extra={
                "ctx_strategy": name,
                "ctx_embed_ms": round(embed_ms, 1),
                "ctx_search_ms": round(search_ms, 1),
                "ctx_raw_hits": raw_count,
                "ctx_returned": len(capped),
                "ctx_top_k": top_k,
            },
        )
        return RetrievalOutcome(hits=capped, strategy=name)

    RETRIEVAL_COUNT.labels(mode="single", strategy="none").inc()
    return RetrievalOutcome(hits=[], strategy=strategy.value)


async def retrieve_hybrid(query: str, options: HybridOptions | None = None) -> HybridResult:
    """Run lexical and vector search concurrently and fuse them with RRF.

    Either branch may fail on its own and then contributes an empty list. No
    per-label capping is applied; callers get the raw fused pool.
    """
    options = options or HybridOptions()
    settings = options.settings or get_settings()
    started = time.perf_counter()

    filter = validate_filter(options.filter)
    source = source_selection(options.source_fields)
    top_k = _positive(options.top_k, settings.top_k, "top_k")
    text_k = _positive(options.text_k, max(200, top_k * 10), "text_k")
    ann_k = _positive(options.ann_k, max(200, top_k * 10), "ann_k")
    cap = _non_negative(options.cap, top_k, "cap")
    rrf_c = options.rrf_c if options.rrf_c is not None else settings.rrf_c
    if rrf_c < 0:
        raise RetrievalValidationError("rrf_c must not be negative")
    window = _positive(options.window, max(text_k, ann_k), "window")
    num_candidates = _positive(options.num_candidates, max(500, ann_k * 2), "num_candidates")
    index = options.index or settings.index_chunks
    backend = options.backend or backend_from_settings(settings)
    embedder = options.embedder or embedder_from_settings(settings)

    vector, embedded = await embed_query(query, options.query_vector, embedder)

    highlight = highlight_clause(CHUNK_SIZE) if options.highlight else None
    common = dict(query_text=query, vector=vector, filter=filter, source=source, highlight=highlight)
    text_body = build_lexical_body(QueryPlan(size=text_k, num_candidates=text_k, **common))
    ann_body = build_ann_toplevel_body(QueryPlan(size=ann_k, num_candidates=num_candidates, **common))

    text_result, ann_result = await asyncio.gather(
        execute_strategy(backend, index, "lexical", text_body, options.timeout),
        execute_strategy(backend, index, "ann_toplevel", ann_body, options.timeout),
        return_exceptions=True,
    )
    text_hits = _branch_hits("text", text_result)
    ann_hits = _branch_hits("ann", ann_result)

    fused = rrf_fuse([text_hits, ann_hits], rrf_c, max(window, cap))[:cap]
    RETRIEVAL_COUNT.labels(mode="hybrid", strategy="hybrid").inc()
    RETRIEVAL_LATENCY.labels(mode="hybrid").observe(time.perf_counter() - started)
    logger.debug(
        "hybrid retrieval done",
        extra={"ctx_text_count": len(text_hits), "ctx_ann_count": len(ann_hits), "ctx_returned": len(fused)},
    )
    return HybridResult(
        hits=fused,
        info=HybridInfo(text_count=len(text_hits), ann_count=len(ann_hits), embedded=embedded),
    )


def _branch_hits(branch: str, result: StrategyResult | BaseException) -> list[Hit]:
    if isinstance(result, Exception):
        HYBRID_BRANCH_FAILURES.labels(branch=branch).inc()
        logger.warning("hybrid %s branch failed: %s", branch, result, extra={"ctx_branch": branch})
        return []
    if isinstance(result, BaseException):
        raise result
    return result.hits


def _positive(value: int | None, default: int, name: str) -> int:
    if value is None:
        return default
    if value < 1:
        raise RetrievalValidationError(f"{name} must be at least 1")
    return value


def _non_negative(value: int | None, default: int, name: str) -> int:
    if value is None:
        return default
    if value < 0:
        raise RetrievalValidationError(f"{name} must not be negative")
    return value


class RetrievalService:
    """Binds a backend, an embedder and settings for repeated retrieval calls."""

    def __init__(
        self,
        settings: Settings,
        backend: SearchBackend | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self.settings = settings
        self.backend = backend or backend_from_settings(settings)
        self.embedder = embedder or embedder_from_settings(settings)

    async def retrieve(self, query: str, **overrides: Any) -> RetrievalOutcome:
        options = replace(self._defaults(RetrieveOptions()), **overrides)
        return await retrieve_with_info(query, options)

    async def hybrid(self, query: str, **overrides: Any) -> HybridResult:
        options = replace(self._defaults(HybridOptions()), **overrides)
        return await retrieve_hybrid(query, options)

    async def diversify(
        self,
        query: str,
        hits: Sequence[Hit],
        k: int,
        lambda_: float | None = None,
        query_vector: Sequence[float] | None = None,
    ) -> list[Hit]:
        """Reorder hits by maximal marginal relevance over embeddings of their text."""
        if not hits or k <= 0:
            return []
        vector, _ = await embed_query(query, query_vector, self.embedder)
        texts = [str(hit.source.get(TEXT_FIELD, "")) for hit in hits]
        try:
            embeddings = await self.embedder.embed(texts)
        except Exception as exc:
            raise EmbeddingFailure(f"Failed to embed hits for diversification: {exc}") from exc
        weight = lambda_ if lambda_ is not None else self.settings.mmr_lambda
        return diversify_hits(hits, embeddings, vector, k, weight)

    def _defaults(self, options: RetrieveOptions) -> RetrieveOptions:
        options.backend = self.backend
        options.embedder = self.embedder
        options.settings = self.settings
        return options


__all__ = [
    "embed_query",
    "execute_strategy",
    "retrieve_with_info",
    "retrieve_hybrid",
    "RetrievalService",
]
