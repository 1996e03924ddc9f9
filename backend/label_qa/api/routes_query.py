"""Query API routes."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException

from label_qa.api.dependencies import get_answer_generator, get_retrieval_service
from label_qa.core.errors import (
    AnswerGenerationError,
    EmbeddingFailure,
    LabelQAError,
    RetrievalValidationError,
    SearchBackendError,
    StrategyExecutionFailure,
)
from label_qa.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from label_qa.models.dto import (
    AskRequest,
    AskResponse,
    HitModel,
    HybridInfoModel,
    HybridRequest,
    HybridResponse,
    RetrieveRequest,
    RetrieveResponse,
)
from label_qa.qa.answerer import AnswerGenerator
from label_qa.qa.workflow import run_ask
from label_qa.retrieval.search import RetrievalService

router = APIRouter()


@contextmanager
def _observe(endpoint: str) -> Iterator[None]:
    """Record request metrics and translate domain errors into HTTP errors."""
    started = time.perf_counter()
    status = 200
    try:
        yield
    except RetrievalValidationError as exc:
        status = 422
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except (EmbeddingFailure, SearchBackendError, StrategyExecutionFailure, AnswerGenerationError) as exc:
        status = 502
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except LabelQAError as exc:
        status = 500
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        REQUEST_COUNT.labels(endpoint=endpoint, method="POST", status=str(status)).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint, method="POST").observe(time.perf_counter() - started)


@router.post("/retrieve", response_model=RetrieveResponse, summary="Retrieve label chunks with strategy fallback")
async def retrieve(
    request: RetrieveRequest,
    service: RetrievalService = Depends(get_retrieval_service),
) -> RetrieveResponse:
    with _observe("/retrieve"):
        outcome = await service.retrieve(
            request.query,
            top_k=request.top_k,
            cap=request.cap,
            num_candidates=request.num_candidates,
            filter=request.filter,
            source_fields=request.source_fields,
            highlight=request.highlight,
            strategy=request.strategy,
            query_vector=request.query_vector,
            index=request.index,
            max_per_label=request.max_per_label,
        )
        hits = outcome.hits
        if request.mmr and hits:
            hits = await service.diversify(request.query, hits, k=len(hits), query_vector=request.query_vector)
    return RetrieveResponse(
        strategy=outcome.strategy,
        total=len(hits),
        hits=[HitModel.from_hit(hit) for hit in hits],
    )


@router.post("/retrieve/hybrid", response_model=HybridResponse, summary="Fuse lexical and vector search with RRF")
async def retrieve_hybrid(
    request: HybridRequest,
    service: RetrievalService = Depends(get_retrieval_service),
) -> HybridResponse:
    with _observe("/retrieve/hybrid"):
        result = await service.hybrid(
            request.query,
            top_k=request.top_k,
            text_k=request.text_k,
            ann_k=request.ann_k,
            rrf_c=request.rrf_c,
            cap=request.cap,
            filter=request.filter,
            source_fields=request.source_fields,
            highlight=request.highlight,
            query_vector=request.query_vector,
            index=request.index,
        )
    return HybridResponse(
        info=HybridInfoModel.from_info(result.info),
        hits=[HitModel.from_hit(hit) for hit in result.hits],
    )


@router.post("/ask", response_model=AskResponse, summary="Answer a question from label excerpts")
async def ask(
    request: AskRequest,
    service: RetrievalService = Depends(get_retrieval_service),
    generator: AnswerGenerator = Depends(get_answer_generator),
) -> AskResponse:
    with _observe("/ask"):
        result = await run_ask(request.q, service, generator, max_citations=request.max_citations)
    return AskResponse(
        answer=result.answer,
        citations=[HitModel.from_hit(hit) for hit in result.citations],
        strategy=result.strategy,
        model=result.model,
    )


__all__ = ["router"]
