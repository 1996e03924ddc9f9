"""Tests for hybrid lexical and vector retrieval."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import search_response
from label_qa.core.errors import RetrievalValidationError, SearchBackendError
from label_qa.models.entities import Hit, HybridOptions
from label_qa.retrieval.fusion import rrf_fuse
from label_qa.retrieval.search import RetrievalService, retrieve_hybrid


def _make_hits(prefix: str, n: int) -> list[dict]:
    return [
        {
            "_id": f"{prefix}{i}",
            "_score": float(n - i),
            "_source": {"chunk_id": f"{prefix}{i}", "text": f"{prefix} text {i}"},
            "highlight": {"text": [f"<em>{prefix}</em> {i}"]},
        }
        for i in range(n)
    ]


def _routing_backend(text_hits, ann_hits) -> AsyncMock:
    async def search(index, body):
        if "knn" in body:
            if isinstance(ann_hits, Exception):
                raise ann_hits
            return search_response(*ann_hits)
        if isinstance(text_hits, Exception):
            raise text_hits
        return search_response(*text_hits, envelope=True)

    backend = AsyncMock()
    backend.search.side_effect = search
    return backend


def _embedder() -> AsyncMock:
    embedder = AsyncMock()
    embedder.embed.return_value = [[0.1, 0.2, 0.3]]
    return embedder


@pytest.mark.asyncio
async def test_hybrid_fuses_both_branches(settings) -> None:
    text = _make_hits("t", 5)
    ann = _make_hits("a", 5)
    ann[0] = {**ann[0], "_id": "t0"}
    backend = _routing_backend(text, ann)
    options = HybridOptions(
        backend=backend,
        embedder=_embedder(),
        settings=settings,
        top_k=6,
        text_k=5,
        ann_k=5,
        highlight=True,
    )
    result = await retrieve_hybrid("warfarin bleeding", options)
    assert len(result.hits) == 6
    assert result.hits[0].id == "t0"
    assert "<em>" in result.hits[0].highlight["text"][0]
    assert result.info.to_dict() == {"strategy": "hybrid", "text_count": 5, "ann_count": 5, "embedded": True}

    bodies = {("knn" in call.args[1]): call.args[1] for call in backend.search.await_args_list}
    assert bodies[False]["size"] == 5
    assert bodies[False]["query"] == {"match": {"text": "warfarin bleeding"}}
    assert bodies[False]["highlight"]["fields"]["text"]["fragment_size"] == 2000
    assert bodies[True]["knn"]["k"] == 5
    assert bodies[True]["knn"]["num_candidates"] == 500


@pytest.mark.asyncio
async def test_hybrid_survives_failed_ann_branch(settings) -> None:
    text = _make_hits("t", 4)
    backend = _routing_backend(text, SearchBackendError("knn disabled", status_code=400))
    options = HybridOptions(backend=backend, embedder=_embedder(), settings=settings, top_k=4)
    result = await retrieve_hybrid("query", options)
    expected = rrf_fuse([[Hit.from_raw(raw) for raw in text], []], settings.rrf_c, 200)[:4]
    assert result.hits == expected
    assert result.info.ann_count == 0
    assert result.info.text_count == 4


@pytest.mark.asyncio
async def test_hybrid_with_both_branches_failing_is_empty(settings) -> None:
    error = SearchBackendError("down")
    backend = _routing_backend(error, error)
    result = await retrieve_hybrid("query", HybridOptions(backend=backend, embedder=_embedder(), settings=settings))
    assert result.hits == []
    assert (result.info.text_count, result.info.ann_count) == (0, 0)


@pytest.mark.asyncio
async def test_hybrid_rejects_negative_rrf_constant(settings) -> None:
    backend = _routing_backend(_make_hits("t", 2), _make_hits("a", 2))
    options = HybridOptions(backend=backend, embedder=_embedder(), settings=settings, rrf_c=-1)
    with pytest.raises(RetrievalValidationError):
        await retrieve_hybrid("query", options)
    backend.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_hybrid_query_vector_skips_embedder(settings) -> None:
    backend = _routing_backend(_make_hits("t", 2), _make_hits("a", 2))
    embedder = _embedder()
    options = HybridOptions(backend=backend, embedder=embedder, settings=settings, query_vector=[1.0, 0.0])
    result = await retrieve_hybrid("query", options)
    embedder.embed.assert_not_awaited()
    assert result.info.embedded is False


@pytest.mark.asyncio
async def test_hybrid_defaults_scale_with_top_k(settings) -> None:
    backend = _routing_backend([], [])
    options = HybridOptions(backend=backend, embedder=_embedder(), settings=settings, top_k=30)
    await retrieve_hybrid("query", options)
    bodies = {("knn" in call.args[1]): call.args[1] for call in backend.search.await_args_list}
    assert bodies[False]["size"] == 300
    assert bodies[True]["knn"]["k"] == 300
    assert bodies[True]["knn"]["num_candidates"] == 600


@pytest.mark.asyncio
async def test_service_hybrid_against_memory_backend(label_backend, embedder, settings) -> None:
    service = RetrievalService(settings, backend=label_backend, embedder=embedder)
    result = await service.hybrid("metformin evening meal", top_k=3)
    assert result.hits
    assert result.hits[0].id == "met-dose"
    assert result.info.text_count >= 1
    assert result.info.ann_count == 4
