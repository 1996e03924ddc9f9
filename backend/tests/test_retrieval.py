"""Tests for single-strategy retrieval with fallback."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import raw_hit, search_response
from label_qa.core.errors import (
    EmbeddingFailure,
    RetrievalValidationError,
    SearchBackendError,
    StrategyExecutionFailure,
)
from label_qa.models.entities import RetrieveOptions
from label_qa.retrieval.search import retrieve_with_info

QVEC = [0.1, 0.2, 0.3]


def _embedder(vector=None) -> AsyncMock:
    embedder = AsyncMock()
    embedder.embed.return_value = [vector or QVEC]
    return embedder


def _options(backend, settings, **kwargs) -> RetrieveOptions:
    kwargs.setdefault("embedder", _embedder())
    return RetrieveOptions(backend=backend, settings=settings, **kwargs)


@pytest.mark.asyncio
async def test_first_strategy_success_short_circuits(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response(raw_hit("a"), raw_hit("b"))
    outcome = await retrieve_with_info("dose", _options(backend, settings))
    assert outcome.strategy == "ann_query"
    assert [hit.id for hit in outcome.hits] == ["a", "b"]
    assert backend.search.await_count == 1


@pytest.mark.asyncio
async def test_falls_back_to_next_strategy_after_failure(settings) -> None:
    backend = AsyncMock()
    backend.search.side_effect = [
        SearchBackendError("knn query not supported", status_code=400),
        search_response(raw_hit("a")),
    ]
    outcome = await retrieve_with_info("dose", _options(backend, settings))
    assert outcome.strategy == "ann_toplevel"
    assert [hit.id for hit in outcome.hits] == ["a"]
    assert backend.search.await_count == 2
    second_body = backend.search.await_args_list[1].args[1]
    assert second_body["knn"]["field"] == "embedding"


@pytest.mark.asyncio
async def test_all_strategies_failing_returns_empty_auto(settings) -> None:
    backend = AsyncMock()
    backend.search.side_effect = SearchBackendError("cluster unavailable", status_code=503)
    outcome = await retrieve_with_info("dose", _options(backend, settings))
    assert outcome.hits == []
    assert outcome.strategy == "auto"
    assert backend.search.await_count == 4


@pytest.mark.asyncio
async def test_pinned_strategy_failure_propagates(settings) -> None:
    backend = AsyncMock()
    error = SearchBackendError("script_score disabled", status_code=400)
    backend.search.side_effect = error
    with pytest.raises(SearchBackendError) as excinfo:
        await retrieve_with_info("dose", _options(backend, settings, strategy="scored"))
    assert excinfo.value is error
    assert backend.search.await_count == 1


@pytest.mark.asyncio
async def test_pinned_legacy_name_runs_single_strategy(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response(raw_hit("a"))
    outcome = await retrieve_with_info("dose", _options(backend, settings, strategy="text"))
    assert outcome.strategy == "lexical"
    body = backend.search.await_args.args[1]
    assert body["query"] == {"match": {"text": "dose"}}


@pytest.mark.asyncio
async def test_enveloped_and_bare_responses_are_equivalent(settings) -> None:
    bare = AsyncMock()
    bare.search.return_value = search_response(raw_hit("a", 2.0), raw_hit("b", 1.0))
    enveloped = AsyncMock()
    enveloped.search.return_value = search_response(raw_hit("a", 2.0), raw_hit("b", 1.0), envelope=True)
    first = await retrieve_with_info("dose", _options(bare, settings))
    second = await retrieve_with_info("dose", _options(enveloped, settings))
    assert first.hits == second.hits
    assert first.hits[0].score == 2.0


@pytest.mark.asyncio
async def test_malformed_response_falls_through_in_auto_mode(settings) -> None:
    backend = AsyncMock()
    backend.search.side_effect = [{"unexpected": True}, search_response(raw_hit("a"))]
    outcome = await retrieve_with_info("dose", _options(backend, settings))
    assert outcome.strategy == "ann_toplevel"


@pytest.mark.asyncio
async def test_malformed_response_raises_when_pinned(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = {"hits": {"hits": [{"_score": 1.0}]}}
    with pytest.raises(StrategyExecutionFailure) as excinfo:
        await retrieve_with_info("dose", _options(backend, settings, strategy="ann_query"))
    assert excinfo.value.strategy == "ann_query"


@pytest.mark.asyncio
async def test_top_k_sets_size_and_cap_truncates(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response(*(raw_hit(f"h{i}") for i in range(7)))
    outcome = await retrieve_with_info("dose", _options(backend, settings, top_k=7, cap=3))
    body = backend.search.await_args.args[1]
    assert body["size"] == 7
    assert body["query"]["knn"]["embedding"]["k"] == 7
    assert [hit.id for hit in outcome.hits] == ["h0", "h1", "h2"]


@pytest.mark.asyncio
async def test_defaults_come_from_settings(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response()
    await retrieve_with_info("dose", _options(backend, settings))
    index, body = backend.search.await_args.args
    assert index == settings.index_chunks
    assert body["size"] == settings.top_k


@pytest.mark.asyncio
async def test_filter_applies_to_every_strategy(settings) -> None:
    backend = AsyncMock()
    backend.search.side_effect = SearchBackendError("down")
    await retrieve_with_info("dose", _options(backend, settings, filter={"openfda.route": "ORAL"}))
    bodies = [call.args[1] for call in backend.search.await_args_list]
    assert bodies[0]["query"]["bool"]["filter"] == [{"term": {"openfda.route": "ORAL"}}]
    assert bodies[1]["knn"]["filter"] == [{"term": {"openfda.route": "ORAL"}}]
    assert bodies[2]["query"]["script_score"]["query"] == {"bool": {"filter": [{"term": {"openfda.route": "ORAL"}}]}}
    assert bodies[3]["query"]["bool"]["filter"] == [{"term": {"openfda.route": "ORAL"}}]


@pytest.mark.asyncio
async def test_highlight_and_source_fields(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response()
    await retrieve_with_info("dose", _options(backend, settings, highlight=True, source_fields=["text", "section"]))
    body = backend.search.await_args.args[1]
    assert body["highlight"]["fields"]["text"]["fragment_size"] == 800
    assert body["_source"] == {"includes": ["text", "section"], "excludes": ["embedding"]}


@pytest.mark.asyncio
async def test_query_vector_skips_embedder(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response(raw_hit("a"))
    embedder = _embedder()
    await retrieve_with_info("dose", _options(backend, settings, embedder=embedder, query_vector=[0.5, 0.5]))
    embedder.embed.assert_not_awaited()
    assert backend.search.await_args.args[1]["query"]["knn"]["embedding"]["vector"] == [0.5, 0.5]


@pytest.mark.asyncio
async def test_embedding_failure_is_raised_before_search(settings) -> None:
    backend = AsyncMock()
    embedder = AsyncMock()
    embedder.embed.side_effect = RuntimeError("provider down")
    with pytest.raises(EmbeddingFailure):
        await retrieve_with_info("dose", _options(backend, settings, embedder=embedder))
    backend.search.assert_not_awaited()

    embedder.embed.side_effect = None
    embedder.embed.return_value = []
    with pytest.raises(EmbeddingFailure):
        await retrieve_with_info("dose", _options(backend, settings, embedder=embedder))


@pytest.mark.asyncio
async def test_invalid_options_raise_validation_error(settings) -> None:
    backend = AsyncMock()
    with pytest.raises(RetrievalValidationError):
        await retrieve_with_info("dose", _options(backend, settings, strategy="vector"))
    with pytest.raises(RetrievalValidationError):
        await retrieve_with_info("dose", _options(backend, settings, filter={"route": ["ORAL"]}))
    with pytest.raises(RetrievalValidationError):
        await retrieve_with_info("dose", _options(backend, settings, top_k=0))
    backend.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_counts_as_strategy_failure(settings) -> None:
    async def slow_then_fast(index, body):
        if "query" in body and "knn" in body["query"]:
            await asyncio.sleep(1)
        return search_response(raw_hit("fast"))

    backend = AsyncMock()
    backend.search.side_effect = slow_then_fast
    outcome = await retrieve_with_info("dose", _options(backend, settings, timeout=0.01))
    assert outcome.strategy == "ann_toplevel"
    assert [hit.id for hit in outcome.hits] == ["fast"]


@pytest.mark.asyncio
async def test_max_per_label_caps_before_truncation(settings) -> None:
    backend = AsyncMock()
    backend.search.return_value = search_response(
        raw_hit("a1", label_id="A"),
        raw_hit("a2", label_id="A"),
        raw_hit("b1", label_id="B"),
    )
    outcome = await retrieve_with_info("dose", _options(backend, settings, max_per_label=1, cap=2))
    assert [hit.id for hit in outcome.hits] == ["a1", "b1"]


@pytest.mark.asyncio
async def test_in_memory_backend_end_to_end(label_backend, embedder, settings) -> None:
    options = RetrieveOptions(
        backend=label_backend,
        embedder=embedder,
        settings=settings,
        top_k=4,
        filter={"openfda.route": "ORAL"},
        highlight=True,
    )
    outcome = await retrieve_with_info("lisinopril pregnancy", options)
    assert outcome.strategy == "ann_query"
    assert len(outcome.hits) == 3
    assert outcome.hits[0].id == "lis-preg"
    assert all("embedding" not in hit.source for hit in outcome.hits)
    assert all(hit.source["openfda"]["route"] == ["ORAL"] for hit in outcome.hits)
