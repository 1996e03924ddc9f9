"""Index diagnostics used by the explorer endpoint and the retrieve command."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from label_qa.clients.opensearch import SearchBackend, extract_count, unwrap_body
from label_qa.core.errors import SearchBackendError
from label_qa.models.entities import ScalarValue
from label_qa.retrieval.strategies import term_clauses

logger = logging.getLogger(__name__)

GENERIC_FIELDS = {
    "generic": "openfda.generic_name",
    "substance": "openfda.substance_name",
}
ROUTE_FIELD = "openfda.route"
SUBSTANCE_FIELD = "openfda.substance_name"
AGG_NAME = "generic_names"


@dataclass(slots=True)
class GenericNames:
    index: str
    size: int
    field: str
    kind: str
    buckets: list[dict[str, Any]]
    after_key: dict[str, Any] | None = None
    total_hits: int | None = None
    diag: dict[str, int | None] = field(default_factory=dict)


async def list_generic_names(
    backend: SearchBackend,
    index: str,
    field_kind: str = "generic",
    size: int = 100,
    after: Mapping[str, Any] | None = None,
) -> GenericNames:
    """Page through distinct generic (or substance) names on the labels index.

    A composite aggregation is tried first; when it yields no buckets a plain
    terms aggregation is used instead.
    """
    size = max(1, min(500, size))
    field_name = GENERIC_FIELDS.get(field_kind.lower(), GENERIC_FIELDS["generic"])

    composite: dict[str, Any] = {"size": size, "sources": [{"generic_name": {"terms": {"field": field_name}}}]}
    if after:
        composite["after"] = dict(after)
    raw = unwrap_body(await backend.search(index, {"size": 0, "aggs": {AGG_NAME: {"composite": composite}}}))
    agg = _aggregation(raw)
    buckets = [
        {"key": str((bucket.get("key") or {}).get("generic_name")), "doc_count": int(bucket.get("doc_count", 0))}
        for bucket in agg.get("buckets") or []
    ]
    result = GenericNames(
        index=index,
        size=size,
        field=field_name,
        kind="composite",
        buckets=buckets,
        after_key=agg.get("after_key") or None,
        total_hits=_total_hits(raw),
    )
    if not result.buckets:
        raw = unwrap_body(await backend.search(index, {"size": 0, "aggs": {AGG_NAME: {"terms": {"field": field_name, "size": size}}}}))
        terms = [
            {"key": str(bucket.get("key")), "doc_count": int(bucket.get("doc_count", 0))}
            for bucket in _aggregation(raw).get("buckets") or []
        ]
        if terms:
            result = GenericNames(index=index, size=size, field=field_name, kind="terms", buckets=terms, total_hits=_total_hits(raw))

    result.diag = {"labels": await exists_count(backend, index, field_name)}
    return result


async def exists_count(backend: SearchBackend, index: str, field_name: str) -> int | None:
    try:
        response = await backend.count(index, {"query": {"exists": {"field": field_name}}})
    except SearchBackendError as exc:
        logger.warning("exists count failed for %s: %s", field_name, exc)
        return None
    return extract_count(response)


async def filter_only_count(backend: SearchBackend, index: str, filter: Mapping[str, ScalarValue]) -> int | None:
    """Count documents matching the filter alone, ignoring the query text."""
    response = await backend.count(index, {"query": {"bool": {"filter": term_clauses(filter)}}})
    return extract_count(response)


async def filter_value_breakdown(backend: SearchBackend, index: str) -> dict[str, Any]:
    """Top route and substance values plus how many chunks carry each field."""
    body = {
        "size": 0,
        "aggs": {
            "routes": {"terms": {"field": ROUTE_FIELD, "size": 20}},
            "subs": {"terms": {"field": SUBSTANCE_FIELD, "size": 20}},
            "has_route": {"filter": {"exists": {"field": ROUTE_FIELD}}},
            "has_sub": {"filter": {"exists": {"field": SUBSTANCE_FIELD}}},
        },
    }
    raw = unwrap_body(await backend.search(index, body))
    aggs = (raw.get("aggregations") or {}) if isinstance(raw, Mapping) else {}
    return {
        "routes": (aggs.get("routes") or {}).get("buckets"),
        "subs": (aggs.get("subs") or {}).get("buckets"),
        "exists": {
            "route": (aggs.get("has_route") or {}).get("doc_count"),
            "substance_name": (aggs.get("has_sub") or {}).get("doc_count"),
        },
    }


def _aggregation(raw: Any) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    return (raw.get("aggregations") or {}).get(AGG_NAME) or {}


def _total_hits(raw: Any) -> int | None:
    if not isinstance(raw, Mapping):
        return None
    total = (raw.get("hits") or {}).get("total")
    if isinstance(total, Mapping):
        return total.get("value")
    return total if isinstance(total, int) else None


__all__ = [
    "GenericNames",
    "list_generic_names",
    "exists_count",
    "filter_only_count",
    "filter_value_breakdown",
]
