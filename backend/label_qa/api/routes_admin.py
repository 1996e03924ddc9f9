"""Administrative and explorer routes."""

from __future__ import annotations

from typing import Any

import orjson
from fastapi import APIRouter, Depends, HTTPException, Query

from label_qa.api.dependencies import get_app_settings, get_search_backend
from label_qa.clients.opensearch import SearchBackend
from label_qa.core.config import Settings
from label_qa.core.errors import SearchBackendError
from label_qa.core.metrics import metrics_response
from label_qa.models.dto import GenericBucket, GenericsResponse
from label_qa.retrieval.diagnostics import list_generic_names

router = APIRouter()


@router.get("/metrics", summary="Prometheus metrics")
async def metrics():
    return metrics_response()


@router.get("/explorer/generics", response_model=GenericsResponse, summary="Page through generic names on the labels index")
async def explorer_generics(
    size: int = Query(default=100),
    field: str = Query(default="generic", description="'generic' or 'substance'"),
    after: str | None = Query(default=None, description="JSON after_key from the previous page"),
    settings: Settings = Depends(get_app_settings),
    backend: SearchBackend = Depends(get_search_backend),
) -> GenericsResponse:
    try:
        result = await list_generic_names(
            backend,
            settings.index_labels,
            field_kind=field,
            size=size,
            after=_parse_after(after),
        )
    except SearchBackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return GenericsResponse(
        index=result.index,
        size=result.size,
        field=result.field,
        agg_kind=result.kind,
        buckets=[GenericBucket(**bucket) for bucket in result.buckets],
        after_key=result.after_key,
        total_hits=result.total_hits,
        diag=result.diag,
    )


def _parse_after(raw: str | None) -> dict[str, Any] | None:
    # An unparseable cursor restarts from the first page.
    if not raw:
        return None
    try:
        parsed = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


__all__ = ["router"]
