"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from label_qa.models.entities import Hit, HybridInfo

StrategyName = Literal["auto", "ann_query", "ann_toplevel", "scored", "lexical", "knn_query", "knn", "script", "text"]


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=200)
    cap: int | None = Field(default=None, ge=0)
    num_candidates: int | None = Field(default=None, ge=1)
    filter: dict[str, str | int | float | bool] | None = None
    source_fields: list[str] | None = None
    highlight: bool = True
    strategy: StrategyName = "auto"
    query_vector: list[float] | None = None
    index: str | None = None
    max_per_label: int | None = Field(default=None, ge=0)
    mmr: bool = Field(default=False, description="Reorder the returned hits by maximal marginal relevance")


class HybridRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=200)
    text_k: int | None = Field(default=None, ge=1)
    ann_k: int | None = Field(default=None, ge=1)
    rrf_c: float | None = Field(default=None, ge=0)
    cap: int | None = Field(default=None, ge=0)
    filter: dict[str, str | int | float | bool] | None = None
    source_fields: list[str] | None = None
    highlight: bool = True
    query_vector: list[float] | None = None
    index: str | None = None


class HitModel(BaseModel):
    id: str
    score: float
    source: dict[str, Any]
    highlight: dict[str, list[str]] | None = None

    @classmethod
    def from_hit(cls, hit: Hit) -> "HitModel":
        return cls(
            id=hit.id,
            score=hit.score,
            source=dict(hit.source),
            highlight=dict(hit.highlight) if hit.highlight is not None else None,
        )


class RetrieveResponse(BaseModel):
    strategy: str
    total: int
    hits: list[HitModel]


class HybridInfoModel(BaseModel):
    strategy: Literal["hybrid"] = "hybrid"
    text_count: int
    ann_count: int
    embedded: bool

    @classmethod
    def from_info(cls, info: HybridInfo) -> "HybridInfoModel":
        return cls(**info.to_dict())


class HybridResponse(BaseModel):
    info: HybridInfoModel
    hits: list[HitModel]


class AskRequest(BaseModel):
    q: str = Field(min_length=1, description="Question about a drug label")
    max_citations: int = Field(default=3, ge=0, le=5)


class AskResponse(BaseModel):
    answer: str
    citations: list[HitModel]
    strategy: str
    model: str


class GenericBucket(BaseModel):
    key: str
    doc_count: int


class GenericsResponse(BaseModel):
    index: str
    size: int
    field: str
    agg_kind: Literal["composite", "terms"]
    buckets: list[GenericBucket]
    after_key: dict[str, Any] | None = None
    total_hits: int | None = None
    diag: dict[str, int | None]


__all__ = [
    "RetrieveRequest",
    "HybridRequest",
    "HitModel",
    "RetrieveResponse",
    "HybridInfoModel",
    "HybridResponse",
    "AskRequest",
    "AskResponse",
    "GenericBucket",
    "GenericsResponse",
]
