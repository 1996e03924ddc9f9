"""Internal dataclasses passed between retrieval components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from label_qa.clients.embeddings import Embedder
    from label_qa.clients.opensearch import SearchBackend
    from label_qa.core.config import Settings

ScalarValue = str | int | float | bool


@dataclass(frozen=True, slots=True)
class Hit:
    """One search-backend document as returned by a query."""

    id: str
    score: float
    source: Mapping[str, Any] = field(default_factory=dict)
    highlight: Mapping[str, list[str]] | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Hit":
        score = raw.get("_score")
        return cls(
            id=str(raw["_id"]),
            score=float(score) if score is not None else 0.0,
            source=raw.get("_source") or {},
            highlight=raw.get("highlight"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "score": self.score, "source": dict(self.source)}
        if self.highlight is not None:
            payload["highlight"] = dict(self.highlight)
        return payload


@dataclass(slots=True)
class StrategyResult:
    name: str
    hits: list[Hit]


@dataclass(slots=True)
class RetrievalOutcome:
    """Hits from the first strategy that executed cleanly."""

    hits: list[Hit]
    strategy: str


@dataclass(slots=True)
class HybridInfo:
    text_count: int
    ann_count: int
    embedded: bool
    strategy: str = "hybrid"

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "text_count": self.text_count,
            "ann_count": self.ann_count,
            "embedded": self.embedded,
        }


@dataclass(slots=True)
class HybridResult:
    hits: list[Hit]
    info: HybridInfo


@dataclass(frozen=True, slots=True)
class MmrCandidate:
    """Input unit for diversity selection; embeddings are expected L2-normalised."""

    id: str
    query_similarity: float
    embedding: Sequence[float]


@dataclass(slots=True)
class RetrieveOptions:
    """Per-call retrieval options. Unset fields fall back to ``settings``."""

    backend: "SearchBackend | None" = None
    embedder: "Embedder | None" = None
    settings: "Settings | None" = None
    index: str | None = None
    top_k: int | None = None
    cap: int | None = None
    num_candidates: int | None = None
    filter: Mapping[str, ScalarValue] | None = None
    source_fields: Sequence[str] | None = None
    highlight: bool = False
    strategy: str = "auto"
    query_vector: Sequence[float] | None = None
    max_per_label: int | None = None
    timeout: float | None = None


@dataclass(slots=True)
class HybridOptions(RetrieveOptions):
    text_k: int | None = None
    ann_k: int | None = None
    rrf_c: float | None = None
    window: int | None = None


@dataclass(frozen=True, slots=True)
class Citation:
    chunk_id: str
    text: str
    section: str | None = None
    label_id: str | None = None


@dataclass(slots=True)
class AnswerResult:
    answer: str
    citations: list[Hit]
    model: str


@dataclass(slots=True)
class AskResult:
    answer: str
    citations: list[Hit]
    strategy: str
    model: str


__all__ = [
    "ScalarValue",
    "Hit",
    "StrategyResult",
    "RetrievalOutcome",
    "HybridInfo",
    "HybridResult",
    "MmrCandidate",
    "RetrieveOptions",
    "HybridOptions",
    "Citation",
    "AnswerResult",
    "AskResult",
]
