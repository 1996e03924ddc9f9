"""Query body construction for each retrieval strategy.

Four strategies cover the capability differences between search clusters:

* ``ann_query`` - vector search as a bare ``knn`` query clause, AND-ed with the
  filter through a ``bool`` query.
* ``ann_toplevel`` - vector search as a dedicated top-level ``knn`` section with
  ``k`` and ``num_candidates``; the filter travels as a list of ``term`` clauses.
* ``scored`` - explicit cosine scoring over the stored vector field.
* ``lexical`` - a ``match`` query on the text field.

Every body carries ``size``, an explicit ``_source`` allowlist that always
excludes the embedding field, and an optional highlight section.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from label_qa.core.errors import RetrievalValidationError
from label_qa.models.entities import ScalarValue

EMBEDDING_FIELD = "embedding"
TEXT_FIELD = "text"
DEFAULT_SOURCE_FIELDS: tuple[str, ...] = ("chunk_id", "label_id", "section", "text", "openfda")
HIGHLIGHT_FRAGMENT_SIZE = 800
CHUNK_SIZE = 2000


class Strategy(str, Enum):
    AUTO = "auto"
    ANN_QUERY = "ann_query"
    ANN_TOPLEVEL = "ann_toplevel"
    SCORED = "scored"
    LEXICAL = "lexical"

    @classmethod
    def parse(cls, value: "Strategy | str | None") -> "Strategy":
        """Resolve a strategy name, accepting the legacy cluster-specific names."""
        if value is None:
            return cls.AUTO
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        name = _LEGACY_NAMES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise RetrievalValidationError(f"Unknown strategy '{value}'; expected one of: {choices}") from None


_LEGACY_NAMES = {
    "knn_query": "ann_query",
    "knn": "ann_toplevel",
    "script": "scored",
    "text": "lexical",
}

AUTO_ORDER: tuple[Strategy, ...] = (
    Strategy.ANN_QUERY,
    Strategy.ANN_TOPLEVEL,
    Strategy.SCORED,
    Strategy.LEXICAL,
)


@dataclass(frozen=True, slots=True)
class AllFields:
    """Return every stored field except the embedding."""

    def includes(self) -> list[str]:
        return ["*"]


@dataclass(frozen=True, slots=True)
class ExplicitFields:
    fields: tuple[str, ...]

    def includes(self) -> list[str]:
        return list(self.fields)


SourceSelection = AllFields | ExplicitFields


def source_selection(fields: Sequence[str] | None) -> SourceSelection:
    """Validate a requested field list; ``"*"`` selects all fields."""
    if fields is None:
        return ExplicitFields(DEFAULT_SOURCE_FIELDS)
    if isinstance(fields, (str, bytes)) or not isinstance(fields, Sequence):
        raise RetrievalValidationError("source fields must be a list of field names")
    names: list[str] = []
    for name in fields:
        if not isinstance(name, str) or not name.strip():
            raise RetrievalValidationError(f"Invalid source field name: {name!r}")
        names.append(name.strip())
    if "*" in names:
        return AllFields()
    if not names:
        raise RetrievalValidationError("source fields must not be empty")
    return ExplicitFields(tuple(name for name in names if name != EMBEDDING_FIELD))


def source_filter(selection: SourceSelection) -> dict[str, list[str]]:
    return {"includes": selection.includes(), "excludes": [EMBEDDING_FIELD]}


def validate_filter(filter: Mapping[str, Any] | None) -> dict[str, ScalarValue]:
    """Return the filter as an exact-match field/value map or raise."""
    if filter is None:
        return {}
    if not isinstance(filter, Mapping):
        raise RetrievalValidationError("filter must be a mapping of field to value")
    validated: dict[str, ScalarValue] = {}
    for key, value in filter.items():
        if not isinstance(key, str) or not key:
            raise RetrievalValidationError(f"Invalid filter field: {key!r}")
        if not isinstance(value, (str, int, float, bool)):
            raise RetrievalValidationError(
                f"Filter value for '{key}' must be a string, number or boolean, got {type(value).__name__}"
            )
        validated[key] = value
    return validated


def term_clauses(filter: Mapping[str, ScalarValue]) -> list[dict[str, Any]]:
    return [{"term": {field: value}} for field, value in filter.items()]


def with_filter(filter: Mapping[str, ScalarValue], base_query: dict[str, Any] | None = None) -> dict[str, Any]:
    """AND a base query with the filter's term clauses."""
    if not filter:
        return base_query if base_query is not None else {"match_all": {}}
    terms = term_clauses(filter)
    if base_query is None:
        return {"bool": {"filter": terms}}
    return {"bool": {"must": [base_query], "filter": terms}}


def highlight_clause(fragment_size: int = HIGHLIGHT_FRAGMENT_SIZE) -> dict[str, Any]:
    return {
        "fields": {
            TEXT_FIELD: {
                "fragment_size": fragment_size,
                "number_of_fragments": 1,
                "no_match_size": fragment_size,
            }
        }
    }


@dataclass(frozen=True, slots=True)
class QueryPlan:
    """Everything a body builder needs for one request."""

    query_text: str
    vector: Sequence[float]
    size: int
    num_candidates: int
    filter: Mapping[str, ScalarValue]
    source: SourceSelection
    highlight: dict[str, Any] | None = None


def _finish(plan: QueryPlan, body: dict[str, Any]) -> dict[str, Any]:
    body["_source"] = source_filter(plan.source)
    if plan.highlight is not None:
        body["highlight"] = plan.highlight
    return body


def build_ann_query_body(plan: QueryPlan) -> dict[str, Any]:
    knn = {"knn": {EMBEDDING_FIELD: {"vector": list(plan.vector), "k": plan.size}}}
    return _finish(plan, {"size": plan.size, "query": with_filter(plan.filter, knn)})


def build_ann_toplevel_body(plan: QueryPlan) -> dict[str, Any]:
    knn: dict[str, Any] = {
        "field": EMBEDDING_FIELD,
        "query_vector": list(plan.vector),
        "k": plan.size,
        "num_candidates": plan.num_candidates,
    }
    if plan.filter:
        knn["filter"] = term_clauses(plan.filter)
    return _finish(plan, {"size": plan.size, "knn": knn})


def build_scored_body(plan: QueryPlan) -> dict[str, Any]:
    script_score = {
        "query": with_filter(plan.filter),
        "script": {
            "source": f"cosineSimilarity(params.q, '{EMBEDDING_FIELD}') + 1.0",
            "params": {"q": list(plan.vector)},
        },
    }
    return _finish(plan, {"size": plan.size, "query": {"script_score": script_score}})


def build_lexical_body(plan: QueryPlan) -> dict[str, Any]:
    match = {"match": {TEXT_FIELD: plan.query_text}}
    return _finish(plan, {"size": plan.size, "query": with_filter(plan.filter, match)})


_BUILDERS: dict[Strategy, Callable[[QueryPlan], dict[str, Any]]] = {
    Strategy.ANN_QUERY: build_ann_query_body,
    Strategy.ANN_TOPLEVEL: build_ann_toplevel_body,
    Strategy.SCORED: build_scored_body,
    Strategy.LEXICAL: build_lexical_body,
}

_missing = set(Strategy) - {Strategy.AUTO} - set(_BUILDERS)
if _missing or set(AUTO_ORDER) != set(_BUILDERS):  # pragma: no cover - guards edits to Strategy
    raise RuntimeError(f"Strategies without a body builder: {sorted(m.value for m in _missing)}")


def select_strategies(strategy: Strategy, plan: QueryPlan) -> list[tuple[str, dict[str, Any]]]:
    """Return ``(name, body)`` pairs to try in order; a pinned strategy yields exactly one."""
    order = AUTO_ORDER if strategy is Strategy.AUTO else (strategy,)
    return [(member.value, _BUILDERS[member](plan)) for member in order]


__all__ = [
    "EMBEDDING_FIELD",
    "TEXT_FIELD",
    "DEFAULT_SOURCE_FIELDS",
    "HIGHLIGHT_FRAGMENT_SIZE",
    "CHUNK_SIZE",
    "Strategy",
    "AUTO_ORDER",
    "AllFields",
    "ExplicitFields",
    "SourceSelection",
    "source_selection",
    "source_filter",
    "validate_filter",
    "term_clauses",
    "with_filter",
    "highlight_clause",
    "QueryPlan",
    "build_ann_query_body",
    "build_ann_toplevel_body",
    "build_scored_body",
    "build_lexical_body",
    "select_strategies",
]
