"""In-process search backend for development and tests.

Understands the subset of the search DSL that label-qa emits: ``match_all``,
``match``, ``term``, ``exists``, ``bool`` (``must``/``filter``), query-level and
top-level ``knn``, ``script_score`` cosine scoring, ``_source`` include/exclude,
``highlight`` and ``terms``/``filter`` aggregations. Anything else raises
``SearchBackendError`` the way a real cluster rejects an unsupported query.
"""

from __future__ import annotations

import math
import re
import time
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import orjson
from rank_bm25 import BM25Okapi

from label_qa.core.errors import SearchBackendError

_TOKEN_RE = re.compile(r"\w+")


class InMemorySearchBackend:
    """Dictionary-backed index with cosine vector search and BM25 text search."""

    def __init__(self, envelope: bool = False) -> None:
        self.envelope = envelope
        self._indices: dict[str, dict[str, dict[str, Any]]] = {}

    @classmethod
    def from_jsonl(cls, path: Path, default_index: str, envelope: bool = False) -> "InMemorySearchBackend":
        """Load ``{"_index", "_id", "_source"}`` records, one JSON object per line."""
        backend = cls(envelope=envelope)
        with path.expanduser().open("rb") as fh:
            for line_no, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                record = orjson.loads(line)
                doc_id = record.get("_id") or record.get("id")
                if doc_id is None:
                    raise ValueError(f"{path}:{line_no}: record has no _id")
                source = record.get("_source", {k: v for k, v in record.items() if k not in {"_id", "id", "_index"}})
                backend.add(record.get("_index", default_index), str(doc_id), source)
        return backend

    def add(self, index: str, doc_id: str, source: Mapping[str, Any]) -> None:
        self._indices.setdefault(index, {})[doc_id] = dict(source)

    def add_many(self, index: str, documents: Iterable[tuple[str, Mapping[str, Any]]]) -> None:
        for doc_id, source in documents:
            self.add(index, doc_id, source)

    def size(self, index: str) -> int:
        return len(self._indices.get(index, {}))

    # -- SearchBackend -------------------------------------------------

    async def search(self, index: str, body: Mapping[str, Any]) -> Any:
        started = time.perf_counter()
        docs = self._indices.get(index, {})
        ctx = _QueryContext(docs)
        query = body.get("query") or {"match_all": {}}
        scored = [(doc_id, score) for doc_id in docs if (score := ctx.evaluate(query, doc_id)) is not None]

        knn = body.get("knn")
        if knn is not None:
            scored = ctx.toplevel_knn(knn, dict(scored))

        scored.sort(key=lambda item: item[1], reverse=True)
        size = int(body.get("size", 10))
        source_spec = body.get("_source")
        highlight = body.get("highlight")
        hits = []
        for doc_id, score in scored[:size]:
            hit: dict[str, Any] = {
                "_index": index,
                "_id": doc_id,
                "_score": score,
                "_source": _project_source(docs[doc_id], source_spec),
            }
            if highlight:
                fragments = _highlight(docs[doc_id], highlight, ctx.query_terms)
                if fragments:
                    hit["highlight"] = fragments
            hits.append(hit)

        payload: dict[str, Any] = {
            "took": int((time.perf_counter() - started) * 1000),
            "hits": {"total": {"value": len(scored)}, "hits": hits},
        }
        if body.get("aggs"):
            matched = [doc_id for doc_id, _ in scored]
            payload["aggregations"] = _aggregate(body["aggs"], matched, ctx)
        return self._wrap(payload)

    async def count(self, index: str, body: Mapping[str, Any] | None = None) -> Any:
        docs = self._indices.get(index, {})
        ctx = _QueryContext(docs)
        query = (body or {}).get("query") or {"match_all": {}}
        total = sum(1 for doc_id in docs if ctx.evaluate(query, doc_id) is not None)
        return self._wrap({"count": total})

    async def get(self, index: str, doc_id: str) -> Any:
        source = self._indices.get(index, {}).get(doc_id)
        if source is None:
            return self._wrap({"_index": index, "_id": doc_id, "found": False})
        return self._wrap({"_index": index, "_id": doc_id, "found": True, "_source": dict(source)})

    async def bulk(self, operations: Sequence[Mapping[str, Any]]) -> Any:
        items: list[dict[str, Any]] = []
        ops = list(operations)
        pos = 0
        while pos < len(ops):
            action, meta = next(iter(ops[pos].items()))
            index, doc_id = meta["_index"], str(meta["_id"])
            if action in {"index", "create"}:
                self.add(index, doc_id, ops[pos + 1])
                pos += 2
            elif action == "update":
                self._merge(index, doc_id, ops[pos + 1])
                pos += 2
            elif action == "delete":
                self._indices.get(index, {}).pop(doc_id, None)
                pos += 1
            else:
                raise SearchBackendError(f"Unsupported bulk action '{action}'", status_code=400)
            items.append({action: {"_index": index, "_id": doc_id, "status": 200}})
        return self._wrap({"errors": False, "items": items})

    async def update(self, index: str, doc_id: str, body: Mapping[str, Any]) -> Any:
        self._merge(index, doc_id, body)
        return self._wrap({"_index": index, "_id": doc_id, "result": "updated"})

    async def close(self) -> None:
        return None

    def _merge(self, index: str, doc_id: str, body: Mapping[str, Any]) -> None:
        docs = self._indices.setdefault(index, {})
        if doc_id not in docs and not body.get("doc_as_upsert"):
            raise SearchBackendError(f"document [{doc_id}] missing", status_code=404)
        docs.setdefault(doc_id, {}).update(body.get("doc", {}))

    def _wrap(self, payload: dict[str, Any]) -> Any:
        return {"body": payload} if self.envelope else payload


class _QueryContext:
    """Per-request caches for BM25 scores and kNN neighbourhoods."""

    def __init__(self, docs: Mapping[str, Mapping[str, Any]]) -> None:
        self.docs = docs
        self.query_terms: set[str] = set()
        self._bm25: dict[tuple[str, str], dict[str, float]] = {}
        self._knn: dict[tuple[str, int, int], dict[str, float]] = {}

    def evaluate(self, query: Mapping[str, Any], doc_id: str) -> float | None:
        """Return the score of ``doc_id`` for ``query`` or None when it does not match."""
        if len(query) != 1:
            raise SearchBackendError(f"Malformed query clause: {list(query)}", status_code=400)
        kind, spec = next(iter(query.items()))
        source = self.docs[doc_id]
        if kind == "match_all":
            return 1.0
        if kind == "term":
            field, value = next(iter(spec.items()))
            return 0.0 if _term_matches(_lookup(source, field), value) else None
        if kind == "exists":
            return 0.0 if _lookup(source, spec["field"]) not in (None, [], "") else None
        if kind == "match":
            field, text = next(iter(spec.items()))
            return self._match_score(field, str(text), doc_id)
        if kind == "bool":
            return self._bool(spec, doc_id)
        if kind == "knn":
            field, params = next(iter(spec.items()))
            neighbours = self._neighbours(field, params["vector"], int(params.get("k", 10)))
            return neighbours.get(doc_id)
        if kind == "script_score":
            if self.evaluate(spec.get("query") or {"match_all": {}}, doc_id) is None:
                return None
            vector = spec["script"]["params"]["q"]
            field = _script_field(spec["script"].get("source", ""))
            return _cosine(vector, source.get(field)) + 1.0
        raise SearchBackendError(f"Unsupported query type '{kind}'", status_code=400)

    def toplevel_knn(self, knn: Mapping[str, Any], matched: dict[str, float]) -> list[tuple[str, float]]:
        filters = knn.get("filter") or []
        if isinstance(filters, Mapping):
            filters = [filters]
        k = int(knn.get("k", 10))
        eligible = [
            doc_id
            for doc_id in matched
            if all(self.evaluate(clause, doc_id) is not None for clause in filters)
        ]
        scored = [(doc_id, _cosine(knn["query_vector"], self.docs[doc_id].get(knn["field"]))) for doc_id in eligible]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:k]

    def _bool(self, spec: Mapping[str, Any], doc_id: str) -> float | None:
        score = 0.0
        for clause in _as_list(spec.get("must")):
            clause_score = self.evaluate(clause, doc_id)
            if clause_score is None:
                return None
            score += clause_score
        for clause in _as_list(spec.get("filter")):
            if self.evaluate(clause, doc_id) is None:
                return None
        return score

    def _match_score(self, field: str, text: str, doc_id: str) -> float | None:
        terms = _tokenize(text)
        self.query_terms.update(terms)
        key = (field, text)
        if key not in self._bm25:
            ids = list(self.docs)
            corpus = [_tokenize(str(_lookup(self.docs[i], field) or "")) for i in ids]
            if not any(corpus):
                self._bm25[key] = {}
                return None
            model = BM25Okapi(corpus)
            scores = model.get_scores(terms)
            self._bm25[key] = {
                i: float(score)
                for i, tokens, score in zip(ids, corpus, scores)
                if set(terms).intersection(tokens)
            }
        return self._bm25[key].get(doc_id)

    def _neighbours(self, field: str, vector: Sequence[float], k: int) -> dict[str, float]:
        key = (field, id(vector), k)
        if key not in self._knn:
            scored = sorted(
                ((doc_id, _cosine(vector, source.get(field))) for doc_id, source in self.docs.items()),
                key=lambda item: item[1],
                reverse=True,
            )
            self._knn[key] = dict(scored[:k])
        return self._knn[key]


def _aggregate(aggs: Mapping[str, Any], matched: Sequence[str], ctx: _QueryContext) -> dict[str, Any]:
    results: dict[str, Any] = {}
    for name, spec in aggs.items():
        if "terms" in spec:
            field = spec["terms"]["field"]
            counts: dict[Any, int] = {}
            for doc_id in matched:
                value = _lookup(ctx.docs[doc_id], field)
                for item in value if isinstance(value, list) else [value]:
                    if item is not None:
                        counts[item] = counts.get(item, 0) + 1
            ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
            size = int(spec["terms"].get("size", 10))
            results[name] = {"buckets": [{"key": key, "doc_count": n} for key, n in ordered[:size]]}
        elif "filter" in spec:
            results[name] = {"doc_count": sum(1 for doc_id in matched if ctx.evaluate(spec["filter"], doc_id) is not None)}
    return results


def _project_source(source: Mapping[str, Any], spec: Any) -> dict[str, Any]:
    if spec is None or spec is True:
        return dict(source)
    if spec is False:
        return {}
    if isinstance(spec, list):
        spec = {"includes": spec}
    includes = spec.get("includes") or ["*"]
    excludes = set(spec.get("excludes") or [])
    keep_all = "*" in includes
    return {
        key: value
        for key, value in source.items()
        if (keep_all or key in includes) and key not in excludes
    }


def _highlight(source: Mapping[str, Any], spec: Mapping[str, Any], terms: set[str]) -> dict[str, list[str]]:
    fragments: dict[str, list[str]] = {}
    for field, options in (spec.get("fields") or {}).items():
        text = _lookup(source, field)
        if not isinstance(text, str) or not text:
            continue
        size = int(options.get("fragment_size", 100))
        marked = _TOKEN_RE.sub(lambda m: f"<em>{m.group(0)}</em>" if m.group(0).lower() in terms else m.group(0), text)
        if marked != text:
            fragments[field] = [marked[: size + marked.count("<em>") * 9]]
        elif options.get("no_match_size"):
            fragments[field] = [text[: int(options["no_match_size"])]]
    return fragments


def _lookup(source: Mapping[str, Any], path: str) -> Any:
    if path in source:
        return source[path]
    value: Any = source
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _term_matches(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return expected in actual
    return actual == expected


def _script_field(script: str) -> str:
    match = re.search(r"'([^']+)'", script)
    return match.group(1) if match else "embedding"


def _cosine(a: Sequence[float], b: Any) -> float:
    if not isinstance(b, (list, tuple)) or len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


__all__ = ["InMemorySearchBackend"]
