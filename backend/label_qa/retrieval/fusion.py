"""Rank fusion and diversity selection."""

from __future__ import annotations

from typing import Any, Sequence

from label_qa.models.entities import Hit, MmrCandidate

DEFAULT_RRF_C = 60.0
DEFAULT_MMR_LAMBDA = 0.7


def rrf_fuse(lists: Sequence[Sequence[Hit]], c: float = DEFAULT_RRF_C, max_results: int = 12) -> list[Hit]:
    """Combine ranked hit lists with reciprocal rank fusion.

    Each hit at 0-based rank ``i`` contributes ``1 / (c + i + 1)`` to the score of
    its id. The first hit object seen for an id is kept as the exemplar; later
    lists only add to its score. Ties keep first-seen order.
    """
    exemplars: dict[str, Hit] = {}
    for hits in lists:
        for hit in hits:
            exemplars.setdefault(hit.id, hit)
    fused = sorted(rrf_scores(lists, c).items(), key=lambda item: item[1], reverse=True)
    return [exemplars[hit_id] for hit_id, _ in fused[: max(max_results, 0)]]


def rrf_scores(lists: Sequence[Sequence[Hit]], c: float = DEFAULT_RRF_C) -> dict[str, float]:
    """Return the accumulated fusion score per hit id, in first-seen order."""
    scores: dict[str, float] = {}
    for hits in lists:
        for rank, hit in enumerate(hits, start=1):
            scores[hit.id] = scores.get(hit.id, 0.0) + 1.0 / (c + rank)
    return scores


def dot_product(a: Any, b: Any) -> float:
    """Dot product of two equal-length numeric sequences; 0.0 for anything else."""
    if not isinstance(a, (list, tuple)) or not isinstance(b, (list, tuple)) or len(a) != len(b):
        return 0.0
    return float(sum(x * y for x, y in zip(a, b)))


def mmr_diversify(
    candidates: Sequence[MmrCandidate],
    k: int,
    lambda_: float = DEFAULT_MMR_LAMBDA,
) -> list[MmrCandidate]:
    """Apply maximal marginal relevance to pick ``k`` relevant but diverse candidates."""
    if k <= 0 or not candidates:
        return []
    # stable: equal similarities keep input order
    remaining = sorted(candidates, key=lambda item: item.query_similarity, reverse=True)
    selected = [remaining.pop(0)]
    while remaining and len(selected) < k:
        best_idx = 0
        best_score = float("-inf")
        for idx, candidate in enumerate(remaining):
            redundancy = max(dot_product(candidate.embedding, chosen.embedding) for chosen in selected)
            score = lambda_ * candidate.query_similarity - (1 - lambda_) * redundancy
            if score > best_score:
                best_score = score
                best_idx = idx
        selected.append(remaining.pop(best_idx))
    return selected


def diversify_hits(
    hits: Sequence[Hit],
    embeddings: Sequence[Sequence[float]],
    query_vector: Sequence[float],
    k: int,
    lambda_: float = DEFAULT_MMR_LAMBDA,
) -> list[Hit]:
    """Reorder hits by MMR using their embeddings and the query vector."""
    if len(hits) != len(embeddings):
        raise ValueError("hits and embeddings must have the same length")
    query = list(query_vector)
    candidates = [
        MmrCandidate(id=hit.id, query_similarity=dot_product(list(vector), query), embedding=list(vector))
        for hit, vector in zip(hits, embeddings)
    ]
    by_id = {hit.id: hit for hit in hits}
    return [by_id[candidate.id] for candidate in mmr_diversify(candidates, k, lambda_)]


__all__ = ["rrf_fuse", "rrf_scores", "dot_product", "mmr_diversify", "diversify_hits"]
