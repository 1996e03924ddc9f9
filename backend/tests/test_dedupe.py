"""Tests for per-label capping."""

from label_qa.models.entities import Hit
from label_qa.retrieval.dedupe import cap_per_label, label_key


def test_cap_per_label_keeps_first_hit_per_label() -> None:
    hits = [
        Hit("h1", 4.0, {"label_id": "A"}),
        Hit("h2", 3.0, {"label_id": "A"}),
        Hit("h3", 2.0, {"label_id": "B"}),
        Hit("h4", 1.0, {"label_id": "A"}),
    ]
    assert [hit.id for hit in cap_per_label(hits, 1)] == ["h1", "h3"]
    assert [hit.id for hit in cap_per_label(hits, 2)] == ["h1", "h2", "h3"]


def test_cap_per_label_groups_by_label_id_not_set_id() -> None:
    hits = [
        Hit("h1", 2.0, {"label_id": "L1", "set_id": "S1"}),
        Hit("h2", 1.0, {"label_id": "L1", "set_id": "S2"}),
        Hit("h3", 0.5, {"label_id": "L2", "set_id": "S1"}),
    ]
    assert [hit.id for hit in cap_per_label(hits, 1)] == ["h1", "h3"]


def test_cap_per_label_zero_disables_capping() -> None:
    hits = [Hit("h1", 1.0, {"label_id": "A"}), Hit("h2", 1.0, {"label_id": "A"})]
    assert cap_per_label(hits, 0) == hits


def test_label_key_fallbacks() -> None:
    assert label_key(Hit("h", 1.0, {"product_key": "P", "label_id": "L", "set_id": "S"})) == "L"
    assert label_key(Hit("h", 1.0, {"product_key": "P", "set_id": "S"})) == "P"
    assert label_key(Hit("h", 1.0, {"set_id": "S", "label_id": ""})) == "h"
