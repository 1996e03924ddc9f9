"""Test fixtures for label-qa."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

EMBEDDING_DIM = 64

LABEL_CHUNKS: list[tuple[str, dict[str, Any]]] = [
    (
        "lis-dose",
        {
            "chunk_id": "lis-dose",
            "label_id": "L-lis",
            "set_id": "S-lis",
            "section": "dosage_and_administration",
            "text": "Hypertension: the recommended initial dose of lisinopril is 10 mg once daily. "
            "The usual dosage range is 20 to 40 mg per day.",
            "openfda": {"route": ["ORAL"], "substance_name": ["LISINOPRIL"], "generic_name": ["LISINOPRIL"]},
        },
    ),
    (
        "lis-preg",
        {
            "chunk_id": "lis-preg",
            "label_id": "L-lis",
            "set_id": "S-lis",
            "section": "boxed_warning",
            "text": "When pregnancy is detected, discontinue lisinopril as soon as possible. "
            "Drugs that act on the renin-angiotensin system can cause fetal toxicity.",
            "openfda": {"route": ["ORAL"], "substance_name": ["LISINOPRIL"], "generic_name": ["LISINOPRIL"]},
        },
    ),
    (
        "met-dose",
        {
            "chunk_id": "met-dose",
            "label_id": "L-met",
            "set_id": "S-met",
            "section": "dosage_and_administration",
            "text": "Metformin extended-release tablets should be taken once daily with the evening meal. "
            "Start at 500 mg and titrate slowly.",
            "openfda": {"route": ["ORAL"], "substance_name": ["METFORMIN HYDROCHLORIDE"], "generic_name": ["METFORMIN"]},
        },
    ),
    (
        "ins-warn",
        {
            "chunk_id": "ins-warn",
            "label_id": "L-ins",
            "set_id": "S-ins",
            "section": "warnings_and_cautions",
            "text": "Never share an insulin glargine pen between patients. Hypoglycemia is the most common adverse reaction.",
            "openfda": {"route": ["SUBCUTANEOUS"], "substance_name": ["INSULIN GLARGINE"], "generic_name": ["INSULIN GLARGINE"]},
        },
    ),
]


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("LBQA_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("LBQA_SEARCH_BACKEND", "memory")
    monkeypatch.setenv("LBQA_EMBEDDING_BACKEND", "hashed")
    monkeypatch.setenv("LBQA_EMBEDDING_DIM", str(EMBEDDING_DIM))
    monkeypatch.setenv("LBQA_ANSWER_BACKEND", "extractive")
    monkeypatch.delenv("LBQA_MEMORY_CORPUS_PATH", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    _clear_singletons()
    yield
    _clear_singletons()


def _clear_singletons() -> None:
    from label_qa.api import dependencies as deps
    from label_qa.clients import embeddings, opensearch
    from label_qa.core import config

    embeddings.HashedEmbedder._instances.clear()
    embeddings._PROVIDERS.clear()
    opensearch._BACKENDS.clear()
    config.get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    deps._SERVICE = None
    deps._GENERATOR = None


@pytest.fixture
def settings():
    from label_qa.core.config import Settings

    return Settings(search_backend="memory", embedding_backend="hashed", embedding_dim=EMBEDDING_DIM)


@pytest.fixture
def embedder():
    from label_qa.clients.embeddings import HashedEmbedder

    return HashedEmbedder.get("test-hashed", EMBEDDING_DIM)


@pytest.fixture
def label_backend(embedder, settings):
    """In-memory backend holding a handful of embedded label chunks and label records."""
    from label_qa.clients.memory import InMemorySearchBackend

    backend = InMemorySearchBackend()
    vectors = embedder.encode([source["text"] for _, source in LABEL_CHUNKS]).vectors
    backend.add_many(
        settings.index_chunks,
        ((doc_id, {**source, "embedding": vector}) for (doc_id, source), vector in zip(LABEL_CHUNKS, vectors)),
    )
    for label_id, generic in (("L-lis", "LISINOPRIL"), ("L-met", "METFORMIN"), ("L-ins", "INSULIN GLARGINE")):
        backend.add(settings.index_labels, label_id, {"label_id": label_id, "openfda": {"generic_name": [generic]}})
    return backend


def raw_hit(doc_id: str, score: float = 1.0, **source: Any) -> dict[str, Any]:
    return {"_id": doc_id, "_score": score, "_source": {"text": f"text {doc_id}", **source}}


def search_response(*hits: dict[str, Any], envelope: bool = False) -> dict[str, Any]:
    payload = {"hits": {"total": {"value": len(hits)}, "hits": list(hits)}}
    return {"body": payload} if envelope else payload
