"""CLI tests."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest
from typer.testing import CliRunner

from conftest import EMBEDDING_DIM, LABEL_CHUNKS
from label_qa.cli.main import app
from label_qa.clients.embeddings import HashedEmbedder

runner = CliRunner()


@pytest.fixture
def corpus(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    embedder = HashedEmbedder.get("corpus", EMBEDDING_DIM)
    vectors = embedder.encode([source["text"] for _, source in LABEL_CHUNKS]).vectors
    path = tmp_path / "chunks.jsonl"
    path.write_bytes(
        b"\n".join(
            orjson.dumps({"_id": doc_id, "_source": {**source, "embedding": vector}})
            for (doc_id, source), vector in zip(LABEL_CHUNKS, vectors)
        )
    )
    monkeypatch.setenv("LBQA_MEMORY_CORPUS_PATH", str(path))
    return path


def test_retrieve_prints_strategy_and_hits(corpus: Path) -> None:
    result = runner.invoke(app, ["retrieve", "insulin pen", "--route", "SUBCUTANEOUS", "--top-k", "4"])
    assert result.exit_code == 0, result.output
    assert "Strategy used: ann_query  hits=1" in result.output
    assert '"id": "ins-warn"' in result.output


def test_retrieve_zero_hits_prints_diagnostics(corpus: Path) -> None:
    result = runner.invoke(app, ["retrieve", "dose", "--route", "INTRAVENOUS", "--strategy", "lexical"])
    assert result.exit_code == 0, result.output
    assert "hits=0" in result.output
    assert "Filter-only match count: 0" in result.output
    assert "Diag aggregations" in result.output
    assert '"route": 4' in result.output


def test_retrieve_hybrid_with_query_vector(corpus: Path, tmp_path: Path) -> None:
    qvec = tmp_path / "q.json"
    qvec.write_bytes(orjson.dumps({"vector": HashedEmbedder.get("q", EMBEDDING_DIM).encode(["metformin"]).vectors[0]}))
    result = runner.invoke(app, ["retrieve", "metformin", "--hybrid", "--qvec", str(qvec), "--top-k", "2"])
    assert result.exit_code == 0, result.output
    assert "Strategy used: hybrid  hits=2" in result.output
    assert '"id": "met-dose"' in result.output


def test_retrieve_rejects_unknown_strategy(corpus: Path) -> None:
    result = runner.invoke(app, ["retrieve", "dose", "--strategy", "vector"])
    assert result.exit_code == 1
