"""CLI entrypoint for label-qa."""

from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Optional

import orjson
import requests
import typer

from label_qa.clients.opensearch import backend_from_settings
from label_qa.core.config import get_settings
from label_qa.core.errors import LabelQAError
from label_qa.core.logging import configure_logging, get_logger
from label_qa.models.entities import Hit
from label_qa.retrieval import RetrievalService
from label_qa.retrieval.diagnostics import filter_only_count, filter_value_breakdown

app = typer.Typer(name="label-qa", help="Drug label retrieval and question answering")
logger = get_logger(__name__)

DEFAULT_HOST = "http://127.0.0.1:8000"
SNIPPET_CHARS = 800


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("LBQA_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=120, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _load_query_vector(path: Path) -> list[float]:
    parsed = orjson.loads(path.expanduser().read_bytes())
    vector = parsed.get("vector") if isinstance(parsed, dict) else parsed
    if not isinstance(vector, list):
        raise typer.BadParameter(f"{path}: expected a JSON array or {{\"vector\": [...]}}", param_hint="--qvec")
    return [float(value) for value in vector]


def _render_hit(hit: Hit) -> str:
    fragments = (hit.highlight or {}).get("text") or []
    snippet = " … ".join(fragments) if fragments else str(hit.source.get("text") or "")
    return json.dumps(
        {
            "id": hit.id,
            "score": round(hit.score, 3),
            "section": hit.source.get("section"),
            "label_id": hit.source.get("label_id"),
            "snippet": snippet[:SNIPPET_CHARS],
        },
        indent=2,
        ensure_ascii=False,
    )


@app.command()
def retrieve(
    query: str = typer.Argument(..., help="Query text"),
    top_k: int = typer.Option(20, "--top-k", help="Number of results to return"),
    strategy: str = typer.Option("auto", "--strategy", help="auto, ann_query, ann_toplevel, scored or lexical"),
    route: Optional[str] = typer.Option(None, "--route", help="Filter on openfda.route, e.g. ORAL"),
    ingredient: Optional[str] = typer.Option(None, "--ingredient", help="Filter on openfda.substance_name"),
    index: Optional[str] = typer.Option(None, "--index", help="Override the chunk index"),
    no_highlight: bool = typer.Option(False, "--no-highlight", help="Skip highlight fragments"),
    qvec: Optional[Path] = typer.Option(None, "--qvec", help="JSON file holding a precomputed query vector"),
    diag: bool = typer.Option(False, "--diag", help="Always print aggregation diagnostics on zero hits"),
    hybrid: bool = typer.Option(False, "--hybrid", help="Fuse lexical and vector search with RRF"),
    max_per_label: Optional[int] = typer.Option(None, "--max-per-label", help="Keep at most N chunks per label"),
    mmr: bool = typer.Option(False, "--mmr", help="Reorder hits by maximal marginal relevance"),
) -> None:
    """Run retrieval in-process against the configured search backend."""
    configure_logging(level=os.environ.get("LBQA_LOG_LEVEL", "WARNING"), use_json=False)
    filter: dict[str, str] = {}
    if route:
        filter["openfda.route"] = route
    if ingredient:
        filter["openfda.substance_name"] = ingredient
    query_vector = _load_query_vector(qvec) if qvec else None
    try:
        asyncio.run(
            _retrieve(query, top_k, strategy, filter, index, not no_highlight, query_vector, diag, hybrid, max_per_label, mmr)
        )
    except LabelQAError as exc:
        typer.echo(f"Retrieval failed: {exc}", err=True)
        raise typer.Exit(code=1)


async def _retrieve(
    query: str,
    top_k: int,
    strategy: str,
    filter: dict[str, str],
    index: Optional[str],
    highlight: bool,
    query_vector: Optional[list[float]],
    diag: bool,
    hybrid: bool,
    max_per_label: Optional[int],
    mmr: bool,
) -> None:
    started = time.perf_counter()
    settings = get_settings()
    service = RetrievalService(settings)
    index = index or settings.index_chunks
    if hybrid:
        result = await service.hybrid(
            query, top_k=top_k, filter=filter, index=index, highlight=highlight, query_vector=query_vector
        )
        hits, used = result.hits, result.info.strategy
        typer.echo(f"Strategy used: {used}  hits={len(hits)}  text={result.info.text_count}  ann={result.info.ann_count}")
    else:
        outcome = await service.retrieve(
            query,
            top_k=top_k,
            strategy=strategy,
            filter=filter,
            index=index,
            highlight=highlight,
            query_vector=query_vector,
            max_per_label=max_per_label,
        )
        hits, used = outcome.hits, outcome.strategy
        typer.echo(f"Strategy used: {used}  hits={len(hits)}")

    if not hits:
        await _explain_empty(index, filter, diag)
    elif mmr:
        hits = await service.diversify(query, hits, k=len(hits), query_vector=query_vector)

    for hit in hits:
        typer.echo(_render_hit(hit))
    logger.debug("retrieve command done", extra={"ctx_total_ms": round((time.perf_counter() - started) * 1000, 1)})


async def _explain_empty(index: str, filter: dict[str, str], diag: bool) -> None:
    backend = backend_from_settings(get_settings())
    try:
        count = await filter_only_count(backend, index, filter)
        typer.echo(f"Filter-only match count: {count}")
        if not count or diag:
            breakdown = await filter_value_breakdown(backend, index)
            typer.echo("Diag aggregations: " + json.dumps(breakdown, indent=2, ensure_ascii=False))
    except LabelQAError as exc:
        typer.echo(f"Diagnostics unavailable: {exc}", err=True)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about a drug label"),
    max_citations: int = typer.Option(3, "--max-citations", help="Number of quoted excerpts (0-5)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Ask a question through the running API."""
    resp = _request("POST", "/ask", host=host, json={"q": question, "max_citations": max_citations})
    payload = resp.json()
    typer.echo(payload.get("answer", ""))
    typer.echo("")
    typer.echo(f"strategy={payload.get('strategy')}  model={payload.get('model')}")
    for citation in payload.get("citations", []):
        source = citation.get("source", {})
        typer.echo(f"- [{source.get('chunk_id', citation.get('id'))}] {source.get('section', '')}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    uvicorn.run("label_qa.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
