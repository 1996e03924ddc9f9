"""Search backend adapter contract and its OpenSearch HTTP implementation."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

import httpx
import orjson

from label_qa.clients.memory import InMemorySearchBackend
from label_qa.core.config import Settings
from label_qa.core.errors import SearchBackendError

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    """Minimal search-engine surface used by retrieval, diagnostics and ingestion."""

    async def search(self, index: str, body: Mapping[str, Any]) -> Any: ...

    async def count(self, index: str, body: Mapping[str, Any] | None = None) -> Any: ...

    async def get(self, index: str, doc_id: str) -> Any: ...

    async def bulk(self, operations: Sequence[Mapping[str, Any]]) -> Any: ...

    async def update(self, index: str, doc_id: str, body: Mapping[str, Any]) -> Any: ...

    async def close(self) -> None: ...


def unwrap_body(response: Any) -> Any:
    """Strip the optional ``{"body": ...}`` envelope some clients add."""
    if isinstance(response, Mapping) and isinstance(response.get("body"), Mapping):
        return response["body"]
    return response


def extract_hits(response: Any) -> list[Any] | None:
    """Return ``hits.hits`` from an enveloped or bare response, or None when absent."""
    for candidate in (unwrap_body(response), response):
        if not isinstance(candidate, Mapping):
            continue
        outer = candidate.get("hits")
        if isinstance(outer, Mapping) and isinstance(outer.get("hits"), list):
            return outer["hits"]
    return None


def extract_count(response: Any) -> int | None:
    body = unwrap_body(response)
    if isinstance(body, Mapping) and isinstance(body.get("count"), int):
        return body["count"]
    return None


class OpenSearchBackend:
    """Async REST client for an OpenSearch or Elasticsearch cluster."""

    def __init__(
        self,
        host: str,
        username: str | None = None,
        password: str | None = None,
        verify_certs: bool = False,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = client or httpx.AsyncClient(
            base_url=self.host,
            auth=auth,
            verify=verify_certs,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenSearchBackend":
        return cls(
            host=settings.search_host,
            username=settings.search_user,
            password=settings.search_password,
            verify_certs=settings.search_verify_certs,
            timeout=settings.search_timeout,
        )

    async def search(self, index: str, body: Mapping[str, Any]) -> Any:
        return await self._request("POST", f"/{index}/_search", json_body=body)

    async def count(self, index: str, body: Mapping[str, Any] | None = None) -> Any:
        return await self._request("POST", f"/{index}/_count", json_body=body or {"query": {"match_all": {}}})

    async def get(self, index: str, doc_id: str) -> Any:
        return await self._request("GET", f"/{index}/_doc/{doc_id}")

    async def bulk(self, operations: Sequence[Mapping[str, Any]]) -> Any:
        payload = b"".join(orjson.dumps(op) + b"\n" for op in operations)
        return await self._request(
            "POST",
            "/_bulk",
            content=payload,
            headers={"Content-Type": "application/x-ndjson"},
        )

    async def update(self, index: str, doc_id: str, body: Mapping[str, Any]) -> Any:
        return await self._request("POST", f"/{index}/_update/{doc_id}", json_body=body)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Mapping[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if json_body is not None:
            content = orjson.dumps(json_body)
            headers = {"Content-Type": "application/json", **(headers or {})}
        try:
            response = await self._client.request(method, path, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise SearchBackendError(f"{method} {path} failed: {exc}") from exc
        try:
            payload = orjson.loads(response.content) if response.content else {}
        except orjson.JSONDecodeError:
            payload = response.text
        if response.status_code >= 400:
            logger.debug("search backend error %s %s -> %s", method, path, response.status_code)
            raise SearchBackendError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=payload,
            )
        return payload


_BACKENDS: dict[tuple[str, str], SearchBackend] = {}


def backend_from_settings(settings: Settings) -> SearchBackend:
    """Return the process-wide search backend for the configured target."""
    if settings.search_backend == "memory":
        key = ("memory", str(settings.memory_corpus_path or ""))
        if key not in _BACKENDS:
            if settings.memory_corpus_path is not None:
                _BACKENDS[key] = InMemorySearchBackend.from_jsonl(settings.memory_corpus_path, settings.index_chunks)
            else:
                logger.warning("In-memory search backend started without a corpus")
                _BACKENDS[key] = InMemorySearchBackend()
        return _BACKENDS[key]
    key = ("opensearch", settings.search_host)
    if key not in _BACKENDS:
        _BACKENDS[key] = OpenSearchBackend.from_settings(settings)
    return _BACKENDS[key]


__all__ = [
    "SearchBackend",
    "OpenSearchBackend",
    "backend_from_settings",
    "unwrap_body",
    "extract_hits",
    "extract_count",
]
