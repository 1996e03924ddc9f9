"""Embedding providers."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Protocol, Sequence

import httpx

from label_qa.core.config import Settings
from label_qa.core.errors import EmbeddingProviderError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class Embedder(Protocol):
    """Anything that turns texts into vectors, one per text, in order."""

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    backend: str


class HashedEmbedder:
    """Deterministic hashed bag-of-words embedder for offline use and tests."""

    _instances: dict[tuple[str, int], "HashedEmbedder"] = {}

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model_name = model_name
        self._dim = dim

    @classmethod
    def get(cls, model_name: str, dim: int = 384) -> "HashedEmbedder":
        key = (model_name or "hashed", dim)
        if key not in cls._instances:
            cls._instances[key] = HashedEmbedder(model_name=key[0], dim=dim)
        return cls._instances[key]

    @property
    def dim(self) -> int:
        return self._dim

    def encode(self, texts: Sequence[str]) -> EmbeddingBatch:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dim
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim, backend="hashed")

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return self.encode(texts).vectors


class OpenAIEmbedder:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, headers=headers)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = await self._client.post("/embeddings", json={"model": self.model, "input": list(texts)})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingProviderError(
                f"Embedding request failed with status {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingProviderError(f"Embedding request failed: {exc}") from exc
        data = payload.get("data")
        if not isinstance(data, list):
            raise EmbeddingProviderError("Embedding response is missing 'data'")
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [list(item.get("embedding") or []) for item in ordered]

    async def close(self) -> None:
        await self._client.aclose()


_PROVIDERS: dict[tuple[str, str], Embedder] = {}


def embedder_from_settings(settings: Settings) -> Embedder:
    """Return the process-wide embedder for the configured backend and model."""
    key = (settings.embedding_backend, settings.embedding_model)
    if key not in _PROVIDERS:
        if settings.embedding_backend == "hashed":
            _PROVIDERS[key] = HashedEmbedder.get(settings.embedding_model, settings.embedding_dim)
        else:
            if not settings.openai_api_key:
                logger.warning("No API key configured for embedding model '%s'", settings.embedding_model)
            _PROVIDERS[key] = OpenAIEmbedder(
                model=settings.embedding_model,
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
            )
    return _PROVIDERS[key]


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = ["Embedder", "EmbeddingBatch", "HashedEmbedder", "OpenAIEmbedder", "embedder_from_settings"]
