"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from label_qa.clients.embeddings import Embedder, embedder_from_settings
from label_qa.clients.opensearch import SearchBackend, backend_from_settings
from label_qa.core.config import Settings, get_settings
from label_qa.qa.answerer import AnswerGenerator, generator_from_settings
from label_qa.retrieval import RetrievalService

_SERVICE: RetrievalService | None = None
_GENERATOR: AnswerGenerator | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_search_backend() -> SearchBackend:
    return backend_from_settings(get_app_settings())


def get_embedder() -> Embedder:
    return embedder_from_settings(get_app_settings())


def get_retrieval_service() -> RetrievalService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = RetrievalService(
            settings=get_app_settings(),
            backend=get_search_backend(),
            embedder=get_embedder(),
        )
    return _SERVICE


def get_answer_generator() -> AnswerGenerator:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = generator_from_settings(get_app_settings())
    return _GENERATOR


__all__ = [
    "get_app_settings",
    "get_search_backend",
    "get_embedder",
    "get_retrieval_service",
    "get_answer_generator",
]
