"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "LBQA_"
DEFAULT_CONFIG_PATH = Path("~/.config/label-qa/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("search", "backend"): "search_backend",
    ("search", "host"): "search_host",
    ("search", "user"): "search_user",
    ("search", "password"): "search_password",
    ("search", "verify_certs"): "search_verify_certs",
    ("search", "timeout"): "search_timeout",
    ("search", "memory_corpus"): "memory_corpus_path",
    ("search", "index_chunks"): "index_chunks",
    ("search", "index_labels"): "index_labels",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("retrieval", "top_k"): "top_k",
    ("retrieval", "rrf_c"): "rrf_c",
    ("retrieval", "mmr_lambda"): "mmr_lambda",
    ("retrieval", "max_per_label"): "max_per_label",
    ("answer", "backend"): "answer_backend",
    ("answer", "model"): "answer_model",
    ("answer", "max_context_chars"): "max_context_chars",
    ("openai", "base_url"): "openai_base_url",
    ("openai", "api_key"): "openai_api_key",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    search_backend: Literal["opensearch", "memory"] = "opensearch"
    search_host: str = "https://localhost:9200"
    search_user: str = "admin"
    search_password: str = ""
    search_verify_certs: bool = False
    search_timeout: float = Field(default=30.0, gt=0)
    memory_corpus_path: Path | None = None
    index_chunks: str = "drug-chunks"
    index_labels: str = "drug-labels"
    embedding_backend: Literal["openai", "hashed"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=1536, ge=1)
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: str | None = None
    top_k: int = Field(default=12, ge=1)
    rrf_c: float = Field(default=60.0, ge=0)
    mmr_lambda: float = Field(default=0.7, ge=0, le=1)
    max_per_label: int = Field(default=1, ge=0)
    answer_backend: Literal["openai", "extractive"] = "extractive"
    answer_model: str = "gpt-4o-mini"
    max_context_chars: int = Field(default=12000, ge=1)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("memory_corpus_path", mode="before")
    @classmethod
    def _expand_corpus_path(cls, value: Any) -> Path | None:
        if value is None or value == "":
            return None
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("memory_corpus_path must be a path or string")

    @field_validator("search_host", "openai_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        if not data.get("openai_api_key") and os.environ.get("OPENAI_API_KEY"):
            data["openai_api_key"] = os.environ["OPENAI_API_KEY"]
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with LBQA_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor; environment is read once per process."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
