"""Exception hierarchy."""

from __future__ import annotations


class LabelQAError(Exception):
    """Base class for errors raised by label-qa."""


class EmbeddingProviderError(LabelQAError):
    """The embedding service failed at the transport or API level."""


class EmbeddingFailure(LabelQAError):
    """No usable query vector could be produced."""


class StrategyExecutionFailure(LabelQAError):
    """A retrieval strategy could not produce a hit list."""

    def __init__(self, strategy: str, message: str) -> None:
        super().__init__(f"{strategy}: {message}")
        self.strategy = strategy


class SearchBackendError(LabelQAError):
    """The search backend returned an error response."""

    def __init__(self, message: str, status_code: int | None = None, body: object = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AnswerGenerationError(LabelQAError):
    """The answer-generation service failed."""


class RetrievalValidationError(LabelQAError, ValueError):
    """A filter, source selection or strategy name was malformed."""


__all__ = [
    "LabelQAError",
    "EmbeddingProviderError",
    "EmbeddingFailure",
    "StrategyExecutionFailure",
    "SearchBackendError",
    "RetrievalValidationError",
    "AnswerGenerationError",
]
