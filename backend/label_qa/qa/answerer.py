"""Answer generation from selected label excerpts."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx
import orjson

from label_qa.core.config import Settings
from label_qa.core.errors import AnswerGenerationError
from label_qa.models.entities import AnswerResult, Hit
from label_qa.qa.selector import chunk_id_of
from label_qa.utils.text import trim_to_max_chars

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = (
    "I couldn’t find relevant label excerpts for that question. Try specifying the drug name, "
    "route, and what you want to know (e.g., dosing, warnings, pregnancy)."
)
CONTEXT_SEPARATOR = "\n\n---\n\n"

SYSTEM_PROMPT = (
    "You answer questions about FDA drug labels using only the excerpts provided. "
    "Each excerpt is the JSON source of one label chunk. Quote dosing, warnings and "
    "contraindications exactly as written, name the section you relied on, and say so "
    "plainly when the excerpts do not contain the answer. Do not give medical advice "
    "beyond what the label states."
)


class AnswerGenerator(Protocol):
    """Turns a question plus a rendered context block into answer text."""

    model: str

    async def generate(self, question: str, context: str, passages: Sequence[Hit]) -> str: ...


def build_context(hits: Sequence[Hit], max_per_label: int = 1, max_context_chars: int = 12000) -> str:
    """Render up to ``max_per_label`` hits per label as JSON blocks, truncated to ``max_context_chars``."""
    by_label: dict[str, list[Hit]] = {}
    for hit in hits:
        key = str(hit.source.get("label_id") or hit.id)
        group = by_label.setdefault(key, [])
        if len(group) < max_per_label:
            group.append(hit)
    blocks = [
        orjson.dumps(dict(hit.source), option=orjson.OPT_INDENT_2, default=str).decode("utf-8")
        for group in by_label.values()
        for hit in group
    ]
    return CONTEXT_SEPARATOR.join(blocks)[:max_context_chars]


async def answer_question(
    question: str,
    hits: Sequence[Hit],
    generator: AnswerGenerator,
    max_per_label: int = 1,
    max_context_chars: int = 12000,
) -> AnswerResult:
    if not hits:
        return AnswerResult(answer=NO_RESULTS_ANSWER, citations=[], model=generator.model)
    context = build_context(hits, max_per_label=max_per_label, max_context_chars=max_context_chars)
    answer = await generator.generate(question, context, hits)
    return AnswerResult(answer=answer, citations=list(hits), model=generator.model)


class ExtractiveGenerator:
    """Offline generator that stitches the cited passages into a short answer."""

    model = "extractive"

    def __init__(self, max_chars: int = 600) -> None:
        self.max_chars = max_chars

    async def generate(self, question: str, context: str, passages: Sequence[Hit]) -> str:
        lines = ["From the label excerpts:"]
        for hit in passages:
            text = trim_to_max_chars(str(hit.source.get("text") or "").strip(), self.max_chars)
            if not text:
                continue
            section = hit.source.get("section")
            prefix = f"[{chunk_id_of(hit)}]" + (f" ({section})" if section else "")
            lines.append(f"- {prefix} {text}")
        if len(lines) == 1:
            return NO_RESULTS_ANSWER
        return "\n".join(lines)


class OpenAIChatGenerator:
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.2,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, headers=headers)

    async def generate(self, question: str, context: str, passages: Sequence[Hit]) -> str:
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Question:\n{question}\n\nExcerpts (full chunk _source):\n{context}"},
            ],
        }
        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise AnswerGenerationError(
                f"Chat request failed with status {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise AnswerGenerationError(f"Chat request failed: {exc}") from exc
        return _message_text(body)

    async def close(self) -> None:
        await self._client.aclose()


def _message_text(body: Any) -> str:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise AnswerGenerationError("Chat response has no message content") from exc
    if isinstance(content, list):
        return "\n".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content).strip()
    return str(content or "").strip()


def generator_from_settings(settings: Settings) -> AnswerGenerator:
    if settings.answer_backend == "openai":
        if not settings.openai_api_key:
            logger.warning("No API key configured for answer model '%s'", settings.answer_model)
        return OpenAIChatGenerator(
            model=settings.answer_model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
    return ExtractiveGenerator()


__all__ = [
    "NO_RESULTS_ANSWER",
    "AnswerGenerator",
    "build_context",
    "answer_question",
    "ExtractiveGenerator",
    "OpenAIChatGenerator",
    "generator_from_settings",
]
