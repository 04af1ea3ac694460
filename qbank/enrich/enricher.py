"""Question enrichment through a text-generation API.

The enricher renders the prompt template with the raw question text, sends it
to the configured provider, and parses the JSON the model returns into
EnrichedQuestion objects.

Supported providers:
- openai:    any OpenAI-compatible ``/chat/completions`` endpoint (set
             llm_base_url for self-hosted or third-party gateways)
- anthropic: the Anthropic messages API

Unlike a best-effort stage, enrichment is on the critical path: every failure
(HTTP error, timeout, empty output, invalid JSON) raises EnrichmentError so the
pipeline can mark the task failed and let the retry lane try again later.
Deadlines are enforced here through the httpx client timeout.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod

import httpx
from pydantic import TypeAdapter, ValidationError

from qbank.enrich.models import EnrichedQuestion, EnrichedQuestionSet
from qbank.enrich.prompt import DEFAULT_TEMPLATE, load_template, render
from qbank.errors import EnrichmentError

logger = logging.getLogger(__name__)

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_MAX_TOKENS = 4096

_question_list = TypeAdapter(list[EnrichedQuestion])


class Enricher(ABC):
    """Turns a raw text blob into an ordered list of enriched questions."""

    @abstractmethod
    async def enrich(self, raw_text: str) -> list[EnrichedQuestion]:
        """Enrich *raw_text*.

        Raises:
            EnrichmentError: On any provider failure or unusable output.
        """
        ...


def parse_enrichment(raw: str) -> list[EnrichedQuestion]:
    """Parse model output into questions.

    Accepts ``{"questions": [...]}`` or a bare JSON list, optionally wrapped in
    markdown code fences.

    Raises:
        EnrichmentError: If the text is empty, not JSON, or fails validation.
    """
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", raw.strip(), flags=re.MULTILINE)
    if not cleaned.strip():
        raise EnrichmentError("empty response text")

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise EnrichmentError(f"response is not valid JSON: {exc}") from exc

    try:
        if isinstance(parsed, list):
            return _question_list.validate_python(parsed)
        return EnrichedQuestionSet.model_validate(parsed).questions
    except ValidationError as exc:
        raise EnrichmentError(f"response does not match the question schema: {exc}") from exc


class LLMEnricher(Enricher):
    """Enricher backed by a hosted chat model.

    Args:
        api_key:  Provider API key.
        model:    Model identifier.
        provider: "openai" or "anthropic".
        base_url: Base URL for the openai provider (ignored for anthropic).
        template: Prompt template text with an ``{input_text}`` placeholder.
        timeout:  Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        provider: str = "openai",
        base_url: str = "https://api.openai.com/v1",
        template: str = DEFAULT_TEMPLATE,
        timeout: float = 120.0,
    ) -> None:
        if provider not in ("openai", "anthropic"):
            raise ValueError(f"Unsupported LLM provider: {provider!r}")
        self._api_key = api_key
        self._model = model
        self._provider = provider
        self._base_url = base_url.rstrip("/")
        self._template = template
        self._timeout = timeout

    @classmethod
    def from_settings(cls) -> LLMEnricher:
        from qbank.config import settings  # noqa: PLC0415

        template = DEFAULT_TEMPLATE
        if settings.enrich_template_path:
            template = load_template(settings.enrich_template_path)
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            provider=settings.llm_provider,
            base_url=settings.llm_base_url,
            template=template,
            timeout=settings.llm_timeout_seconds,
        )

    async def enrich(self, raw_text: str) -> list[EnrichedQuestion]:
        prompt = render(self._template, raw_text)
        try:
            raw_response = await self._call_llm(prompt)
        except httpx.TimeoutException as exc:
            raise EnrichmentError(f"LLM call timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"LLM API error: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EnrichmentError(f"unexpected LLM response shape: {exc}") from exc

        questions = parse_enrichment(raw_response)
        logger.info("Enrichment returned %d questions", len(questions))
        return questions

    async def _call_llm(self, prompt: str) -> str:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            if self._provider == "anthropic":
                response = await client.post(
                    _ANTHROPIC_URL,
                    headers={
                        "x-api-key": self._api_key,
                        "anthropic-version": "2023-06-01",
                        "content-type": "application/json",
                    },
                    json={
                        "model": self._model,
                        "max_tokens": _MAX_TOKENS,
                        "messages": [{"role": "user", "content": prompt}],
                    },
                )
                response.raise_for_status()
                # content is a list of blocks; join the text ones
                blocks = response.json()["content"]
                return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")

            response = await client.post(
                f"{self._base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": [{"role": "user", "content": prompt}],
                },
            )
            response.raise_for_status()
            return response.json()["choices"][0]["message"]["content"] or ""
