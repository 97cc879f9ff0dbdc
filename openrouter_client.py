"""OpenRouter chat-completions client for paper annotation."""

from __future__ import annotations

import json
import logging
import os
import time
from json import JSONDecodeError
from typing import Any, Callable

from openai import APIStatusError, OpenAI, OpenAIError, RateLimitError

from errors import AnnotationError
from models import PaperAnalysis
from rate_limit import RateLimiter

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "xiaomi/mimo-v2-flash"
REQUEST_TIMEOUT_SECONDS = 30.0
MAX_ATTEMPTS = 3
MAX_TOKENS = 800
MAX_KEYWORDS = 5

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant that analyzes plant biology research papers.
Given an abstract:
- write a concise 2-3 sentence summary,
- extract 3-5 relevant keywords,
- list the main experimental or computational methods used,
- identify the primary model organism (e.g. "Arabidopsis thaliana", "Zea mays", "Oryza sativa")
  if explicitly mentioned or strongly implied; use "General" or "Multi-species" if unclear.
Respond ONLY with a JSON object, no extra text:
{"summary": "", "keywords": [], "methods": [], "modelOrganism": ""}"""


class OpenRouterClient:
    """Annotates abstracts through OpenRouter, one rate-limited call at a time."""

    def __init__(
        self,
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
        model: str | None = None,
        base_url: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter()
        self.model = model or os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL)
        self.base_url = base_url or os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL)
        self._sleep = sleep

    def annotate(self, abstract: str) -> PaperAnalysis:
        """Return summary, keywords, methods and model organism for an abstract.

        Raises AnnotationError for a missing credential, a non-2xx response,
        an empty or malformed completion, or any transport failure.
        """
        api_key = self.api_key or os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise AnnotationError("OPENROUTER_API_KEY not set")

        self.rate_limiter.wait()
        client = OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=REQUEST_TIMEOUT_SECONDS,
            max_retries=0,
        )

        try:
            response = self._create_with_retry(client, abstract)
        except APIStatusError as exc:
            raise AnnotationError(
                f"OpenRouter API error: {exc.status_code} {exc.response.reason_phrase}".strip(),
                details=exc.body,
            ) from exc
        except OpenAIError as exc:
            raise AnnotationError("Failed to generate paper analysis", details=exc) from exc

        content = _response_text(response)
        if not content:
            LOGGER.error("OpenRouter returned no content: %s", response)
            raise AnnotationError("No response returned from API", details=response)

        return parse_analysis(content)

    def _create_with_retry(self, client: OpenAI, abstract: str) -> Any:
        attempt = 1
        while True:
            try:
                return client.chat.completions.create(
                    model=self.model,
                    max_tokens=MAX_TOKENS,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": f"Analyze this abstract:\n\n{abstract}"},
                    ],
                    extra_body={"reasoning": {"exclude": True}},
                )
            except RateLimitError as exc:
                if attempt >= MAX_ATTEMPTS:
                    raise
                delay = _retry_delay_seconds(exc.response.headers.get("Retry-After"), attempt)
                LOGGER.warning(
                    "OpenRouter rate limited on attempt %s/%s, retrying in %.1fs",
                    attempt,
                    MAX_ATTEMPTS,
                    delay,
                )
                self._sleep(delay)
                attempt += 1


def parse_analysis(content: str) -> PaperAnalysis:
    """Parse and normalize the model's JSON object."""
    try:
        parsed = json.loads(content)
    except JSONDecodeError as exc:
        raise AnnotationError("Invalid JSON returned from API", details=content) from exc

    if not validate_analysis_schema(parsed):
        raise AnnotationError("Invalid JSON structure returned from API", details=parsed)

    keywords = [k.strip() for k in parsed["keywords"]]
    methods = [m.strip() for m in parsed.get("methods") or []]
    organism = (parsed.get("modelOrganism") or "").strip()

    return PaperAnalysis(
        summary=parsed["summary"].strip(),
        keywords=tuple(k for k in keywords if k)[:MAX_KEYWORDS],
        methods=tuple(m for m in methods if m),
        model_organism=organism or None,
    )


def validate_analysis_schema(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    if not isinstance(data.get("summary"), str):
        return False
    if not _is_string_list(data.get("keywords")):
        return False
    if data.get("methods") is not None and not _is_string_list(data["methods"]):
        return False
    organism = data.get("modelOrganism")
    return organism is None or isinstance(organism, str)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _response_text(response: Any) -> str | None:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return None
    message = choices[0].message
    # Reasoning models sometimes put the JSON in `reasoning` and leave `content` empty.
    for candidate in (getattr(message, "content", None), getattr(message, "reasoning", None)):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return None


def _retry_delay_seconds(retry_after: str | None, attempt: int) -> float:
    if retry_after:
        try:
            return float(int(retry_after))
        except ValueError:
            pass
    return 1.0 * attempt
