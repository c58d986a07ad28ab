"""LLM Classifier collaborator: the OpenAI Responses API behind a small protocol.

Public API:
    - :class:`LlmClassifier` protocol and :class:`LlmReply`
    - :class:`OpenAIClassifier`

Resolvers only see ``complete(prompt, web_search=...) -> LlmReply``. Every
failure leaves this module as :class:`~statement_ledger.errors.ClassifierError`
with one of the codes ``MISSING_API_KEY``, ``LLM_TIMEOUT``, ``LLM_FAILED`` or
``EMPTY_RESPONSE``; resolvers treat all of them as a tier miss. No client is
created at import time.
"""

from __future__ import annotations

import os
import random
import time
from dataclasses import dataclass
from typing import Any, Protocol

from openai import APITimeoutError, OpenAI

from .errors import ClassifierError
from .logging_setup import get_logger

# ---- Tunables (private) ------------------------------------------------------

_MODEL: str = "gpt-5"
_TIMEOUT_SEC: float = 30.0
_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("statement_ledger.llm")


@dataclass(frozen=True, slots=True)
class LlmReply:
    text: str
    # URLs cited by web-search grounding, when the model used it.
    sources: tuple[str, ...] = ()


class LlmClassifier(Protocol):
    def complete(self, prompt: str, *, web_search: bool = False) -> LlmReply: ...


# ---- Response decoding -------------------------------------------------------


def _extract_output_text(resp: Any) -> str | None:
    """Prefer ``resp.output_text``; fall back to the first message content."""

    text = getattr(resp, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text
    for item in getattr(resp, "output", None) or ():
        for part in getattr(item, "content", None) or ():
            txt = getattr(part, "text", None)
            if isinstance(txt, str) and txt.strip():
                return txt
            value = getattr(txt, "value", None)
            if isinstance(value, str) and value.strip():
                return value
    return None


def _extract_citations(resp: Any) -> tuple[str, ...]:
    urls: list[str] = []
    for item in getattr(resp, "output", None) or ():
        for part in getattr(item, "content", None) or ():
            for ann in getattr(part, "annotations", None) or ():
                if getattr(ann, "type", None) != "url_citation":
                    continue
                url = getattr(ann, "url", None)
                if isinstance(url, str) and url and url not in urls:
                    urls.append(url)
    return tuple(urls)


# ---- Retry policy ------------------------------------------------------------


def _is_retryable(exc: BaseException) -> bool:
    """Retry only HTTP 429 and 5xx responses."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    base = _BACKOFF_SCHEDULE_SEC[min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


# ---- Classifier --------------------------------------------------------------


class OpenAIClassifier:
    """Send a prompt to the Responses API and return its text.

    Parameters
    ----------
    model:
        Responses API model name.
    timeout_sec:
        Upper bound for each request; a timeout raises ``LLM_TIMEOUT``.
    max_attempts:
        Total attempts for retryable HTTP failures (429/5xx).
    api_key:
        Explicit key; defaults to ``OPENAI_API_KEY`` read at call time.
    """

    def __init__(
        self,
        *,
        model: str = _MODEL,
        timeout_sec: float = _TIMEOUT_SEC,
        max_attempts: int = _MAX_ATTEMPTS,
        api_key: str | None = None,
    ) -> None:
        if timeout_sec <= 0:
            raise ValueError("timeout_sec must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._model = model
        self._timeout = timeout_sec
        self._max_attempts = max_attempts
        self._api_key = api_key
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        key = self._api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ClassifierError("MISSING_API_KEY", "OPENAI_API_KEY is not configured")
        if self._client is None:
            # Retries are handled here so they respect the 429/5xx-only policy.
            self._client = OpenAI(api_key=key, max_retries=0, timeout=self._timeout)
        return self._client

    def complete(self, prompt: str, *, web_search: bool = False) -> LlmReply:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": prompt,
            "timeout": self._timeout,
        }
        if web_search:
            kwargs["tools"] = [{"type": "web_search"}]
            kwargs["tool_choice"] = "auto"

        attempt = 0
        while True:
            attempt += 1
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(**kwargs)
                break
            except APITimeoutError as e:
                _logger.warning(
                    "llm:timeout model=%s timeout_sec=%.1f", self._model, self._timeout
                )
                raise ClassifierError("LLM_TIMEOUT", f"no response within {self._timeout}s") from e
            except Exception as e:  # noqa: BLE001 - translated below
                retry = _is_retryable(e) and attempt < self._max_attempts
                _logger.warning(
                    "llm:error model=%s attempt=%d/%d retry=%s error=%s",
                    self._model,
                    attempt,
                    self._max_attempts,
                    retry,
                    type(e).__name__,
                )
                if not retry:
                    raise ClassifierError("LLM_FAILED", str(e) or type(e).__name__) from e
                _sleep_backoff(attempt)

        text = _extract_output_text(resp)
        _logger.debug(
            "llm:done model=%s web_search=%s latency_ms=%d",
            self._model,
            web_search,
            int((time.perf_counter() - t0) * 1000),
        )
        if text is None:
            raise ClassifierError("EMPTY_RESPONSE", "model returned no text output")
        return LlmReply(text=text, sources=_extract_citations(resp))


__all__ = ["LlmClassifier", "LlmReply", "OpenAIClassifier"]
