"""Test helpers to stub the OpenAI Responses client used by ``statement_ledger.llm``.

``OpenAIStub`` matches the shape of ``openai.OpenAI`` that the classifier
touches (``client.responses.create(**kwargs)``). Tests provide a ``reply``
callable mapping the prompt to either the answer text or an exception to
raise; each call's kwargs are recorded for assertions.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any


def make_response(text: str | None, *, citations: tuple[str, ...] = ()) -> Any:
    """Build an object shaped like a Responses API result."""

    annotations = [SimpleNamespace(type="url_citation", url=u) for u in citations]
    content = [SimpleNamespace(type="output_text", text=text or "", annotations=annotations)]
    return SimpleNamespace(
        output_text=text,
        output=[SimpleNamespace(type="message", content=content)],
    )


class OpenAIStub:
    """Minimal stand-in for ``openai.OpenAI``.

    Parameters
    ----------
    reply:
        Receives the prompt (``kwargs["input"]``) and returns the answer text,
        or returns/raises an exception to simulate a failed request.
    calls_out:
        List appended with each call's kwargs.
    """

    def __init__(
        self,
        reply: Callable[[str], str | BaseException],
        calls_out: list[dict[str, Any]] | None = None,
    ) -> None:
        self._reply = reply
        self._calls = calls_out if calls_out is not None else []
        self._lock = threading.Lock()
        self.init_kwargs: dict[str, Any] = {}

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs):
                with self._outer._lock:
                    self._outer._calls.append(kwargs)
                out = self._outer._reply(kwargs["input"])
                if isinstance(out, BaseException):
                    raise out
                return make_response(out)

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls

    def factory(self) -> Callable[..., OpenAIStub]:
        """Return a callable to monkeypatch over ``statement_ledger.llm.OpenAI``."""

        def _new(*args: Any, **kwargs: Any) -> OpenAIStub:
            self.init_kwargs = kwargs
            return self

        return _new


class StubClassifier:
    """``LlmClassifier`` double that answers from a callable without HTTP."""

    def __init__(self, reply: Callable[[str], str | BaseException]) -> None:
        self._reply = reply
        self.prompts: list[tuple[str, bool]] = []
        self._lock = threading.Lock()

    def complete(self, prompt: str, *, web_search: bool = False):
        from statement_ledger.llm import LlmReply

        with self._lock:
            self.prompts.append((prompt, web_search))
        out = self._reply(prompt)
        if isinstance(out, BaseException):
            raise out
        return LlmReply(text=out)
