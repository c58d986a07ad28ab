from __future__ import annotations

import httpx
import pytest
from openai import APITimeoutError

import statement_ledger.llm as llm_mod
from statement_ledger.errors import ClassifierError
from statement_ledger.llm import OpenAIClassifier

from tests.helpers.openai_stub import OpenAIStub, make_response


class _HttpError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


@pytest.fixture()
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    slept: list[int] = []
    monkeypatch.setattr(llm_mod, "_sleep_backoff", lambda attempt: slept.append(attempt))
    return slept


def _install(monkeypatch: pytest.MonkeyPatch, stub: OpenAIStub) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(llm_mod, "OpenAI", stub.factory())


def test_missing_api_key_is_reported_without_a_request(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(lambda prompt: "unused")
    monkeypatch.setattr(llm_mod, "OpenAI", stub.factory())

    with pytest.raises(ClassifierError) as ei:
        OpenAIClassifier().complete("hello")
    assert ei.value.code == "MISSING_API_KEY"
    assert stub.calls == []


def test_complete_passes_timeout_model_and_web_search(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(lambda prompt: "Business Name: Swiggy")
    _install(monkeypatch, stub)

    clf = OpenAIClassifier(model="gpt-test", timeout_sec=12.5)
    reply = clf.complete("who is SWGY?", web_search=True)

    assert reply.text == "Business Name: Swiggy"
    (call,) = stub.calls
    assert call["model"] == "gpt-test"
    assert call["input"] == "who is SWGY?"
    assert call["timeout"] == 12.5
    assert call["tools"] == [{"type": "web_search"}]
    assert stub.init_kwargs["timeout"] == 12.5
    assert stub.init_kwargs["max_retries"] == 0


def test_plain_completion_sends_no_tools(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(lambda prompt: "Category: Shopping")
    _install(monkeypatch, stub)
    OpenAIClassifier().complete("categorize")
    assert "tools" not in stub.calls[0]


def test_citations_are_returned_as_sources(monkeypatch: pytest.MonkeyPatch):
    resp = make_response("Business Name: CRED", citations=("https://cred.club", "https://x.y"))

    class _Client:
        def __init__(self, *a, **kw) -> None:
            class _Responses:
                def create(self, **kwargs):
                    return resp

            self.responses = _Responses()

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(llm_mod, "OpenAI", _Client)
    reply = OpenAIClassifier().complete("q", web_search=True)
    assert reply.sources == ("https://cred.club", "https://x.y")


def test_timeout_becomes_llm_timeout_without_retry(monkeypatch, no_sleep):
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    stub = OpenAIStub(lambda prompt: APITimeoutError(request=request))
    _install(monkeypatch, stub)

    with pytest.raises(ClassifierError) as ei:
        OpenAIClassifier().complete("slow")
    assert ei.value.code == "LLM_TIMEOUT"
    assert len(stub.calls) == 1
    assert no_sleep == []


def test_retries_429_and_5xx_then_succeeds(monkeypatch, no_sleep):
    outcomes = [_HttpError(429), _HttpError(503), "Category: Other"]
    stub = OpenAIStub(lambda prompt: outcomes.pop(0))
    _install(monkeypatch, stub)

    reply = OpenAIClassifier(max_attempts=3).complete("retry me")
    assert reply.text == "Category: Other"
    assert len(stub.calls) == 3
    assert no_sleep == [1, 2]


def test_non_retryable_status_fails_immediately(monkeypatch, no_sleep):
    stub = OpenAIStub(lambda prompt: _HttpError(400))
    _install(monkeypatch, stub)

    with pytest.raises(ClassifierError) as ei:
        OpenAIClassifier().complete("bad")
    assert ei.value.code == "LLM_FAILED"
    assert len(stub.calls) == 1


def test_retries_stop_at_max_attempts(monkeypatch, no_sleep):
    stub = OpenAIStub(lambda prompt: _HttpError(500))
    _install(monkeypatch, stub)

    with pytest.raises(ClassifierError) as ei:
        OpenAIClassifier(max_attempts=2).complete("down")
    assert ei.value.code == "LLM_FAILED"
    assert len(stub.calls) == 2


def test_empty_output_is_an_error(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(lambda prompt: "   ")
    _install(monkeypatch, stub)
    with pytest.raises(ClassifierError) as ei:
        OpenAIClassifier().complete("silent")
    assert ei.value.code == "EMPTY_RESPONSE"


@pytest.mark.parametrize("kwargs", [{"timeout_sec": 0}, {"max_attempts": 0}])
def test_constructor_validates_limits(kwargs):
    with pytest.raises(ValueError):
        OpenAIClassifier(**kwargs)
