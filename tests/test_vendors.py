from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from statement_ledger.errors import ClassifierError
from statement_ledger.mapping_cache import vendor_mapping_cache
from statement_ledger.vendors import VendorRequest, VendorResolver, clean_vendor_text

from tests.helpers.fakes import FakeMappingStore
from tests.helpers.openai_stub import StubClassifier


@pytest.fixture()
def store() -> FakeMappingStore:
    return FakeMappingStore()


def _resolver(store: FakeMappingStore, classifier=None) -> VendorResolver:
    return VendorResolver(vendor_mapping_cache(store), classifier)


@pytest.mark.parametrize(
    "raw,clean",
    [
        ("UPI-RAZORPAY*SWIGGY 99812345", "SWIGGY"),
        ("NEFT/ACME TRADERS", "ACME TRADERS"),
        ("PAYU*BOOKMYSHOW 88812", "BOOKMYSHOW"),
        ("12345678", "12345678"),
    ],
)
def test_clean_vendor_text(raw, clean):
    assert clean_vendor_text(raw) == clean


def test_fallback_without_classifier_is_written_back(store):
    resolver = _resolver(store)

    first = resolver.resolve("UPI-RAZORPAY*SWIGGY 99812345")
    assert first.tier == "fallback"
    assert first.resolved_name == "SWIGGY"
    assert first.confidence == pytest.approx(0.2)
    assert first.source == "pattern"

    (rec,) = store.records
    assert rec.user_id is None
    assert rec.resolved_value == "Swiggy"

    again = resolver.resolve("upi-razorpay*swiggy 99812345")
    assert again.tier == "cache"
    assert again.resolved_name == "Swiggy"
    assert again.confidence == pytest.approx(0.2)


def test_llm_tier_uses_web_search_and_context(store):
    clf = StubClassifier(
        lambda prompt: "Business Name: Swiggy\nConfidence: 0.93\nReasoning: Bundl runs Swiggy"
    )
    resolver = _resolver(store, clf)

    out = resolver.resolve(
        "BUNDL TECHNOLOGIES BLR",
        user_id="alice",
        amount=Decimal("349.00"),
        date=date(2024, 3, 2),
    )
    assert out.tier == "llm"
    assert out.source == "llm"
    assert out.resolved_name == "Swiggy"
    assert out.confidence == pytest.approx(0.93)

    ((prompt, web_search),) = clf.prompts
    assert web_search is True
    assert "BUNDL TECHNOLOGIES BLR" in prompt
    assert "349.00" in prompt
    assert "2024-03-02" in prompt

    # Written globally, so another user gets the cached answer.
    hit = resolver.resolve("BUNDL TECHNOLOGIES BLR", user_id="bob")
    assert hit.tier == "cache"
    assert len(clf.prompts) == 1


def test_failed_cache_write_still_returns_the_llm_answer(store):
    store.fail_writes = True
    resolver = _resolver(
        store, StubClassifier(lambda prompt: "Business Name: Swiggy\nConfidence: 0.9")
    )

    out = resolver.resolve("BUNDL TECHNOLOGIES BLR", user_id="alice")
    assert out.tier == "llm"
    assert out.resolved_name == "Swiggy"
    assert out.confidence == pytest.approx(0.9)
    assert store.records == []


@pytest.mark.parametrize(
    "reply",
    [
        ClassifierError("LLM_TIMEOUT", "timed out"),
        ClassifierError("LLM_FAILED", "HTTP 500"),
        "I am not sure which merchant this is.",
        "Business Name: Unknown",
    ],
)
def test_llm_miss_falls_back_to_cleanup(store, reply):
    resolver = _resolver(store, StubClassifier(lambda prompt: reply))
    out = resolver.resolve("IMPS-ZEPTO MARKETPLACE 7788991")
    assert out.tier == "fallback"
    assert out.resolved_name == "ZEPTO MARKETPLACE"


def test_user_correction_is_preferred_for_that_user(store):
    resolver = _resolver(store)
    resolver.resolve("AMZN MKTP IN")
    outcome = resolver.learn("AMZN MKTP IN", "amazon", "alice")
    assert outcome is not None and outcome.record.resolved_value == "Amazon"

    mine = resolver.resolve("AMZN MKTP IN", user_id="alice")
    assert mine.resolved_name == "Amazon"
    assert mine.source == "user"
    assert resolver.resolve("AMZN MKTP IN", user_id="bob").resolved_name == "Amzn Mktp In"


def test_empty_text_is_rejected(store):
    with pytest.raises(ValueError):
        _resolver(store).resolve("   ")


def test_resolve_many_reports_stats_and_per_item_errors(store):
    resolver = _resolver(store)
    resolver.resolve("NETFLIX.COM")

    def _reply(prompt: str):
        if "CRED CLUB" in prompt:
            return "Business Name: CRED\nConfidence: 0.9"
        return ClassifierError("LLM_FAILED", "down")

    resolver = _resolver(store, StubClassifier(_reply))
    batch = resolver.resolve_many(
        ["NETFLIX.COM", VendorRequest("CRED CLUB", amount=Decimal("10")), "  ", "RANDOM SHOP"],
        concurrency=2,
    )

    assert [r.tier if r else None for r in batch.results] == ["cache", "llm", None, "fallback"]
    assert batch.stats.total == 4
    assert batch.stats.resolved == 3
    assert batch.stats.failed == 1
    assert batch.stats.cached == 1
    assert batch.stats.ai_resolved == 1
    assert len(batch.errors) == 1
    assert "vendor text must be non-empty" in batch.errors[0]
