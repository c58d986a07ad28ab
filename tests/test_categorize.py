from __future__ import annotations

from decimal import Decimal

import pytest

from statement_ledger.categories import CategoryCatalog
from statement_ledger.categorize import CategoryResolver
from statement_ledger.errors import ClassifierError
from statement_ledger.mapping_cache import category_mapping_cache
from statement_ledger.vendor_directory import VendorDirectory

from tests.helpers.fakes import FakeCategorySource, FakeMappingStore, category_ids
from tests.helpers.openai_stub import StubClassifier

IDS = category_ids()


@pytest.fixture()
def store() -> FakeMappingStore:
    return FakeMappingStore()


@pytest.fixture()
def source() -> FakeCategorySource:
    return FakeCategorySource()


def _resolver(store, source, *, directory=None, classifier=None) -> CategoryResolver:
    return CategoryResolver(
        category_mapping_cache(store),
        CategoryCatalog(source),
        directory=directory,
        classifier=classifier,
    )


def test_rules_hit_is_cached_for_the_next_lookup(store, source):
    resolver = _resolver(store, source, directory=VendorDirectory.bundled())

    first = resolver.resolve("Indian Oil Corp", Decimal("1500"), "DEBIT")
    assert first is not None
    assert first.tier == "rules"
    assert first.category_name == "Transportation"
    assert first.category_id == IDS["Transportation"]
    assert first.confidence == pytest.approx(0.95)
    assert first.source == "pattern"

    (rec,) = store.records
    assert rec.key == "indian oil corp"
    assert rec.resolved_value == str(IDS["Transportation"])
    assert rec.user_id is None

    second = resolver.resolve("Indian Oil Corp", Decimal("900"), "DEBIT")
    assert second.tier == "cache"
    assert second.category_id == IDS["Transportation"]
    assert second.confidence == pytest.approx(0.95)


def test_failed_cache_write_still_returns_the_category(store, source):
    store.fail_writes = True
    resolver = _resolver(store, source, directory=VendorDirectory.bundled())

    out = resolver.resolve("Indian Oil Corp", Decimal("1500"), "DEBIT")
    assert out is not None
    assert out.tier == "rules"
    assert out.category_id == IDS["Transportation"]
    assert store.records == []


def test_directory_tier_maps_known_brands(store, source):
    resolver = _resolver(store, source, directory=VendorDirectory.bundled())
    out = resolver.resolve("SWIGGY", Decimal("349"), "DEBIT")
    assert out.tier == "directory"
    assert out.category_name == "Food & Dining"
    assert out.confidence == pytest.approx(0.95)
    assert out.source == "pattern"


def test_directory_falls_back_to_description(store, source):
    resolver = _resolver(store, source, directory=VendorDirectory.bundled())
    out = resolver.resolve("Payment", Decimal("599"), "DEBIT", description="NETFLIX COM MUMBAI")
    assert out.tier == "directory"
    assert out.category_name == "Entertainment"


def test_llm_answer_is_clamped_and_constrained(store, source):
    clf = StubClassifier(lambda prompt: "Category: Travel\nConfidence: 0.99\nReasoning: airline")
    resolver = _resolver(store, source, classifier=clf)

    out = resolver.resolve("Akasa Air", Decimal("5400"), "DEBIT")
    assert out.tier == "llm"
    assert out.category_name == "Travel"
    assert out.confidence == pytest.approx(0.9)

    ((prompt, web_search),) = clf.prompts
    assert web_search is False
    assert "- Personal Care" in prompt
    assert "Vendor: Akasa Air" in prompt


@pytest.mark.parametrize(
    "reply",
    ["Category: Groceries\nConfidence: 0.8", ClassifierError("LLM_TIMEOUT", "slow")],
)
def test_llm_miss_means_no_category(store, source, reply):
    resolver = _resolver(store, source, classifier=StubClassifier(lambda prompt: reply))
    assert resolver.resolve("Qwerty Labs", Decimal("120"), "DEBIT") is None
    assert store.records == []


def test_user_learning_overrides_cache_for_that_user(store, source):
    resolver = _resolver(store, source, directory=VendorDirectory.bundled())
    resolver.resolve("Swiggy", Decimal("200"), "DEBIT")

    resolver.learn("Swiggy", IDS["Personal Care"], "alice")
    mine = resolver.resolve("Swiggy", Decimal("200"), "DEBIT", user_id="alice")
    assert mine.category_name == "Personal Care"
    assert mine.source == "user"
    assert resolver.resolve("Swiggy", Decimal("200"), "DEBIT", user_id="bob").category_name == (
        "Food & Dining"
    )


def test_learn_rejects_unknown_category(store, source):
    with pytest.raises(ValueError):
        _resolver(store, source).learn("Swiggy", 999, "alice")


def test_stale_cached_category_is_skipped(store, source):
    cache = category_mapping_cache(store)
    cache.cache_mapping("corner shop", "4242", 0.9, "llm")
    resolver = _resolver(store, source)
    assert resolver.resolve("Corner Shop", Decimal("80"), "DEBIT") is None


def test_empty_vendor_name_is_rejected(store, source):
    with pytest.raises(ValueError):
        _resolver(store, source).resolve(" ", Decimal("1"), "DEBIT")


def test_catalog_loads_once_until_invalidated(source):
    catalog = CategoryCatalog(source)
    assert catalog.by_name("food   & dining").id == IDS["Food & Dining"]
    assert catalog.by_id("3").name == "Shopping"
    assert catalog.by_id("abc") is None
    assert "Rent" in catalog.names()
    assert source.loads == 1

    source.names.append("Pets")
    assert catalog.by_name("Pets") is None
    catalog.invalidate()
    assert catalog.by_name("pets").id == len(source.names)
    assert source.loads == 2

    catalog.reload()
    assert source.loads == 3
