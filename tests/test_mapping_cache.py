from __future__ import annotations

import pytest

from statement_ledger.mapping_cache import (
    CONSENSUS_CONFIDENCE,
    USER_CORRECTION_CONFIDENCE,
    category_mapping_cache,
    normalize_vendor_key,
    should_supersede,
    title_case_name,
    vendor_mapping_cache,
)
from statement_ledger.models import MappingRecord

from tests.helpers.fakes import FakeMappingStore


@pytest.fixture()
def store() -> FakeMappingStore:
    return FakeMappingStore()


@pytest.fixture()
def cache(store: FakeMappingStore):
    return vendor_mapping_cache(store)


def test_key_and_value_normalization():
    assert normalize_vendor_key("  RAZORPAY*SWIGGY,  Bangalore. ") == "razorpay*swiggy bangalore"
    assert title_case_name("big  BASKET") == "Big Basket"


def test_user_mapping_beats_global_for_that_user_only(cache):
    cache.cache_mapping("SWGY 1234", "Swiggy", 0.9, "llm")
    cache.learn_from_user_correction("SWGY 1234", "Swiggy Instamart", "alice")

    assert cache.get_best_mapping("swgy 1234", "alice").resolved_value == "Swiggy Instamart"
    assert cache.get_best_mapping("swgy 1234", "bob").resolved_value == "Swiggy"
    assert cache.get_best_mapping("swgy 1234").resolved_value == "Swiggy"


def test_high_confidence_global_then_any_global_then_any_user(store, cache):
    cache.cache_mapping("acme", "Acme Low", 0.4, "llm")
    assert cache.get_best_mapping("acme", "zoe").resolved_value == "Acme Low"

    cache.learn_from_user_correction("only-users", "Personal Name", "alice")
    rec = cache.get_best_mapping("only-users", "bob")
    assert rec is not None and rec.user_id == "alice"

    assert cache.get_best_mapping("unknown key") is None
    assert cache.get_best_mapping("  ,, ") is None


def test_weaker_result_never_overwrites_stronger(cache):
    first = cache.cache_mapping("zepto mkt", "Zepto", 0.9, "llm")
    kept = cache.cache_mapping("zepto mkt", "Zepto Grocery", 0.95, "llm")
    assert kept.resolved_value == "Zepto"
    assert kept.revision == first.revision

    replaced = cache.cache_mapping("zepto mkt", "Zepto Now", 0.99, "pattern")
    # 0.99 is not more than 0.1 above 0.9
    assert replaced.resolved_value == "Zepto"

    cache.cache_mapping("blinkit", "Blinkit", 0.5, "llm")
    better = cache.cache_mapping("blinkit", "Blinkit Grocery", 0.7, "llm")
    assert better.resolved_value == "Blinkit Grocery"
    assert better.revision == 1


def test_user_source_supersedes_machine_source_regardless_of_confidence():
    existing = MappingRecord(key="k", resolved_value="X", confidence=0.99, source="llm")
    assert should_supersede(existing, 0.1, "user")
    assert not should_supersede(existing, 0.5, "llm")
    user_existing = MappingRecord(key="k", resolved_value="X", confidence=0.95, source="user")
    assert not should_supersede(user_existing, 0.96, "user")


@pytest.mark.parametrize(
    "existing,incoming,expected",
    [(0.85, 0.95, False), (0.8, 0.9, False), (0.8, 0.91, True), (0.5, 0.7, True)],
)
def test_gap_of_exactly_the_margin_does_not_supersede(existing, incoming, expected):
    rec = MappingRecord(key="k", resolved_value="X", confidence=existing, source="llm")
    assert should_supersede(rec, incoming, "llm") is expected


def test_confidence_is_clamped_into_unit_range(cache):
    hi = cache.cache_mapping("over", "Over", 7.5, "llm")
    lo = cache.cache_mapping("under", "Under", -2, "llm")
    assert hi.confidence == 1.0
    assert lo.confidence == 0.0


def test_user_correction_always_replaces_that_users_mapping(cache):
    cache.learn_from_user_correction("pvr inox", "PVR", "alice")
    out = cache.learn_from_user_correction("pvr inox", "PVR Inox", "alice")
    assert out.record.resolved_value == "Pvr Inox"
    assert out.record.confidence == USER_CORRECTION_CONFIDENCE
    assert out.record.source == "user"
    assert out.promoted is None


def test_consensus_requires_three_distinct_users(store, cache):
    cache.cache_mapping("amzn mktp in", "Amazon Marketplace", 0.6, "llm")

    cache.learn_from_user_correction("AMZN MKTP IN", "Amazon", "u1")
    second = cache.learn_from_user_correction("amzn mktp in", "amazon", "u2")
    assert second.agreeing_users == 2
    assert second.promoted is None
    assert cache.get_best_mapping("amzn mktp in").resolved_value == "Amazon Marketplace"

    # The same user repeating does not add a vote
    again = cache.learn_from_user_correction("amzn mktp in", "Amazon", "u2")
    assert again.agreeing_users == 2

    third = cache.learn_from_user_correction("amzn mktp in", "Amazon", "u3")
    assert third.agreeing_users == 3
    assert third.promoted is not None
    assert third.promoted.user_id is None
    assert third.promoted.confidence == CONSENSUS_CONFIDENCE
    assert third.promoted.source == "user"
    glob = cache.get_best_mapping("amzn mktp in", "someone-else")
    assert glob.resolved_value == "Amazon"
    assert glob.is_global


def test_disagreeing_users_do_not_form_consensus(cache):
    cache.learn_from_user_correction("gpay 99", "Google Pay", "u1")
    cache.learn_from_user_correction("gpay 99", "Gpay Merchant", "u2")
    out = cache.learn_from_user_correction("gpay 99", "Google Pay", "u3")
    assert out.agreeing_users == 2
    assert out.promoted is None


def test_learn_requires_user_and_ignores_empty_keys(cache):
    with pytest.raises(ValueError):
        cache.learn_from_user_correction("x", "X", "")
    assert cache.learn_from_user_correction("...", "X", "u1") is None
    assert cache.cache_mapping("", "X", 0.5, "llm") is None


def test_lost_compare_and_set_is_re_decided_against_the_winner(store, cache):
    cache.cache_mapping("ola cabs", "Ola", 0.5, "llm")

    def _race(current):
        # Another writer lands a strong result between read and write
        store.bump(current.id, resolved_value="Ola Cabs", confidence=0.95, source="llm")
        store.before_replace = None

    store.before_replace = _race
    out = cache.cache_mapping("ola cabs", "Ola Electric", 0.7, "llm")
    assert out.resolved_value == "Ola Cabs"
    assert out.confidence == 0.95


def test_mapping_stats_counts_visible_records(cache):
    cache.cache_mapping("a", "A", 0.9, "llm")
    cache.cache_mapping("b", "B", 0.3, "llm")
    cache.learn_from_user_correction("c", "C", "alice")
    cache.learn_from_user_correction("d", "D", "bob")

    stats = cache.mapping_stats("alice")
    assert (stats.total, stats.user, stats.global_, stats.high_confidence) == (3, 1, 2, 2)
    assert stats.cache_effectiveness == pytest.approx(2 / 3)
    assert cache.mapping_stats().total == 2


def test_category_cache_keeps_values_verbatim():
    cache = category_mapping_cache(FakeMappingStore())
    rec = cache.cache_mapping("Indian Oil Corp", "2", 0.95, "pattern", label="Transportation")
    assert rec.key == "indian oil corp"
    assert rec.resolved_value == "2"
    assert rec.resolved_label == "Transportation"
