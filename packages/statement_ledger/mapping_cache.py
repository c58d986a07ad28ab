"""Learned "raw text -> resolved value" mappings with confidence and provenance.

One generic :class:`MappingCache` serves both resolvers; the factories
:func:`vendor_mapping_cache` and :func:`category_mapping_cache` fix the key
normalization for each.

Public API
----------
- ``get_best_mapping(key, user_id=None)``: priority lookup.
- ``cache_mapping(key, value, confidence, source, label=..., user_id=...)``:
  overwrite-only-if-better write.
- ``learn_from_user_correction(key, value, user_id, label=...)``: user write
  plus consensus promotion to global scope.
- ``mapping_stats(user_id=None)``.

Lookup priority
---------------
1. the requesting user's own mapping;
2. a global mapping with confidence >= 0.8;
3. any global mapping;
4. the highest-confidence mapping owned by any user.

Concurrency
-----------
The store is the only shared mutable state. Writes read the current record,
decide with :func:`should_supersede`, then compare-and-set against that exact
record; a lost race re-reads and decides again, so a weaker result can never
replace a stronger one.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from .errors import MappingConflictError
from .logging_setup import get_logger
from .models import (
    MappingDraft,
    MappingRecord,
    MappingSource,
    MappingStats,
    clamp_confidence,
)
from .ports import MappingStore

HIGH_CONFIDENCE = 0.8
SUPERSEDE_MARGIN = 0.1
USER_CORRECTION_CONFIDENCE = 0.95
CONSENSUS_CONFIDENCE = 0.85
CONSENSUS_MIN_USERS = 3

_MAX_WRITE_ATTEMPTS = 5

_logger = get_logger("statement_ledger.mapping_cache")

_WS_RE = re.compile(r"\s+")
_VENDOR_KEY_DROP_RE = re.compile(r"[^\w\s*]")
_CATEGORY_KEY_DROP_RE = re.compile(r"[^\w\s]")


def normalize_vendor_key(text: str) -> str:
    s = _WS_RE.sub(" ", text.strip().lower())
    return _VENDOR_KEY_DROP_RE.sub("", s).strip()


def normalize_category_key(text: str) -> str:
    s = _WS_RE.sub(" ", text.strip().lower())
    return _CATEGORY_KEY_DROP_RE.sub("", s).strip()


def title_case_name(name: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in name.split())


def should_supersede(existing: MappingRecord, confidence: float, source: MappingSource) -> bool:
    """True when a new result may overwrite ``existing`` in the same scope.

    A user-authored value always beats a machine one; otherwise the newcomer
    must be more confident by more than :data:`SUPERSEDE_MARGIN`. A gap of
    exactly the margin does not supersede.
    """

    if source == "user" and existing.source != "user":
        return True
    # Rounded so float noise cannot decide the exact-margin case.
    return round(confidence - existing.confidence, 6) > SUPERSEDE_MARGIN


@dataclass(frozen=True, slots=True)
class LearnOutcome:
    record: MappingRecord
    promoted: MappingRecord | None = None
    agreeing_users: int = 1


class MappingCache:
    """Priority cache over a :class:`~statement_ledger.ports.MappingStore`."""

    def __init__(
        self,
        store: MappingStore,
        *,
        kind: str,
        normalize_key: Callable[[str], str],
        normalize_value: Callable[[str], str] | None = None,
    ) -> None:
        self._store = store
        self._kind = kind
        self._normalize_key = normalize_key
        self._normalize_value = normalize_value or (lambda v: v.strip())

    @property
    def kind(self) -> str:
        return self._kind

    def normalize(self, key: str) -> str:
        return self._normalize_key(key)

    # ---- Read path ---------------------------------------------------------

    def get_best_mapping(self, key: str, user_id: str | None = None) -> MappingRecord | None:
        norm = self._normalize_key(key)
        if not norm:
            return None
        records = sorted(self._store.find(norm), key=lambda r: r.confidence, reverse=True)
        if not records:
            return None

        if user_id is not None:
            for rec in records:
                if rec.user_id == user_id:
                    return rec
        globals_ = [r for r in records if r.is_global]
        for rec in globals_:
            if rec.confidence >= HIGH_CONFIDENCE:
                return rec
        if globals_:
            return globals_[0]
        return records[0]

    # ---- Write path --------------------------------------------------------

    def cache_mapping(
        self,
        key: str,
        value: str,
        confidence: float,
        source: MappingSource,
        *,
        label: str | None = None,
        user_id: str | None = None,
    ) -> MappingRecord | None:
        """Record a resolution for ``key`` in the scope of ``user_id``.

        Returns the record in effect afterwards (which may be the untouched
        existing one), or ``None`` when the key normalizes to nothing.
        """

        draft = self._draft(key, value, confidence, source, label=label, user_id=user_id)
        if draft is None:
            return None
        return self._write(draft, force=False)

    def learn_from_user_correction(
        self,
        key: str,
        value: str,
        user_id: str,
        *,
        label: str | None = None,
    ) -> LearnOutcome | None:
        """Store a user's correction and promote it once enough users agree.

        The user-scoped write always lands (a newer correction replaces the
        user's older one). Promotion writes a global mapping at
        :data:`CONSENSUS_CONFIDENCE` when at least :data:`CONSENSUS_MIN_USERS`
        distinct users map the key to the same value.
        """

        if not user_id:
            raise ValueError("user_id is required to learn a correction")
        draft = self._draft(
            key, value, USER_CORRECTION_CONFIDENCE, "user", label=label, user_id=user_id
        )
        if draft is None:
            return None
        record = self._write(draft, force=True)

        agreeing = self._agreeing_users(draft.key, draft.resolved_value)
        promoted: MappingRecord | None = None
        if agreeing >= CONSENSUS_MIN_USERS:
            promoted = self._write(
                MappingDraft(
                    key=draft.key,
                    resolved_value=draft.resolved_value,
                    resolved_label=draft.resolved_label,
                    confidence=CONSENSUS_CONFIDENCE,
                    source="user",
                    user_id=None,
                ),
                force=False,
            )
            _logger.info(
                "mapping_cache:promoted kind=%s users=%d", self._kind, agreeing
            )
        return LearnOutcome(record=record, promoted=promoted, agreeing_users=agreeing)

    def mapping_stats(self, user_id: str | None = None) -> MappingStats:
        records = self._store.list_visible(user_id)
        return MappingStats(
            total=len(records),
            user=sum(1 for r in records if not r.is_global),
            global_=sum(1 for r in records if r.is_global),
            high_confidence=sum(1 for r in records if r.confidence >= HIGH_CONFIDENCE),
        )

    # ---- Internals ---------------------------------------------------------

    def _draft(
        self,
        key: str,
        value: str,
        confidence: float,
        source: MappingSource,
        *,
        label: str | None,
        user_id: str | None,
    ) -> MappingDraft | None:
        norm = self._normalize_key(key)
        resolved = self._normalize_value(value)
        if not norm or not resolved:
            return None
        return MappingDraft(
            key=norm,
            resolved_value=resolved,
            resolved_label=label,
            confidence=clamp_confidence(confidence),
            source=source,
            user_id=user_id,
        )

    def _write(self, draft: MappingDraft, *, force: bool) -> MappingRecord:
        for _ in range(_MAX_WRITE_ATTEMPTS):
            existing = self._store.get_scoped(draft.key, draft.user_id)
            if existing is None:
                try:
                    return self._store.insert(draft)
                except MappingConflictError:
                    # Another writer created the scope first; decide against it.
                    continue
            if not force and not should_supersede(existing, draft.confidence, draft.source):
                return existing
            replaced = self._store.replace(existing, draft)
            if replaced is not None:
                return replaced
        _logger.warning(
            "mapping_cache:write_contended kind=%s attempts=%d", self._kind, _MAX_WRITE_ATTEMPTS
        )
        current = self._store.get_scoped(draft.key, draft.user_id)
        if current is None:
            raise MappingConflictError(f"could not settle {self._kind} mapping write")
        return current

    def _agreeing_users(self, key: str, value: str) -> int:
        votes: dict[str, set[str]] = defaultdict(set)
        for rec in self._store.find(key):
            if rec.user_id is not None and rec.source == "user":
                votes[rec.resolved_value].add(rec.user_id)
        return len(votes.get(value, ()))


def vendor_mapping_cache(store: MappingStore) -> MappingCache:
    return MappingCache(
        store,
        kind="vendor",
        normalize_key=normalize_vendor_key,
        normalize_value=title_case_name,
    )


def category_mapping_cache(store: MappingStore) -> MappingCache:
    return MappingCache(store, kind="category", normalize_key=normalize_category_key)


__all__ = [
    "HIGH_CONFIDENCE",
    "SUPERSEDE_MARGIN",
    "USER_CORRECTION_CONFIDENCE",
    "CONSENSUS_CONFIDENCE",
    "CONSENSUS_MIN_USERS",
    "LearnOutcome",
    "MappingCache",
    "should_supersede",
    "normalize_vendor_key",
    "normalize_category_key",
    "title_case_name",
    "vendor_mapping_cache",
    "category_mapping_cache",
]
