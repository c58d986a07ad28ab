"""Tiered resolution: an ordered list of tiers, first ``Found`` wins.

Each tier is a zero-argument callable returning :class:`Found` or
:class:`NotFound`. :func:`run_cascade` calls them in order and stops at the
first hit. Reordering, adding or removing a tier is a one-line change in the
resolver that builds the list.

Tiers report their own misses; an exception escaping a tier is a bug in that
tier and propagates.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from .logging_setup import get_logger

T = TypeVar("T")

_logger = get_logger("statement_ledger.cascade")


@dataclass(frozen=True, slots=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class NotFound:
    reason: str = ""


type TierResult[T] = Found[T] | NotFound


@dataclass(frozen=True, slots=True)
class Tier(Generic[T]):
    name: str
    run: Callable[[], Found[T] | NotFound]


@dataclass(frozen=True, slots=True)
class CascadeHit(Generic[T]):
    tier: str
    value: T


def run_cascade(tiers: Sequence[Tier[T]], *, label: str = "cascade") -> CascadeHit[T] | None:
    for tier in tiers:
        result = tier.run()
        if isinstance(result, Found):
            _logger.debug("%s:hit tier=%s", label, tier.name)
            return CascadeHit(tier=tier.name, value=result.value)
        _logger.debug("%s:miss tier=%s reason=%s", label, tier.name, result.reason)
    return None


__all__ = ["Found", "NotFound", "TierResult", "Tier", "CascadeHit", "run_cascade"]
