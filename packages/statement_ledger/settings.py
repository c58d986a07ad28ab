"""Runtime configuration read from the environment.

The CLI loads a local ``.env`` (without overriding existing variables) before
calling :meth:`LedgerSettings.from_env`; library callers may construct
``LedgerSettings`` directly.

Variables
---------
``DATABASE_URL``               SQLAlchemy URL of the ledger database.
``LEDGER_LLM_MODEL``           OpenAI model for both LLM tiers (``gpt-5``).
``LEDGER_LLM_TIMEOUT_SEC``     Per-request LLM timeout in seconds (30).
``LEDGER_MAX_WORKERS``         Thread pool size for batch inserts and bulk
                               resolution (4, capped at 32).
``LEDGER_TRANSFER_WINDOW_DAYS`` Day window for transfer pairing (3).
``LEDGER_TRANSFER_KEYWORDS``   Comma-separated transfer vocabulary.
``LEDGER_VENDOR_DIRECTORY``    Path to a vendor directory CSV; the bundled
                               file is used when unset.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .transfers import DEFAULT_TRANSFER_KEYWORDS, TransferPolicy

_MAX_WORKERS_CAP = 32


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class LedgerSettings:
    database_url: str | None = None
    llm_model: str = "gpt-5"
    llm_timeout_sec: float = 30.0
    max_workers: int = 4
    transfer_window_days: int = 3
    transfer_keywords: tuple[str, ...] = DEFAULT_TRANSFER_KEYWORDS
    vendor_directory_path: Path | None = None

    def __post_init__(self) -> None:
        if self.llm_timeout_sec <= 0:
            raise ValueError("llm_timeout_sec must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be a positive integer")
        if self.transfer_window_days < 0:
            raise ValueError("transfer_window_days must be >= 0")

    @property
    def transfer_policy(self) -> TransferPolicy:
        return TransferPolicy(
            window_days=self.transfer_window_days, keywords=self.transfer_keywords
        )

    @classmethod
    def from_env(cls) -> LedgerSettings:
        keywords_raw = os.getenv("LEDGER_TRANSFER_KEYWORDS")
        keywords = DEFAULT_TRANSFER_KEYWORDS
        if keywords_raw and keywords_raw.strip():
            keywords = tuple(k.strip().lower() for k in keywords_raw.split(",") if k.strip())
        directory = os.getenv("LEDGER_VENDOR_DIRECTORY")
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            llm_model=os.getenv("LEDGER_LLM_MODEL") or "gpt-5",
            llm_timeout_sec=_env_float("LEDGER_LLM_TIMEOUT_SEC", 30.0),
            max_workers=min(_env_int("LEDGER_MAX_WORKERS", 4), _MAX_WORKERS_CAP),
            transfer_window_days=_env_int("LEDGER_TRANSFER_WINDOW_DAYS", 3),
            transfer_keywords=keywords,
            vendor_directory_path=Path(directory) if directory else None,
        )


__all__ = ["LedgerSettings"]
