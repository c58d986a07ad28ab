"""Pytest configuration for test isolation.

The workspace is not necessarily installed when tests run, so ``packages/``,
``libs/db/src`` and the repo root (for ``tests.helpers``) are put on
``sys.path`` ahead of anything else.

Several components read the environment at call time (``OPENAI_API_KEY``,
``DATABASE_URL`` and the ``LEDGER_*`` settings). A developer's shell or a
local ``.env`` must never leak into a test, so an autouse fixture clears them
and every test that needs one sets it explicitly.
"""

# ruff: noqa: E402, I001
from __future__ import annotations

import os
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
_PATHS = (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
sys.path[:0] = [p for p in _PATHS if p not in sys.path]

import pytest
from db.client import dispose_engines

_ISOLATED_VARS = ("OPENAI_API_KEY", "DATABASE_URL")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop credentials and ledger settings inherited from the outer shell."""

    for name in list(os.environ):
        if name in _ISOLATED_VARS or name.startswith("LEDGER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def sqlite_url(tmp_path: Path):
    """A fresh, initialized SQLite ledger database for one test."""

    from tests.helpers.db import bootstrap_sqlite_db

    url = bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
    yield url
    dispose_engines()
