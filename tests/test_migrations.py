from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from db import metadata
from db.client import dispose_engines, session_scope
from db.models.ledger import LedgerCategory
from sqlalchemy import create_engine, func, inspect, select

from statement_ledger.categories import SYSTEM_CATEGORIES
from statement_ledger.persistence import init_db

_SCRIPTS = Path(__file__).resolve().parents[1] / "libs" / "db" / "alembic"


@pytest.fixture()
def alembic_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'migrated.sqlite3'}"
    monkeypatch.setenv("DATABASE_URL", url)
    yield url
    dispose_engines()


def _config() -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(_SCRIPTS))
    return cfg


def test_upgrade_matches_models_and_seeds_categories(alembic_url):
    command.upgrade(_config(), "head")

    engine = create_engine(alembic_url)
    try:
        tables = set(inspect(engine).get_table_names()) - {"alembic_version"}
        indexes = {i["name"] for i in inspect(engine).get_indexes("transactions")}
    finally:
        engine.dispose()
    assert tables == set(metadata.tables)
    assert "ix_tx_user_unlinked" in indexes

    # The migration already seeded everything init_db would add.
    assert init_db(alembic_url) == 0
    with session_scope(database_url=alembic_url) as session:
        count = session.execute(
            select(func.count()).select_from(LedgerCategory).where(LedgerCategory.is_system)
        ).scalar_one()
    assert count == len(SYSTEM_CATEGORIES)


def test_downgrade_drops_everything(alembic_url):
    cfg = _config()
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = create_engine(alembic_url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert tables <= {"alembic_version"}
