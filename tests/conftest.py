"""Pytest configuration shared by the suite.

The workspace keeps ``backoffice`` under ``packages/`` and the ``db`` library
under ``libs/db/src``; both are put on ``sys.path`` so the tests run from a
plain checkout as well as from an editable install. Database tests get a
fresh file-backed SQLite database per test.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
_DB_SRC = _ROOT / "libs" / "db" / "src"
# Ensure local packages precede anything installed under the same name.
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_DB_SRC), str(_ROOT)] if p not in sys.path]

from backoffice.config import default_ingest_config  # noqa: E402
from db.client import Database  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep developer settings and cached config out of the tests."""

    monkeypatch.delenv("BACKOFFICE_CONFIG", raising=False)
    monkeypatch.delenv("BACKOFFICE_LOG_LEVEL", raising=False)
    default_ingest_config.cache_clear()
    yield
    default_ingest_config.cache_clear()


@pytest.fixture
def database(tmp_path: Path) -> Iterator[Database]:
    db = bootstrap_sqlite_db(tmp_path / "backoffice.sqlite3")
    try:
        yield db
    finally:
        db.dispose()


@pytest.fixture
def session(database: Database) -> Iterator[Session]:
    s = database.session()
    try:
        yield s
    finally:
        s.rollback()
        s.close()
