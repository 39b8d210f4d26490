from __future__ import annotations

import pytest
from db.client import Database, database_url_from_env
from db.models.inventory import BoProduct, BoSupplier
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError


def test_url_resolution(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        database_url_from_env()
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///env.db")
    assert database_url_from_env() == "sqlite+pysqlite:///env.db"
    assert database_url_from_env("sqlite+pysqlite:///x.db") == "sqlite+pysqlite:///x.db"


def test_ping(database, tmp_path):
    assert database.ping() is True
    broken = Database(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'dir' / 'x.db'}")
    try:
        assert broken.ping() is False
    finally:
        broken.dispose()


def test_session_scope_commits_or_rolls_back(database):
    with database.session_scope() as s:
        s.add(BoSupplier(name="Viva Raw", aliases=[]))

    with pytest.raises(RuntimeError):
        with database.session_scope() as s:
            s.add(BoSupplier(name="Raw Bistro", aliases=[]))
            s.flush()
            raise RuntimeError("boom")

    with database.session_scope() as s:
        names = s.scalars(select(BoSupplier.name)).all()
    assert names == ["Viva Raw"]


def test_sqlite_enforces_foreign_keys_and_savepoints(database):
    with database.session() as s:
        assert s.execute(text("PRAGMA foreign_keys")).scalar() == 1
        s.add(BoProduct(name="Turkey"))
        s.flush()
        with pytest.raises(IntegrityError):
            with s.begin_nested():
                s.add(BoProduct(name="Orphan", proxy_of=999))
                s.flush()
        assert s.scalar(select(func.count()).select_from(BoProduct)) == 1
        s.rollback()
