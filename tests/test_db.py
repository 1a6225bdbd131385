from __future__ import annotations

import sqlite3

import pytest

from phantomauth.core.auth.session_control import SessionRegistry
from phantomauth.db.connection import Database, StoreError, row_to_dict


SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY,
    name TEXT UNIQUE NOT NULL
);
"""


@pytest.fixture
def items(tmp_path):
    db = Database(tmp_path / "nested" / "items.db")
    db.initialize(SCHEMA)
    return db


def test_commit_on_success(items):
    with items.connect() as conn:
        conn.execute("INSERT INTO items (name) VALUES ('a')")
    with items.connect() as conn:
        assert row_to_dict(conn.execute("SELECT * FROM items").fetchone()) == {"id": 1, "name": "a"}


def test_rollback_on_exception(items):
    with pytest.raises(RuntimeError):
        with items.connect() as conn:
            conn.execute("INSERT INTO items (name) VALUES ('a')")
            raise RuntimeError("abort")
    with items.connect() as conn:
        assert conn.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 0


def test_integrity_errors_pass_through(items):
    with items.connect() as conn:
        conn.execute("INSERT INTO items (name) VALUES ('a')")
    with pytest.raises(sqlite3.IntegrityError):
        with items.connect() as conn:
            conn.execute("INSERT INTO items (name) VALUES ('a')")


def test_other_errors_become_store_errors(items):
    with pytest.raises(StoreError):
        with items.connect() as conn:
            conn.execute("SELECT * FROM missing_table")


def test_foreign_keys_are_enforced(items):
    with items.connect() as conn:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


def test_bad_schema(items):
    with pytest.raises(StoreError):
        items.initialize("CREATE TABLE broken (")


def test_tenant_tables_exist_whichever_component_is_built_first(tmp_path, clock):
    db = Database(tmp_path / "fresh.db")
    SessionRegistry(db, clock=clock)
    with db.connect() as conn:
        names = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"operators", "applications", "sessions"} <= names
