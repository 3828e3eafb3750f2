"""Tests for database initialization and the key/value store."""
from surge_tutor.db import (
    get_connection, get_item, get_json, init_db, list_keys, remove_item, set_item, set_json,
)


def test_init_db_creates_tables(tmp_db):
    init_db(tmp_db)
    conn = get_connection(tmp_db)
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = {row[0] for row in cursor.fetchall()}
    assert "local_storage" in tables
    conn.close()


def test_init_db_is_idempotent(tmp_db):
    init_db(tmp_db)
    init_db(tmp_db)  # should not raise
    conn = get_connection(tmp_db)
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    assert len(cursor.fetchall()) > 0
    conn.close()


def test_get_connection_returns_row_factory(db):
    set_item(db, "k", "v")
    conn = get_connection(db)
    row = conn.execute("SELECT key, value FROM local_storage WHERE key='k'").fetchone()
    assert row["key"] == "k"
    assert row["value"] == "v"
    conn.close()


def test_set_item_overwrites(db):
    set_item(db, "k", "one")
    set_item(db, "k", "two")
    assert get_item(db, "k") == "two"


def test_remove_item(db):
    set_item(db, "k", "v")
    remove_item(db, "k")
    assert get_item(db, "k") is None


def test_list_keys_matches_prefix_literally(db):
    set_item(db, "atomicSubjectData:calc", "{}")
    set_item(db, "atomicSubjectData:physics", "{}")
    set_item(db, "atomicSubjectDataXcalc", "{}")
    set_item(db, "starredFlashcards:calc", "[]")
    assert list_keys(db, "atomicSubjectData:") == ["atomicSubjectData:calc", "atomicSubjectData:physics"]
    # underscore is not a wildcard
    set_item(db, "a_b", "1")
    set_item(db, "axb", "1")
    assert list_keys(db, "a_") == ["a_b"]


def test_get_json_defaults(db):
    assert get_json(db, "missing", default=[]) == []
    set_item(db, "broken", "{not json")
    assert get_json(db, "broken", default={"x": 1}) == {"x": 1}


def test_set_json_keeps_unicode(db):
    set_json(db, "k", {"topic": "Ableitungen ∂"})
    assert "∂" in get_item(db, "k")
    assert get_json(db, "k") == {"topic": "Ableitungen ∂"}
