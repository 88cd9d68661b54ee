from __future__ import annotations

import sqlite3
from pathlib import Path

from tracer.stores.sqlite import SqliteStore

_LEGACY_ISSUES = """
CREATE TABLE issues (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    design TEXT NOT NULL DEFAULT '',
    acceptance_criteria TEXT NOT NULL DEFAULT '',
    notes TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'open',
    priority INTEGER NOT NULL DEFAULT 2,
    issue_type TEXT NOT NULL DEFAULT 'task',
    assignee TEXT,
    estimated_minutes INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    closed_at TEXT
);
"""


def _tables(path: Path) -> set[str]:
    with sqlite3.connect(path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        return {row[0] for row in rows}


def test_fresh_store_has_all_tables(tmp_path: Path) -> None:
    db = tmp_path / "nested" / "tracer.db"
    SqliteStore.open(db).close()

    assert {
        "issues",
        "dependencies",
        "labels",
        "events",
        "config",
        "dirty_issues",
        "issue_counters",
        "metadata",
    } <= _tables(db)


def test_reopening_is_idempotent(tmp_path: Path) -> None:
    db = tmp_path / "tracer.db"
    with SqliteStore.open(db) as store:
        assert store.generate_id("bd") == "bd-1"
        store.set_metadata("last_import_hash", "abc")

    with SqliteStore.open(db) as store:
        assert store.generate_id("bd") == "bd-2"
        assert store.get_metadata("last_import_hash") == "abc"


def test_legacy_database_is_upgraded_and_counters_seeded(tmp_path: Path) -> None:
    db = tmp_path / "legacy.db"
    with sqlite3.connect(db) as conn:
        conn.executescript(_LEGACY_ISSUES)
        for issue_id in ("bd-3", "bd-7", "ops-2", "my-proj-3", "my-proj-x"):
            conn.execute(
                "INSERT INTO issues(id, title, created_at, updated_at) VALUES(?, ?, ?, ?)",
                (issue_id, issue_id, "2024-01-01T00:00:00Z", "2024-01-01T00:00:00Z"),
            )
    conn.close()

    with SqliteStore.open(db) as store:
        assert store.generate_id("bd") == "bd-8"
        assert store.generate_id("ops") == "ops-3"
        assert store.generate_id("my-proj") == "my-proj-4"
        assert store.generate_id("my") == "my-1"
        legacy = store.get_issue("bd-3")
        assert legacy is not None
        assert legacy.external_ref is None

    with sqlite3.connect(db) as conn:
        columns = {row[1] for row in conn.execute("PRAGMA table_info(issues)")}
    conn.close()
    assert "external_ref" in columns
    assert {"dirty_issues", "issue_counters", "metadata"} <= _tables(db)
