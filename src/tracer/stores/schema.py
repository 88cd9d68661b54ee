from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS issues (
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
    closed_at TEXT,
    external_ref TEXT
);
CREATE TABLE IF NOT EXISTS dependencies (
    issue_id TEXT NOT NULL,
    depends_on_id TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'blocks',
    created_at TEXT NOT NULL,
    created_by TEXT NOT NULL,
    PRIMARY KEY(issue_id, depends_on_id),
    FOREIGN KEY(issue_id) REFERENCES issues(id) ON DELETE CASCADE,
    FOREIGN KEY(depends_on_id) REFERENCES issues(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS labels (
    issue_id TEXT NOT NULL,
    label TEXT NOT NULL,
    PRIMARY KEY(issue_id, label),
    FOREIGN KEY(issue_id) REFERENCES issues(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    actor TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    comment TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(issue_id) REFERENCES issues(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status);
CREATE INDEX IF NOT EXISTS idx_issues_priority ON issues(priority);
CREATE INDEX IF NOT EXISTS idx_issues_assignee ON issues(assignee);
CREATE INDEX IF NOT EXISTS idx_dependencies_issue ON dependencies(issue_id);
CREATE INDEX IF NOT EXISTS idx_dependencies_depends ON dependencies(depends_on_id);
CREATE INDEX IF NOT EXISTS idx_dependencies_type ON dependencies(type);
CREATE INDEX IF NOT EXISTS idx_labels_label ON labels(label);
CREATE INDEX IF NOT EXISTS idx_events_issue ON events(issue_id);
"""

_MIGRATIONS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "dirty_issues",
        (
            """
            CREATE TABLE dirty_issues (
                issue_id TEXT PRIMARY KEY,
                marked_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX idx_dirty_issues_marked_at ON dirty_issues(marked_at)",
        ),
    ),
    (
        "issue_counters",
        (
            """
            CREATE TABLE issue_counters (
                prefix TEXT PRIMARY KEY,
                last_id INTEGER NOT NULL DEFAULT 0
            )
            """,
        ),
    ),
    (
        "metadata",
        (
            """
            CREATE TABLE metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ),
    ),
)


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {
        str(row["name"])
        for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
    }


def split_issue_id(issue_id: str) -> tuple[str, int] | None:
    """Split ``<prefix>-<n>`` at the last dash; ``None`` if it has no counter."""
    prefix, sep, suffix = issue_id.rpartition("-")
    if not sep or not prefix or not suffix.isdigit():
        return None
    return prefix, int(suffix)


def _counter_seeds(issue_ids: Iterable[str]) -> dict[str, int]:
    seeds: dict[str, int] = {}
    for issue_id in issue_ids:
        parts = split_issue_id(issue_id)
        if parts is None:
            continue
        prefix, number = parts
        seeds[prefix] = max(seeds.get(prefix, 0), number)
    return seeds


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the base tables and run every additive migration.

    Safe to call on every open: each step checks before it alters.
    """
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    migrate_schema(conn)


def migrate_schema(conn: sqlite3.Connection) -> None:
    with conn:
        for table, statements in _MIGRATIONS:
            if _table_exists(conn, table):
                continue
            logger.debug("creating %s table", table)
            for statement in statements:
                conn.execute(statement)

        if "external_ref" not in _columns(conn, "issues"):
            logger.debug("adding issues.external_ref column")
            conn.execute("ALTER TABLE issues ADD COLUMN external_ref TEXT")

        (counter_rows,) = conn.execute("SELECT COUNT(*) FROM issue_counters").fetchone()
        if counter_rows == 0:
            # Existing IDs must never be handed out again.
            seeds = _counter_seeds(
                str(row[0]) for row in conn.execute("SELECT id FROM issues")
            )
            conn.executemany(
                "INSERT INTO issue_counters(prefix, last_id) VALUES(?, ?)",
                sorted(seeds.items()),
            )
