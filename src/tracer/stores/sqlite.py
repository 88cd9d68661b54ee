from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import NotFoundError, StorageError, ValidationError
from ..graph import build_dependency_tree, find_cycles
from ..models import (
    DEFAULT_PREFIX,
    BlockedIssue,
    Dependency,
    DependencyType,
    Event,
    EventType,
    Issue,
    IssueFilter,
    IssuePatch,
    IssueType,
    Statistics,
    Status,
    TreeNode,
    WorkFilter,
)
from ..util import format_timestamp, parse_timestamp, utc_now
from .base import DEFAULT_TREE_DEPTH
from .schema import init_schema, split_issue_id

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_ISSUE_COLUMNS = """
    i.id,
    i.title,
    i.description,
    i.design,
    i.acceptance_criteria,
    i.notes,
    i.status,
    i.priority,
    i.issue_type,
    i.assignee,
    i.estimated_minutes,
    i.created_at,
    i.updated_at,
    i.closed_at,
    i.external_ref
"""

# Newest-first within a priority band; rowid breaks created_at ties.
_ISSUE_ORDER = "i.priority ASC, i.created_at DESC, i.rowid DESC"

_ACTIVE_BLOCKER = """
    SELECT 1
    FROM dependencies d
    JOIN issues blocker ON blocker.id = d.depends_on_id
    WHERE d.issue_id = i.id
      AND d.type = 'blocks'
      AND blocker.status != 'closed'
"""


def _issue_from_row(row: sqlite3.Row) -> Issue:
    return Issue(
        id=str(row["id"]),
        title=str(row["title"]),
        description=str(row["description"] or ""),
        design=str(row["design"] or ""),
        acceptance_criteria=str(row["acceptance_criteria"] or ""),
        notes=str(row["notes"] or ""),
        status=Status.parse(row["status"]),
        priority=int(row["priority"]),
        issue_type=IssueType.parse(row["issue_type"]),
        assignee=str(row["assignee"] or ""),
        estimated_minutes=(
            int(row["estimated_minutes"])
            if row["estimated_minutes"] is not None
            else None
        ),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        closed_at=(
            parse_timestamp(row["closed_at"]) if row["closed_at"] is not None else None
        ),
        external_ref=(
            str(row["external_ref"]) if row["external_ref"] is not None else None
        ),
    )


def _dependency_from_row(row: sqlite3.Row) -> Dependency:
    return Dependency(
        issue_id=str(row["issue_id"]),
        depends_on_id=str(row["depends_on_id"]),
        dep_type=DependencyType.parse(row["type"]),
        created_at=parse_timestamp(row["created_at"]),
        created_by=str(row["created_by"]),
    )


def _event_from_row(row: sqlite3.Row) -> Event:
    return Event(
        id=int(row["id"]),
        issue_id=str(row["issue_id"]),
        event_type=EventType.parse(row["event_type"]),
        actor=str(row["actor"]),
        old_value=row["old_value"],
        new_value=row["new_value"],
        comment=row["comment"],
        created_at=parse_timestamp(row["created_at"]),
    )


def _optional_ts(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


@dataclass
class SqliteStore:
    """SQLite-backed issue store.

    One connection is held per instance and every public operation runs in
    its own transaction. Pass ``":memory:"`` for a throwaway store.
    """

    path: Path | str
    _conn: sqlite3.Connection | None = field(default=None, init=False, repr=False)

    @classmethod
    def open(cls, path: Path | str) -> SqliteStore:
        store = cls(path)
        store._connect()
        return store

    @property
    def is_memory(self) -> bool:
        return str(self.path) == MEMORY

    def _connect(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        try:
            if not self.is_memory:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            init_schema(conn)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to open {self.path}: {exc}") from exc
        self._conn = conn
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> SqliteStore:
        self._connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers (caller owns the transaction)
    # ------------------------------------------------------------------

    def _get(self, conn: sqlite3.Connection, issue_id: str) -> Issue | None:
        row = conn.execute(
            f"SELECT {_ISSUE_COLUMNS} FROM issues i WHERE i.id = ?",
            (issue_id,),
        ).fetchone()
        return _issue_from_row(row) if row is not None else None

    def _require(self, conn: sqlite3.Connection, issue_id: str) -> Issue:
        issue = self._get(conn, issue_id)
        if issue is None:
            raise NotFoundError(issue_id)
        return issue

    def _next_id(self, conn: sqlite3.Connection, prefix: str) -> str:
        # Drain the RETURNING cursor so the write is finished before commit.
        rows = conn.execute(
            """
            INSERT INTO issue_counters(prefix, last_id) VALUES(?, 1)
            ON CONFLICT(prefix) DO UPDATE SET last_id = last_id + 1
            RETURNING last_id
            """,
            (prefix,),
        ).fetchall()
        return f"{prefix}-{rows[0]['last_id']}"

    def _advance_counter(self, conn: sqlite3.Connection, issue_id: str) -> None:
        """Keep the allocator ahead of an explicitly supplied ``<prefix>-<n>`` ID."""
        parts = split_issue_id(issue_id)
        if parts is None:
            return
        conn.execute(
            """
            INSERT INTO issue_counters(prefix, last_id) VALUES(?, ?)
            ON CONFLICT(prefix) DO UPDATE SET last_id = MAX(last_id, excluded.last_id)
            """,
            parts,
        )

    def _touch(self, conn: sqlite3.Connection, issue_id: str, now: datetime) -> None:
        conn.execute(
            "UPDATE issues SET updated_at = ? WHERE id = ?",
            (format_timestamp(now), issue_id),
        )

    def _mark_dirty(self, conn: sqlite3.Connection, issue_id: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO dirty_issues(issue_id, marked_at) VALUES(?, ?)",
            (issue_id, format_timestamp(utc_now())),
        )

    def _add_event(
        self,
        conn: sqlite3.Connection,
        issue_id: str,
        event_type: EventType,
        actor: str,
        *,
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str | None = None,
    ) -> Event:
        now = utc_now()
        cur = conn.execute(
            """
            INSERT INTO events(
                issue_id, event_type, actor, old_value, new_value, comment, created_at
            )
            VALUES(?, ?, ?, ?, ?, ?, ?)
            """,
            (
                issue_id,
                event_type.value,
                actor,
                old_value,
                new_value,
                comment,
                format_timestamp(now),
            ),
        )
        return Event(
            id=int(cur.lastrowid),
            issue_id=issue_id,
            event_type=event_type,
            actor=actor,
            old_value=old_value,
            new_value=new_value,
            comment=comment,
            created_at=now,
        )

    def _query_issues(self, query: str, params: Sequence[Any] = ()) -> list[Issue]:
        with self._transaction() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [_issue_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def generate_id(self, prefix: str) -> str:
        key = prefix.strip()
        if not key:
            raise ValidationError("id prefix cannot be empty")
        with self._transaction() as conn:
            return self._next_id(conn, key)

    def create_issue(self, issue: Issue, actor: str) -> Issue:
        issue.validate()
        closed_at = issue.closed_at
        if issue.status == Status.CLOSED:
            closed_at = closed_at or utc_now()
        else:
            closed_at = None

        explicit_id = issue.id.strip()
        with self._transaction() as conn:
            if explicit_id:
                issue_id = explicit_id
                self._advance_counter(conn, issue_id)
            else:
                prefix = self._config_value(conn, "prefix") or DEFAULT_PREFIX
                issue_id = self._next_id(conn, prefix)
            try:
                conn.execute(
                    """
                    INSERT INTO issues(
                        id, title, description, design, acceptance_criteria, notes,
                        status, priority, issue_type, assignee, estimated_minutes,
                        created_at, updated_at, closed_at, external_ref
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        issue_id,
                        issue.title,
                        issue.description,
                        issue.design,
                        issue.acceptance_criteria,
                        issue.notes,
                        issue.status.value,
                        issue.priority,
                        issue.issue_type.value,
                        issue.assignee or None,
                        issue.estimated_minutes,
                        format_timestamp(issue.created_at),
                        format_timestamp(issue.updated_at),
                        _optional_ts(closed_at),
                        issue.external_ref,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise StorageError(f"issue already exists: {issue_id}") from exc
            self._add_event(conn, issue_id, EventType.CREATED, actor)
            self._mark_dirty(conn, issue_id)

        logger.debug("created %s", issue_id)
        return replace(issue, id=issue_id, closed_at=closed_at, dependencies=[])

    def get_issue(self, issue_id: str) -> Issue | None:
        key = issue_id.strip()
        if not key:
            return None
        with self._transaction() as conn:
            return self._get(conn, key)

    def update_issue(self, issue_id: str, patch: IssuePatch, actor: str) -> Issue:
        key = issue_id.strip()
        with self._transaction() as conn:
            current = self._require(conn, key)
            updated = patch.apply(current)
            now = utc_now()

            status_changed = updated.status != current.status
            requested_closed_at = patch.provided().get("closed_at")
            if updated.status != Status.CLOSED:
                closed_at = None
            elif requested_closed_at is not None:
                closed_at = updated.closed_at
            elif status_changed:
                closed_at = now
            else:
                closed_at = current.closed_at or now
            updated = replace(updated, updated_at=now, closed_at=closed_at)

            conn.execute(
                """
                UPDATE issues SET
                    title = ?,
                    description = ?,
                    design = ?,
                    acceptance_criteria = ?,
                    notes = ?,
                    status = ?,
                    priority = ?,
                    issue_type = ?,
                    assignee = ?,
                    estimated_minutes = ?,
                    external_ref = ?,
                    updated_at = ?,
                    closed_at = ?
                WHERE id = ?
                """,
                (
                    updated.title,
                    updated.description,
                    updated.design,
                    updated.acceptance_criteria,
                    updated.notes,
                    updated.status.value,
                    updated.priority,
                    updated.issue_type.value,
                    updated.assignee or None,
                    updated.estimated_minutes,
                    updated.external_ref,
                    format_timestamp(now),
                    _optional_ts(closed_at),
                    key,
                ),
            )

            if status_changed:
                self._add_event(
                    conn,
                    key,
                    EventType.STATUS_CHANGED,
                    actor,
                    old_value=current.status.value,
                    new_value=updated.status.value,
                )
                if current.status == Status.CLOSED:
                    self._add_event(conn, key, EventType.REOPENED, actor)
            self._add_event(conn, key, EventType.UPDATED, actor)
            self._mark_dirty(conn, key)

        return updated

    def close_issue(self, issue_id: str, reason: str, actor: str) -> Issue:
        key = issue_id.strip()
        with self._transaction() as conn:
            current = self._require(conn, key)
            if current.status == Status.CLOSED:
                raise ValidationError(f"issue already closed: {key}")
            now = utc_now()
            conn.execute(
                """
                UPDATE issues
                SET status = 'closed', closed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (format_timestamp(now), format_timestamp(now), key),
            )
            self._add_event(
                conn,
                key,
                EventType.CLOSED,
                actor,
                old_value=current.status.value,
                comment=reason or None,
            )
            self._mark_dirty(conn, key)

        return replace(current, status=Status.CLOSED, closed_at=now, updated_at=now)

    def reopen_issue(self, issue_id: str, reason: str, actor: str) -> Issue:
        key = issue_id.strip()
        with self._transaction() as conn:
            current = self._require(conn, key)
            if current.status != Status.CLOSED:
                raise ValidationError(f"issue is not closed: {key}")
            now = utc_now()
            conn.execute(
                """
                UPDATE issues
                SET status = 'open', closed_at = NULL, updated_at = ?
                WHERE id = ?
                """,
                (format_timestamp(now), key),
            )
            self._add_event(
                conn,
                key,
                EventType.REOPENED,
                actor,
                old_value=Status.CLOSED.value,
                new_value=Status.OPEN.value,
                comment=reason or None,
            )
            self._mark_dirty(conn, key)

        return replace(current, status=Status.OPEN, closed_at=None, updated_at=now)

    def delete_issue(self, issue_id: str, actor: str) -> None:
        key = issue_id.strip()
        with self._transaction() as conn:
            self._require(conn, key)
            dependents = [
                str(row["issue_id"])
                for row in conn.execute(
                    "SELECT issue_id FROM dependencies WHERE depends_on_id = ? ORDER BY issue_id",
                    (key,),
                )
            ]
            conn.execute("DELETE FROM issues WHERE id = ?", (key,))
            # The marker outlives the row so the next export drops it.
            self._mark_dirty(conn, key)
            now = utc_now()
            for dependent in dependents:
                self._touch(conn, dependent, now)
                self._mark_dirty(conn, dependent)
        logger.debug("deleted %s (actor=%s)", key, actor)

    def search_issues(self, filter: IssueFilter, query: str = "") -> list[Issue]:
        where: list[str] = []
        params: list[Any] = []

        if filter.status is not None:
            where.append("i.status = ?")
            params.append(Status.parse(filter.status).value)
        if filter.priority is not None:
            where.append("i.priority = ?")
            params.append(int(filter.priority))
        if filter.issue_type is not None:
            where.append("i.issue_type = ?")
            params.append(IssueType.parse(filter.issue_type).value)
        if filter.assignee is not None:
            where.append("i.assignee = ?")
            params.append(filter.assignee)

        labels = sorted({label.strip() for label in filter.labels if label.strip()})
        if labels:
            placeholders = ", ".join("?" for _ in labels)
            where.append(
                f"""
                EXISTS (
                    SELECT 1 FROM labels l
                    WHERE l.issue_id = i.id AND l.label IN ({placeholders})
                )
                """
            )
            params.extend(labels)

        text = query.strip()
        if text:
            like = f"%{text}%"
            where.append("(i.id LIKE ? OR i.title LIKE ? OR i.description LIKE ?)")
            params.extend((like, like, like))

        sql = f"SELECT {_ISSUE_COLUMNS} FROM issues i"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += f" ORDER BY {_ISSUE_ORDER}"
        if filter.limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(filter.limit)))

        return self._query_issues(sql, params)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(
        self,
        issue_id: str,
        depends_on_id: str,
        dep_type: DependencyType,
        actor: str,
        *,
        created_at: datetime | None = None,
    ) -> Dependency:
        src = issue_id.strip()
        dst = depends_on_id.strip()
        if not src or not dst:
            raise ValidationError("both issue ids are required")
        if src == dst:
            raise ValidationError(f"issue cannot depend on itself: {src}")

        dep = Dependency(
            issue_id=src,
            depends_on_id=dst,
            dep_type=DependencyType.parse(dep_type),
            created_at=created_at or utc_now(),
            created_by=actor,
        )
        with self._transaction() as conn:
            self._require(conn, src)
            self._require(conn, dst)
            conn.execute(
                """
                INSERT INTO dependencies(issue_id, depends_on_id, type, created_at, created_by)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(issue_id, depends_on_id) DO UPDATE SET
                    type = excluded.type,
                    created_at = excluded.created_at,
                    created_by = excluded.created_by
                """,
                (
                    dep.issue_id,
                    dep.depends_on_id,
                    dep.dep_type.value,
                    format_timestamp(dep.created_at),
                    dep.created_by,
                ),
            )
            self._touch(conn, src, utc_now())
            self._add_event(
                conn,
                src,
                EventType.DEPENDENCY_ADDED,
                actor,
                old_value=dep.dep_type.value,
                new_value=dst,
            )
            self._mark_dirty(conn, src)
        return dep

    def remove_dependency(self, issue_id: str, depends_on_id: str, actor: str) -> bool:
        src = issue_id.strip()
        dst = depends_on_id.strip()
        with self._transaction() as conn:
            self._require(conn, src)
            cur = conn.execute(
                "DELETE FROM dependencies WHERE issue_id = ? AND depends_on_id = ?",
                (src, dst),
            )
            if cur.rowcount == 0:
                return False
            self._touch(conn, src, utc_now())
            self._add_event(
                conn, src, EventType.DEPENDENCY_REMOVED, actor, new_value=dst
            )
            self._mark_dirty(conn, src)
        return True

    def get_dependencies(self, issue_id: str) -> list[Issue]:
        return self._query_issues(
            f"""
            SELECT {_ISSUE_COLUMNS}
            FROM issues i
            JOIN dependencies d ON i.id = d.depends_on_id
            WHERE d.issue_id = ?
            ORDER BY i.id ASC
            """,
            (issue_id.strip(),),
        )

    def get_dependents(self, issue_id: str) -> list[Issue]:
        return self._query_issues(
            f"""
            SELECT {_ISSUE_COLUMNS}
            FROM issues i
            JOIN dependencies d ON i.id = d.issue_id
            WHERE d.depends_on_id = ?
            ORDER BY i.id ASC
            """,
            (issue_id.strip(),),
        )

    def get_dependency_records(self, issue_id: str) -> list[Dependency]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT issue_id, depends_on_id, type, created_at, created_by
                FROM dependencies
                WHERE issue_id = ?
                ORDER BY depends_on_id ASC
                """,
                (issue_id.strip(),),
            ).fetchall()
        return [_dependency_from_row(row) for row in rows]

    def get_all_dependency_records(self) -> list[Dependency]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT issue_id, depends_on_id, type, created_at, created_by
                FROM dependencies
                ORDER BY issue_id ASC, depends_on_id ASC
                """
            ).fetchall()
        return [_dependency_from_row(row) for row in rows]

    def get_dependency_tree(
        self, issue_id: str, max_depth: int = DEFAULT_TREE_DEPTH
    ) -> list[TreeNode]:
        root = issue_id.strip()
        if self.get_issue(root) is None:
            raise NotFoundError(root)
        return build_dependency_tree(self, root, max_depth=max_depth)

    def detect_cycles(self) -> list[list[Issue]]:
        return find_cycles(self)

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def add_label(self, issue_id: str, label: str, actor: str) -> None:
        key = issue_id.strip()
        value = label.strip()
        if not value:
            raise ValidationError("label cannot be empty")
        with self._transaction() as conn:
            self._require(conn, key)
            cur = conn.execute(
                "INSERT OR IGNORE INTO labels(issue_id, label) VALUES(?, ?)",
                (key, value),
            )
            if cur.rowcount == 0:
                return
            self._touch(conn, key, utc_now())
            self._add_event(conn, key, EventType.LABEL_ADDED, actor, new_value=value)
            self._mark_dirty(conn, key)

    def remove_label(self, issue_id: str, label: str, actor: str) -> None:
        key = issue_id.strip()
        value = label.strip()
        if not value:
            raise ValidationError("label cannot be empty")
        with self._transaction() as conn:
            self._require(conn, key)
            cur = conn.execute(
                "DELETE FROM labels WHERE issue_id = ? AND label = ?",
                (key, value),
            )
            if cur.rowcount == 0:
                return
            self._touch(conn, key, utc_now())
            self._add_event(conn, key, EventType.LABEL_REMOVED, actor, new_value=value)
            self._mark_dirty(conn, key)

    def get_labels(self, issue_id: str) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT label FROM labels WHERE issue_id = ? ORDER BY label ASC",
                (issue_id.strip(),),
            ).fetchall()
        return [str(row["label"]) for row in rows]

    def get_issues_by_label(self, label: str) -> list[Issue]:
        return self._query_issues(
            f"""
            SELECT {_ISSUE_COLUMNS}
            FROM issues i
            JOIN labels l ON i.id = l.issue_id
            WHERE l.label = ?
            ORDER BY {_ISSUE_ORDER}
            """,
            (label.strip(),),
        )

    # ------------------------------------------------------------------
    # Ready work & blocking
    # ------------------------------------------------------------------

    def get_ready_work(self, filter: WorkFilter) -> list[Issue]:
        where = ["i.status = 'open'", f"NOT EXISTS ({_ACTIVE_BLOCKER})"]
        params: list[Any] = []
        if filter.priority is not None:
            where.append("i.priority = ?")
            params.append(int(filter.priority))
        if filter.assignee is not None:
            where.append("i.assignee = ?")
            params.append(filter.assignee)

        sql = f"""
            SELECT {_ISSUE_COLUMNS}
            FROM issues i
            WHERE {' AND '.join(where)}
            ORDER BY {_ISSUE_ORDER}
        """
        if filter.limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(filter.limit)))
        return self._query_issues(sql, params)

    def get_blocked_issues(self) -> list[BlockedIssue]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_ISSUE_COLUMNS}
                FROM issues i
                WHERE EXISTS ({_ACTIVE_BLOCKER})
                ORDER BY {_ISSUE_ORDER}
                """
            ).fetchall()
            edges = conn.execute(
                """
                SELECT d.issue_id, d.depends_on_id
                FROM dependencies d
                JOIN issues blocker ON blocker.id = d.depends_on_id
                WHERE d.type = 'blocks' AND blocker.status != 'closed'
                ORDER BY d.issue_id ASC, d.depends_on_id ASC
                """
            ).fetchall()

        blockers: dict[str, list[str]] = {}
        for edge in edges:
            blockers.setdefault(str(edge["issue_id"]), []).append(
                str(edge["depends_on_id"])
            )
        return [
            BlockedIssue(issue=issue, blocked_by=blockers.get(issue.id, []))
            for issue in (_issue_from_row(row) for row in rows)
        ]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def add_event(
        self,
        issue_id: str,
        event_type: EventType,
        actor: str,
        *,
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str | None = None,
    ) -> Event:
        key = issue_id.strip()
        with self._transaction() as conn:
            self._require(conn, key)
            return self._add_event(
                conn,
                key,
                EventType.parse(event_type),
                actor,
                old_value=old_value,
                new_value=new_value,
                comment=comment,
            )

    def add_comment(self, issue_id: str, actor: str, comment: str) -> Event:
        key = issue_id.strip()
        body = comment.strip()
        if not body:
            raise ValidationError("comment cannot be empty")
        with self._transaction() as conn:
            self._require(conn, key)
            event = self._add_event(conn, key, EventType.COMMENTED, actor, comment=body)
            self._touch(conn, key, event.created_at)
            self._mark_dirty(conn, key)
        return event

    def get_events(self, issue_id: str, limit: int = 50) -> list[Event]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, issue_id, event_type, actor, old_value, new_value, comment, created_at
                FROM events
                WHERE issue_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (issue_id.strip(), max(0, int(limit))),
            ).fetchall()
        return [_event_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> Statistics:
        with self._transaction() as conn:
            counts = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(i.status = 'open'), 0) AS open,
                    COALESCE(SUM(i.status = 'in_progress'), 0) AS in_progress,
                    COALESCE(SUM(i.status = 'closed'), 0) AS closed,
                    COALESCE(SUM(EXISTS ({_ACTIVE_BLOCKER})), 0) AS blocked,
                    COALESCE(
                        SUM(i.status = 'open' AND NOT EXISTS ({_ACTIVE_BLOCKER})), 0
                    ) AS ready
                FROM issues i
                """
            ).fetchone()
            lead_rows = conn.execute(
                "SELECT created_at, closed_at FROM issues WHERE closed_at IS NOT NULL"
            ).fetchall()

        lead_hours = [
            (
                parse_timestamp(row["closed_at"]) - parse_timestamp(row["created_at"])
            ).total_seconds()
            / 3600.0
            for row in lead_rows
        ]
        average = sum(lead_hours) / len(lead_hours) if lead_hours else 0.0

        return Statistics(
            total_issues=int(counts["total"]),
            open_issues=int(counts["open"]),
            in_progress_issues=int(counts["in_progress"]),
            closed_issues=int(counts["closed"]),
            blocked_issues=int(counts["blocked"]),
            ready_issues=int(counts["ready"]),
            average_lead_time_hours=average,
        )

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def mark_dirty(self, issue_id: str) -> None:
        with self._transaction() as conn:
            self._mark_dirty(conn, issue_id.strip())

    def get_dirty_issues(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT issue_id FROM dirty_issues ORDER BY marked_at ASC, rowid ASC"
            ).fetchall()
        return [str(row["issue_id"]) for row in rows]

    def clear_dirty_issues(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM dirty_issues")

    def clear_dirty_issues_by_id(self, issue_ids: Sequence[str]) -> None:
        ids = list(issue_ids)
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        with self._transaction() as conn:
            conn.execute(
                f"DELETE FROM dirty_issues WHERE issue_id IN ({placeholders})",
                tuple(ids),
            )

    # ------------------------------------------------------------------
    # Config / metadata
    # ------------------------------------------------------------------

    def _config_value(self, conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return str(row["value"]) if row is not None else None

    def set_config(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def get_config(self, key: str) -> str | None:
        with self._transaction() as conn:
            return self._config_value(conn, key)

    def set_metadata(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO metadata(key, value, updated_at) VALUES(?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, format_timestamp(utc_now())),
            )

    def get_metadata(self, key: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT value FROM metadata WHERE key = ?", (key,)
            ).fetchone()
        return str(row["value"]) if row is not None else None
