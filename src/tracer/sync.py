"""JSONL snapshot codec and store <-> snapshot reconciliation."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, TextIO

from .errors import ReconciliationError, ValidationError
from .models import Issue, IssueFilter, IssuePatch, Status
from .stores.base import Storage
from .util import compute_hash, json_dumps_compact

logger = logging.getLogger(__name__)

LAST_IMPORT_HASH = "last_import_hash"


@dataclass
class ImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    dependencies_added: int = 0
    dependencies_skipped: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "dependencies_added": self.dependencies_added,
            "dependencies_skipped": self.dependencies_skipped,
            "dry_run": self.dry_run,
        }


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ReconciliationError(f"failed to read {path}: {exc}", path=path) from exc


def parse_snapshot(data: bytes | str, *, path: Path | None = None) -> list[Issue]:
    """Decode JSONL text into issues, failing on the first bad line."""
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ReconciliationError(
                f"snapshot is not valid UTF-8: {exc}", path=path
            ) from exc
    else:
        text = data

    issues: list[Issue] = []
    for line_num, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ReconciliationError(
                f"line {line_num}: invalid JSON: {exc.msg}",
                path=path,
                line_num=line_num,
            ) from exc
        if not isinstance(payload, dict):
            raise ReconciliationError(
                f"line {line_num}: expected a JSON object",
                path=path,
                line_num=line_num,
            )
        try:
            issues.append(Issue.from_dict(payload))
        except ValidationError as exc:
            raise ReconciliationError(
                f"line {line_num}: {exc}",
                path=path,
                line_num=line_num,
            ) from exc
    return issues


def read_snapshot(path: Path) -> list[Issue]:
    if not path.exists():
        return []
    return parse_snapshot(_read_bytes(path), path=path)


def encode_snapshot(issues: Iterable[Issue]) -> bytes:
    lines = [
        json_dumps_compact(issue.to_dict()) + "\n"
        for issue in sorted(issues, key=lambda issue: issue.id)
    ]
    return "".join(lines).encode("utf-8")


def write_snapshot(path: Path, issues: Iterable[Issue]) -> str:
    """Atomically replace *path* with the sorted snapshot; returns its hash."""
    data = encode_snapshot(issues)
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(data)
        os.replace(tmp, path)
    except OSError as exc:
        if tmp.exists():
            tmp.unlink()
        raise ReconciliationError(f"failed to write {path}: {exc}", path=path) from exc
    return compute_hash(data)


def _with_dependencies(store: Storage, issue: Issue) -> Issue:
    return replace(issue, dependencies=store.get_dependency_records(issue.id))


def import_issues(
    store: Storage,
    issues: list[Issue],
    actor: str,
    *,
    skip_existing: bool = False,
    dry_run: bool = False,
) -> ImportResult:
    """Upsert *issues* into *store*, then add their embedded edges.

    Every issue row is written before any edge so that edges may point
    forward in the file. Edges are only ever added: an edge present in the
    store but missing from the snapshot is kept.
    """
    result = ImportResult(dry_run=dry_run)
    snapshot_ids = {issue.id for issue in issues}
    skipped_ids: set[str] = set()

    for issue in issues:
        existing = store.get_issue(issue.id)
        if existing is None:
            result.created += 1
            if not dry_run:
                store.create_issue(replace(issue, dependencies=[]), actor)
        elif skip_existing:
            result.skipped += 1
            skipped_ids.add(issue.id)
        else:
            result.updated += 1
            if not dry_run:
                store.update_issue(issue.id, IssuePatch.from_issue(issue), actor)

    for issue in issues:
        if issue.id in skipped_ids or not issue.dependencies:
            continue
        present = {
            (dep.depends_on_id, dep.dep_type)
            for dep in store.get_dependency_records(issue.id)
        }
        for dep in issue.dependencies:
            if (dep.depends_on_id, dep.dep_type) in present:
                continue
            if dep.depends_on_id == issue.id:
                logger.warning(
                    "skipping dependency %s -> %s: issue cannot depend on itself",
                    issue.id,
                    dep.depends_on_id,
                )
                result.dependencies_skipped += 1
                continue
            target_known = (
                dep.depends_on_id in snapshot_ids
                or store.get_issue(dep.depends_on_id) is not None
            )
            if not target_known:
                logger.warning(
                    "skipping dependency %s -> %s: target issue does not exist",
                    issue.id,
                    dep.depends_on_id,
                )
                result.dependencies_skipped += 1
                continue
            result.dependencies_added += 1
            if not dry_run:
                store.add_dependency(
                    issue.id,
                    dep.depends_on_id,
                    dep.dep_type,
                    actor,
                    created_at=dep.created_at,
                )

    logger.debug(
        "import%s: %d created, %d updated, %d skipped, %d edges added",
        " (dry run)" if dry_run else "",
        result.created,
        result.updated,
        result.skipped,
        result.dependencies_added,
    )
    return result


def auto_import(store: Storage, path: Path, actor: str) -> bool:
    """Import *path* unless its content hash matches the last import."""
    if not path.exists():
        return False
    data = _read_bytes(path)
    digest = compute_hash(data)
    if store.get_metadata(LAST_IMPORT_HASH) == digest:
        logger.debug("snapshot %s unchanged, skipping import", path)
        return False

    issues = parse_snapshot(data, path=path)
    import_issues(store, issues, actor)
    store.set_metadata(LAST_IMPORT_HASH, digest)
    logger.debug("imported %d issue(s) from %s", len(issues), path)
    return True


def auto_export(store: Storage, path: Path) -> list[str]:
    """Merge dirty issues into the snapshot at *path* and rewrite it.

    Returns the exported IDs. Only those IDs are cleared from the dirty set,
    and only after the file has been replaced.
    """
    dirty = store.get_dirty_issues()
    if not dirty:
        return []

    by_id = {issue.id: issue for issue in read_snapshot(path)}
    for issue_id in dirty:
        issue = store.get_issue(issue_id)
        if issue is None:
            by_id.pop(issue_id, None)
            continue
        by_id[issue_id] = _with_dependencies(store, issue)

    digest = write_snapshot(path, by_id.values())
    store.clear_dirty_issues_by_id(dirty)
    # Our own export must not trigger a re-import on the next open.
    store.set_metadata(LAST_IMPORT_HASH, digest)
    logger.debug("exported %d dirty issue(s) to %s", len(dirty), path)
    return dirty


def export_issues(
    store: Storage,
    target: Path | TextIO,
    *,
    status: Status | str | None = None,
) -> int:
    """Write every issue (optionally one status) with its edges to *target*."""
    issue_filter = IssueFilter(status=Status.parse(status) if status else None)
    issues = [
        _with_dependencies(store, issue)
        for issue in store.search_issues(issue_filter)
    ]
    if isinstance(target, Path):
        write_snapshot(target, issues)
    else:
        target.write(encode_snapshot(issues).decode("utf-8"))
    return len(issues)
