from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import (
    DEFAULT_DB_NAME,
    STATE_DIR_NAME,
    find_state_dir,
    load_config,
    resolve_actor,
    resolve_db_path,
    resolve_snapshot_path,
)
from .errors import NotFoundError, ReconciliationError, TracerError, ValidationError
from .models import (
    DEFAULT_PREFIX,
    BlockedIssue,
    DependencyType,
    Event,
    Issue,
    IssueFilter,
    IssuePatch,
    IssueType,
    Status,
    TreeNode,
    WorkFilter,
)
from .stores.base import DEFAULT_TREE_DEPTH
from .stores.sqlite import SqliteStore
from .sync import export_issues, import_issues, read_snapshot
from .tracker import Tracker
from .ui import (
    OutputMode,
    add_json_argument,
    add_output_mode_argument,
    emit_json,
    make_console,
    render_panel,
    render_table,
    render_tree,
    resolve_output_mode,
    style_priority,
    style_status,
)

logger = logging.getLogger(__name__)

_STATUS_CHOICES = tuple(status.value for status in Status)
_TYPE_CHOICES = tuple(kind.value for kind in IssueType)
_DEP_TYPE_CHOICES = tuple(kind.value for kind in DependencyType)
_ISSUE_HEADERS = ("ID", "STATUS", "PR", "TYPE", "ASSIGNEE", "TITLE")
_EVENT_HEADERS = ("WHEN", "ACTOR", "EVENT", "DETAIL")


def _configure_logging(debug: bool) -> None:
    package_logger = logging.getLogger("tracer")
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        rich_tracebacks=debug,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug else logging.WARNING)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def parse_dependency_spec(spec: str) -> tuple[DependencyType, str]:
    """``type:id`` or a bare ``id`` (a blocks edge)."""
    text = spec.strip()
    if ":" in text:
        kind, _, target = text.partition(":")
        return DependencyType.parse(kind), target.strip()
    return DependencyType.BLOCKS, text


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def _truncate(value: object, limit: int) -> str:
    text = str(value or "").strip()
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def _issue_columns(issue: Issue) -> tuple[str, str, str, str, str, str]:
    return (
        issue.id,
        issue.status.value,
        f"P{issue.priority}",
        issue.issue_type.value,
        issue.assignee or "-",
        _truncate(issue.title, 60),
    )


def _print_issue(issue: Issue) -> None:
    row = _issue_columns(issue)
    print(f"{row[0]}  {row[1]:<11}  {row[2]:<3}  {row[3]:<7}  {row[5]}")


def _print_issue_table(issues: list[Issue]) -> None:
    values = [_issue_columns(issue) for issue in issues]

    widths = [len(item) for item in _ISSUE_HEADERS]
    for row in values:
        for idx, col in enumerate(row):
            widths[idx] = max(widths[idx], len(col))

    print("  ".join(h.ljust(widths[idx]) for idx, h in enumerate(_ISSUE_HEADERS)))
    print("  ".join("-" * width for width in widths))
    for row in values:
        print("  ".join(col.ljust(widths[idx]) for idx, col in enumerate(row)))


def _print_issue_table_rich(issues: list[Issue], *, title: str) -> None:
    render_table(
        make_console("rich"),
        title=title,
        headers=_ISSUE_HEADERS,
        no_wrap_columns=(0, 1, 2, 3),
        rows=[
            (
                issue.id,
                style_status(issue.status.value),
                style_priority(issue.priority),
                issue.issue_type.value,
                issue.assignee or "-",
                _truncate(issue.title, 60),
            )
            for issue in issues
        ],
    )


def _print_issues(
    issues: list[Issue], *, output_mode: OutputMode, title: str, empty: str
) -> None:
    if not issues:
        if output_mode == "rich":
            render_panel(make_console("rich"), empty, title=title)
        else:
            print(empty)
    elif output_mode == "rich":
        _print_issue_table_rich(issues, title=title)
    else:
        _print_issue_table(issues)


def _event_detail(event: Event) -> str:
    if event.comment:
        return event.comment
    if event.old_value and event.new_value:
        return f"{event.old_value} -> {event.new_value}"
    return event.new_value or event.old_value or ""


def _show_payload(store: SqliteStore, issue: Issue) -> dict[str, Any]:
    payload = issue.to_dict()
    payload["labels"] = store.get_labels(issue.id)
    payload["dependencies"] = [
        dep.to_dict() for dep in store.get_dependency_records(issue.id)
    ]
    payload["dependents"] = [dependent.id for dependent in store.get_dependents(issue.id)]
    payload["events"] = [event.to_dict() for event in store.get_events(issue.id)]
    return payload


def _print_issue_details(store: SqliteStore, issue: Issue) -> None:
    _print_issue(issue)
    print(f"created: {_format_time(issue.created_at)}")
    print(f"updated: {_format_time(issue.updated_at)}")
    if issue.closed_at is not None:
        print(f"closed:  {_format_time(issue.closed_at)}")
    if issue.assignee:
        print(f"assignee: {issue.assignee}")
    if issue.estimated_minutes is not None:
        print(f"estimate: {issue.estimated_minutes}m")
    if issue.external_ref:
        print(f"external: {issue.external_ref}")
    labels = store.get_labels(issue.id)
    if labels:
        print(f"labels: {', '.join(labels)}")

    for heading, body in (
        ("description", issue.description),
        ("design", issue.design),
        ("acceptance criteria", issue.acceptance_criteria),
        ("notes", issue.notes),
    ):
        if body.strip():
            print()
            print(f"{heading}:")
            print(body.strip())

    deps = store.get_dependency_records(issue.id)
    print()
    print("dependencies:")
    if not deps:
        print("  (none)")
    for dep in deps:
        print(f"  {dep.dep_type.value} {dep.depends_on_id}")

    dependents = store.get_dependents(issue.id)
    if dependents:
        print()
        print("dependents:")
        for dependent in dependents:
            print(f"  {dependent.id}  {dependent.title}")

    events = store.get_events(issue.id)
    print()
    print("events:")
    if not events:
        print("  (none)")
    for event in events:
        detail = _event_detail(event)
        suffix = f": {detail}" if detail else ""
        print(
            f"  {_format_time(event.created_at)} {event.actor} "
            f"{event.event_type.value}{suffix}"
        )


def _print_issue_details_rich(store: SqliteStore, issue: Issue) -> None:
    labels = ", ".join(store.get_labels(issue.id)) or "-"
    summary = "\n".join(
        [
            f"title: {issue.title}",
            f"status: {style_status(issue.status.value)}",
            f"priority: {style_priority(issue.priority)}",
            f"type: {issue.issue_type.value}",
            f"assignee: {issue.assignee or '-'}",
            f"created: {_format_time(issue.created_at)}",
            f"updated: {_format_time(issue.updated_at)}",
            f"closed: {_format_time(issue.closed_at)}",
            f"labels: {labels}",
        ]
    )
    console = make_console("rich")
    render_panel(console, summary, title=f"Issue {issue.id}")
    render_panel(
        console, issue.description.strip() or "(no description)", title="Description"
    )
    for heading, body in (
        ("Design", issue.design),
        ("Acceptance Criteria", issue.acceptance_criteria),
        ("Notes", issue.notes),
    ):
        if body.strip():
            render_panel(console, body.strip(), title=heading)

    deps = store.get_dependency_records(issue.id)
    if deps:
        render_table(
            console,
            title="Dependencies",
            headers=("TYPE", "DEPENDS ON", "CREATED", "BY"),
            no_wrap_columns=(0, 1, 2),
            rows=[
                (
                    dep.dep_type.value,
                    dep.depends_on_id,
                    _format_time(dep.created_at),
                    dep.created_by,
                )
                for dep in deps
            ],
        )
    else:
        render_panel(console, "(none)", title="Dependencies")

    events = store.get_events(issue.id)
    if events:
        render_table(
            console,
            title="Events",
            headers=_EVENT_HEADERS,
            no_wrap_columns=(0, 1, 2),
            rows=[
                (
                    _format_time(event.created_at),
                    event.actor,
                    event.event_type.value,
                    _event_detail(event),
                )
                for event in events
            ],
        )


def _print_blocked(rows: list[BlockedIssue], *, output_mode: OutputMode) -> None:
    if not rows:
        if output_mode == "rich":
            render_panel(make_console("rich"), "(no blocked issues)", title="Blocked")
        else:
            print("(no blocked issues)")
        return
    if output_mode == "rich":
        render_table(
            make_console("rich"),
            title="Blocked",
            headers=("ID", "PR", "BLOCKERS", "BLOCKED BY", "TITLE"),
            no_wrap_columns=(0, 1, 2),
            rows=[
                (
                    row.issue.id,
                    style_priority(row.issue.priority),
                    row.blocked_by_count,
                    ", ".join(row.blocked_by),
                    _truncate(row.issue.title, 50),
                )
                for row in rows
            ],
        )
        return
    for row in rows:
        print(
            f"{row.issue.id}  P{row.issue.priority}  "
            f"blocked by {row.blocked_by_count}: {', '.join(row.blocked_by)}  "
            f"{row.issue.title}"
        )


def _print_tree(nodes: list[TreeNode], *, output_mode: OutputMode, root_id: str) -> None:
    def label(node: TreeNode) -> str:
        marker = " …" if node.truncated else ""
        return f"{node.issue.id} [{node.issue.status.value}] {node.issue.title}{marker}"

    if output_mode == "rich":
        render_tree(
            make_console("rich"),
            [(node.depth, label(node)) for node in nodes[1:]],
            title=label(nodes[0]) if nodes else root_id,
        )
        return
    for node in nodes:
        print(f"{'  ' * node.depth}{label(node)}")


def _require_issue(store: SqliteStore, issue_id: str) -> Issue:
    issue = store.get_issue(issue_id)
    if issue is None:
        raise NotFoundError(issue_id)
    return issue


def _build_patch(args: argparse.Namespace) -> IssuePatch:
    fields: dict[str, Any] = {}
    for name, attr in (
        ("title", "title"),
        ("description", "description"),
        ("design", "design"),
        ("acceptance_criteria", "acceptance"),
        ("notes", "notes"),
        ("status", "status"),
        ("priority", "priority"),
        ("issue_type", "type"),
    ):
        value = getattr(args, attr)
        if value is not None:
            fields[name] = value
    # An empty string clears the optional fields.
    if args.assignee is not None:
        fields["assignee"] = args.assignee or None
    if args.estimate is not None:
        fields["estimated_minutes"] = args.estimate or None
    if args.external_ref is not None:
        fields["external_ref"] = args.external_ref or None
    return IssuePatch(**fields)


def _add_issue_field_arguments(parser: argparse.ArgumentParser, *, create: bool) -> None:
    if not create:
        parser.add_argument("--title", help="New title")
    parser.add_argument("-d", "--description", help="Description")
    parser.add_argument("--design", help="Design notes")
    parser.add_argument("--acceptance", help="Acceptance criteria")
    parser.add_argument("--notes", help="Free-form notes")
    parser.add_argument(
        "-p",
        "--priority",
        type=int,
        default=None,
        help="Priority 0 (highest) to 4 (default: 2)",
    )
    parser.add_argument(
        "-t",
        "--type",
        choices=_TYPE_CHOICES,
        help=f"Issue type ({', '.join(_TYPE_CHOICES)})",
    )
    parser.add_argument("-a", "--assignee", help="Assignee (empty string clears)")
    parser.add_argument(
        "--estimate",
        help="Estimated minutes (empty string clears)",
    )
    parser.add_argument("--external-ref", help="External reference (empty string clears)")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tracer",
        description="Track issues and their dependencies.",
    )
    p.add_argument("--version", action="version", version=f"tracer {__version__}")
    p.add_argument("--db", help="Database path (default: TRACER_DB or .tracer/*.db)")
    p.add_argument("--actor", help="Actor recorded on events (default: TRACER_ACTOR or $USER)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    init = sub.add_parser("init", help="Create a .tracer workspace")
    init.add_argument(
        "--prefix",
        default=DEFAULT_PREFIX,
        help=f"Issue id prefix (default: {DEFAULT_PREFIX})",
    )
    add_json_argument(init)

    create = sub.add_parser("create", help="Create a new issue")
    create.add_argument("title", help="Issue title")
    _add_issue_field_arguments(create, create=True)
    create.add_argument("--id", help="Explicit issue id (default: next <prefix>-N)")
    create.add_argument(
        "-l", "--label", action="append", default=[], help="Label (repeatable)"
    )
    create.add_argument(
        "--dep",
        action="append",
        default=[],
        help="Dependency as type:id or id (repeatable)",
    )
    add_json_argument(create)

    ls = sub.add_parser("list", help="List issues")
    ls.add_argument("-s", "--status", choices=_STATUS_CHOICES, help="Filter by status")
    ls.add_argument("-p", "--priority", type=int, help="Filter by priority")
    ls.add_argument("-t", "--type", choices=_TYPE_CHOICES, help="Filter by type")
    ls.add_argument("-a", "--assignee", help="Filter by assignee")
    ls.add_argument(
        "-l", "--label", action="append", default=[], help="Filter by label (any of)"
    )
    ls.add_argument("--search", default="", help="Filter by text in id/title/description")
    ls.add_argument("--limit", type=int, default=50, help="Max rows (default: 50)")
    add_json_argument(ls)
    add_output_mode_argument(ls)

    show = sub.add_parser("show", help="Show one issue with details")
    show.add_argument("id", help="Issue id")
    add_json_argument(show)
    add_output_mode_argument(show)

    update = sub.add_parser("update", help="Update issue fields")
    update.add_argument("id", help="Issue id")
    update.add_argument("-s", "--status", choices=_STATUS_CHOICES, help="New status")
    _add_issue_field_arguments(update, create=False)
    add_json_argument(update)

    close = sub.add_parser("close", help="Close issue(s)")
    close.add_argument("id", nargs="+", help="Issue id(s)")
    close.add_argument("-r", "--reason", default="", help="Reason for closing")
    add_json_argument(close)

    reopen = sub.add_parser("reopen", help="Reopen closed issue(s)")
    reopen.add_argument("id", nargs="+", help="Issue id(s)")
    reopen.add_argument("-r", "--reason", default="", help="Reason for reopening")
    add_json_argument(reopen)

    delete = sub.add_parser("delete", help="Delete issue(s)")
    delete.add_argument("id", nargs="+", help="Issue id(s)")
    delete.add_argument("--yes", action="store_true", help="Confirm delete operation")
    add_json_argument(delete)

    comment = sub.add_parser("comment", help="Add a comment to an issue")
    comment.add_argument("id", help="Issue id")
    comment.add_argument("-m", "--message", required=True, help="Comment body")
    add_json_argument(comment)

    ready = sub.add_parser("ready", help="List issues with no open blockers")
    ready.add_argument("-p", "--priority", type=int, help="Filter by priority")
    ready.add_argument("-a", "--assignee", help="Filter by assignee")
    ready.add_argument("--limit", type=int, default=20, help="Max rows (default: 20)")
    add_json_argument(ready)
    add_output_mode_argument(ready)

    blocked = sub.add_parser("blocked", help="List issues waiting on open blockers")
    add_json_argument(blocked)
    add_output_mode_argument(blocked)

    dep = sub.add_parser("dep", help="Dependency operations")
    dep_sub = dep.add_subparsers(dest="dep_cmd", required=True, metavar="dep_cmd")
    dep_add = dep_sub.add_parser("add", help="Add a dependency")
    dep_add.add_argument("id", help="Dependent issue id")
    dep_add.add_argument(
        "depends_on",
        help=f"Target as type:id or id (types: {', '.join(_DEP_TYPE_CHOICES)})",
    )
    add_json_argument(dep_add)
    dep_rm = dep_sub.add_parser("remove", help="Remove a dependency")
    dep_rm.add_argument("id", help="Dependent issue id")
    dep_rm.add_argument("depends_on", help="Target issue id")
    add_json_argument(dep_rm)
    dep_tree = dep_sub.add_parser("tree", help="Show what an issue depends on")
    dep_tree.add_argument("id", help="Root issue id")
    dep_tree.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_TREE_DEPTH,
        help=f"Depth limit (default: {DEFAULT_TREE_DEPTH})",
    )
    add_json_argument(dep_tree)
    add_output_mode_argument(dep_tree)
    dep_cycles = dep_sub.add_parser("cycles", help="Detect dependency cycles")
    add_json_argument(dep_cycles)
    add_output_mode_argument(dep_cycles)

    label = sub.add_parser("label", help="Label operations")
    label_sub = label.add_subparsers(dest="label_cmd", required=True, metavar="label_cmd")
    label_add = label_sub.add_parser("add", help="Add a label")
    label_add.add_argument("id", help="Issue id")
    label_add.add_argument("label", help="Label value")
    add_json_argument(label_add)
    label_rm = label_sub.add_parser("remove", help="Remove a label")
    label_rm.add_argument("id", help="Issue id")
    label_rm.add_argument("label", help="Label value")
    add_json_argument(label_rm)
    label_ls = label_sub.add_parser("list", help="List labels on an issue")
    label_ls.add_argument("id", help="Issue id")
    add_json_argument(label_ls)

    stats = sub.add_parser("stats", help="Show tracker statistics")
    add_json_argument(stats)
    add_output_mode_argument(stats)

    export = sub.add_parser("export", help="Write all issues as JSONL")
    export.add_argument("-o", "--output-file", help="Destination (default: stdout)")
    export.add_argument("-s", "--status", choices=_STATUS_CHOICES, help="Only this status")

    imp = sub.add_parser("import", help="Import issues from JSONL")
    imp.add_argument("-i", "--input", help="Source file (default: workspace snapshot)")
    imp.add_argument(
        "--skip-existing", action="store_true", help="Leave existing issues untouched"
    )
    imp.add_argument(
        "--dry-run", action="store_true", help="Report what would change without writing"
    )
    add_json_argument(imp)

    config = sub.add_parser("config", help="Stored configuration")
    config_sub = config.add_subparsers(
        dest="config_cmd", required=True, metavar="config_cmd"
    )
    config_get = config_sub.add_parser("get", help="Read a config value")
    config_get.add_argument("key", help="Config key")
    add_json_argument(config_get)
    config_set = config_sub.add_parser("set", help="Write a config value")
    config_set.add_argument("key", help="Config key")
    config_set.add_argument("value", help="Config value")
    add_json_argument(config_set)

    return p


def _run_init(args: argparse.Namespace) -> None:
    prefix = str(args.prefix or "").strip()
    if not prefix:
        raise ValidationError("prefix cannot be empty")
    if args.db:
        db_path = Path(args.db).expanduser()
    else:
        db_path = Path.cwd() / STATE_DIR_NAME / DEFAULT_DB_NAME
    with SqliteStore.open(db_path) as store:
        store.set_config("prefix", prefix)
    if args.json:
        emit_json({"db": str(db_path), "prefix": prefix})
    else:
        print(f"initialized {db_path} (prefix: {prefix})")


def _dispatch(args: argparse.Namespace, tracker: Tracker, output_mode: OutputMode) -> None:
    store = tracker.store
    actor = tracker.actor

    if args.command == "create":
        estimate = int(args.estimate) if args.estimate else None
        issue = store.create_issue(
            Issue(
                id=(args.id or "").strip(),
                title=args.title,
                description=args.description or "",
                design=args.design or "",
                acceptance_criteria=args.acceptance or "",
                notes=args.notes or "",
                priority=2 if args.priority is None else args.priority,
                issue_type=IssueType.parse(args.type or IssueType.TASK),
                assignee=args.assignee or "",
                estimated_minutes=estimate,
                external_ref=args.external_ref or None,
            ),
            actor,
        )
        for value in args.label:
            store.add_label(issue.id, value, actor)
        for spec in args.dep:
            dep_type, target = parse_dependency_spec(spec)
            store.add_dependency(issue.id, target, dep_type, actor)
        if args.json:
            emit_json(_show_payload(store, issue))
        else:
            print(issue.id)
        return

    if args.command == "list":
        issues = store.search_issues(
            IssueFilter(
                status=Status.parse(args.status) if args.status else None,
                priority=args.priority,
                issue_type=IssueType.parse(args.type) if args.type else None,
                assignee=args.assignee,
                labels=tuple(args.label),
                limit=max(1, int(args.limit)),
            ),
            args.search,
        )
        if args.json:
            emit_json([issue.to_dict() for issue in issues])
        else:
            _print_issues(
                issues, output_mode=output_mode, title="Issues", empty="(no issues)"
            )
        return

    if args.command == "show":
        issue = _require_issue(store, args.id)
        if args.json:
            emit_json(_show_payload(store, issue))
        elif output_mode == "rich":
            _print_issue_details_rich(store, issue)
        else:
            _print_issue_details(store, issue)
        return

    if args.command == "update":
        patch = _build_patch(args)
        if patch.is_empty():
            raise ValidationError("nothing to update")
        issue = store.update_issue(args.id, patch, actor)
        if args.json:
            emit_json(issue.to_dict())
        else:
            _print_issue(issue)
        return

    if args.command == "close":
        issues = [store.close_issue(issue_id, args.reason, actor) for issue_id in args.id]
        if args.json:
            emit_json([issue.to_dict() for issue in issues])
        else:
            for issue in issues:
                _print_issue(issue)
        return

    if args.command == "reopen":
        issues = [store.reopen_issue(issue_id, args.reason, actor) for issue_id in args.id]
        if args.json:
            emit_json([issue.to_dict() for issue in issues])
        else:
            for issue in issues:
                _print_issue(issue)
        return

    if args.command == "delete":
        if not args.yes:
            raise ValidationError("refusing to delete without --yes")
        for issue_id in args.id:
            store.delete_issue(issue_id, actor)
        if args.json:
            emit_json({"deleted": list(args.id)})
        else:
            for issue_id in args.id:
                print(f"deleted: {issue_id}")
        return

    if args.command == "comment":
        event = store.add_comment(args.id, actor, args.message)
        if args.json:
            emit_json(event.to_dict())
        else:
            print(event.id)
        return

    if args.command == "ready":
        issues = store.get_ready_work(
            WorkFilter(
                priority=args.priority,
                assignee=args.assignee,
                limit=max(1, int(args.limit)),
            )
        )
        if args.json:
            emit_json([issue.to_dict() for issue in issues])
        else:
            _print_issues(
                issues,
                output_mode=output_mode,
                title="Ready Issues",
                empty="(no ready issues)",
            )
        return

    if args.command == "blocked":
        rows = store.get_blocked_issues()
        if args.json:
            emit_json([row.to_dict() for row in rows])
        else:
            _print_blocked(rows, output_mode=output_mode)
        return

    if args.command == "dep":
        if args.dep_cmd == "add":
            dep_type, target = parse_dependency_spec(args.depends_on)
            dep = store.add_dependency(args.id, target, dep_type, actor)
            if args.json:
                emit_json(dep.to_dict())
            else:
                print(f"{dep.issue_id} {dep.dep_type.value} {dep.depends_on_id}")
            return
        if args.dep_cmd == "remove":
            removed = store.remove_dependency(args.id, args.depends_on, actor)
            if args.json:
                emit_json({"removed": removed})
            elif removed:
                print(f"removed: {args.id} -> {args.depends_on}")
            else:
                print(f"no dependency: {args.id} -> {args.depends_on}")
            return
        if args.dep_cmd == "tree":
            nodes = store.get_dependency_tree(args.id, max_depth=args.max_depth)
            if args.json:
                emit_json([node.to_dict() for node in nodes])
            else:
                _print_tree(nodes, output_mode=output_mode, root_id=args.id)
            return
        if args.dep_cmd == "cycles":
            cycles = store.detect_cycles()
            if args.json:
                emit_json([[issue.to_dict() for issue in cycle] for cycle in cycles])
            elif not cycles:
                print("(no cycles)")
            else:
                for cycle in cycles:
                    ids = [issue.id for issue in cycle]
                    print(" -> ".join(ids + ids[:1]))
            return

    if args.command == "label":
        if args.label_cmd == "list":
            labels = store.get_labels(_require_issue(store, args.id).id)
            if args.json:
                emit_json(labels)
            else:
                for value in labels:
                    print(value)
            return
        if args.label_cmd == "add":
            store.add_label(args.id, args.label, actor)
        else:
            store.remove_label(args.id, args.label, actor)
        labels = store.get_labels(args.id)
        if args.json:
            emit_json({"id": args.id, "labels": labels})
        else:
            print(f"{args.id}: {', '.join(labels) or '(no labels)'}")
        return

    if args.command == "stats":
        stats = store.get_statistics()
        if args.json:
            emit_json(stats.to_dict())
            return
        rows = [
            ("total", stats.total_issues),
            ("open", stats.open_issues),
            ("in progress", stats.in_progress_issues),
            ("closed", stats.closed_issues),
            ("blocked", stats.blocked_issues),
            ("ready", stats.ready_issues),
            ("avg lead time (h)", f"{stats.average_lead_time_hours:.1f}"),
        ]
        if output_mode == "rich":
            render_table(
                make_console("rich"),
                title="Statistics",
                headers=("METRIC", "VALUE"),
                rows=rows,
            )
        else:
            for name, value in rows:
                print(f"{name}: {value}")
        return

    if args.command == "export":
        if args.output_file:
            count = export_issues(store, Path(args.output_file), status=args.status)
            print(f"exported {count} issue(s) to {args.output_file}", file=sys.stderr)
        else:
            export_issues(store, sys.stdout, status=args.status)
        return

    if args.command == "import":
        path = Path(args.input) if args.input else tracker.snapshot_path
        if not path.exists():
            raise ReconciliationError(f"file not found: {path}", path=path)
        result = import_issues(
            store,
            read_snapshot(path),
            actor,
            skip_existing=args.skip_existing,
            dry_run=args.dry_run,
        )
        if args.json:
            emit_json(result.to_dict())
        else:
            prefix = "would import" if result.dry_run else "imported"
            print(
                f"{prefix}: {result.created} created, {result.updated} updated, "
                f"{result.skipped} skipped, {result.dependencies_added} dependencies"
            )
        return

    if args.command == "config":
        if args.config_cmd == "get":
            value = store.get_config(args.key)
            if args.json:
                emit_json({"key": args.key, "value": value})
            elif value is None:
                raise NotFoundError(args.key, f"config key not set: {args.key}")
            else:
                print(value)
            return
        store.set_config(args.key, args.value)
        if args.json:
            emit_json({"key": args.key, "value": args.value})
        else:
            print(f"{args.key} = {args.value}")
        return


def main(argv: list[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = _build_parser().parse_args(raw_argv)
    _configure_logging(args.debug or _env_flag("TRACER_DEBUG"))

    try:
        if args.command == "init":
            _run_init(args)
            return

        file_config = load_config(find_state_dir())
        if file_config.error:
            print(f"error: {file_config.error}", file=sys.stderr)
            raise SystemExit(1)

        output_mode = resolve_output_mode(
            getattr(args, "output", None), default=file_config.output
        )
        db_path = resolve_db_path(args.db)
        tracker = Tracker.open(
            db_path,
            resolve_snapshot_path(db_path),
            resolve_actor(args.actor, file_config=file_config),
        )
        with tracker:
            tracker.sync_on_start()
            _dispatch(args, tracker, output_mode)
            # Failed commands leave the dirty set for the next successful run.
            tracker.sync_on_exit()
    except (TracerError, ValueError) as exc:
        logger.debug("command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
