from __future__ import annotations

from collections.abc import Callable

import pytest

from tracer.errors import NotFoundError, ValidationError
from tracer.graph import find_cycle_paths
from tracer.models import DependencyType, EventType, Issue, Status, WorkFilter
from tracer.stores.sqlite import SqliteStore

ACTOR = "tester"
CreateFn = Callable[..., Issue]


def _ids(issues: list[Issue]) -> list[str]:
    return [issue.id for issue in issues]


def test_add_dependency_requires_both_endpoints(store: SqliteStore, create: CreateFn) -> None:
    issue = create("Real")

    with pytest.raises(NotFoundError) as raised:
        store.add_dependency(issue.id, "bd-99", DependencyType.BLOCKS, ACTOR)
    assert raised.value.issue_id == "bd-99"

    with pytest.raises(NotFoundError) as raised:
        store.add_dependency("bd-98", issue.id, DependencyType.BLOCKS, ACTOR)
    assert raised.value.issue_id == "bd-98"

    with pytest.raises(ValidationError, match="cannot depend on itself"):
        store.add_dependency(issue.id, issue.id, DependencyType.BLOCKS, ACTOR)


def test_add_dependency_replaces_type_and_records_event(
    store: SqliteStore, create: CreateFn
) -> None:
    a = create("A")
    b = create("B")
    store.clear_dirty_issues()

    store.add_dependency(a.id, b.id, DependencyType.RELATED, ACTOR)
    store.add_dependency(a.id, b.id, DependencyType.BLOCKS, ACTOR)

    records = store.get_dependency_records(a.id)
    assert len(records) == 1
    assert records[0].dep_type is DependencyType.BLOCKS
    assert records[0].created_by == ACTOR
    assert _ids(store.get_dependencies(a.id)) == [b.id]
    assert _ids(store.get_dependents(b.id)) == [a.id]

    latest = store.get_events(a.id, limit=1)[0]
    assert latest.event_type is EventType.DEPENDENCY_ADDED
    assert latest.new_value == b.id
    assert store.get_dirty_issues() == [a.id]
    refreshed = store.get_issue(a.id)
    assert refreshed is not None
    assert refreshed.updated_at >= a.updated_at


def test_remove_dependency_is_noop_when_absent(store: SqliteStore, create: CreateFn) -> None:
    a = create("A")
    b = create("B")
    store.add_dependency(a.id, b.id, DependencyType.BLOCKS, ACTOR)

    assert store.remove_dependency(a.id, b.id, ACTOR) is True
    assert store.remove_dependency(a.id, b.id, ACTOR) is False
    assert store.get_dependency_records(a.id) == []
    assert store.get_events(a.id, limit=1)[0].event_type is EventType.DEPENDENCY_REMOVED


def test_ready_work_excludes_issues_with_open_blockers(
    store: SqliteStore, create: CreateFn
) -> None:
    blocker = create("Blocker", priority=1)
    blocked = create("Blocked", priority=0)
    related = create("Related", priority=2)
    busy = create("Busy", status=Status.IN_PROGRESS)
    store.add_dependency(blocked.id, blocker.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(related.id, blocker.id, DependencyType.RELATED, ACTOR)

    assert _ids(store.get_ready_work(WorkFilter())) == [blocker.id, related.id]
    assert busy.id not in _ids(store.get_ready_work(WorkFilter()))

    store.close_issue(blocker.id, "", ACTOR)

    assert _ids(store.get_ready_work(WorkFilter())) == [blocked.id, related.id]
    assert _ids(store.get_ready_work(WorkFilter(priority=2))) == [related.id]
    assert _ids(store.get_ready_work(WorkFilter(limit=1))) == [blocked.id]


def test_ready_work_filters_assignee(store: SqliteStore, create: CreateFn) -> None:
    mine = create("Mine", assignee="ana")
    create("Theirs", assignee="bo")

    assert _ids(store.get_ready_work(WorkFilter(assignee="ana"))) == [mine.id]


def test_blocked_issues_list_their_blockers(store: SqliteStore, create: CreateFn) -> None:
    first = create("First blocker")
    second = create("Second blocker")
    waiting = create("Waiting")
    store.add_dependency(waiting.id, first.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(waiting.id, second.id, DependencyType.BLOCKS, ACTOR)

    rows = store.get_blocked_issues()
    assert len(rows) == 1
    assert rows[0].issue.id == waiting.id
    assert rows[0].blocked_by == [first.id, second.id]
    assert rows[0].blocked_by_count == 2

    store.close_issue(first.id, "", ACTOR)
    assert store.get_blocked_issues()[0].blocked_by == [second.id]

    store.close_issue(second.id, "", ACTOR)
    assert store.get_blocked_issues() == []


def test_dependency_tree_is_preorder_and_truncates(
    store: SqliteStore, create: CreateFn
) -> None:
    root = create("Root")
    a = create("A")
    b = create("B")
    c = create("C")
    store.add_dependency(root.id, a.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(a.id, b.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(root.id, c.id, DependencyType.PARENT_CHILD, ACTOR)

    full = store.get_dependency_tree(root.id)
    assert [(node.issue.id, node.depth, node.truncated) for node in full] == [
        (root.id, 0, False),
        (a.id, 1, False),
        (b.id, 2, False),
        (c.id, 1, False),
    ]

    shallow = store.get_dependency_tree(root.id, max_depth=1)
    assert [(node.issue.id, node.depth, node.truncated) for node in shallow] == [
        (root.id, 0, False),
        (a.id, 1, True),
        (c.id, 1, True),
    ]

    with pytest.raises(NotFoundError):
        store.get_dependency_tree("bd-404")


def test_dependency_tree_visits_each_issue_once(store: SqliteStore, create: CreateFn) -> None:
    a = create("A")
    b = create("B")
    store.add_dependency(a.id, b.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(b.id, a.id, DependencyType.BLOCKS, ACTOR)

    nodes = store.get_dependency_tree(a.id)

    assert [(node.issue.id, node.depth) for node in nodes] == [(a.id, 0), (b.id, 1)]


def test_dependency_tree_keeps_first_reached_depth(
    store: SqliteStore, create: CreateFn
) -> None:
    a = create("A", id="bd-1")
    b = create("B", id="bd-2")
    c = create("C", id="bd-3")
    store.add_dependency(a.id, b.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(a.id, c.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(b.id, c.id, DependencyType.BLOCKS, ACTOR)

    nodes = store.get_dependency_tree(a.id)

    assert [(node.issue.id, node.depth) for node in nodes] == [
        (a.id, 0),
        (b.id, 1),
        (c.id, 2),
    ]


def test_dependency_tree_handles_long_chains(store: SqliteStore, create: CreateFn) -> None:
    chain = [create(f"Step {i}") for i in range(1500)]
    for parent, child in zip(chain, chain[1:]):
        store.add_dependency(parent.id, child.id, DependencyType.BLOCKS, ACTOR)

    nodes = store.get_dependency_tree(chain[0].id, max_depth=5000)

    assert len(nodes) == 1500
    assert nodes[-1].issue.id == chain[-1].id
    assert nodes[-1].depth == 1499
    assert not any(node.truncated for node in nodes)


def test_detect_cycles_reports_back_edges(store: SqliteStore, create: CreateFn) -> None:
    a = create("A")
    b = create("B")
    c = create("C")
    d = create("D")
    store.add_dependency(a.id, b.id, DependencyType.BLOCKS, ACTOR)
    store.add_dependency(b.id, c.id, DependencyType.RELATED, ACTOR)
    store.add_dependency(c.id, d.id, DependencyType.BLOCKS, ACTOR)

    assert store.detect_cycles() == []

    store.add_dependency(c.id, a.id, DependencyType.BLOCKS, ACTOR)

    cycles = store.detect_cycles()
    assert [_ids(cycle) for cycle in cycles] == [[a.id, b.id, c.id]]


def test_find_cycle_paths_does_not_deduplicate_or_recurse() -> None:
    adjacency = {"a": ["b"], "b": ["a", "c"], "c": ["b"]}

    assert find_cycle_paths(adjacency) == [["a", "b"], ["b", "c"]]

    chain = {f"n{i:05d}": [f"n{i + 1:05d}"] for i in range(5000)}
    chain["n05000"] = ["n00000"]
    cycles = find_cycle_paths(chain)
    assert len(cycles) == 1
    assert len(cycles[0]) == 5001
