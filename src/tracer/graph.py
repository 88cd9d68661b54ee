"""Dependency graph traversals that work against any storage backend."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import ValidationError
from .models import Issue, TreeNode

if TYPE_CHECKING:
    from .stores.base import Storage

logger = logging.getLogger(__name__)


def build_dependency_tree(
    store: Storage, root_id: str, *, max_depth: int = 50
) -> list[TreeNode]:
    """Depth-first pre-order walk of what *root_id* depends on.

    Each issue appears at most once, at the depth it was first reached.
    Nodes at ``max_depth`` are emitted with ``truncated=True`` and not
    expanded. Edges pointing at missing issues are skipped.
    """
    if max_depth < 0:
        raise ValidationError(f"max_depth must be non-negative (got {max_depth})")

    nodes: list[TreeNode] = []
    visited: set[str] = set()
    # Children are pushed in reverse so they pop in record order.
    stack: list[tuple[str, int]] = [(root_id, 0)]

    while stack:
        issue_id, depth = stack.pop()
        if issue_id in visited:
            continue
        visited.add(issue_id)
        issue = store.get_issue(issue_id)
        if issue is None:
            logger.debug("tree: skipping missing issue %s", issue_id)
            continue
        truncated = depth >= max_depth
        nodes.append(TreeNode(issue=issue, depth=depth, truncated=truncated))
        if truncated:
            continue
        records = store.get_dependency_records(issue_id)
        stack.extend((dep.depends_on_id, depth + 1) for dep in reversed(records))

    return nodes


def find_cycle_paths(adjacency: dict[str, list[str]]) -> list[list[str]]:
    """Return the ID path of every back edge found by a depth-first search.

    Start nodes and neighbours are visited in sorted order so the result is
    stable. The same cycle may be reported from different entry points; no
    deduplication is attempted.
    """
    visited: set[str] = set()
    on_path: set[str] = set()
    cycles: list[list[str]] = []

    for start in sorted(adjacency):
        if start in visited:
            continue
        path = [start]
        visited.add(start)
        on_path.add(start)
        stack = [iter(sorted(adjacency.get(start, ())))]

        # Iterative so long chains do not hit the recursion limit.
        while stack:
            descended = False
            for neighbour in stack[-1]:
                if neighbour in on_path:
                    cycles.append(path[path.index(neighbour) :])
                elif neighbour not in visited:
                    visited.add(neighbour)
                    on_path.add(neighbour)
                    path.append(neighbour)
                    stack.append(iter(sorted(adjacency.get(neighbour, ()))))
                    descended = True
                    break
            if not descended:
                stack.pop()
                on_path.discard(path.pop())

    return cycles


def find_cycles(store: Storage) -> list[list[Issue]]:
    adjacency: dict[str, list[str]] = {}
    for dep in store.get_all_dependency_records():
        adjacency.setdefault(dep.issue_id, []).append(dep.depends_on_id)

    cycles: list[list[Issue]] = []
    for path in find_cycle_paths(adjacency):
        issues = [issue for issue in map(store.get_issue, path) if issue is not None]
        if issues:
            cycles.append(issues)
    if cycles:
        logger.debug("found %d dependency cycle(s)", len(cycles))
    return cycles
