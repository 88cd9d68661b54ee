"""
Storage protocol.

Every backend exposes the same operation contract so callers (the sync
layer, the CLI, tests) can swap one implementation for another.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from ..models import (
    BlockedIssue,
    Dependency,
    DependencyType,
    Event,
    EventType,
    Issue,
    IssueFilter,
    IssuePatch,
    Statistics,
    TreeNode,
    WorkFilter,
)

DEFAULT_TREE_DEPTH = 50


@runtime_checkable
class Storage(Protocol):
    """
    Contract for issue storage backends.

    Mutating operations take an explicit ``actor`` which is recorded on the
    audit events they append; every mutation also marks the affected issue
    dirty so the next snapshot export picks it up.
    """

    # Issues

    def create_issue(self, issue: Issue, actor: str) -> Issue:
        """
        Validate and persist a new issue.

        An empty ``issue.id`` is replaced by a freshly allocated ID.

        Raises:
            ValidationError: if the issue fails validation
            StorageError: if the ID already exists
        """
        ...

    def get_issue(self, issue_id: str) -> Issue | None: ...

    def update_issue(self, issue_id: str, patch: IssuePatch, actor: str) -> Issue:
        """
        Apply a sparse patch.

        Raises:
            NotFoundError: if the issue does not exist
            ValidationError: if the patched issue is invalid
        """
        ...

    def close_issue(self, issue_id: str, reason: str, actor: str) -> Issue: ...

    def reopen_issue(self, issue_id: str, reason: str, actor: str) -> Issue: ...

    def delete_issue(self, issue_id: str, actor: str) -> None: ...

    def search_issues(self, filter: IssueFilter, query: str = "") -> list[Issue]: ...

    # Dependencies

    def add_dependency(
        self,
        issue_id: str,
        depends_on_id: str,
        dep_type: DependencyType,
        actor: str,
        *,
        created_at: datetime | None = None,
    ) -> Dependency:
        """
        Insert or replace the edge ``issue_id -> depends_on_id``.

        Raises:
            NotFoundError: naming whichever endpoint is missing
        """
        ...

    def remove_dependency(self, issue_id: str, depends_on_id: str, actor: str) -> bool: ...

    def get_dependencies(self, issue_id: str) -> list[Issue]: ...

    def get_dependents(self, issue_id: str) -> list[Issue]: ...

    def get_dependency_records(self, issue_id: str) -> list[Dependency]: ...

    def get_all_dependency_records(self) -> list[Dependency]: ...

    def get_dependency_tree(
        self, issue_id: str, max_depth: int = DEFAULT_TREE_DEPTH
    ) -> list[TreeNode]: ...

    def detect_cycles(self) -> list[list[Issue]]: ...

    # Labels

    def add_label(self, issue_id: str, label: str, actor: str) -> None: ...

    def remove_label(self, issue_id: str, label: str, actor: str) -> None: ...

    def get_labels(self, issue_id: str) -> list[str]: ...

    def get_issues_by_label(self, label: str) -> list[Issue]: ...

    # Ready work

    def get_ready_work(self, filter: WorkFilter) -> list[Issue]: ...

    def get_blocked_issues(self) -> list[BlockedIssue]: ...

    # Audit log

    def add_event(
        self,
        issue_id: str,
        event_type: EventType,
        actor: str,
        *,
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str | None = None,
    ) -> Event: ...

    def add_comment(self, issue_id: str, actor: str, comment: str) -> Event: ...

    def get_events(self, issue_id: str, limit: int = 50) -> list[Event]: ...

    # Statistics

    def get_statistics(self) -> Statistics: ...

    # Dirty tracking

    def mark_dirty(self, issue_id: str) -> None: ...

    def get_dirty_issues(self) -> list[str]: ...

    def clear_dirty_issues(self) -> None: ...

    def clear_dirty_issues_by_id(self, issue_ids: Sequence[str]) -> None: ...

    # Config / metadata

    def set_config(self, key: str, value: str) -> None: ...

    def get_config(self, key: str) -> str | None: ...

    def set_metadata(self, key: str, value: str) -> None: ...

    def get_metadata(self, key: str) -> str | None: ...

    # IDs

    def generate_id(self, prefix: str) -> str: ...

    def close(self) -> None: ...
