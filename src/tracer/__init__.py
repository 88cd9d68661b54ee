from __future__ import annotations

from .errors import (
    NotFoundError,
    ReconciliationError,
    StorageError,
    TracerError,
    ValidationError,
)
from .models import (
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
    UNSET,
    WorkFilter,
)
from .stores import SqliteStore, Storage
from .tracker import Tracker

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "BlockedIssue",
    "Dependency",
    "DependencyType",
    "Event",
    "EventType",
    "Issue",
    "IssueFilter",
    "IssuePatch",
    "IssueType",
    "NotFoundError",
    "ReconciliationError",
    "SqliteStore",
    "Statistics",
    "Status",
    "Storage",
    "StorageError",
    "Tracker",
    "TracerError",
    "TreeNode",
    "UNSET",
    "ValidationError",
    "WorkFilter",
]
