"""Issue tracker data model: enums, records, filters and the sparse patch."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ValidationError
from .util import format_timestamp, parse_timestamp, utc_now

MAX_TITLE_LENGTH = 500
MIN_PRIORITY = 0
MAX_PRIORITY = 4
DEFAULT_PRIORITY = 2
DEFAULT_PREFIX = "bd"


class _ParseableEnum(str, Enum):
    @classmethod
    def parse(cls, value: object) -> Any:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        label = re.sub(r"(?<!^)(?=[A-Z])", " ", cls.__name__).lower()
        raise ValidationError(f"invalid {label}: {value}")

    def __str__(self) -> str:
        return self.value


class Status(_ParseableEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"


class IssueType(_ParseableEnum):
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


class DependencyType(_ParseableEnum):
    BLOCKS = "blocks"
    RELATED = "related"
    PARENT_CHILD = "parent-child"
    DISCOVERED_FROM = "discovered-from"


class EventType(_ParseableEnum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    COMMENTED = "commented"
    CLOSED = "closed"
    REOPENED = "reopened"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    LABEL_ADDED = "label_added"
    LABEL_REMOVED = "label_removed"


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _optional_int(value: object, *, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be an integer") from exc


def _timestamp(value: object, *, field_name: str) -> datetime:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid {field_name}: {value!r}") from exc


def validate_title(title: str) -> None:
    if not title.strip():
        raise ValidationError("title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"title must be {MAX_TITLE_LENGTH} characters or less (got {len(title)})"
        )


def validate_priority(priority: int) -> None:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError(f"priority must be an integer (got {priority!r})")
    if priority < MIN_PRIORITY or priority > MAX_PRIORITY:
        raise ValidationError(
            f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY} (got {priority})"
        )


def validate_estimate(estimated_minutes: int | None) -> None:
    if estimated_minutes is not None and estimated_minutes < 0:
        raise ValidationError("estimated_minutes cannot be negative")


@dataclass(frozen=True)
class Dependency:
    issue_id: str
    depends_on_id: str
    dep_type: DependencyType = DependencyType.BLOCKS
    created_at: datetime = field(default_factory=utc_now)
    created_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "depends_on_id": self.depends_on_id,
            "type": self.dep_type.value,
            "created_at": format_timestamp(self.created_at),
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any], *, issue_id: str | None = None) -> Dependency:
        depends_on_id = str(payload.get("depends_on_id") or "").strip()
        if not depends_on_id:
            raise ValidationError("dependency is missing depends_on_id")
        raw_type = payload.get("type", payload.get("dep_type", DependencyType.BLOCKS))
        raw_created = payload.get("created_at")
        return cls(
            issue_id=str(payload.get("issue_id") or issue_id or "").strip(),
            depends_on_id=depends_on_id,
            dep_type=DependencyType.parse(raw_type),
            created_at=(
                _timestamp(raw_created, field_name="created_at")
                if raw_created
                else utc_now()
            ),
            created_by=str(payload.get("created_by") or ""),
        )


@dataclass
class Issue:
    """A trackable unit of work.

    ``dependencies`` is only populated when an issue travels through the
    snapshot codec; store reads leave it empty.
    """

    id: str
    title: str
    description: str = ""
    design: str = ""
    acceptance_criteria: str = ""
    notes: str = ""
    status: Status = Status.OPEN
    priority: int = DEFAULT_PRIORITY
    issue_type: IssueType = IssueType.TASK
    assignee: str = ""
    estimated_minutes: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    closed_at: datetime | None = None
    external_ref: str | None = None
    dependencies: list[Dependency] = field(default_factory=list)

    def validate(self) -> None:
        validate_title(self.title)
        validate_priority(self.priority)
        validate_estimate(self.estimated_minutes)

    @property
    def is_closed(self) -> bool:
        return self.status == Status.CLOSED

    def to_dict(self) -> dict[str, Any]:
        """Wire representation used by the JSONL snapshot."""
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
        }
        for key in ("design", "acceptance_criteria", "notes"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        payload["status"] = self.status.value
        payload["priority"] = self.priority
        payload["issue_type"] = self.issue_type.value
        if self.assignee:
            payload["assignee"] = self.assignee
        if self.estimated_minutes is not None:
            payload["estimated_minutes"] = self.estimated_minutes
        payload["created_at"] = format_timestamp(self.created_at)
        payload["updated_at"] = format_timestamp(self.updated_at)
        if self.closed_at is not None:
            payload["closed_at"] = format_timestamp(self.closed_at)
        if self.external_ref is not None:
            payload["external_ref"] = self.external_ref
        if self.dependencies:
            payload["dependencies"] = [dep.to_dict() for dep in self.dependencies]
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Issue:
        issue_id = str(payload.get("id") or "").strip()
        if not issue_id:
            raise ValidationError("issue is missing id")
        if "title" not in payload:
            raise ValidationError(f"issue {issue_id} is missing title")

        now = utc_now()
        raw_closed = payload.get("closed_at")
        priority = payload.get("priority", DEFAULT_PRIORITY)
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError(f"priority must be an integer (got {priority!r})")

        raw_deps = payload.get("dependencies") or []
        if not isinstance(raw_deps, list):
            raise ValidationError(f"issue {issue_id}: dependencies must be a list")

        issue = cls(
            id=issue_id,
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            design=str(payload.get("design") or ""),
            acceptance_criteria=str(payload.get("acceptance_criteria") or ""),
            notes=str(payload.get("notes") or ""),
            status=Status.parse(payload.get("status", Status.OPEN)),
            priority=priority,
            issue_type=IssueType.parse(payload.get("issue_type", IssueType.TASK)),
            assignee=str(payload.get("assignee") or ""),
            estimated_minutes=_optional_int(
                payload.get("estimated_minutes"), field_name="estimated_minutes"
            ),
            created_at=(
                _timestamp(payload["created_at"], field_name="created_at")
                if payload.get("created_at")
                else now
            ),
            updated_at=(
                _timestamp(payload["updated_at"], field_name="updated_at")
                if payload.get("updated_at")
                else now
            ),
            closed_at=(
                _timestamp(raw_closed, field_name="closed_at") if raw_closed else None
            ),
            external_ref=_optional_str(payload.get("external_ref")),
        )
        for raw in raw_deps:
            if not isinstance(raw, dict):
                raise ValidationError(f"issue {issue_id}: dependency must be an object")
            dep = Dependency.from_dict(raw, issue_id=issue_id)
            if dep.issue_id != issue_id:
                dep = replace(dep, issue_id=issue_id)
            issue.dependencies.append(dep)
        issue.validate()
        return issue


@dataclass(frozen=True)
class Event:
    id: int
    issue_id: str
    event_type: EventType
    actor: str
    old_value: str | None = None
    new_value: str | None = None
    comment: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "issue_id": self.issue_id,
            "event_type": self.event_type.value,
            "actor": self.actor,
        }
        for key in ("old_value", "new_value", "comment"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload["created_at"] = format_timestamp(self.created_at)
        return payload


@dataclass(frozen=True)
class BlockedIssue:
    issue: Issue
    blocked_by: list[str]

    @property
    def blocked_by_count(self) -> int:
        return len(self.blocked_by)

    def to_dict(self) -> dict[str, Any]:
        payload = self.issue.to_dict()
        payload["blocked_by_count"] = self.blocked_by_count
        payload["blocked_by"] = list(self.blocked_by)
        return payload


@dataclass(frozen=True)
class TreeNode:
    issue: Issue
    depth: int
    truncated: bool

    def to_dict(self) -> dict[str, Any]:
        payload = self.issue.to_dict()
        payload["depth"] = self.depth
        payload["truncated"] = self.truncated
        return payload


@dataclass(frozen=True)
class Statistics:
    total_issues: int = 0
    open_issues: int = 0
    in_progress_issues: int = 0
    closed_issues: int = 0
    blocked_issues: int = 0
    ready_issues: int = 0
    average_lead_time_hours: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "open_issues": self.open_issues,
            "in_progress_issues": self.in_progress_issues,
            "closed_issues": self.closed_issues,
            "blocked_issues": self.blocked_issues,
            "ready_issues": self.ready_issues,
            "average_lead_time_hours": self.average_lead_time_hours,
        }


@dataclass(frozen=True)
class IssueFilter:
    status: Status | None = None
    priority: int | None = None
    issue_type: IssueType | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    limit: int | None = None


@dataclass(frozen=True)
class WorkFilter:
    priority: int | None = None
    assignee: str | None = None
    limit: int | None = None


@dataclass(frozen=True)
class IssuePatch:
    """Sparse update: every field defaults to ``UNSET`` (leave untouched).

    ``assignee``, ``estimated_minutes`` and ``external_ref`` additionally
    accept ``None`` to clear the stored value. ``None`` on any other field
    is rejected.

    ``closed_at`` is only honoured when the resulting status is closed; the
    store stamps the current time when it is left unset or ``None``.
    """

    title: Any = UNSET
    description: Any = UNSET
    design: Any = UNSET
    acceptance_criteria: Any = UNSET
    notes: Any = UNSET
    status: Any = UNSET
    priority: Any = UNSET
    issue_type: Any = UNSET
    assignee: Any = UNSET
    estimated_minutes: Any = UNSET
    external_ref: Any = UNSET
    closed_at: Any = UNSET

    CLEARABLE = frozenset({"assignee", "estimated_minutes", "external_ref", "closed_at"})
    FIELDS = (
        "title",
        "description",
        "design",
        "acceptance_criteria",
        "notes",
        "status",
        "priority",
        "issue_type",
        "assignee",
        "estimated_minutes",
        "external_ref",
        "closed_at",
    )

    @classmethod
    def from_issue(cls, issue: Issue) -> IssuePatch:
        """Full-field patch that supersedes every mutable field."""
        return cls(
            title=issue.title,
            description=issue.description,
            design=issue.design,
            acceptance_criteria=issue.acceptance_criteria,
            notes=issue.notes,
            status=issue.status,
            priority=issue.priority,
            issue_type=issue.issue_type,
            assignee=issue.assignee or None,
            estimated_minutes=issue.estimated_minutes,
            external_ref=issue.external_ref,
            closed_at=issue.closed_at,
        )

    def provided(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.FIELDS
            if getattr(self, name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.provided()

    def apply(self, issue: Issue) -> Issue:
        """Return a validated copy of *issue* with the patch applied."""
        changes: dict[str, Any] = {}
        for name, value in self.provided().items():
            if value is None and name not in self.CLEARABLE:
                raise ValidationError(f"{name} cannot be cleared")
            if name == "status":
                value = Status.parse(value)
            elif name == "issue_type":
                value = IssueType.parse(value)
            elif name == "assignee":
                value = value or ""
            elif name == "estimated_minutes":
                value = _optional_int(value, field_name="estimated_minutes")
            elif name == "external_ref":
                value = _optional_str(value)
            elif name == "closed_at" and value is not None:
                value = _timestamp(value, field_name="closed_at")
            changes[name] = value
        updated = replace(issue, **changes)
        updated.validate()
        return updated
