#!/usr/bin/env python3
"""Record model for projects, phases and tasks.

Each record is one YAML mapping on disk. Parsing is tolerant: unknown enum
values are coerced to a default with a warning, timestamps may be dates,
datetimes or strings, and keys this model does not know about are carried
through to the next write unchanged.

Usage:
    from tasktree.models import Task, TaskStatus

    task = Task(id="T1.1", title="Schema", project_id="web", phase_id="P1")
    text = task.to_yaml()
    loaded = Task.from_dict(yaml.safe_load(text))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, TypeVar

import yaml

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

DEFAULT_REPORTER = "tasktree-user"


class ProjectStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


class PhaseStatus(Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStatus(Enum):
    """Persisted task states.

    "Blocked" is not a stored state: it is derived from dependencies on
    every load and never written.
    """

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"  # Only reachable when the review stage is enabled
    DONE = "done"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, most urgent first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


def utc_now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def _safe_parse_enum(
    value: Any,
    enum_cls: type[E],
    default: E,
    field_name: str,
    record_id: str | None = None,
) -> E:
    """Parse an enum value, coercing invalid values to default with a warning.

    Args:
        value: Raw value from the record (or None)
        enum_cls: Enum class to parse into
        default: Value used when parsing fails or value is None
        field_name: Field name for the warning message
        record_id: Record id for the warning message (optional)

    Returns:
        Parsed enum value, or default if invalid
    """
    if value is None:
        return default

    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        ref = f" (record: {record_id})" if record_id else ""
        logger.warning(
            "Invalid %s '%s'%s, coercing to '%s'",
            field_name,
            value,
            ref,
            default.value,
        )
        return default


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp.

    Accepts datetimes (naive ones are taken as UTC), bare dates (midnight
    UTC) and ISO strings. Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp '%s', ignoring", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat()


def _string_list(value: Any) -> list[str]:
    """Normalize a YAML list-ish value to a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value if v is not None and str(v) != ""]


def _require_id(data: dict[str, Any], kind: str) -> str:
    if not isinstance(data, dict):
        raise ValueError(f"{kind} record must be a mapping, got {type(data).__name__}")
    raw = data.get("id")
    if raw is None or str(raw).strip() == "":
        raise ValueError(f"{kind} record has no id")
    return str(raw).strip()


def _dump(data: dict[str, Any]) -> str:
    return yaml.safe_dump(
        data,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


@dataclass
class Project:
    """Top-level container for phases and tasks."""

    id: str
    name: str = ""
    description: str = ""
    owner: str | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    created: datetime = field(default_factory=utc_now)
    updated: datetime = field(default_factory=utc_now)
    tags: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS: ClassVar[tuple[str, ...]] = (
        "id",
        "name",
        "description",
        "owner",
        "status",
        "created",
        "updated",
        "tags",
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        project_id = _require_id(data, "project")
        now = utc_now()
        return cls(
            id=project_id,
            name=str(data.get("name") or project_id),
            description=str(data.get("description") or ""),
            owner=data.get("owner"),
            status=_safe_parse_enum(
                data.get("status"), ProjectStatus, ProjectStatus.ACTIVE, "status", project_id
            ),
            created=parse_timestamp(data.get("created")) or now,
            updated=parse_timestamp(data.get("updated")) or now,
            tags=_string_list(data.get("tags")),
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner,
            "status": self.status.value,
            "created": format_timestamp(self.created),
            "updated": format_timestamp(self.updated),
            "tags": list(self.tags),
        }
        data.update(self.extra)
        return data

    def to_yaml(self) -> str:
        return _dump(self.to_dict())


@dataclass
class Phase:
    """Ordered stage of a project that owns a group of tasks."""

    id: str
    project_id: str
    name: str = ""
    goal: str = ""
    status: PhaseStatus = PhaseStatus.PLANNING
    start_date: datetime | None = None
    end_date: datetime | None = None
    created: datetime = field(default_factory=utc_now)
    updated: datetime = field(default_factory=utc_now)
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS: ClassVar[tuple[str, ...]] = (
        "id",
        "project_id",
        "name",
        "goal",
        "status",
        "start_date",
        "end_date",
        "created",
        "updated",
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any], project_id: str | None = None) -> Phase:
        phase_id = _require_id(data, "phase")
        now = utc_now()
        return cls(
            id=phase_id,
            project_id=str(data.get("project_id") or project_id or ""),
            name=str(data.get("name") or phase_id),
            goal=str(data.get("goal") or ""),
            status=_safe_parse_enum(
                data.get("status"), PhaseStatus, PhaseStatus.PLANNING, "status", phase_id
            ),
            start_date=parse_timestamp(data.get("start_date")),
            end_date=parse_timestamp(data.get("end_date")),
            created=parse_timestamp(data.get("created")) or now,
            updated=parse_timestamp(data.get("updated")) or now,
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "goal": self.goal,
            "status": self.status.value,
            "start_date": format_timestamp(self.start_date),
            "end_date": format_timestamp(self.end_date),
            "created": format_timestamp(self.created),
            "updated": format_timestamp(self.updated),
        }
        data.update(self.extra)
        return data

    def to_yaml(self) -> str:
        return _dump(self.to_dict())


@dataclass
class Task:
    """Unit of work with an ordered list of prerequisite task ids.

    Only the fields the engine reads are modelled; everything else in the
    record (components, issues, labels, comments, time tracking ...) lives
    in ``extra`` and is written back as found.
    """

    id: str
    project_id: str
    title: str = ""
    phase_id: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    assignee: str | None = None
    reporter: str = DEFAULT_REPORTER
    description: str = ""
    dependency_ids: list[str] = field(default_factory=list)
    created: datetime = field(default_factory=utc_now)
    updated: datetime = field(default_factory=utc_now)
    extra: dict[str, Any] = field(default_factory=dict)
    # File the record was read from; not serialized
    source: Path | None = field(default=None, compare=False, repr=False)

    KNOWN_KEYS: ClassVar[tuple[str, ...]] = (
        "id",
        "title",
        "project_id",
        "phase_id",
        "status",
        "priority",
        "assignee",
        "reporter",
        "created",
        "updated",
        "description",
        "dependency_ids",
    )

    # Older tools wrote these; "blocked" was a persisted status before it
    # became derived.
    STATUS_ALIASES: ClassVar[dict[str, str]] = {
        "in-progress": "in_progress",
        "inprogress": "in_progress",
        "pending": "todo",
        "blocked": "todo",
        "completed": "done",
        "in-review": "review",
    }

    def __post_init__(self) -> None:
        if not self.title:
            self.title = self.id

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        project_id: str | None = None,
        phase_id: str | None = None,
    ) -> Task:
        """Create a Task from a parsed record.

        Args:
            data: Mapping loaded from YAML
            project_id: Owning project, used when the record omits it
            phase_id: Owning phase (from the directory), used when the record omits it

        Returns:
            Task instance

        Raises:
            ValueError: If the record is not a mapping or has no id
        """
        task_id = _require_id(data, "task")

        status_raw = data.get("status")
        if status_raw is not None:
            status_str = str(status_raw).strip().lower()
            alias = cls.STATUS_ALIASES.get(status_str)
            if alias is not None:
                if status_str == "blocked":
                    logger.warning(
                        "Task %s stores legacy status 'blocked'; reading it as 'todo' "
                        "(blocked is derived from dependencies)",
                        task_id,
                    )
                status_raw = alias

        now = utc_now()
        return cls(
            id=task_id,
            project_id=str(data.get("project_id") or project_id or ""),
            phase_id=str(data.get("phase_id") or phase_id or "") or None,
            title=str(data.get("title") or task_id),
            status=_safe_parse_enum(status_raw, TaskStatus, TaskStatus.TODO, "status", task_id),
            priority=_safe_parse_enum(
                data.get("priority"), Priority, Priority.MEDIUM, "priority", task_id
            ),
            assignee=data.get("assignee") or None,
            reporter=str(data.get("reporter") or DEFAULT_REPORTER),
            description=str(data.get("description") or ""),
            dependency_ids=_string_list(data.get("dependency_ids")),
            created=parse_timestamp(data.get("created")) or now,
            updated=parse_timestamp(data.get("updated")) or now,
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_KEYS},
        )

    @classmethod
    def from_yaml(
        cls,
        text: str,
        project_id: str | None = None,
        phase_id: str | None = None,
    ) -> Task:
        return cls.from_dict(yaml.safe_load(text), project_id=project_id, phase_id=phase_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "status": self.status.value,
            "priority": self.priority.value,
            "assignee": self.assignee,
            "reporter": self.reporter,
            "created": format_timestamp(self.created),
            "updated": format_timestamp(self.updated),
            "description": self.description,
            "dependency_ids": list(self.dependency_ids),
        }
        data.update(self.extra)
        return data

    def to_yaml(self) -> str:
        return _dump(self.to_dict())

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE
