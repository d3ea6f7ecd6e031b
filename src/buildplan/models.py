"""Task and project models, and the typed ingestion boundary for API records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from buildplan.errors import InvalidRangeError

DateRange = tuple[datetime, datetime]


class TaskStatus(enum.StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    OVERDUE = "overdue"


class VisualState(enum.StrEnum):
    """Styling bucket of a timeline bar."""

    COMPLETED = "completed"
    DELAYED = "delayed"
    ON_TRACK = "on-track"


def parse_datetime(value: str | datetime) -> datetime:
    """Parse an ISO timestamp into a naive UTC datetime.

    The API sends DATE columns as ``"2024-01-01T00:00:00.000Z"``; project dates
    and the clock are naive. Everything is compared as naive UTC.
    """
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _parse_dt(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_datetime(value)


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def unwrap_payload(raw: dict) -> dict:
    """Strip the ``{"success": ..., "data": {...}}`` envelope the REST API uses.

    Bare payloads are returned unchanged.
    """
    data = raw.get("data") if isinstance(raw, dict) else None
    if isinstance(data, dict):
        return data
    return raw


@dataclass
class Project:
    """Project-level settings stored alongside tasks."""

    id: str
    name: str
    start_date: datetime
    planned_completion_date: datetime | None = None
    skip_weekends: bool = False  # only consulted when migrating legacy tasks to dates

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "planned_completion_date": _format_dt(self.planned_completion_date),
            "skip_weekends": self.skip_weekends,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Project:
        return cls(
            id=str(d.get("id", "project")),
            name=d.get("name", "Untitled project"),
            start_date=_parse_dt(d["start_date"]),
            planned_completion_date=_parse_dt(d.get("planned_completion_date")),
            skip_weekends=d.get("skip_weekends", False),
        )


@dataclass
class ProgressEntry:
    """One manual progress update, as kept in the task's history."""

    progress: int
    recorded_at: datetime
    notes: str | None = None
    updated_by: str | None = None

    def to_dict(self) -> dict:
        return {
            "progress": self.progress,
            "recorded_at": self.recorded_at.isoformat(),
            "notes": self.notes,
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ProgressEntry:
        return cls(
            progress=int(d.get("progress", d.get("progress_percentage", 0))),
            recorded_at=parse_datetime(d.get("recorded_at", d.get("created_at"))),
            notes=d.get("notes"),
            updated_by=d.get("updated_by"),
        )


@dataclass
class Task:
    """A single construction task.

    A task is *date-based* when both ``start_date`` and ``end_date`` are set,
    and *legacy* (duration-based) otherwise. ``status`` of ``None`` means the
    status is derived from dates and progress on read.
    """

    id: str
    name: str
    phase: str = "General"
    duration_days: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    assigned_to: str | None = None
    status: TaskStatus | None = None
    progress: int = 0
    auto_progress_enabled: bool = True
    is_completed: bool = False
    completed_at: datetime | None = None
    depends_on: list[str] = field(default_factory=list)
    description: str | None = None
    progress_history: list[ProgressEntry] = field(default_factory=list)

    @property
    def is_date_based(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def validate(self) -> None:
        """Raise InvalidRangeError if the record breaks a model invariant."""
        if not 0 <= self.progress <= 100:
            raise InvalidRangeError(
                f"Progress for task {self.id} must be between 0 and 100, got {self.progress}",
                [self.id],
            )
        if self.is_date_based:
            if self.end_date < self.start_date:
                raise InvalidRangeError(
                    f"Task {self.id} ends ({self.end_date.date()}) before it starts "
                    f"({self.start_date.date()})",
                    [self.id],
                )
        elif self.duration_days is None or self.duration_days <= 0:
            raise InvalidRangeError(
                f"Task {self.id} needs both dates or a positive duration in days",
                [self.id],
            )

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "phase": self.phase,
            "duration_days": self.duration_days,
            "start_date": _format_dt(self.start_date),
            "end_date": _format_dt(self.end_date),
            "assigned_to": self.assigned_to,
            "status": self.status.value if self.status is not None else None,
            "progress": self.progress,
            "auto_progress_enabled": self.auto_progress_enabled,
            "is_completed": self.is_completed,
            "completed_at": _format_dt(self.completed_at),
            "depends_on": self.depends_on,
        }
        if self.description is not None:
            d["description"] = self.description
        if self.progress_history:
            d["progress_history"] = [e.to_dict() for e in self.progress_history]
        return d

    @classmethod
    def from_dict(cls, task_id: str, d: dict) -> Task:
        """Build and validate a task from a JSON-shaped record.

        Accepts the API's field names (``estimated_duration_days``,
        ``progress_percentage`` and ``dependencies`` as a list of
        ``{"depends_on_task_id": ...}`` objects) as well as our own.
        """
        duration = d.get("duration_days", d.get("estimated_duration_days"))
        progress = d.get("progress", d.get("progress_percentage", 0))

        raw_deps = d.get("depends_on", d.get("dependencies", []))
        deps: list[str] = []
        for dep in raw_deps or []:
            dep_id = dep["depends_on_task_id"] if isinstance(dep, dict) else dep
            dep_id = str(dep_id)
            if dep_id not in deps:
                deps.append(dep_id)

        status = d.get("status")
        task = cls(
            id=str(task_id),
            name=d["name"],
            phase=d.get("phase") or "General",
            duration_days=int(duration) if duration is not None else None,
            start_date=_parse_dt(d.get("start_date")),
            end_date=_parse_dt(d.get("end_date")),
            assigned_to=d.get("assigned_to"),
            status=TaskStatus(status) if status else None,
            progress=int(progress),
            auto_progress_enabled=d.get("auto_progress_enabled", True),
            is_completed=d.get("is_completed", False),
            completed_at=_parse_dt(d.get("completed_at")),
            depends_on=deps,
            description=d.get("description"),
            progress_history=[
                ProgressEntry.from_dict(e) for e in d.get("progress_history") or []
            ],
        )
        task.validate()
        return task


def tasks_from_records(records: list[dict]) -> dict[str, Task]:
    """Ingest a list of API task records (each carrying an ``id``) into a task map."""
    tasks: dict[str, Task] = {}
    for record in records:
        task = Task.from_dict(str(record["id"]), record)
        tasks[task.id] = task
    return tasks
