"""Time-based progress, manual/automatic reconciliation and status derivation."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime

from buildplan.errors import AutomaticModeError, InvalidRangeError
from buildplan.models import DateRange, ProgressEntry, Task, TaskStatus

logger = logging.getLogger(__name__)

# Percentage points actual progress may trail the time-based expectation
# before an in-progress task is flagged.
RISK_THRESHOLD = 10

STATUS_LABELS = {
    TaskStatus.NOT_STARTED: "Not Started",
    TaskStatus.IN_PROGRESS: "On Track",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.BLOCKED: "Blocked",
    TaskStatus.OVERDUE: "Overdue",
}


def _check_range(task: Task, value: int) -> None:
    if not 0 <= value <= 100:
        raise InvalidRangeError(
            f"Progress percentage must be between 0 and 100, got {value}", [task.id]
        )


def auto_progress(task: Task, now: datetime) -> int:
    """Percentage of the task's date span that has elapsed at *now*."""
    if not task.is_date_based:
        raise InvalidRangeError(
            f"Task {task.id} needs a start and end date for automatic progress", [task.id]
        )
    if now < task.start_date:
        return 0
    if now >= task.end_date:
        return 100
    elapsed = (now - task.start_date) / (task.end_date - task.start_date)
    # round half up
    return max(0, min(100, math.floor(100 * elapsed + 0.5)))


def is_auto_mode(task: Task) -> bool:
    """Auto-progress applies only to tasks that have both dates."""
    return task.auto_progress_enabled and task.is_date_based


def effective_progress(task: Task, now: datetime) -> int:
    if is_auto_mode(task):
        return auto_progress(task, now)
    return task.progress


def record_progress(
    task: Task,
    value: int,
    now: datetime,
    notes: str | None = None,
    updated_by: str | None = None,
) -> Task:
    """Return a copy of *task* with manually recorded progress *value*.

    The update is appended to ``progress_history``. The task counts as
    completed exactly while its progress is 100; ``completed_at`` is stamped
    when it gets there and kept afterwards.
    """
    _check_range(task, value)
    if is_auto_mode(task):
        raise AutomaticModeError(
            f"Cannot manually update progress of task {task.id} in automatic mode. "
            "Switch to manual mode first.",
            [task.id],
        )
    logger.debug("Recording progress %d%% for task %s at %s", value, task.id, now)
    completed = value == 100
    entry = ProgressEntry(progress=value, recorded_at=now, notes=notes, updated_by=updated_by)
    return replace(
        task,
        progress=value,
        is_completed=completed,
        completed_at=now if completed else task.completed_at,
        progress_history=[*task.progress_history, entry],
    )


def set_auto_progress(task: Task, enabled: bool, now: datetime) -> Task:
    """Return a copy of *task* with auto-progress switched on or off.

    Switching it on stores the current automatic value once, so the manual
    figure picks up where the dates say the task is.
    """
    if not enabled:
        return replace(task, auto_progress_enabled=False)
    if task.auto_progress_enabled and task.is_date_based:
        return task
    snapped = auto_progress(task, now)
    logger.debug("Task %s switched to automatic progress at %d%%", task.id, snapped)
    return replace(task, auto_progress_enabled=True, progress=snapped)


def derive_status(task: Task, now: datetime, dates: DateRange | None = None) -> TaskStatus:
    """Stored status if there is one, otherwise one worked out from dates and progress.

    Completion wins over the date checks. Legacy tasks are judged against
    *dates*, their resolved schedule, when given; without it only their
    progress counts.
    """
    if task.status is not None:
        return task.status

    progress = effective_progress(task, now)
    if task.is_completed or progress >= 100:
        return TaskStatus.COMPLETED
    if task.is_date_based:
        start, end = task.start_date, task.end_date
    elif dates is not None:
        start, end = dates
    else:
        return TaskStatus.IN_PROGRESS if progress > 0 else TaskStatus.NOT_STARTED
    if now < start:
        return TaskStatus.NOT_STARTED
    if now > end:
        return TaskStatus.OVERDUE
    return TaskStatus.IN_PROGRESS


def is_at_risk(task: Task, now: datetime) -> bool:
    """In progress, in auto mode, and recorded progress trails the dates by more than RISK_THRESHOLD."""
    if not is_auto_mode(task):
        return False
    if derive_status(task, now) != TaskStatus.IN_PROGRESS:
        return False
    return task.progress < auto_progress(task, now) - RISK_THRESHOLD


def days_remaining(task: Task, now: datetime) -> int | None:
    """Whole calendar days until the end date; negative once overdue, None for legacy tasks."""
    if not task.is_date_based:
        return None
    return (task.end_date.date() - now.date()).days


def status_label(task: Task, now: datetime, dates: DateRange | None = None) -> str:
    if is_at_risk(task, now):
        return "At Risk"
    return STATUS_LABELS[derive_status(task, now, dates)]
