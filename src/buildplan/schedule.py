"""Start/end date derivation for date-based and duration-based tasks."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from buildplan.errors import CycleError
from buildplan.graph import TaskGraph
from buildplan.models import DateRange, Project, Task

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """A task with its effective dates."""

    task: Task
    start: datetime
    end: datetime

    @property
    def date_based(self) -> bool:
        return self.task.is_date_based

    @property
    def duration_days(self) -> int:
        """Whole days for display; rounded up for date-based tasks."""
        if self.date_based:
            return display_duration_days(self.start, self.end)
        return self.task.duration_days


def display_duration_days(start: datetime, end: datetime) -> int:
    return math.ceil((end - start) / timedelta(days=1))


def add_working_days(start: datetime, days: int) -> datetime:
    """Advance *start* by *days* weekdays, skipping Saturdays and Sundays."""
    current = start
    added = 0
    while added < days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current


def _legacy_end(start: datetime, duration_days: int, working_days: bool) -> datetime:
    if working_days:
        return add_working_days(start, duration_days)
    return start + timedelta(days=duration_days)


def resolve_task_dates(
    task_id: str,
    tasks: dict[str, Task],
    project: Project,
    resolved: dict[str, DateRange] | None = None,
    working_days: bool = False,
) -> DateRange:
    """Effective (start, end) of one task, resolving its dependencies first.

    Safe to call on any task in any order: the walk tracks the current
    dependency path and raises CycleError on a back edge instead of
    recursing forever. Dependencies missing from *tasks* are ignored.
    *resolved* caches results across calls and may be pre-seeded.
    """
    if resolved is None:
        resolved = {}
    path: dict[str, None] = {}

    def visit(tid: str) -> DateRange:
        if tid in resolved:
            return resolved[tid]
        task = tasks[tid]
        if task.is_date_based:
            resolved[tid] = (task.start_date, task.end_date)
            return resolved[tid]

        path[tid] = None
        start = project.start_date
        for dep in task.depends_on:
            if dep not in tasks:
                continue
            if dep in path:
                ids = list(path)
                cycle = ids[ids.index(dep):]
                raise CycleError(
                    f"Circular dependency detected: {' -> '.join(cycle + [dep])}", cycle
                )
            start = max(start, visit(dep)[1])
        del path[tid]

        resolved[tid] = (start, _legacy_end(start, task.duration_days, working_days))
        return resolved[tid]

    return visit(task_id)


def calculate_schedule(
    tasks: dict[str, Task],
    project: Project,
    working_days: bool = False,
) -> list[ScheduledTask]:
    """Effective dates for every task, in dependency order.

    Date-based tasks keep their dates verbatim. Legacy tasks start at the
    later of the project start and their latest dependency end, and run for
    ``duration_days`` calendar days (weekdays if *working_days*). Raises
    CycleError if the dependencies are not a DAG.
    """
    graph = TaskGraph.from_tasks(tasks)
    resolved: dict[str, DateRange] = {}
    results: list[ScheduledTask] = []
    for tid in graph.topological_order():
        start, end = resolve_task_dates(tid, tasks, project, resolved, working_days)
        results.append(ScheduledTask(task=tasks[tid], start=start, end=end))
    logger.debug("Scheduled %d tasks for project %s", len(results), project.id)
    return results


def migrate_to_dates(tasks: dict[str, Task], project: Project) -> dict[str, Task]:
    """Give every legacy task explicit dates taken from its computed schedule.

    Returns new Task objects; date-based tasks are returned unchanged and
    ``duration_days`` is kept on migrated tasks. Weekends are skipped when
    the project says so.
    """
    migrated: dict[str, Task] = {}
    for s in calculate_schedule(tasks, project, working_days=project.skip_weekends):
        if s.task.is_date_based:
            migrated[s.task.id] = s.task
        else:
            migrated[s.task.id] = replace(
                s.task,
                start_date=s.start,
                end_date=s.end,
                depends_on=list(s.task.depends_on),
            )
            logger.info(
                "Migrated task %s to %s - %s", s.task.id, s.start.date(), s.end.date()
            )
    # keep the caller's ordering
    return {tid: migrated[tid] for tid in tasks}
