"""Gantt-style projection of a project snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from buildplan.errors import DanglingReference
from buildplan.graph import TaskGraph
from buildplan.models import DateRange, Project, Task, TaskStatus, VisualState
from buildplan.progress import derive_status, effective_progress, is_at_risk
from buildplan.schedule import resolve_task_dates

logger = logging.getLogger(__name__)


@dataclass
class TimelineBar:
    """One task as drawn on the timeline."""

    task_id: str
    name: str
    phase: str
    start: datetime
    end: datetime
    progress: int
    state: VisualState
    status: TaskStatus
    dependencies: list[str] = field(default_factory=list)
    assigned_to: str | None = None
    at_risk: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.task_id,
            "name": self.name,
            "phase": self.phase,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "progress": self.progress,
            "state": self.state.value,
            "status": self.status.value,
            "dependencies": self.dependencies,
            "assigned_to": self.assigned_to,
            "at_risk": self.at_risk,
        }


@dataclass
class Timeline:
    bars: list[TimelineBar]
    edges: list[tuple[str, str]]  # (dependency_id, task_id)
    warnings: list[DanglingReference] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "bars": [b.to_dict() for b in self.bars],
            "edges": [list(e) for e in self.edges],
            "warnings": [w.to_dict() for w in self.warnings],
            "cycles": self.cycles,
        }


def _visual_state(completed: bool, end: datetime, progress: int, now: datetime) -> VisualState:
    if completed:
        return VisualState.COMPLETED
    if end < now and progress < 100:
        return VisualState.DELAYED
    return VisualState.ON_TRACK


def project_timeline(tasks: dict[str, Task], project: Project, now: datetime) -> Timeline:
    """Build the renderable timeline for *tasks* as of *now*.

    Never raises on bad snapshot data. Dependencies on unknown tasks are
    dropped and listed in ``warnings``. Legacy tasks caught in a dependency
    cycle are placed at the project start and the cycles are listed in
    ``cycles``; tasks depending on them are scheduled after them as usual.
    The input is not modified, so projecting the same snapshot twice gives
    equal timelines.
    """
    graph = TaskGraph.from_tasks(tasks)
    cycles = graph.cycles()

    resolved: dict[str, DateRange] = {}
    for group in cycles:
        logger.warning("Circular dependency among tasks: %s", ", ".join(group))
        for tid in group:
            task = tasks[tid]
            if task.is_date_based:
                resolved[tid] = (task.start_date, task.end_date)
            else:
                start = project.start_date
                resolved[tid] = (start, start + timedelta(days=task.duration_days))

    order = list(graph.topological_order()) if not cycles else list(tasks)

    bars: list[TimelineBar] = []
    for tid in order:
        task = tasks[tid]
        start, end = resolve_task_dates(tid, tasks, project, resolved)
        progress = effective_progress(task, now)
        status = derive_status(task, now, (start, end))
        bars.append(
            TimelineBar(
                task_id=tid,
                name=task.name,
                phase=task.phase,
                start=start,
                end=end,
                progress=progress,
                state=_visual_state(
                    status == TaskStatus.COMPLETED or task.is_completed, end, progress, now
                ),
                status=status,
                dependencies=graph.dependencies_of(tid),
                assigned_to=task.assigned_to,
                at_risk=is_at_risk(task, now),
            )
        )

    return Timeline(
        bars=bars,
        edges=graph.edges(),
        warnings=list(graph.dangling),
        cycles=cycles,
    )


def group_by_phase(timeline: Timeline) -> dict[str, list[TimelineBar]]:
    """Bars grouped by phase, phases in order of first appearance."""
    groups: dict[str, list[TimelineBar]] = {}
    for bar in timeline.bars:
        groups.setdefault(bar.phase, []).append(bar)
    return groups
