"""MCP server for buildplan: exposes the planning engine to AI assistants."""

from __future__ import annotations

import json
from datetime import datetime

from mcp.server.fastmcp import FastMCP

from buildplan.errors import PlanError
from buildplan.graph import TaskGraph
from buildplan.models import Task, parse_datetime
from buildplan.persistence import Store
from buildplan.progress import record_progress, set_auto_progress, status_label
from buildplan.schedule import calculate_schedule
from buildplan.timeline import project_timeline

mcp = FastMCP(
    "buildplan",
    instructions="""\
buildplan schedules the tasks of a construction project. Each task is either \
date-based (explicit start and end dates) or duration-based (a duration in days \
that starts once all of its dependencies have finished). Dependencies must never \
form a cycle; add_dependency refuses edits that would create one.

Progress is automatic by default: the percentage of the task's date span that has \
elapsed. A task in automatic mode rejects manual progress updates until it is \
switched to manual with set_auto_progress. A task is "At Risk" when its recorded \
progress trails the automatic value by more than 10 points.

Use get_timeline for an overview (dates, progress, delayed/on-track state), \
get_schedule for dependency-ordered dates, and check_dependencies to find cycles \
or references to deleted tasks.\
""",
)


def _get_store() -> Store:
    return Store()


def _require_project(store: Store):
    project, tasks = store.load()
    if project is None:
        raise ValueError("Project not initialized. Run 'buildplan init' first.")
    return project, tasks


def _now(now_iso: str | None) -> datetime:
    return parse_datetime(now_iso) if now_iso else datetime.now()


# ---------------------------------------------------------------------------
# Write tools
# ---------------------------------------------------------------------------


@mcp.tool()
def add_task(
    name: str,
    phase: str = "General",
    duration_days: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    depends_on: list[str] | None = None,
    assigned_to: str | None = None,
) -> str:
    """Add a new task to the project.

    Args:
        name: Task name
        phase: Phase label (e.g. "Foundation", "Framing")
        duration_days: Duration in days, for tasks scheduled from their dependencies
        start_date: Start date (YYYY-MM-DD); give together with end_date
        end_date: End date (YYYY-MM-DD)
        depends_on: Task IDs this task depends on (e.g. ["T-1", "T-3"])
        assigned_to: User id of the assignee
    """
    store = _get_store()
    project, tasks = store.load()
    tid = store.generate_id(tasks)

    deps = depends_on or []
    for dep in deps:
        if dep not in tasks:
            return f"Error: dependency {dep} not found."

    try:
        tasks[tid] = Task.from_dict(
            tid,
            {
                "name": name,
                "phase": phase,
                "duration_days": duration_days,
                "start_date": start_date,
                "end_date": end_date,
                "depends_on": deps,
                "assigned_to": assigned_to,
            },
        )
    except PlanError as e:
        return f"Error: {e}"
    store.save(project, tasks)
    return f"Added '{name}' as {tid}"


@mcp.tool()
def add_dependency(task_id: str, depends_on: str) -> str:
    """Make task_id depend on depends_on. Refused if it would create a cycle."""
    store = _get_store()
    project, tasks = store.load()
    if task_id not in tasks:
        return f"Error: task {task_id} not found."

    graph = TaskGraph.from_tasks(tasks)
    try:
        graph.add_dependency(task_id, depends_on)
    except PlanError as e:
        return f"Error: {e}"

    if depends_on not in tasks[task_id].depends_on:
        tasks[task_id].depends_on.append(depends_on)
    store.save(project, tasks)
    return f"{task_id} now depends on {depends_on}."


@mcp.tool()
def remove_dependency(task_id: str, depends_on: str) -> str:
    """Remove a dependency edge. Removing an edge that does not exist is a no-op."""
    store = _get_store()
    project, tasks = store.load()
    if task_id not in tasks:
        return f"Error: task {task_id} not found."
    if depends_on in tasks[task_id].depends_on:
        tasks[task_id].depends_on.remove(depends_on)
        store.save(project, tasks)
    return f"{task_id} does not depend on {depends_on}."


@mcp.tool()
def update_progress(
    task_id: str,
    progress: int,
    notes: str | None = None,
    updated_by: str | None = None,
    now_iso: str | None = None,
) -> str:
    """Record manual progress (0-100) for a task in manual mode.

    Args:
        task_id: Task to update
        progress: Progress percentage; 100 marks the task completed, anything lower reopens it
        notes: Note kept in the task's progress history
        updated_by: User id recording the update
        now_iso: Record the update as of this ISO timestamp instead of the current time
    """
    store = _get_store()
    project, tasks = store.load()
    if task_id not in tasks:
        return f"Error: task {task_id} not found."
    try:
        tasks[task_id] = record_progress(
            tasks[task_id], progress, _now(now_iso), notes=notes, updated_by=updated_by
        )
    except PlanError as e:
        return f"Error: {e}"
    store.save(project, tasks)
    return f"{task_id} progress set to {progress}%."


@mcp.tool()
def set_auto_progress_mode(task_id: str, enabled: bool, now_iso: str | None = None) -> str:
    """Switch a task between automatic (date-based) and manual progress.

    Args:
        task_id: Task to switch
        enabled: True for automatic progress, False for manual
        now_iso: Take the automatic value as of this ISO timestamp instead of the current time
    """
    store = _get_store()
    project, tasks = store.load()
    if task_id not in tasks:
        return f"Error: task {task_id} not found."
    try:
        tasks[task_id] = set_auto_progress(tasks[task_id], enabled, _now(now_iso))
    except PlanError as e:
        return f"Error: {e}"
    store.save(project, tasks)
    mode = "automatic" if enabled else "manual"
    return f"{task_id} uses {mode} progress ({tasks[task_id].progress}%)."


# ---------------------------------------------------------------------------
# Read tools
# ---------------------------------------------------------------------------


@mcp.tool()
def get_schedule() -> str:
    """Effective start/end dates of every task, in dependency order (JSON)."""
    store = _get_store()
    try:
        project, tasks = _require_project(store)
        scheduled = calculate_schedule(tasks, project)
    except (ValueError, PlanError) as e:
        return f"Error: {e}"
    return json.dumps(
        [
            {
                "id": s.task.id,
                "name": s.task.name,
                "phase": s.task.phase,
                "start": s.start.isoformat(),
                "end": s.end.isoformat(),
                "duration_days": s.duration_days,
                "date_based": s.date_based,
            }
            for s in scheduled
        ],
        indent=2,
    )


@mcp.tool()
def get_timeline(now_iso: str | None = None) -> str:
    """Timeline bars, dependency edges, warnings and cycles (JSON).

    Args:
        now_iso: Evaluate as of this ISO timestamp instead of the current time
    """
    store = _get_store()
    try:
        project, tasks = _require_project(store)
    except ValueError as e:
        return f"Error: {e}"
    now = _now(now_iso)
    timeline = project_timeline(tasks, project, now)
    labels = {
        bar.task_id: status_label(tasks[bar.task_id], now, (bar.start, bar.end))
        for bar in timeline.bars
    }
    view = timeline.to_dict()
    for bar in view["bars"]:
        bar["label"] = labels[bar["id"]]
    return json.dumps(view, indent=2)


@mcp.tool()
def get_progress_history(task_id: str) -> str:
    """Manual progress updates of a task, oldest first, plus its completion time (JSON)."""
    store = _get_store()
    _, tasks = store.load()
    if task_id not in tasks:
        return f"Error: task {task_id} not found."
    t = tasks[task_id]
    return json.dumps(
        {
            "id": t.id,
            "progress": t.progress,
            "is_completed": t.is_completed,
            "completed_at": t.completed_at.isoformat() if t.completed_at else None,
            "history": [e.to_dict() for e in t.progress_history],
        },
        indent=2,
    )


@mcp.tool()
def check_dependencies() -> str:
    """Report dependency cycles and dependencies on tasks that no longer exist."""
    store = _get_store()
    _, tasks = store.load()
    graph = TaskGraph.from_tasks(tasks)
    lines = [str(ref) for ref in graph.dangling]
    lines += [f"Circular dependency among: {', '.join(g)}" for g in graph.cycles()]
    return "\n".join(lines) if lines else "Dependencies OK."


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
