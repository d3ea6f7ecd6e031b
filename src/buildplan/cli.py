"""Typer CLI for buildplan."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from buildplan.errors import PlanError
from buildplan.graph import TaskGraph
from buildplan.models import DateRange, Project, Task, TaskStatus, VisualState, parse_datetime
from buildplan.persistence import Store
from buildplan.progress import (
    auto_progress,
    days_remaining,
    effective_progress,
    is_auto_mode,
    record_progress,
    set_auto_progress,
    status_label,
)
from buildplan.schedule import calculate_schedule, migrate_to_dates
from buildplan.timeline import group_by_phase, project_timeline

app = typer.Typer(
    name="buildplan",
    help="Task dependency and scheduling engine for construction projects.",
    no_args_is_help=True,
)
console = Console()

_state: dict = {"db": None, "now": None}

STATE_STYLES = {
    VisualState.COMPLETED: "green",
    VisualState.DELAYED: "bold red",
    VisualState.ON_TRACK: None,
}


@app.callback()
def main(
    db: Annotated[Optional[Path], typer.Option("--db", help="Snapshot file (default: $BUILDPLAN_DB or buildplan.json)")] = None,
    now: Annotated[Optional[str], typer.Option("--now", help="Evaluate as of this ISO timestamp instead of the clock")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    _state["db"] = db
    _state["now"] = parse_datetime(now) if now else None


def _get_store() -> Store:
    return Store(_state["db"])


def _now() -> datetime:
    return _state["now"] or datetime.now()


def _require_project(project: Project | None) -> Project:
    if project is None:
        console.print("[red]No project found. Run 'buildplan init' first.[/red]")
        raise typer.Exit(1)
    return project


def _require_task(tasks: dict[str, Task], task_id: str) -> Task:
    if task_id not in tasks:
        console.print(f"[red]Task {task_id} not found.[/red]")
        raise typer.Exit(1)
    return tasks[task_id]


def _fail(err: PlanError) -> None:
    console.print(f"[red]{err}[/red]")
    raise typer.Exit(1)


def _expand_ids(values: list[str] | None) -> list[str]:
    """Accept ids individually (--depends T-1 --depends T-2) or comma-separated."""
    ids: list[str] = []
    for v in values or []:
        ids.extend(part.strip() for part in v.split(",") if part.strip())
    return ids


def _fmt(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")


def _schedule_dates(tasks: dict[str, Task], project: Project | None) -> dict[str, DateRange]:
    """Effective dates per task, or nothing when the project is missing or cyclic."""
    if project is None:
        return {}
    try:
        return {s.task.id: (s.start, s.end) for s in calculate_schedule(tasks, project)}
    except PlanError:
        return {}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    start: Annotated[
        str,
        typer.Option(help="Project start date (YYYY-MM-DD)", prompt="Project start date (YYYY-MM-DD)"),
    ],
    name: str = "Construction project",
    project_id: Annotated[str, typer.Option("--id", help="Project id")] = "P-1",
    planned_completion: Annotated[Optional[str], typer.Option(help="Planned completion date (YYYY-MM-DD)")] = None,
    skip_weekends: Annotated[bool, typer.Option(help="Count legacy durations in working days when migrating")] = False,
) -> None:
    """Initialize (or reinitialize) the project."""
    store = _get_store()
    _, tasks = store.load()
    project = Project(
        id=project_id,
        name=name,
        start_date=parse_datetime(start),
        planned_completion_date=parse_datetime(planned_completion) if planned_completion else None,
        skip_weekends=skip_weekends,
    )
    store.save(project, tasks)
    console.print(f"[green]Project '{name}' initialized. Start: {start}[/green]")


@app.command()
def add(
    name: str,
    phase: Annotated[str, typer.Option("--phase", "-p", help="Phase label (e.g. Foundation)")] = "General",
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Duration in days")] = None,
    start: Annotated[Optional[str], typer.Option(help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option(help="End date (YYYY-MM-DD)")] = None,
    depends: Annotated[Optional[list[str]], typer.Option("--depends", help="Task IDs this depends on")] = None,
    assigned_to: Annotated[Optional[str], typer.Option("--assign", help="User id of the assignee")] = None,
    manual: Annotated[bool, typer.Option("--manual", help="Track progress manually instead of from dates")] = False,
) -> None:
    """Add a new task, either with --start/--end dates or with a --duration."""
    store = _get_store()
    project, tasks = store.load()
    tid = store.generate_id(tasks)

    deps = _expand_ids(depends)
    for dep in deps:
        if dep not in tasks:
            console.print(f"[red]Dependency {dep} not found.[/red]")
            raise typer.Exit(1)

    try:
        task = Task.from_dict(
            tid,
            {
                "name": name,
                "phase": phase,
                "duration_days": duration,
                "start_date": start,
                "end_date": end,
                "assigned_to": assigned_to,
                "auto_progress_enabled": not manual,
                "depends_on": deps,
            },
        )
    except PlanError as e:
        _fail(e)

    tasks[tid] = task
    store.save(project, tasks)
    console.print(f"[green]Added '{name}' as {tid}[/green]")


@app.command()
def update(
    task_id: str,
    name: Annotated[Optional[str], typer.Option(help="New task name")] = None,
    phase: Annotated[Optional[str], typer.Option(help="New phase")] = None,
    duration: Annotated[Optional[int], typer.Option(help="New duration in days")] = None,
    start: Annotated[Optional[str], typer.Option(help="New start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option(help="New end date (YYYY-MM-DD)")] = None,
    assigned_to: Annotated[Optional[str], typer.Option("--assign", help="User id of the assignee")] = None,
    deps: Annotated[Optional[list[str]], typer.Option("--deps", help="Replace the whole dependency list")] = None,
    status: Annotated[Optional[str], typer.Option(help="Stored status, or 'derived' to clear it")] = None,
) -> None:
    """Update fields of an existing task."""
    store = _get_store()
    project, tasks = store.load()
    t = _require_task(tasks, task_id)

    record = t.to_dict()
    if name is not None:
        record["name"] = name
    if phase is not None:
        record["phase"] = phase
    if duration is not None:
        record["duration_days"] = duration
    if start is not None:
        record["start_date"] = start
    if end is not None:
        record["end_date"] = end
    if assigned_to is not None:
        record["assigned_to"] = assigned_to
    if status is not None:
        if status != "derived" and status not in {s.value for s in TaskStatus}:
            valid = ", ".join(s.value for s in TaskStatus)
            console.print(f"[red]Invalid status '{status}'. Use: {valid}, derived[/red]")
            raise typer.Exit(1)
        record["status"] = None if status == "derived" else status

    try:
        if deps is not None:
            new_deps = _expand_ids(deps)
            graph = TaskGraph.from_tasks(tasks)
            graph.set_dependencies(task_id, new_deps)
            record["depends_on"] = new_deps
        tasks[task_id] = Task.from_dict(task_id, record)
    except PlanError as e:
        _fail(e)

    store.save(project, tasks)
    console.print(f"[green]Updated {task_id}.[/green]")


@app.command()
def delete(task_id: str) -> None:
    """Delete a task and remove it from dependency lists."""
    store = _get_store()
    project, tasks = store.load()
    _require_task(tasks, task_id)

    del tasks[task_id]
    for t in tasks.values():
        if task_id in t.depends_on:
            t.depends_on.remove(task_id)

    store.save(project, tasks)
    console.print(f"[green]Deleted {task_id}.[/green]")


@app.command()
def depend(task_id: str, depends_on: str) -> None:
    """Make TASK_ID depend on DEPENDS_ON (rejected if it would form a cycle)."""
    store = _get_store()
    project, tasks = store.load()
    t = _require_task(tasks, task_id)
    _require_task(tasks, depends_on)

    graph = TaskGraph.from_tasks(tasks)
    try:
        graph.add_dependency(task_id, depends_on)
    except PlanError as e:
        _fail(e)

    if depends_on not in t.depends_on:
        t.depends_on.append(depends_on)
    store.save(project, tasks)
    console.print(f"[green]{task_id} now depends on {depends_on}.[/green]")


@app.command()
def undepend(task_id: str, depends_on: str) -> None:
    """Remove the dependency of TASK_ID on DEPENDS_ON."""
    store = _get_store()
    project, tasks = store.load()
    t = _require_task(tasks, task_id)

    if depends_on in t.depends_on:
        t.depends_on.remove(depends_on)
        store.save(project, tasks)
        console.print(f"[green]{task_id} no longer depends on {depends_on}.[/green]")
    else:
        console.print(f"[yellow]{task_id} does not depend on {depends_on}, skipping.[/yellow]")


@app.command("list")
def list_tasks(
    phase: Annotated[Optional[str], typer.Option("--phase", "-p", help="Filter by phase")] = None,
    at_risk: Annotated[bool, typer.Option("--at-risk", help="Only tasks that are at risk")] = False,
) -> None:
    """List all tasks with their progress and status."""
    store = _get_store()
    project, tasks = store.load()
    if not tasks:
        console.print("No tasks found.")
        return

    now = _now()
    dates = _schedule_dates(tasks, project)
    filtered = list(tasks.values())
    if phase:
        filtered = [t for t in filtered if t.phase.lower() == phase.lower()]
    if at_risk:
        filtered = [t for t in filtered if status_label(t, now, dates.get(t.id)) == "At Risk"]
    if not filtered:
        console.print("No tasks match the filter.")
        return

    table = Table(title="Tasks")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Phase")
    table.add_column("Dates / Duration")
    table.add_column("Depends On")
    table.add_column("Progress")
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Days Left")

    for t in filtered:
        label = status_label(t, now, dates.get(t.id))
        style = {"At Risk": "yellow", "Overdue": "bold red", "Completed": "green"}.get(label)
        if t.is_date_based:
            span = f"{_fmt(t.start_date)} - {_fmt(t.end_date)}"
        else:
            span = f"{t.duration_days}d"
        remaining = days_remaining(t, now)
        table.add_row(
            t.id,
            t.name,
            t.phase,
            span,
            ", ".join(t.depends_on) or "-",
            f"{effective_progress(t, now)}%",
            "auto" if is_auto_mode(t) else "manual",
            label,
            "-" if remaining is None else str(remaining),
            style=style,
        )

    console.print(table)


@app.command()
def show(task_id: str) -> None:
    """Show all details for a single task."""
    store = _get_store()
    project, tasks = store.load()
    t = _require_task(tasks, task_id)
    now = _now()
    dates = _schedule_dates(tasks, project)

    console.print(f"\n[bold]{t.id}[/bold]  {t.name}")
    console.print(f"  Phase:      {t.phase}")
    console.print(f"  Status:     {status_label(t, now, dates.get(t.id))}")
    console.print(f"  Progress:   {effective_progress(t, now)}% ({'auto' if is_auto_mode(t) else 'manual'})")
    if t.is_date_based:
        console.print(f"  Dates:      {_fmt(t.start_date)} - {_fmt(t.end_date)}")
        console.print(f"  Expected:   {auto_progress(t, now)}% by the calendar")
    else:
        console.print(f"  Duration:   {t.duration_days} day(s)")
    if t.assigned_to:
        console.print(f"  Assigned:   {t.assigned_to}")
    if t.completed_at:
        console.print(f"  Completed:  {_fmt(t.completed_at)}")
    console.print(f"  Depends on: {', '.join(t.depends_on) or 'none'}")

    dependents = [tid for tid, task in tasks.items() if t.id in task.depends_on]
    console.print(f"  Blocks:     {', '.join(dependents) or 'none'}")

    if t.description:
        console.print("\n  [dim]-- Description --[/dim]")
        for line in t.description.splitlines():
            console.print(f"  {line}")

    if t.progress_history:
        console.print("\n  [dim]-- Progress history --[/dim]")
        for entry in t.progress_history:
            by = f" by {entry.updated_by}" if entry.updated_by else ""
            note = f"  {entry.notes}" if entry.notes else ""
            console.print(f"  {_fmt(entry.recorded_at)}  {entry.progress:>3}%{by}{note}")

    if project:
        try:
            scheduled = calculate_schedule(tasks, project)
        except PlanError as e:
            console.print(f"\n  [yellow]Schedule unavailable: {e}[/yellow]")
        else:
            for s in scheduled:
                if s.task.id == task_id:
                    console.print("\n  [dim]-- Scheduled --[/dim]")
                    console.print(f"  Start:    {_fmt(s.start)}")
                    console.print(f"  End:      {_fmt(s.end)}")
                    console.print(f"  Duration: {s.duration_days} day(s)")
                    break

    console.print()


@app.command()
def order() -> None:
    """Print task ids in dependency order."""
    store = _get_store()
    _, tasks = store.load()
    graph = TaskGraph.from_tasks(tasks)
    try:
        ids = list(graph.topological_order())
    except PlanError as e:
        _fail(e)
    for position, tid in enumerate(ids, 1):
        console.print(f"{position:>3}. {tid}  {tasks[tid].name}")


@app.command()
def schedule(
    csv: Annotated[Optional[str], typer.Option("--csv", help="Export schedule to CSV file")] = None,
) -> None:
    """Show the effective start and end date of every task."""
    store = _get_store()
    project, tasks = store.load()
    project = _require_project(project)
    try:
        scheduled = calculate_schedule(tasks, project)
    except PlanError as e:
        _fail(e)

    if csv:
        import csv as csv_mod

        with Path(csv).open("w", newline="") as f:
            writer = csv_mod.writer(f)
            writer.writerow(["ID", "Name", "Phase", "Mode", "Start", "End", "Days"])
            for s in scheduled:
                writer.writerow([
                    s.task.id,
                    s.task.name,
                    s.task.phase,
                    "dates" if s.date_based else "duration",
                    _fmt(s.start),
                    _fmt(s.end),
                    s.duration_days,
                ])
        console.print(f"[green]Exported {len(scheduled)} tasks to {csv}[/green]")
        return

    table = Table(title=f"Schedule: {project.name}")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Phase")
    table.add_column("Mode")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Days")
    for s in scheduled:
        table.add_row(
            s.task.id,
            s.task.name,
            s.task.phase,
            "dates" if s.date_based else "duration",
            _fmt(s.start),
            _fmt(s.end),
            str(s.duration_days),
        )
    console.print(table)

    if scheduled:
        finish = max(s.end for s in scheduled)
        console.print(f"Projected completion: [bold]{_fmt(finish)}[/bold]")
        if project.planned_completion_date and finish > project.planned_completion_date:
            late = (finish - project.planned_completion_date).days
            console.print(f"[bold red]{late} day(s) past the planned completion date[/bold red]")


@app.command()
def timeline(
    as_json: Annotated[bool, typer.Option("--json", help="Print the timeline as JSON")] = False,
) -> None:
    """Show the Gantt-style timeline grouped by phase."""
    store = _get_store()
    project, tasks = store.load()
    project = _require_project(project)
    view = project_timeline(tasks, project, _now())

    if as_json:
        console.print_json(json.dumps(view.to_dict()))
        return

    for phase, bars in group_by_phase(view).items():
        table = Table(title=phase)
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Start")
        table.add_column("End")
        table.add_column("Progress")
        table.add_column("State")
        table.add_column("After")
        for bar in bars:
            state = f"{bar.state.value} (at risk)" if bar.at_risk else bar.state.value
            table.add_row(
                bar.task_id,
                bar.name,
                _fmt(bar.start),
                _fmt(bar.end),
                f"{bar.progress}%",
                state,
                ", ".join(bar.dependencies) or "-",
                style=STATE_STYLES[bar.state],
            )
        console.print(table)

    for warning in view.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    for group in view.cycles:
        console.print(f"[red]Circular dependency among: {', '.join(group)}[/red]")


@app.command()
def progress(
    task_id: str,
    value: Annotated[int, typer.Argument(help="Progress percentage (0-100)")],
    notes: Annotated[Optional[str], typer.Option("--notes", "-n", help="Note kept with this update")] = None,
    updated_by: Annotated[Optional[str], typer.Option("--by", help="User id recording the update")] = None,
) -> None:
    """Record manual progress for a task."""
    store = _get_store()
    project, tasks = store.load()
    t = _require_task(tasks, task_id)
    try:
        tasks[task_id] = record_progress(t, value, _now(), notes=notes, updated_by=updated_by)
    except PlanError as e:
        _fail(e)
    store.save(project, tasks)
    console.print(f"[green]{task_id} progress set to {value}%.[/green]")


@app.command()
def auto(
    task_id: str,
    enabled: Annotated[bool, typer.Option("--on/--off", help="Switch automatic progress on or off")] = True,
) -> None:
    """Switch a task between automatic (date-based) and manual progress."""
    store = _get_store()
    project, tasks = store.load()
    t = _require_task(tasks, task_id)
    try:
        updated = set_auto_progress(t, enabled, _now())
    except PlanError as e:
        _fail(e)
    tasks[task_id] = updated
    store.save(project, tasks)
    if enabled:
        console.print(f"[green]{task_id} uses automatic progress ({updated.progress}%).[/green]")
    else:
        console.print(f"[green]{task_id} uses manual progress.[/green]")


@app.command("migrate-dates")
def migrate_dates() -> None:
    """Give every duration-based task explicit start and end dates."""
    store = _get_store()
    project, tasks = store.load()
    project = _require_project(project)
    try:
        migrated = migrate_to_dates(tasks, project)
    except PlanError as e:
        _fail(e)
    changed = [tid for tid in tasks if not tasks[tid].is_date_based]
    store.save(project, migrated)
    if changed:
        console.print(f"[green]Migrated {len(changed)} task(s): {', '.join(changed)}[/green]")
    else:
        console.print("[dim]Nothing to migrate.[/dim]")


@app.command()
def check() -> None:
    """Report dependency cycles and references to unknown tasks."""
    store = _get_store()
    _, tasks = store.load()
    graph = TaskGraph.from_tasks(tasks)
    problems = 0
    for ref in graph.dangling:
        console.print(f"[yellow]{ref}[/yellow]")
        problems += 1
    for group in graph.cycles():
        console.print(f"[red]Circular dependency among: {', '.join(group)}[/red]")
        problems += 1
    if problems:
        raise typer.Exit(1)
    console.print("[green]Dependencies OK.[/green]")


if __name__ == "__main__":
    app()
