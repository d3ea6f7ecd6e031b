"""JSON snapshot persistence for a project and its tasks."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from buildplan.models import Project, Task, unwrap_payload

logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = "buildplan.json"
DB_ENV_VAR = "BUILDPLAN_DB"


def default_db_path() -> Path:
    return Path(os.environ.get(DB_ENV_VAR, DEFAULT_DB_FILE))


class Store:
    """Reads and writes the project snapshot (JSON file)."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path is not None else default_db_path()

    def load(self) -> tuple[Project | None, dict[str, Task]]:
        """Return (project_or_None, {task_id: Task})."""
        if not self.db_path.exists():
            return None, {}

        raw = unwrap_payload(json.loads(self.db_path.read_text()))

        project = None
        if raw.get("project"):
            project = Project.from_dict(raw["project"])

        # Tasks may be stored keyed by id or as the API's list of records
        task_source = raw.get("tasks", {})
        if isinstance(task_source, list):
            task_source = {str(t["id"]): t for t in task_source}

        tasks: dict[str, Task] = {}
        for tid, tdata in task_source.items():
            tasks[tid] = Task.from_dict(tid, tdata)

        logger.debug("Loaded %d tasks from %s", len(tasks), self.db_path)
        return project, tasks

    def save(self, project: Project | None, tasks: dict[str, Task]) -> None:
        """Persist project + tasks to disk."""
        raw: dict = {}
        if project is not None:
            raw["project"] = project.to_dict()
        raw["tasks"] = {tid: t.to_dict() for tid, t in tasks.items()}
        self.db_path.write_text(json.dumps(raw, indent=4))

    def generate_id(self, tasks: dict[str, Task]) -> str:
        """Generate the next T-N id."""
        existing = [
            int(k.split("-")[1])
            for k in tasks
            if k.startswith("T-") and k.split("-")[1].isdigit()
        ]
        next_num = max(existing, default=0) + 1
        return f"T-{next_num}"
