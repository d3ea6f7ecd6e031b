"""Error taxonomy for the planning core.

Every error the core raises derives from :class:`PlanError` and carries the
ids of the tasks involved, so a host can turn it into a message without
parsing strings.
"""

from __future__ import annotations

from dataclasses import dataclass


class PlanError(Exception):
    """Base class for recoverable planning errors."""

    def __init__(self, message: str, task_ids: list[str] | None = None):
        super().__init__(message)
        self.task_ids: list[str] = list(task_ids or [])


class CycleError(PlanError):
    """A dependency edge set is (or would become) cyclic."""


class AutomaticModeError(PlanError):
    """Manual progress was written while auto-progress is enabled."""


class InvalidRangeError(PlanError):
    """End precedes start, progress is outside 0..100, or a duration is unusable."""


class UnknownTaskError(PlanError, KeyError):
    """A task id is not part of the project."""

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


@dataclass(frozen=True)
class DanglingReference:
    """Soft error: *task_id* depends on *missing_id*, which is not in the snapshot."""

    task_id: str
    missing_id: str

    def to_dict(self) -> dict:
        return {
            "kind": "dangling_reference",
            "task_id": self.task_id,
            "missing_id": self.missing_id,
        }

    def __str__(self) -> str:
        return f"Task {self.task_id} depends on unknown task {self.missing_id}"
