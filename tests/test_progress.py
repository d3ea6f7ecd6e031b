from datetime import datetime

import pytest

from buildplan.errors import AutomaticModeError, InvalidRangeError
from buildplan.models import Task, TaskStatus
from buildplan.progress import (
    RISK_THRESHOLD,
    auto_progress,
    days_remaining,
    derive_status,
    effective_progress,
    is_at_risk,
    record_progress,
    set_auto_progress,
    status_label,
)

START = datetime(2024, 1, 1)
END = datetime(2024, 1, 11)


def _dated(**kwargs):
    return Task("T-1", "Framing", start_date=START, end_date=END, **kwargs)


def test_auto_progress_is_linear_over_the_span():
    t = _dated()
    assert auto_progress(t, datetime(2024, 1, 6)) == 50
    assert auto_progress(t, datetime(2023, 12, 25)) == 0
    assert auto_progress(t, datetime(2024, 1, 20)) == 100
    assert auto_progress(t, END) == 100
    assert auto_progress(t, datetime(2024, 1, 2, 1)) == 10


def test_auto_progress_zero_length_span():
    t = Task("T-1", "Pour", start_date=START, end_date=START)
    assert auto_progress(t, datetime(2023, 12, 31)) == 0
    assert auto_progress(t, START) == 100


def test_auto_progress_needs_dates():
    with pytest.raises(InvalidRangeError):
        auto_progress(Task("T-1", "Legacy", duration_days=3), START)


def test_effective_progress_follows_mode():
    now = datetime(2024, 1, 6)
    assert effective_progress(_dated(progress=20), now) == 50
    assert effective_progress(_dated(progress=20, auto_progress_enabled=False), now) == 20
    # legacy tasks have no dates to compute from
    assert effective_progress(Task("T-2", "Legacy", duration_days=3, progress=35), now) == 35


def test_manual_write_rejected_in_auto_mode():
    with pytest.raises(AutomaticModeError) as exc:
        record_progress(_dated(), 30, datetime(2024, 1, 6))
    assert exc.value.task_ids == ["T-1"]


def test_record_progress_in_manual_mode():
    t = _dated(auto_progress_enabled=False)
    updated = record_progress(t, 30, datetime(2024, 1, 6))
    assert updated.progress == 30
    assert not updated.is_completed
    assert t.progress == 0

    done = record_progress(updated, 100, datetime(2024, 1, 9))
    assert done.is_completed


def test_record_progress_out_of_range():
    t = _dated(auto_progress_enabled=False)
    with pytest.raises(InvalidRangeError):
        record_progress(t, 101, START)
    with pytest.raises(InvalidRangeError):
        record_progress(t, -1, START)


def test_enabling_auto_progress_snaps_to_computed_value():
    t = _dated(progress=10, auto_progress_enabled=False)
    switched = set_auto_progress(t, True, datetime(2024, 1, 6))
    assert switched.auto_progress_enabled
    assert switched.progress == 50

    # later reads are recomputed, not re-stored
    assert effective_progress(switched, datetime(2024, 1, 8)) == 70
    assert switched.progress == 50


def test_disabling_auto_progress_keeps_stored_value():
    t = _dated(progress=40)
    switched = set_auto_progress(t, False, datetime(2024, 1, 6))
    assert not switched.auto_progress_enabled
    assert effective_progress(switched, datetime(2024, 1, 6)) == 40


def test_enabling_auto_progress_without_dates_fails():
    t = Task("T-1", "Legacy", duration_days=3, auto_progress_enabled=False)
    with pytest.raises(InvalidRangeError):
        set_auto_progress(t, True, START)


def test_at_risk_when_lagging_behind_dates():
    now = datetime(2024, 1, 7)  # 60% of the span
    assert auto_progress(_dated(), now) == 60
    assert is_at_risk(_dated(progress=40), now)
    assert not is_at_risk(_dated(progress=55), now)
    assert not is_at_risk(_dated(progress=60 - RISK_THRESHOLD), now)
    assert not is_at_risk(_dated(progress=40, auto_progress_enabled=False), now)
    assert not is_at_risk(_dated(progress=40, status=TaskStatus.BLOCKED), now)


def test_derive_status():
    assert derive_status(_dated(), datetime(2023, 12, 31)) == TaskStatus.NOT_STARTED
    assert derive_status(_dated(), datetime(2024, 1, 5)) == TaskStatus.IN_PROGRESS
    assert derive_status(_dated(), datetime(2024, 1, 12)) == TaskStatus.COMPLETED

    manual = _dated(progress=30, auto_progress_enabled=False)
    assert derive_status(manual, datetime(2024, 1, 12)) == TaskStatus.OVERDUE
    assert derive_status(_dated(is_completed=True, auto_progress_enabled=False), START) == TaskStatus.COMPLETED
    assert derive_status(_dated(status=TaskStatus.BLOCKED), datetime(2024, 1, 5)) == TaskStatus.BLOCKED


def test_derive_status_for_legacy_tasks():
    assert derive_status(Task("L", "Legacy", duration_days=3), START) == TaskStatus.NOT_STARTED
    assert derive_status(Task("L", "Legacy", duration_days=3, progress=20), START) == TaskStatus.IN_PROGRESS
    assert derive_status(Task("L", "Legacy", duration_days=3, progress=100), START) == TaskStatus.COMPLETED


def test_days_remaining():
    assert days_remaining(_dated(), datetime(2024, 1, 6, 15)) == 5
    assert days_remaining(_dated(), datetime(2024, 1, 13)) == -2
    assert days_remaining(Task("L", "Legacy", duration_days=3), START) is None


def test_status_label():
    now = datetime(2024, 1, 7)
    assert status_label(_dated(progress=40), now) == "At Risk"
    assert status_label(_dated(progress=55), now) == "On Track"
    manual = _dated(progress=30, auto_progress_enabled=False)
    assert status_label(manual, datetime(2024, 1, 12)) == "Overdue"


def test_lowering_progress_reopens_a_completed_task():
    t = _dated(auto_progress_enabled=False)
    done = record_progress(t, 100, datetime(2024, 1, 9))
    assert done.is_completed
    assert done.completed_at == datetime(2024, 1, 9)

    reopened = record_progress(done, 30, datetime(2024, 1, 10))
    assert not reopened.is_completed
    assert reopened.completed_at == datetime(2024, 1, 9)
    assert derive_status(reopened, datetime(2024, 1, 10)) == TaskStatus.IN_PROGRESS
    assert derive_status(reopened, datetime(2024, 1, 12)) == TaskStatus.OVERDUE


def test_record_progress_appends_history():
    t = _dated(auto_progress_enabled=False)
    t = record_progress(t, 20, datetime(2024, 1, 3), notes="Sill plates down", updated_by="u-3")
    t = record_progress(t, 45, datetime(2024, 1, 5))

    assert [e.progress for e in t.progress_history] == [20, 45]
    first = t.progress_history[0]
    assert first.recorded_at == datetime(2024, 1, 3)
    assert first.notes == "Sill plates down"
    assert first.updated_by == "u-3"
    assert t.progress_history[1].notes is None


def test_rejected_write_leaves_history_alone():
    t = _dated(auto_progress_enabled=False)
    with pytest.raises(InvalidRangeError):
        record_progress(t, 101, START)
    assert t.progress_history == []


def test_derive_status_for_legacy_tasks_uses_resolved_dates():
    legacy = Task("L", "Legacy", duration_days=2)
    dates = (datetime(2024, 1, 1), datetime(2024, 1, 3))
    assert derive_status(legacy, datetime(2024, 2, 1), dates) == TaskStatus.OVERDUE
    assert derive_status(legacy, datetime(2024, 1, 2), dates) == TaskStatus.IN_PROGRESS
    assert derive_status(legacy, datetime(2023, 12, 1), dates) == TaskStatus.NOT_STARTED
    assert status_label(legacy, datetime(2024, 2, 1), dates) == "Overdue"

    finished = Task("L", "Legacy", duration_days=2, is_completed=True)
    assert derive_status(finished, datetime(2024, 2, 1), dates) == TaskStatus.COMPLETED
