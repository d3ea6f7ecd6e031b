from datetime import datetime

import pytest

from buildplan.errors import InvalidRangeError
from buildplan.models import (
    ProgressEntry,
    Project,
    Task,
    TaskStatus,
    parse_datetime,
    tasks_from_records,
    unwrap_payload,
)
from buildplan.persistence import Store


def test_task_serialization():
    t = Task(
        id="T-1",
        name="Footings",
        phase="Foundation",
        start_date=datetime(2024, 1, 8),
        end_date=datetime(2024, 1, 20),
        status=TaskStatus.BLOCKED,
        progress=15,
        auto_progress_enabled=False,
        depends_on=["T-0"],
        description="Rebar inspection first",
    )
    d = t.to_dict()
    assert d["start_date"] == "2024-01-08T00:00:00"
    assert d["status"] == "blocked"
    assert d["description"] == "Rebar inspection first"

    t2 = Task.from_dict("T-1", d)
    assert t2 == t
    assert t2.is_date_based


def test_from_dict_accepts_api_field_names():
    t = Task.from_dict(
        "42",
        {
            "name": "Framing",
            "phase": None,
            "estimated_duration_days": 6,
            "progress_percentage": 25,
            "dependencies": [{"depends_on_task_id": 7}, {"depends_on_task_id": 7}, "9"],
        },
    )
    assert t.duration_days == 6
    assert t.progress == 25
    assert t.phase == "General"
    assert t.depends_on == ["7", "9"]
    assert t.status is None
    assert t.auto_progress_enabled
    assert not t.is_date_based


def test_from_dict_validates_ranges():
    with pytest.raises(InvalidRangeError):
        Task.from_dict("T-1", {"name": "x", "duration_days": 2, "progress": 120})
    with pytest.raises(InvalidRangeError):
        Task.from_dict("T-1", {"name": "x", "start_date": "2024-01-05", "end_date": "2024-01-01"})
    with pytest.raises(InvalidRangeError):
        Task.from_dict("T-1", {"name": "x"})
    with pytest.raises(InvalidRangeError):
        Task.from_dict("T-1", {"name": "x", "duration_days": 0})


def test_one_date_only_is_a_legacy_task():
    t = Task.from_dict("T-1", {"name": "x", "start_date": "2024-01-05", "duration_days": 2})
    assert not t.is_date_based


def test_unwrap_payload():
    assert unwrap_payload({"success": True, "data": {"a": 1}}) == {"a": 1}
    assert unwrap_payload({"a": 1}) == {"a": 1}


def test_tasks_from_records():
    tasks = tasks_from_records([
        {"id": 1, "name": "Dig", "duration_days": 2},
        {"id": 2, "name": "Pour", "duration_days": 1, "depends_on": [1]},
    ])
    assert list(tasks) == ["1", "2"]
    assert tasks["2"].depends_on == ["1"]


def test_project_serialization():
    p = Project(id="P-1", name="House", start_date=datetime(2024, 1, 1), skip_weekends=True)
    assert Project.from_dict(p.to_dict()) == p


def test_store_round_trip(tmp_path):
    store = Store(tmp_path / "plan.json")
    assert store.load() == (None, {})

    project = Project(id="P-1", name="House", start_date=datetime(2024, 1, 1))
    tasks = {
        "T-1": Task("T-1", "Dig", duration_days=2),
        "T-2": Task("T-2", "Pour", duration_days=1, depends_on=["T-1"]),
    }
    store.save(project, tasks)

    loaded_project, loaded_tasks = store.load()
    assert loaded_project == project
    assert loaded_tasks == tasks
    assert store.generate_id(loaded_tasks) == "T-3"


def test_store_reads_api_envelope(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(
        '{"success": true, "data": {"project": {"id": "9", "name": "Barn", '
        '"start_date": "2024-05-01"}, "tasks": [{"id": 3, "name": "Roof", '
        '"estimated_duration_days": 4}]}}'
    )
    project, tasks = Store(path).load()
    assert project.start_date == datetime(2024, 5, 1)
    assert tasks["3"].duration_days == 4


def test_store_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("BUILDPLAN_DB", str(tmp_path / "env.json"))
    assert Store().db_path == tmp_path / "env.json"


def test_parse_datetime_normalizes_to_naive_utc():
    assert parse_datetime("2024-01-01T00:00:00.000Z") == datetime(2024, 1, 1)
    assert parse_datetime("2024-01-01T02:30:00+02:00") == datetime(2024, 1, 1, 0, 30)
    assert parse_datetime("2024-01-01") == datetime(2024, 1, 1)
    assert parse_datetime(datetime(2024, 1, 1, 9)) == datetime(2024, 1, 1, 9)


def test_from_dict_normalizes_utc_dates():
    t = Task.from_dict(
        "7",
        {
            "name": "Excavation",
            "start_date": "2024-01-01T00:00:00.000Z",
            "end_date": "2024-01-05T00:00:00.000Z",
            "completed_at": "2024-01-05T12:00:00Z",
        },
    )
    assert t.start_date == datetime(2024, 1, 1)
    assert t.start_date.tzinfo is None
    assert t.end_date.tzinfo is None
    assert t.completed_at == datetime(2024, 1, 5, 12)


def test_progress_history_serialization(tmp_path):
    t = Task(
        "T-1", "Framing", duration_days=4, progress=100, auto_progress_enabled=False,
        is_completed=True, completed_at=datetime(2024, 1, 9),
        progress_history=[
            ProgressEntry(60, datetime(2024, 1, 6), notes="East wall", updated_by="u-3"),
            ProgressEntry(100, datetime(2024, 1, 9)),
        ],
    )
    d = t.to_dict()
    assert d["completed_at"] == "2024-01-09T00:00:00"
    assert d["progress_history"][0] == {
        "progress": 60,
        "recorded_at": "2024-01-06T00:00:00",
        "notes": "East wall",
        "updated_by": "u-3",
    }
    assert Task.from_dict("T-1", d) == t
    assert "progress_history" not in Task("T-2", "Pour", duration_days=1).to_dict()

    store = Store(tmp_path / "plan.json")
    store.save(None, {"T-1": t})
    assert store.load()[1]["T-1"].progress_history == t.progress_history


def test_progress_entry_accepts_api_field_names():
    entry = ProgressEntry.from_dict(
        {"progress_percentage": 40, "created_at": "2024-01-06T08:00:00.000Z", "notes": "Roof on"}
    )
    assert entry == ProgressEntry(40, datetime(2024, 1, 6, 8), notes="Roof on")
