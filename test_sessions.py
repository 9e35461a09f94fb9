"""
Tests for task report persistence.
"""

import os

from agent import TaskReport
from agent.governor import GovernorState
from operations import HistoryEntry, Operation, OperationKind, OperationResult
from sessions import TaskStore


def _report(task_id="abc123", message="Abstract added"):
    op = Operation(kind=OperationKind.READ, action="read_file", parameters={"file_path": "/main.tex"})
    result = OperationResult(success=True, kind=op.kind, action=op.action, payload={"content": "x"})
    return TaskReport(
        task_id=task_id,
        task="Add an abstract",
        state=GovernorState.COMPLETED,
        reason="completed",
        message=message,
        total_operations=1,
        read_operations=1,
        iteration_count=2,
        history=[HistoryEntry(sequence_number=1, operation=op, result=result)],
    )


def test_save_and_load_round_trip(tmp_path):
    store = TaskStore(str(tmp_path / "My Thesis"), base_dir=str(tmp_path / "store"))
    path = store.save(_report())

    assert os.path.exists(path)
    assert os.path.basename(os.path.dirname(path)).startswith("my-thesis-")
    record = store.load("abc123")
    assert record.task == "Add an abstract"
    assert record.state == "completed"
    assert record.operation_count == 1
    assert record.report["history"][0]["operation"]["action"] == "read_file"
    assert record.summary.startswith("Task completed: Abstract added")


def test_load_missing_task_returns_none(tmp_path):
    store = TaskStore(str(tmp_path), base_dir=str(tmp_path / "store"))
    assert store.load("nope") is None


def test_list_tasks_skips_corrupt_files(tmp_path):
    store = TaskStore(str(tmp_path), base_dir=str(tmp_path / "store"))
    store.save(_report("one"))
    store.save(_report("two"))
    with open(os.path.join(store.project_dir, "broken.json"), "w") as f:
        f.write("{not json")

    records = store.list_tasks()
    assert {r.task_id for r in records} == {"one", "two"}
    assert records[0].saved_at >= records[1].saved_at


def test_delete(tmp_path):
    store = TaskStore(str(tmp_path), base_dir=str(tmp_path / "store"))
    store.save(_report())
    assert store.delete("abc123")
    assert not store.delete("abc123")
    assert store.list_tasks() == []


def test_projects_are_kept_apart(tmp_path):
    base = str(tmp_path / "store")
    a = TaskStore(str(tmp_path / "a"), base_dir=base)
    b = TaskStore(str(tmp_path / "b"), base_dir=base)
    a.save(_report())
    assert b.load("abc123") is None
