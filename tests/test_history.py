"""Tests for the workflow run history store."""

from datetime import datetime, timedelta

import pytest

from vcenter_migrator.core.history import RunHistoryStore
from vcenter_migrator.models.enums import ItemType, RunState
from vcenter_migrator.models.workflow import ItemOutcome, WorkflowItem, WorkflowRun


@pytest.fixture
async def store(tmp_path):
    store = RunHistoryStore(tmp_path / "data")
    await store.initialize()
    return store


def finished_run(workflow: str = "roles", started_at: datetime | None = None, **kwargs) -> WorkflowRun:
    items = [WorkflowItem(name="Custom1", type=ItemType.ROLE), WorkflowItem(name="Admin", type=ItemType.ROLE)]
    run = WorkflowRun(workflow=workflow, items=items, **kwargs)
    if started_at is not None:
        run.started_at = started_at
    run.record(items[0], ItemOutcome.migrated("Successfully migrated role Custom1"))
    run.record(items[1], ItemOutcome.skipped("Role 'Admin' already exists"))
    run.state = RunState.COMPLETED
    run.ended_at = run.started_at + timedelta(seconds=3)
    run.freeze()
    return run


async def test_creates_data_dir(tmp_path):
    store = RunHistoryStore(tmp_path / "nested" / "data")
    assert store.data_dir.is_dir()
    assert store.db_path.name == "run_history.db"


async def test_record_and_get(store):
    run = finished_run(validate_only=True)

    await store.record(run)
    record = await store.get_run(run.run_id)

    assert record.workflow == "roles"
    assert record.state == "Completed"
    assert record.validate_only is True
    assert record.success_count == 1
    assert record.skipped_count == 1
    assert [item["name"] for item in record.items] == ["Custom1", "Admin"]
    assert record.items[1]["message"] == "Role 'Admin' already exists"


async def test_unfinished_run_is_rejected(store):
    with pytest.raises(ValueError):
        await store.record(WorkflowRun(workflow="roles"))


async def test_get_unknown_run(store):
    assert await store.get_run("missing") is None


async def test_list_runs_newest_first(store):
    base = datetime(2024, 5, 1, 8, 0)
    older = finished_run(started_at=base)
    newer = finished_run(workflow="folders", started_at=base + timedelta(hours=1))
    await store.record(older)
    await store.record(newer)

    records = await store.list_runs()

    assert [r.run_id for r in records] == [newer.run_id, older.run_id]
    assert records[0].items == []
    assert [r.workflow for r in await store.list_runs(workflow="roles")] == ["roles"]
    assert len(await store.list_runs(limit=1)) == 1


async def test_record_is_idempotent(store):
    run = finished_run()
    await store.record(run)
    await store.record(run)

    assert len(await store.list_runs()) == 1
