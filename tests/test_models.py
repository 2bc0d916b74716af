"""Tests for connection, inventory and workflow models."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from vcenter_migrator.models.connection import CommandRequest, ConnectionHandle, ConnectionInfo
from vcenter_migrator.models.enums import (
    CommandOutcome,
    ConnectionSide,
    ItemStatus,
    ItemType,
    RunState,
)
from vcenter_migrator.models.inventory import (
    ClusterRecord,
    DatastoreRecord,
    HostRecord,
    InventorySnapshot,
    RoleRecord,
    VirtualMachineRecord,
)
from vcenter_migrator.models.workflow import FrozenRunError, ItemOutcome, WorkflowItem, WorkflowRun


class TestConnectionModels:
    def test_handle_matches_ignoring_case(self):
        handle = ConnectionHandle(ConnectionSide.SOURCE, "VC01.lab.local", "Admin@vsphere.local", "s1")
        assert handle.matches("vc01.LAB.local", "admin@VSPHERE.local")
        assert not handle.matches("vc02.lab.local", "admin@vsphere.local")

    def test_handle_checked_returns_copy(self):
        handle = ConnectionHandle(ConnectionSide.TARGET, "vc02", "admin", "s2")
        when = datetime(2024, 5, 1, 12, 0)

        checked = handle.checked(when)

        assert checked is not handle
        assert checked.last_health_check == when
        assert handle.last_health_check is None
        assert checked.session_id == "s2"

    def test_handle_is_immutable(self):
        handle = ConnectionHandle(ConnectionSide.SOURCE, "vc01", "admin")
        with pytest.raises(AttributeError):
            handle.session_id = "other"

    def test_connection_info_unpacks(self):
        connected, session_id, version = ConnectionInfo(True, "abc", "8.0.2")
        assert (connected, session_id, version) == (True, "abc", "8.0.2")

    def test_side_other(self):
        assert ConnectionSide.SOURCE.other is ConnectionSide.TARGET
        assert ConnectionSide.TARGET.other is ConnectionSide.SOURCE


class TestCommandRequest:
    def test_parameters_are_read_only(self):
        params = {"Name": "x"}
        request = CommandRequest(ConnectionSide.SOURCE, "Get-VM", params)

        params["Name"] = "changed"

        assert request.parameters["Name"] == "x"
        with pytest.raises(TypeError):
            request.parameters["Name"] = "y"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            CommandRequest(ConnectionSide.SOURCE, "Get-VM", timeout=0)

    def test_display_name(self):
        assert CommandRequest(ConnectionSide.SOURCE, "Get-VM\n| Select Name").display_name == "Get-VM"
        assert CommandRequest(ConnectionSide.SOURCE, "Get-VM", label="list vms").display_name == "list vms"


class TestInventoryRecords:
    def test_pascal_case_aliases(self):
        host = HostRecord.model_validate(
            {"Name": "esx01", "Id": "HostSystem-host-1", "CpuCores": 24, "MemoryGb": 512.5}
        )
        assert host.cpu_cores == 24
        assert host.memory_gb == 512.5

    def test_null_properties_use_defaults(self):
        role = RoleRecord.model_validate({"Name": "Custom1", "Id": None, "Privileges": None})
        assert role.id == ""
        assert role.privileges == ()

    def test_name_is_required(self):
        with pytest.raises(ValidationError):
            HostRecord.model_validate({"Id": "HostSystem-host-1"})

    def test_datastore_used_space(self):
        datastore = DatastoreRecord(name="ds1", capacity_gb=100, free_space_gb=120)
        assert datastore.used_gb == 0.0


class TestInventorySnapshot:
    def make_snapshot(self, **kwargs) -> InventorySnapshot:
        return InventorySnapshot(
            side=ConnectionSide.SOURCE,
            clusters=(
                ClusterRecord(name="Prod", datacenter_name="DC1", host_ids=("h-1",)),
                ClusterRecord(name="Dev", datacenter_name="DC2"),
            ),
            hosts=(
                HostRecord(name="esx01", id="h-1"),
                HostRecord(name="esx02", id="h-2", cluster_name="prod"),
                HostRecord(name="esx03", id="h-3", cluster_name="Dev"),
            ),
            **kwargs,
        )

    def test_hosts_in_cluster_by_reference(self):
        snapshot = self.make_snapshot()
        assert [h.name for h in snapshot.hosts_in_cluster("Prod")] == ["esx01", "esx02"]
        assert snapshot.hosts_in_cluster("Missing") == []

    def test_vms_in_cluster(self):
        snapshot = self.make_snapshot(
            virtual_machines=(
                VirtualMachineRecord(name="web01", cluster_name="Prod"),
                VirtualMachineRecord(name="lab01", cluster_name="Dev"),
            )
        )
        assert [vm.name for vm in snapshot.vms_in_cluster("prod")] == ["web01"]

    def test_clusters_in_datacenter(self):
        snapshot = self.make_snapshot()
        assert [c.name for c in snapshot.clusters_in_datacenter("dc2")] == ["Dev"]

    def test_find(self):
        snapshot = self.make_snapshot()
        assert snapshot.find("hosts", "ESX03").id == "h-3"
        assert snapshot.find("hosts", "esx99") is None

    def test_snapshot_is_frozen(self):
        snapshot = self.make_snapshot()
        with pytest.raises(ValidationError):
            snapshot.cycle = 5

    def test_staleness(self):
        fresh = self.make_snapshot()
        old = self.make_snapshot(captured_at=datetime.now() - timedelta(hours=1))
        assert not fresh.is_stale(timedelta(minutes=30))
        assert old.is_stale(timedelta(minutes=30))


class TestWorkflowRun:
    def make_run(self, count: int = 3) -> WorkflowRun:
        items = [WorkflowItem(name=f"R{n}", type=ItemType.ROLE, source_id=f"id-{n}") for n in range(count)]
        return WorkflowRun(workflow="roles", items=items)

    def test_record_updates_counters(self):
        run = self.make_run()

        run.record(run.items[0], ItemOutcome.migrated("done", target_id="Role-9"))
        run.record(run.items[1], ItemOutcome.skipped("already exists"))
        run.record(run.items[2], ItemOutcome.failed("denied"))

        assert (run.success_count, run.skipped_count, run.failure_count) == (1, 1, 1)
        assert run.items[0].status is ItemStatus.MIGRATED
        assert run.items[0].target_id == "Role-9"
        assert run.items[2].last_error == "denied"
        assert run.progress == 1.0
        assert run.summary() == "1 migrated, 1 skipped, 1 failed"

    def test_failed_without_message(self):
        run = self.make_run(1)
        run.record(run.items[0], ItemOutcome(CommandOutcome.FAILED))
        assert run.items[0].last_error == "Unknown error"

    def test_progress(self):
        run = self.make_run(4)
        run.record(run.items[0], ItemOutcome.migrated())
        assert run.progress == 0.25

        empty = WorkflowRun(workflow="roles")
        assert empty.progress == 0.0
        empty.state = RunState.COMPLETED
        assert empty.progress == 1.0

    def test_item_key(self):
        assert WorkflowItem(name="Admin", type=ItemType.ROLE, source_id="-1").key == "-1"
        assert WorkflowItem(name="Admin", type=ItemType.ROLE).key == "Admin"

    def test_freeze(self):
        run = self.make_run(2)
        run.ended_at = datetime.now()
        run.freeze()

        assert run.frozen
        assert all(item.frozen for item in run.items)
        with pytest.raises(FrozenRunError):
            run.error = "late"
        with pytest.raises(FrozenRunError):
            run.items[1].message = "late"
        with pytest.raises(FrozenRunError):
            run.record(run.items[0], ItemOutcome.migrated())
        assert run.duration_seconds is not None

    def test_to_dict(self):
        run = self.make_run(1)
        run.record(run.items[0], ItemOutcome.skipped("exists"))

        data = run.to_dict()

        assert data["workflow"] == "roles"
        assert data["state"] == "NotStarted"
        assert data["summary"] == "0 migrated, 1 skipped, 0 failed"
        assert data["items"][0]["status"] == "Skipped"
        assert data["items"][0]["type"] == "Role"
        assert isinstance(data["items"][0]["ended_at"], str)
        assert "_frozen" not in data["items"][0]
