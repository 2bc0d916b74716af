"""Per-side inventory cache built from sequential PowerCLI enumeration phases."""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated, Any, Optional

import structlog
from pydantic import BeforeValidator, TypeAdapter

from ..models.connection import CommandRequest
from ..models.enums import ConnectionSide
from ..models.inventory import (
    CategoryRecord,
    ClusterRecord,
    CustomAttributeRecord,
    DatacenterRecord,
    DatastoreRecord,
    FolderRecord,
    HostRecord,
    InventoryRecord,
    InventorySnapshot,
    PermissionRecord,
    ResourcePoolRecord,
    RoleRecord,
    TagRecord,
    VirtualMachineRecord,
    VirtualSwitchRecord,
)
from .events import EventBus, EventLevel
from .exceptions import ParseError, RefreshError
from .executor import CommandExecutor
from .powershell import SESSION_VARIABLE, json_query
from .results import Err, Ok, Result
from .settings import timeout_settings

logger = structlog.get_logger()


def _as_list(value: Any) -> Any:
    # ConvertTo-Json unwraps single-element arrays in some PowerShell versions
    if isinstance(value, dict):
        return [value]
    return value


@dataclass(frozen=True)
class InventoryPhase:
    """One enumeration step: a query producing a single snapshot collection."""

    name: str
    collection: str
    query: str
    record_type: type[InventoryRecord]

    @property
    def body(self) -> str:
        return f"$vc = {SESSION_VARIABLE}\n{self.query}"

    @property
    def adapter(self) -> TypeAdapter:
        return TypeAdapter(Annotated[list[self.record_type], BeforeValidator(_as_list)])


INVENTORY_PHASES: tuple[InventoryPhase, ...] = (
    InventoryPhase(
        "datacenters",
        "datacenters",
        json_query("Get-Datacenter -Server $vc", "Name = $_.Name; Id = $_.Id"),
        DatacenterRecord,
    ),
    InventoryPhase(
        "clusters",
        "clusters",
        json_query(
            "Get-Cluster -Server $vc",
            "Name = $_.Name; Id = $_.Id; "
            "DatacenterName = (Get-Datacenter -Cluster $_ -Server $vc).Name; "
            "HostIds = @(Get-VMHost -Location $_ -Server $vc | ForEach-Object { $_.Id }); "
            "HostNames = @(Get-VMHost -Location $_ -Server $vc | ForEach-Object { $_.Name }); "
            "HaEnabled = $_.HAEnabled; DrsEnabled = $_.DrsEnabled",
        ),
        ClusterRecord,
    ),
    InventoryPhase(
        "hosts",
        "hosts",
        json_query(
            "Get-VMHost -Server $vc",
            "Name = $_.Name; Id = $_.Id; ClusterName = $_.Parent.Name; "
            "ConnectionState = $_.ConnectionState.ToString(); Version = $_.Version; "
            "CpuCores = $_.NumCpu; MemoryGb = [math]::Round($_.MemoryTotalGB, 2)",
        ),
        HostRecord,
    ),
    InventoryPhase(
        "datastores",
        "datastores",
        json_query(
            "Get-Datastore -Server $vc",
            "Name = $_.Name; Id = $_.Id; Type = $_.Type; "
            "CapacityGb = [math]::Round($_.CapacityGB, 2); "
            "FreeSpaceGb = [math]::Round($_.FreeSpaceGB, 2)",
        ),
        DatastoreRecord,
    ),
    InventoryPhase(
        "virtual machines",
        "virtual_machines",
        json_query(
            "Get-VM -Server $vc",
            "Name = $_.Name; Id = $_.Id; PowerState = $_.PowerState.ToString(); "
            "ClusterName = $_.VMHost.Parent.Name; HostName = $_.VMHost.Name; "
            "Folder = $_.Folder.Name",
        ),
        VirtualMachineRecord,
    ),
    InventoryPhase(
        "resource pools",
        "resource_pools",
        json_query(
            "Get-ResourcePool -Server $vc | Where-Object { $_.Name -ne 'Resources' }",
            "Name = $_.Name; Id = $_.Id; Parent = $_.Parent.Name",
        ),
        ResourcePoolRecord,
    ),
    InventoryPhase(
        "virtual switches",
        "virtual_switches",
        json_query(
            "Get-VirtualSwitch -Server $vc",
            "Name = $_.Name; Id = $_.Id; Type = $_.GetType().Name; HostName = $_.VMHost.Name; "
            "PortGroups = @(Get-VirtualPortGroup -VirtualSwitch $_ | ForEach-Object { $_.Name })",
        ),
        VirtualSwitchRecord,
    ),
    InventoryPhase(
        "folders",
        "folders",
        json_query(
            "Get-Folder -Server $vc",
            "Name = $_.Name; Id = $_.Id; Type = $_.Type.ToString(); ParentId = $_.ParentId; "
            "Path = $($p = $_; $parts = @(); "
            "while ($p -and $p.Name) { $parts = @($p.Name) + $parts; $p = $p.Parent }; "
            "$parts -join '/')",
        ),
        FolderRecord,
    ),
    InventoryPhase(
        "tags",
        "tags",
        json_query(
            "Get-Tag -Server $vc",
            "Name = $_.Name; Id = $_.Id; Category = $_.Category.Name; Description = $_.Description",
        ),
        TagRecord,
    ),
    InventoryPhase(
        "categories",
        "categories",
        json_query(
            "Get-TagCategory -Server $vc",
            "Name = $_.Name; Id = $_.Id; Cardinality = $_.Cardinality.ToString(); "
            "Description = $_.Description",
        ),
        CategoryRecord,
    ),
    InventoryPhase(
        "roles",
        "roles",
        json_query(
            "Get-VIRole -Server $vc",
            "Name = $_.Name; Id = $_.Id; IsSystem = $_.IsSystem; Privileges = @($_.PrivilegeList)",
        ),
        RoleRecord,
    ),
    InventoryPhase(
        "permissions",
        "permissions",
        json_query(
            "Get-VIPermission -Server $vc",
            "Name = \"$($_.Principal) on $($_.Entity.Name)\"; Id = $_.Uid; "
            "Principal = $_.Principal; Role = $_.Role; Entity = $_.Entity.Name; "
            "Propagate = $_.Propagate",
        ),
        PermissionRecord,
    ),
    InventoryPhase(
        "custom attributes",
        "custom_attributes",
        json_query(
            "Get-CustomAttribute -Server $vc",
            "Name = $_.Name; Id = [string]$_.Key; TargetType = [string]$_.TargetType",
        ),
        CustomAttributeRecord,
    ),
)


class InventoryCache:
    """Holds the latest complete inventory snapshot of each side.

    A refresh runs every phase in order against the side's session and swaps
    in the new snapshot only when all phases succeeded. Readers never see a
    partially built snapshot.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        events: Optional[EventBus] = None,
        phases: tuple[InventoryPhase, ...] = INVENTORY_PHASES,
        phase_timeout: float = timeout_settings.inventory_phase_timeout,
        stale_after: timedelta = timedelta(minutes=timeout_settings.inventory_stale_minutes),
    ):
        self.executor = executor
        self.events = events or executor.pool.events
        self.phases = phases
        self.phase_timeout = phase_timeout
        self.stale_after = stale_after
        self._snapshots: dict[ConnectionSide, InventorySnapshot] = {}
        self._cycles: dict[ConnectionSide, int] = {side: 0 for side in ConnectionSide}
        self._refreshing: dict[ConnectionSide, asyncio.Task] = {}

    def get(self, side: ConnectionSide) -> Optional[InventorySnapshot]:
        """Current snapshot for ``side``, or None. Never performs I/O."""
        return self._snapshots.get(side)

    def invalidate(self, side: ConnectionSide) -> None:
        if self._snapshots.pop(side, None) is not None:
            logger.debug("Inventory invalidated", side=side.value)

    def invalidate_all(self) -> None:
        for side in ConnectionSide:
            self.invalidate(side)

    async def get_or_refresh(self, side: ConnectionSide) -> Result[InventorySnapshot, RefreshError]:
        """Cached snapshot when present and fresh, otherwise a refresh."""
        snapshot = self._snapshots.get(side)
        if snapshot is not None and not snapshot.is_stale(self.stale_after):
            return Ok(snapshot)
        return await self.refresh(side)

    async def refresh(self, side: ConnectionSide) -> Result[InventorySnapshot, RefreshError]:
        """Re-enumerate ``side``; concurrent calls for the same side share one refresh."""
        task = self._refreshing.get(side)
        if task is None or task.done():
            task = asyncio.create_task(self._refresh(side))
            self._refreshing[side] = task
            task.add_done_callback(lambda t, s=side: self._refresh_done(s, t))
        return await asyncio.shield(task)

    def _refresh_done(self, side: ConnectionSide, task: asyncio.Task) -> None:
        if self._refreshing.get(side) is task:
            del self._refreshing[side]

    async def _refresh(self, side: ConnectionSide) -> Result[InventorySnapshot, RefreshError]:
        log = logger.bind(side=side.value, component="inventory")
        log.info("Inventory refresh started", phases=len(self.phases))
        self.events.emit("inventory", "Loading inventory", side=side)

        collections: dict[str, tuple[InventoryRecord, ...]] = {}
        for phase in self.phases:
            request = CommandRequest(
                side=side,
                body=phase.body,
                expected_shape="typed",
                timeout=self.phase_timeout,
                label=f"inventory:{phase.name}",
            )
            result = await self.executor.execute_typed(request, phase.adapter)
            if isinstance(result, Err):
                error = result.error
                if isinstance(error, ParseError) and not error.raw_text.strip():
                    # Nothing of this kind exists on the endpoint
                    collections[phase.collection] = ()
                    continue
                log.error("Inventory phase failed", phase=phase.name, error=str(error))
                self.events.emit(
                    "inventory",
                    f"Failed to load {phase.name}: {error}",
                    level=EventLevel.ERROR,
                    side=side,
                )
                return Err(RefreshError(phase.name, error))
            collections[phase.collection] = tuple(result.value)
            log.debug("Inventory phase loaded", phase=phase.name, count=len(result.value))

        handle = self.executor.pool.get_handle(side)
        self._cycles[side] += 1
        snapshot = InventorySnapshot(
            side=side,
            server_address=handle.server_address if handle else "",
            server_version=handle.protocol_version if handle else None,
            cycle=self._cycles[side],
            **collections,
        )
        self._snapshots[side] = snapshot

        stats = snapshot.statistics()
        log.info(
            "Inventory refresh completed",
            cycle=snapshot.cycle,
            datacenters=stats.datacenter_count,
            clusters=stats.cluster_count,
            hosts=stats.host_count,
            vms=stats.virtual_machine_count,
        )
        self.events.emit(
            "inventory_updated",
            f"Inventory loaded: {stats.datacenter_count} datacenters, "
            f"{stats.cluster_count} clusters, {stats.host_count} hosts, "
            f"{stats.virtual_machine_count} VMs",
            side=side,
            cycle=snapshot.cycle,
        )
        return Ok(snapshot)
