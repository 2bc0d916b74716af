"""Inventory record and snapshot models.

Records are parsed from the JSON that PowerCLI enumeration scripts emit, so
field aliases follow PowerShell's PascalCase property names.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_pascal

from .enums import ConnectionSide


class InventoryRecord(BaseModel):
    """Lightweight inventory entity carrying at least a name and an id."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_pascal,
        populate_by_name=True,
        extra="ignore",
    )

    name: str
    id: str = ""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # PowerCLI serializes unset properties as null; let field defaults apply
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class DatacenterRecord(InventoryRecord):
    pass


class ClusterRecord(InventoryRecord):
    """Cluster with host membership held by reference only."""

    datacenter_name: str = ""
    host_ids: tuple[str, ...] = ()
    host_names: tuple[str, ...] = ()
    ha_enabled: bool = False
    drs_enabled: bool = False


class HostRecord(InventoryRecord):
    cluster_name: str = ""
    connection_state: str = ""
    version: str = ""
    cpu_cores: int = 0
    memory_gb: float = 0.0


class DatastoreRecord(InventoryRecord):
    type: str = ""
    capacity_gb: float = 0.0
    free_space_gb: float = 0.0

    @property
    def used_gb(self) -> float:
        return max(self.capacity_gb - self.free_space_gb, 0.0)


class VirtualMachineRecord(InventoryRecord):
    power_state: str = ""
    cluster_name: str = ""
    host_name: str = ""
    folder: str = ""


class ResourcePoolRecord(InventoryRecord):
    cluster_name: str = ""
    parent: str = ""


class VirtualSwitchRecord(InventoryRecord):
    type: str = ""
    host_name: str = ""
    port_groups: tuple[str, ...] = ()


class FolderRecord(InventoryRecord):
    type: str = ""
    path: str = ""
    parent_id: str = ""


class TagRecord(InventoryRecord):
    category: str = ""
    description: str = ""


class CategoryRecord(InventoryRecord):
    cardinality: str = ""
    description: str = ""


class RoleRecord(InventoryRecord):
    is_system: bool = False
    privileges: tuple[str, ...] = ()


class PermissionRecord(InventoryRecord):
    principal: str = ""
    role: str = ""
    entity: str = ""
    propagate: bool = False


class CustomAttributeRecord(InventoryRecord):
    target_type: str = ""


class InventoryStatistics(BaseModel):
    """Summary counts for one snapshot."""

    datacenter_count: int = 0
    cluster_count: int = 0
    host_count: int = 0
    virtual_machine_count: int = 0
    datastore_count: int = 0
    resource_pool_count: int = 0
    folder_count: int = 0
    tag_count: int = 0
    role_count: int = 0
    permission_count: int = 0
    total_cpu_cores: int = 0
    total_memory_gb: float = 0.0
    total_datastore_capacity_gb: float = 0.0
    total_datastore_used_gb: float = 0.0
    powered_on_vms: int = 0
    powered_off_vms: int = 0

    @property
    def datastore_utilization_percent(self) -> float:
        if self.total_datastore_capacity_gb <= 0:
            return 0.0
        return self.total_datastore_used_gb / self.total_datastore_capacity_gb * 100


class InventorySnapshot(BaseModel):
    """Complete, immutable capture of one side's inventory.

    Built only once every enumeration phase has succeeded and never mutated
    afterwards; the inventory cache replaces it wholesale.
    """

    model_config = ConfigDict(frozen=True)

    side: ConnectionSide
    server_address: str = ""
    server_version: str | None = None
    captured_at: datetime = Field(default_factory=datetime.now)
    cycle: int = 0

    datacenters: tuple[DatacenterRecord, ...] = ()
    clusters: tuple[ClusterRecord, ...] = ()
    hosts: tuple[HostRecord, ...] = ()
    datastores: tuple[DatastoreRecord, ...] = ()
    virtual_machines: tuple[VirtualMachineRecord, ...] = ()
    resource_pools: tuple[ResourcePoolRecord, ...] = ()
    virtual_switches: tuple[VirtualSwitchRecord, ...] = ()
    folders: tuple[FolderRecord, ...] = ()
    tags: tuple[TagRecord, ...] = ()
    categories: tuple[CategoryRecord, ...] = ()
    roles: tuple[RoleRecord, ...] = ()
    permissions: tuple[PermissionRecord, ...] = ()
    custom_attributes: tuple[CustomAttributeRecord, ...] = ()

    def is_stale(self, max_age: timedelta = timedelta(minutes=30)) -> bool:
        return datetime.now() - self.captured_at > max_age

    def clusters_in_datacenter(self, datacenter_name: str) -> list[ClusterRecord]:
        return [c for c in self.clusters if c.datacenter_name.lower() == datacenter_name.lower()]

    def hosts_in_cluster(self, cluster_name: str) -> list[HostRecord]:
        cluster = next((c for c in self.clusters if c.name.lower() == cluster_name.lower()), None)
        if cluster is None:
            return []
        member_ids = set(cluster.host_ids)
        member_names = {name.lower() for name in cluster.host_names}
        return [
            h
            for h in self.hosts
            if (h.id and h.id in member_ids)
            or h.name.lower() in member_names
            or h.cluster_name.lower() == cluster_name.lower()
        ]

    def vms_in_cluster(self, cluster_name: str) -> list[VirtualMachineRecord]:
        return [vm for vm in self.virtual_machines if vm.cluster_name.lower() == cluster_name.lower()]

    def find(self, collection: str, name: str) -> InventoryRecord | None:
        """Look up a record by name (case-insensitive) in a named collection."""
        records: tuple[InventoryRecord, ...] = getattr(self, collection)
        return next((r for r in records if r.name.lower() == name.lower()), None)

    def statistics(self) -> InventoryStatistics:
        return InventoryStatistics(
            datacenter_count=len(self.datacenters),
            cluster_count=len(self.clusters),
            host_count=len(self.hosts),
            virtual_machine_count=len(self.virtual_machines),
            datastore_count=len(self.datastores),
            resource_pool_count=len(self.resource_pools),
            folder_count=len(self.folders),
            tag_count=len(self.tags),
            role_count=len(self.roles),
            permission_count=len(self.permissions),
            total_cpu_cores=sum(h.cpu_cores for h in self.hosts),
            total_memory_gb=sum(h.memory_gb for h in self.hosts),
            total_datastore_capacity_gb=sum(d.capacity_gb for d in self.datastores),
            total_datastore_used_gb=sum(d.used_gb for d in self.datastores),
            powered_on_vms=sum(1 for vm in self.virtual_machines if vm.power_state == "PoweredOn"),
            powered_off_vms=sum(1 for vm in self.virtual_machines if vm.power_state == "PoweredOff"),
        )
