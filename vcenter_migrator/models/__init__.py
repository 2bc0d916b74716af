"""Data models for vCenter Migrator."""

from .connection import (  # noqa: F401
    CommandRequest,
    ConnectionHandle,
    ConnectionInfo,
)
from .enums import (  # noqa: F401
    CommandOutcome,
    ConnectionSide,
    ItemStatus,
    ItemType,
    RunState,
)
from .inventory import (  # noqa: F401
    CategoryRecord,
    ClusterRecord,
    CustomAttributeRecord,
    DatacenterRecord,
    DatastoreRecord,
    FolderRecord,
    HostRecord,
    InventoryRecord,
    InventorySnapshot,
    InventoryStatistics,
    PermissionRecord,
    ResourcePoolRecord,
    RoleRecord,
    TagRecord,
    VirtualMachineRecord,
    VirtualSwitchRecord,
)
from .workflow import (  # noqa: F401
    FrozenRunError,
    ItemOutcome,
    WorkflowItem,
    WorkflowRun,
)

__all__ = [
    # Connection models
    "CommandRequest",
    "ConnectionHandle",
    "ConnectionInfo",
    # Enums
    "CommandOutcome",
    "ConnectionSide",
    "ItemStatus",
    "ItemType",
    "RunState",
    # Inventory models
    "CategoryRecord",
    "ClusterRecord",
    "CustomAttributeRecord",
    "DatacenterRecord",
    "DatastoreRecord",
    "FolderRecord",
    "HostRecord",
    "InventoryRecord",
    "InventorySnapshot",
    "InventoryStatistics",
    "PermissionRecord",
    "ResourcePoolRecord",
    "RoleRecord",
    "TagRecord",
    "VirtualMachineRecord",
    "VirtualSwitchRecord",
    # Workflow models
    "FrozenRunError",
    "ItemOutcome",
    "WorkflowItem",
    "WorkflowRun",
]
