"""Catalog of migration workflows: what to enumerate, how to execute, how to classify."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from ..core.exceptions import ParseError, WorkflowItemError, WorkflowNotFoundError
from ..core.executor import CommandExecutor
from ..core.results import (
    CommandResult,
    classify_backup_result,
    classify_host_move_result,
    classify_migration_result,
    extract_json,
)
from ..core.settings import MIGRATION_ITEM_TIMEOUT
from ..models.enums import ConnectionSide, ItemType
from ..models.inventory import InventoryRecord, InventorySnapshot
from ..models.workflow import ItemOutcome, WorkflowItem
from .scripts import BACKUP_HOST, EXPORT_OBJECT, MIGRATE_OBJECT, MOVE_HOST

logger = structlog.get_logger()

BOTH_SIDES = (ConnectionSide.SOURCE, ConnectionSide.TARGET)


@dataclass
class WorkflowContext:
    """What an item executor may use during a run."""

    executor: CommandExecutor
    validate_only: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    item_timeout: float = MIGRATION_ITEM_TIMEOUT


Enumerator = Callable[[InventorySnapshot], list[WorkflowItem]]
ItemExecutor = Callable[[WorkflowContext, WorkflowItem], Awaitable[CommandResult]]
Classifier = Callable[[CommandResult], ItemOutcome]


@dataclass(frozen=True)
class Workflow:
    """A named migration workflow.

    ``enumerate`` builds the candidate items from the snapshot of
    ``inventory_side``; ``execute`` runs one item and ``classify`` turns the
    result into an outcome. ``required_sides`` must be connected for a run.
    """

    name: str
    item_type: ItemType
    enumerate: Enumerator
    execute: ItemExecutor
    classify: Classifier
    description: str = ""
    selectable: bool = True
    inventory_side: ConnectionSide = ConnectionSide.SOURCE
    required_sides: tuple[ConnectionSide, ...] = BOTH_SIDES


class WorkflowCatalog:
    """Registry of workflows by name. Registration never touches the runner."""

    def __init__(self, workflows: Optional[list[Workflow]] = None):
        self._workflows: dict[str, Workflow] = {}
        for workflow in workflows or []:
            self.register(workflow)

    def register(self, workflow: Workflow) -> None:
        if workflow.name in self._workflows:
            logger.debug("Replacing workflow registration", workflow=workflow.name)
        self._workflows[workflow.name] = workflow

    def get(self, name: str) -> Workflow:
        try:
            return self._workflows[name]
        except KeyError:
            raise WorkflowNotFoundError(
                f"Unknown workflow '{name}'. Available: {', '.join(self.names())}"
            ) from None

    def names(self) -> list[str]:
        return list(self._workflows)

    def __contains__(self, name: object) -> bool:
        return name in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)


# Enumeration


def records_to_items(
    records: tuple[InventoryRecord, ...],
    item_type: ItemType,
    path: Callable[[InventoryRecord], str] = lambda record: "",
) -> list[WorkflowItem]:
    """Items in inventory order, so repeated runs process them identically."""
    return [
        WorkflowItem(name=record.name, type=item_type, source_id=record.id, path=path(record))
        for record in records
    ]


def _collection_enumerator(
    collection: str, item_type: ItemType, path: Callable[[Any], str] = lambda record: ""
) -> Enumerator:
    def _enumerate(snapshot: InventorySnapshot) -> list[WorkflowItem]:
        return records_to_items(getattr(snapshot, collection), item_type, path)

    return _enumerate


def _enumerate_folders(snapshot: InventorySnapshot) -> list[WorkflowItem]:
    # Parent folders sort before their children
    folders = sorted(snapshot.folders, key=lambda f: (f.path.count("/"), f.path))
    return records_to_items(tuple(folders), ItemType.FOLDER, lambda f: f.path)


def _enumerate_tags(snapshot: InventorySnapshot) -> list[WorkflowItem]:
    # Categories first: a tag cannot be created before its category
    items = records_to_items(snapshot.categories, ItemType.CATEGORY)
    items += records_to_items(snapshot.tags, ItemType.TAG, lambda t: t.category)
    return items


# Execution


def _object_parameters(item: WorkflowItem) -> dict[str, Any]:
    return {
        "ObjectType": item.type.value,
        "ObjectName": item.name,
        "ObjectId": item.source_id,
        "ObjectPath": item.path,
    }


async def migrate_object(ctx: WorkflowContext, item: WorkflowItem) -> CommandResult:
    """Export the object's definition from the source, then create it on the target."""
    exported = await ctx.executor.run_script(
        ConnectionSide.SOURCE, EXPORT_OBJECT, _object_parameters(item), timeout=ctx.item_timeout
    )
    if not exported.is_success:
        return exported
    try:
        definition = extract_json(exported.text)
    except ParseError as e:
        raise WorkflowItemError(f"Export of {item.name} returned no object definition") from e

    parameters = _object_parameters(item)
    parameters["Definition"] = json.dumps(definition)
    parameters["ValidateOnly"] = ctx.validate_only
    return await ctx.executor.run_script(
        ConnectionSide.TARGET, MIGRATE_OBJECT, parameters, timeout=ctx.item_timeout
    )


async def create_on_target(ctx: WorkflowContext, item: WorkflowItem) -> CommandResult:
    """Create a container object on the target from its name and path alone."""
    parameters = _object_parameters(item)
    parameters["ValidateOnly"] = ctx.validate_only
    return await ctx.executor.run_script(
        ConnectionSide.TARGET, MIGRATE_OBJECT, parameters, timeout=ctx.item_timeout
    )


async def backup_host(ctx: WorkflowContext, item: WorkflowItem) -> CommandResult:
    parameters = {
        "HostName": item.name,
        "BackupPath": ctx.options.get("backup_dir", "backups"),
        "ValidateOnly": ctx.validate_only,
    }
    return await ctx.executor.run_script(
        ConnectionSide.SOURCE, BACKUP_HOST, parameters, timeout=ctx.item_timeout
    )


async def move_host(ctx: WorkflowContext, item: WorkflowItem) -> CommandResult:
    target_cluster = ctx.options.get("target_cluster")
    if not target_cluster:
        raise WorkflowItemError("No target cluster given for host migration")
    source = ctx.executor.pool.get_handle(ConnectionSide.SOURCE)
    parameters = {
        "HostName": item.name,
        "SourceServer": source.server_address if source else "",
        "TargetClusterName": target_cluster,
        "ValidateOnly": ctx.validate_only,
    }
    return await ctx.executor.run_script(
        ConnectionSide.TARGET, MOVE_HOST, parameters, timeout=ctx.item_timeout
    )


def default_workflows() -> list[Workflow]:
    return [
        Workflow(
            "roles",
            ItemType.ROLE,
            _collection_enumerator("roles", ItemType.ROLE),
            migrate_object,
            classify_migration_result,
            description="Custom roles and their privileges",
        ),
        Workflow(
            "folders",
            ItemType.FOLDER,
            _enumerate_folders,
            create_on_target,
            classify_migration_result,
            description="Folder hierarchy, parents before children",
        ),
        Workflow(
            "tags",
            ItemType.TAG,
            _enumerate_tags,
            migrate_object,
            classify_migration_result,
            description="Tag categories and tags",
        ),
        Workflow(
            "custom_attributes",
            ItemType.CUSTOM_ATTRIBUTE,
            _collection_enumerator("custom_attributes", ItemType.CUSTOM_ATTRIBUTE),
            migrate_object,
            classify_migration_result,
            description="Custom attribute definitions",
        ),
        Workflow(
            "permissions",
            ItemType.PERMISSION,
            _collection_enumerator("permissions", ItemType.PERMISSION, lambda p: p.entity),
            migrate_object,
            classify_migration_result,
            description="Permission assignments (roles must exist on the target)",
        ),
        Workflow(
            "resource_pools",
            ItemType.RESOURCE_POOL,
            _collection_enumerator("resource_pools", ItemType.RESOURCE_POOL, lambda r: r.parent),
            migrate_object,
            classify_migration_result,
            description="Resource pools and their settings",
        ),
        Workflow(
            "network",
            ItemType.NETWORK_OBJECT,
            _collection_enumerator(
                "virtual_switches", ItemType.NETWORK_OBJECT, lambda s: s.host_name
            ),
            migrate_object,
            classify_migration_result,
            description="Virtual switches and port groups",
        ),
        Workflow(
            "infrastructure",
            ItemType.DATACENTER,
            _collection_enumerator("datacenters", ItemType.DATACENTER),
            create_on_target,
            classify_migration_result,
            description="Datacenters",
        ),
        Workflow(
            "esxi_host_backup",
            ItemType.HOST,
            _collection_enumerator("hosts", ItemType.HOST, lambda h: h.cluster_name),
            backup_host,
            classify_backup_result,
            description="Back up ESXi host configuration from the source",
            required_sides=(ConnectionSide.SOURCE,),
        ),
        Workflow(
            "esxi_host_migration",
            ItemType.HOST,
            _collection_enumerator("hosts", ItemType.HOST, lambda h: h.cluster_name),
            move_host,
            classify_host_move_result,
            description="Move ESXi hosts into a target cluster",
        ),
    ]


def build_default_catalog() -> WorkflowCatalog:
    return WorkflowCatalog(default_workflows())
