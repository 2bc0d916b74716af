"""Enum definitions for vCenter Migrator."""

from enum import Enum
from typing import Literal

# Type aliases
ResultShape = Literal["text", "typed"]


class ConnectionSide(str, Enum):
    """One of the two migration endpoints."""

    SOURCE = "source"
    TARGET = "target"

    @property
    def other(self) -> "ConnectionSide":
        return ConnectionSide.TARGET if self is ConnectionSide.SOURCE else ConnectionSide.SOURCE


class ItemType(str, Enum):
    """Kinds of objects a workflow migrates or backs up."""

    ROLE = "Role"
    FOLDER = "Folder"
    TAG = "Tag"
    CATEGORY = "Category"
    PERMISSION = "Permission"
    CUSTOM_ATTRIBUTE = "CustomAttribute"
    RESOURCE_POOL = "ResourcePool"
    NETWORK_OBJECT = "NetworkObject"
    DATACENTER = "Datacenter"
    CLUSTER = "Cluster"
    HOST = "Host"


class ItemStatus(str, Enum):
    """Per-item status within a workflow run."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    MIGRATED = "Migrated"
    SKIPPED = "Skipped"
    FAILED = "Failed"


class RunState(str, Enum):
    """Workflow run state machine."""

    NOT_STARTED = "NotStarted"
    ENUMERATING = "Enumerating"
    VALIDATING = "Validating"
    EXECUTING = "Executing"
    SUMMARIZING = "Summarizing"
    COMPLETED = "Completed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.ABORTED)


class CommandOutcome(str, Enum):
    """Classified outcome of a single workflow item execution."""

    MIGRATED = "Migrated"
    SKIPPED = "Skipped"
    FAILED = "Failed"
