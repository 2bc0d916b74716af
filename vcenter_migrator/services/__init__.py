"""
vCenter Migrator Services

Workflow layer built on the core session, command and inventory components.
"""

from .catalog import Workflow, WorkflowCatalog, build_default_catalog  # noqa: F401
from .scripts import ScriptBuilder  # noqa: F401
from .workflow_runner import WorkflowRunner  # noqa: F401

__all__ = [
    "Workflow",
    "WorkflowCatalog",
    "WorkflowRunner",
    "ScriptBuilder",
    "build_default_catalog",
]
