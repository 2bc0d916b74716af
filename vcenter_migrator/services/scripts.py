"""PowerCLI script locations and invocation bodies."""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from ..core.exceptions import ConfigurationError
from ..core.powershell import SESSION_VARIABLE, script_invocation

logger = structlog.get_logger()

EXPORT_OBJECT = "Export-VCenterObject"
MIGRATE_OBJECT = "Migrate-VCenterObject"
BACKUP_HOST = "Backup-ESXiHostConfig"
MOVE_HOST = "Move-EsxiHost"

KNOWN_SCRIPTS = (EXPORT_OBJECT, MIGRATE_OBJECT, BACKUP_HOST, MOVE_HOST)


class ScriptBuilder:
    """Resolves script ids to files under the scripts directory.

    Every script is invoked with the side's live session as ``-Server`` and
    the caller's parameters splatted in order.
    """

    def __init__(self, scripts_dir: str | Path = "Scripts", overrides: Mapping[str, str] | None = None):
        self.scripts_dir = Path(scripts_dir)
        self.overrides = dict(overrides or {})

    def script_path(self, script_id: str) -> Path:
        if script_id in self.overrides:
            return Path(self.overrides[script_id])
        name = script_id if script_id.endswith(".ps1") else f"{script_id}.ps1"
        return self.scripts_dir / name

    def script_body(self, script_id: str, parameters: Mapping[str, Any]) -> str:
        return script_invocation(str(self.script_path(script_id)), list(parameters), SESSION_VARIABLE)

    def missing_scripts(self, script_ids: tuple[str, ...] = KNOWN_SCRIPTS) -> list[str]:
        """Script ids whose file does not exist locally."""
        return [script_id for script_id in script_ids if not self.script_path(script_id).is_file()]

    def verify(self, script_ids: tuple[str, ...] = KNOWN_SCRIPTS) -> None:
        """Raise if any script is missing.

        Only meaningful when PowerShell runs on this machine; over SSH the
        scripts live on the management host.
        """
        missing = self.missing_scripts(script_ids)
        if missing:
            logger.error("Migration scripts not found", scripts_dir=str(self.scripts_dir), missing=missing)
            raise ConfigurationError(
                f"Scripts not found in {self.scripts_dir}: {', '.join(missing)}"
            )
