"""Application wiring with an explicit lifetime.

Every component receives its collaborators through its constructor; nothing
reaches for shared global connection state. The app is created at start-up
and closed at shutdown, which disconnects both sides.
"""

from typing import Any, Optional

import structlog

from .core.channel import CommandChannel, PowerShellChannel
from .core.config_loader import MigratorConfig
from .core.credentials import (
    ChainedCredentialProvider,
    CredentialProvider,
    EnvironmentCredentialProvider,
)
from .core.events import EventBus
from .core.exceptions import ChannelError, ConnectError
from .core.executor import CommandExecutor
from .core.history import RunHistoryStore
from .core.inventory import InventoryCache
from .core.results import Err, Result
from .core.session_pool import ChannelFactory, SessionPool
from .core.settings import MigratorTimeoutSettings, timeout_settings
from .core.ssh_channel import SSHPowerShellChannel
from .core.subprocess_manager import find_powershell, get_subprocess_manager
from .models.enums import ConnectionSide
from .services.catalog import WorkflowCatalog, build_default_catalog
from .services.scripts import ScriptBuilder
from .services.workflow_runner import WorkflowRunner

logger = structlog.get_logger()

POWERCLI_CHECK = (
    "$PSVersionTable.PSVersion.ToString(); "
    "if (Get-Module -ListAvailable -Name VMware.VimAutomation.Core) "
    "{ 'POWERCLI:installed' } else { 'POWERCLI:missing' }"
)


class MigratorApp:
    """Owns the session pool and everything built on top of it."""

    def __init__(
        self,
        config: MigratorConfig,
        credentials: Optional[CredentialProvider] = None,
        channel_factory: Optional[ChannelFactory] = None,
        settings: Optional[MigratorTimeoutSettings] = None,
        catalog: Optional[WorkflowCatalog] = None,
    ):
        self.config = config
        self.settings = settings or timeout_settings
        self.events = EventBus()
        self.scripts = ScriptBuilder(config.powershell.scripts_dir)
        self.credentials = credentials or ChainedCredentialProvider(EnvironmentCredentialProvider())
        self.pool = SessionPool(
            channel_factory or self._create_channel,
            credentials=self.credentials,
            events=self.events,
            settings=self.settings,
        )
        self.executor = CommandExecutor(
            self.pool, self.scripts, default_timeout=self.settings.command_timeout
        )
        self.inventory = InventoryCache(
            self.executor, self.events, phase_timeout=self.settings.inventory_phase_timeout
        )
        self.catalog = catalog or build_default_catalog()
        self.history = RunHistoryStore(config.data_path)
        self.runner = WorkflowRunner(
            self.executor,
            self.inventory,
            self.catalog,
            events=self.events,
            history=self.history,
            item_timeout=self.settings.migration_item_timeout,
        )

    def _create_channel(self, side: ConnectionSide) -> CommandChannel:
        ps = self.config.powershell
        if ps.transport == "ssh" and ps.ssh is not None:
            return SSHPowerShellChannel(
                side,
                hostname=ps.ssh.hostname,
                user=ps.ssh.user,
                port=ps.ssh.port,
                identity_file=ps.ssh.identity_file,
                remote_command=ps.ssh.remote_command,
                read_timeout=self.settings.migration_item_timeout,
            )
        executable = find_powershell(ps.executables)
        if executable is None:
            raise ChannelError(f"PowerShell not found on PATH (tried {', '.join(ps.executables)})")
        return PowerShellChannel(side, executable=executable, cwd=ps.working_dir)

    async def start(self) -> None:
        await self.history.initialize()
        logger.info("Migrator started", config_file=self.config.config_file)

    async def close(self) -> None:
        await self.pool.close_all()
        await get_subprocess_manager().cleanup_all()
        logger.info("Migrator stopped")

    async def __aenter__(self) -> "MigratorApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect_profiles(
        self, sides: tuple[ConnectionSide, ...] = tuple(ConnectionSide)
    ) -> dict[ConnectionSide, Result]:
        """Connect each requested side to its configured profile."""
        results: dict[ConnectionSide, Result] = {}
        for side in sides:
            profile = self.config.profile_for(side)
            if profile is None:
                results[side] = Err(ConnectError(f"No {side.value} profile configured"))
                continue
            results[side] = await self.pool.connect_with_credentials(
                side, profile.server_address, profile.username
            )
        return results

    async def check_prerequisites(self) -> dict[str, Any]:
        """Local environment check: PowerShell, PowerCLI and script files."""
        report: dict[str, Any] = {
            "transport": self.config.powershell.transport,
            "powershell": None,
            "powershell_version": None,
            "powercli_installed": False,
            "missing_scripts": [],
        }
        if self.config.powershell.transport == "ssh":
            # Scripts and modules live on the management host
            return report

        report["missing_scripts"] = self.scripts.missing_scripts()
        executable = find_powershell(self.config.powershell.executables)
        report["powershell"] = executable
        if executable is None:
            return report

        result = await get_subprocess_manager().run_command(
            [executable, "-NoProfile", "-NonInteractive", "-Command", POWERCLI_CHECK],
            timeout=60,
        )
        if result.success:
            lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
            report["powershell_version"] = lines[0] if lines else None
            report["powercli_installed"] = "POWERCLI:installed" in result.stdout
        else:
            logger.warning("Prerequisite check failed", stderr=result.stderr.strip())
        return report
