"""Command channels: the transport under each side's session.

A channel wraps exactly one long-lived PowerShell session. It is not safe for
concurrent use; the session pool's per-side lock guarantees a single caller.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Optional

import structlog

from ..models.enums import ConnectionSide
from .exceptions import ChannelError
from .powershell import bind_parameters, frame_command, is_end_marker, new_end_marker
from .subprocess_manager import STREAM_LIMIT, SubprocessManager, get_subprocess_manager

logger = structlog.get_logger()

POWERSHELL_ARGUMENTS = ["-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", "-"]


class CommandChannel(ABC):
    """Abstract single-session transport for one side."""

    def __init__(self, side: ConnectionSide):
        self.side = side
        self.logger = logger.bind(component=self.__class__.__name__.lower(), side=side.value)
        self._busy = False

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the underlying session process/stream is alive."""

    @abstractmethod
    async def open(self) -> None:
        """Start the session.

        Raises:
            ChannelError: If the session cannot be started
        """

    @abstractmethod
    async def _send_and_receive(self, framed_command: str, marker: str) -> str:
        """Send a framed command and return everything printed before ``marker``."""

    @abstractmethod
    async def close(self) -> None:
        """Stop the session. Safe to call more than once."""

    async def invoke(self, body: str, parameters: Optional[Mapping[str, Any]] = None) -> str:
        """Run ``body`` with ``parameters`` bound as variables and return its output.

        Raises:
            ChannelError: If the session is closed, busy, or breaks mid-command
        """
        if not self.is_open:
            raise ChannelError(f"{self.side.value} session is not open")
        if self._busy:
            raise ChannelError(f"{self.side.value} session already has a command in flight")

        marker = new_end_marker()
        framed = frame_command(bind_parameters(body, parameters or {}), marker)
        self._busy = True
        try:
            return await self._send_and_receive(framed, marker)
        finally:
            self._busy = False


def collect_until_marker(lines: list[str], line: str, marker: str) -> bool:
    """Accumulate one output line; return True once ``marker`` is seen.

    Output belonging to an earlier command that timed out ends with that
    command's own marker; it is discarded when encountered.
    """
    if is_end_marker(line):
        if line.strip() == marker:
            return True
        lines.clear()
        return False
    lines.append(line)
    return False


class PowerShellChannel(CommandChannel):
    """Persistent local PowerShell process fed through stdin."""

    def __init__(
        self,
        side: ConnectionSide,
        executable: str = "pwsh",
        arguments: Optional[list[str]] = None,
        manager: Optional[SubprocessManager] = None,
        cwd: Optional[str] = None,
        stream_limit: int = STREAM_LIMIT,
    ):
        super().__init__(side)
        self.executable = executable
        self.arguments = arguments if arguments is not None else list(POWERSHELL_ARGUMENTS)
        self.cwd = cwd
        self.stream_limit = stream_limit
        self._manager = manager or get_subprocess_manager()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def open(self) -> None:
        if self.is_open:
            return
        self._process = await self._manager.spawn(
            [self.executable, *self.arguments], cwd=self.cwd, limit=self.stream_limit
        )
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            try:
                raw = await process.stderr.readline()
            except (ValueError, asyncio.LimitOverrunError) as e:
                self.logger.warning("PowerShell error output line too long", error=str(e))
                continue
            if not raw:
                break
            text = raw.decode(errors="replace").rstrip()
            if text:
                self.logger.warning("PowerShell error output", line=text)

    async def _send_and_receive(self, framed_command: str, marker: str) -> str:
        process = self._process
        if process is None or process.stdin is None or process.stdout is None:
            raise ChannelError(f"{self.side.value} PowerShell process has no open pipes")
        try:
            # Blank line terminates multi-line blocks when reading from stdin
            process.stdin.write((framed_command + "\n").encode())
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ChannelError(f"Cannot send command - pipe closed: {e}") from e

        lines: list[str] = []
        while True:
            try:
                raw = await process.stdout.readline()
            except (ValueError, asyncio.LimitOverrunError) as e:
                # The rest of the line is still buffered; the stream cannot be resynced
                await self.close()
                raise ChannelError(
                    f"PowerShell output line exceeds {self.stream_limit} bytes; session closed"
                ) from e
            if not raw:
                raise ChannelError("PowerShell process exited while running a command")
            line = raw.decode(errors="replace").rstrip("\r\n")
            if collect_until_marker(lines, line, marker):
                return "\n".join(lines).strip()

    async def close(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            await self._manager.terminate(process)
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None
