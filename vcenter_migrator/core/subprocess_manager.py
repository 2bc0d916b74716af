"""Subprocess management for PowerShell host processes."""

import asyncio
import os
import shutil
from typing import Any, Optional

import structlog

from .exceptions import ChannelError

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30  # Default timeout in seconds
KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL
STREAM_LIMIT = 64 * 1024 * 1024  # Longest single output line; inventory JSON arrives on one line


class SubprocessResult:
    """Result of a one-shot subprocess execution."""

    def __init__(self, returncode: int, stdout: str, stderr: str, cmd: list[str]):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.cmd = cmd

    @property
    def success(self) -> bool:
        """Check if the command succeeded."""
        return self.returncode == 0


class SubprocessManager:
    """Tracks spawned processes so none outlive the application."""

    def __init__(self):
        self._active_processes: set[asyncio.subprocess.Process] = set()
        self._cleanup_lock = asyncio.Lock()

    @property
    def active_count(self) -> int:
        return sum(1 for p in self._active_processes if p.returncode is None)

    async def spawn(
        self,
        cmd: list[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        limit: int = STREAM_LIMIT,
    ) -> asyncio.subprocess.Process:
        """Start a long-lived process with piped stdin/stdout/stderr.

        ``limit`` bounds one line read from stdout or stderr.

        Raises:
            ChannelError: If the executable cannot be started
        """
        logger.debug("Spawning process", command=" ".join(cmd), cwd=cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env or os.environ.copy(),
                limit=limit,
            )
        except (FileNotFoundError, PermissionError, OSError) as e:
            raise ChannelError(f"Failed to start {cmd[0]}: {e}") from e

        async with self._cleanup_lock:
            self._active_processes.add(process)
        logger.info("Started process", command=cmd[0], pid=process.pid)
        return process

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate a process, escalating to SIGKILL if it does not exit."""
        async with self._cleanup_lock:
            self._active_processes.discard(process)

        if process.returncode is not None:
            return
        try:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Process did not terminate gracefully, sending SIGKILL", pid=process.pid)
            process.kill()
            await process.wait()
        except ProcessLookupError:
            # Process already terminated
            pass

    async def run_command(
        self,
        cmd: list[str],
        *,
        timeout: Optional[float] = None,
        env: Optional[dict[str, str]] = None,
    ) -> SubprocessResult:
        """Run a short command to completion and capture its output.

        Raises:
            ChannelError: If the executable cannot be started
            asyncio.TimeoutError: If the command times out
        """
        if timeout is None:
            timeout = DEFAULT_TIMEOUT

        logger.debug("Executing command", command=" ".join(cmd), timeout=timeout)
        kwargs: dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "env": env or os.environ.copy(),
        }
        try:
            process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except (FileNotFoundError, PermissionError, OSError) as e:
            raise ChannelError(f"Failed to start {cmd[0]}: {e}") from e

        async with self._cleanup_lock:
            self._active_processes.add(process)
        try:
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Command timed out, terminating process",
                    command=" ".join(cmd),
                    timeout=timeout,
                    pid=process.pid,
                )
                await self.terminate(process)
                raise asyncio.TimeoutError(
                    f"Command timed out after {timeout} seconds: {' '.join(cmd)}"
                )
            return SubprocessResult(
                returncode=process.returncode or 0,
                stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
                stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
                cmd=cmd,
            )
        finally:
            async with self._cleanup_lock:
                self._active_processes.discard(process)

    async def cleanup_all(self) -> None:
        """Terminate every tracked process."""
        async with self._cleanup_lock:
            processes = list(self._active_processes)

        if not processes:
            return

        logger.info(f"Cleaning up {len(processes)} active processes")
        await asyncio.gather(*(self.terminate(p) for p in processes), return_exceptions=True)


def find_powershell(candidates: list[str]) -> str | None:
    """Return the first PowerShell executable found on PATH, preferring PowerShell 7."""
    for candidate in candidates:
        resolved = shutil.which(candidate)
        if resolved:
            return resolved
    return None


# Global instance for convenience
_subprocess_manager: Optional[SubprocessManager] = None


def get_subprocess_manager() -> SubprocessManager:
    """Get the process-wide subprocess manager."""
    global _subprocess_manager
    if _subprocess_manager is None:
        _subprocess_manager = SubprocessManager()
    return _subprocess_manager
