"""PowerShell session on a remote management host, reached over SSH."""

import asyncio
import socket
import threading
from typing import Optional

from paramiko import AutoAddPolicy, SSHClient
from paramiko.ssh_exception import SSHException

from ..models.enums import ConnectionSide
from .channel import CommandChannel, collect_until_marker
from .exceptions import ChannelError

REMOTE_POWERSHELL = "pwsh -NoProfile -NonInteractive -Command -"


class SSHPowerShellChannel(CommandChannel):
    """Runs one persistent ``pwsh`` process on a jump host and talks to it over SSH."""

    def __init__(
        self,
        side: ConnectionSide,
        hostname: str,
        user: str,
        port: int = 22,
        identity_file: Optional[str] = None,
        password: Optional[str] = None,
        remote_command: str = REMOTE_POWERSHELL,
        read_timeout: float = 600,
    ):
        super().__init__(side)
        self.hostname = hostname
        self.user = user
        self.port = port
        self.identity_file = identity_file
        self.password = password
        self.remote_command = remote_command
        self.read_timeout = read_timeout
        self._client: Optional[SSHClient] = None
        self._stdin = None
        self._stdout = None
        # Serializes reader threads: a thread abandoned by a timed-out caller
        # must finish before the next command reads the stream
        self._io_lock = threading.Lock()

    @property
    def host_key(self) -> str:
        return f"{self.user}@{self.hostname}:{self.port}"

    @property
    def is_open(self) -> bool:
        if self._client is None or self._stdout is None:
            return False
        try:
            transport = self._client.get_transport()
            return bool(transport and transport.is_active()) and not self._stdout.channel.exit_status_ready()
        except Exception:
            return False

    async def open(self) -> None:
        if self.is_open:
            return
        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs = {
            "hostname": self.hostname,
            "port": self.port,
            "username": self.user,
            "timeout": 30,
            "banner_timeout": 30,
            "auth_timeout": 30,
        }
        if self.identity_file:
            connect_kwargs["key_filename"] = self.identity_file
        elif self.password:
            connect_kwargs["password"] = self.password

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: client.connect(**connect_kwargs))
            transport = client.get_transport()
            if transport:
                transport.set_keepalive(30)
            stdin, stdout, _stderr = await loop.run_in_executor(
                None, lambda: client.exec_command(self.remote_command)
            )
        except (SSHException, OSError) as e:
            client.close()
            raise ChannelError(f"Failed to open SSH session to {self.host_key}: {e}") from e

        stdout.channel.settimeout(self.read_timeout)
        self._client, self._stdin, self._stdout = client, stdin, stdout
        self.logger.info("Opened remote PowerShell session", host=self.host_key)

    def _exchange(self, framed_command: str, marker: str) -> str:
        with self._io_lock:
            try:
                self._stdin.write(framed_command + "\n")
                self._stdin.flush()
                lines: list[str] = []
                while True:
                    line = self._stdout.readline()
                    if not line:
                        raise ChannelError("Remote PowerShell process exited while running a command")
                    if collect_until_marker(lines, line.rstrip("\r\n"), marker):
                        return "\n".join(lines).strip()
            except socket.timeout as e:
                raise ChannelError(f"No output from {self.host_key} within {self.read_timeout}s") from e
            except (SSHException, OSError) as e:
                raise ChannelError(f"SSH session to {self.host_key} failed: {e}") from e

    async def _send_and_receive(self, framed_command: str, marker: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._exchange, framed_command, marker)

    async def close(self) -> None:
        client, self._client = self._client, None
        self._stdin = self._stdout = None
        if client is None:
            return
        try:
            client.close()
        except Exception as e:
            self.logger.warning("Error closing SSH session", host=self.host_key, error=str(e))
