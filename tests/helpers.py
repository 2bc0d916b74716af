"""Test doubles and canned data shared by the test modules."""

import asyncio
import json
import re
import time
from collections.abc import Callable
from typing import Any

from vcenter_migrator.core.channel import CommandChannel
from vcenter_migrator.core.exceptions import ChannelError
from vcenter_migrator.core.powershell import CONNECT_SCRIPT, DISCONNECT_SCRIPT, PROBE_SCRIPT
from vcenter_migrator.models.enums import ConnectionSide

SOURCE_SERVER = "vc-source.lab.local"
TARGET_SERVER = "vc-target.lab.local"
USERNAME = "administrator@vsphere.local"
PASSWORD = "VMware1!"

Responder = Callable[[str, dict[str, Any]], Any]


class FakeChannel(CommandChannel):
    """In-memory PowerShell session.

    Session scripts (connect, probe, disconnect) are answered directly; every
    other command goes to ``responder(body, parameters)``. Calls are recorded
    with their start and end times so tests can check serialization.
    """

    def __init__(
        self,
        side: ConnectionSide,
        responder: Responder | None = None,
        session_id: str | None = None,
        delay: float = 0.0,
    ):
        super().__init__(side)
        self.responder = responder or (lambda body, parameters: "")
        self.session_id = session_id or f"{side.value}-session"
        self.delay = delay
        self.connect_output: str | None = None
        self.opened = False
        self.alive = True
        self.remote_connected = True
        self.open_count = 0
        self.close_count = 0
        self.connect_calls = 0
        self.probe_calls = 0
        self.disconnect_calls = 0
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.windows: list[tuple[float, float]] = []
        self.active = 0
        self.max_active = 0

    @property
    def is_open(self) -> bool:
        return self.opened and self.alive

    async def open(self) -> None:
        self.opened = True
        self.open_count += 1

    async def _send_and_receive(self, framed_command: str, marker: str) -> str:
        raise NotImplementedError

    async def invoke(self, body: str, parameters=None) -> str:
        if not self.is_open:
            raise ChannelError(f"{self.side.value} session is not open")
        params = dict(parameters or {})

        if body == CONNECT_SCRIPT:
            self.connect_calls += 1
            if self.connect_output is not None:
                return self.connect_output
            return f"CONNECTION_SUCCESS\nSESSION_ID:{self.session_id}\nVERSION:8.0.2"
        if body == PROBE_SCRIPT:
            self.probe_calls += 1
            return "True" if self.remote_connected else "False"
        if body == DISCONNECT_SCRIPT:
            self.disconnect_calls += 1
            return "DISCONNECTED"

        self.calls.append((body, params))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = time.monotonic()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.responder(body, params)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        finally:
            self.active -= 1
            self.windows.append((start, time.monotonic()))

    async def close(self) -> None:
        self.opened = False
        self.close_count += 1

    def drop(self) -> None:
        """Simulate the session process dying."""
        self.alive = False
        self.remote_connected = False


def primary_cmdlet(body: str) -> str | None:
    """The cmdlet an inventory query enumerates, e.g. ``Get-Datacenter``."""
    match = re.search(r"\$items = @\((Get-[A-Za-z]+)", body)
    return match.group(1) if match else None


def inventory_responder(data: dict[str, list[dict[str, Any]]]) -> Responder:
    """Answer inventory queries from ``{cmdlet: records}``; unknown cmdlets return ``[]``."""

    def _respond(body: str, parameters: dict[str, Any]) -> str:
        cmdlet = primary_cmdlet(body)
        return json.dumps(data.get(cmdlet, []))

    return _respond


def script_name(body: str) -> str | None:
    match = re.search(r"([A-Za-z-]+)\.ps1", body)
    return match.group(1) if match else None


