"""Session pool owning the single live session of each side."""

import asyncio
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Optional

import structlog

from ..models.connection import ConnectionHandle, ConnectionInfo
from ..models.enums import ConnectionSide
from .channel import CommandChannel
from .credentials import CredentialProvider
from .events import EventBus, EventLevel
from .exceptions import ChannelError, ConnectError, CredentialError, SessionNotConnected
from .powershell import CONNECT_SCRIPT, DISCONNECT_SCRIPT, PROBE_SCRIPT
from .results import Err, Ok, Result, describe_connect_failure, parse_connect_output
from .settings import MigratorTimeoutSettings, timeout_settings

logger = structlog.get_logger()

ChannelFactory = Callable[[ConnectionSide], CommandChannel]


@dataclass
class SideSession:
    """Everything the pool tracks for one side."""

    side: ConnectionSide
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    channel: Optional[CommandChannel] = None
    handle: Optional[ConnectionHandle] = None
    last_error: Optional[str] = None
    verified_at: Optional[float] = None


class SessionPool:
    """Keeps at most one connected session per side and serializes access to it.

    The per-side lock is the only way to reach a channel. Commands, liveness
    probes and disconnects all take it, so a probe can never interleave with
    a command already running on the same session.
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        credentials: Optional[CredentialProvider] = None,
        events: Optional[EventBus] = None,
        settings: Optional[MigratorTimeoutSettings] = None,
    ):
        self.channel_factory = channel_factory
        self.credentials = credentials
        self.events = events or EventBus()
        self.settings = settings or timeout_settings
        self._sessions = {side: SideSession(side) for side in ConnectionSide}
        self._stats = {
            "connects": 0,
            "connects_reused": 0,
            "connect_errors": 0,
            "disconnects": 0,
            "probes": 0,
            "probe_failures": 0,
        }

    # Local reads

    def get_handle(self, side: ConnectionSide) -> Optional[ConnectionHandle]:
        return self._sessions[side].handle

    def get_connection_info(self, side: ConnectionSide) -> ConnectionInfo:
        """Pure local read of the side's connection state."""
        handle = self._sessions[side].handle
        if handle is None:
            return ConnectionInfo(is_connected=False)
        return ConnectionInfo(
            is_connected=True,
            session_id=handle.session_id,
            protocol_version=handle.protocol_version,
        )

    def status_text(self, side: ConnectionSide) -> str:
        """Human readable state: connected, never connected, or the last error."""
        state = self._sessions[side]
        if state.handle is not None:
            return "Connected"
        if state.last_error:
            return f"Connection error: {state.last_error}"
        return "Not connected"

    def is_busy(self, side: ConnectionSide) -> bool:
        return self._sessions[side].lock.locked()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "connected_sides": [s.value for s, st in self._sessions.items() if st.handle],
        }

    # Connection lifecycle

    async def connect(
        self, side: ConnectionSide, server_address: str, username: str, password: str
    ) -> Result[ConnectionHandle, ConnectError]:
        """Connect ``side`` to a vCenter endpoint.

        Reconnecting with the same endpoint and user returns the existing
        handle without a second remote connect. Failures are returned, never
        raised, and leave the side without a handle.
        """
        state = self._sessions[side]
        log = logger.bind(side=side.value, server=server_address, username=username)

        async with state.lock:
            existing = state.handle
            if existing is not None and state.channel is not None and state.channel.is_open:
                if existing.matches(server_address, username):
                    self._stats["connects_reused"] += 1
                    log.debug("Reusing existing session", session_id=existing.session_id)
                    return Ok(existing)
                log.info("Replacing session for a different endpoint", previous=existing.server_address)
                await self._teardown(state)

            try:
                channel = await self._ensure_channel(state)
                raw = await asyncio.wait_for(
                    channel.invoke(
                        CONNECT_SCRIPT,
                        {"Server": server_address, "User": username, "Password": password},
                    ),
                    timeout=self.settings.connect_timeout,
                )
            except asyncio.TimeoutError:
                await self._close_channel(state)
                return self._connect_failed(
                    state, f"Connection timed out after {self.settings.connect_timeout:g} seconds"
                )
            except ChannelError as e:
                await self._close_channel(state)
                return self._connect_failed(state, str(e))

            succeeded, session_id, version, reason = parse_connect_output(raw)
            if not succeeded:
                return self._connect_failed(state, describe_connect_failure(reason))

            handle = ConnectionHandle(
                side=side,
                server_address=server_address,
                username=username,
                session_id=session_id or f"{side.value}-{int(time.time())}",
                protocol_version=version,
            )
            state.handle = handle
            state.last_error = None
            state.verified_at = time.monotonic()
            self._stats["connects"] += 1

        log.info("Connected", session_id=handle.session_id, version=version)
        self.events.emit(
            "connection_health_changed",
            f"Connected to {server_address} (version {version or 'unknown'})",
            side=side,
            connected=True,
        )
        return Ok(handle)

    async def connect_with_credentials(
        self, side: ConnectionSide, server_address: str, username: str
    ) -> Result[ConnectionHandle, ConnectError]:
        """Connect using the password stored for the endpoint/user pair.

        A missing password stops here; a blank-password connect is never attempted.
        """
        state = self._sessions[side]
        password = None
        if self.credentials is not None:
            try:
                password = self.credentials.get_password(server_address, username)
            except CredentialError as e:
                return self._connect_failed(state, f"Credential lookup failed: {e}")
        if not password:
            return self._connect_failed(
                state, f"No stored password for {username} on {server_address}"
            )
        return await self.connect(side, server_address, username, password)

    def _connect_failed(self, state: SideSession, reason: str) -> Err[ConnectError]:
        state.handle = None
        state.last_error = reason
        state.verified_at = None
        self._stats["connect_errors"] += 1
        logger.error("Connect failed", side=state.side.value, reason=reason)
        self.events.emit(
            "connection_health_changed",
            f"Connection failed: {reason}",
            level=EventLevel.ERROR,
            side=state.side,
            connected=False,
        )
        return Err(ConnectError(reason))

    async def disconnect(self, side: ConnectionSide) -> None:
        """Best-effort remote disconnect; the local handle is always cleared."""
        state = self._sessions[side]
        async with state.lock:
            was_connected = state.handle is not None
            await self._teardown(state)
            state.last_error = None
        if was_connected:
            self._stats["disconnects"] += 1
            self.events.emit(
                "connection_health_changed", "Disconnected", side=side, connected=False
            )

    async def close_all(self) -> None:
        """Disconnect both sides and stop their sessions."""
        for side in ConnectionSide:
            await self.disconnect(side)
            state = self._sessions[side]
            async with state.lock:
                await self._close_channel(state)
        logger.info("Session pool closed", stats=self._stats)

    # Liveness

    async def is_connected(self, side: ConnectionSide) -> bool:
        """Last known connection state, probing when the cached result is old.

        A side whose session is busy running a command reports its cached
        state instead of waiting for the lock. Never raises.
        """
        state = self._sessions[side]
        if state.handle is None:
            return False
        if state.verified_at is not None and (
            time.monotonic() - state.verified_at < self.settings.health_cache_ttl
        ):
            return True
        if state.lock.locked():
            return True
        return await self.probe(side)

    async def probe(self, side: ConnectionSide) -> bool:
        """Check the session is still alive; a dead session loses its handle."""
        state = self._sessions[side]
        async with state.lock:
            if state.handle is None:
                return False
            if state.channel is None or not state.channel.is_open:
                reason = "PowerShell session is not running"
            else:
                self._stats["probes"] += 1
                try:
                    raw = await asyncio.wait_for(
                        state.channel.invoke(PROBE_SCRIPT), timeout=self.settings.probe_timeout
                    )
                    reason = "" if "True" in raw else "vCenter session is no longer connected"
                except asyncio.TimeoutError:
                    reason = "Liveness probe timed out"
                except ChannelError as e:
                    reason = str(e)

            if not reason:
                state.handle = state.handle.checked()
                state.verified_at = time.monotonic()
                return True

            self._stats["probe_failures"] += 1
            logger.warning("Liveness probe failed", side=side.value, reason=reason)
            await self._close_channel(state)
            state.handle = None
            state.last_error = reason
            state.verified_at = None

        self.events.emit(
            "connection_health_changed",
            f"Connection lost: {reason}",
            level=EventLevel.WARNING,
            side=side,
            connected=False,
        )
        return False

    # Exclusive access

    @asynccontextmanager
    async def session(self, side: ConnectionSide) -> AsyncGenerator[CommandChannel, None]:
        """Hold the side's lock and yield its channel.

        Raises:
            SessionNotConnected: If the side has no live session
        """
        state = self._sessions[side]
        async with state.lock:
            if state.handle is None:
                raise SessionNotConnected(f"{side.value} is not connected")
            if state.channel is None or not state.channel.is_open:
                state.handle = None
                state.last_error = "PowerShell session exited"
                await self._close_channel(state)
                raise SessionNotConnected(f"{side.value} session exited")
            yield state.channel

    # Internals; callers hold the side's lock

    async def _ensure_channel(self, state: SideSession) -> CommandChannel:
        if state.channel is None:
            state.channel = self.channel_factory(state.side)
        if not state.channel.is_open:
            await state.channel.open()
        return state.channel

    async def _teardown(self, state: SideSession) -> None:
        channel = state.channel
        if state.handle is not None and channel is not None and channel.is_open:
            try:
                await asyncio.wait_for(
                    channel.invoke(DISCONNECT_SCRIPT), timeout=self.settings.disconnect_timeout
                )
            except (asyncio.TimeoutError, ChannelError) as e:
                logger.warning("Remote disconnect failed", side=state.side.value, error=str(e))
                await self._close_channel(state)
        state.handle = None
        state.verified_at = None

    async def _close_channel(self, state: SideSession) -> None:
        channel, state.channel = state.channel, None
        if channel is None:
            return
        try:
            await channel.close()
        except (ChannelError, OSError) as e:
            logger.warning("Error closing session channel", side=state.side.value, error=str(e))
