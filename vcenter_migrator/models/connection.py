"""Connection and command request models."""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any

from .enums import ConnectionSide, ResultShape


@dataclass(frozen=True)
class ConnectionHandle:
    """A live session to one side's vCenter endpoint.

    Owned exclusively by the session pool. A handle only exists while the
    side is connected; disconnecting or failing a health check discards it.
    """

    side: ConnectionSide
    server_address: str
    username: str
    session_id: str | None = None
    protocol_version: str | None = None
    connected_at: datetime = field(default_factory=datetime.now)
    last_health_check: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return self.session_id is not None

    def matches(self, server_address: str, username: str) -> bool:
        """Check whether this handle was opened for the given endpoint and user."""
        return (
            self.server_address.lower() == server_address.lower()
            and self.username.lower() == username.lower()
        )

    def checked(self, when: datetime | None = None) -> "ConnectionHandle":
        """Return a copy stamped with a fresh health-check time."""
        return replace(self, last_health_check=when or datetime.now())


@dataclass(frozen=True)
class ConnectionInfo:
    """Pure read of the local connection state for one side."""

    is_connected: bool
    session_id: str | None = None
    protocol_version: str | None = None

    def __iter__(self):
        # Allows ``connected, session_id, version = pool.get_connection_info(side)``
        return iter((self.is_connected, self.session_id, self.protocol_version))


@dataclass(frozen=True)
class CommandRequest:
    """A command addressed to exactly one side's session. Immutable once built."""

    side: ConnectionSide
    body: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    expected_shape: ResultShape = "text"
    timeout: float = 300.0
    label: str = ""

    def __post_init__(self):
        # Freeze the parameter mapping while keeping insertion order
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @property
    def display_name(self) -> str:
        """Short name for logs; never includes parameter values."""
        if self.label:
            return self.label
        first_line = self.body.strip().splitlines()[0] if self.body.strip() else ""
        return first_line[:80]
