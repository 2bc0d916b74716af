"""Core exceptions for vCenter Migrator operations.

Errors crossing component boundaries are returned inside a ``Result`` rather
than raised; these classes double as the error values.
"""


class VCenterMigratorError(Exception):
    """Base exception for vCenter Migrator operations."""


class ConfigurationError(VCenterMigratorError):
    """Configuration validation or loading failed."""


class CredentialError(VCenterMigratorError):
    """No usable credential for an endpoint."""


class ChannelError(VCenterMigratorError):
    """The underlying command channel (process or SSH stream) failed."""


class ConnectError(VCenterMigratorError):
    """Connect, disconnect or liveness probe failed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ExecutionError(VCenterMigratorError):
    """A command could not be executed or its result could not be used."""


class CommandTimeout(ExecutionError):
    """The command did not finish within its timeout."""

    def __init__(self, label: str, timeout: float):
        super().__init__(f"Command timed out after {timeout:g} seconds: {label}")
        self.timeout = timeout


class RemoteError(ExecutionError):
    """The remote side reported an error."""


class ParseError(ExecutionError):
    """Command output could not be parsed into the expected shape.

    The raw text is kept for diagnostics.
    """

    def __init__(self, message: str, raw_text: str):
        super().__init__(message)
        self.raw_text = raw_text


class SessionNotConnected(ExecutionError):
    """A command was issued for a side with no live session.

    This is a caller bug (execute before connect), not a transient condition.
    """


class RefreshError(VCenterMigratorError):
    """An inventory enumeration phase failed; the previous snapshot is kept."""

    def __init__(self, phase: str, cause: Exception):
        super().__init__(f"Inventory phase '{phase}' failed: {cause}")
        self.phase = phase
        self.cause = cause


class WorkflowItemError(VCenterMigratorError):
    """A single workflow item failed. Never aborts the surrounding run."""


class WorkflowNotFoundError(VCenterMigratorError):
    """No workflow registered under the requested name."""
