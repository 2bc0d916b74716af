"""Command results and the text conventions of the PowerCLI scripts.

Raw script output enters the system here and nowhere else. Everything past
this module works with ``CommandResult`` and ``ItemOutcome`` values instead of
matching strings.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from ..models.workflow import ItemOutcome
from .exceptions import ExecutionError, ParseError, RemoteError

T = TypeVar("T")
E = TypeVar("E", bound=Exception)

# Sentinels shared with the external scripts
SUCCESS_PREFIX = "SUCCESS:"
ERROR_PREFIX = "ERROR:"
ALREADY_EXISTS = "already exists"
SUCCESSFULLY_MIGRATED = "Successfully migrated"
CONNECTION_SUCCESS = "CONNECTION_SUCCESS"
CONNECTION_FAILED = "CONNECTION_FAILED:"
SESSION_ID_PREFIX = "SESSION_ID:"
VERSION_PREFIX = "VERSION:"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]


class ResultKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    EMPTY = "empty"


@dataclass(frozen=True)
class CommandResult:
    """Tagged union ``Success(payload) | Failure(message) | Empty``."""

    kind: ResultKind
    payload: Any = None
    message: str = ""
    error: ExecutionError | None = None
    raw_text: str = ""

    @classmethod
    def success(cls, payload: Any, raw_text: str = "") -> "CommandResult":
        return cls(ResultKind.SUCCESS, payload=payload, raw_text=raw_text)

    @classmethod
    def failure(cls, error: ExecutionError, raw_text: str = "") -> "CommandResult":
        return cls(ResultKind.FAILURE, message=str(error), error=error, raw_text=raw_text)

    @classmethod
    def empty(cls) -> "CommandResult":
        return cls(ResultKind.EMPTY)

    @property
    def is_success(self) -> bool:
        return self.kind is ResultKind.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.kind is ResultKind.FAILURE

    @property
    def is_empty(self) -> bool:
        return self.kind is ResultKind.EMPTY

    @property
    def text(self) -> str:
        """Payload as text (empty string for failures and empty results)."""
        if self.kind is not ResultKind.SUCCESS:
            return ""
        return self.payload if isinstance(self.payload, str) else self.raw_text


def classify_raw_output(raw_text: str) -> CommandResult:
    """Turn raw channel output into a ``CommandResult``.

    Blank output is ``Empty``. Output whose first or last meaningful line
    carries the ``ERROR:`` prefix is a remote failure; the session's own catch
    block writes that line after whatever the command printed before failing.
    Anything else is a success carrying the text.
    """
    text = raw_text.strip()
    if not text:
        return CommandResult.empty()
    lines = text.splitlines()
    for line in (lines[0].strip(), lines[-1].strip()):
        if line.startswith(ERROR_PREFIX):
            message = line[len(ERROR_PREFIX):].strip() or "Remote command reported an error"
            return CommandResult.failure(RemoteError(message), raw_text=raw_text)
    return CommandResult.success(text, raw_text=raw_text)


def extract_json(raw_text: str) -> Any:
    """Return the last well-formed top-level JSON object or array in ``raw_text``.

    Log lines before (or after) the JSON value are tolerated. A value must
    start a line (leading whitespace allowed), as ``ConvertTo-Json`` writes it;
    each line start is decoded at most once, so a truncated one-line payload
    costs a single attempt.

    Raises:
        ParseError: If the text holds no JSON object or array
    """
    decoder = json.JSONDecoder()
    found = False
    value: Any = None
    index = 0
    length = len(raw_text)
    while index < length:
        line_end = raw_text.find("\n", index)
        if line_end == -1:
            line_end = length
        start = index
        while start < line_end and raw_text[start] in " \t\r":
            start += 1
        if start < line_end and raw_text[start] in "{[":
            try:
                candidate, end = decoder.raw_decode(raw_text, start)
            except json.JSONDecodeError:
                pass
            else:
                value, found = candidate, True
                index = end
                continue
        index = line_end + 1
    if not found:
        raise ParseError("No JSON object or array found in command output", raw_text)
    return value


def parse_connect_output(raw_text: str) -> tuple[bool, str | None, str | None, str]:
    """Parse the connect script's sentinel lines.

    Returns:
        Tuple of (succeeded, session_id, version, failure_reason)
    """
    session_id = None
    version = None
    for line in raw_text.splitlines():
        line = line.strip()
        if line.startswith(SESSION_ID_PREFIX):
            session_id = line[len(SESSION_ID_PREFIX):].strip() or None
        elif line.startswith(VERSION_PREFIX):
            version = line[len(VERSION_PREFIX):].strip() or None

    if CONNECTION_SUCCESS in raw_text:
        return True, session_id, version, ""

    if CONNECTION_FAILED in raw_text:
        tail = raw_text[raw_text.index(CONNECTION_FAILED) + len(CONNECTION_FAILED):]
        reason = tail.strip().splitlines()[0].strip() if tail.strip() else ""
        return False, None, None, reason or "Connection failed"

    if raw_text.strip().startswith(ERROR_PREFIX):
        return False, None, None, raw_text.strip()[len(ERROR_PREFIX):].strip().splitlines()[0]

    return False, None, None, "Connection failed - no CONNECTION_SUCCESS found"


def describe_connect_failure(reason: str) -> str:
    """Attach a hint to common connect failure causes."""
    lowered = reason.lower()
    if "certificate" in lowered or "ssl" in lowered:
        return f"{reason} (check the InvalidCertificateAction PowerCLI setting)"
    if "authentication" in lowered or "login" in lowered:
        return f"{reason} (verify username and password)"
    if "timeout" in lowered or "network" in lowered:
        return f"{reason} (check network connectivity and firewall settings)"
    return reason


# Item classifiers, one per external script family


def classify_migration_result(result: CommandResult) -> ItemOutcome:
    """Classify output of the object migration/import scripts.

    ``Successfully migrated`` wins, then ``already exists`` (skip), then the
    ``ERROR:`` prefix or a JSON ``Success: false`` payload, then ``SUCCESS:``.
    """
    if result.is_failure:
        raw = result.raw_text
        if ALREADY_EXISTS in raw.lower():
            return ItemOutcome.skipped(_first_line_with(raw, ALREADY_EXISTS))
        return ItemOutcome.failed(result.message)
    if result.is_empty:
        return ItemOutcome.failed("Script produced no output")

    text = result.text
    if SUCCESSFULLY_MIGRATED.lower() in text.lower():
        return ItemOutcome.migrated(
            _first_line_with(text, SUCCESSFULLY_MIGRATED), target_id=_json_field(text, "TargetId")
        )
    if ALREADY_EXISTS in text.lower():
        return ItemOutcome.skipped(_first_line_with(text, ALREADY_EXISTS))

    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(ERROR_PREFIX):
            return ItemOutcome.failed(stripped[len(ERROR_PREFIX):].strip() or stripped)

    payload = _json_payload(text)
    if isinstance(payload, dict) and "Success" in payload:
        if payload.get("Success") is True:
            target_id = payload.get("TargetId")
            return ItemOutcome.migrated(
                str(payload.get("Message", "")), target_id=str(target_id) if target_id else None
            )
        if payload.get("AlreadyExists") is True:
            return ItemOutcome.skipped(str(payload.get("Message", ALREADY_EXISTS)))
        return ItemOutcome.failed(str(payload.get("Error") or "Unknown error"))

    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(SUCCESS_PREFIX):
            return ItemOutcome.migrated(stripped[len(SUCCESS_PREFIX):].strip())

    return ItemOutcome.failed(f"Unrecognised script output: {text.strip()[:200]}")


def classify_backup_result(result: CommandResult) -> ItemOutcome:
    """Classify output of the host backup scripts: anything but an error is a success."""
    if result.is_failure:
        return ItemOutcome.failed(result.message)
    if result.is_empty:
        return ItemOutcome.failed("Backup script produced no output")
    lines = [line.strip() for line in result.text.splitlines() if line.strip()]
    return ItemOutcome.migrated(lines[-1] if lines else "")


def classify_host_move_result(result: CommandResult) -> ItemOutcome:
    """Classify output of the host move script, which reports ``SUCCESS`` when done."""
    if result.is_failure:
        return ItemOutcome.failed(result.message)
    if result.is_empty:
        return ItemOutcome.failed("Host move script produced no output")
    text = result.text
    if ALREADY_EXISTS in text.lower():
        return ItemOutcome.skipped(_first_line_with(text, ALREADY_EXISTS))
    if "SUCCESS" in text:
        return ItemOutcome.migrated(_first_line_with(text, "SUCCESS"))
    return ItemOutcome.failed(f"Unrecognised script output: {text.strip()[:200]}")


def _first_line_with(text: str, needle: str) -> str:
    lowered = needle.lower()
    for line in text.splitlines():
        if lowered in line.lower():
            return line.strip()
    return text.strip()


def _json_payload(text: str) -> Any:
    try:
        return extract_json(text)
    except ParseError:
        return None


def _json_field(text: str, key: str) -> str | None:
    payload = _json_payload(text)
    if isinstance(payload, dict) and payload.get(key):
        return str(payload[key])
    return None
