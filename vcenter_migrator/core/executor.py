"""Command executor: serialized, timed command execution against one side."""

import asyncio
import time
from collections.abc import Mapping
from typing import Any, Optional, Protocol

import structlog
from pydantic import TypeAdapter, ValidationError

from ..models.connection import CommandRequest
from ..models.enums import ConnectionSide
from .exceptions import ChannelError, CommandTimeout, ExecutionError, ParseError, RemoteError
from .results import CommandResult, Err, Ok, Result, classify_raw_output, extract_json
from .session_pool import SessionPool
from .settings import COMMAND_TIMEOUT

logger = structlog.get_logger()


class ScriptResolver(Protocol):
    def script_body(self, script_id: str, parameters: Mapping[str, Any]) -> str:
        """Turn a script id and parameters into a command body."""
        ...


class CommandExecutor:
    """Runs commands through the session pool, one at a time per side.

    Both sides run independently. The lock is always released, whether the
    command succeeds, fails, times out or the caller is cancelled.
    """

    def __init__(
        self,
        pool: SessionPool,
        scripts: Optional[ScriptResolver] = None,
        default_timeout: float = COMMAND_TIMEOUT,
    ):
        self.pool = pool
        self.scripts = scripts
        self.default_timeout = default_timeout
        self._in_flight: dict[ConnectionSide, str] = {}
        self._stats = {
            "commands": 0,
            "failures": 0,
            "timeouts": 0,
            "parse_errors": 0,
            "total_seconds": 0.0,
        }

    def in_flight(self, side: ConnectionSide) -> Optional[str]:
        """Display name of the command currently running on ``side``, if any."""
        return self._in_flight.get(side)

    def get_stats(self) -> dict[str, Any]:
        stats = dict(self._stats)
        stats["average_seconds"] = (
            stats["total_seconds"] / stats["commands"] if stats["commands"] else 0.0
        )
        return stats

    async def _invoke(self, request: CommandRequest) -> str:
        """Run the request and return raw output.

        Raises:
            SessionNotConnected: If the side has no live session
            CommandTimeout: If the request timeout elapsed
            RemoteError: If the channel broke while running the command
        """
        label = request.display_name
        log = logger.bind(side=request.side.value, command=label)
        self._stats["commands"] += 1

        async with self.pool.session(request.side) as channel:
            self._in_flight[request.side] = label
            start = time.monotonic()
            try:
                raw = await asyncio.wait_for(
                    channel.invoke(request.body, request.parameters), timeout=request.timeout
                )
            except asyncio.TimeoutError as e:
                self._stats["timeouts"] += 1
                log.warning("Command timed out", timeout=request.timeout)
                raise CommandTimeout(label, request.timeout) from e
            except ChannelError as e:
                log.error("Command channel failed", error=str(e))
                raise RemoteError(str(e)) from e
            finally:
                self._in_flight.pop(request.side, None)
                self._stats["total_seconds"] += time.monotonic() - start

        log.debug("Command completed", output_length=len(raw))
        return raw

    async def execute(self, request: CommandRequest) -> CommandResult:
        """Run a request and classify its text output."""
        try:
            raw = await self._invoke(request)
        except ExecutionError as e:
            self._stats["failures"] += 1
            return CommandResult.failure(e)

        result = classify_raw_output(raw)
        if result.is_failure:
            self._stats["failures"] += 1
        return result

    async def execute_typed(
        self, request: CommandRequest, model: Any
    ) -> Result[Any, ExecutionError]:
        """Run a request and validate the last JSON value of its output into ``model``.

        ``model`` is a type or a pydantic ``TypeAdapter``.
        """
        adapter = model if isinstance(model, TypeAdapter) else TypeAdapter(model)
        try:
            raw = await self._invoke(request)
        except ExecutionError as e:
            self._stats["failures"] += 1
            return Err(e)

        classified = classify_raw_output(raw)
        if classified.is_failure:
            self._stats["failures"] += 1
            return Err(classified.error)

        try:
            data = extract_json(raw)
            return Ok(adapter.validate_python(data))
        except ParseError as e:
            self._stats["parse_errors"] += 1
            return Err(e)
        except ValidationError as e:
            self._stats["parse_errors"] += 1
            logger.warning(
                "Command output did not match expected shape",
                side=request.side.value,
                command=request.display_name,
                errors=e.error_count(),
            )
            return Err(ParseError(f"Output does not match expected shape: {e}", raw))

    def build_script_request(
        self,
        side: ConnectionSide,
        script_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        expected_shape: str = "text",
    ) -> CommandRequest:
        if self.scripts is None:
            raise ValueError("No script resolver configured")
        parameters = parameters or {}
        return CommandRequest(
            side=side,
            body=self.scripts.script_body(script_id, parameters),
            parameters=parameters,
            expected_shape=expected_shape,
            timeout=timeout or self.default_timeout,
            label=script_id,
        )

    async def run_script(
        self,
        side: ConnectionSide,
        script_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a named script and classify its text output."""
        return await self.execute(self.build_script_request(side, script_id, parameters, timeout))

    async def run_script_typed(
        self,
        side: ConnectionSide,
        script_id: str,
        model: Any,
        parameters: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Result[Any, ExecutionError]:
        request = self.build_script_request(side, script_id, parameters, timeout, "typed")
        return await self.execute_typed(request, model)
