"""Workflow runner: guard, enumerate, select, execute per item, summarize."""

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Optional

import aiosqlite
import structlog

from ..core.events import EventBus, EventLevel
from ..core.exceptions import VCenterMigratorError
from ..core.executor import CommandExecutor
from ..core.history import RunHistoryStore
from ..core.inventory import InventoryCache
from ..core.results import Err
from ..core.settings import MIGRATION_ITEM_TIMEOUT
from ..models.enums import CommandOutcome, ConnectionSide, ItemStatus, RunState
from ..models.workflow import ItemOutcome, WorkflowItem, WorkflowRun
from .catalog import Workflow, WorkflowCatalog, WorkflowContext

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]

CONNECTION_LOST = "connection lost"
CANCELLED = "cancelled"


class WorkflowRunner:
    """Executes catalog workflows item by item against the two sessions.

    Items run strictly one after another in enumeration order. A failed item
    never stops the run; only losing every session the workflow needs does.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        inventory: InventoryCache,
        catalog: WorkflowCatalog,
        events: Optional[EventBus] = None,
        history: Optional[RunHistoryStore] = None,
        item_timeout: float = MIGRATION_ITEM_TIMEOUT,
    ):
        self.executor = executor
        self.pool = executor.pool
        self.inventory = inventory
        self.catalog = catalog
        self.events = events or self.pool.events
        self.history = history
        self.item_timeout = item_timeout

    async def run(
        self,
        workflow_name: str,
        selection: Optional[Iterable[str]] = None,
        validate_only: bool = False,
        options: Optional[dict[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> WorkflowRun:
        """Run a workflow and return the finished, frozen run.

        Args:
            workflow_name: Catalog name of the workflow
            selection: Item names or source ids to process; all items when None
            validate_only: Ask the scripts to validate without changing the target
            options: Workflow specific options (e.g. ``target_cluster``)
            cancel_event: Set to stop before the next item
            progress: Called with ``(completed, total)`` after every item

        Raises:
            WorkflowNotFoundError: If no workflow has that name
        """
        workflow = self.catalog.get(workflow_name)
        run = WorkflowRun(workflow=workflow.name, validate_only=validate_only)
        log = logger.bind(component="workflow_runner", workflow=workflow.name, run_id=run.run_id)
        log.info("Workflow run started", validate_only=validate_only)
        self.events.emit(
            "workflow",
            f"Starting {workflow.name}{' (validate only)' if validate_only else ''}",
            run_id=run.run_id,
        )

        missing = await self._ensure_connected(workflow)
        if missing:
            run.error = f"Not connected: {', '.join(side.value for side in missing)}"
            log.warning("Workflow run stopped before enumeration", reason=run.error)
            return await self._finish(run, log)

        run.state = RunState.ENUMERATING
        items = await self._enumerate(workflow, run, selection)
        if items is None:
            return await self._finish(run, log)
        run.items = items
        self.events.emit(
            "workflow", f"{len(items)} item(s) selected", run_id=run.run_id, total=len(items)
        )

        if validate_only:
            run.state = RunState.VALIDATING
            self.events.emit("workflow", "Validate only: the target will not be changed", run_id=run.run_id)
        context = WorkflowContext(
            executor=self.executor,
            validate_only=validate_only,
            options=dict(options or {}),
            item_timeout=self.item_timeout,
        )
        run.state = RunState.EXECUTING
        await self._execute_items(workflow, run, context, cancel_event, progress, log)

        if run.success_count and not validate_only:
            # The target changed; its cached inventory no longer reflects it
            self.inventory.invalidate(ConnectionSide.TARGET)
        return await self._finish(run, log)

    async def _ensure_connected(self, workflow: Workflow) -> list[ConnectionSide]:
        """Single up-front connection check; returns the sides that are down."""
        missing = []
        for side in workflow.required_sides:
            if not await self.pool.is_connected(side):
                missing.append(side)
        return missing

    async def _enumerate(
        self, workflow: Workflow, run: WorkflowRun, selection: Optional[Iterable[str]]
    ) -> Optional[list[WorkflowItem]]:
        snapshot = self.inventory.get(workflow.inventory_side)
        if snapshot is None:
            refreshed = await self.inventory.refresh(workflow.inventory_side)
            if isinstance(refreshed, Err):
                run.error = str(refreshed.error)
                return None
            snapshot = refreshed.value

        items = workflow.enumerate(snapshot)
        if selection is None or not workflow.selectable:
            return items

        wanted = {key.lower() for key in selection}
        selected = []
        for item in items:
            item.selected = item.name.lower() in wanted or item.key.lower() in wanted
            if item.selected:
                selected.append(item)
        return selected

    async def _execute_items(
        self,
        workflow: Workflow,
        run: WorkflowRun,
        context: WorkflowContext,
        cancel_event: Optional[asyncio.Event],
        progress: Optional[ProgressCallback],
        log: Any,
    ) -> None:
        total = len(run.items)
        for index, item in enumerate(run.items):
            if cancel_event is not None and cancel_event.is_set():
                log.info("Workflow run cancelled", remaining=total - index)
                self._close_remaining(run, index, ItemOutcome.skipped(CANCELLED), progress)
                return

            item.status = ItemStatus.IN_PROGRESS
            item.started_at = datetime.now()
            self.events.emit(
                "item", f"Processing {item.type.value} {item.name}", run_id=run.run_id
            )

            outcome = await self._execute_item(workflow, context, item)
            lost = False
            if outcome.outcome is CommandOutcome.FAILED:
                lost = await self._sessions_lost(workflow)
                if lost:
                    outcome = ItemOutcome.failed(CONNECTION_LOST)

            run.record(item, outcome)
            self._report(run, item, progress)

            if lost:
                log.error("All sessions lost, aborting run", completed=index + 1, total=total)
                self.events.emit(
                    "workflow",
                    "Connections lost; remaining items not attempted",
                    level=EventLevel.ERROR,
                    run_id=run.run_id,
                )
                self._close_remaining(run, index + 1, ItemOutcome.failed(CONNECTION_LOST), progress)
                run.state = RunState.ABORTED
                return

    async def _execute_item(
        self, workflow: Workflow, context: WorkflowContext, item: WorkflowItem
    ) -> ItemOutcome:
        try:
            result = await workflow.execute(context, item)
        except VCenterMigratorError as e:
            logger.warning("Workflow item failed", item=item.name, error=str(e))
            return ItemOutcome.failed(str(e))
        except Exception as e:
            logger.error(
                "Workflow item raised unexpectedly",
                item=item.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return ItemOutcome.failed(f"{type(e).__name__}: {e}")
        return workflow.classify(result)

    async def _sessions_lost(self, workflow: Workflow) -> bool:
        """True when every side the workflow needs is gone."""
        for side in workflow.required_sides:
            if await self.pool.probe(side):
                return False
        return True

    def _close_remaining(
        self,
        run: WorkflowRun,
        start: int,
        outcome: ItemOutcome,
        progress: Optional[ProgressCallback],
    ) -> None:
        for item in run.items[start:]:
            run.record(item, outcome)
            self._report(run, item, progress)

    def _report(
        self, run: WorkflowRun, item: WorkflowItem, progress: Optional[ProgressCallback]
    ) -> None:
        level = EventLevel.ERROR if item.status is ItemStatus.FAILED else EventLevel.INFO
        detail = item.last_error if item.status is ItemStatus.FAILED else item.message
        self.events.emit(
            "item",
            f"{item.name}: {item.status.value}{f' - {detail}' if detail else ''}",
            level=level,
            run_id=run.run_id,
            completed=run.completed_count,
            total=run.total,
        )
        if progress is not None:
            progress(run.completed_count, run.total)

    async def _finish(self, run: WorkflowRun, log: Any) -> WorkflowRun:
        if run.state is not RunState.ABORTED:
            run.state = RunState.SUMMARIZING
        run.ended_at = datetime.now()
        summary = run.summary()
        if run.state is RunState.SUMMARIZING:
            run.state = RunState.COMPLETED
        run.freeze()

        log.info(
            "Workflow run finished",
            state=run.state.value,
            summary=summary,
            error=run.error,
            duration=run.duration_seconds,
        )
        self.events.emit(
            "workflow",
            f"{run.workflow} {run.state.value.lower()}: {summary}"
            + (f" ({run.error})" if run.error else ""),
            level=EventLevel.ERROR if run.error or run.state is RunState.ABORTED else EventLevel.INFO,
            run_id=run.run_id,
            state=run.state.value,
        )

        if self.history is not None:
            try:
                await self.history.record(run)
            except aiosqlite.Error as e:
                log.error("Failed to record run history", error=str(e))
        return run
