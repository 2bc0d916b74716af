"""SQLite-backed history of completed workflow runs."""

import json
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel

from ..models.workflow import WorkflowRun

logger = structlog.get_logger()


class RunRecord(BaseModel):
    """Stored summary of one run; ``items`` holds the per-item detail."""

    run_id: str
    workflow: str
    state: str
    validate_only: bool
    started_at: str
    ended_at: str | None
    success_count: int
    failure_count: int
    skipped_count: int
    summary: str
    error: str | None = None
    items: list[dict[str, Any]] = []


class RunHistoryStore:
    """Persists frozen workflow runs so results survive the process."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.db_path = data_dir / "run_history.db"
        self._ensure_data_dir()

    def _ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS workflow_runs (
                    run_id TEXT PRIMARY KEY,
                    workflow TEXT NOT NULL,
                    state TEXT NOT NULL,
                    validate_only INTEGER NOT NULL DEFAULT 0,
                    started_at TEXT NOT NULL,  -- ISO timestamp
                    ended_at TEXT,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    failure_count INTEGER NOT NULL DEFAULT 0,
                    skipped_count INTEGER NOT NULL DEFAULT 0,
                    summary TEXT NOT NULL,
                    error TEXT,
                    items TEXT NOT NULL  -- JSON list of item dicts
                )
            """)
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_workflow_runs_started ON workflow_runs(started_at)"
            )
            await db.commit()

        logger.info("Run history database initialized", db_path=str(self.db_path))

    async def record(self, run: WorkflowRun) -> None:
        """Store a run; only frozen (finished) runs are accepted."""
        if not run.frozen:
            raise ValueError("Only finished workflow runs can be recorded")
        data = run.to_dict()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO workflow_runs
                (run_id, workflow, state, validate_only, started_at, ended_at,
                 success_count, failure_count, skipped_count, summary, error, items)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["run_id"],
                    data["workflow"],
                    data["state"],
                    int(data["validate_only"]),
                    data["started_at"],
                    data["ended_at"],
                    data["success_count"],
                    data["failure_count"],
                    data["skipped_count"],
                    data["summary"],
                    data["error"],
                    json.dumps(data["items"]),
                ),
            )
            await db.commit()
        logger.debug("Recorded workflow run", run_id=run.run_id, workflow=run.workflow)

    async def list_runs(self, limit: int = 20, workflow: str | None = None) -> list[RunRecord]:
        """Most recent runs first, without per-item detail."""
        query = "SELECT * FROM workflow_runs"
        params: tuple[Any, ...] = ()
        if workflow:
            query += " WHERE workflow = ?"
            params = (workflow,)
        query += " ORDER BY started_at DESC LIMIT ?"
        params += (limit,)

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_record(row, include_items=False) for row in rows]

    async def get_run(self, run_id: str) -> RunRecord | None:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM workflow_runs WHERE run_id = ?", (run_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_record(row, include_items=True) if row else None

    @staticmethod
    def _row_to_record(row: aiosqlite.Row, include_items: bool) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            workflow=row["workflow"],
            state=row["state"],
            validate_only=bool(row["validate_only"]),
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            skipped_count=row["skipped_count"],
            summary=row["summary"],
            error=row["error"],
            items=json.loads(row["items"]) if include_items else [],
        )
