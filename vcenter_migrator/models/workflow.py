"""Workflow item and run state."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .enums import CommandOutcome, ItemStatus, ItemType, RunState


class FrozenRunError(RuntimeError):
    """Attempted to modify a workflow run or item after it was frozen."""


class _Freezable:
    """Dataclass mixin rejecting attribute writes once ``freeze()`` was called."""

    _frozen: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if self._frozen:
            raise FrozenRunError(f"{type(self).__name__} is frozen; cannot set {name!r}")
        object.__setattr__(self, name, value)

    @property
    def frozen(self) -> bool:
        return self._frozen


@dataclass(eq=False)
class WorkflowItem(_Freezable):
    """One object processed by a workflow run."""

    name: str
    type: ItemType
    source_id: str = ""
    target_id: str | None = None
    path: str = ""
    selected: bool = True
    status: ItemStatus = ItemStatus.PENDING
    last_error: str | None = None
    message: str = ""
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def key(self) -> str:
        """Stable identity used for selection: the source id when known, else the name."""
        return self.source_id or self.name

    @property
    def is_done(self) -> bool:
        return self.status in (ItemStatus.MIGRATED, ItemStatus.SKIPPED, ItemStatus.FAILED)

    def freeze(self) -> None:
        object.__setattr__(self, "_frozen", True)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        for key in ("started_at", "ended_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass(frozen=True)
class ItemOutcome:
    """Classified result of executing one item."""

    outcome: CommandOutcome
    message: str = ""
    target_id: str | None = None

    @classmethod
    def migrated(cls, message: str = "", target_id: str | None = None) -> "ItemOutcome":
        return cls(CommandOutcome.MIGRATED, message, target_id)

    @classmethod
    def skipped(cls, message: str = "") -> "ItemOutcome":
        return cls(CommandOutcome.SKIPPED, message)

    @classmethod
    def failed(cls, message: str) -> "ItemOutcome":
        return cls(CommandOutcome.FAILED, message)


@dataclass(eq=False)
class WorkflowRun(_Freezable):
    """Progress and outcome of a single workflow execution.

    Owned by the runner while executing. Once frozen the run and all of its
    items reject further modification.
    """

    workflow: str
    items: list[WorkflowItem] = field(default_factory=list)
    validate_only: bool = False
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RunState = RunState.NOT_STARTED
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    error: str | None = None

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def completed_count(self) -> int:
        return self.success_count + self.failure_count + self.skipped_count

    @property
    def progress(self) -> float:
        """Fraction of items processed, in the range 0..1."""
        if not self.items:
            return 1.0 if self.state.is_terminal else 0.0
        return self.completed_count / self.total

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def record(self, item: WorkflowItem, outcome: ItemOutcome) -> None:
        """Apply a classified outcome to an item and the run counters."""
        item.ended_at = datetime.now()
        item.message = outcome.message
        if outcome.outcome is CommandOutcome.MIGRATED:
            item.status = ItemStatus.MIGRATED
            item.target_id = outcome.target_id or item.target_id
            self.success_count += 1
        elif outcome.outcome is CommandOutcome.SKIPPED:
            item.status = ItemStatus.SKIPPED
            self.skipped_count += 1
        else:
            item.status = ItemStatus.FAILED
            item.last_error = outcome.message or "Unknown error"
            self.failure_count += 1

    def summary(self) -> str:
        return (
            f"{self.success_count} migrated, {self.skipped_count} skipped, "
            f"{self.failure_count} failed"
        )

    def freeze(self) -> None:
        for item in self.items:
            item.freeze()
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "_frozen", True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "state": self.state.value,
            "validate_only": self.validate_only,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "error": self.error,
            "summary": self.summary(),
            "items": [item.to_dict() for item in self.items],
        }
