"""In-process event bus for progress and activity events.

The core emits events; whoever renders them (a UI, the CLI, a log file)
subscribes. Every event is also written to the ``activity`` logger.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..models.enums import ConnectionSide
from .logging_config import get_activity_logger

activity_logger = get_activity_logger()


class EventLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    """A single structured progress/log event."""

    phase: str
    message: str
    level: EventLevel = EventLevel.INFO
    side: ConnectionSide | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        side = f" [{self.side.value}]" if self.side else ""
        return f"[{self.timestamp:%H:%M:%S}]{side} {self.phase}: {self.message}"


Subscriber = Callable[[Event], None]


class EventBus:
    """Fan-out of events to subscribers."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(
        self,
        phase: str,
        message: str,
        level: EventLevel = EventLevel.INFO,
        side: ConnectionSide | None = None,
        **data: Any,
    ) -> Event:
        event = Event(phase=phase, message=message, level=level, side=side, data=data)
        log_method = getattr(activity_logger, level.value)
        log_method(message, phase=phase, side=side.value if side else None, **data)

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # Subscriber errors never reach the emitter
                activity_logger.error("Event subscriber failed", phase=phase, error=str(e))
        return event
