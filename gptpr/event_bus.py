import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class RunEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    source: str
    iteration: int | None = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventBus:
    """A lightweight, synchronous event bus for decoupling run observability."""

    def __init__(self):
        self._subscribers: List[Callable[[RunEvent], None]] = []

    def subscribe(self, callback: Callable[[RunEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[RunEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(
        self,
        event_type: str,
        source: str,
        payload: Dict[str, Any] | None = None,
        iteration: int | None = None,
    ) -> RunEvent:
        """Construct and broadcast a RunEvent to all subscribers."""
        event = RunEvent(
            event_type=event_type,
            source=source,
            iteration=iteration,
            payload=payload or {},
        )

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # A failing subscriber (like a bad file write) must not stop the run
                logger.warning(f"[BUS] Subscriber failed on {event_type}: {e}")

        return event
