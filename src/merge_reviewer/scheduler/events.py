"""Typed lifecycle events for scheduled jobs."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from merge_reviewer.scheduler.jobs import Job, utcnow

logger = logging.getLogger(__name__)


class JobEventType(Enum):
    """Job lifecycle transitions."""

    ADDED = "added"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobEvent:
    """A lifecycle transition of one job."""

    type: JobEventType
    job: Job[Any]
    timestamp: datetime = field(default_factory=utcnow)


JobEventCallback = Callable[[JobEvent], None]


class JobEventBus:
    """Synchronous publish/subscribe channel for job events."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[JobEventCallback, frozenset[JobEventType] | None]] = []

    def subscribe(
        self,
        callback: JobEventCallback,
        types: set[JobEventType] | None = None,
    ) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            callback: Called with every matching event
            types: Optional filter; all events when omitted

        Returns:
            A function that removes the subscription
        """
        entry = (callback, frozenset(types) if types else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event_type: JobEventType, job: Job[Any]) -> None:
        """Deliver an event to all matching subscribers."""
        event = JobEvent(type=event_type, job=job)
        for callback, types in list(self._subscribers):
            if types is not None and event_type not in types:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Job event subscriber failed on {event_type.value}: {e}")
