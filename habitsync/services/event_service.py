"""
Progress event bus.
UI, notification and analytics collaborators subscribe here; the engine
never knows what they do with an event.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from habitsync.constants import ProgressEventType

logger = logging.getLogger("habitsync.events")


@dataclass(frozen=True)
class ProgressEvent:
    type: ProgressEventType
    user_id: str
    occurred_at: datetime
    habit_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[ProgressEvent], None]


class ProgressEventBus:
    """In-process publish/subscribe for ProgressEvents"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[Optional[ProgressEventType], Subscriber]] = []

    def subscribe(
        self,
        callback: Subscriber,
        event_type: Optional[ProgressEventType] = None
    ) -> Callable[[], None]:
        """
        Register a callback for one event type, or for all events.

        Returns:
            Function that removes the subscription
        """
        entry = (event_type, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event: ProgressEvent) -> None:
        """Deliver an event; a failing subscriber never affects the others"""
        with self._lock:
            targets = [
                callback for event_type, callback in self._subscribers
                if event_type is None or event_type == event.type
            ]
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.warning(f"Subscriber failed for {event.type.value} event", exc_info=True)

    def emit_all(self, events: List[ProgressEvent]) -> None:
        for event in events:
            self.emit(event)
