"""Recent detection history.

Bounded, newest-first list of accepted detections for display and audit.
Screenshot archival is not part of this module.
"""

from collections import deque
from threading import Lock
from typing import Callable, Optional

from .constants import HISTORY_MAX_EVENTS
from .logging import Logger, get_logger
from .model import DetectionEvent, DetectionResult, DetectionTarget


class RecentDetections:
    """Thread-safe history sink with listeners.

    Listeners are called outside the lock; a failing listener is logged
    and does not affect recording.
    """

    def __init__(self, max_events: int = HISTORY_MAX_EVENTS, logger: Optional[Logger] = None) -> None:
        self._events: deque[DetectionEvent] = deque(maxlen=max_events)
        self._listeners: list[Callable[[DetectionEvent], None]] = []
        self._clear_listeners: list[Callable[[], None]] = []
        self._logger = logger or get_logger()
        self._lock = Lock()

    @property
    def max_events(self) -> int:
        return self._events.maxlen or 0

    def record(
        self,
        target: DetectionTarget,
        module_name: str,
        result: DetectionResult,
        action_triggered: bool = False,
        command: Optional[str] = None,
        was_in_cooldown: bool = False,
    ) -> DetectionEvent:
        """Record an accepted detection and notify listeners."""
        event = DetectionEvent(
            module_id=target.module_id,
            module_name=module_name,
            target_id=target.target_id,
            target_name=target.name,
            confidence=result.confidence,
            location=result.location,
            action_triggered=action_triggered,
            command=command,
            was_in_cooldown=was_in_cooldown,
            elapsed_seconds=result.elapsed_seconds,
            timestamp=result.timestamp,
        )

        with self._lock:
            self._events.appendleft(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self._logger.exception("History listener failed", e)

        return event

    def get_recent(self, count: Optional[int] = None) -> list[DetectionEvent]:
        """Newest-first events, optionally limited to ``count``."""
        with self._lock:
            events = list(self._events)
        if count is not None:
            return events[:max(0, count)]
        return events

    def get_module_detections(self, module_id: str, count: Optional[int] = None) -> list[DetectionEvent]:
        events = [e for e in self.get_recent() if e.module_id == module_id]
        if count is not None:
            return events[:max(0, count)]
        return events

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            listeners = list(self._clear_listeners)
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                self._logger.exception("History listener failed", e)

    def add_listener(self, callback: Callable[[DetectionEvent], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[DetectionEvent], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def add_clear_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._clear_listeners.append(callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
