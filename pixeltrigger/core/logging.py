"""Thread-safe logging system with circular buffer.

Provides a logging interface for the detection engine that:
- Uses a circular buffer to prevent memory growth during long runs
- Is thread-safe for worker thread -> host thread communication
- Formats log entries with timestamps, loop state, target and context
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from threading import Lock
from typing import Any, Callable, Optional

from .constants import LOG_BUFFER_SIZE


class LogLevel(Enum):
    """Log entry severity levels."""

    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class LogEntry:
    """A single log entry.

    Attributes:
        timestamp: When the entry was created
        level: Severity level
        message: Log message content
        state: Orchestrator state at the time (if applicable)
        target: Target key ``moduleId/targetId`` (if applicable)
        context: Extra key/value details rendered after the message
    """

    timestamp: datetime
    level: LogLevel
    message: str
    state: Optional[str] = None
    target: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        """Format the log entry as a string."""
        time_str = self.timestamp.strftime("%H:%M:%S")
        parts = [f"[{time_str}]", f"[{self.level.name}]"]

        if self.state:
            parts.append(f"[{self.state}]")

        if self.target:
            parts.append(f"[{self.target}]")

        parts.append(self.message)

        for key, value in self.context.items():
            if isinstance(value, float):
                parts.append(f"{key}={value:.4f}")
            else:
                parts.append(f"{key}={value}")

        return " ".join(parts)


@dataclass
class LogBuffer:
    """Thread-safe circular buffer for log entries.

    Uses a deque with maxlen to automatically discard old entries.
    Thread-safe for multiple writers and readers.
    """

    max_size: int = LOG_BUFFER_SIZE
    _buffer: deque[LogEntry] = field(default_factory=lambda: deque(maxlen=LOG_BUFFER_SIZE))
    _lock: Lock = field(default_factory=Lock)
    _listeners: list[Callable[[LogEntry], None]] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Reinitialize buffer with correct maxlen if max_size differs."""
        if self._buffer.maxlen != self.max_size:
            self._buffer = deque(maxlen=self.max_size)

    def add(self, entry: LogEntry) -> None:
        """Add a log entry to the buffer (thread-safe)."""
        with self._lock:
            self._buffer.append(entry)
            listeners = list(self._listeners)

        # Notify listeners (outside lock to prevent deadlock)
        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                pass  # Don't let listener errors affect logging

    def get_all(self) -> list[LogEntry]:
        """Get all entries in the buffer (thread-safe)."""
        with self._lock:
            return list(self._buffer)

    def get_recent(self, count: int) -> list[LogEntry]:
        """Get the most recent N entries (thread-safe)."""
        with self._lock:
            if count >= len(self._buffer):
                return list(self._buffer)
            return list(self._buffer)[-count:]

    def clear(self) -> None:
        """Clear all entries (thread-safe)."""
        with self._lock:
            self._buffer.clear()

    def add_listener(self, callback: Callable[[LogEntry], None]) -> None:
        """Add a listener to be notified of new entries."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[LogEntry], None]) -> None:
        """Remove a listener."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def __len__(self) -> int:
        """Return current buffer size."""
        with self._lock:
            return len(self._buffer)


class Logger:
    """Main logging interface for the detection engine.

    Provides convenience methods for logging at different levels with
    optional context. Keyword arguments become ``key=value`` context,
    except ``target`` which tags the entry with a target key.
    """

    def __init__(self, buffer: Optional[LogBuffer] = None) -> None:
        """Initialize logger with optional existing buffer."""
        self._buffer = buffer if buffer is not None else LogBuffer()
        self._current_state: Optional[str] = None

    @property
    def buffer(self) -> LogBuffer:
        """Access the underlying log buffer."""
        return self._buffer

    def set_state(self, state: str) -> None:
        """Set the current state for subsequent log entries."""
        self._current_state = state

    def clear_context(self) -> None:
        """Clear current state context."""
        self._current_state = None

    def _log(
        self,
        level: LogLevel,
        message: str,
        target: Optional[str] = None,
        **context: Any,
    ) -> LogEntry:
        """Internal logging method."""
        entry = LogEntry(
            timestamp=datetime.now(),
            level=level,
            message=message,
            state=self._current_state,
            target=target,
            context=context,
        )
        self._buffer.add(entry)
        return entry

    def debug(self, message: str, **kwargs: Any) -> LogEntry:
        """Log a debug message."""
        return self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> LogEntry:
        """Log an info message."""
        return self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> LogEntry:
        """Log a warning message."""
        return self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> LogEntry:
        """Log an error message."""
        return self._log(LogLevel.ERROR, message, **kwargs)

    def exception(self, message: str, exc: BaseException, **kwargs: Any) -> LogEntry:
        """Log an error message together with the exception that caused it."""
        return self._log(
            LogLevel.ERROR,
            f"{message}: {exc}",
            error_type=type(exc).__name__,
            **kwargs,
        )

    def state_change(self, old_state: str, new_state: str) -> LogEntry:
        """Log a state transition."""
        self.set_state(new_state)
        return self.info(f"State change: {old_state} -> {new_state}")

    def detection(
        self,
        target: str,
        confidence: float,
        triggered: bool,
        in_cooldown: bool,
    ) -> LogEntry:
        """Log an accepted template detection."""
        return self.info(
            "Detected",
            target=target,
            confidence=confidence,
            triggered=triggered,
            in_cooldown=in_cooldown,
        )

    def meter_change(self, target: str, change_type: str, previous: float, current: float) -> LogEntry:
        """Log a meter value change."""
        return self.debug(
            f"Meter {change_type}: {previous:.1f}% -> {current:.1f}%",
            target=target,
            delta=round(current - previous, 1),
        )


# Global logger instance for convenience
_global_logger: Optional[Logger] = None


def get_logger() -> Logger:
    """Get the global logger instance, creating one if needed."""
    global _global_logger
    if _global_logger is None:
        _global_logger = Logger()
    return _global_logger


def set_logger(logger: Logger) -> None:
    """Set the global logger instance."""
    global _global_logger
    _global_logger = logger
