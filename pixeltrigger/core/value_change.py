"""Per-target meter value change analysis.

Turns a stream of raw fill-percent samples into discrete change events
using a moving-average smoother, a noise floor, a larger re-baseline
threshold for recoveries on decreases-only meters, and a per-target
event cooldown.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Optional

from .constants import HEAL_REBASELINE_FACTOR
from .logging import Logger, get_logger
from .model import DetectionTarget, MeterChangeType, ValueChangeEvent, target_key


@dataclass
class MeterAnalysisState:
    """Smoothing window and baseline for one meter target."""

    recent_values: deque[float] = field(default_factory=deque)
    baseline: float = 0.0
    has_baseline: bool = False
    last_event_time: Optional[float] = None

    def smoothed(self) -> float:
        return sum(self.recent_values) / len(self.recent_values)


class ValueChangeAnalyzer:
    """Stateful smoothing and hysteresis over meter samples.

    One ``MeterAnalysisState`` per ``moduleId/targetId`` key, created on
    the first sample. Timestamps are seconds from ``clock`` (monotonic by
    default) and are only used for the event cooldown.
    """

    def __init__(
        self,
        logger: Optional[Logger] = None,
        clock: Callable[[], float] = time.monotonic,
        heal_rebaseline_factor: float = HEAL_REBASELINE_FACTOR,
    ) -> None:
        self._logger = logger or get_logger()
        self._clock = clock
        self._heal_rebaseline_factor = heal_rebaseline_factor
        self._states: dict[str, MeterAnalysisState] = {}
        self._lock = Lock()

    def process(
        self,
        target: DetectionTarget,
        percent: float,
        timestamp: Optional[float] = None,
    ) -> Optional[ValueChangeEvent]:
        """Feed one raw sample; return an event for an accepted change.

        Args:
            target: Meter target the sample belongs to
            percent: Raw fill percent in [0, 100]
            timestamp: Sample time in clock seconds (defaults to now)

        Returns:
            ValueChangeEvent, or None when the sample is absorbed
        """
        config = target.meter
        now = self._clock() if timestamp is None else timestamp
        window = max(1, config.smoothing_frames)
        key = target.key

        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = MeterAnalysisState()
                self._states[key] = state

            state.recent_values.append(percent)
            while len(state.recent_values) > window:
                state.recent_values.popleft()

            smoothed = state.smoothed()

            if not state.has_baseline:
                state.baseline = smoothed
                state.has_baseline = True
                return None

            delta = smoothed - state.baseline
            if abs(delta) < config.min_delta_percent:
                return None

            is_decrease = delta < 0

            if config.decreases_only and not is_decrease:
                # Small increases are jitter; large ones are a genuine recovery
                if abs(delta) >= config.min_delta_percent * self._heal_rebaseline_factor:
                    state.baseline = smoothed
                return None

            if state.last_event_time is not None:
                elapsed_ms = (now - state.last_event_time) * 1000.0
                if elapsed_ms < config.event_cooldown_ms:
                    return None

            event = ValueChangeEvent(
                module_id=target.module_id,
                target_id=target.target_id,
                target_name=target.name,
                current_percent=round(smoothed, 1),
                previous_percent=round(state.baseline, 1),
                delta_percent=round(delta, 1),
                is_decrease=is_decrease,
                change_type=MeterChangeType.DamageTaken if is_decrease else MeterChangeType.Healed,
            )

            state.baseline = smoothed
            state.last_event_time = now

        self._logger.meter_change(
            key,
            event.change_type.value,
            event.previous_percent,
            event.current_percent,
        )
        return event

    def reset_target(self, module_id: str, target_id: str) -> None:
        """Forget all samples for one target (e.g. after a config change)."""
        with self._lock:
            self._states.pop(target_key(module_id, target_id), None)

    def reset_all(self) -> None:
        with self._lock:
            self._states.clear()

    def get_current_value(self, module_id: str, target_id: str) -> Optional[float]:
        """Current smoothed value, or None before the baseline exists."""
        with self._lock:
            state = self._states.get(target_key(module_id, target_id))
            if state is None or not state.has_baseline:
                return None
            if state.recent_values:
                return state.smoothed()
            return state.baseline
