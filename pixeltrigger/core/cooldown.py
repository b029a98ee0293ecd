"""Per-target cooldown gate.

Decides whether a detection may fire its action, based on the target's
cooldown policy:

- Standard: blocked until ``duration`` has passed since the last trigger
- Continuous: blocked until detections stop for ``duration``
- ImageReset: like Standard, but cleared early when the configured reset
  target is detected

State is keyed by ``moduleId/targetId`` and created lazily.
"""

import time
from threading import Lock
from typing import Callable, Optional

from .logging import Logger, get_logger
from .model import CooldownConfig, CooldownInfo, CooldownState, CooldownType


class CooldownManager:
    """Thread-safe cooldown bookkeeping for all targets.

    ``clock`` returns seconds on a monotonic scale and can be replaced in
    tests.
    """

    def __init__(
        self,
        logger: Optional[Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logger or get_logger()
        self._clock = clock
        self._states: dict[str, CooldownState] = {}
        # reset target key -> keys whose cooldown it clears
        self._reset_links: dict[str, set[str]] = {}
        self._lock = Lock()

    def _get_or_create(self, key: str) -> CooldownState:
        state = self._states.get(key)
        if state is None:
            state = CooldownState(key=key)
            self._states[key] = state
        return state

    def can_trigger(self, key: str, config: CooldownConfig) -> bool:
        """Check whether a detection of ``key`` may fire its action now."""
        with self._lock:
            state = self._get_or_create(key)
            if not state.on_cooldown:
                return True

            now = self._clock()
            if config.type == CooldownType.Continuous:
                reference = state.last_detection_time
            else:
                reference = state.last_trigger_time

            if reference is None:
                return True
            return now - reference >= config.duration_seconds

    def record_detection(self, key: str, config: CooldownConfig) -> None:
        """Note that ``key`` was detected, whether or not it triggered.

        Also applies any pending resets for targets linked to ``key``.
        """
        with self._lock:
            now = self._clock()
            state = self._get_or_create(key)
            state.last_detection_time = now

            if config.type == CooldownType.Continuous and state.on_cooldown:
                state.last_trigger_time = now

            self._apply_resets(key)

    def record_trigger(self, key: str, config: CooldownConfig) -> None:
        """Arm the cooldown for ``key`` after its action fired."""
        with self._lock:
            state = self._get_or_create(key)
            state.on_cooldown = True
            state.last_trigger_time = self._clock()

            if config.type == CooldownType.ImageReset and config.reset_target_key:
                self._reset_links.setdefault(config.reset_target_key, set()).add(key)

    def register_reset_trigger(self, reset_key: str, key_to_reset: str) -> None:
        """Make a detection of ``reset_key`` clear the cooldown of ``key_to_reset``."""
        with self._lock:
            self._reset_links.setdefault(reset_key, set()).add(key_to_reset)

    def _apply_resets(self, detected_key: str) -> None:
        keys = self._reset_links.get(detected_key)
        if not keys:
            return
        for key in keys:
            state = self._states.get(key)
            if state is not None:
                state.reset()
                self._logger.debug(
                    "Cooldown reset by linked target",
                    target=key,
                    reset_by=detected_key,
                )
        keys.clear()

    def reset_cooldown(self, key: str) -> None:
        with self._lock:
            state = self._states.get(key)
            if state is not None:
                state.reset()
                self._logger.debug("Cooldown reset", target=key)

    def reset_all(self) -> None:
        with self._lock:
            for state in self._states.values():
                state.reset()
            self._reset_links.clear()
            self._logger.debug("All cooldowns reset")

    def get_cooldown_info(self, key: str, config: CooldownConfig) -> CooldownInfo:
        """Remaining time and progress (0-1) of the cooldown for ``key``."""
        with self._lock:
            state = self._get_or_create(key)
            info = CooldownInfo(key=key, on_cooldown=state.on_cooldown)

            if state.on_cooldown and state.last_trigger_time is not None:
                elapsed = self._clock() - state.last_trigger_time
                info.remaining_seconds = max(0.0, config.duration_seconds - elapsed)
                if config.duration_seconds > 0:
                    info.progress = min(1.0, elapsed / config.duration_seconds)

            return info

    def remove_state(self, key: str) -> None:
        """Purge all state for a removed target, including reset links."""
        with self._lock:
            self._states.pop(key, None)
            self._reset_links.pop(key, None)
            for keys in self._reset_links.values():
                keys.discard(key)

    def has_state(self, key: str) -> bool:
        with self._lock:
            return key in self._states
