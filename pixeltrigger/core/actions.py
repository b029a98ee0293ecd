"""Turning accepted events into device commands.

The device transport is external: it is reached through the
``Actuator`` interface. Target addresses are ``deviceId:targetId``
strings.
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from .constants import INTENSITY_MAX, INTENSITY_MIN
from .logging import Logger, get_logger
from .model import (
    ActionConfig,
    CommandKind,
    DetectionTarget,
    IntensityMode,
    TargetSelectionMode,
    ValueChangeEvent,
)


class Actuator:
    """Device command sink.

    Implementations should return quickly; the detection loop calls
    ``perform_action`` inline.
    """

    def perform_action(
        self,
        intensity: int,
        duration_seconds: float,
        command: CommandKind,
        device_addresses: list[str],
        target_addresses: list[str],
    ) -> None:
        raise NotImplementedError

    def is_target_loaded(self, device_address: str, target_address: str) -> bool:
        raise NotImplementedError


@dataclass
class DispatchedAction:
    """What was sent to the actuator for one event."""

    command: CommandKind
    intensity: int
    duration_seconds: float
    addresses: list[str] = field(default_factory=list)

    @property
    def device_addresses(self) -> list[str]:
        """Distinct device ids, in first-seen order."""
        seen: dict[str, None] = {}
        for address in self.addresses:
            seen.setdefault(address.split(":", 1)[0], None)
        return list(seen)

    @property
    def target_addresses(self) -> list[str]:
        return [address.split(":", 1)[1] for address in self.addresses]


def parse_address(address: str) -> Optional[tuple[str, str]]:
    """Split ``deviceId:targetId``; None when either part is missing."""
    parts = address.split(":")
    if len(parts) != 2:
        return None
    device, target = parts[0].strip(), parts[1].strip()
    if not device or not target:
        return None
    return device, target


def clamp_intensity(value: float, maximum: int) -> int:
    maximum = max(INTENSITY_MIN, min(INTENSITY_MAX, maximum))
    return int(max(INTENSITY_MIN, min(maximum, value)))


def resolve_meter_intensity(action: ActionConfig, mode: IntensityMode, delta_percent: float) -> int:
    """Intensity for a meter-driven action.

    - Scaled: configured intensity scaled by |delta| / 100
    - Direct: |delta| itself
    - Fixed: configured intensity

    Scaled and Direct are bounded to [1, configured intensity].
    """
    magnitude = abs(delta_percent)
    if mode == IntensityMode.Scaled:
        return clamp_intensity(round(action.intensity * magnitude / 100.0), action.intensity)
    if mode == IntensityMode.Direct:
        return clamp_intensity(round(magnitude), action.intensity)
    return clamp_intensity(action.intensity, INTENSITY_MAX)


class ActionDispatcher:
    """Selects target addresses and invokes the actuator.

    Failures inside the actuator are logged and reported through
    ``on_error``; they never propagate to the caller.
    """

    def __init__(
        self,
        actuator: Optional[Actuator],
        logger: Optional[Logger] = None,
        rng: Optional[random.Random] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._actuator = actuator
        self._logger = logger or get_logger()
        self._rng = rng or random.Random()
        self.on_error = on_error

    def select_targets(self, action: ActionConfig) -> list[str]:
        """Addresses to command for ``action``.

        Selected uses every configured address. Random picks a count in
        [clamp(min, 1, N), clamp(max, min, N)] and samples that many
        distinct addresses.
        """
        available = [a for a in action.target_addresses if parse_address(a) is not None]
        count = len(available)
        if count == 0:
            return []

        if action.mode != TargetSelectionMode.Random:
            return list(available)

        low = min(max(action.random_count_min, 1), count)
        high = min(max(action.random_count_max, low), count)
        chosen = low if low == high else self._rng.randint(low, high)
        return self._rng.sample(available, chosen)

    def _loaded(self, addresses: list[str]) -> list[str]:
        if self._actuator is None:
            return []
        loaded = []
        for address in addresses:
            parsed = parse_address(address)
            if parsed is not None and self._actuator.is_target_loaded(*parsed):
                loaded.append(address)
        return loaded

    def dispatch(
        self,
        target: DetectionTarget,
        intensity: Optional[int] = None,
    ) -> Optional[DispatchedAction]:
        """Send ``target``'s configured action.

        Args:
            target: Target whose action fires
            intensity: Override for the configured intensity

        Returns:
            The dispatched action, or None if nothing was sent
        """
        action = target.action
        if not action.enabled or self._actuator is None:
            return None

        if not action.target_addresses:
            self._logger.warning("No target addresses configured, action skipped", target=target.key)
            return None

        try:
            addresses = self._loaded(self.select_targets(action))
            if not addresses:
                self._logger.warning("No loaded targets for action, skipped", target=target.key)
                return None

            dispatched = DispatchedAction(
                command=action.command,
                intensity=clamp_intensity(action.intensity if intensity is None else intensity, INTENSITY_MAX),
                duration_seconds=action.duration_seconds,
                addresses=addresses,
            )

            self._actuator.perform_action(
                intensity=dispatched.intensity,
                duration_seconds=dispatched.duration_seconds,
                command=dispatched.command,
                device_addresses=dispatched.device_addresses,
                target_addresses=dispatched.target_addresses,
            )
        except Exception as e:
            self._logger.exception("Action failed", e, target=target.key)
            if self.on_error is not None:
                self.on_error(f"Action failed: {e}")
            return None

        self._logger.info(
            f"Action sent: {dispatched.command.value}",
            target=target.key,
            intensity=dispatched.intensity,
            targets=len(dispatched.addresses),
        )
        return dispatched

    def dispatch_for_meter(self, target: DetectionTarget, event: ValueChangeEvent) -> Optional[DispatchedAction]:
        """Send ``target``'s action with intensity derived from the meter delta."""
        intensity = resolve_meter_intensity(target.action, target.meter.intensity_mode, event.delta_percent)
        return self.dispatch(target, intensity=intensity)
