"""Event routing to registered subscribers.

Subscribers register for an exact event-type key. Each semantic event is
fired at several granularities so a subscriber can choose how much it
hears:

    detected                         every template detection
    detected.<module>                detections in one module
    detected.<module>.<target>       detections of one target
    meter.changed[.<module>[.<target>]]
    meter.damagetaken[.<module>]
    meter.healed[.<module>]
    started / stopped                loop lifecycle

Callbacks receive a dict payload. A failing callback is logged and the
remaining subscribers still receive the event.
"""

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Optional

from .logging import Logger, get_logger
from .model import (
    DetectionResult,
    DetectionTarget,
    MeterChangeType,
    ValueChangeEvent,
    utcnow,
)

EVENT_DETECTED = "detected"
EVENT_METER_CHANGED = "meter.changed"
EVENT_METER_DAMAGE_TAKEN = "meter.damagetaken"
EVENT_METER_HEALED = "meter.healed"
EVENT_STARTED = "started"
EVENT_STOPPED = "stopped"

Payload = dict[str, Any]
TriggerCallback = Callable[[Payload], None]


@dataclass
class SubscriberFilter:
    """Per-subscriber delivery filter.

    Empty/zero fields do not filter. Criteria only apply to payloads
    that carry the corresponding field.
    """

    min_confidence: float = 0.0
    module_filter: str = ""
    target_filter: str = ""
    """Matches the target id or display name, case-insensitively"""
    min_delta_percent: float = 0.0
    decreases_only: bool = False

    def matches(self, payload: Payload) -> bool:
        if self.module_filter:
            module_id = str(payload.get("moduleId", ""))
            if module_id.lower() != self.module_filter.lower():
                return False

        if self.target_filter:
            wanted = self.target_filter.lower()
            candidates = (
                payload.get("targetId"),
                payload.get("targetName"),
                payload.get("imageId"),
                payload.get("imageName"),
            )
            if not any(c is not None and str(c).lower() == wanted for c in candidates):
                return False

        if self.min_confidence > 0 and "confidence" in payload:
            if payload["confidence"] < self.min_confidence:
                return False

        if self.min_delta_percent > 0 and "deltaPercent" in payload:
            if abs(payload["deltaPercent"]) < self.min_delta_percent:
                return False

        if self.decreases_only and "isDecrease" in payload:
            if not payload["isDecrease"]:
                return False

        return True


@dataclass
class TriggerRegistration:
    subscriber_id: str
    callback: TriggerCallback
    filter: Optional[SubscriberFilter] = None


def detection_event_types(module_id: str, target_id: str) -> list[str]:
    return [
        EVENT_DETECTED,
        f"{EVENT_DETECTED}.{module_id}",
        f"{EVENT_DETECTED}.{module_id}.{target_id}",
    ]


def meter_event_types(event: ValueChangeEvent) -> list[str]:
    types = [
        EVENT_METER_CHANGED,
        f"{EVENT_METER_CHANGED}.{event.module_id}",
        f"{EVENT_METER_CHANGED}.{event.module_id}.{event.target_id}",
    ]
    if event.change_type == MeterChangeType.DamageTaken:
        types += [EVENT_METER_DAMAGE_TAKEN, f"{EVENT_METER_DAMAGE_TAKEN}.{event.module_id}"]
    elif event.change_type == MeterChangeType.Healed:
        types += [EVENT_METER_HEALED, f"{EVENT_METER_HEALED}.{event.module_id}"]
    return types


class TriggerRouter:
    """Subscriber registry with filtered, failure-isolated fan-out.

    Besides keyed registrations, plain listeners can observe every
    detection, meter change and lifecycle change (used by the Qt bridge
    and history).
    """

    def __init__(self, logger: Optional[Logger] = None) -> None:
        self._logger = logger or get_logger()
        self._registrations: dict[str, list[TriggerRegistration]] = {}
        self._lock = Lock()

        self._detection_listeners: list[Callable[[DetectionTarget, DetectionResult], None]] = []
        self._meter_listeners: list[Callable[[ValueChangeEvent], None]] = []
        self._lifecycle_listeners: list[Callable[[bool], None]] = []

    def register(
        self,
        event_type: str,
        subscriber_id: str,
        callback: TriggerCallback,
        filter: Optional[SubscriberFilter] = None,
    ) -> bool:
        """Register ``callback`` for ``event_type``.

        Returns:
            False if ``subscriber_id`` is already registered for this
            event type (the existing registration is kept)
        """
        with self._lock:
            registrations = self._registrations.setdefault(event_type, [])
            if any(r.subscriber_id == subscriber_id for r in registrations):
                return False
            registrations.append(TriggerRegistration(subscriber_id, callback, filter))

        self._logger.debug(
            "Registered trigger",
            event_type=event_type,
            subscriber=subscriber_id,
        )
        return True

    def unregister(self, event_type: str, subscriber_id: str) -> None:
        with self._lock:
            registrations = self._registrations.get(event_type)
            if registrations is None:
                return
            registrations[:] = [r for r in registrations if r.subscriber_id != subscriber_id]
            if not registrations:
                del self._registrations[event_type]

        self._logger.debug(
            "Unregistered trigger",
            event_type=event_type,
            subscriber=subscriber_id,
        )

    def unregister_all(self, subscriber_id: str) -> None:
        """Remove ``subscriber_id`` from every event type."""
        with self._lock:
            for event_type in list(self._registrations):
                registrations = self._registrations[event_type]
                registrations[:] = [r for r in registrations if r.subscriber_id != subscriber_id]
                if not registrations:
                    del self._registrations[event_type]

    def subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._registrations.get(event_type, []))

    def fire(self, event_type: str, payload: Payload) -> int:
        """Deliver ``payload`` to every matching subscriber of ``event_type``.

        Returns:
            Number of callbacks that completed without raising
        """
        with self._lock:
            registrations = list(self._registrations.get(event_type, []))

        delivered = 0
        for registration in registrations:
            try:
                if registration.filter is not None and not registration.filter.matches(payload):
                    continue
                registration.callback(dict(payload))
                delivered += 1
            except Exception as e:
                self._logger.exception(
                    "Trigger callback failed",
                    e,
                    event_type=event_type,
                    subscriber=registration.subscriber_id,
                )
        return delivered

    def fire_detection(self, target: DetectionTarget, result: DetectionResult) -> None:
        """Fan out an accepted template detection at all granularities."""
        self._notify(self._detection_listeners, target, result)

        location = result.location
        payload: Payload = {
            "moduleId": target.module_id,
            "imageId": target.target_id,
            "targetId": target.target_id,
            "imageName": target.name,
            "targetName": target.name,
            "imagePath": target.template.image_path,
            "confidence": result.confidence,
            "threshold": result.threshold,
            "matchX": location.x if location is not None else 0,
            "matchY": location.y if location is not None else 0,
            "algorithmId": result.algorithm_id,
            "timestamp": result.timestamp,
        }

        for event_type in detection_event_types(target.module_id, target.target_id):
            self.fire(event_type, payload)

    def fire_meter_changed(self, event: ValueChangeEvent) -> None:
        """Fan out a meter change, plus the damage/heal specific keys."""
        self._notify(self._meter_listeners, event)

        payload: Payload = {
            "moduleId": event.module_id,
            "targetId": event.target_id,
            "targetName": event.target_name,
            "currentPercent": event.current_percent,
            "previousPercent": event.previous_percent,
            "deltaPercent": event.delta_percent,
            "isDecrease": event.is_decrease,
            "changeType": event.change_type.value,
            "timestamp": event.timestamp,
        }

        for event_type in meter_event_types(event):
            self.fire(event_type, payload)

    def notify_started(self) -> None:
        self._notify(self._lifecycle_listeners, True)
        self.fire(EVENT_STARTED, {"timestamp": utcnow()})

    def notify_stopped(self) -> None:
        self._notify(self._lifecycle_listeners, False)
        self.fire(EVENT_STOPPED, {"timestamp": utcnow()})

    def add_detection_listener(self, callback: Callable[[DetectionTarget, DetectionResult], None]) -> None:
        with self._lock:
            self._detection_listeners.append(callback)

    def add_meter_listener(self, callback: Callable[[ValueChangeEvent], None]) -> None:
        with self._lock:
            self._meter_listeners.append(callback)

    def add_lifecycle_listener(self, callback: Callable[[bool], None]) -> None:
        """Listener receives True on start and False on stop."""
        with self._lock:
            self._lifecycle_listeners.append(callback)

    def _notify(self, listeners: list[Callable[..., None]], *args: Any) -> None:
        with self._lock:
            snapshot = list(listeners)
        for listener in snapshot:
            try:
                listener(*args)
            except Exception as e:
                self._logger.exception("Event listener failed", e)
