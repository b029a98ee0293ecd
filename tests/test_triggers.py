"""Tests for event routing.

Verifies that:
- Registrations are unique per (event type, subscriber)
- Detections fan out at global, module and target granularity
- Subscriber filters are applied per subscriber
- A failing callback does not block delivery to others
- Callbacks may re-enter the router without deadlocking
"""

from unittest.mock import MagicMock

import pytest

from pixeltrigger.core.logging import LogBuffer, Logger, LogLevel
from pixeltrigger.core.model import (
    DetectionResult,
    DetectionTarget,
    MeterChangeType,
    Point,
    Size,
    TemplateConfig,
    ValueChangeEvent,
)
from pixeltrigger.core.triggers import SubscriberFilter, TriggerRouter


def make_target(module_id: str = "game", target_id: str = "goblin", name: str = "Goblin") -> DetectionTarget:
    return DetectionTarget(
        module_id=module_id,
        target_id=target_id,
        name=name,
        template=TemplateConfig(image_path="goblin.png"),
    )


def make_result(confidence: float = 0.9) -> DetectionResult:
    return DetectionResult.success(confidence, 0.8, Point(12, 34), Size(10, 10), "template-matching")


def make_meter_event(change_type: MeterChangeType = MeterChangeType.DamageTaken, delta: float = -20.0) -> ValueChangeEvent:
    return ValueChangeEvent(
        module_id="game",
        target_id="hp",
        target_name="Health",
        current_percent=60.0,
        previous_percent=60.0 - delta,
        delta_percent=delta,
        is_decrease=delta < 0,
        change_type=change_type,
    )


@pytest.fixture
def router() -> TriggerRouter:
    return TriggerRouter(Logger(LogBuffer()))


class TestRegistration:
    """Test register/unregister bookkeeping."""

    def test_duplicate_registration_rejected(self, router: TriggerRouter) -> None:
        """The same subscriber should be registered at most once per event type."""
        first = MagicMock()
        second = MagicMock()
        assert router.register("detected", "node-1", first)
        assert not router.register("detected", "node-1", second)
        assert router.subscriber_count("detected") == 1

        router.fire("detected", {"x": 1})
        first.assert_called_once_with({"x": 1})
        second.assert_not_called()

    def test_same_subscriber_on_different_types(self, router: TriggerRouter) -> None:
        """A subscriber may register for several event types."""
        assert router.register("detected", "node-1", MagicMock())
        assert router.register("detected.game", "node-1", MagicMock())

    def test_unregister(self, router: TriggerRouter) -> None:
        """Unregistered subscribers should stop receiving events."""
        callback = MagicMock()
        router.register("detected", "node-1", callback)
        router.unregister("detected", "node-1")
        router.fire("detected", {})
        callback.assert_not_called()
        assert router.subscriber_count("detected") == 0

    def test_unregister_all(self, router: TriggerRouter) -> None:
        """unregister_all should remove a subscriber from every type."""
        router.register("detected", "node-1", MagicMock())
        router.register("meter.changed", "node-1", MagicMock())
        router.register("meter.changed", "node-2", MagicMock())

        router.unregister_all("node-1")

        assert router.subscriber_count("detected") == 0
        assert router.subscriber_count("meter.changed") == 1


class TestDetectionFanOut:
    """Test granularity of detection events."""

    def test_detection_fires_three_granularities(self, router: TriggerRouter) -> None:
        """Global, module and target subscribers should each receive the event."""
        received = {}
        for key in ("detected", "detected.game", "detected.game.goblin"):
            router.register(key, key, lambda p, key=key: received.setdefault(key, p))

        router.fire_detection(make_target(), make_result())

        assert set(received) == {"detected", "detected.game", "detected.game.goblin"}
        payload = received["detected"]
        assert payload["moduleId"] == "game"
        assert payload["imageId"] == "goblin"
        assert payload["targetId"] == "goblin"
        assert payload["imageName"] == "Goblin"
        assert payload["confidence"] == 0.9
        assert payload["threshold"] == 0.8
        assert payload["matchX"] == 12
        assert payload["matchY"] == 34
        assert payload["algorithmId"] == "template-matching"
        assert "timestamp" in payload

    def test_target_subscriber_ignores_sibling_target(self, router: TriggerRouter) -> None:
        """A per-target subscriber should not hear other targets in the same module."""
        callback = MagicMock()
        router.register("detected.game.goblin", "node-1", callback)

        router.fire_detection(make_target(target_id="orc", name="Orc"), make_result())

        callback.assert_not_called()

    def test_missing_location_reports_zero(self, router: TriggerRouter) -> None:
        """Results without a location should report matchX/matchY as 0."""
        callback = MagicMock()
        router.register("detected", "node-1", callback)

        router.fire_detection(make_target(), DetectionResult(found=True, confidence=0.9))

        payload = callback.call_args[0][0]
        assert payload["matchX"] == 0
        assert payload["matchY"] == 0

    def test_detection_listener_notified(self, router: TriggerRouter) -> None:
        """Plain detection listeners should see every detection."""
        listener = MagicMock()
        router.add_detection_listener(listener)
        target, result = make_target(), make_result()

        router.fire_detection(target, result)

        listener.assert_called_once_with(target, result)


class TestSubscriberFilters:
    """Test per-subscriber filtering."""

    def test_min_confidence(self, router: TriggerRouter) -> None:
        """A 0.9 minimum should drop a 0.5 confidence detection."""
        strict = MagicMock()
        lenient = MagicMock()
        router.register("detected", "strict", strict, SubscriberFilter(min_confidence=0.9))
        router.register("detected", "lenient", lenient)

        router.fire_detection(make_target(), make_result(confidence=0.5))

        strict.assert_not_called()
        lenient.assert_called_once()

    def test_module_filter_case_insensitive(self, router: TriggerRouter) -> None:
        """Module filters should compare case-insensitively."""
        match = MagicMock()
        other = MagicMock()
        router.register("detected", "a", match, SubscriberFilter(module_filter="GAME"))
        router.register("detected", "b", other, SubscriberFilter(module_filter="other"))

        router.fire_detection(make_target(), make_result())

        match.assert_called_once()
        other.assert_not_called()

    @pytest.mark.parametrize("target_filter", ["goblin", "GOBLIN", "Goblin"])
    def test_target_filter_matches_id_or_name(self, router: TriggerRouter, target_filter: str) -> None:
        """Target filters should match the id or the display name."""
        callback = MagicMock()
        router.register("detected", "a", callback, SubscriberFilter(target_filter=target_filter))
        router.fire_detection(make_target(), make_result())
        callback.assert_called_once()

    def test_target_filter_rejects_other(self, router: TriggerRouter) -> None:
        """A target filter for another target should block delivery."""
        callback = MagicMock()
        router.register("detected", "a", callback, SubscriberFilter(target_filter="orc"))
        router.fire_detection(make_target(), make_result())
        callback.assert_not_called()

    def test_meter_min_delta_and_decreases_only(self, router: TriggerRouter) -> None:
        """Meter filters should use the absolute delta and the decrease flag."""
        big_only = MagicMock()
        drops_only = MagicMock()
        router.register("meter.changed", "big", big_only, SubscriberFilter(min_delta_percent=25.0))
        router.register("meter.changed", "drops", drops_only, SubscriberFilter(decreases_only=True))

        router.fire_meter_changed(make_meter_event(MeterChangeType.Healed, delta=30.0))
        big_only.assert_called_once()
        drops_only.assert_not_called()

        router.fire_meter_changed(make_meter_event(MeterChangeType.DamageTaken, delta=-10.0))
        assert big_only.call_count == 1
        drops_only.assert_called_once()

    def test_filters_are_not_shared(self, router: TriggerRouter) -> None:
        """Each subscriber's filter should only affect that subscriber."""
        shared_filter_user = MagicMock()
        unfiltered = MagicMock()
        router.register("detected", "a", shared_filter_user, SubscriberFilter(min_confidence=0.99))
        router.register("detected", "b", unfiltered, SubscriberFilter())

        router.fire_detection(make_target(), make_result(confidence=0.9))

        shared_filter_user.assert_not_called()
        unfiltered.assert_called_once()


class TestMeterFanOut:
    """Test meter event keys."""

    def test_damage_taken_keys(self, router: TriggerRouter) -> None:
        """DamageTaken should fire changed keys plus damagetaken keys."""
        fired = []
        keys = [
            "meter.changed",
            "meter.changed.game",
            "meter.changed.game.hp",
            "meter.damagetaken",
            "meter.damagetaken.game",
            "meter.healed",
        ]
        for key in keys:
            router.register(key, "s", lambda p, key=key: fired.append(key))

        router.fire_meter_changed(make_meter_event())

        assert fired == keys[:5]

    def test_healed_keys_and_payload(self, router: TriggerRouter) -> None:
        """Healed should fire the healed keys with the documented payload."""
        callback = MagicMock()
        router.register("meter.healed.game", "s", callback)

        router.fire_meter_changed(make_meter_event(MeterChangeType.Healed, delta=15.0))

        payload = callback.call_args[0][0]
        assert payload["moduleId"] == "game"
        assert payload["targetId"] == "hp"
        assert payload["targetName"] == "Health"
        assert payload["currentPercent"] == 60.0
        assert payload["previousPercent"] == 45.0
        assert payload["deltaPercent"] == 15.0
        assert payload["isDecrease"] is False
        assert payload["changeType"] == "Healed"

    def test_meter_listener_notified(self, router: TriggerRouter) -> None:
        """Plain meter listeners should see every meter event."""
        listener = MagicMock()
        router.add_meter_listener(listener)
        event = make_meter_event()
        router.fire_meter_changed(event)
        listener.assert_called_once_with(event)


class TestFailureIsolation:
    """Test that callbacks cannot break the router."""

    def test_failing_callback_does_not_block_others(self) -> None:
        """An exception in one subscriber should be logged and delivery continue."""
        buffer = LogBuffer()
        router = TriggerRouter(Logger(buffer))
        after = MagicMock()

        router.register("detected", "broken", MagicMock(side_effect=RuntimeError("boom")))
        router.register("detected", "after", after)

        delivered = router.fire("detected", {"moduleId": "game"})

        assert delivered == 1
        after.assert_called_once()
        errors = [e for e in buffer.get_all() if e.level == LogLevel.ERROR]
        assert len(errors) == 1
        assert "boom" in errors[0].message
        assert errors[0].context["subscriber"] == "broken"
        assert errors[0].context["event_type"] == "detected"

    def test_callback_can_reenter_router(self, router: TriggerRouter) -> None:
        """A callback unregistering itself should not deadlock or skip others."""
        other = MagicMock()

        def once(payload: dict) -> None:
            router.unregister("detected", "once")

        router.register("detected", "once", once)
        router.register("detected", "other", other)

        router.fire("detected", {})
        router.fire("detected", {})

        assert other.call_count == 2
        assert router.subscriber_count("detected") == 1

    def test_payload_copy_per_subscriber(self, router: TriggerRouter) -> None:
        """A subscriber mutating its payload should not affect the next one."""
        seen = []

        def mutate(payload: dict) -> None:
            payload["confidence"] = 0.0

        router.register("detected", "a", mutate)
        router.register("detected", "b", lambda p: seen.append(p["confidence"]))

        router.fire_detection(make_target(), make_result(confidence=0.9))

        assert seen == [0.9]


class TestLifecycle:
    """Test started/stopped notifications."""

    def test_started_and_stopped(self, router: TriggerRouter) -> None:
        """Lifecycle keys and listeners should fire with a timestamp."""
        started = MagicMock()
        stopped = MagicMock()
        lifecycle = MagicMock()
        router.register("started", "s", started)
        router.register("stopped", "s", stopped)
        router.add_lifecycle_listener(lifecycle)

        router.notify_started()
        router.notify_stopped()

        assert "timestamp" in started.call_args[0][0]
        assert "timestamp" in stopped.call_args[0][0]
        assert [c.args for c in lifecycle.call_args_list] == [(True,), (False,)]
