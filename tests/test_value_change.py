"""Tests for meter value change analysis.

Verifies that:
- The first sample only sets the baseline
- Identical samples and sub-threshold changes never emit
- A large smoothed drop emits DamageTaken once, then the event
  cooldown suppresses follow-ups
- Decreases-only meters re-baseline silently on genuine recoveries
- Per-target state is independent and resettable
"""

import pytest

from pixeltrigger.core.model import DetectionTarget, MeterChangeType, MeterConfig, TargetKind
from pixeltrigger.core.value_change import ValueChangeAnalyzer


def meter_target(target_id: str = "hp", module_id: str = "game", **meter_kwargs) -> DetectionTarget:
    return DetectionTarget(
        module_id=module_id,
        target_id=target_id,
        kind=TargetKind.Meter,
        meter=MeterConfig(**meter_kwargs),
    )


def feed(analyzer: ValueChangeAnalyzer, target: DetectionTarget, samples: list[float], start: float = 0.0, step: float = 1.0) -> list:
    """Feed samples at ``step`` second intervals, returning the non-None events."""
    events = []
    for i, sample in enumerate(samples):
        event = analyzer.process(target, sample, start + i * step)
        if event is not None:
            events.append(event)
    return events


class TestBaseline:
    """Test baseline initialization and the noise floor."""

    def test_first_sample_sets_baseline(self) -> None:
        """The first sample should never emit."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target()
        assert analyzer.process(target, 80.0, 0.0) is None
        assert analyzer.get_current_value("game", "hp") == pytest.approx(80.0)

    def test_identical_samples_never_emit(self) -> None:
        """Zero delta should never produce an event."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=0.5, smoothing_frames=1, decreases_only=False)
        assert feed(analyzer, target, [55.0] * 50) == []

    def test_single_small_change_never_emits(self) -> None:
        """A change below min_delta_percent should be absorbed."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1)
        assert feed(analyzer, target, [80.0, 76.0]) == []

    def test_unknown_target_has_no_value(self) -> None:
        """Targets without samples report None."""
        assert ValueChangeAnalyzer().get_current_value("game", "mana") is None


class TestEvents:
    """Test event emission and the event cooldown."""

    def test_drop_emits_damage_taken(self) -> None:
        """A drop above the noise floor should emit a rounded DamageTaken event."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1, event_cooldown_ms=0)

        events = feed(analyzer, target, [80.0, 60.0])

        assert len(events) == 1
        event = events[0]
        assert event.change_type == MeterChangeType.DamageTaken
        assert event.is_decrease
        assert event.previous_percent == 80.0
        assert event.current_percent == 60.0
        assert event.delta_percent == -20.0
        assert event.module_id == "game"
        assert event.target_id == "hp"
        assert event.target_name == "hp"

    def test_percentages_rounded_to_one_decimal(self) -> None:
        """Event percentages should be rounded to one decimal place."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=3, event_cooldown_ms=0)

        events = feed(analyzer, target, [80.0, 79.0, 81.0, 60.0])

        assert len(events) == 1
        assert events[0].current_percent == 73.3
        assert events[0].delta_percent == -6.7

    def test_smoothed_drop_emits_once_within_cooldown(self) -> None:
        """[80,79,81] then [60,59,61] should emit exactly one DamageTaken while the
        later samples fall inside the event cooldown."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=3, event_cooldown_ms=300)

        events = feed(analyzer, target, [80, 79, 81, 60, 59, 61], step=0.1)

        assert len(events) == 1
        assert events[0].change_type == MeterChangeType.DamageTaken

    def test_smoothed_drop_totals_twenty(self) -> None:
        """Without an event cooldown the emitted deltas should add up to ~-20."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=3, event_cooldown_ms=0)

        events = feed(analyzer, target, [80, 79, 81, 60, 59, 61])

        assert events
        assert all(e.change_type == MeterChangeType.DamageTaken for e in events)
        assert sum(e.delta_percent for e in events) == pytest.approx(-20.0, abs=0.2)
        assert events[-1].current_percent == pytest.approx(60.0, abs=0.1)

    def test_event_cooldown_suppresses_then_allows(self) -> None:
        """A second drop inside the cooldown is dropped; after it, a drop emits."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1, event_cooldown_ms=500)

        assert analyzer.process(target, 100.0, 0.0) is None
        assert analyzer.process(target, 90.0, 1.0) is not None
        assert analyzer.process(target, 80.0, 1.2) is None
        later = analyzer.process(target, 70.0, 2.0)
        assert later is not None
        # Baseline stayed at 90 while suppressed
        assert later.delta_percent == -20.0

    def test_increase_emits_healed_when_allowed(self) -> None:
        """With decreases_only off, increases should emit Healed."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1, decreases_only=False, event_cooldown_ms=0)

        events = feed(analyzer, target, [40.0, 60.0])

        assert len(events) == 1
        assert events[0].change_type == MeterChangeType.Healed
        assert not events[0].is_decrease
        assert events[0].delta_percent == 20.0


class TestDecreasesOnly:
    """Test silent re-baselining on decreases-only meters."""

    def test_small_increase_ignored(self) -> None:
        """An increase below twice the noise floor should not move the baseline."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1, event_cooldown_ms=0)

        feed(analyzer, target, [50.0, 58.0])  # +8 < 10: ignored
        event = analyzer.process(target, 44.0, 5.0)

        assert event is not None
        assert event.previous_percent == 50.0

    def test_genuine_recovery_rebaselines(self) -> None:
        """An increase of at least twice the noise floor should re-baseline silently."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1, event_cooldown_ms=0)

        events = feed(analyzer, target, [50.0, 90.0])
        assert events == []

        event = analyzer.process(target, 80.0, 5.0)
        assert event is not None
        assert event.previous_percent == 90.0
        assert event.delta_percent == -10.0

    def test_rebaseline_factor_is_configurable(self) -> None:
        """The recovery factor should be injectable."""
        analyzer = ValueChangeAnalyzer(heal_rebaseline_factor=10.0)
        target = meter_target(min_delta_percent=5.0, smoothing_frames=1, event_cooldown_ms=0)

        feed(analyzer, target, [50.0, 90.0])  # +40 < 50: ignored
        event = analyzer.process(target, 40.0, 5.0)
        assert event is not None
        assert event.previous_percent == 50.0


class TestStateManagement:
    """Test per-target isolation and resets."""

    def test_targets_are_independent(self) -> None:
        """Samples for one target should not affect another."""
        analyzer = ValueChangeAnalyzer()
        hp = meter_target("hp", smoothing_frames=1, min_delta_percent=5.0, event_cooldown_ms=0)
        mana = meter_target("mana", smoothing_frames=1, min_delta_percent=5.0, event_cooldown_ms=0)

        analyzer.process(hp, 100.0, 0.0)
        analyzer.process(mana, 20.0, 0.0)

        assert analyzer.process(mana, 20.0, 1.0) is None
        assert analyzer.process(hp, 50.0, 1.0) is not None

    def test_same_target_id_in_other_module_is_separate(self) -> None:
        """State keys should include the module id."""
        analyzer = ValueChangeAnalyzer()
        a = meter_target("hp", module_id="a", smoothing_frames=1)
        b = meter_target("hp", module_id="b", smoothing_frames=1)

        analyzer.process(a, 100.0, 0.0)
        assert analyzer.get_current_value("b", "hp") is None
        analyzer.process(b, 10.0, 0.0)
        assert analyzer.get_current_value("a", "hp") == pytest.approx(100.0)

    def test_reset_target_restarts_baseline(self) -> None:
        """After reset the next sample should be a new baseline."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(smoothing_frames=1, min_delta_percent=5.0, event_cooldown_ms=0)

        analyzer.process(target, 100.0, 0.0)
        analyzer.reset_target("game", "hp")

        assert analyzer.get_current_value("game", "hp") is None
        assert analyzer.process(target, 20.0, 1.0) is None

    def test_reset_all(self) -> None:
        """reset_all should forget every target."""
        analyzer = ValueChangeAnalyzer()
        analyzer.process(meter_target("hp"), 100.0, 0.0)
        analyzer.process(meter_target("mana"), 50.0, 0.0)

        analyzer.reset_all()

        assert analyzer.get_current_value("game", "hp") is None
        assert analyzer.get_current_value("game", "mana") is None

    def test_current_value_is_smoothed(self) -> None:
        """get_current_value should report the mean of the window."""
        analyzer = ValueChangeAnalyzer()
        target = meter_target(smoothing_frames=3)
        feed(analyzer, target, [60.0, 70.0, 80.0, 90.0])
        assert analyzer.get_current_value("game", "hp") == pytest.approx(80.0)

    def test_default_clock_used_without_timestamp(self) -> None:
        """Omitting the timestamp should read the injected clock."""
        now = [10.0]
        analyzer = ValueChangeAnalyzer(clock=lambda: now[0])
        target = meter_target(smoothing_frames=1, min_delta_percent=5.0, event_cooldown_ms=1000)

        analyzer.process(target, 100.0)
        assert analyzer.process(target, 80.0) is not None
        now[0] = 10.5
        assert analyzer.process(target, 60.0) is None
        now[0] = 11.5
        assert analyzer.process(target, 50.0) is not None
