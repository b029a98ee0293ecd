"""Background detection loop.

Implements the orchestrator lifecycle (Stopped/Starting/Running/Stopping)
and the per-cycle work:

1. Capture one frame
2. For every enabled target, run template matching or meter measurement
3. Gate accepted detections through the cooldown manager, route events,
   dispatch actions and record history
4. Sleep the capture delay (interruptible by stop)

One failing target never aborts the cycle, and capture failures back
off instead of ending the loop.
"""

import threading
import time
from typing import Callable, Optional

import numpy as np

from .actions import ActionDispatcher
from .capture import CaptureError, CaptureProvider, clamp_rect, crop_region
from .constants import CAPTURE_ERROR_BACKOFF_SEC, LINGERING_JOIN_SEC, STOP_TIMEOUT_SEC
from .cooldown import CooldownManager
from .history import RecentDetections
from .logging import Logger, get_logger
from .matching import AlgorithmRegistry, create_default_registry
from .meter import compute_fill_percent
from .model import (
    DetectionResult,
    DetectionStats,
    DetectionTarget,
    OrchestratorState,
    Point,
    RegionType,
    TargetKind,
    utcnow,
)
from .store import TargetStore
from .templates import TemplateCache, TemplateLoadError
from .triggers import TriggerRouter
from .value_change import ValueChangeAnalyzer


class DetectionOrchestrator:
    """Owns the detection worker thread and coordinates all components.

    Start/stop/toggle, ``detect_once`` and ``reload_images`` may be called
    from any thread. Collaborators not passed in are created with
    defaults; ``clock`` feeds the meter analyzer and must match the
    cooldown manager's clock when both are injected.
    """

    def __init__(
        self,
        store: TargetStore,
        capture: CaptureProvider,
        dispatcher: ActionDispatcher,
        router: Optional[TriggerRouter] = None,
        cooldowns: Optional[CooldownManager] = None,
        analyzer: Optional[ValueChangeAnalyzer] = None,
        registry: Optional[AlgorithmRegistry] = None,
        templates: Optional[TemplateCache] = None,
        history: Optional[RecentDetections] = None,
        logger: Optional[Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logger or get_logger()
        self._store = store
        self._capture = capture
        self._dispatcher = dispatcher
        self._router = router or TriggerRouter(self._logger)
        self._cooldowns = cooldowns or CooldownManager(self._logger, clock)
        self._analyzer = analyzer or ValueChangeAnalyzer(self._logger, clock)
        self._registry = registry or create_default_registry()
        # Empty caches and histories are falsy, so compare against None
        self._templates = templates if templates is not None else TemplateCache(logger=self._logger)
        self._history = history if history is not None else RecentDetections(logger=self._logger)
        self._clock = clock

        self._state = OrchestratorState.Stopped
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        # A worker abandoned by a timed-out stop; no new loop starts while it lives
        self._lingering: Optional[threading.Thread] = None
        # Guards the running state and the worker handles
        self._lock = threading.Lock()

        self.stats = DetectionStats()
        self._stats_lock = threading.Lock()
        self._known_keys: set[str] = set()
        self._keys_lock = threading.Lock()

        self.on_error: Optional[Callable[[str], None]] = None
        self.on_running_changed: Optional[Callable[[bool], None]] = None

        self._dispatcher.on_error = self._report_error
        self._store.add_change_listener(self._on_config_changed)

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == OrchestratorState.Running

    @property
    def router(self) -> TriggerRouter:
        return self._router

    @property
    def cooldowns(self) -> CooldownManager:
        return self._cooldowns

    @property
    def analyzer(self) -> ValueChangeAnalyzer:
        return self._analyzer

    @property
    def history(self) -> RecentDetections:
        return self._history

    @property
    def registry(self) -> AlgorithmRegistry:
        return self._registry

    def _set_state(self, new_state: OrchestratorState) -> None:
        old_state = self._state
        self._state = new_state
        self._logger.state_change(old_state.name, new_state.name)

    def _report_error(self, message: str) -> None:
        callback = self.on_error
        if callback is None:
            return
        try:
            callback(message)
        except Exception as e:
            self._logger.exception("Error callback failed", e)

    def _notify_running(self, running: bool) -> None:
        callback = self.on_running_changed
        if callback is None:
            return
        try:
            callback(running)
        except Exception as e:
            self._logger.exception("Running state callback failed", e)

    def start(self) -> bool:
        """Start the detection loop.

        Returns:
            True if a new loop was started, False if already running, a
            previous loop has not exited yet, or capture is unsupported on
            this platform
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False

            lingering = self._lingering
            if lingering is not None:
                lingering.join(LINGERING_JOIN_SEC)
                if lingering.is_alive():
                    self._logger.warning("Previous detection loop is still running")
                    return False
                self._lingering = None

            if not self._capture.is_supported:
                reason = self._capture.unsupported_reason or "Screen capture is not supported"
                self._logger.error(f"Cannot start detection: {reason}")
                self._report_error(reason)
                return False

            self._set_state(OrchestratorState.Starting)
            self._refresh_resolution()
            with self._stats_lock:
                self.stats.reset()

            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="detection-loop",
                daemon=True,
            )
            self._thread.start()
            self._set_state(OrchestratorState.Running)

        self._router.notify_started()
        self._notify_running(True)
        return True

    def stop(self, timeout: float = STOP_TIMEOUT_SEC) -> bool:
        """Stop the detection loop, waiting up to ``timeout`` seconds.

        A loop that does not finish in time is abandoned (it exits at its
        next cancellation check); stopping proceeds either way, but
        ``start`` refuses to run a new loop until the abandoned one exits.

        Returns:
            False if the loop was not running
        """
        with self._lock:
            thread = self._thread
            if thread is None:
                return False

            self._set_state(OrchestratorState.Stopping)
            if self._stop_event is not None:
                self._stop_event.set()

            if thread is not threading.current_thread():
                thread.join(timeout)
                if thread.is_alive():
                    self._logger.warning("Detection loop did not stop in time", timeout=timeout)
                    self._lingering = thread

            self._thread = None
            self._stop_event = None
            self._set_state(OrchestratorState.Stopped)

        self._router.notify_stopped()
        self._notify_running(False)
        return True

    def toggle(self) -> bool:
        """Start if stopped, stop if running. Returns the new running state."""
        if self.is_running:
            self.stop()
            return False
        return self.start()

    def _run(self, stop_event: threading.Event) -> None:
        """Worker thread body."""
        self._logger.info("Detection loop started")

        while not stop_event.is_set():
            loop_started = time.perf_counter()
            try:
                self.run_cycle(stop_event)
            except CaptureError as e:
                self._logger.exception("Capture failed", e)
                self._report_error(str(e))
                stop_event.wait(CAPTURE_ERROR_BACKOFF_SEC)
                continue
            except Exception as e:
                self._logger.exception("Detection cycle failed", e)
                self._report_error(str(e))
                stop_event.wait(CAPTURE_ERROR_BACKOFF_SEC)
                continue

            with self._stats_lock:
                self.stats.last_loop_seconds = time.perf_counter() - loop_started

            delay_ms = self._store.capture_config.capture_delay_ms
            if delay_ms > 0:
                stop_event.wait(delay_ms / 1000.0)

        self._logger.info("Detection loop exited")

    def run_cycle(self, cancel: Optional[threading.Event] = None) -> int:
        """Capture one frame and process every enabled target.

        Raises:
            CaptureError: If the frame cannot be captured

        Returns:
            Number of targets processed
        """
        if cancel is not None and cancel.is_set():
            return 0

        frame = self._capture.capture_frame(self._store.capture_config)
        with self._stats_lock:
            self.stats.last_capture_time = utcnow()

        if cancel is not None and cancel.is_set():
            return 0

        targets = self._store.get_enabled_targets()
        with self._keys_lock:
            self._known_keys.update(t.key for t in targets)

        processed = 0
        for target in targets:
            if cancel is not None and cancel.is_set():
                break
            try:
                if target.kind == TargetKind.Meter:
                    self._process_meter(target, frame)
                else:
                    self._process_template(target, frame, cancel)
                processed += 1
            except Exception as e:
                self._logger.exception("Target processing failed", e, target=target.key)
                self._report_error(f"{target.name}: {e}")

        return processed

    def evaluate_template(
        self,
        target: DetectionTarget,
        frame: np.ndarray,
        cancel: Optional[threading.Event] = None,
    ) -> DetectionResult:
        """Run ``target``'s matcher against ``frame`` without side effects
        other than statistics.

        Match locations are reported in frame coordinates.
        """
        config = target.template
        result = self._match(target, frame, cancel)
        result.target = target

        if result.found and result.location is not None and target.region.type == RegionType.Custom:
            # Custom regions are crops; shift back into frame coordinates
            height, width = frame.shape[:2]
            rect = clamp_rect(target.region.custom, width, height) if target.region.custom else None
            if rect is not None:
                result.location = Point(result.location.x + rect.x, result.location.y + rect.y)

        if result.error is None:
            with self._stats_lock:
                self.stats.total_detections += 1
                if result.found:
                    self.stats.successful_detections += 1
        else:
            self._logger.warning(result.error, target=target.key, threshold=config.threshold)

        return result

    def _match(
        self,
        target: DetectionTarget,
        frame: np.ndarray,
        cancel: Optional[threading.Event],
    ) -> DetectionResult:
        config = target.template
        try:
            template = self._templates.get_or_load(target)
        except TemplateLoadError as e:
            return DetectionResult.failed(str(e), config.threshold)

        algorithm = self._registry.get(config.algorithm_id) or self._registry.get_default()
        if algorithm is None:
            return DetectionResult.failed("No detection algorithm available", config.threshold)
        if not algorithm.is_available():
            reason = algorithm.unavailable_reason() or f"{algorithm.name} is not available"
            return DetectionResult.failed(reason, config.threshold)

        region = self._capture.apply_region_mask(frame, target.region)
        return algorithm.detect(region, template, config.threshold, cancel)

    def _process_template(
        self,
        target: DetectionTarget,
        frame: np.ndarray,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        result = self.evaluate_template(target, frame, cancel)
        if result.error is not None or not result.found:
            return

        key = target.key
        # Gate before recording so a Continuous cooldown sees the gap
        # since the previous detection, not this one
        can_trigger = self._cooldowns.can_trigger(key, target.cooldown)
        self._cooldowns.record_detection(key, target.cooldown)

        action_enabled = target.action.enabled
        self._logger.detection(key, result.confidence, can_trigger and action_enabled, not can_trigger)

        if not can_trigger:
            self._history.record(
                target,
                self._store.get_module_name(target.module_id),
                result,
                action_triggered=False,
                was_in_cooldown=True,
            )
            return

        self._router.fire_detection(target, result)

        dispatched = self._dispatcher.dispatch(target) if action_enabled else None
        self._history.record(
            target,
            self._store.get_module_name(target.module_id),
            result,
            action_triggered=dispatched is not None,
            command=dispatched.command.value if dispatched is not None else None,
            was_in_cooldown=False,
        )

        self._cooldowns.record_trigger(key, target.cooldown)

    def _process_meter(self, target: DetectionTarget, frame: np.ndarray) -> None:
        region = target.region
        if region.type != RegionType.Custom or region.custom is None:
            self._logger.debug("Meter target has no custom region, skipped", target=target.key)
            return

        meter = target.meter
        if meter.require_focused_window and not self._capture.is_required_window_focused(
            meter.focus_process_name, meter.focus_window_title
        ):
            return

        crop = crop_region(frame, region.custom)
        percent = compute_fill_percent(crop, meter)
        if percent < 0:
            return

        event = self._analyzer.process(target, percent, self._clock())
        if event is None:
            return

        self._router.fire_meter_changed(event)

        if target.action.enabled:
            self._dispatcher.dispatch_for_meter(target, event)

    def detect_once(self, cancel: Optional[threading.Event] = None) -> list[DetectionResult]:
        """Evaluate every enabled template target against one fresh frame.

        No actions, cooldowns or history are involved; meter targets are
        skipped because they need the running loop's state.
        """
        results: list[DetectionResult] = []
        try:
            frame = self._capture.capture_frame(self._store.capture_config)
        except CaptureError as e:
            self._logger.exception("Capture failed", e)
            self._report_error(str(e))
            return results

        for target in self._store.get_enabled_targets():
            if cancel is not None and cancel.is_set():
                break
            if target.kind != TargetKind.Template:
                continue
            try:
                results.append(self.evaluate_template(target, frame, cancel))
            except Exception as e:
                self._logger.exception("Target processing failed", e, target=target.key)
                failed = DetectionResult.failed(str(e), target.template.threshold)
                failed.target = target
                results.append(failed)

        return results

    def _refresh_resolution(self) -> None:
        try:
            resolution = self._capture.current_resolution(self._store.capture_config)
        except Exception as e:
            self._logger.exception("Resolution query failed", e)
            return
        self._templates.set_resolution(resolution)

    def reload_images(self) -> None:
        """Drop all cached templates and pick up the current resolution."""
        self._templates.clear()
        self._refresh_resolution()
        self._logger.info("Template cache cleared")

    def _on_config_changed(self, key: Optional[str]) -> None:
        if key is None:
            self.reload_images()
            self._prune_removed_targets()
            return

        self._templates.invalidate(key)
        module_id, _, target_id = key.partition("/")
        self._analyzer.reset_target(module_id, target_id)
        if self._store.get_target(module_id, target_id) is None:
            self._cooldowns.remove_state(key)
            with self._keys_lock:
                self._known_keys.discard(key)

    def _prune_removed_targets(self) -> None:
        current = {t.key for t in self._store.get_enabled_targets()}
        with self._keys_lock:
            stale = self._known_keys - current
            self._known_keys -= stale
        for key in stale:
            module_id, _, target_id = key.partition("/")
            self._cooldowns.remove_state(key)
            self._analyzer.reset_target(module_id, target_id)
