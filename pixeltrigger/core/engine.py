"""Qt bridge over the detection orchestrator.

The orchestrator reports through plain callbacks on its worker thread.
``DetectionEngine`` turns those into Qt signals, so a UI host can
connect slots and let Qt queue delivery onto its own thread.
"""

from typing import Optional

from PySide6.QtCore import QObject, Signal

from .logging import get_logger
from .model import DetectionEvent, DetectionResult, DetectionTarget, ValueChangeEvent
from .orchestrator import DetectionOrchestrator


class DetectionEngine(QObject):
    """Main detection engine object for Qt hosts.

    Owns no thread of its own; the orchestrator runs the loop.
    """

    running_changed = Signal(bool)
    error_occurred = Signal(str)
    detection_found = Signal(object, object)  # DetectionTarget, DetectionResult
    detection_recorded = Signal(object)  # DetectionEvent
    history_cleared = Signal()
    meter_changed = Signal(object)  # ValueChangeEvent

    def __init__(
        self,
        orchestrator: DetectionOrchestrator,
        parent: Optional[QObject] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            orchestrator: Orchestrator to drive and observe
            parent: Parent QObject
        """
        super().__init__(parent)

        self._orchestrator = orchestrator
        self._logger = get_logger()

        orchestrator.on_error = self._on_error
        orchestrator.on_running_changed = self._on_running_changed
        orchestrator.router.add_detection_listener(self._on_detection)
        orchestrator.router.add_meter_listener(self._on_meter_changed)
        orchestrator.history.add_listener(self._on_recorded)
        orchestrator.history.add_clear_listener(self.history_cleared.emit)

    @property
    def orchestrator(self) -> DetectionOrchestrator:
        return self._orchestrator

    @property
    def is_running(self) -> bool:
        """Check if detection is currently running."""
        return self._orchestrator.is_running

    def start(self) -> bool:
        return self._orchestrator.start()

    def stop(self) -> None:
        self._orchestrator.stop()

    def toggle(self) -> bool:
        return self._orchestrator.toggle()

    def detect_once(self) -> list[DetectionResult]:
        return self._orchestrator.detect_once()

    def reload_images(self) -> None:
        self._orchestrator.reload_images()

    def _on_error(self, message: str) -> None:
        self.error_occurred.emit(message)

    def _on_running_changed(self, running: bool) -> None:
        self._logger.debug("Running state changed", running=running)
        self.running_changed.emit(running)

    def _on_detection(self, target: DetectionTarget, result: DetectionResult) -> None:
        self.detection_found.emit(target, result)

    def _on_recorded(self, event: DetectionEvent) -> None:
        self.detection_recorded.emit(event)

    def _on_meter_changed(self, event: ValueChangeEvent) -> None:
        self.meter_changed.emit(event)
