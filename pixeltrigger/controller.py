"""Wiring of the detection components.

Builds an orchestrator from a target store and an actuator, with the
default capture provider unless one is supplied, and wraps it in the
Qt ``DetectionEngine`` for UI hosts.
"""

import random
from typing import Optional

from PySide6.QtCore import QObject

from pixeltrigger.core.actions import ActionDispatcher, Actuator
from pixeltrigger.core.capture import CaptureProvider, MssCaptureProvider
from pixeltrigger.core.engine import DetectionEngine
from pixeltrigger.core.logging import Logger, get_logger
from pixeltrigger.core.orchestrator import DetectionOrchestrator
from pixeltrigger.core.store import TargetStore


def create_orchestrator(
    store: TargetStore,
    actuator: Optional[Actuator],
    capture: Optional[CaptureProvider] = None,
    logger: Optional[Logger] = None,
    rng: Optional[random.Random] = None,
) -> DetectionOrchestrator:
    """Create an orchestrator with default collaborators.

    Args:
        store: Source of detection targets and capture settings
        actuator: Device command sink (None disables actions)
        capture: Capture provider, defaults to ``MssCaptureProvider``
        logger: Logger instance (uses global if None)
        rng: Random source for random target selection
    """
    logger = logger or get_logger()
    capture = capture or MssCaptureProvider(logger=logger)
    dispatcher = ActionDispatcher(actuator, logger=logger, rng=rng)

    if not capture.is_supported:
        logger.warning(f"Screen capture unavailable: {capture.unsupported_reason}")

    return DetectionOrchestrator(store, capture, dispatcher, logger=logger)


def create_detection_engine(
    store: TargetStore,
    actuator: Optional[Actuator],
    capture: Optional[CaptureProvider] = None,
    parent: Optional[QObject] = None,
) -> DetectionEngine:
    """Create the Qt-facing engine over a freshly wired orchestrator."""
    orchestrator = create_orchestrator(store, actuator, capture)
    return DetectionEngine(orchestrator, parent)
