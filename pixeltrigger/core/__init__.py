"""Core detection engine and utilities.

This package provides the core functionality for pixeltrigger:
- Data models (targets, regions, cooldown/meter/action config, events)
- Screen capture and region masking
- Template matching algorithms and the algorithm registry
- Meter fill measurement and value change analysis
- Cooldowns, event routing and action dispatch
- The background detection orchestrator
- Logging with circular buffer
- Platform-specific adapters
"""

from .constants import (
    CAPTURE_DELAY_MS_DEFAULT,
    CAPTURE_ERROR_BACKOFF_SEC,
    CAPTURE_RETRY_INTERVAL_MS,
    CAPTURE_RETRY_N,
    FILL_OCCUPANCY_THRESHOLD,
    FRAGMENT_RATIO_THRESHOLD,
    HEAL_REBASELINE_FACTOR,
    HISTORY_MAX_EVENTS,
    LOG_BUFFER_SIZE,
    MATCH_THRESHOLD_DEFAULT,
    STOP_TIMEOUT_SEC,
)
from .model import (
    ActionConfig,
    CaptureConfig,
    CommandKind,
    CooldownConfig,
    CooldownType,
    DetectionEvent,
    DetectionResult,
    DetectionTarget,
    FillDirection,
    GridSections,
    HsvRange,
    IntensityMode,
    MeterChangeType,
    MeterConfig,
    OrchestratorState,
    Point,
    Rect,
    RegionSpec,
    RegionType,
    Resolution,
    TargetKind,
    TargetSelectionMode,
    TemplateConfig,
    ValueChangeEvent,
)

__all__ = [
    # Constants
    "CAPTURE_DELAY_MS_DEFAULT",
    "CAPTURE_ERROR_BACKOFF_SEC",
    "CAPTURE_RETRY_N",
    "CAPTURE_RETRY_INTERVAL_MS",
    "FILL_OCCUPANCY_THRESHOLD",
    "FRAGMENT_RATIO_THRESHOLD",
    "HEAL_REBASELINE_FACTOR",
    "HISTORY_MAX_EVENTS",
    "LOG_BUFFER_SIZE",
    "MATCH_THRESHOLD_DEFAULT",
    "STOP_TIMEOUT_SEC",
    # Models
    "OrchestratorState",
    "TargetKind",
    "RegionType",
    "FillDirection",
    "MeterChangeType",
    "IntensityMode",
    "CooldownType",
    "CommandKind",
    "TargetSelectionMode",
    "Point",
    "Rect",
    "Resolution",
    "GridSections",
    "RegionSpec",
    "HsvRange",
    "MeterConfig",
    "CooldownConfig",
    "ActionConfig",
    "TemplateConfig",
    "DetectionTarget",
    "DetectionResult",
    "ValueChangeEvent",
    "DetectionEvent",
    "CaptureConfig",
]
