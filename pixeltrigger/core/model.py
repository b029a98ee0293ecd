"""Core data models for pixeltrigger.

Defines detection targets, region specifications, cooldown/meter/action
configuration, detection results and events, and the enums that drive
the orchestrator state machine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Optional
import uuid

from .constants import (
    CAPTURE_DELAY_MS_DEFAULT,
    DEFAULT_ALGORITHM_ID,
    MATCH_THRESHOLD_DEFAULT,
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class OrchestratorState(Enum):
    """Background loop lifecycle states."""

    Stopped = auto()
    Starting = auto()
    Running = auto()
    Stopping = auto()


class TargetKind(Enum):
    """What a detection target measures."""

    Template = "template"
    """Match a reference image inside the frame"""

    Meter = "meter"
    """Measure the fill level of a bar inside a custom region"""


class RegionType(Enum):
    """How a target restricts the searched part of the frame."""

    FullScreen = "fullscreen"
    Grid = "grid"
    Custom = "custom"


class FillDirection(Enum):
    """Direction in which a meter bar fills."""

    LeftToRight = "left_to_right"
    RightToLeft = "right_to_left"
    BottomToTop = "bottom_to_top"
    TopToBottom = "top_to_bottom"

    @property
    def is_horizontal(self) -> bool:
        return self in (FillDirection.LeftToRight, FillDirection.RightToLeft)

    @property
    def is_reversed(self) -> bool:
        """True when filling starts at the high-index end of the axis."""
        return self in (FillDirection.RightToLeft, FillDirection.BottomToTop)


class MeterChangeType(Enum):
    Changed = "Changed"
    DamageTaken = "DamageTaken"
    Healed = "Healed"


class IntensityMode(Enum):
    """How a meter delta maps onto action intensity."""

    Scaled = "scaled"
    """Delta percent scales the configured maximum intensity"""

    Direct = "direct"
    """Delta percent is the intensity, capped at the configured maximum"""

    Fixed = "fixed"
    """Configured intensity regardless of delta"""


class CooldownType(Enum):
    Standard = "standard"
    """Blocks re-triggering until the duration elapses after a trigger"""

    Continuous = "continuous"
    """Blocks until detections stop for the duration"""

    ImageReset = "image_reset"
    """Like Standard, but cleared early when a reset target is detected"""


class CommandKind(Enum):
    Shock = "shock"
    Vibrate = "vibrate"
    Beep = "beep"


class TargetSelectionMode(Enum):
    Selected = "selected"
    """Every configured target address"""

    Random = "random"
    """A random subset of the configured addresses"""


class CaptureSourceType(Enum):
    Monitor = "monitor"
    Window = "window"


@dataclass(frozen=True)
class Point:
    """A point in frame pixel coordinates."""

    x: int
    y: int


@dataclass(frozen=True)
class Size:
    width: int
    height: int


@dataclass(frozen=True)
class Rect:
    """A rectangle in frame pixel coordinates.

    Attributes:
        x: Left edge X coordinate
        y: Top edge Y coordinate
        w: Width (must be > 0)
        h: Height (must be > 0)
    """

    x: int
    y: int
    w: int
    h: int

    @property
    def right(self) -> int:
        """Right edge X coordinate."""
        return self.x + self.w

    @property
    def bottom(self) -> int:
        """Bottom edge Y coordinate."""
        return self.y + self.h

    def is_valid(self) -> bool:
        """Check if rect has positive dimensions."""
        return self.w > 0 and self.h > 0


@dataclass(frozen=True)
class Resolution:
    width: int
    height: int

    def scale_ratios(self, target: "Resolution") -> tuple[float, float]:
        """Ratios converting from this resolution to ``target``."""
        return (target.width / self.width, target.height / self.height)


@dataclass
class GridSections:
    """3x3 screen grid, sections numbered left-to-right, top-to-bottom.

    [0][1][2]
    [3][4][5]
    [6][7][8]
    """

    sections: list[bool] = field(default_factory=lambda: [True] * 9)

    def __post_init__(self) -> None:
        if len(self.sections) != 9:
            raise ValueError(f"Grid needs 9 sections, got {len(self.sections)}")

    @classmethod
    def all(cls) -> "GridSections":
        return cls([True] * 9)

    @classmethod
    def none(cls) -> "GridSections":
        return cls([False] * 9)

    def is_enabled(self, row: int, col: int) -> bool:
        return self.sections[row * 3 + col]

    def set_enabled(self, row: int, col: int, enabled: bool) -> None:
        self.sections[row * 3 + col] = enabled

    def has_any_enabled(self) -> bool:
        return any(self.sections)

    def all_enabled(self) -> bool:
        return all(self.sections)


@dataclass
class RegionSpec:
    """Part of the frame a target looks at."""

    type: RegionType = RegionType.FullScreen
    grid: GridSections = field(default_factory=GridSections.all)
    custom: Optional[Rect] = None

    @classmethod
    def full(cls) -> "RegionSpec":
        return cls()

    @classmethod
    def from_rect(cls, rect: Rect) -> "RegionSpec":
        return cls(type=RegionType.Custom, custom=rect)

    @classmethod
    def from_grid(cls, sections: list[bool]) -> "RegionSpec":
        return cls(type=RegionType.Grid, grid=GridSections(list(sections)))


@dataclass
class HsvRange:
    """HSV colour range in OpenCV units (H 0-180, S/V 0-255).

    ``hue_min > hue_max`` describes a range that wraps through 0 (reds).
    """

    hue_min: int
    hue_max: int
    sat_min: int = 50
    sat_max: int = 255
    val_min: int = 50
    val_max: int = 255

    @property
    def wraps(self) -> bool:
        return self.hue_min > self.hue_max

    @classmethod
    def green(cls) -> "HsvRange":
        return cls(hue_min=35, hue_max=85)

    @classmethod
    def red(cls) -> "HsvRange":
        return cls(hue_min=0, hue_max=10)

    @classmethod
    def blue(cls) -> "HsvRange":
        return cls(hue_min=100, hue_max=130)

    @classmethod
    def yellow(cls) -> "HsvRange":
        return cls(hue_min=20, hue_max=35)

    @classmethod
    def white(cls) -> "HsvRange":
        return cls(hue_min=0, hue_max=180, sat_min=0, sat_max=30, val_min=200)


@dataclass
class MeterConfig:
    """Meter/health bar measurement and change reporting settings."""

    direction: FillDirection = FillDirection.LeftToRight
    min_delta_percent: float = 2.0
    smoothing_frames: int = 3
    event_cooldown_ms: int = 300
    decreases_only: bool = True
    intensity_mode: IntensityMode = IntensityMode.Scaled
    use_color_hint: bool = False
    color_hint: Optional[HsvRange] = None
    require_focused_window: bool = False
    focus_process_name: Optional[str] = None
    focus_window_title: Optional[str] = None


@dataclass
class CooldownConfig:
    type: CooldownType = CooldownType.Standard
    duration_seconds: float = 5.0
    reset_target_key: Optional[str] = None
    """For ImageReset: ``moduleId/targetId`` of the target that clears this cooldown"""


@dataclass
class CooldownState:
    """Per-target cooldown bookkeeping (monotonic clock seconds)."""

    key: str
    last_trigger_time: Optional[float] = None
    last_detection_time: Optional[float] = None
    on_cooldown: bool = False

    def reset(self) -> None:
        self.on_cooldown = False
        self.last_trigger_time = None
        self.last_detection_time = None


@dataclass
class CooldownInfo:
    key: str
    on_cooldown: bool
    remaining_seconds: float = 0.0
    progress: float = 1.0


@dataclass
class ActionConfig:
    """Device command to issue when a target fires."""

    enabled: bool = True
    command: CommandKind = CommandKind.Shock
    intensity: int = 20
    duration_seconds: float = 1.0
    mode: TargetSelectionMode = TargetSelectionMode.Selected
    target_addresses: list[str] = field(default_factory=list)
    """Addresses in ``deviceId:targetId`` form"""
    random_count_min: int = 1
    random_count_max: int = 1


@dataclass
class TemplateConfig:
    image_path: str = ""
    threshold: float = MATCH_THRESHOLD_DEFAULT
    algorithm_id: str = DEFAULT_ALGORITHM_ID
    capture_resolution: Resolution = field(default_factory=lambda: Resolution(1920, 1080))
    auto_resize: bool = True


@dataclass
class DetectionTarget:
    """A single configured thing to detect."""

    module_id: str
    target_id: str
    name: str = ""
    kind: TargetKind = TargetKind.Template
    enabled: bool = True
    region: RegionSpec = field(default_factory=RegionSpec)
    template: TemplateConfig = field(default_factory=TemplateConfig)
    meter: MeterConfig = field(default_factory=MeterConfig)
    cooldown: CooldownConfig = field(default_factory=CooldownConfig)
    action: ActionConfig = field(default_factory=ActionConfig)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.target_id

    @property
    def key(self) -> str:
        """State key shared by cooldowns, analyzers and caches."""
        return target_key(self.module_id, self.target_id)


def target_key(module_id: str, target_id: str) -> str:
    return f"{module_id}/{target_id}"


@dataclass
class DetectionResult:
    """Outcome of one template evaluation."""

    found: bool
    confidence: float = 0.0
    threshold: float = 0.0
    location: Optional[Point] = None
    size: Optional[Size] = None
    algorithm_id: Optional[str] = None
    elapsed_seconds: float = 0.0
    error: Optional[str] = None
    target: Optional[DetectionTarget] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def success(
        cls,
        confidence: float,
        threshold: float,
        location: Point,
        size: Size,
        algorithm_id: Optional[str] = None,
    ) -> "DetectionResult":
        return cls(
            found=True,
            confidence=confidence,
            threshold=threshold,
            location=location,
            size=size,
            algorithm_id=algorithm_id,
        )

    @classmethod
    def not_found(
        cls,
        confidence: float,
        threshold: float,
        algorithm_id: Optional[str] = None,
    ) -> "DetectionResult":
        return cls(
            found=False,
            confidence=confidence,
            threshold=threshold,
            algorithm_id=algorithm_id,
        )

    @classmethod
    def failed(cls, error: str, threshold: float = 0.0) -> "DetectionResult":
        return cls(found=False, threshold=threshold, error=error)


@dataclass
class ValueChangeEvent:
    """A meaningful meter change, emitted once per accepted change."""

    module_id: str
    target_id: str
    target_name: str
    current_percent: float
    previous_percent: float
    delta_percent: float
    is_decrease: bool
    change_type: MeterChangeType
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class DetectionEvent:
    """History record of an accepted detection."""

    module_id: str
    module_name: str
    target_id: str
    target_name: str
    confidence: float
    location: Optional[Point] = None
    action_triggered: bool = False
    command: Optional[str] = None
    was_in_cooldown: bool = False
    elapsed_seconds: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    def time_ago(self, now: Optional[datetime] = None) -> str:
        """Short human-readable age, e.g. ``12s ago``."""
        now = now or utcnow()
        seconds = (now - self.timestamp).total_seconds()
        if seconds < 60:
            return f"{int(seconds)}s ago"
        if seconds < 3600:
            return f"{int(seconds // 60)}m ago"
        if seconds < 86400:
            return f"{int(seconds // 3600)}h ago"
        return f"{int(seconds // 86400)}d ago"


@dataclass
class CaptureConfig:
    source: CaptureSourceType = CaptureSourceType.Monitor
    monitor_index: int = 1
    """1-based monitor index; out-of-range values fall back to the primary"""
    window_title: Optional[str] = None
    capture_delay_ms: int = CAPTURE_DELAY_MS_DEFAULT


@dataclass
class MonitorInfo:
    index: int
    name: str
    is_primary: bool
    left: int
    top: int
    width: int
    height: int

    @property
    def resolution(self) -> Resolution:
        return Resolution(self.width, self.height)


@dataclass
class WindowInfo:
    handle: int
    title: str
    process_name: str
    is_visible: bool = True
    rect: Optional[Rect] = None


@dataclass
class DetectionStats:
    """Running counters for template evaluations."""

    total_detections: int = 0
    successful_detections: int = 0
    last_capture_time: Optional[datetime] = None
    last_loop_seconds: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_detections == 0:
            return 0.0
        return self.successful_detections / self.total_detections

    def reset(self) -> None:
        self.total_detections = 0
        self.successful_detections = 0
        self.last_capture_time = None
        self.last_loop_seconds = 0.0
