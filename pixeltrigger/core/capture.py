"""Screen capture using mss, plus region masking and cropping.

The orchestrator only talks to the ``CaptureProvider`` interface; the
mss-backed provider is the default implementation.
"""

import threading
import time
from typing import Optional

import mss
import numpy as np

from .constants import (
    CAPTURE_RETRY_INTERVAL_MS,
    CAPTURE_RETRY_N,
    GRAY_WEIGHT_B,
    GRAY_WEIGHT_G,
    GRAY_WEIGHT_R,
)
from .logging import Logger, get_logger
from .model import (
    CaptureConfig,
    CaptureSourceType,
    MonitorInfo,
    Rect,
    RegionSpec,
    RegionType,
    Resolution,
    WindowInfo,
)
from .os_adapter import (
    check_capture_supported,
    check_window_queries_supported,
    enumerate_windows,
    get_foreground_window,
    window_matches,
)


class CaptureError(Exception):
    """Exception raised when screen capture fails after retries."""

    pass


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert BGRA/BGR image to grayscale.

    Uses ITU-R BT.601 weights: Y = 0.299*R + 0.587*G + 0.114*B

    Args:
        image: Input image in BGR or BGRA format (from mss)

    Returns:
        Grayscale image as uint8 numpy array
    """
    if image.ndim == 2:
        # Already grayscale
        return image.astype(np.uint8)

    b = image[:, :, 0].astype(np.float32)
    g = image[:, :, 1].astype(np.float32)
    r = image[:, :, 2].astype(np.float32)

    gray = GRAY_WEIGHT_R * r + GRAY_WEIGHT_G * g + GRAY_WEIGHT_B * b

    return gray.astype(np.uint8)


def clamp_rect(rect: Rect, width: int, height: int) -> Optional[Rect]:
    """Clamp a rect to a ``width`` x ``height`` frame.

    Returns:
        The clamped rect, or None if nothing of it lies inside the frame.
    """
    x = max(0, min(rect.x, width - 1))
    y = max(0, min(rect.y, height - 1))
    w = min(rect.w, width - x)
    h = min(rect.h, height - y)
    if w <= 0 or h <= 0:
        return None
    return Rect(x=x, y=y, w=w, h=h)


def crop_region(frame: np.ndarray, rect: Rect) -> Optional[np.ndarray]:
    """Crop ``rect`` out of a frame, clamped to the frame bounds.

    Returns:
        A copy of the cropped pixels, or None if the rect misses the frame.
    """
    height, width = frame.shape[:2]
    clamped = clamp_rect(rect, width, height)
    if clamped is None:
        return None
    # numpy uses [y, x] indexing (row, column)
    return frame[clamped.y:clamped.bottom, clamped.x:clamped.right].copy()


def create_grid_mask(height: int, width: int, sections: list[bool]) -> np.ndarray:
    """Boolean mask that is True inside enabled 3x3 grid sections.

    The last row and column absorb any remainder pixels.
    """
    mask = np.zeros((height, width), dtype=bool)
    section_w = width // 3
    section_h = height // 3

    for row in range(3):
        for col in range(3):
            if not sections[row * 3 + col]:
                continue
            x0 = col * section_w
            y0 = row * section_h
            x1 = width if col == 2 else x0 + section_w
            y1 = height if row == 2 else y0 + section_h
            mask[y0:y1, x0:x1] = True

    return mask


def apply_region_mask(frame: np.ndarray, region: Optional[RegionSpec]) -> np.ndarray:
    """Restrict a frame to a target's region.

    - FullScreen: the frame unchanged (copied)
    - Grid: disabled sections are blacked out, frame size is preserved
    - Custom: the clamped sub-rectangle; invalid rects fall back to the frame
    """
    if region is None or region.type == RegionType.FullScreen:
        return frame.copy()

    if region.type == RegionType.Custom and region.custom is not None:
        cropped = crop_region(frame, region.custom)
        return cropped if cropped is not None else frame.copy()

    if region.type == RegionType.Grid:
        if region.grid is None or region.grid.all_enabled():
            return frame.copy()
        height, width = frame.shape[:2]
        mask = create_grid_mask(height, width, region.grid.sections)
        result = np.zeros_like(frame)
        result[mask] = frame[mask]
        return result

    return frame.copy()


class CaptureProvider:
    """Interface the orchestrator uses to obtain frames.

    Implementations must not raise from ``is_supported``; capture
    failures raise ``CaptureError``.
    """

    @property
    def is_supported(self) -> bool:
        raise NotImplementedError

    @property
    def unsupported_reason(self) -> Optional[str]:
        raise NotImplementedError

    def capture_frame(self, config: CaptureConfig) -> np.ndarray:
        """Capture one BGRA frame according to ``config``."""
        raise NotImplementedError

    def apply_region_mask(self, frame: np.ndarray, region: RegionSpec) -> np.ndarray:
        return apply_region_mask(frame, region)

    def enumerate_monitors(self) -> list[MonitorInfo]:
        raise NotImplementedError

    def enumerate_windows(self) -> list[WindowInfo]:
        raise NotImplementedError

    def current_resolution(self, config: Optional[CaptureConfig] = None) -> Resolution:
        raise NotImplementedError

    def foreground_window(self) -> Optional[WindowInfo]:
        raise NotImplementedError

    def is_required_window_focused(
        self,
        process_name: Optional[str] = None,
        title_substring: Optional[str] = None,
    ) -> bool:
        """Check whether the focused window satisfies the given filters."""
        if not (process_name or "").strip() and not (title_substring or "").strip():
            return True
        return window_matches(self.foreground_window(), process_name, title_substring)


# Thread-local mss instance: mss keeps per-thread OS handles, so each
# thread needs its own instance.
_thread_local = threading.local()


def _get_mss() -> "mss.base.MSSBase":
    """Get or create a thread-local mss instance."""
    if getattr(_thread_local, "mss_instance", None) is None:
        _thread_local.mss_instance = mss.mss()
    return _thread_local.mss_instance


def _reset_mss() -> None:
    """Reset the thread-local mss instance (call on error recovery)."""
    instance = getattr(_thread_local, "mss_instance", None)
    if instance is not None:
        try:
            instance.close()
        except Exception:
            pass
        _thread_local.mss_instance = None


class MssCaptureProvider(CaptureProvider):
    """Capture provider backed by mss.

    Monitor capture works wherever mss does; window capture and focus
    queries need the Windows window adapter.
    """

    def __init__(
        self,
        retry_count: int = CAPTURE_RETRY_N,
        retry_interval_ms: int = CAPTURE_RETRY_INTERVAL_MS,
        logger: Optional[Logger] = None,
    ) -> None:
        self._retry_count = max(1, retry_count)
        self._retry_interval_ms = retry_interval_ms
        self._logger = logger or get_logger()

    @property
    def is_supported(self) -> bool:
        supported, _ = check_capture_supported()
        return supported

    @property
    def unsupported_reason(self) -> Optional[str]:
        supported, reason = check_capture_supported()
        return None if supported else reason

    def capture_frame(self, config: CaptureConfig) -> np.ndarray:
        """Capture a monitor or window as a BGRA array.

        Raises:
            CaptureError: If the platform is unsupported, the window is
                missing, or the grab fails after all retries
        """
        supported, reason = check_capture_supported()
        if not supported:
            raise CaptureError(reason)

        if config.source == CaptureSourceType.Window:
            area = self._window_area(config.window_title)
        else:
            area = self._monitor_area(config.monitor_index)

        return self._grab(area)

    def _monitor_area(self, monitor_index: int) -> dict:
        monitors = _get_mss().monitors
        # monitors[0] is the combined virtual screen, physical monitors start at 1
        if len(monitors) <= 1:
            return monitors[0]
        if monitor_index < 1 or monitor_index >= len(monitors):
            self._logger.warning(
                "Monitor index out of range, using primary",
                monitor_index=monitor_index,
            )
            monitor_index = 1
        return monitors[monitor_index]

    def _window_area(self, window_title: Optional[str]) -> dict:
        supported, reason = check_window_queries_supported()
        if not supported:
            raise CaptureError(reason)
        if not window_title:
            raise CaptureError("No window title configured for window capture")

        for window in enumerate_windows():
            if window.title == window_title or window_title.lower() in window.title.lower():
                rect = window.rect
                if rect is None or not rect.is_valid():
                    raise CaptureError(f"Window has invalid dimensions: {window_title}")
                return {"left": rect.x, "top": rect.y, "width": rect.w, "height": rect.h}

        raise CaptureError(f"Window not found: {window_title}")

    def _grab(self, area: dict) -> np.ndarray:
        last_error: Optional[Exception] = None

        for attempt in range(self._retry_count):
            try:
                screenshot = _get_mss().grab(area)
                # Shape: (height, width, 4), BGRA
                return np.array(screenshot)
            except Exception as e:
                last_error = e
                # The mss instance may be in a bad state after a failure
                _reset_mss()
                if attempt < self._retry_count - 1:
                    time.sleep(self._retry_interval_ms / 1000.0)

        raise CaptureError(
            f"Capture failed after {self._retry_count} attempts. Last error: {last_error}"
        )

    def enumerate_monitors(self) -> list[MonitorInfo]:
        try:
            monitors = _get_mss().monitors
        except Exception as e:
            self._logger.exception("Monitor enumeration failed", e)
            return []

        result = []
        for index, monitor in enumerate(monitors[1:], start=1):
            result.append(
                MonitorInfo(
                    index=index,
                    name=f"Monitor {index}",
                    is_primary=index == 1,
                    left=monitor["left"],
                    top=monitor["top"],
                    width=monitor["width"],
                    height=monitor["height"],
                )
            )
        return result

    def enumerate_windows(self) -> list[WindowInfo]:
        return enumerate_windows()

    def current_resolution(self, config: Optional[CaptureConfig] = None) -> Resolution:
        monitors = self.enumerate_monitors()
        if not monitors:
            return Resolution(1920, 1080)
        index = config.monitor_index if config is not None else 1
        if index < 1 or index > len(monitors):
            index = 1
        return monitors[index - 1].resolution

    def foreground_window(self) -> Optional[WindowInfo]:
        return get_foreground_window()
