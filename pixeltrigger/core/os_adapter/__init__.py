"""Platform-specific adapters.

This module provides cross-platform abstractions for:
- Platform detection
- Foreground window queries (used for focus-gated meters)
- Window enumeration (used for window capture)

Only Windows implements window queries; other platforms report them
as unsupported instead of failing.
"""

import os
import sys
from typing import TYPE_CHECKING, Optional

# Platform detection
IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

if TYPE_CHECKING:
    from ..model import WindowInfo


def check_capture_supported() -> tuple[bool, str]:
    """Check if screen capture can work on this platform.

    Returns:
        Tuple of (supported, reason).
        - (True, "") if capture should work
        - (False, reason) if it cannot
    """
    if IS_LINUX:
        if os.environ.get("WAYLAND_DISPLAY") and not os.environ.get("DISPLAY"):
            return False, "Screen capture requires an X11 session (Wayland is not supported)"
        if not os.environ.get("DISPLAY"):
            return False, "No X11 display available"
    return True, ""


def check_window_queries_supported() -> tuple[bool, str]:
    """Check if window enumeration and focus queries are available."""
    if IS_WINDOWS:
        return True, ""
    return False, "Window queries are only supported on Windows"


def get_foreground_window() -> Optional["WindowInfo"]:
    """Get information about the currently focused window.

    Returns:
        WindowInfo for the foreground window, or None if unavailable.
    """
    if not IS_WINDOWS:
        return None

    from .win_windows import foreground_window

    return foreground_window()


def enumerate_windows() -> list["WindowInfo"]:
    """List visible top-level windows with a title.

    Returns:
        List of WindowInfo, empty on unsupported platforms.
    """
    if not IS_WINDOWS:
        return []

    from .win_windows import visible_windows

    return visible_windows()


def window_matches(
    window: Optional["WindowInfo"],
    process_name: Optional[str],
    title_substring: Optional[str],
) -> bool:
    """Check a window against an optional process name and title filter.

    Process names compare case-insensitively (with or without ``.exe``);
    the title filter is a case-insensitive substring match. With no
    filters every window (and no window) matches.
    """
    process_name = (process_name or "").strip()
    title_substring = (title_substring or "").strip()

    if not process_name and not title_substring:
        return True

    if window is None:
        return False

    if process_name:
        wanted = process_name.lower().removesuffix(".exe")
        actual = (window.process_name or "").lower().removesuffix(".exe")
        if wanted != actual:
            return False

    if title_substring:
        if not window.title or title_substring.lower() not in window.title.lower():
            return False

    return True


# Convenience re-exports
__all__ = [
    "IS_WINDOWS",
    "IS_MACOS",
    "IS_LINUX",
    "check_capture_supported",
    "check_window_queries_supported",
    "get_foreground_window",
    "enumerate_windows",
    "window_matches",
]
