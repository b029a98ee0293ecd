"""Windows foreground window and window enumeration via user32.

Only imported on Windows.
"""

import ctypes
from ctypes import wintypes
from typing import Final, Optional

from ..model import Rect, WindowInfo

PROCESS_QUERY_LIMITED_INFORMATION: Final[int] = 0x1000
MAX_PATH_CHARS: Final[int] = 1024

user32 = ctypes.windll.user32
kernel32 = ctypes.windll.kernel32

_EnumWindowsProc = ctypes.WINFUNCTYPE(wintypes.BOOL, wintypes.HWND, wintypes.LPARAM)


def _window_title(hwnd: int) -> str:
    length = user32.GetWindowTextLengthW(hwnd)
    if length <= 0:
        return ""
    buffer = ctypes.create_unicode_buffer(length + 1)
    user32.GetWindowTextW(hwnd, buffer, length + 1)
    return buffer.value


def _process_name(hwnd: int) -> str:
    """Executable name (without directory) of the process owning hwnd."""
    pid = wintypes.DWORD()
    user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
    if not pid.value:
        return ""

    handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid.value)
    if not handle:
        return ""
    try:
        size = wintypes.DWORD(MAX_PATH_CHARS)
        buffer = ctypes.create_unicode_buffer(MAX_PATH_CHARS)
        if not kernel32.QueryFullProcessImageNameW(handle, 0, buffer, ctypes.byref(size)):
            return ""
        path = buffer.value
    finally:
        kernel32.CloseHandle(handle)

    name = path.replace("/", "\\").rsplit("\\", 1)[-1]
    return name.removesuffix(".exe").removesuffix(".EXE")


def _window_rect(hwnd: int) -> Optional[Rect]:
    rect = wintypes.RECT()
    if not user32.GetWindowRect(hwnd, ctypes.byref(rect)):
        return None
    return Rect(
        x=rect.left,
        y=rect.top,
        w=rect.right - rect.left,
        h=rect.bottom - rect.top,
    )


def _window_info(hwnd: int) -> WindowInfo:
    return WindowInfo(
        handle=int(hwnd),
        title=_window_title(hwnd),
        process_name=_process_name(hwnd),
        is_visible=bool(user32.IsWindowVisible(hwnd)),
        rect=_window_rect(hwnd),
    )


def foreground_window() -> Optional[WindowInfo]:
    hwnd = user32.GetForegroundWindow()
    if not hwnd:
        return None
    return _window_info(hwnd)


def visible_windows() -> list[WindowInfo]:
    windows: list[WindowInfo] = []

    def _collect(hwnd: int, _lparam: int) -> bool:
        if user32.IsWindowVisible(hwnd) and user32.GetWindowTextLengthW(hwnd) > 0:
            windows.append(_window_info(hwnd))
        return True

    user32.EnumWindows(_EnumWindowsProc(_collect), 0)
    return windows
