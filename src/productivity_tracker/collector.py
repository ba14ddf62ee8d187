"""Foreground window sources and input idle detection."""

from __future__ import annotations

import ctypes
import logging
import os
import sys
from ctypes import wintypes
from typing import Optional, Protocol

import psutil

from .models import WindowInfo
from .normalization import normalize_window_title

logger = logging.getLogger(__name__)


class WindowSource(Protocol):
    """Supplies a snapshot of the foreground window on demand."""

    def capture(self) -> Optional[WindowInfo]: ...


class IdleDetector(Protocol):
    def milliseconds_since_input(self) -> int: ...


def placeholder_window() -> WindowInfo:
    """Window reported when the real source fails."""
    return WindowInfo(
        application_name="System",
        window_title="Active",
        process_id=os.getpid(),
    )


class WindowsIdleDetector:
    """Detects idle state using Win32 APIs."""

    class LASTINPUTINFO(ctypes.Structure):
        _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]

    def milliseconds_since_input(self) -> int:
        last_input = self.LASTINPUTINFO()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise ctypes.WinError()  # type: ignore[attr-defined]
        # dwTime wraps after ~49 days, so compare against the 32-bit tick count.
        elapsed = (self._kernel32.GetTickCount() - last_input.dwTime) & 0xFFFFFFFF
        return int(elapsed)


class WindowsActiveWindowProbe:
    """Retrieves the foreground window title and owning process."""

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def capture(self) -> Optional[WindowInfo]:
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)

        pid = wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        process_name, process_path = _describe_process(pid.value)

        window_title = normalize_window_title(process_name, buffer.value) or ""
        return WindowInfo(
            application_name=process_name or "Unknown",
            application_path=process_path,
            window_title=window_title,
            process_id=int(pid.value),
        )


def _describe_process(pid: int) -> tuple[Optional[str], Optional[str]]:
    if not pid:
        return None, None
    try:
        process = psutil.Process(pid)
        name = process.name()
    except (psutil.Error, ProcessLookupError):
        return None, None
    try:
        path: Optional[str] = process.exe() or None
    except psutil.Error:
        path = None
    return name, path


def default_window_source() -> WindowSource:
    if sys.platform != "win32":
        raise RuntimeError(
            f"No foreground window source is available for platform {sys.platform!r}."
        )
    return WindowsActiveWindowProbe()


def default_idle_detector() -> Optional[IdleDetector]:
    if sys.platform != "win32":
        return None
    return WindowsIdleDetector()
