"""Viewer settings and the thread-safe stop/finish handshake of a viewer loop."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Mapping

__all__ = ["ViewerSettings", "viewer_settings_from_mapping", "ViewerControl"]

_DEFAULT_FPS = 30.0
_DEFAULT_WIDTH = 640
_DEFAULT_HEIGHT = 480


@dataclass(frozen=True)
class ViewerSettings:
    """Refresh period in milliseconds, image size and 3D viewpoint."""

    period_ms: float
    image_width: int
    image_height: int
    viewpoint_x: float
    viewpoint_y: float
    viewpoint_z: float
    viewpoint_f: float


def viewer_settings_from_mapping(values: Mapping[str, Any]) -> ViewerSettings:
    """Build viewer settings from a flat settings mapping; missing keys read as 0."""

    def number(key: str) -> float:
        value = values.get(key)
        return 0.0 if value is None else float(value)

    fps = number("Camera.fps")
    if fps < 1:
        fps = _DEFAULT_FPS

    width = int(number("Camera.width"))
    height = int(number("Camera.height"))
    if width < 1 or height < 1:
        width, height = _DEFAULT_WIDTH, _DEFAULT_HEIGHT

    return ViewerSettings(
        period_ms=1e3 / fps,
        image_width=width,
        image_height=height,
        viewpoint_x=number("Viewer.ViewpointX"),
        viewpoint_y=number("Viewer.ViewpointY"),
        viewpoint_z=number("Viewer.ViewpointZ"),
        viewpoint_f=number("Viewer.ViewpointF"),
    )


class ViewerControl:
    """Stop, release and finish requests shared between a viewer loop and other threads."""

    def __init__(self) -> None:
        self._finish_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._finish_requested = False
        self._finished = True
        self._stopped = True
        self._stop_requested = False

    def start(self) -> None:
        """Mark the loop as running."""
        with self._finish_lock:
            self._finished = False
        with self._stop_lock:
            self._stopped = False

    def request_finish(self) -> None:
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self) -> bool:
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self) -> None:
        with self._finish_lock:
            self._finished = True

    def is_finished(self) -> bool:
        with self._finish_lock:
            return self._finished

    def request_stop(self) -> None:
        """Ask a running loop to pause; ignored if already stopped."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def is_stopped(self) -> bool:
        with self._stop_lock:
            return self._stopped

    def stop(self) -> bool:
        """Honour a pending stop request unless finishing; return whether stopped."""
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self) -> None:
        with self._stop_lock:
            self._stopped = False