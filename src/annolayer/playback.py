"""
AnnoLayer Playback - Host-side playback sources

A playback source reports the current video time and the video geometry,
and notifies listeners when either changes:
- Position listeners fire after the current time moves (seek, new frame)
- Geometry listeners fire after the natural or display size changes

Everything runs on the caller's thread. Listeners are called synchronously
in registration order.

Sources:
- ManualPlayback      Driven by hand (hosts with their own decoder, tests)
- VideoFilePlayback   OpenCV-backed file reader, one frame per step()
"""

import logging
import time
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

Listener = Callable[["PlaybackSource"], None]


class PlaybackSource:
    """
    Base class with listener bookkeeping.

    Subclasses keep `_current_time`, `_natural_size`, `_display_size` and
    `_frame` up to date and call _notify_position() / _notify_geometry().
    """

    def __init__(self):
        self._position_listeners: List[Listener] = []
        self._geometry_listeners: List[Listener] = []
        self._current_time = 0.0
        self._natural_size: Tuple[int, int] = (0, 0)
        self._display_size: Tuple[int, int] = (0, 0)
        self._frame: Optional[np.ndarray] = None
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_position_listener(self, listener: Listener):
        if listener not in self._position_listeners:
            self._position_listeners.append(listener)

    def remove_position_listener(self, listener: Listener):
        if listener in self._position_listeners:
            self._position_listeners.remove(listener)

    def add_geometry_listener(self, listener: Listener):
        if listener not in self._geometry_listeners:
            self._geometry_listeners.append(listener)

    def remove_geometry_listener(self, listener: Listener):
        if listener in self._geometry_listeners:
            self._geometry_listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._position_listeners) + len(self._geometry_listeners)

    def _dispatch(self, listeners: List[Listener], kind: str):
        for listener in list(listeners):
            try:
                listener(self)
            except Exception:
                self.logger.exception(f"{kind} listener {listener!r} failed")

    def _notify_position(self):
        self._dispatch(self._position_listeners, "Position")

    def _notify_geometry(self):
        self._dispatch(self._geometry_listeners, "Geometry")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def current_time(self) -> float:
        """Current playback position in seconds."""
        return self._current_time

    @property
    def natural_size(self) -> Tuple[int, int]:
        """Intrinsic (width, height) of the video in pixels."""
        return self._natural_size

    @property
    def display_size(self) -> Tuple[int, int]:
        """(width, height) the video is shown at; falls back to natural size."""
        if self._display_size[0] > 0 and self._display_size[1] > 0:
            return self._display_size
        return self._natural_size

    @property
    def current_frame(self) -> Optional[np.ndarray]:
        """Most recent decoded BGR frame, if the source has one."""
        return self._frame


class ManualPlayback(PlaybackSource):
    """
    Playback source driven by explicit calls.

    Usage:
        playback = ManualPlayback(natural_size=(1920, 1080))
        annotator = VideoAnnotator(playback, manifest, canvas, ["detection"])
        playback.seek(1.0)      # renders at 1000 ms
    """

    def __init__(
        self,
        natural_size: Tuple[int, int] = (0, 0),
        display_size: Optional[Tuple[int, int]] = None
    ):
        super().__init__()
        self._natural_size = (int(natural_size[0]), int(natural_size[1]))
        if display_size is not None:
            self._display_size = (int(display_size[0]), int(display_size[1]))

    def seek(self, seconds: float):
        """Move to a time (seconds) and notify position listeners."""
        self._current_time = float(seconds)
        self._notify_position()

    def seek_ms(self, milliseconds: float):
        self.seek(milliseconds / 1000.0)

    def set_frame(self, frame: Optional[np.ndarray], seconds: Optional[float] = None):
        """Provide the frame for the current (or given) time."""
        self._frame = frame
        if seconds is not None:
            self.seek(seconds)

    def set_natural_size(self, width: int, height: int):
        self._natural_size = (int(width), int(height))
        self._notify_geometry()

    def set_display_size(self, width: int, height: int):
        self._display_size = (int(width), int(height))
        self._notify_geometry()


class VideoFilePlayback(PlaybackSource):
    """
    Synchronous OpenCV video file reader.

    Each step() decodes one frame, takes its timestamp from the container
    and notifies position listeners. There is no capture thread; the host
    loop decides the pace (see wait_time_ms()).

    Usage:
        with VideoFilePlayback("drive.mp4") as playback:
            while playback.step() is not None:
                ...
    """

    def __init__(self, filepath: str, loop: bool = False):
        super().__init__()
        self.filepath = filepath
        self.loop = loop

        self._cap: Optional[cv2.VideoCapture] = None
        self._fps = 0.0
        self._total_frames = 0
        self._frame_index = 0
        self._last_step = 0.0

    def open(self) -> bool:
        """Open the file and announce its geometry."""
        self._cap = cv2.VideoCapture(self.filepath)
        if not self._cap.isOpened():
            self.logger.error(f"Failed to open video source: {self.filepath}")
            self._cap = None
            return False

        self._fps = self._cap.get(cv2.CAP_PROP_FPS) or 0.0
        self._total_frames = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._natural_size = (width, height)
        self._frame_index = 0

        self.logger.info(
            f"Opened {self.filepath}: {width}x{height} @ {self._fps:.1f} FPS, "
            f"{self._total_frames} frames"
        )
        self._notify_geometry()
        return True

    def _read(self) -> Optional[np.ndarray]:
        ret, frame = self._cap.read()
        if ret:
            return frame
        if self.loop and self._total_frames > 0:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            self._frame_index = 0
            ret, frame = self._cap.read()
            if ret:
                return frame
        return None

    def step(self) -> Optional[np.ndarray]:
        """
        Decode the next frame and notify position listeners.

        Returns:
            The BGR frame, or None at the end of the file
        """
        if self._cap is None:
            return None
        frame = self._read()
        if frame is None:
            self.logger.info("End of video")
            return None

        self._frame = frame
        self._frame_index += 1
        position_ms = self._cap.get(cv2.CAP_PROP_POS_MSEC)
        if position_ms <= 0 and self._fps > 0:
            position_ms = (self._frame_index - 1) / self._fps * 1000.0
        self._current_time = position_ms / 1000.0
        self._last_step = time.perf_counter()
        self._notify_position()
        return frame

    def seek(self, seconds: float):
        """Jump to a time; the frame arrives with the next step()."""
        if self._cap is None:
            return
        self._cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, seconds) * 1000.0)
        if self._fps > 0:
            self._frame_index = int(max(0.0, seconds) * self._fps)

    def set_display_size(self, width: int, height: int):
        self._display_size = (int(width), int(height))
        self._notify_geometry()

    def wait_time_ms(self) -> int:
        """Milliseconds left until the next frame is due at native speed."""
        if self._fps <= 0:
            return 1
        elapsed_ms = (time.perf_counter() - self._last_step) * 1000.0
        return max(1, int(1000.0 / self._fps - elapsed_ms))

    def close(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            self.logger.info(f"Closed {self.filepath}")

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    @property
    def fps(self) -> float:
        return self._fps

    @property
    def total_frames(self) -> int:
        return self._total_frames

    @property
    def duration(self) -> float:
        return self._total_frames / self._fps if self._fps > 0 else 0.0

    def __enter__(self):
        if not self.open():
            raise IOError(f"Cannot open video: {self.filepath}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
