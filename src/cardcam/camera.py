"""Camera and video-file frame source.

Frames are delivered as RGB ``uint8`` arrays; OpenCV's native BGR order
never leaves this module.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional, Tuple, Union

import cv2
import numpy as np

from .errors import CameraUnavailableError, FrameNotReadyError

log = logging.getLogger(__name__)


class CameraSource:
    """Wraps ``cv2.VideoCapture`` for a device index or a video file.

    Args:
        source: Device index (e.g. ``0``) or path to a video file.
        config: Overrides for :attr:`DEFAULT_CONFIG` (device sources only).
    """

    DEFAULT_CONFIG = {
        "width": 1280,
        "height": 720,
        "fps": 30,
        "buffer_size": 1,  # newest frame only
    }

    def __init__(self, source: Union[int, str] = 0, config: Optional[dict] = None):
        self.source = source
        self.config = {**self.DEFAULT_CONFIG, **(config or {})}
        self.capture: Optional[cv2.VideoCapture] = None

        self.actual_width = 0
        self.actual_height = 0
        self.actual_fps = 0.0

    @property
    def is_device(self) -> bool:
        return isinstance(self.source, int)

    def open(self) -> "CameraSource":
        """Open and configure the source.

        Raises:
            CameraUnavailableError: If the device or file cannot be opened.
        """
        if self.is_opened():
            return self

        log.info(f"Opening video source {self.source!r}")
        try:
            capture = cv2.VideoCapture(self.source)
        except Exception as e:
            raise CameraUnavailableError(self.source, str(e)) from e

        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableError(self.source, "failed to open video source")

        if self.is_device:
            cfg = self.config
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, cfg["width"])
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg["height"])
            capture.set(cv2.CAP_PROP_FPS, cfg["fps"])
            capture.set(cv2.CAP_PROP_BUFFERSIZE, cfg["buffer_size"])

        self.capture = capture
        self.actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.actual_fps = capture.get(cv2.CAP_PROP_FPS)
        log.info(f"Video source ready: {self.actual_width}x{self.actual_height} @ {self.actual_fps:.1f}fps")
        return self

    def read(self) -> Optional[np.ndarray]:
        """Next frame as RGB, or ``None`` when no frame is available.

        Raises:
            FrameNotReadyError: If the source has not been opened.
        """
        if self.capture is None:
            raise FrameNotReadyError()

        ok, frame = self.capture.read()
        if not ok or frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def frames(self) -> Iterator[np.ndarray]:
        """Yield RGB frames until the source runs dry."""
        while self.capture is not None:
            frame = self.read()
            if frame is None:
                return
            yield frame

    def get_resolution(self) -> Tuple[int, int]:
        return (self.actual_width, self.actual_height)

    def is_opened(self) -> bool:
        return self.capture is not None and self.capture.isOpened()

    def release(self):
        """Release the underlying capture; safe to call repeatedly."""
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            log.info("Video source released")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
