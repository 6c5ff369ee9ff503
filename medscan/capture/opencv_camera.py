# medscan/capture/opencv_camera.py
from __future__ import annotations

import logging
import threading
from typing import Optional

import cv2

from medscan.capture.camera import FrameSource
from medscan.errors import CameraError

logger = logging.getLogger(__name__)


class OpenCVCamera(FrameSource):
    """
    Camera attached to the kiosk itself, read through OpenCV.
    """

    def __init__(self, index: int = 0, jpeg_quality: int = 95):
        self.index = index
        self.jpeg_quality = jpeg_quality
        self._lock = threading.Lock()
        self._capture: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        with self._lock:
            if self._capture is not None:
                return
            capture = cv2.VideoCapture(self.index)
            if not capture.isOpened():
                capture.release()
                raise CameraError(f"Could not access camera {self.index}")
            self._capture = capture
            logger.info("Opened camera %s", self.index)

    def read_frame(self) -> Optional[bytes]:
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
            if not ok or frame is None or frame.size == 0:
                # Device is open but not streaming yet.
                return None
            ok, buf = cv2.imencode(
                ".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
            )
            if not ok:
                return None
            return buf.tobytes()

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info("Released camera %s", self.index)
