# medscan/capture/camera.py
from __future__ import annotations

import base64
import binascii
import io
import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from medscan.config import Settings
from medscan.errors import ConfigurationError


class FrameSource(ABC):
    """
    A camera feed the capture stage can sample.

    Implementations must be safe to read from several worker threads at
    once: a capture and a live-feedback sample can read concurrently.
    """

    @abstractmethod
    def open(self) -> None:
        """Acquire the device. Raises CameraError on failure."""
        ...

    @abstractmethod
    def read_frame(self) -> Optional[bytes]:
        """
        Return the current frame as JPEG bytes, or None while the feed is
        not delivering frames yet.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class BrowserFrameSource(FrameSource):
    """
    Feed driven by the kiosk page: the browser owns getUserMedia and
    pushes its current preview frame to us.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[bytes] = None
        self._open = False

    def open(self) -> None:
        with self._lock:
            self._open = True
            self._latest = None

    def push(self, data: bytes) -> None:
        width, height = image_size(data)
        if width == 0 or height == 0:
            raise ValueError("Frame has no pixels.")
        jpeg = to_jpeg(data)
        with self._lock:
            if self._open:
                self._latest = jpeg

    def read_frame(self) -> Optional[bytes]:
        with self._lock:
            if not self._open:
                return None
            return self._latest

    def close(self) -> None:
        with self._lock:
            self._open = False
            self._latest = None


def open_frame_source(settings: Settings) -> FrameSource:
    """Build (but do not open) the frame source the settings ask for."""
    backend = settings.camera_backend.lower()
    if backend == "browser":
        return BrowserFrameSource()
    if backend == "opencv":
        from medscan.capture.opencv_camera import OpenCVCamera

        return OpenCVCamera(index=settings.camera_index)
    raise ConfigurationError(f"Unknown CAMERA_BACKEND {settings.camera_backend!r}")


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------


def decode_image_payload(payload: str) -> bytes:
    """
    Accept either a data URL ("data:image/jpeg;base64,...") as produced by
    canvas.toDataURL, or bare base64.
    """
    text = payload.strip()
    if text.startswith("data:"):
        _, _, text = text.partition(",")
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Image is not valid base64.") from exc


def image_size(data: bytes) -> Tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Image could not be decoded.") from exc


def to_jpeg(data: bytes, quality: int = 95) -> bytes:
    """Re-encode as JPEG unless it already is one."""
    with Image.open(io.BytesIO(data)) as img:
        if img.format == "JPEG":
            return data
        buf = io.BytesIO()
        img.convert("RGB").save(buf, format="JPEG", quality=quality)
        return buf.getvalue()


def downscale_jpeg(data: bytes, max_side: int, quality: int = 70) -> bytes:
    """Shrink so the longest side is at most `max_side`, for advisory samples."""
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGB")
        img.thumbnail((max_side, max_side))
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality)
        return buf.getvalue()
