# medscan/capture/__init__.py
from .camera import (
    BrowserFrameSource,
    FrameSource,
    decode_image_payload,
    downscale_jpeg,
    open_frame_source,
)

__all__ = [
    "BrowserFrameSource",
    "FrameSource",
    "decode_image_payload",
    "downscale_jpeg",
    "open_frame_source",
]
