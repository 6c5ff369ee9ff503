# medscan/logging_config.py
from __future__ import annotations

import atexit
import logging
import queue
from logging.handlers import QueueHandler, QueueListener
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_listener: Optional[QueueListener] = None


def configure_logging(level: str = "INFO") -> None:
    """
    Route all records through a queue so request handlers never block on
    log I/O. A background listener thread writes them to stderr.

    Safe to call more than once; only the level changes on later calls.
    """
    global _listener

    root = logging.getLogger()
    root.setLevel(level.upper())

    if _listener is not None:
        return

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(-1)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root.addHandler(QueueHandler(log_queue))
    _listener = QueueListener(log_queue, stream_handler, respect_handler_level=True)
    _listener.start()
    atexit.register(_listener.stop)


def mask_phone(phone_number: str | None) -> str:
    if not phone_number:
        return "<none>"
    return "*" * max(len(phone_number) - 4, 0) + phone_number[-4:]
