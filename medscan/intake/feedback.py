# medscan/intake/feedback.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from medscan.capture.camera import FrameSource, downscale_jpeg
from medscan.intake.schema import LiveFeedbackContext, PatientIntake

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackEvent:
    sequence: int
    phrase: str


class LiveFeedbackLoop:
    """
    Advisory commentary while the operator is capturing.

    Every `interval` seconds a reduced-resolution copy of the current
    frame goes to the vision client. A tick is skipped while the previous
    sample is still in flight. Failures are logged and dropped, and a
    phrase already announced in this session is not announced again.

    Bound to the capturing stage: `start()` on entry, `stop()` on exit.
    """

    def __init__(
        self,
        vision_client,
        frame_source: FrameSource,
        intake: PatientIntake,
        *,
        interval: float = 3.5,
        max_side: int = 320,
        on_phrase: Optional[Callable[[FeedbackEvent], None]] = None,
    ):
        self.vision_client = vision_client
        self.frame_source = frame_source
        self.intake = intake
        self.interval = interval
        self.max_side = max_side
        self.on_phrase = on_phrase

        self.events: List[FeedbackEvent] = []
        self.latest_phrase: Optional[str] = None

        self._spoken: List[str] = []
        self._in_flight = False
        self._ticker: Optional[asyncio.Task] = None
        self._sample_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self) -> None:
        if self.running:
            return
        self._ticker = asyncio.create_task(self._run(), name="live-feedback")

    async def stop(self) -> None:
        tasks = [t for t in (self._ticker, self._sample_task) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._ticker = None
        self._sample_task = None
        self._in_flight = False

    async def sample_once(self) -> Optional[str]:
        """
        Take one advisory sample now. Returns the phrase if a new one was
        announced, None otherwise (including when a sample is in flight).
        """
        if self._in_flight:
            return None
        self._in_flight = True
        try:
            return await self._sample()
        finally:
            self._in_flight = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._tick()

    def _tick(self) -> None:
        if self._in_flight:
            return
        self._sample_task = asyncio.create_task(self.sample_once())

    async def _sample(self) -> Optional[str]:
        try:
            frame = await asyncio.to_thread(self.frame_source.read_frame)
            if frame is None:
                return None
            small = await asyncio.to_thread(downscale_jpeg, frame, self.max_side)
            context = LiveFeedbackContext(
                name=self.intake.full_name,
                service_type=self.intake.service_type,
                previously_used_phrases=list(self._spoken),
            )
            phrase = await self.vision_client.analyze_live_frame(small, context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # advisory only
            logger.debug("Live feedback sample failed: %s", exc)
            return None

        return self._announce(phrase)

    def _announce(self, phrase: Optional[str]) -> Optional[str]:
        phrase = (phrase or "").strip()
        if not phrase:
            return None
        self.latest_phrase = phrase
        if phrase in self._spoken:
            return None

        self._spoken.append(phrase)
        event = FeedbackEvent(sequence=len(self.events) + 1, phrase=phrase)
        self.events.append(event)
        if self.on_phrase is not None:
            try:
                self.on_phrase(event)
            except Exception as exc:
                logger.debug("Live feedback listener failed: %s", exc)
        return phrase
