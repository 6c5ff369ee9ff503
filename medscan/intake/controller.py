# medscan/intake/controller.py
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Tuple

from medscan.capture.camera import BrowserFrameSource, FrameSource
from medscan.config import Settings, get_settings
from medscan.errors import (
    AnalysisError,
    CameraError,
    CameraNotReadyError,
    ConfigurationError,
    InvalidTransitionError,
    MedscanError,
    RecordStoreError,
)
from medscan.intake.feedback import FeedbackEvent, LiveFeedbackLoop
from medscan.intake.schema import check_intake, validate_intake
from medscan.intake.stages import SessionStage
from medscan.intake.state import (
    CapturedFrame,
    CaptureSession,
    ErrorKind,
    SessionError,
    SessionState,
)
from medscan.reports.pdf import render_report_pdf, report_filename, save_report
from medscan.services.messaging import build_caption
from medscan.services.records import now_millis

logger = logging.getLogger(__name__)

RENDER_FAILED_MESSAGE = "Could not generate the report. Please try again."


@dataclass(frozen=True)
class DeliveryOutcome:
    sent: bool
    message: str
    recipient: Optional[str] = None
    document_url: Optional[str] = None
    message_id: Optional[str] = None


class SessionController:
    """
    SessionController drives one operator interaction through

      intake -> capturing -> analyzing -> reporting

    with an error stage reachable from capturing and analyzing.

    It owns the in-memory session (intake, frames, result), the camera
    handle and the live-feedback task while capturing, and sequences
    calls to the record store, media store, vision client and messenger.
    Operator actions are serialised; an action that does not fit the
    current stage raises InvalidTransitionError.
    """

    def __init__(
        self,
        *,
        record_store,
        media_store,
        vision_client,
        messenger,
        frame_source_factory: Callable[[], FrameSource],
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None,
        live_feedback: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        self.record_store = record_store
        self.media_store = media_store
        self.vision_client = vision_client
        self.messenger = messenger
        self.frame_source_factory = frame_source_factory
        self.live_feedback_enabled = (
            self.settings.live_feedback_enabled if live_feedback is None else live_feedback
        )

        self.state = SessionState(session_id=session_id or str(uuid.uuid4()))
        self._frame_source: Optional[FrameSource] = None
        self._feedback: Optional[LiveFeedbackLoop] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def stage(self) -> SessionStage:
        return self.state.stage

    @property
    def frame_count(self) -> int:
        return len(self.state.capture.frames) if self.state.capture else 0

    @property
    def can_submit(self) -> bool:
        return (
            self.state.stage == SessionStage.CAPTURING
            and self.state.capture is not None
            and self.state.capture.is_complete
        )

    @property
    def feedback(self) -> Optional[LiveFeedbackLoop]:
        return self._feedback

    def feedback_events(self, after: int = 0) -> List[FeedbackEvent]:
        if self._feedback is None:
            return []
        return [e for e in self._feedback.events if e.sequence > after]

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def check_intake(self, fields: Mapping[str, Any]) -> List[str]:
        return check_intake(fields)

    async def submit_intake(self, fields: Mapping[str, Any]) -> SessionState:
        async with self._lock:
            self._require(SessionStage.INTAKE)
            intake = validate_intake(fields)

            self.state.intake = intake
            self.state.error = None
            try:
                patient_id = await self.record_store.create(intake, now_millis())
            except MedscanError as exc:
                # Stay on the form; the operator can resubmit.
                logger.warning("Session %s: patient record write failed: %s", self.session_id, exc)
                self.state.error = SessionError(
                    kind=ErrorKind.INTEGRATION,
                    message=exc.user_message,
                    retryable=True,
                    service=getattr(exc, "service", None),
                )
                return self.state

            self.state.patient_id = patient_id
            await self._enter_capturing(CaptureSession(patient_id=patient_id))
            return self.state

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def push_preview(self, image: bytes) -> None:
        """Browser backend: store the page's current preview frame."""
        self._require(SessionStage.CAPTURING)
        source = self._frame_source
        if not isinstance(source, BrowserFrameSource):
            raise InvalidTransitionError("This kiosk camera does not accept pushed frames.")
        await asyncio.to_thread(source.push, image)

    async def report_camera_failure(self, reason: str) -> SessionState:
        async with self._lock:
            self._require(SessionStage.CAPTURING)
            await self._teardown_capture()
            self._fail(ErrorKind.DEVICE, CameraError(reason or "camera unavailable"), retryable=True)
            return self.state

    async def retry_camera(self) -> SessionState:
        async with self._lock:
            error = self.state.error
            if self.state.stage != SessionStage.ERROR or error is None or error.kind != ErrorKind.DEVICE:
                raise InvalidTransitionError("Camera retry is only possible after a camera error.")
            # Intake, patient id and frames already taken are kept.
            await self._enter_capturing(self.state.capture)
            return self.state

    async def capture(self, image: Optional[bytes] = None) -> int:
        """
        Take one still. Returns the number of frames held afterwards.

        Once three frames exist further triggers change nothing. Raises
        CameraNotReadyError while the feed has no frame to give.
        """
        async with self._lock:
            self._require(SessionStage.CAPTURING)
            capture = self.state.capture

            if capture.is_complete:
                logger.info("Session %s: capture ignored, already have %d frames",
                            self.session_id, len(capture.frames))
                return len(capture.frames)

            if image is not None:
                await self.push_preview(image)

            try:
                data = await asyncio.to_thread(self._frame_source.read_frame)
            except CameraError as exc:
                await self._teardown_capture()
                self._fail(ErrorKind.DEVICE, exc, retryable=True)
                return len(capture.frames)

            if data is None:
                raise CameraNotReadyError("Camera feed is not delivering frames yet")

            capture.add(CapturedFrame(data=data))
            logger.info("Session %s: captured frame %d/%d", self.session_id,
                        len(capture.frames), CaptureSession.REQUIRED_FRAMES)
            return len(capture.frames)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def submit_for_analysis(self) -> SessionState:
        async with self._lock:
            self._require(SessionStage.CAPTURING)
            if not self.can_submit:
                raise InvalidTransitionError(
                    f"Exactly {CaptureSession.REQUIRED_FRAMES} photos are required before analysis."
                )

            await self._teardown_capture()
            self._set_stage(SessionStage.ANALYZING)

            intake = self.state.intake
            patient_id = self.state.patient_id
            frames = [f.data for f in self.state.capture.frames]

            if intake is None or intake.service_type is None:
                self._fail(ErrorKind.INTEGRATION, AnalysisError("Service type is missing"), retryable=True)
                return self.state

            try:
                result = await self.vision_client.analyze(frames, intake.service_type)
            except MedscanError as exc:
                self._fail_from(exc)
                return self.state
            except Exception as exc:
                logger.exception("Session %s: analysis raised unexpectedly", self.session_id)
                self._fail_from(AnalysisError(f"Unexpected analysis failure: {exc}"))
                return self.state

            # Persist only after a successful analysis.
            try:
                image_urls = list(await asyncio.gather(*(
                    self.media_store.upload(patient_id, index, data)
                    for index, data in enumerate(frames)
                )))
                analyzed_at = datetime.now(timezone.utc)
                record = {
                    **result.to_record(),
                    "imageUrls": image_urls,
                    "serviceType": intake.service_type.value,
                    "timestamp": analyzed_at.isoformat(),
                }
                await self.record_store.write_report(patient_id, record)
            except MedscanError as exc:
                self._fail_from(exc)
                return self.state
            except Exception as exc:
                logger.exception("Session %s: persisting the analysis raised unexpectedly", self.session_id)
                self._fail_from(RecordStoreError(f"Unexpected persistence failure: {exc}"))
                return self.state

            self.state.result = result
            self.state.image_urls = image_urls
            self.state.analyzed_at = analyzed_at
            self._set_stage(SessionStage.REPORTING)
            return self.state

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    async def render_report(self) -> Tuple[str, bytes]:
        """
        Returns (filename, pdf bytes). Rendering errors propagate.
        """
        self._require(SessionStage.REPORTING)
        intake = self.state.intake
        day = (self.state.analyzed_at or datetime.now(timezone.utc)).date()
        frames = [f.data for f in self.state.capture.frames] if self.state.capture else []

        pdf = await asyncio.to_thread(render_report_pdf, intake, self.state.result, frames, day)
        return report_filename(intake.full_name, intake.service_type, day), pdf

    async def save_report(self, directory: Optional[str] = None) -> Path:
        filename, pdf = await self.render_report()
        return await asyncio.to_thread(
            save_report, pdf, filename, directory or self.settings.report_output_dir
        )

    async def send_report(self) -> DeliveryOutcome:
        """
        Render, upload and deliver the PDF. Failures leave the session in
        reporting so the operator can try again.
        """
        async with self._lock:
            self._require(SessionStage.REPORTING)
            intake = self.state.intake
            result = self.state.result

            try:
                filename, pdf = await self.render_report()
            except Exception:
                logger.exception("Session %s: report rendering failed", self.session_id)
                return DeliveryOutcome(sent=False, message=RENDER_FAILED_MESSAGE)

            try:
                url = await self.media_store.upload_pdf(
                    self.state.patient_id, filename, pdf, now_millis()
                )
                receipt = await self.messenger.send_document(
                    intake.phone_number,
                    url,
                    build_caption(intake.full_name, result.score, intake.service_type),
                    filename,
                )
            except MedscanError as exc:
                logger.warning("Session %s: report delivery failed: %s", self.session_id, exc)
                return DeliveryOutcome(sent=False, message=exc.user_message)

            return DeliveryOutcome(
                sent=True,
                message="The PDF report has been successfully sent via WhatsApp.",
                recipient=receipt.recipient,
                document_url=receipt.document_url,
                message_id=receipt.message_id,
            )

    # ------------------------------------------------------------------
    # Leaving the flow
    # ------------------------------------------------------------------

    async def retry(self) -> SessionState:
        """Error -> intake. The whole flow restarts with cleared state."""
        async with self._lock:
            self._require(SessionStage.ERROR)
            await self._clear()
            return self.state

    async def reset(self) -> SessionState:
        """Start a new analysis from any stage."""
        async with self._lock:
            await self._clear()
            return self.state

    async def close(self) -> None:
        await self._teardown_capture()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, stage: SessionStage) -> None:
        if self.state.stage != stage:
            raise InvalidTransitionError(
                f"Action requires stage {stage.value}, session is in {self.state.stage.value}"
            )

    def _set_stage(self, stage: SessionStage) -> None:
        logger.info("Session %s (patient %s): %s -> %s", self.session_id,
                    self.state.patient_id, self.state.stage.value, stage.value)
        self.state.stage = stage

    async def _enter_capturing(self, capture: CaptureSession) -> None:
        self.state.capture = capture
        self.state.error = None
        self._set_stage(SessionStage.CAPTURING)

        try:
            # The analysis credential is checked before any camera use.
            self.vision_client.ensure_configured()
            source = self.frame_source_factory()
            await asyncio.to_thread(source.open)
        except ConfigurationError as exc:
            self._fail(ErrorKind.CONFIGURATION, exc, retryable=False)
            return
        except CameraError as exc:
            self._fail(ErrorKind.DEVICE, exc, retryable=True)
            return

        self._frame_source = source
        if self.live_feedback_enabled:
            self._feedback = LiveFeedbackLoop(
                self.vision_client,
                source,
                self.state.intake,
                interval=self.settings.live_feedback_interval_seconds,
                max_side=self.settings.live_feedback_max_side,
            )
            self._feedback.start()

    async def _teardown_capture(self) -> None:
        if self._feedback is not None:
            await self._feedback.stop()
        source, self._frame_source = self._frame_source, None
        if source is not None:
            await asyncio.to_thread(source.close)

    async def _clear(self) -> None:
        await self._teardown_capture()
        self._feedback = None
        self._set_stage(SessionStage.INTAKE)
        self.state = SessionState(session_id=self.session_id)

    def _fail_from(self, exc: MedscanError) -> None:
        if isinstance(exc, ConfigurationError):
            self._fail(ErrorKind.CONFIGURATION, exc, retryable=False)
        elif isinstance(exc, CameraError):
            self._fail(ErrorKind.DEVICE, exc, retryable=True)
        else:
            self._fail(ErrorKind.INTEGRATION, exc, retryable=True)

    def _fail(self, kind: ErrorKind, exc: MedscanError, *, retryable: bool) -> None:
        logger.warning("Session %s failed in %s (%s): %s", self.session_id,
                       self.state.stage.value, kind.value, exc)
        self.state.error = SessionError(
            kind=kind,
            message=exc.user_message,
            retryable=retryable,
            service=getattr(exc, "service", None),
        )
        self._set_stage(SessionStage.ERROR)
