# medscan/api/routes.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Callable, Dict

from fastapi import APIRouter, Depends, HTTPException, Response

from medscan.capture.camera import decode_image_payload, open_frame_source
from medscan.config import get_settings
from medscan.errors import MedscanError
from medscan.intake.controller import RENDER_FAILED_MESSAGE, SessionController
from medscan.llm import OpenAIVisionClient
from medscan.services import MediaStore, PatientRecordStore, WhatsAppClient
from .schemas import (
    CameraFailureRequest,
    CaptureRequest,
    CaptureResponse,
    CreateSessionResponse,
    DeliveryResponse,
    FeedbackEventSchema,
    FeedbackResponse,
    ImageRequest,
    IntakeCheckResponse,
    IntakeRequest,
    PatientReportResponse,
    SavedReportResponse,
    SessionView,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# One controller per operator session; lost on restart like a page reload.
_sessions: Dict[str, SessionController] = {}


@lru_cache(maxsize=1)
def get_record_store() -> PatientRecordStore:
    return PatientRecordStore.from_settings(get_settings())


@lru_cache(maxsize=1)
def _adapters():
    settings = get_settings()
    return (
        MediaStore.from_settings(settings),
        OpenAIVisionClient(),
        WhatsAppClient.from_settings(settings),
    )


def get_controller_factory() -> Callable[[], SessionController]:
    settings = get_settings()
    media_store, vision_client, messenger = _adapters()

    def build() -> SessionController:
        return SessionController(
            record_store=get_record_store(),
            media_store=media_store,
            vision_client=vision_client,
            messenger=messenger,
            frame_source_factory=lambda: open_frame_source(settings),
            settings=settings,
        )

    return build


def _get_session(session_id: str) -> SessionController:
    controller = _sessions.get(session_id)
    if controller is None:
        raise HTTPException(
            status_code=404,
            detail="Session not found. Start a new session.",
        )
    return controller


def _decode(payload: str) -> bytes:
    try:
        return decode_image_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/sessions", response_model=CreateSessionResponse)
def create_session(
    factory: Callable[[], SessionController] = Depends(get_controller_factory),
) -> CreateSessionResponse:
    controller = factory()
    _sessions[controller.session_id] = controller
    return CreateSessionResponse(session_id=controller.session_id, stage=controller.stage.value)


@router.get("/sessions/{session_id}", response_model=SessionView)
def get_session(session_id: str) -> SessionView:
    return SessionView.from_controller(_get_session(session_id))


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str) -> Response:
    controller = _sessions.pop(session_id, None)
    if controller is not None:
        await controller.close()
    return Response(status_code=204)


@router.post("/sessions/{session_id}/intake/check", response_model=IntakeCheckResponse)
def check_intake(session_id: str, payload: IntakeRequest) -> IntakeCheckResponse:
    errors = _get_session(session_id).check_intake(payload.model_dump())
    return IntakeCheckResponse(valid=not errors, errors=errors)


@router.post("/sessions/{session_id}/intake", response_model=SessionView)
async def submit_intake(session_id: str, payload: IntakeRequest) -> SessionView:
    controller = _get_session(session_id)
    await controller.submit_intake(payload.model_dump())
    return SessionView.from_controller(controller)


@router.post("/sessions/{session_id}/preview", status_code=204)
async def push_preview(session_id: str, payload: ImageRequest) -> Response:
    controller = _get_session(session_id)
    image = _decode(payload.image)
    try:
        await controller.push_preview(image)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return Response(status_code=204)


@router.post("/sessions/{session_id}/camera/failure", response_model=SessionView)
async def camera_failure(session_id: str, payload: CameraFailureRequest) -> SessionView:
    controller = _get_session(session_id)
    await controller.report_camera_failure(payload.reason)
    return SessionView.from_controller(controller)


@router.post("/sessions/{session_id}/camera/retry", response_model=SessionView)
async def retry_camera(session_id: str) -> SessionView:
    controller = _get_session(session_id)
    await controller.retry_camera()
    return SessionView.from_controller(controller)


@router.post("/sessions/{session_id}/frames", response_model=CaptureResponse)
async def capture_frame(session_id: str, payload: CaptureRequest) -> CaptureResponse:
    controller = _get_session(session_id)
    image = _decode(payload.image) if payload.image else None
    try:
        count = await controller.capture(image)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return CaptureResponse(frames_captured=count, can_submit=controller.can_submit)


@router.get("/sessions/{session_id}/feedback", response_model=FeedbackResponse)
def get_feedback(session_id: str, after: int = 0) -> FeedbackResponse:
    controller = _get_session(session_id)
    feedback = controller.feedback
    return FeedbackResponse(
        events=[
            FeedbackEventSchema(sequence=e.sequence, phrase=e.phrase)
            for e in controller.feedback_events(after)
        ],
        latest_phrase=feedback.latest_phrase if feedback else None,
    )


@router.post("/sessions/{session_id}/analysis", response_model=SessionView)
async def submit_for_analysis(session_id: str) -> SessionView:
    controller = _get_session(session_id)
    await controller.submit_for_analysis()
    return SessionView.from_controller(controller)


@router.get("/sessions/{session_id}/report.pdf")
async def download_report(session_id: str) -> Response:
    controller = _get_session(session_id)
    try:
        filename, pdf = await controller.render_report()
    except MedscanError:
        raise
    except Exception as exc:
        logger.exception("Session %s: report rendering failed", session_id)
        raise HTTPException(status_code=500, detail=RENDER_FAILED_MESSAGE) from exc

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/sessions/{session_id}/report/save", response_model=SavedReportResponse)
async def save_report(session_id: str) -> SavedReportResponse:
    controller = _get_session(session_id)
    try:
        path = await controller.save_report()
    except MedscanError:
        raise
    except Exception as exc:
        logger.exception("Session %s: saving report failed", session_id)
        raise HTTPException(status_code=500, detail=RENDER_FAILED_MESSAGE) from exc
    return SavedReportResponse(path=str(path))


@router.post("/sessions/{session_id}/report/send", response_model=DeliveryResponse)
async def send_report(session_id: str) -> DeliveryResponse:
    outcome = await _get_session(session_id).send_report()
    return DeliveryResponse.from_outcome(outcome)


@router.post("/sessions/{session_id}/retry", response_model=SessionView)
async def retry(session_id: str) -> SessionView:
    controller = _get_session(session_id)
    await controller.retry()
    return SessionView.from_controller(controller)


@router.post("/sessions/{session_id}/reset", response_model=SessionView)
async def reset(session_id: str) -> SessionView:
    controller = _get_session(session_id)
    await controller.reset()
    return SessionView.from_controller(controller)


@router.get("/patients/{patient_id}/report", response_model=PatientReportResponse)
async def get_patient_report(
    patient_id: str,
    store: PatientRecordStore = Depends(get_record_store),
) -> PatientReportResponse:
    report = await store.read_report(patient_id)
    if report is None:
        raise HTTPException(
            status_code=404,
            detail="No analysis report found for this patient.",
        )
    return PatientReportResponse(patient_id=patient_id, report=report)
