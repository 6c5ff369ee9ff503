# medscan/api/schemas.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from medscan.intake.controller import DeliveryOutcome, SessionController
from medscan.intake.state import CaptureSession


class CreateSessionResponse(BaseModel):
    session_id: str
    stage: str


class IntakeRequest(BaseModel):
    full_name: Optional[str] = Field(None, validation_alias=AliasChoices("full_name", "fullName"))
    phone_number: Optional[str] = Field(None, validation_alias=AliasChoices("phone_number", "phoneNumber"))
    service_type: Optional[str] = Field(None, validation_alias=AliasChoices("service_type", "serviceType"))


class IntakeCheckResponse(BaseModel):
    valid: bool
    errors: List[str]


class ImageRequest(BaseModel):
    # data URL from canvas.toDataURL, or bare base64
    image: str


class CaptureRequest(BaseModel):
    image: Optional[str] = None


class CaptureResponse(BaseModel):
    frames_captured: int
    frames_required: int = CaptureSession.REQUIRED_FRAMES
    can_submit: bool


class CameraFailureRequest(BaseModel):
    reason: str = ""


class ErrorSchema(BaseModel):
    kind: str
    message: str
    retryable: bool


class DetectedProblemSchema(BaseModel):
    problem: str
    description: str
    suggested_treatment: str


class ReportSchema(BaseModel):
    service_type: str
    service_label: str
    score: int
    score_label: str
    overall_assessment: str
    key_problem_points: List[str]
    detected_problems: List[DetectedProblemSchema]
    image_urls: List[str]


class SessionView(BaseModel):
    session_id: str
    stage: str
    patient_id: Optional[str]
    full_name: Optional[str]
    service_type: Optional[str]
    frames_captured: int
    can_submit: bool
    error: Optional[ErrorSchema]
    report: Optional[ReportSchema]
    latest_feedback: Optional[str]

    @classmethod
    def from_controller(cls, controller: SessionController) -> "SessionView":
        state = controller.state
        intake = state.intake

        error = None
        if state.error is not None:
            error = ErrorSchema(
                kind=state.error.kind.value,
                message=state.error.message,
                retryable=state.error.retryable,
            )

        report = None
        if state.result is not None:
            result = state.result
            report = ReportSchema(
                service_type=result.service_type.value,
                service_label=result.service_type.label,
                score=result.score,
                score_label=result.score_label,
                overall_assessment=result.overall_assessment,
                key_problem_points=list(result.key_problem_points),
                detected_problems=[
                    DetectedProblemSchema(
                        problem=p.problem,
                        description=p.description,
                        suggested_treatment=p.suggested_treatment,
                    )
                    for p in result.detected_problems
                ],
                image_urls=list(state.image_urls),
            )

        feedback = controller.feedback
        return cls(
            session_id=state.session_id,
            stage=state.stage.value,
            patient_id=state.patient_id,
            full_name=intake.full_name if intake else None,
            service_type=intake.service_type.value if intake else None,
            frames_captured=controller.frame_count,
            can_submit=controller.can_submit,
            error=error,
            report=report,
            latest_feedback=feedback.latest_phrase if feedback else None,
        )


class FeedbackEventSchema(BaseModel):
    sequence: int
    phrase: str


class FeedbackResponse(BaseModel):
    events: List[FeedbackEventSchema]
    latest_phrase: Optional[str]


class DeliveryResponse(BaseModel):
    sent: bool
    message: str
    recipient: Optional[str] = None
    document_url: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: DeliveryOutcome) -> "DeliveryResponse":
        return cls(
            sent=outcome.sent,
            message=outcome.message,
            recipient=outcome.recipient,
            document_url=outcome.document_url,
        )


class SavedReportResponse(BaseModel):
    path: str


class PatientReportResponse(BaseModel):
    patient_id: str
    report: Dict[str, Any]
