# medscan/intake/state.py
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, List, Optional, Union

from medscan.intake.stages import SessionStage
from medscan.intake.schema import DentalAssessment, FacialAssessment, PatientIntake


@dataclass(frozen=True)
class CapturedFrame:
    data: bytes
    mime_type: str = "image/jpeg"

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class CaptureSession:
    """
    Frames taken for one patient, in capture order.

    `patient_id` cannot be reassigned; frames are only ever appended.
    """

    REQUIRED_FRAMES: ClassVar[int] = 3

    patient_id: str
    frames: List[CapturedFrame] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return len(self.frames) >= self.REQUIRED_FRAMES

    def add(self, frame: CapturedFrame) -> bool:
        if self.is_complete:
            return False
        self.frames.append(frame)
        return True


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    DEVICE = "device"
    INTEGRATION = "integration"


@dataclass(frozen=True)
class SessionError:
    kind: ErrorKind
    message: str
    retryable: bool
    service: Optional[str] = None


@dataclass
class SessionState:
    """
    Everything one operator interaction holds in memory.

    Only the patient record store keeps anything past the lifetime of
    this object.
    """

    session_id: str
    stage: SessionStage = SessionStage.INTAKE
    intake: Optional[PatientIntake] = None
    patient_id: Optional[str] = None
    capture: Optional[CaptureSession] = None
    result: Optional[Union[FacialAssessment, DentalAssessment]] = None
    image_urls: List[str] = field(default_factory=list)
    analyzed_at: Optional[datetime] = None

    # Set when the stage is ERROR, or when an intake write failed and the
    # form can be resubmitted.
    error: Optional[SessionError] = None

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
