# medscan/intake/__init__.py
from .schema import (
    DentalAssessment,
    DetectedProblem,
    FacialAssessment,
    PatientIntake,
    ServiceType,
)
from .stages import SessionStage

__all__ = [
    "DentalAssessment",
    "DetectedProblem",
    "FacialAssessment",
    "PatientIntake",
    "ServiceType",
    "SessionStage",
]
