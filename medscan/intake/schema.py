# medscan/intake/schema.py
from __future__ import annotations

import math
import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from medscan.errors import IntakeValidationError


PHONE_DIGITS = 10


class ServiceType(str, Enum):
    FACIAL = "facial"
    DENTAL = "dental"

    @property
    def label(self) -> str:
        return "Facial Analysis" if self is ServiceType.FACIAL else "Dental Analysis"

    @property
    def score_key(self) -> str:
        """Key the vision model uses for the score in this profile."""
        return "skinClarityScore" if self is ServiceType.FACIAL else "oralHygieneScore"

    @classmethod
    def parse(cls, value: Any) -> "ServiceType":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError("Please select a service.")
        key = value.strip().lower()
        key = SERVICE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError("Please select a service.") from None


# Brand names the kiosk front-end uses for the two services.
SERVICE_ALIASES: Dict[str, str] = {
    "medzeal": "facial",
    "medora": "dental",
}


def normalize_phone(value: str) -> str:
    """Strip every non-digit character."""
    return re.sub(r"\D", "", value or "")


class PatientIntake(BaseModel):
    """
    Identity and service selection captured on the intake form.

    Frozen once validated; this is what gets written to the patient
    record store.
    """

    full_name: str = Field(validation_alias=AliasChoices("full_name", "fullName"))
    phone_number: str = Field(validation_alias=AliasChoices("phone_number", "phoneNumber"))
    service_type: ServiceType = Field(validation_alias=AliasChoices("service_type", "serviceType"))

    model_config = ConfigDict(frozen=True)

    @field_validator("full_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Full name is required.")
        return value.strip()

    @field_validator("phone_number", mode="before")
    @classmethod
    def _digits_only(cls, value: Any) -> str:
        digits = normalize_phone(value if isinstance(value, str) else str(value or ""))
        if len(digits) != PHONE_DIGITS:
            raise ValueError("Mobile number must be exactly 10 digits.")
        return digits

    @field_validator("service_type", mode="before")
    @classmethod
    def _service(cls, value: Any) -> ServiceType:
        return ServiceType.parse(value)


# Message shown for any error on a given field, whatever pydantic reported.
_FIELD_MESSAGES = {
    "full_name": "Full name is required.",
    "fullName": "Full name is required.",
    "phone_number": "Mobile number must be exactly 10 digits.",
    "phoneNumber": "Mobile number must be exactly 10 digits.",
    "service_type": "Please select a service.",
    "serviceType": "Please select a service.",
}


def check_intake(fields: Mapping[str, Any]) -> List[str]:
    """Return operator-readable problems with the form; empty when valid."""
    try:
        PatientIntake.model_validate(dict(fields))
    except ValidationError as exc:
        messages: List[str] = []
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else ""
            msg = _FIELD_MESSAGES.get(field, "Please complete all intake fields.")
            if msg not in messages:
                messages.append(msg)
        return messages
    return []


def validate_intake(fields: Mapping[str, Any]) -> PatientIntake:
    errors = check_intake(fields)
    if errors:
        raise IntakeValidationError(errors)
    return PatientIntake.model_validate(dict(fields))


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


class DetectedProblem(BaseModel):
    problem: str = Field(min_length=1)
    description: str
    suggested_treatment: str = Field(
        validation_alias=AliasChoices("suggested_treatment", "suggestedTreatment")
    )

    model_config = ConfigDict(frozen=True)

    def to_record(self) -> Dict[str, str]:
        return {
            "problem": self.problem,
            "description": self.description,
            "suggestedTreatment": self.suggested_treatment,
        }


def _coerce_score(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("score must be a number")
    if isinstance(value, str):
        value = float(value)
    if isinstance(value, float):
        # json.loads accepts Infinity and NaN.
        if not math.isfinite(value):
            raise ValueError("score must be a finite number")
        return round(value)
    return value


Score = Annotated[int, BeforeValidator(_coerce_score), Field(ge=0, le=100)]


class _Assessment(BaseModel):
    """Fields shared by both profiles; subclasses supply `kind` and `score`."""

    overall_assessment: str = Field(min_length=1)
    key_problem_points: List[str]
    detected_problems: List[DetectedProblem]

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def service_type(self) -> ServiceType:
        return ServiceType(self.kind)  # type: ignore[attr-defined]

    @property
    def score_label(self) -> str:
        return f"{self.score}/100"

    def to_record(self) -> Dict[str, Any]:
        """camelCase payload stored in the patient record store."""
        return {
            "kind": self.service_type.value,
            "score": self.score,
            self.service_type.score_key: self.score,
            "overallAssessment": self.overall_assessment,
            "keyProblemPoints": list(self.key_problem_points),
            "detectedProblems": [p.to_record() for p in self.detected_problems],
        }


class FacialAssessment(_Assessment):
    kind: Literal["facial"] = "facial"
    clarity_score: Score

    @property
    def score(self) -> int:
        return self.clarity_score


class DentalAssessment(_Assessment):
    kind: Literal["dental"] = "dental"
    hygiene_score: Score

    @property
    def score(self) -> int:
        return self.hygiene_score


AnalysisResult = Annotated[
    Union[FacialAssessment, DentalAssessment],
    Field(discriminator="kind"),
]

_analysis_adapter: TypeAdapter = TypeAdapter(AnalysisResult)


def parse_assessment(payload: Mapping[str, Any], service_type: ServiceType) -> Union[FacialAssessment, DentalAssessment]:
    """
    Normalise a raw vision-model payload into the tagged result.

    The profile-specific score key wins; a generic "score" is accepted
    as a fallback. Anything missing raises pydantic's ValidationError.
    """
    raw_score = payload.get(service_type.score_key)
    if raw_score is None:
        raw_score = payload.get("score")

    score_field = "clarity_score" if service_type is ServiceType.FACIAL else "hygiene_score"
    data = {
        "kind": service_type.value,
        score_field: raw_score,
        "overall_assessment": payload.get("overallAssessment"),
        "key_problem_points": payload.get("keyProblemPoints"),
        "detected_problems": payload.get("detectedProblems"),
    }
    return _analysis_adapter.validate_python(data)


def assessment_from_record(record: Mapping[str, Any]) -> Union[FacialAssessment, DentalAssessment]:
    """Rebuild a result from what `to_record` stored."""
    service_type = ServiceType.parse(record.get("kind") or record.get("serviceType"))
    return parse_assessment(record, service_type)


class LiveFeedbackContext(BaseModel):
    name: str
    service_type: ServiceType
    previously_used_phrases: List[str] = Field(default_factory=list)
