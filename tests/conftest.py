"""
Pytest configuration and shared fixtures for the intake service tests.

Provides:
- In-memory SQLite record store
- Deterministic fake camera and vision client
- Mocked media store and messenger
- A controller builder wired to all of the above
"""

import os

# Keep tests off real credentials and on-disk databases.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["VISION_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""

import io
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from medscan.capture.camera import FrameSource
from medscan.config import Settings
from medscan.db import Base
from medscan.errors import AnalysisError, CameraError
from medscan.intake.controller import SessionController
from medscan.intake.schema import ServiceType, parse_assessment
from medscan.llm.client import VisionClient
from medscan.services.messaging import DeliveryReceipt
from medscan.services.records import PatientRecordStore


def make_jpeg(color=(200, 150, 130), size=(64, 48)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG", quality=90)
    return buf.getvalue()


FACIAL_PAYLOAD = {
    "skinClarityScore": 78,
    "overallAssessment": "Skin shows mild dryness.",
    "keyProblemPoints": ["Dryness", "Fine lines"],
    "detectedProblems": [
        {
            "problem": "Dryness",
            "description": "Visible flaking on the cheeks.",
            "suggestedTreatment": "Hydrating facial",
        }
    ],
}


class FakeFrameSource(FrameSource):
    """Camera double: serves `frame` once opened, or None if `frame` is None."""

    def __init__(self, frame: Optional[bytes] = None, fail_open: bool = False):
        self.frame = frame
        self.fail_open = fail_open
        self.opened = 0
        self.closed = 0
        self.reads = 0

    @property
    def is_open(self) -> bool:
        return self.opened > self.closed

    def open(self) -> None:
        if self.fail_open:
            raise CameraError("permission denied")
        self.opened += 1

    def read_frame(self) -> Optional[bytes]:
        self.reads += 1
        return self.frame if self.is_open else None

    def close(self) -> None:
        self.closed += 1


class FakeVisionClient(VisionClient):
    def __init__(self, payload=None, error: Optional[Exception] = None, configured: bool = True,
                 phrases: Optional[List[str]] = None):
        self.payload = payload if payload is not None else FACIAL_PAYLOAD
        self.error = error
        self.configured = configured
        self.phrases = list(phrases or [])
        self.analyze_calls = []
        self.live_calls = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def analyze(self, images, service_type: ServiceType):
        self.analyze_calls.append((list(images), service_type))
        if self.error is not None:
            raise self.error
        try:
            return parse_assessment(self.payload, service_type)
        except ValueError as exc:
            raise AnalysisError(str(exc)) from exc

    async def analyze_live_frame(self, image, context) -> str:
        self.live_calls.append(context)
        return self.phrases.pop(0) if self.phrases else ""


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url="sqlite://",
        live_feedback_enabled=False,
        retry_attempts=0,
        retry_backoff_seconds=0,
        report_output_dir=str(tmp_path / "reports"),
    )


@pytest.fixture
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def record_store(test_engine) -> PatientRecordStore:
    factory = sessionmaker(bind=test_engine, autoflush=False, autocommit=False)
    return PatientRecordStore(factory, timeout=5, retries=0, backoff=0)


@pytest.fixture
def media_store():
    store = AsyncMock()
    store.upload.side_effect = (
        lambda patient_id, index, data: f"https://media.test/patients/{patient_id}/image-{index + 1}.jpg"
    )
    store.upload_pdf.side_effect = (
        lambda patient_id, filename, data, ts: f"https://media.test/reports/{patient_id}/{filename}"
    )
    return store


@pytest.fixture
def messenger():
    client = AsyncMock()
    client.send_document.side_effect = lambda phone, url, caption, name: DeliveryReceipt(
        recipient=f"+91{phone}", message_id="wamid.TEST", document_url=url
    )
    return client


@pytest.fixture
def camera(jpeg_bytes) -> FakeFrameSource:
    return FakeFrameSource(frame=jpeg_bytes)


@pytest.fixture
def vision() -> FakeVisionClient:
    return FakeVisionClient()


@pytest.fixture
def make_controller(record_store, media_store, messenger, camera, vision, settings):
    def build(**overrides) -> SessionController:
        kwargs = dict(
            record_store=record_store,
            media_store=media_store,
            vision_client=vision,
            messenger=messenger,
            frame_source_factory=lambda: camera,
            settings=settings,
        )
        kwargs.update(overrides)
        return SessionController(**kwargs)

    return build


VALID_INTAKE = {
    "fullName": "Asha Rao",
    "phoneNumber": "9876543210",
    "serviceType": "medzeal",
}
