"""Tests for the session controller stage machine."""

from unittest.mock import AsyncMock

import pytest

from medscan.errors import (
    AnalysisError,
    CameraNotReadyError,
    DeliveryError,
    IntakeValidationError,
    InvalidTransitionError,
    MediaStoreError,
    RecordStoreError,
)
from medscan.intake.controller import RENDER_FAILED_MESSAGE
from medscan.intake.schema import ServiceType
from medscan.intake.stages import SessionStage
from medscan.intake.state import ErrorKind

from conftest import FACIAL_PAYLOAD, VALID_INTAKE, FakeFrameSource, FakeVisionClient


async def _captured(controller, frames=3):
    await controller.submit_intake(VALID_INTAKE)
    for _ in range(frames):
        await controller.capture()
    return controller


class TestIntake:
    @pytest.mark.asyncio
    async def test_invalid_intake_never_reaches_store(self, make_controller):
        store = AsyncMock()
        controller = make_controller(record_store=store)

        with pytest.raises(IntakeValidationError) as exc_info:
            await controller.submit_intake({**VALID_INTAKE, "phoneNumber": "12345"})

        assert exc_info.value.errors == ["Mobile number must be exactly 10 digits."]
        store.create.assert_not_awaited()
        assert controller.stage == SessionStage.INTAKE

    @pytest.mark.asyncio
    async def test_valid_intake_creates_patient_and_opens_camera(self, make_controller, camera):
        controller = make_controller()

        state = await controller.submit_intake(VALID_INTAKE)

        assert state.stage == SessionStage.CAPTURING
        assert state.patient_id
        assert state.capture.patient_id == state.patient_id
        assert state.intake.service_type is ServiceType.FACIAL
        assert camera.is_open

    @pytest.mark.asyncio
    async def test_store_failure_keeps_form(self, make_controller, camera):
        store = AsyncMock()
        store.create.side_effect = RecordStoreError("connection refused", transient=True)
        controller = make_controller(record_store=store)

        state = await controller.submit_intake(VALID_INTAKE)

        assert state.stage == SessionStage.INTAKE
        assert state.patient_id is None
        assert state.error.message == "Failed to save patient data. Please try again."
        assert state.error.service == "record_store"
        assert camera.opened == 0

    @pytest.mark.asyncio
    async def test_intake_only_accepted_once(self, make_controller):
        controller = make_controller()
        await controller.submit_intake(VALID_INTAKE)

        with pytest.raises(InvalidTransitionError):
            await controller.submit_intake(VALID_INTAKE)

    def test_check_intake_reports_without_side_effects(self, make_controller):
        controller = make_controller()

        assert controller.check_intake({**VALID_INTAKE, "fullName": ""}) == ["Full name is required."]
        assert controller.stage == SessionStage.INTAKE


class TestCapture:
    @pytest.mark.asyncio
    async def test_missing_credential_fails_before_camera(self, make_controller, camera):
        controller = make_controller(vision_client=FakeVisionClient(configured=False))

        state = await controller.submit_intake(VALID_INTAKE)

        assert state.stage == SessionStage.ERROR
        assert state.error.kind == ErrorKind.CONFIGURATION
        assert not state.error.retryable
        assert camera.opened == 0

    @pytest.mark.asyncio
    async def test_camera_denied_then_retried(self, make_controller):
        camera = FakeFrameSource(frame=b"\xff\xd8frame", fail_open=True)
        controller = make_controller(frame_source_factory=lambda: camera)

        state = await controller.submit_intake(VALID_INTAKE)
        patient_id = state.patient_id

        assert state.stage == SessionStage.ERROR
        assert state.error.kind == ErrorKind.DEVICE
        assert state.error.message == "Unable to access camera. Please check permissions."

        camera.fail_open = False
        state = await controller.retry_camera()

        assert state.stage == SessionStage.CAPTURING
        assert state.patient_id == patient_id
        assert camera.is_open

    @pytest.mark.asyncio
    async def test_camera_retry_requires_device_error(self, make_controller):
        controller = make_controller()
        await controller.submit_intake(VALID_INTAKE)

        with pytest.raises(InvalidTransitionError):
            await controller.retry_camera()

    @pytest.mark.asyncio
    async def test_frames_kept_after_camera_failure(self, make_controller, camera):
        controller = make_controller()
        await _captured(controller, frames=2)

        await controller.report_camera_failure("device unplugged")
        assert controller.stage == SessionStage.ERROR
        assert not camera.is_open

        await controller.retry_camera()
        assert controller.frame_count == 2

    @pytest.mark.asyncio
    async def test_fourth_capture_is_ignored(self, make_controller, camera):
        controller = await _captured(make_controller())
        assert controller.can_submit
        reads = camera.reads

        count = await controller.capture()

        assert count == 3
        assert controller.frame_count == 3
        assert camera.reads == reads

    @pytest.mark.asyncio
    async def test_capture_without_frame_is_rejected(self, make_controller):
        camera = FakeFrameSource(frame=None)
        controller = make_controller(frame_source_factory=lambda: camera)
        await controller.submit_intake(VALID_INTAKE)

        with pytest.raises(CameraNotReadyError):
            await controller.capture()

        assert controller.frame_count == 0
        assert controller.stage == SessionStage.CAPTURING

    @pytest.mark.asyncio
    async def test_submit_needs_three_frames(self, make_controller, vision):
        controller = await _captured(make_controller(), frames=2)

        with pytest.raises(InvalidTransitionError):
            await controller.submit_for_analysis()

        assert vision.analyze_calls == []
        assert controller.stage == SessionStage.CAPTURING

    @pytest.mark.asyncio
    async def test_push_preview_rejected_for_local_camera(self, make_controller, jpeg_bytes):
        controller = make_controller()
        await controller.submit_intake(VALID_INTAKE)

        with pytest.raises(InvalidTransitionError):
            await controller.push_preview(jpeg_bytes)

    @pytest.mark.asyncio
    async def test_live_feedback_bound_to_capturing(self, make_controller):
        controller = make_controller(live_feedback=True)
        await _captured(controller)

        loop = controller.feedback
        assert loop is not None and loop.running

        await controller.submit_for_analysis()

        assert not loop.running


class TestAnalysis:
    @pytest.mark.asyncio
    async def test_full_facial_flow(self, make_controller, vision, media_store, record_store, camera):
        controller = await _captured(make_controller())

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.REPORTING
        assert state.result.score == 78
        assert state.result.score_label == "78/100"
        assert not camera.is_open
        assert len(vision.analyze_calls[0][0]) == 3
        assert vision.analyze_calls[0][1] is ServiceType.FACIAL

        assert [c.args[1] for c in media_store.upload.await_args_list] == [0, 1, 2]
        assert state.image_urls[0].endswith(f"/patients/{state.patient_id}/image-1.jpg")

        stored = await record_store.read_report(state.patient_id)
        assert stored["skinClarityScore"] == 78
        assert stored["overallAssessment"] == FACIAL_PAYLOAD["overallAssessment"]
        assert stored["imageUrls"] == state.image_urls
        assert stored["serviceType"] == "facial"

    @pytest.mark.asyncio
    async def test_analysis_failure_persists_nothing(self, make_controller, media_store, record_store):
        vision = FakeVisionClient(error=AnalysisError("model timed out", transient=True))
        controller = await _captured(make_controller(vision_client=vision))

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.ERROR
        assert state.error.kind == ErrorKind.INTEGRATION
        assert state.error.message == "Failed to analyze images. Please try again."
        assert state.result is None
        media_store.upload.assert_not_awaited()
        assert await record_store.read_report(state.patient_id) is None

    @pytest.mark.asyncio
    async def test_unexpected_analysis_exception_reaches_error(self, make_controller, media_store):
        vision = FakeVisionClient(error=OverflowError("cannot convert float infinity to integer"))
        controller = await _captured(make_controller(vision_client=vision))

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.ERROR
        assert state.error.kind == ErrorKind.INTEGRATION
        assert state.error.message == "Failed to analyze images. Please try again."
        media_store.upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_persistence_exception_reaches_error(self, make_controller, media_store):
        media_store.upload.side_effect = RuntimeError("socket closed")
        controller = await _captured(make_controller())

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.ERROR
        assert state.error.retryable

    @pytest.mark.asyncio
    async def test_non_finite_score_reaches_error(self, make_controller):
        payload = {**FACIAL_PAYLOAD, "skinClarityScore": float("inf")}
        controller = await _captured(make_controller(vision_client=FakeVisionClient(payload=payload)))

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.ERROR
        assert state.error.service == "analysis"

    @pytest.mark.asyncio
    async def test_incomplete_payload_is_an_analysis_error(self, make_controller):
        payload = {k: v for k, v in FACIAL_PAYLOAD.items() if k != "detectedProblems"}
        controller = await _captured(make_controller(vision_client=FakeVisionClient(payload=payload)))

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.ERROR
        assert state.error.service == "analysis"

    @pytest.mark.asyncio
    async def test_upload_failure_surfaces(self, make_controller, media_store):
        media_store.upload.side_effect = MediaStoreError("bucket missing")
        controller = await _captured(make_controller())

        state = await controller.submit_for_analysis()

        assert state.stage == SessionStage.ERROR
        assert state.error.message == "Failed to upload images. Please try again."


class TestReport:
    @pytest.mark.asyncio
    async def test_render_report(self, make_controller):
        controller = await _captured(make_controller())
        await controller.submit_for_analysis()

        filename, pdf = await controller.render_report()

        assert filename.startswith("Asha Rao_facial_")
        assert filename.endswith(".pdf")
        assert pdf.startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_save_report_writes_file(self, make_controller, tmp_path):
        controller = await _captured(make_controller())
        await controller.submit_for_analysis()

        path = await controller.save_report(str(tmp_path))

        assert path.parent == tmp_path
        assert path.read_bytes().startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_send_report(self, make_controller, media_store, messenger):
        controller = await _captured(make_controller())
        state = await controller.submit_for_analysis()

        outcome = await controller.send_report()

        assert outcome.sent
        assert outcome.recipient == "+919876543210"
        assert outcome.message_id == "wamid.TEST"
        upload_args = media_store.upload_pdf.await_args.args
        assert upload_args[0] == state.patient_id
        phone, url, caption, filename = messenger.send_document.await_args.args
        assert phone == "9876543210"
        assert url == outcome.document_url
        assert "Asha Rao" in caption and "78/100" in caption
        assert filename == upload_args[1]

    @pytest.mark.asyncio
    async def test_send_failure_keeps_reporting(self, make_controller, messenger):
        messenger.send_document.side_effect = DeliveryError("HTTP 401")
        controller = await _captured(make_controller())
        await controller.submit_for_analysis()

        outcome = await controller.send_report()

        assert not outcome.sent
        assert outcome.message == "Could not send the report. Please try again."
        assert controller.stage == SessionStage.REPORTING

    @pytest.mark.asyncio
    async def test_render_failure_message(self, make_controller, monkeypatch):
        controller = await _captured(make_controller())
        await controller.submit_for_analysis()

        def boom(*args, **kwargs):
            raise RuntimeError("font missing")

        monkeypatch.setattr("medscan.intake.controller.render_report_pdf", boom)
        outcome = await controller.send_report()

        assert not outcome.sent
        assert outcome.message == RENDER_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_report_actions_need_result(self, make_controller):
        controller = make_controller()

        with pytest.raises(InvalidTransitionError):
            await controller.render_report()
        with pytest.raises(InvalidTransitionError):
            await controller.send_report()


class TestLeavingTheFlow:
    @pytest.mark.asyncio
    async def test_retry_clears_everything(self, make_controller):
        vision = FakeVisionClient(error=AnalysisError("boom"))
        controller = await _captured(make_controller(vision_client=vision))
        await controller.submit_for_analysis()
        session_id = controller.session_id

        state = await controller.retry()

        assert state.stage == SessionStage.INTAKE
        assert state.session_id == session_id
        assert state.intake is None
        assert state.patient_id is None
        assert state.capture is None
        assert state.error is None

    @pytest.mark.asyncio
    async def test_retry_only_from_error(self, make_controller):
        controller = make_controller()

        with pytest.raises(InvalidTransitionError):
            await controller.retry()

    @pytest.mark.asyncio
    async def test_reset_from_capturing_releases_camera(self, make_controller, camera):
        controller = await _captured(make_controller(), frames=1)

        state = await controller.reset()

        assert state.stage == SessionStage.INTAKE
        assert not camera.is_open
        assert controller.frame_count == 0

    @pytest.mark.asyncio
    async def test_new_analysis_after_report(self, make_controller):
        controller = await _captured(make_controller())
        first = (await controller.submit_for_analysis()).patient_id

        await controller.reset()
        await controller.submit_intake({**VALID_INTAKE, "serviceType": "dental"})

        assert controller.stage == SessionStage.CAPTURING
        assert controller.state.patient_id != first
