"""
Tests for the session controller.
"""

import asyncio
import dataclasses
from typing import List, get_type_hints

import numpy as np
import pytest
from unittest.mock import AsyncMock, Mock, patch

from faceid.clients.signature_store import InMemorySignatureStore, JsonFileSignatureStore
from faceid.exceptions import (
    CaptureError,
    DescriptorShapeMismatch,
    DeviceNotReady,
    ExtractionError,
    ModelNotReady,
    NoEnrollment,
    SessionBusy,
    SessionCancelled,
    StoreError
)
from faceid.models.internal_models import (
    Attempt,
    DeviceReadiness,
    EnrollmentResult,
    ModelReadiness,
    NoFaceDetected,
    ScanPhase,
    SessionState,
    VerificationResult
)
from faceid.services.attempt_log import AttemptLog
from faceid.services.session_controller import (
    MSG_CAMERA_FAILED,
    MSG_DEVICE_NOT_READY,
    MSG_ENROLLED,
    MSG_MODEL_LOAD_FAILED,
    MSG_MODEL_NOT_READY,
    MSG_NO_FACE_ENROLL,
    MSG_NO_FACE_VERIFY,
    MSG_NOT_ENROLLED,
    MSG_REJECTED,
    MSG_RESET,
    MSG_STORE_UNREADABLE,
    MSG_VERIFIED,
    SessionController,
    get_session_controller,
    readiness_error
)

FRAME = np.zeros((48, 64, 3), dtype=np.uint8)


@pytest.fixture
def store():
    return InMemorySignatureStore()


@pytest.fixture
def mock_capture():
    """Create a mock capture source."""
    capture = Mock()
    capture.open = AsyncMock()
    capture.close = AsyncMock()
    capture.next_frame = AsyncMock(return_value=FRAME)
    return capture


@pytest.fixture
def mock_extractor():
    """Create a mock feature extractor returning a 3-d descriptor."""
    extractor = Mock()
    extractor.load = AsyncMock()
    extractor.extract = AsyncMock(return_value=np.array([0.0, 0.0, 0.0]))
    return extractor


@pytest.fixture
def attempt_log():
    return AttemptLog(capacity=4)


@pytest.fixture
def controller(store, mock_capture, mock_extractor, attempt_log):
    return SessionController(
        store=store,
        capture=mock_capture,
        extractor=mock_extractor,
        attempt_log=attempt_log,
        threshold=0.55
    )


async def make_ready(controller):
    assert await controller.load_model() == ModelReadiness.READY
    assert await controller.start_device() == DeviceReadiness.READY


class TestReadinessGate:
    """Tests for the readiness guard."""

    def test_both_ready(self):
        state = SessionState(model=ModelReadiness.READY, device=DeviceReadiness.READY)
        assert readiness_error(state) is None

    def test_model_reported_first(self):
        error = readiness_error(SessionState())
        assert isinstance(error, ModelNotReady)

    @pytest.mark.parametrize("device", [DeviceReadiness.IDLE, DeviceReadiness.PENDING, DeviceReadiness.ERROR])
    def test_device_not_ready(self, device):
        error = readiness_error(SessionState(model=ModelReadiness.READY, device=device))
        assert isinstance(error, DeviceNotReady)
        assert error.context == {"device": device.value}


class TestReadiness:
    """Tests for model and device readiness transitions."""

    def test_initial_state(self, controller):
        state = controller.state
        assert state.model == ModelReadiness.IDLE
        assert state.device == DeviceReadiness.IDLE
        assert state.phase == ScanPhase.IDLE
        assert state.enrollment_present is False

    def test_enrollment_present_from_store(self, mock_capture, mock_extractor):
        controller = SessionController(
            store=InMemorySignatureStore(np.zeros(3)),
            capture=mock_capture,
            extractor=mock_extractor
        )
        assert controller.state.enrollment_present is True

    @pytest.mark.asyncio
    async def test_load_model_success(self, controller, mock_extractor):
        state = await controller.load_model()

        assert state == ModelReadiness.READY
        assert controller.state.model == ModelReadiness.READY
        assert controller.observation.model_progress == 100
        mock_extractor.load.assert_called_once()

    @pytest.mark.asyncio
    async def test_load_model_reports_progress(self, controller, mock_extractor):
        seen = []

        async def staged_load(progress_callback):
            progress_callback(50)
            seen.append((controller.state.model, controller.observation.model_progress))

        mock_extractor.load.side_effect = staged_load
        await controller.load_model()

        assert seen == [(ModelReadiness.LOADING, 50)]

    @pytest.mark.asyncio
    async def test_load_model_failure_then_retry(self, controller, mock_extractor):
        mock_extractor.load.side_effect = [ExtractionError("weights missing"), None]

        assert await controller.load_model() == ModelReadiness.ERROR
        assert controller.observation.error == MSG_MODEL_LOAD_FAILED

        assert await controller.load_model() == ModelReadiness.READY
        assert controller.observation.error is None
        assert mock_extractor.load.call_count == 2

    @pytest.mark.asyncio
    async def test_load_model_is_noop_when_ready(self, controller, mock_extractor):
        await controller.load_model()
        await controller.load_model()

        mock_extractor.load.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_device_success(self, controller, mock_capture):
        assert await controller.start_device() == DeviceReadiness.READY
        mock_capture.open.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_device_failure_then_retry(self, controller, mock_capture):
        mock_capture.open.side_effect = [CaptureError("permission denied"), None]

        assert await controller.start_device() == DeviceReadiness.ERROR
        assert controller.observation.error == MSG_CAMERA_FAILED

        assert await controller.start_device() == DeviceReadiness.READY

    @pytest.mark.asyncio
    async def test_start_device_pending_during_open(self, controller, mock_capture):
        seen = []

        async def open_device():
            seen.append(controller.state.device)

        mock_capture.open.side_effect = open_device
        await controller.start_device()

        assert seen == [DeviceReadiness.PENDING]

    @pytest.mark.asyncio
    async def test_stop_device(self, controller, mock_capture):
        await controller.start_device()
        await controller.stop_device()

        assert controller.state.device == DeviceReadiness.IDLE
        mock_capture.close.assert_called_once()


class TestEnrollment:
    """Tests for the enrollment workflow."""

    @pytest.mark.asyncio
    async def test_enroll_success(self, controller, store, attempt_log):
        await make_ready(controller)

        outcome = await controller.enroll()

        assert isinstance(outcome, EnrollmentResult)
        assert outcome.status == "enrolled"
        assert controller.state.phase == ScanPhase.DETECTED
        assert controller.state.enrollment_present is True
        assert controller.observation.info == MSG_ENROLLED
        assert controller.observation.error is None
        np.testing.assert_allclose(store.get(), [0.0, 0.0, 0.0])
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_enroll_overwrites_previous_signature(self, controller, store, mock_extractor):
        await make_ready(controller)
        store.put(np.array([9.0, 9.0, 9.0]))

        await controller.enroll()

        np.testing.assert_allclose(store.get(), [0.0, 0.0, 0.0])

    @pytest.mark.asyncio
    async def test_enroll_requires_model(self, controller, mock_capture):
        await controller.start_device()

        with pytest.raises(ModelNotReady):
            await controller.enroll()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.observation.error == MSG_MODEL_NOT_READY
        mock_capture.next_frame.assert_not_called()

    @pytest.mark.asyncio
    async def test_enroll_requires_device(self, controller, mock_capture):
        await controller.load_model()

        with pytest.raises(DeviceNotReady):
            await controller.enroll()

        assert controller.observation.error == MSG_DEVICE_NOT_READY
        mock_capture.next_frame.assert_not_called()

    @pytest.mark.asyncio
    async def test_enroll_no_face(self, controller, store, mock_extractor):
        await make_ready(controller)
        mock_extractor.extract.return_value = None

        outcome = await controller.enroll()

        assert outcome == NoFaceDetected(message=MSG_NO_FACE_ENROLL)
        assert controller.state.phase == ScanPhase.IDLE
        assert controller.state.enrollment_present is False
        assert controller.observation.error == MSG_NO_FACE_ENROLL
        assert store.get() is None

    @pytest.mark.asyncio
    async def test_enroll_capture_error(self, controller, mock_capture, mock_extractor):
        await make_ready(controller)
        mock_capture.next_frame.side_effect = CaptureError("device unplugged")

        with pytest.raises(CaptureError):
            await controller.enroll()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.state.device == DeviceReadiness.ERROR
        assert controller.observation.error == MSG_CAMERA_FAILED
        mock_extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_capture_error_after_stop_keeps_device_idle(self, controller, mock_capture):
        await make_ready(controller)

        async def stop_then_fail():
            await controller.stop_device()
            raise CaptureError("Camera is not open")

        mock_capture.next_frame.side_effect = stop_then_fail

        with pytest.raises(CaptureError):
            await controller.enroll()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.state.device == DeviceReadiness.IDLE

    @pytest.mark.asyncio
    async def test_enroll_extraction_error(self, controller, mock_extractor):
        await make_ready(controller)
        mock_extractor.extract.side_effect = ExtractionError("bad frame")

        with pytest.raises(ExtractionError):
            await controller.enroll()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.observation.error == "bad frame"

    @pytest.mark.asyncio
    async def test_enroll_store_error(self, mock_capture, mock_extractor):
        failing_store = Mock()
        failing_store.get.return_value = None
        failing_store.put.side_effect = StoreError("Failed to store enrolled signature")
        controller = SessionController(failing_store, mock_capture, mock_extractor)
        await make_ready(controller)

        with pytest.raises(StoreError):
            await controller.enroll()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.state.enrollment_present is False

    @pytest.mark.asyncio
    async def test_scan_while_scanning_is_busy(self, controller, store, mock_extractor):
        await make_ready(controller)
        store.put(np.zeros(3))
        gate = asyncio.Event()

        async def slow_extract(frame):
            await gate.wait()
            return np.zeros(3)

        mock_extractor.extract.side_effect = slow_extract
        task = asyncio.create_task(controller.enroll())
        for _ in range(5):
            await asyncio.sleep(0)
        assert controller.state.phase == ScanPhase.SCANNING

        with pytest.raises(SessionBusy):
            await controller.verify()
        with pytest.raises(SessionBusy):
            await controller.enroll()

        gate.set()
        assert isinstance(await task, EnrollmentResult)
        assert mock_extractor.extract.call_count == 1


class TestVerification:
    """Tests for the verification workflow."""

    @pytest.fixture
    def enrolled_store(self, store):
        store.put(np.array([0.0, 0.0, 0.0]))
        return store

    @pytest.mark.asyncio
    async def test_verify_without_enrollment(self, controller, mock_capture, attempt_log):
        """NoEnrollment is raised before readiness or capture are touched."""
        with pytest.raises(NoEnrollment):
            await controller.verify()

        assert controller.observation.error == MSG_NOT_ENROLLED
        assert controller.state.phase == ScanPhase.IDLE
        mock_capture.next_frame.assert_not_called()
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_verify_requires_model(self, controller, enrolled_store, attempt_log):
        await controller.start_device()

        with pytest.raises(ModelNotReady):
            await controller.verify()

        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_verify_requires_device(self, controller, enrolled_store, attempt_log, mock_capture):
        await controller.load_model()

        with pytest.raises(DeviceNotReady):
            await controller.verify()

        assert len(attempt_log) == 0
        mock_capture.next_frame.assert_not_called()

    @pytest.mark.asyncio
    async def test_enroll_then_verify_accepted(self, controller, mock_extractor, attempt_log):
        await make_ready(controller)
        mock_extractor.extract.side_effect = [
            np.array([0.0, 0.0, 0.0]),
            np.array([0.0, 0.0, 0.1])
        ]

        await controller.enroll()
        assert controller.state.enrollment_present is True

        result = await controller.verify()

        assert isinstance(result, VerificationResult)
        assert result.accepted is True
        assert result.similarity_percent == 82
        assert result.message == MSG_VERIFIED
        assert result.detail == "High match with the enrolled profile."
        assert controller.state.phase == ScanPhase.VERIFIED
        assert controller.observation.info == MSG_VERIFIED
        assert controller.observation.error is None
        assert controller.observation.similarity_percent == 82

        attempts = attempt_log.snapshot()
        assert len(attempts) == 1
        assert attempts[0].accepted is True
        assert attempts[0].similarity_percent == 82
        assert result.attempt == attempts[0]

    @pytest.mark.asyncio
    async def test_enroll_then_verify_rejected(self, controller, mock_extractor, attempt_log):
        await make_ready(controller)
        mock_extractor.extract.side_effect = [
            np.array([0.0, 0.0, 0.0]),
            np.array([5.0, 5.0, 5.0])
        ]

        await controller.enroll()
        result = await controller.verify()

        assert result.accepted is False
        assert result.similarity_percent == 0
        assert result.message == MSG_REJECTED
        assert result.detail == "Insufficient match. Retry with better lighting."
        assert controller.state.phase == ScanPhase.REJECTED
        assert controller.observation.error == MSG_REJECTED
        assert controller.observation.info is None

        attempts = attempt_log.snapshot()
        assert len(attempts) == 1
        assert attempts[0].accepted is False

    @pytest.mark.asyncio
    async def test_log_keeps_four_most_recent(self, controller, enrolled_store, mock_extractor, attempt_log):
        await make_ready(controller)
        candidates = [np.array([0.0, 0.0, 0.01 * n]) for n in range(5)]
        mock_extractor.extract.side_effect = candidates

        results = [await controller.verify() for _ in range(5)]

        attempts = attempt_log.snapshot()
        assert len(attempts) == 4
        assert [a.similarity_percent for a in attempts] == [
            r.similarity_percent for r in reversed(results[1:])
        ]
        assert attempts[0].id == results[-1].attempt.id

    @pytest.mark.asyncio
    async def test_verify_no_face(self, controller, enrolled_store, mock_extractor, attempt_log):
        await make_ready(controller)
        mock_extractor.extract.return_value = None

        outcome = await controller.verify()

        assert outcome == NoFaceDetected(message=MSG_NO_FACE_VERIFY)
        assert controller.state.phase == ScanPhase.IDLE
        assert controller.observation.error == MSG_NO_FACE_VERIFY
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_no_face_after_readiness_lost_reports_readiness(
        self, controller, enrolled_store, mock_extractor, attempt_log
    ):
        """Only the readiness error is surfaced, never both."""
        await make_ready(controller)

        async def lose_camera(frame):
            await controller.stop_device()
            return None

        mock_extractor.extract.side_effect = lose_camera

        with pytest.raises(DeviceNotReady):
            await controller.verify()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.observation.error == MSG_DEVICE_NOT_READY
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_signature_removed_during_scan(self, controller, enrolled_store, mock_extractor, attempt_log):
        """A signature deleted mid-scan is NoEnrollment, not a rejected attempt."""
        await make_ready(controller)

        async def delete_signature(frame):
            enrolled_store.clear()
            return np.array([0.0, 0.0, 0.0])

        mock_extractor.extract.side_effect = delete_signature

        with pytest.raises(NoEnrollment):
            await controller.verify()

        assert controller.state.phase == ScanPhase.IDLE
        assert controller.state.enrollment_present is False
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_shape_mismatch_is_fatal(self, controller, enrolled_store, mock_extractor, attempt_log):
        await make_ready(controller)
        mock_extractor.extract.return_value = np.zeros(4)

        with pytest.raises(DescriptorShapeMismatch):
            await controller.verify()

        assert controller.state.phase == ScanPhase.IDLE
        assert len(attempt_log) == 0

        controller.reset()
        with pytest.raises(DescriptorShapeMismatch):
            await controller.enroll()
        assert mock_extractor.extract.call_count == 1

    @pytest.mark.asyncio
    async def test_latched_mismatch_raises_fresh_error(self, controller, enrolled_store, mock_extractor):
        await make_ready(controller)
        mock_extractor.extract.return_value = np.zeros(4)

        with pytest.raises(DescriptorShapeMismatch) as first:
            await controller.verify()
        with pytest.raises(DescriptorShapeMismatch) as second:
            await controller.verify()
        with pytest.raises(DescriptorShapeMismatch) as third:
            await controller.verify()

        assert second.value is not first.value
        assert third.value is not second.value
        assert second.value.message == first.value.message
        assert second.value.context == first.value.context

    @pytest.mark.asyncio
    async def test_cancelled_scan_frees_session(self, controller, enrolled_store, mock_extractor, attempt_log):
        """A workflow task cancelled mid-extraction does not leave the session busy."""
        await make_ready(controller)
        gate = asyncio.Event()

        async def slow_extract(frame):
            await gate.wait()
            return np.zeros(3)

        mock_extractor.extract.side_effect = slow_extract
        task = asyncio.create_task(controller.verify())
        for _ in range(5):
            await asyncio.sleep(0)
        assert controller.state.phase == ScanPhase.SCANNING

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.state.phase == ScanPhase.IDLE
        assert len(attempt_log) == 0

        mock_extractor.extract.side_effect = None
        outcome = await controller.enroll()

        assert isinstance(outcome, EnrollmentResult)
        assert controller.state.phase == ScanPhase.DETECTED

    @pytest.mark.asyncio
    async def test_verify_store_read_error(self, controller, enrolled_store, attempt_log):
        await make_ready(controller)

        with patch.object(enrolled_store, "get", side_effect=[np.zeros(3), StoreError("disk gone")]):
            with pytest.raises(StoreError):
                await controller.verify()

        assert controller.state.phase == ScanPhase.IDLE
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_new_scan_clears_transients(self, controller, enrolled_store, mock_extractor):
        await make_ready(controller)
        mock_extractor.extract.return_value = np.array([5.0, 5.0, 5.0])
        await controller.verify()
        assert controller.observation.error == MSG_REJECTED

        seen = []

        async def observe(frame):
            seen.append(controller.observation)
            return np.array([0.0, 0.0, 0.0])

        mock_extractor.extract.side_effect = observe
        await controller.verify()

        assert seen[0].error is None
        assert seen[0].info is None
        assert seen[0].similarity_percent is None


class TestReset:
    """Tests for resetting the enrollment."""

    @pytest.mark.asyncio
    async def test_reset_keeps_attempt_history(self, controller, mock_extractor, attempt_log):
        await make_ready(controller)
        await controller.enroll()
        await controller.verify()
        assert len(attempt_log) == 1

        controller.reset()

        assert controller.state.enrollment_present is False
        assert controller.state.phase == ScanPhase.IDLE
        assert controller.observation.info == MSG_RESET
        assert controller.observation.error is None
        assert controller.observation.similarity_percent is None
        assert len(attempt_log) == 1

        with pytest.raises(NoEnrollment):
            await controller.verify()
        assert len(attempt_log) == 1

    @pytest.mark.asyncio
    async def test_reset_cancels_inflight_scan(self, controller, store, mock_extractor, attempt_log):
        await make_ready(controller)

        async def reset_midway(frame):
            controller.reset()
            return np.array([0.0, 0.0, 0.0])

        mock_extractor.extract.side_effect = reset_midway

        with pytest.raises(SessionCancelled):
            await controller.enroll()

        assert store.get() is None
        assert controller.state.phase == ScanPhase.IDLE
        assert controller.state.enrollment_present is False
        assert controller.observation.info == MSG_RESET

    def test_reset_store_error_propagates(self, mock_capture, mock_extractor):
        failing_store = Mock()
        failing_store.get.return_value = np.zeros(3)
        failing_store.clear.side_effect = StoreError("read-only")
        controller = SessionController(failing_store, mock_capture, mock_extractor)

        with pytest.raises(StoreError):
            controller.reset()

        assert controller.state.enrollment_present is True

    def test_corrupt_signature_file_can_be_reset(self, tmp_path, mock_capture, mock_extractor):
        signature_path = tmp_path / "signature.json"
        signature_path.write_text("{not json")

        controller = SessionController(JsonFileSignatureStore(str(signature_path)), mock_capture, mock_extractor)

        assert controller.state.enrollment_present is False
        assert controller.observation.error == MSG_STORE_UNREADABLE

        controller.reset()

        assert not signature_path.exists()
        assert controller.state.enrollment_present is False
        assert controller.observation.info == MSG_RESET
        assert controller.observation.error is None


class TestObservation:
    """Tests for the last-observation record."""

    @pytest.mark.asyncio
    async def test_observation_is_a_copy(self, controller):
        observation = controller.observation
        observation.error = "tampered"

        assert controller.observation.error is None

    def test_state_snapshot_is_immutable(self, controller):
        with pytest.raises(dataclasses.FrozenInstanceError):
            controller.state.phase = ScanPhase.VERIFIED

    @pytest.mark.asyncio
    async def test_attempts_snapshot(self, controller, store, attempt_log):
        await make_ready(controller)
        store.put(np.zeros(3))
        await controller.verify()

        attempts = controller.attempts
        attempts.clear()

        assert get_type_hints(SessionController.attempts.fget)["return"] == List[Attempt]
        assert all(isinstance(a, Attempt) for a in controller.attempts)
        assert len(controller.attempts) == 1


class TestGlobalSessionController:
    """Test cases for the global controller accessor."""

    @patch('faceid.services.session_controller._session_controller', None)
    @patch('faceid.services.session_controller.FaceRecognitionExtractor')
    @patch('faceid.services.session_controller.CameraCaptureSource')
    @patch('faceid.services.session_controller.JsonFileSignatureStore')
    def test_get_session_controller_singleton(self, mock_store_class, mock_capture_class, mock_extractor_class):
        mock_store_class.return_value.get.return_value = None

        controller1 = get_session_controller()
        controller2 = get_session_controller()

        assert controller1 is controller2
        assert isinstance(controller1, SessionController)
        mock_store_class.assert_called_once()
