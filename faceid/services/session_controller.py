"""
Session controller for face enrollment and verification workflows.

This module provides the core business logic for:
- Readiness of the feature-extraction models and the capture device
- Face enrollment: capture, extract, persist the signature
- Face verification: capture, extract, compare, log the attempt
- Reset of the enrolled signature
"""

import logging
from dataclasses import replace
from typing import List, Optional, Union

from faceid.clients.capture_client import CameraCaptureSource, CaptureSource
from faceid.clients.signature_store import JsonFileSignatureStore, SignatureStore
from faceid.config import settings
from faceid.exceptions import (
    CaptureError,
    DescriptorShapeMismatch,
    DeviceNotReady,
    ExtractionError,
    ModelNotReady,
    NoEnrollment,
    NotReadyError,
    SessionBusy,
    SessionCancelled,
    StoreError
)
from faceid.models.internal_models import (
    Attempt,
    Descriptor,
    DeviceReadiness,
    EnrollmentResult,
    ModelReadiness,
    NoFaceDetected,
    ScanPhase,
    SessionObservation,
    SessionState,
    VerificationResult
)
from faceid.services import match_engine
from faceid.services.attempt_log import AttemptLog
from faceid.services.feature_extractor import FaceRecognitionExtractor, FeatureExtractor

logger = logging.getLogger(__name__)

MSG_MODEL_LOAD_FAILED = "Could not load the face models. Check the model directory."
MSG_CAMERA_FAILED = "Could not access the camera. Check the device permissions."
MSG_MODEL_NOT_READY = "Face models are not loaded yet."
MSG_DEVICE_NOT_READY = "The camera is not ready yet."
MSG_NOT_ENROLLED = "No identity enrolled. Complete enrollment first."
MSG_ENROLLMENT_MISSING = "No enrolled face was found."
MSG_NO_FACE_ENROLL = "No face detected. Adjust the lighting and try again."
MSG_NO_FACE_VERIFY = "No face detected for verification."
MSG_ENROLLED = "Enrollment complete. Your face is ready to be verified."
MSG_VERIFIED = "Verification successful. Welcome."
MSG_VERIFIED_DETAIL = "High match with the enrolled profile."
MSG_REJECTED = "Could not verify your identity."
MSG_REJECTED_DETAIL = "Insufficient match. Retry with better lighting."
MSG_RESET = "Enrollment cleared. You can enroll a new identity."
MSG_BUSY = "A scan is already in progress."
MSG_STORE_UNREADABLE = "The enrolled signature could not be read. Reset to enroll again."


def readiness_error(state: SessionState) -> Optional[NotReadyError]:
    """
    Evaluate the readiness gate for capture-dependent operations.

    Both the model and the device must be READY. Model readiness is
    reported first.

    Returns:
        The error to raise, or None if the session may capture
    """
    if state.model != ModelReadiness.READY:
        return ModelNotReady(MSG_MODEL_NOT_READY, context={"model": state.model.value})
    if state.device != DeviceReadiness.READY:
        return DeviceNotReady(MSG_DEVICE_NOT_READY, context={"device": state.device.value})
    return None


class SessionController:
    """
    Core session handling enrollment and verification for a single identity.

    Owns the session state; every transition is made here in response to
    this controller's own operations. Capture and extraction calls are the
    only suspension points.
    """

    def __init__(
        self,
        store: SignatureStore,
        capture: CaptureSource,
        extractor: FeatureExtractor,
        attempt_log: Optional[AttemptLog] = None,
        threshold: Optional[float] = None
    ):
        """
        Initialize the session controller.

        Args:
            store: Signature store holding the enrolled descriptor
            capture: Capture source supplying frames
            extractor: Feature extractor producing descriptors
            attempt_log: Attempt log instance. If None, creates a new one.
            threshold: Max match distance. If None, uses settings.match_threshold.
        """
        self.store = store
        self.capture = capture
        self.extractor = extractor
        self.attempt_log = attempt_log if attempt_log is not None else AttemptLog()
        self.threshold = settings.match_threshold if threshold is None else threshold

        self._observation = SessionObservation()
        self._generation = 0
        self._fatal: Optional[DescriptorShapeMismatch] = None

        try:
            enrolled = self.store.get() is not None
        except StoreError as e:
            logger.error(f"Enrolled signature unreadable at startup: {e}")
            enrolled = False
            self._attention(MSG_STORE_UNREADABLE)
        self._state = SessionState(enrollment_present=enrolled)

        logger.info(f"Session controller initialized with match threshold: {self.threshold}")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def observation(self) -> SessionObservation:
        return replace(self._observation)

    @property
    def attempts(self) -> List[Attempt]:
        return self.attempt_log.snapshot()

    def _transition(self, **changes) -> None:
        self._state = replace(self._state, **changes)

    def _attention(self, message: str) -> None:
        self._observation.error = message
        self._observation.info = None

    def _advise(self, message: str) -> None:
        self._observation.info = message
        self._observation.error = None

    def _set_model_progress(self, percent: int) -> None:
        self._observation.model_progress = max(0, min(100, int(percent)))

    # Readiness

    async def load_model(self) -> ModelReadiness:
        """
        Load the feature-extraction models.

        No-op while loading or once ready; re-triggerable after an error.

        Returns:
            The resulting model readiness
        """
        if self._state.model in (ModelReadiness.LOADING, ModelReadiness.READY):
            return self._state.model

        self._observation.error = None
        self._set_model_progress(0)
        self._transition(model=ModelReadiness.LOADING)
        logger.info("Loading face models")

        try:
            await self.extractor.load(progress_callback=self._set_model_progress)
        except ExtractionError as e:
            logger.error(f"Face model loading failed: {e}")
            self._transition(model=ModelReadiness.ERROR)
            self._attention(MSG_MODEL_LOAD_FAILED)
            return self._state.model

        self._set_model_progress(100)
        self._transition(model=ModelReadiness.READY)
        logger.info("Face models ready")
        return self._state.model

    async def start_device(self) -> DeviceReadiness:
        """
        Request access to the capture device.

        No-op while pending or once ready; re-triggerable after an error.

        Returns:
            The resulting device readiness
        """
        if self._state.device in (DeviceReadiness.PENDING, DeviceReadiness.READY):
            return self._state.device

        self._observation.error = None
        self._transition(device=DeviceReadiness.PENDING)
        logger.info("Requesting capture device access")

        try:
            await self.capture.open()
        except CaptureError as e:
            logger.error(f"Capture device unavailable: {e}")
            self._transition(device=DeviceReadiness.ERROR)
            self._attention(MSG_CAMERA_FAILED)
            return self._state.device

        self._transition(device=DeviceReadiness.READY)
        logger.info("Capture device ready")
        return self._state.device

    async def stop_device(self) -> None:
        """Release the capture device."""
        await self.capture.close()
        self._transition(device=DeviceReadiness.IDLE)
        logger.info("Capture device released")

    # Workflows

    def _begin_scan(self, require_enrollment: bool) -> int:
        """Run pre-flight checks and enter SCANNING. Returns the workflow generation."""
        if self._fatal is not None:
            raise DescriptorShapeMismatch(self._fatal.message, context=self._fatal.context)

        if self._state.phase == ScanPhase.SCANNING:
            raise SessionBusy(MSG_BUSY)

        if require_enrollment and self.store.get() is None:
            self._transition(enrollment_present=False)
            self._attention(MSG_NOT_ENROLLED)
            logger.warning("Verification requested without an enrolled signature")
            raise NoEnrollment(MSG_NOT_ENROLLED)

        error = readiness_error(self._state)
        if error is not None:
            self._attention(error.message)
            logger.warning(f"Scan rejected: {error}")
            raise error

        self._observation.error = None
        self._observation.info = None
        self._observation.similarity_percent = None
        self._transition(phase=ScanPhase.SCANNING)
        return self._generation

    def _check_cancelled(self, generation: int) -> None:
        if generation != self._generation:
            logger.info("Scan abandoned after reset")
            raise SessionCancelled("Scan was cancelled by a reset")

    def _release_scan(self, generation: int) -> None:
        """Leave SCANNING for a workflow abandoned mid-flight, unless a reset already took over."""
        if generation == self._generation and self._state.phase == ScanPhase.SCANNING:
            logger.warning("Scan abandoned before completion")
            self._transition(phase=ScanPhase.IDLE)

    def _abort_scan(self, message: str) -> None:
        self._transition(phase=ScanPhase.IDLE)
        self._attention(message)

    async def _capture_descriptor(self, generation: int) -> Optional[Descriptor]:
        """Pull one frame and extract its descriptor."""
        try:
            frame = await self.capture.next_frame()
        except CaptureError as e:
            self._check_cancelled(generation)
            logger.error(f"Frame capture failed: {e}")
            if self._state.device == DeviceReadiness.READY:
                self._transition(device=DeviceReadiness.ERROR)
            self._abort_scan(MSG_CAMERA_FAILED)
            raise
        self._check_cancelled(generation)

        try:
            descriptor = await self.extractor.extract(frame)
        except ExtractionError as e:
            self._check_cancelled(generation)
            logger.error(f"Descriptor extraction failed: {e}")
            self._abort_scan(e.message)
            raise
        self._check_cancelled(generation)

        return descriptor

    def _no_face(self, message: str) -> NoFaceDetected:
        """Return to IDLE after a frame without a face, unless readiness was lost meanwhile."""
        self._transition(phase=ScanPhase.IDLE)
        error = readiness_error(self._state)
        if error is not None:
            self._attention(error.message)
            raise error
        self._attention(message)
        logger.info(message)
        return NoFaceDetected(message=message)

    async def enroll(self) -> Union[EnrollmentResult, NoFaceDetected]:
        """
        Enroll the face in front of the camera.

        Complete enrollment workflow:
        1. Check the session is idle and both readiness machines are READY
        2. Capture one frame and extract a descriptor
        3. Persist the descriptor, replacing any prior enrollment

        Returns:
            EnrollmentResult on success, NoFaceDetected if no face was found

        Raises:
            SessionBusy, ModelNotReady, DeviceNotReady: Pre-flight failures
            CaptureError, ExtractionError, StoreError: Collaborator failures
            SessionCancelled: If reset while scanning
        """
        generation = self._begin_scan(require_enrollment=False)
        logger.info("Starting enrollment")

        try:
            return await self._enroll_scan(generation)
        except BaseException:
            self._release_scan(generation)
            raise

    async def _enroll_scan(self, generation: int) -> Union[EnrollmentResult, NoFaceDetected]:
        descriptor = await self._capture_descriptor(generation)
        if descriptor is None:
            return self._no_face(MSG_NO_FACE_ENROLL)

        try:
            self.store.put(descriptor)
        except StoreError as e:
            logger.error(f"Failed to store enrollment: {e}")
            self._abort_scan(e.message)
            raise

        self._transition(phase=ScanPhase.DETECTED, enrollment_present=True)
        self._advise(MSG_ENROLLED)
        logger.info(f"Enrollment completed: descriptor length {len(descriptor)}")
        return EnrollmentResult(message=MSG_ENROLLED)

    async def verify(self) -> Union[VerificationResult, NoFaceDetected]:
        """
        Verify the face in front of the camera against the enrolled signature.

        Complete verification workflow:
        1. Check the session is idle, a signature is enrolled and both
           readiness machines are READY
        2. Capture one frame and extract a descriptor
        3. Re-read the enrolled signature and compare
        4. Log the attempt and return the result

        Returns:
            VerificationResult on a terminal decision, NoFaceDetected if no face was found

        Raises:
            SessionBusy, NoEnrollment, ModelNotReady, DeviceNotReady: Pre-flight failures
            NoEnrollment: If the signature vanished before comparison
            DescriptorShapeMismatch: If the descriptors differ in length (fatal)
            CaptureError, ExtractionError, StoreError: Collaborator failures
            SessionCancelled: If reset while scanning
        """
        generation = self._begin_scan(require_enrollment=True)
        logger.info("Starting verification")

        try:
            return await self._verify_scan(generation)
        except BaseException:
            self._release_scan(generation)
            raise

    async def _verify_scan(self, generation: int) -> Union[VerificationResult, NoFaceDetected]:
        candidate = await self._capture_descriptor(generation)
        if candidate is None:
            return self._no_face(MSG_NO_FACE_VERIFY)

        self._transition(phase=ScanPhase.DETECTED)

        try:
            stored = self.store.get()
        except StoreError as e:
            logger.error(f"Failed to read enrolled signature: {e}")
            self._abort_scan(e.message)
            raise

        if stored is None:
            logger.warning("Enrolled signature vanished before comparison")
            self._transition(enrollment_present=False)
            self._abort_scan(MSG_ENROLLMENT_MISSING)
            raise NoEnrollment(MSG_ENROLLMENT_MISSING)

        try:
            match = match_engine.compare(stored, candidate, self.threshold)
        except DescriptorShapeMismatch as e:
            logger.critical(f"Descriptor shape mismatch, session disabled: {e}")
            self._fatal = e
            self._abort_scan(e.message)
            raise

        self._observation.similarity_percent = match.similarity_percent
        attempt: Attempt = self.attempt_log.record(match.accepted, match.similarity_percent)

        if match.accepted:
            self._transition(phase=ScanPhase.VERIFIED)
            self._advise(MSG_VERIFIED)
            result = VerificationResult(True, match.similarity_percent, MSG_VERIFIED, MSG_VERIFIED_DETAIL, attempt)
        else:
            self._transition(phase=ScanPhase.REJECTED)
            self._attention(MSG_REJECTED)
            result = VerificationResult(False, match.similarity_percent, MSG_REJECTED, MSG_REJECTED_DETAIL, attempt)

        logger.info(
            f"Verification {'accepted' if match.accepted else 'rejected'}: "
            f"distance={match.distance:.4f}, threshold={self.threshold}, similarity={match.similarity_percent}%"
        )
        return result

    def reset(self) -> None:
        """
        Delete the enrolled signature and return to IDLE.

        Abandons any in-flight scan. The attempt log is kept.

        Raises:
            StoreError: If the signature cannot be deleted
        """
        self.store.clear()
        self._generation += 1
        self._transition(phase=ScanPhase.IDLE, enrollment_present=False)
        self._observation.similarity_percent = None
        self._advise(MSG_RESET)
        logger.info("Enrollment reset")


# Global controller instance
_session_controller: Optional[SessionController] = None


def get_session_controller() -> SessionController:
    """
    Get the global session controller instance.

    Returns:
        SessionController: The global session controller instance
    """
    global _session_controller
    if _session_controller is None:
        _session_controller = SessionController(
            store=JsonFileSignatureStore(),
            capture=CameraCaptureSource(),
            extractor=FaceRecognitionExtractor()
        )
    return _session_controller

