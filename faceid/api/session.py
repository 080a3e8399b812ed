"""
Session API endpoints for face enrollment and verification.
"""

import time
from datetime import datetime, timezone
from typing import Dict, Type, Union

import structlog
from fastapi import APIRouter, HTTPException, Request

from faceid.exceptions import (
    CaptureError,
    DescriptorShapeMismatch,
    DeviceNotReady,
    ExtractionError,
    FaceSessionError,
    ModelNotReady,
    NoEnrollment,
    SessionBusy,
    SessionCancelled,
    StoreError
)
from faceid.middleware import CORRELATION_HEADER
from faceid.models.api_models import (
    AttemptListResponse,
    AttemptResponse,
    EnrollmentResponse,
    ReadinessResponse,
    ScanNoticeResponse,
    SessionStatusResponse,
    VerificationResponse
)
from faceid.models.internal_models import NoFaceDetected
from faceid.observability import (
    record_enrollment_metrics,
    record_model_load_metrics,
    record_verification_metrics,
    trace_function
)
from faceid.services.session_controller import get_session_controller
from faceid.utils.status_utils import signal_level, status_label, status_variant

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["session"])

ERROR_STATUS_CODES: Dict[Type[FaceSessionError], int] = {
    ModelNotReady: 409,
    DeviceNotReady: 409,
    SessionBusy: 409,
    SessionCancelled: 409,
    NoEnrollment: 404,
    CaptureError: 503,
    ExtractionError: 422,
    StoreError: 500,
    DescriptorShapeMismatch: 500,
}


def session_error(error: FaceSessionError, correlation_id: str) -> HTTPException:
    """Map a session error to an HTTPException with the standard error body."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(error, error_type)),
        500
    )
    return HTTPException(
        status_code=status_code,
        detail={
            "error": type(error).__name__,
            "message": error.message,
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


def _correlation_id(http_request: Request) -> str:
    return http_request.headers.get(CORRELATION_HEADER, "unknown")


@router.post("/models/load", response_model=ReadinessResponse)
@trace_function("model_load_endpoint")
async def load_models(http_request: Request) -> ReadinessResponse:
    """Load the face models; returns the resulting model readiness."""
    controller = get_session_controller()
    start_time = time.time()

    state = await controller.load_model()
    record_model_load_metrics(state.value, time.time() - start_time)

    logger.info("Model load finished", state=state.value, correlation_id=_correlation_id(http_request))
    return ReadinessResponse(state=state.value, message=controller.observation.error)


@router.post("/camera/start", response_model=ReadinessResponse)
async def start_camera(http_request: Request) -> ReadinessResponse:
    """Request camera access; returns the resulting device readiness."""
    controller = get_session_controller()

    state = await controller.start_device()

    logger.info("Camera start finished", state=state.value, correlation_id=_correlation_id(http_request))
    return ReadinessResponse(state=state.value, message=controller.observation.error)


@router.post("/camera/stop", response_model=ReadinessResponse)
async def stop_camera(http_request: Request) -> ReadinessResponse:
    """Release the camera."""
    controller = get_session_controller()

    await controller.stop_device()

    logger.info("Camera stopped", correlation_id=_correlation_id(http_request))
    return ReadinessResponse(state=controller.state.device.value)


@router.post("/enroll", response_model=Union[EnrollmentResponse, ScanNoticeResponse])
@trace_function("enrollment_endpoint")
async def enroll(http_request: Request) -> Union[EnrollmentResponse, ScanNoticeResponse]:
    """
    Enroll the face currently in front of the camera.

    Captures one frame, extracts a descriptor and stores it as the enrolled
    signature, replacing any previous one.

    Returns:
        EnrollmentResponse, or ScanNoticeResponse when no face was detected

    Raises:
        HTTPException: For readiness, capture, extraction and storage errors
    """
    correlation_id = _correlation_id(http_request)
    controller = get_session_controller()
    start_time = time.time()

    logger.info("Enrollment request received", correlation_id=correlation_id)

    try:
        outcome = await controller.enroll()
    except FaceSessionError as e:
        record_enrollment_metrics(type(e).__name__, time.time() - start_time)
        logger.error("Enrollment failed", error=e.to_dict(), correlation_id=correlation_id)
        raise session_error(e, correlation_id)

    if isinstance(outcome, NoFaceDetected):
        record_enrollment_metrics("no_face", time.time() - start_time)
        logger.info("Enrollment found no face", correlation_id=correlation_id)
        return ScanNoticeResponse(message=outcome.message)

    record_enrollment_metrics(outcome.status, time.time() - start_time)
    logger.info("Enrollment completed successfully", correlation_id=correlation_id)
    return EnrollmentResponse(status=outcome.status, message=outcome.message)


@router.post("/verify", response_model=Union[VerificationResponse, ScanNoticeResponse])
@trace_function("verification_endpoint")
async def verify(http_request: Request) -> Union[VerificationResponse, ScanNoticeResponse]:
    """
    Verify the face currently in front of the camera.

    Captures one frame, extracts a descriptor, compares it with the enrolled
    signature and logs the attempt.

    Returns:
        VerificationResponse with the decision, or ScanNoticeResponse when
        no face was detected

    Raises:
        HTTPException: For missing enrollment, readiness and collaborator errors
    """
    correlation_id = _correlation_id(http_request)
    controller = get_session_controller()
    start_time = time.time()

    logger.info("Verification request received", correlation_id=correlation_id)

    try:
        outcome = await controller.verify()
    except FaceSessionError as e:
        record_verification_metrics(type(e).__name__, time.time() - start_time, None)
        logger.error("Verification failed", error=e.to_dict(), correlation_id=correlation_id)
        raise session_error(e, correlation_id)

    if isinstance(outcome, NoFaceDetected):
        record_verification_metrics("no_face", time.time() - start_time, None)
        logger.info("Verification found no face", correlation_id=correlation_id)
        return ScanNoticeResponse(message=outcome.message)

    decision = "accepted" if outcome.accepted else "rejected"
    record_verification_metrics(decision, time.time() - start_time, outcome.similarity_percent)
    logger.info(
        "Verification completed",
        accepted=outcome.accepted,
        similarity_percent=outcome.similarity_percent,
        correlation_id=correlation_id
    )

    return VerificationResponse(
        accepted=outcome.accepted,
        similarityPercent=outcome.similarity_percent,
        message=outcome.message,
        detail=outcome.detail
    )


@router.post("/reset", response_model=SessionStatusResponse)
async def reset(http_request: Request) -> SessionStatusResponse:
    """Delete the enrolled signature. The attempt history is kept."""
    correlation_id = _correlation_id(http_request)
    controller = get_session_controller()

    try:
        controller.reset()
    except StoreError as e:
        logger.error("Reset failed", error=e.to_dict(), correlation_id=correlation_id)
        raise session_error(e, correlation_id)

    logger.info("Enrollment reset", correlation_id=correlation_id)
    return session_status()


@router.get("/status", response_model=SessionStatusResponse)
def session_status() -> SessionStatusResponse:
    """Current state machines and last observation."""
    controller = get_session_controller()
    state = controller.state
    observation = controller.observation

    return SessionStatusResponse(
        model=state.model.value,
        device=state.device.value,
        phase=state.phase.value,
        enrollmentPresent=state.enrollment_present,
        error=observation.error,
        info=observation.info,
        similarityPercent=observation.similarity_percent,
        modelProgress=observation.model_progress,
        statusText=status_label(state),
        statusVariant=status_variant(state),
        signalLevel=signal_level(observation.similarity_percent)
    )


@router.get("/attempts", response_model=AttemptListResponse)
def recent_attempts() -> AttemptListResponse:
    """Recent verification attempts, newest first."""
    controller = get_session_controller()

    return AttemptListResponse(
        attempts=[
            AttemptResponse(
                id=attempt.id,
                accepted=attempt.accepted,
                similarityPercent=attempt.similarity_percent,
                timestamp=attempt.timestamp
            )
            for attempt in controller.attempts
        ],
        capacity=controller.attempt_log.capacity
    )
