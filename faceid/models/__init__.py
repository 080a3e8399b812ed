"""Data models for the face verification session."""

from .api_models import (
    AttemptListResponse,
    AttemptResponse,
    EnrollmentResponse,
    ErrorResponse,
    HealthResponse,
    ReadinessResponse,
    ScanNoticeResponse,
    SessionStatusResponse,
    VerificationResponse
)
from .internal_models import (
    Attempt,
    Descriptor,
    DeviceReadiness,
    EnrollmentResult,
    MatchResult,
    ModelReadiness,
    NoFaceDetected,
    ScanPhase,
    SessionObservation,
    SessionState,
    VerificationResult
)

__all__ = [
    "AttemptListResponse",
    "AttemptResponse",
    "EnrollmentResponse",
    "ErrorResponse",
    "HealthResponse",
    "ReadinessResponse",
    "ScanNoticeResponse",
    "SessionStatusResponse",
    "VerificationResponse",
    "Attempt",
    "Descriptor",
    "DeviceReadiness",
    "EnrollmentResult",
    "MatchResult",
    "ModelReadiness",
    "NoFaceDetected",
    "ScanPhase",
    "SessionObservation",
    "SessionState",
    "VerificationResult"
]
