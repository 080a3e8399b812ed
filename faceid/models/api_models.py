"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EnrollmentResponse(BaseModel):
    """Response model for the enrollment endpoint."""

    status: str = Field(..., description="Enrollment status")
    message: str = Field(..., description="Human-readable enrollment message")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "status": "enrolled",
            "message": "Enrollment complete. Your face is ready to be verified."
        }
    })


class VerificationResponse(BaseModel):
    """Verification result consumed by presentation layers and downstream policy."""

    accepted: bool = Field(..., description="Whether the identity claim was accepted")
    similarityPercent: int = Field(..., ge=0, le=100, description="Similarity to the enrolled signature")
    message: str = Field(..., description="Human-readable verification result message")
    detail: str = Field(..., description="Additional explanation of the result")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "accepted": True,
            "similarityPercent": 82,
            "message": "Verification successful. Welcome.",
            "detail": "High match with the enrolled profile."
        }
    })


class ScanNoticeResponse(BaseModel):
    """Informational response when a scan found no face."""

    status: str = Field("no_face", description="Scan outcome")
    message: str = Field(..., description="Retry hint for the user")


class ReadinessResponse(BaseModel):
    """Response model for model/camera readiness operations."""

    state: str = Field(..., description="Resulting readiness state")
    message: Optional[str] = Field(None, description="Attention message, if any")


class AttemptResponse(BaseModel):
    """A single logged verification attempt."""

    id: str
    accepted: bool
    similarityPercent: int = Field(..., ge=0, le=100)
    timestamp: datetime


class AttemptListResponse(BaseModel):
    """Recent attempts, newest first."""

    attempts: List[AttemptResponse]
    capacity: int


class SessionStatusResponse(BaseModel):
    """Full session status for rendering."""

    model: str
    device: str
    phase: str
    enrollmentPresent: bool
    error: Optional[str] = None
    info: Optional[str] = None
    similarityPercent: Optional[int] = None
    modelProgress: int = 0
    statusText: str
    statusVariant: str
    signalLevel: int


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Request correlation ID for tracing")
    timestamp: datetime = Field(..., description="Error timestamp")
