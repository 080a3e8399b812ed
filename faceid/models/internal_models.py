"""Internal data models for the face verification session."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np

# Fixed-length facial signature (1-D float64 vector)
Descriptor = np.ndarray


class ModelReadiness(str, Enum):
    """Readiness of the feature-extraction models."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class DeviceReadiness(str, Enum):
    """Readiness of the capture device."""

    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"
    ERROR = "error"


class ScanPhase(str, Enum):
    """Phase of the current enroll/verify invocation."""

    IDLE = "idle"
    SCANNING = "scanning"
    DETECTED = "detected"
    VERIFIED = "verified"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of the three session state machines."""

    model: ModelReadiness = ModelReadiness.IDLE
    device: DeviceReadiness = DeviceReadiness.IDLE
    phase: ScanPhase = ScanPhase.IDLE
    enrollment_present: bool = False


@dataclass
class SessionObservation:
    """
    Last user-facing observation, overwritten on every transition.

    ``error`` (attention) and ``info`` (advisory) are never both set.
    """

    error: Optional[str] = None
    info: Optional[str] = None
    similarity_percent: Optional[int] = None
    model_progress: int = 0


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing two descriptors."""

    distance: float
    similarity: float
    similarity_percent: int
    accepted: bool


@dataclass(frozen=True)
class Attempt:
    """Internal model for a logged verification attempt."""

    id: str
    accepted: bool
    similarity_percent: int
    timestamp: datetime

    def __post_init__(self):
        """Validate score range after initialization."""
        if not 0 <= self.similarity_percent <= 100:
            raise ValueError(f"Similarity must be between 0 and 100, got {self.similarity_percent}")


@dataclass(frozen=True)
class EnrollmentResult:
    """Successful enrollment outcome."""

    message: str
    status: str = "enrolled"


@dataclass(frozen=True)
class VerificationResult:
    """Terminal verification outcome reported to the caller."""

    accepted: bool
    similarity_percent: int
    message: str
    detail: str
    attempt: Optional[Attempt] = field(default=None, compare=False)


@dataclass(frozen=True)
class NoFaceDetected:
    """Recoverable outcome: the extractor found no face in the frame."""

    message: str
