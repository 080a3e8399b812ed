"""
Error taxonomy for the face verification session.

Pre-flight errors (readiness, missing enrollment, busy session) are raised
before any frame is captured. Collaborator errors (capture, extraction,
storage) are wrapped at the boundary where they occur.
"""

from typing import Any, Dict, Optional


class FaceSessionError(Exception):
    """Base exception for all face session errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} [{context_str}]"

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class NotReadyError(FaceSessionError):
    """Raised when a capture-dependent operation runs before its prerequisites."""
    pass


class ModelNotReady(NotReadyError):
    """Raised when the feature-extraction models are not loaded."""
    pass


class DeviceNotReady(NotReadyError):
    """Raised when the capture device is not open."""
    pass


class NoEnrollment(FaceSessionError):
    """Raised when verification runs without an enrolled signature."""
    pass


class SessionBusy(FaceSessionError):
    """Raised when a workflow starts while another one is scanning."""
    pass


class SessionCancelled(FaceSessionError):
    """Raised by an in-flight workflow that was abandoned by a reset."""
    pass


class DescriptorShapeMismatch(FaceSessionError):
    """
    Raised when two descriptors of different shape are compared.

    Indicates an extractor/threshold misconfiguration and is never coerced.
    """
    pass


class CaptureError(FaceSessionError):
    """Raised when the capture device cannot be opened or yields no frame."""
    pass


class ExtractionError(FaceSessionError):
    """Raised when model loading or descriptor extraction fails."""
    pass


class StoreError(FaceSessionError):
    """Raised when the enrolled signature cannot be read or written."""
    pass
