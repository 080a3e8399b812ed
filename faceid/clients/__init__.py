"""Client modules for the capture device and signature storage."""

from faceid.clients.capture_client import (
    CameraCaptureSource,
    CaptureSource
)

from faceid.clients.signature_store import (
    InMemorySignatureStore,
    JsonFileSignatureStore,
    SignatureStore
)

__all__ = [
    "CameraCaptureSource",
    "CaptureSource",
    "InMemorySignatureStore",
    "JsonFileSignatureStore",
    "SignatureStore"
]
