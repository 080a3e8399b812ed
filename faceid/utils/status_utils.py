"""
Status helpers for rendering the session state.

These derive display values from a SessionState snapshot and never feed back
into the state machines.
"""

import math
from typing import Optional

from faceid.models.internal_models import (
    DeviceReadiness,
    ModelReadiness,
    ScanPhase,
    SessionState
)

_PHASE_LABELS = {
    ScanPhase.SCANNING: "Looking for a face…",
    ScanPhase.DETECTED: "Face detected",
    ScanPhase.VERIFIED: "Verified",
    ScanPhase.REJECTED: "Not verified",
}


def status_label(state: SessionState) -> str:
    """Single-line status, most urgent condition first."""
    if state.model == ModelReadiness.LOADING:
        return "Models loading…"
    if state.model == ModelReadiness.ERROR:
        return "Model error"
    if state.device == DeviceReadiness.PENDING:
        return "Camera permission pending"
    if state.device == DeviceReadiness.ERROR:
        return "Camera blocked"
    if state.phase in _PHASE_LABELS:
        return _PHASE_LABELS[state.phase]
    if state.device == DeviceReadiness.READY and state.model == ModelReadiness.READY:
        return "Camera ready"
    return "System idle"


def status_variant(state: SessionState) -> str:
    """Badge variant: success, destructive, warning or secondary."""
    if state.phase == ScanPhase.VERIFIED:
        return "success"
    if state.phase == ScanPhase.REJECTED or state.device == DeviceReadiness.ERROR:
        return "destructive"
    if state.phase == ScanPhase.SCANNING or state.model == ModelReadiness.LOADING:
        return "warning"
    return "secondary"


def signal_level(similarity_percent: Optional[int]) -> int:
    """Four-bar signal meter for the last similarity; 0 when unknown."""
    if similarity_percent is None:
        return 0
    return min(4, max(1, math.ceil(similarity_percent / 25)))
