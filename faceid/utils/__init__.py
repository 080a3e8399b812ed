# Utilities module

from .status_utils import (
    signal_level,
    status_label,
    status_variant,
)

__all__ = [
    "signal_level",
    "status_label",
    "status_variant",
]
