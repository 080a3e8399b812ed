"""
Descriptor comparison for face verification.

Compares an enrolled descriptor against a live one by Euclidean distance and
derives an integer similarity percentage relative to the match threshold.
"""

import logging
import math
from typing import Sequence, Union

import numpy as np

from faceid.exceptions import DescriptorShapeMismatch
from faceid.models.internal_models import MatchResult

logger = logging.getLogger(__name__)

DescriptorLike = Union[np.ndarray, Sequence[float]]


def _as_descriptor(values: DescriptorLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def euclidean_distance(stored: np.ndarray, candidate: np.ndarray) -> float:
    """Euclidean distance between two equal-shape descriptors."""
    return float(np.sqrt(np.sum((stored - candidate) ** 2)))


def similarity_percent(similarity: float) -> int:
    """Convert a similarity in [0, 1] to an integer percentage, rounding half up."""
    return int(math.floor(similarity * 100 + 0.5))


def compare(stored: DescriptorLike, candidate: DescriptorLike, threshold: float) -> MatchResult:
    """
    Compare an enrolled descriptor against a candidate descriptor.

    Args:
        stored: Enrolled descriptor
        candidate: Freshly extracted descriptor
        threshold: Maximum Euclidean distance still considered a match

    Returns:
        MatchResult with distance, similarity and the accept decision

    Raises:
        DescriptorShapeMismatch: If the descriptors differ in shape
        ValueError: If threshold is not a positive finite number
    """
    stored_vec = _as_descriptor(stored)
    candidate_vec = _as_descriptor(candidate)

    if stored_vec.ndim != 1 or stored_vec.shape != candidate_vec.shape:
        raise DescriptorShapeMismatch(
            "Descriptor dimensions don't match",
            context={"stored": stored_vec.shape, "candidate": candidate_vec.shape}
        )

    if not math.isfinite(threshold) or threshold <= 0.0:
        raise ValueError(f"Threshold must be a positive distance, got: {threshold}")

    distance = euclidean_distance(stored_vec, candidate_vec)
    similarity = min(1.0, max(0.0, 1.0 - distance / threshold))
    result = MatchResult(
        distance=distance,
        similarity=similarity,
        similarity_percent=similarity_percent(similarity),
        accepted=distance < threshold
    )

    logger.debug(
        f"Face comparison: distance={distance:.4f}, threshold={threshold}, "
        f"similarity={result.similarity_percent}%, match={result.accepted}"
    )
    return result
