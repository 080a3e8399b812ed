"""
Feature extraction service producing face descriptors with face_recognition (dlib).
"""

import asyncio
import importlib
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import cv2
import numpy as np

from faceid.config import settings
from faceid.exceptions import ExtractionError
from faceid.models.internal_models import Descriptor, ModelReadiness

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class FeatureExtractor(ABC):
    """Turns a frame into a fixed-length descriptor, or reports no face found."""

    @abstractmethod
    def readiness(self) -> ModelReadiness:
        """Current readiness of the extraction models."""

    @abstractmethod
    async def load(self, progress_callback: Optional[ProgressCallback] = None) -> None:
        """Load the models. Raises ExtractionError on failure."""

    @abstractmethod
    async def extract(self, frame: np.ndarray) -> Optional[Descriptor]:
        """Return the descriptor of the face in ``frame``, or None if no face was found."""


class FaceRecognitionExtractor(FeatureExtractor):
    """Extractor backed by the face_recognition library (128-d dlib ResNet descriptors)."""

    backend_module = "face_recognition"

    def __init__(
        self,
        descriptor_length: Optional[int] = None,
        detection_model: Optional[str] = None,
        num_jitters: Optional[int] = None
    ):
        """
        Initialize the extractor.

        Args:
            descriptor_length: Expected descriptor length (default: settings.descriptor_length)
            detection_model: "hog" (CPU) or "cnn" (dlib CNN detector)
            num_jitters: Re-sampling count used when encoding a face
        """
        self.descriptor_length = descriptor_length or settings.descriptor_length
        self.detection_model = detection_model or settings.detection_model
        self.num_jitters = num_jitters or settings.num_jitters

        self._backend = None
        self._readiness = ModelReadiness.IDLE

    def readiness(self) -> ModelReadiness:
        return self._readiness

    def _import_backend(self):
        return importlib.import_module(self.backend_module)

    def _warm_up(self, backend) -> None:
        blank = np.zeros((64, 64, 3), dtype=np.uint8)
        backend.face_locations(blank, model=self.detection_model)
        backend.face_encodings(blank, known_face_locations=[(0, 64, 64, 0)])

    async def load(self, progress_callback: Optional[ProgressCallback] = None) -> None:
        """
        Load detector, landmark and recognition models.

        Stages:
        1. Import the backend (loads the dlib model weights)
        2. Warm up detector and encoder on a blank frame

        Raises:
            ExtractionError: If any stage fails
        """
        if self._readiness == ModelReadiness.READY:
            return

        self._readiness = ModelReadiness.LOADING
        report = progress_callback or (lambda percent: None)

        try:
            logger.info(f"Loading face models via {self.backend_module}...")
            backend = await asyncio.to_thread(self._import_backend)
            report(50)

            await asyncio.to_thread(self._warm_up, backend)
            report(100)

        except Exception as e:
            self._readiness = ModelReadiness.ERROR
            logger.error(f"Failed to load face models: {e}")
            raise ExtractionError(f"Model loading failed: {e}", context={"backend": self.backend_module}) from e

        self._backend = backend
        self._readiness = ModelReadiness.READY
        logger.info("Face models loaded successfully")

    def _extract_sync(self, frame: np.ndarray) -> Optional[Descriptor]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        locations = self._backend.face_locations(rgb, number_of_times_to_upsample=1, model=self.detection_model)
        if not locations:
            return None

        # Keep the single largest face: (top, right, bottom, left)
        largest = max(locations, key=lambda box: (box[2] - box[0]) * (box[1] - box[3]))
        encodings = self._backend.face_encodings(rgb, known_face_locations=[largest], num_jitters=self.num_jitters)
        if not encodings:
            return None

        return np.asarray(encodings[0], dtype=np.float64)

    async def extract(self, frame: np.ndarray) -> Optional[Descriptor]:
        """
        Extract a descriptor from a BGR frame.

        Args:
            frame: BGR image as produced by the capture source

        Returns:
            Descriptor of the largest face, or None if no face was found

        Raises:
            ExtractionError: If models are not loaded, extraction fails,
                or the descriptor is malformed
        """
        if self._backend is None:
            raise ExtractionError("Face models are not loaded")

        if not isinstance(frame, np.ndarray) or frame.ndim != 3 or frame.shape[2] != 3:
            raise ExtractionError("Frame must be a BGR image", context={"shape": getattr(frame, "shape", None)})

        try:
            descriptor = await asyncio.to_thread(self._extract_sync, frame)
        except Exception as e:
            logger.error(f"Descriptor extraction failed: {e}")
            raise ExtractionError(f"Descriptor extraction failed: {e}") from e

        if descriptor is None:
            logger.debug("No face found in frame")
            return None

        if not self.validate_descriptor(descriptor):
            raise ExtractionError(
                "Extractor produced an invalid descriptor",
                context={"shape": descriptor.shape, "expected_length": self.descriptor_length}
            )

        logger.debug(f"Extracted descriptor with shape: {descriptor.shape}")
        return descriptor

    def validate_descriptor(self, descriptor: np.ndarray) -> bool:
        """
        Validate that a descriptor has the correct format and dimensions.

        Args:
            descriptor: Descriptor vector to validate

        Returns:
            bool: True if descriptor is valid, False otherwise
        """
        if not isinstance(descriptor, np.ndarray):
            return False

        if descriptor.ndim != 1 or descriptor.shape[0] != self.descriptor_length:
            return False

        return bool(np.isfinite(descriptor).all())

    def get_model_info(self) -> dict:
        """
        Get information about the loaded models.

        Returns:
            dict: Model information including status and configuration
        """
        return {
            "readiness": self._readiness.value,
            "backend": self.backend_module,
            "descriptor_length": self.descriptor_length,
            "detection_model": self.detection_model,
            "num_jitters": self.num_jitters
        }
