"""
Camera client for live frame capture.

This module wraps an OpenCV video device behind the capture source contract
used by the session controller: open the device, pull single frames, release.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from faceid.config import settings
from faceid.exceptions import CaptureError
from faceid.models.internal_models import DeviceReadiness

logger = logging.getLogger(__name__)


class CaptureSource(ABC):
    """Supplies readiness state and individual frames on demand."""

    @abstractmethod
    def readiness(self) -> DeviceReadiness:
        """Current readiness of the device."""

    @abstractmethod
    async def open(self) -> None:
        """Request access to the device. Raises CaptureError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Release the device."""

    @abstractmethod
    async def next_frame(self) -> np.ndarray:
        """Return one BGR frame. Raises CaptureError on failure."""


class CameraCaptureSource(CaptureSource):
    """
    OpenCV-backed capture source.

    Blocking OpenCV calls run in a worker thread so the event loop only
    suspends while the device is being opened or read.
    """

    def __init__(
        self,
        device_index: Optional[int] = None,
        frame_width: Optional[int] = None,
        frame_height: Optional[int] = None
    ):
        """
        Initialize camera capture source.

        Args:
            device_index: OpenCV device index (default: settings.camera_index)
            frame_width: Requested frame width in pixels
            frame_height: Requested frame height in pixels
        """
        self.device_index = settings.camera_index if device_index is None else device_index
        self.frame_width = frame_width or settings.frame_width
        self.frame_height = frame_height or settings.frame_height

        self._capture = None
        self._readiness = DeviceReadiness.IDLE

    def readiness(self) -> DeviceReadiness:
        return self._readiness

    def _open_device(self) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(self.device_index)
        if not capture.isOpened():
            capture.release()
            raise CaptureError(
                "Camera access denied or device unavailable",
                context={"device_index": self.device_index}
            )
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        return capture

    async def open(self) -> None:
        """
        Open the camera device.

        Raises:
            CaptureError: If the device cannot be opened
        """
        if self._capture is not None:
            return

        logger.info(f"Opening camera device {self.device_index}")
        self._readiness = DeviceReadiness.PENDING
        try:
            self._capture = await asyncio.to_thread(self._open_device)
        except CaptureError:
            self._readiness = DeviceReadiness.ERROR
            logger.error(f"Camera device {self.device_index} could not be opened")
            raise
        except Exception as e:
            self._readiness = DeviceReadiness.ERROR
            logger.error(f"Unexpected error opening camera device {self.device_index}: {e}")
            raise CaptureError(f"Camera open failed: {e}", context={"device_index": self.device_index}) from e

        self._readiness = DeviceReadiness.READY
        logger.info(f"Camera device {self.device_index} ready")

    async def close(self) -> None:
        """Release the camera device."""
        capture, self._capture = self._capture, None
        self._readiness = DeviceReadiness.IDLE
        if capture is None:
            return
        try:
            await asyncio.to_thread(capture.release)
            logger.info(f"Released camera device {self.device_index}")
        except Exception as e:
            logger.warning(f"Error releasing camera device {self.device_index}: {e}")

    async def next_frame(self) -> np.ndarray:
        """
        Read a single frame from the camera.

        Returns:
            BGR frame as a (height, width, 3) uint8 array

        Raises:
            CaptureError: If the camera is closed or returns an empty frame
        """
        if self._capture is None:
            raise CaptureError("Camera is not open", context={"device_index": self.device_index})

        try:
            ok, frame = await asyncio.to_thread(self._capture.read)
        except Exception as e:
            self._readiness = DeviceReadiness.ERROR
            logger.error(f"Frame read failed on camera device {self.device_index}: {e}")
            raise CaptureError(f"Frame read failed: {e}", context={"device_index": self.device_index}) from e

        if not ok or frame is None or frame.size == 0:
            raise CaptureError(
                "The camera is not delivering frames yet",
                context={"device_index": self.device_index}
            )

        return frame
