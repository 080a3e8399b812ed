"""Storage for the single enrolled face signature."""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np

from faceid.config import settings
from faceid.exceptions import StoreError
from faceid.models.internal_models import Descriptor

logger = logging.getLogger(__name__)


class SignatureStore(ABC):
    """Single-slot store for the enrolled descriptor."""

    @abstractmethod
    def get(self) -> Optional[Descriptor]:
        """Return the enrolled descriptor, or None if nothing is enrolled."""

    @abstractmethod
    def put(self, descriptor: Descriptor) -> None:
        """Persist a descriptor, replacing any prior enrollment."""

    @abstractmethod
    def clear(self) -> None:
        """Delete the enrolled descriptor."""


class InMemorySignatureStore(SignatureStore):
    """Process-local signature store."""

    def __init__(self, descriptor: Optional[Descriptor] = None):
        self._descriptor: Optional[np.ndarray] = None
        self._lock = threading.Lock()
        if descriptor is not None:
            self.put(descriptor)

    def get(self) -> Optional[Descriptor]:
        with self._lock:
            return None if self._descriptor is None else self._descriptor.copy()

    def put(self, descriptor: Descriptor) -> None:
        with self._lock:
            self._descriptor = np.array(descriptor, dtype=np.float64)

    def clear(self) -> None:
        with self._lock:
            self._descriptor = None


class JsonFileSignatureStore(SignatureStore):
    """
    Signature store backed by a JSON file.

    The record has the shape ``{"descriptor": [...], "enrolled_at": "<iso>"}``
    and is replaced atomically on every write.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.signature_store_path)

    def get(self) -> Optional[Descriptor]:
        """Retrieve the enrolled descriptor."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read signature file {self.path}: {e}")
            raise StoreError("Failed to read enrolled signature", context={"path": str(self.path)}) from e

        try:
            record = json.loads(raw)
            descriptor = np.array(record["descriptor"], dtype=np.float64)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt signature file {self.path}: {e}")
            raise StoreError("Enrolled signature is corrupt", context={"path": str(self.path)}) from e

        if descriptor.ndim != 1 or descriptor.size == 0:
            raise StoreError("Enrolled signature is corrupt", context={"path": str(self.path)})

        return descriptor

    def put(self, descriptor: Descriptor) -> None:
        """Write the descriptor, replacing any existing enrollment."""
        record = {
            "descriptor": np.asarray(descriptor, dtype=np.float64).tolist(),
            "enrolled_at": datetime.now(timezone.utc).isoformat()
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as temp_file:
                    json.dump(record, temp_file)
                os.replace(temp_path, self.path)
            except BaseException:
                Path(temp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error(f"Failed to write signature file {self.path}: {e}")
            raise StoreError("Failed to store enrolled signature", context={"path": str(self.path)}) from e

        logger.info(f"Stored enrolled signature at {self.path}")

    def clear(self) -> None:
        """Delete the signature file if present."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete signature file {self.path}: {e}")
            raise StoreError("Failed to delete enrolled signature", context={"path": str(self.path)}) from e

        logger.info(f"Cleared enrolled signature at {self.path}")
