"""Bounded, newest-first log of recent verification attempts."""

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from faceid.config import settings
from faceid.models.internal_models import Attempt

logger = logging.getLogger(__name__)


class AttemptLog:
    """
    Keeps the most recent verification attempts.

    Insertion and eviction of the oldest entry happen under a single lock,
    so a concurrent snapshot sees either the log before or after an append.
    """

    def __init__(self, capacity: Optional[int] = None):
        self._capacity = capacity if capacity is not None else settings.attempt_log_capacity
        if self._capacity <= 0:
            raise ValueError(f"Attempt log capacity must be positive, got {self._capacity}")
        self._entries: Deque[Attempt] = deque(maxlen=self._capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, attempt: Attempt) -> None:
        """Insert an attempt at the head, evicting the oldest when full."""
        with self._lock:
            self._entries.appendleft(attempt)
        logger.debug(f"Logged attempt {attempt.id}: accepted={attempt.accepted}, similarity={attempt.similarity_percent}%")

    def record(self, accepted: bool, similarity_percent: int) -> Attempt:
        """Build an attempt stamped with a fresh id and the current UTC time, and append it."""
        attempt = Attempt(
            id=uuid.uuid4().hex,
            accepted=accepted,
            similarity_percent=similarity_percent,
            timestamp=datetime.now(timezone.utc)
        )
        self.append(attempt)
        return attempt

    def snapshot(self) -> List[Attempt]:
        """Return the logged attempts, newest first."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
