"""Observable status value shown to the user while capturing."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

log = logging.getLogger(__name__)


class StatusKind(Enum):
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    GUIDANCE = "guidance"
    DETECTING = "detecting"
    CAPTURED = "captured"
    CAPTURE_FAILED = "capture_failed"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"
    SETUP_ERROR = "setup_error"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Status:
    kind: StatusKind
    message: str
    progress: Optional[float] = None
    created_at: float = field(default_factory=time.time)

    @property
    def is_error(self) -> bool:
        return self.kind in (StatusKind.SETUP_ERROR, StatusKind.CAPTURE_FAILED, StatusKind.SUBMIT_FAILED)


StatusCallback = Callable[[Status], None]


class StatusChannel:
    """Holds the latest :class:`Status` and notifies subscribers on change.

    Publishing an identical kind and message again does not notify.
    A subscriber that raises is logged and skipped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[StatusCallback] = []
        self._value = Status(StatusKind.IDLE, "Camera inactive")

    @property
    def value(self) -> Status:
        return self._value

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, kind: StatusKind, message: str, progress: Optional[float] = None) -> Status:
        with self._lock:
            current = self._value
            if current.kind is kind and current.message == message:
                return current
            status = Status(kind, message, progress)
            self._value = status
            subscribers = list(self._subscribers)

        log.debug(f"Status [{kind.value}] {message}")
        for callback in subscribers:
            try:
                callback(status)
            except Exception as e:
                log.warning(f"Status subscriber failed: {e}")
        return status
