"""
Error taxonomy for tunebox.

Background cache failures are absorbed and logged; engine failures surface as
the ERROR playback state; guard rejections are logged only.
"""

from enum import Enum
from typing import Optional


class TuneboxError(Exception):
    """Base class for all tunebox errors."""


class NetworkError(TuneboxError):
    """Stream resolution or transfer failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(TuneboxError):
    """Disk write/verify failure."""


class InsufficientSpaceError(StorageError):
    """Not enough free space for a download (including the safety margin)."""

    def __init__(self, required_bytes: int, free_bytes: int):
        super().__init__(f"Need {required_bytes} bytes, only {free_bytes} free")
        self.required_bytes = required_bytes
        self.free_bytes = free_bytes


class PlaybackEngineError(TuneboxError):
    """Device, codec or source failure reported by the media engine."""


class CacheCorruption(TuneboxError):
    """Recorded size or hash does not match the file on disk."""

    def __init__(self, track_id: str, reason: str):
        super().__init__(f"Cache entry {track_id} corrupt: {reason}")
        self.track_id = track_id
        self.reason = reason


class ConcurrencyGuardRejection(TuneboxError):
    """A duplicate in-flight request was suppressed."""


class FailureSeverity(Enum):
    """How a failed queue mutation is treated by the optimistic executor."""

    CRITICAL = "critical"  # Roll the visible queue back to the last known-good snapshot
    TRANSIENT = "transient"  # Log only


class QueueMutationError(TuneboxError):
    """A queue mutation failed with an explicit severity."""

    def __init__(self, message: str, severity: FailureSeverity = FailureSeverity.CRITICAL):
        super().__init__(message)
        self.severity = severity


def classify_failure(exc: BaseException) -> FailureSeverity:
    """
    Classify a queue mutation failure.

    Rejections by the queue store itself (bad index, unknown id, invalid
    argument) mean the optimistic view no longer matches the store, so they
    are critical. Anything else is treated as transient.
    """
    if isinstance(exc, QueueMutationError):
        return exc.severity
    if isinstance(exc, (IndexError, KeyError, ValueError)):
        return FailureSeverity.CRITICAL
    return FailureSeverity.TRANSIENT
