"""Error taxonomy for the capture engine."""
from __future__ import annotations

from typing import Optional


class CaptureError(RuntimeError):
    """Base class for every failure the capture engine reports to callers."""


class ConfigurationError(CaptureError):
    """Raised before anything is spawned when a request cannot be resolved."""


class TargetLookupError(CaptureError):
    """Raised when the platform tooling cannot list targets."""


class SpawnError(CaptureError):
    """Raised when the OS refuses to start a capture process."""

    def __init__(self, label: str, message: str) -> None:
        super().__init__(f"{label} failed to start: {message}")
        self.label = label


class SessionNotFoundError(CaptureError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class LogFileMissingError(CaptureError):
    def __init__(self, path: object, reason: Optional[str] = None) -> None:
        message = f"log file not found: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.path = path


class TerminationTimeout(CaptureError):
    """Internal signal that a process outlived its grace period."""


__all__ = [
    "CaptureError",
    "ConfigurationError",
    "LogFileMissingError",
    "SessionNotFoundError",
    "SpawnError",
    "TargetLookupError",
    "TerminationTimeout",
]
