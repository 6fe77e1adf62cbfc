"""Capture session engine."""

from .controller import CaptureController, StartResult, StopResult
from .process import CapturedProcess, ProcessSpawner, ProcessState, ProcessStatus, SessionWriter
from .registry import SessionRegistry
from .resolver import CaptureRequest, CommandRole, LogCommand, TargetKind, resolve_commands
from .session import CaptureSession, SessionState

__all__ = [
    "CaptureController",
    "CaptureRequest",
    "CaptureSession",
    "CapturedProcess",
    "CommandRole",
    "LogCommand",
    "ProcessSpawner",
    "ProcessState",
    "ProcessStatus",
    "SessionRegistry",
    "SessionState",
    "SessionWriter",
    "StartResult",
    "StopResult",
    "TargetKind",
    "resolve_commands",
]
