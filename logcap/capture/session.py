"""Capture session records."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .process import CapturedProcess, SessionWriter
from .resolver import TargetKind


class SessionState(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(slots=True)
class CaptureSession:
    """Everything the controller needs to stop a running capture."""

    session_id: str
    target_kind: TargetKind
    target_id: str
    bundle_id: str
    log_file_path: Path
    processes: Tuple[CapturedProcess, ...]
    writer: SessionWriter
    capture_console: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    degraded: bool = False
    failed_commands: List[str] = field(default_factory=list)
    state: SessionState = SessionState.STARTING

    def summary(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "targetKind": self.target_kind.value,
            "targetId": self.target_id,
            "bundleId": self.bundle_id,
            "logFilePath": str(self.log_file_path),
            "captureConsole": self.capture_console,
            "createdAt": self.created_at.isoformat(timespec="seconds"),
            "state": self.state.value,
            "degraded": self.degraded,
            "processes": [
                {"label": handle.label, "pid": handle.pid, "state": handle.state.describe()}
                for handle in self.processes
            ],
        }


__all__ = ["CaptureSession", "SessionState"]
