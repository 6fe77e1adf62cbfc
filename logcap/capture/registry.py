"""In-memory registry of active capture sessions."""
from __future__ import annotations

from typing import Dict, List, Optional

from .session import CaptureSession


class SessionRegistry:
    """Holds live sessions keyed by id for the lifetime of the process.

    Mutations are plain dict operations; the controller only touches the
    registry between awaits on a single event loop.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, CaptureSession] = {}

    def put(self, session_id: str, session: CaptureSession) -> None:
        if session_id in self._sessions:
            raise KeyError(f"session already registered: {session_id}")
        self._sessions[session_id] = session

    def get(self, session_id: str) -> Optional[CaptureSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[CaptureSession]:
        return self._sessions.pop(session_id, None)

    def ids(self) -> List[str]:
        return list(self._sessions)

    def sessions(self) -> List[CaptureSession]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["SessionRegistry"]
