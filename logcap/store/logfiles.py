"""Log file locations and housekeeping for capture sessions."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import List

from ..errors import LogFileMissingError

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


class LogFileStore:
    """Owns the directory holding one append-only ``.log`` file per session."""

    def __init__(self, root: Path, prefix: str = "logcap") -> None:
        self.root = root.expanduser()
        self.prefix = prefix

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{self.prefix}-{session_id}.log"

    async def prepare(self, session_id: str) -> Path:
        """Create the empty artifact for ``session_id`` and return its path."""
        path = self.path_for(session_id)
        await asyncio.to_thread(self._create, path)
        return path

    async def read(self, path: Path) -> str:
        try:
            return await asyncio.to_thread(self._read, path)
        except FileNotFoundError:
            raise LogFileMissingError(path) from None
        except PermissionError as exc:
            raise LogFileMissingError(path, exc.strerror or "not readable") from exc

    async def cleanup(self, retention_days: int) -> List[Path]:
        """Delete artifacts older than ``retention_days``; failures are only logged."""
        if retention_days <= 0:
            return []
        return await asyncio.to_thread(self._cleanup, retention_days * _SECONDS_PER_DAY)

    def list_files(self) -> List[Path]:
        if not self.root.is_dir():
            return []
        return sorted(
            path
            for path in self.root.iterdir()
            if path.name.startswith(f"{self.prefix}-") and path.suffix == ".log" and path.is_file()
        )

    # ------------------------------------------------------------------
    def _create(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    @staticmethod
    def _read(path: Path) -> str:
        if not path.is_file():
            raise FileNotFoundError(path)
        if not os.access(path, os.R_OK):
            raise PermissionError(13, "not readable", str(path))
        return path.read_text(encoding="utf-8", errors="replace")

    def _cleanup(self, max_age: float) -> List[Path]:
        now = time.time()
        removed: List[Path] = []
        try:
            candidates = self.list_files()
        except OSError as exc:
            logger.warning("Could not read %s for log cleanup: %s", self.root, exc)
            return removed
        for path in candidates:
            try:
                if now - path.stat().st_mtime > max_age:
                    path.unlink()
                    removed.append(path)
                    logger.info("Deleted old log file: %s", path)
            except OSError as exc:
                logger.warning("Error during log cleanup for %s: %s", path, exc)
        return removed


__all__ = ["LogFileStore"]
