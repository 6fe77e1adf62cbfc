"""Start and stop capture sessions."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from ..config import LogcapSettings, parse_subsystem_filter
from ..errors import CaptureError, ConfigurationError, SessionNotFoundError
from ..store.logfiles import LogFileStore
from .process import ProcessSpawner, SessionWriter, SpawnOutcome, terminate_all
from .registry import SessionRegistry
from .resolver import (
    CaptureRequest,
    CommandRole,
    SubsystemFilter,
    TargetKind,
    TargetResolver,
    resolve_commands,
)
from .session import CaptureSession, SessionState

if TYPE_CHECKING:  # pragma: no cover
    from ..targets import TargetDirectory

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StartResult:
    session_id: Optional[str] = None
    log_file_path: Optional[Path] = None
    process_count: int = 0
    console_launched: bool = False
    degraded: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.session_id is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sessionId": self.session_id,
            "logFilePath": str(self.log_file_path) if self.log_file_path else None,
            "processCount": self.process_count,
            "consoleLaunched": self.console_launched,
            "degraded": self.degraded,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class StopResult:
    session_id: str
    log_content: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"sessionId": self.session_id, "logContent": self.log_content}
        if self.error is not None:
            data["error"] = self.error
        return data


class CaptureController:
    """Owns the session registry and drives every session from start to stop."""

    def __init__(
        self,
        settings: Optional[LogcapSettings] = None,
        *,
        registry: Optional[SessionRegistry] = None,
        store: Optional[LogFileStore] = None,
        spawner: Optional[ProcessSpawner] = None,
        directory: Optional[TargetDirectory] = None,
        resolvers: Optional[Dict[TargetKind, TargetResolver]] = None,
    ) -> None:
        self.settings = settings or LogcapSettings()
        self.registry = registry if registry is not None else SessionRegistry()
        self.store = store or LogFileStore(self.settings.log_dir, self.settings.file_prefix)
        self._spawner = spawner or ProcessSpawner(chunk_size=self.settings.read_chunk_size)
        self._directory = directory
        self._resolvers = resolvers

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------
    async def start_capture(
        self,
        target_kind: str | TargetKind,
        target_id: str,
        bundle_id: str,
        *,
        capture_console: bool = False,
        launch_args: Optional[Sequence[str]] = None,
        subsystem_filter: Optional[SubsystemFilter] = None,
    ) -> StartResult:
        if subsystem_filter is None:
            subsystem_filter = parse_subsystem_filter(self.settings.default_subsystem_filter)
        request = CaptureRequest(
            target_kind=target_kind,
            target_id=target_id,
            bundle_id=bundle_id,
            capture_console=capture_console,
            launch_args=list(launch_args or []),
            subsystem_filter=subsystem_filter,
        )
        return await self.start(request)

    async def start(self, request: CaptureRequest) -> StartResult:
        try:
            kind = TargetKind.parse(request.target_kind)
            commands = resolve_commands(request, self._resolvers)
            await self._confirm_target(kind, request.target_id)
        except CaptureError as exc:
            logger.error("Failed to start log capture: %s", exc)
            return StartResult(error=str(exc))

        await self.store.cleanup(self.settings.retention_days)

        session_id = self._new_session_id()
        try:
            log_file_path = await self.store.prepare(session_id)
        except OSError as exc:
            logger.error("Failed to create log file for %s: %s", session_id, exc)
            return StartResult(error=f"could not create log file: {exc}")

        writer = SessionWriter(log_file_path)
        outcome = SpawnOutcome()
        try:
            await self._spawner.spawn_all(commands, writer, outcome)
        except OSError as exc:
            await self._abandon(outcome, writer)
            logger.error("Failed to open log file %s: %s", log_file_path, exc)
            return StartResult(error=f"could not open log file: {exc}")
        except BaseException:
            await self._abandon(outcome, writer)
            raise

        if not outcome.launched(CommandRole.LOG_STREAM):
            await self._abandon(outcome, writer)
            message = "; ".join(str(failure.error) for failure in outcome.failures) or "no capture process started"
            logger.error("Failed to start log capture for %s: %s", request.bundle_id, message)
            return StartResult(error=message)

        failed = [failure.command.label for failure in outcome.failures]
        session = CaptureSession(
            session_id=session_id,
            target_kind=kind,
            target_id=request.target_id,
            bundle_id=request.bundle_id,
            log_file_path=log_file_path,
            processes=tuple(outcome.processes),
            writer=writer,
            capture_console=request.capture_console,
            degraded=bool(failed),
            failed_commands=failed,
        )
        self.registry.put(session_id, session)
        session.state = SessionState.ACTIVE

        error = "; ".join(str(failure.error) for failure in outcome.failures) or None
        if error:
            logger.warning("Log capture %s started degraded: %s", session_id, error)
        logger.info("Log capture started with session ID: %s", session_id)
        return StartResult(
            session_id=session_id,
            log_file_path=log_file_path,
            process_count=len(outcome.processes),
            console_launched=outcome.launched(CommandRole.CONSOLE),
            degraded=session.degraded,
            error=error,
        )

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------
    async def stop_capture(self, session_id: str) -> StopResult:
        return await self.stop(session_id)

    async def stop(self, session_id: str) -> StopResult:
        session = self.registry.get(session_id)
        if session is None or session.state is not SessionState.ACTIVE:
            error = SessionNotFoundError(session_id)
            logger.warning("%s", error)
            return StopResult(session_id=session_id, error=str(error))

        logger.info("Stopping log capture session %s", session_id)
        session.state = SessionState.STOPPING
        try:
            await terminate_all(
                session.processes,
                grace=self.settings.grace_period,
                kill_timeout=self.settings.kill_timeout,
                drain_timeout=self.settings.drain_timeout,
            )
        except OSError as exc:
            logger.warning("Could not signal processes of %s: %s", session_id, exc)
        finally:
            self.registry.remove(session_id)

        write_error: Optional[str] = None
        try:
            await session.writer.close()
        except OSError as exc:
            write_error = f"log file write failed: {exc}"
            logger.error("Failed to write log file for %s: %s", session_id, exc)
        session.state = SessionState.STOPPED
        logger.info("Log capture session %s stopped. Log file retained at: %s", session_id, session.log_file_path)

        try:
            content = await self.store.read(session.log_file_path)
        except CaptureError as exc:
            logger.error("Failed to stop log capture session %s: %s", session_id, exc)
            return StopResult(session_id=session_id, error=str(exc))
        return StopResult(session_id=session_id, log_content=content, error=write_error)

    async def stop_all(self) -> List[StopResult]:
        """Stop every live session, e.g. at interpreter shutdown."""
        active = [session.session_id for session in self.registry.sessions() if session.state is SessionState.ACTIVE]
        return list(await asyncio.gather(*(self.stop(session_id) for session_id in active)))

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [session.summary() for session in self.registry.sessions()]

    # ------------------------------------------------------------------
    async def _confirm_target(self, kind: TargetKind, target_id: str) -> None:
        if self._directory is None:
            return
        if not await self._directory.exists(kind, target_id):
            raise ConfigurationError(f"{kind.value} not found: {target_id}")

    async def _abandon(self, outcome: SpawnOutcome, writer: SessionWriter) -> None:
        await terminate_all(
            outcome.processes,
            grace=self.settings.grace_period,
            kill_timeout=self.settings.kill_timeout,
            drain_timeout=self.settings.drain_timeout,
        )
        try:
            await writer.close()
        except OSError as exc:
            logger.warning("Failed to close log file %s: %s", writer.path, exc)

    def _new_session_id(self) -> str:
        while True:
            session_id = str(uuid.uuid4())
            if session_id not in self.registry:
                return session_id


__all__ = ["CaptureController", "StartResult", "StopResult"]
