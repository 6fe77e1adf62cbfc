"""Spawn capture processes and funnel their output into one session file."""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from ..errors import SpawnError, TerminationTimeout
from .resolver import CommandRole, LogCommand

logger = logging.getLogger(__name__)

_FORCE_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)
_USE_PROCESS_GROUPS = os.name == "posix"

ProcessFactory = Callable[..., Awaitable[asyncio.subprocess.Process]]


class SessionWriter:
    """Single consumer that appends queued chunks to the session log file.

    Every producer pushes bytes with :meth:`put`; one task drains the queue and
    owns the file handle, so writes from sibling processes never interleave
    inside a chunk and each producer's order is preserved. After a failed
    write the writer stops accepting output and :meth:`close` raises the error.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.bytes_written = 0
        self.bytes_dropped = 0
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._error: Optional[OSError] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failed(self) -> bool:
        return self._error is not None

    def open(self) -> None:
        if self._task is not None:
            return
        fh = self.path.open("ab")
        self._task = asyncio.create_task(self._consume(fh), name=f"logcap-writer:{self.path.name}")

    def put(self, chunk: bytes) -> None:
        if self._closed:
            logger.warning("Dropping %d bytes written after %s was closed", len(chunk), self.path)
            return
        if self._error is not None:
            if not self.bytes_dropped:
                logger.warning("Dropping output for %s after write failure: %s", self.path, self._error)
            self.bytes_dropped += len(chunk)
            return
        self._queue.put_nowait(chunk)

    async def close(self) -> None:
        """Flush everything queued so far and close the file."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            self._queue.put_nowait(None)
            await self._task
        if self._error is not None:
            raise self._error

    async def _consume(self, fh) -> None:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                try:
                    fh.write(chunk)
                    fh.flush()
                except OSError as exc:
                    self._fail(exc)
                    break
                self.bytes_written += len(chunk)
        finally:
            try:
                fh.close()
            except OSError as exc:
                if self._error is None:
                    self._fail(exc)

    def _fail(self, exc: OSError) -> None:
        self._error = exc
        logger.error("Writing to %s failed, capture output is no longer saved: %s", self.path, exc)
        while not self._queue.empty():
            chunk = self._queue.get_nowait()
            if chunk is not None:
                self.bytes_dropped += len(chunk)


class ProcessStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"


@dataclass(frozen=True, slots=True)
class ProcessState:
    status: ProcessStatus
    exit_code: Optional[int] = None

    def describe(self) -> str:
        if self.exit_code is None:
            return self.status.value
        return f"{self.status.value}({self.exit_code})"


class CapturedProcess:
    """One external process feeding a capture session."""

    def __init__(self, command: LogCommand, *, chunk_size: int = 4096) -> None:
        self.command = command
        self.state = ProcessState(ProcessStatus.NOT_STARTED)
        self._chunk_size = chunk_size
        self._process: Optional[asyncio.subprocess.Process] = None
        self._readers: List[asyncio.Task] = []
        self._watcher: Optional[asyncio.Task] = None
        self._exited = asyncio.Event()
        self._signalled = False

    @property
    def label(self) -> str:
        return self.command.label

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def running(self) -> bool:
        return self.state.status is ProcessStatus.RUNNING

    # ------------------------------------------------------------------
    async def spawn(self, writer: SessionWriter, create: Optional[ProcessFactory] = None) -> None:
        factory = create or asyncio.create_subprocess_exec
        try:
            process = await factory(
                *self.command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_USE_PROCESS_GROUPS,
            )
        except OSError as exc:
            raise SpawnError(self.label, exc.strerror or str(exc)) from exc

        self._process = process
        self.state = ProcessState(ProcessStatus.RUNNING)
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                self._readers.append(asyncio.create_task(self._pump(stream, writer)))
        self._watcher = asyncio.create_task(self._watch(process))
        logger.info("Started %s (pid %s): %s", self.label, process.pid, " ".join(self.command.argv))

    async def wait(self) -> ProcessState:
        """Wait for the process to exit on its own."""
        await self._exited.wait()
        return self.state

    async def terminate(self, grace: float, kill_timeout: float = 2.0) -> bool:
        """SIGTERM, then SIGKILL after ``grace`` seconds.

        Returns ``False`` without signalling when the process is not running.
        """
        if not self.running:
            return False
        if not self._send(signal.SIGTERM):
            return False
        self._signalled = True
        try:
            await self._await_exit(grace)
            return True
        except TerminationTimeout:
            logger.warning("%s (pid %s) ignored SIGTERM for %.1fs, sending SIGKILL", self.label, self.pid, grace)

        self._send(_FORCE_SIGNAL)
        try:
            await asyncio.wait_for(self._exited.wait(), kill_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s (pid %s) still running after SIGKILL", self.label, self.pid)
        return True

    async def drain(self, timeout: float) -> None:
        """Wait for the output readers to hit EOF, cancelling stragglers."""
        if not self._readers:
            return
        _, pending = await asyncio.wait(self._readers, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("%s left output open after exit; stopped reading", self.label)
        await asyncio.gather(*self._readers, return_exceptions=True)

    # ------------------------------------------------------------------
    async def _await_exit(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._exited.wait(), timeout)
        except asyncio.TimeoutError:
            raise TerminationTimeout(f"{self.label} did not exit within {timeout}s") from None

    async def _pump(self, stream: asyncio.StreamReader, writer: SessionWriter) -> None:
        while True:
            chunk = await stream.read(self._chunk_size)
            if not chunk:
                break
            writer.put(chunk)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        status = ProcessStatus.KILLED if self._signalled else ProcessStatus.EXITED
        self.state = ProcessState(status, code)
        self._exited.set()
        logger.info("%s (pid %s) exited with code %s", self.label, process.pid, code)

    def _send(self, sig: int) -> bool:
        process = self._process
        if process is None or process.returncode is not None:
            return False
        if _USE_PROCESS_GROUPS:
            try:
                os.killpg(process.pid, sig)
                return True
            except ProcessLookupError:
                return False
            except PermissionError:
                # macOS refuses killpg on a group whose leader is a zombie
                pass
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            return False
        return True


@dataclass(slots=True)
class SpawnFailure:
    command: LogCommand
    error: SpawnError


@dataclass(slots=True)
class SpawnOutcome:
    processes: List[CapturedProcess] = field(default_factory=list)
    failures: List[SpawnFailure] = field(default_factory=list)

    def launched(self, role: CommandRole) -> bool:
        return any(handle.command.role is role for handle in self.processes)


class ProcessSpawner:
    """Launch every command of a session and attach it to the session writer."""

    def __init__(self, *, chunk_size: int = 4096, create_process: Optional[ProcessFactory] = None) -> None:
        self._chunk_size = chunk_size
        self._create_process = create_process

    async def spawn_all(
        self,
        commands: Sequence[LogCommand],
        writer: SessionWriter,
        outcome: Optional[SpawnOutcome] = None,
    ) -> SpawnOutcome:
        """Spawn every command, recording launched handles in ``outcome`` as they start."""
        outcome = outcome if outcome is not None else SpawnOutcome()
        writer.open()
        for command in commands:
            handle = CapturedProcess(command, chunk_size=self._chunk_size)
            try:
                await handle.spawn(writer, create=self._create_process)
            except SpawnError as exc:
                logger.error("%s", exc)
                outcome.failures.append(SpawnFailure(command=command, error=exc))
                continue
            outcome.processes.append(handle)
        return outcome


async def terminate_all(
    processes: Sequence[CapturedProcess],
    *,
    grace: float,
    kill_timeout: float,
    drain_timeout: float,
) -> None:
    """Terminate sibling processes concurrently and wait for their output."""
    await asyncio.gather(*(handle.terminate(grace, kill_timeout) for handle in processes))
    await asyncio.gather(*(handle.drain(drain_timeout) for handle in processes))


__all__ = [
    "CapturedProcess",
    "ProcessSpawner",
    "ProcessState",
    "ProcessStatus",
    "SessionWriter",
    "SpawnFailure",
    "SpawnOutcome",
    "terminate_all",
]
