import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

import pytest

from logcap.capture.controller import CaptureController
from logcap.capture.resolver import CommandRole, LogCommand, TargetKind, TargetResolver
from logcap.config import LogcapSettings

SILENT = "import time; time.sleep(30)"
STREAM_READY = "import time; print('stream ready', flush=True); time.sleep(30)"
CONSOLE_HELLO = "print('console hello', flush=True)"
IGNORES_TERM = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('stubborn', flush=True); time.sleep(30)"
)
MISSING_BINARY = "/nonexistent/logcap-test-binary"


def python_argv(script: str) -> tuple:
    return (sys.executable, "-u", "-c", script)


class ScriptResolver(TargetResolver):
    """Runs small Python scripts instead of the Xcode tools."""

    kind = TargetKind.SIMULATOR

    def __init__(self, stream: Optional[str] = STREAM_READY, console: Optional[str] = CONSOLE_HELLO) -> None:
        self.stream = stream
        self.console = console

    def console_command(self, target_id: str, bundle_id: str, launch_args: Sequence[str]) -> LogCommand:
        argv = (MISSING_BINARY,) if self.console is None else python_argv(self.console)
        return LogCommand(CommandRole.CONSOLE, "console log capture", argv)

    def log_stream_command(self, target_id: str, bundle_id: str, subsystem_filter) -> LogCommand:
        argv = (MISSING_BINARY,) if self.stream is None else python_argv(self.stream)
        return LogCommand(CommandRole.LOG_STREAM, "os log capture", argv)


class FakeDirectory:
    def __init__(self, known: Sequence[str] = ()) -> None:
        self.known = set(known)
        self.calls = []

    async def exists(self, kind, target_id: str) -> bool:
        self.calls.append((kind, target_id))
        return target_id in self.known


def build_controller(tmp_path: Path, resolver: TargetResolver, **overrides) -> CaptureController:
    directory = overrides.pop("directory", None)
    spawner = overrides.pop("spawner", None)
    options = {"log_dir": tmp_path / "logs", "retention_days": 0, "grace_period": 2.0}
    options.update(overrides)
    settings = LogcapSettings(**options)
    return CaptureController(
        settings,
        directory=directory,
        spawner=spawner,
        resolvers={TargetKind.SIMULATOR: resolver, TargetKind.DEVICE: resolver},
    )


async def wait_for_text(path: Path, text: str, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if path.exists() and text in path.read_text(encoding="utf-8", errors="replace"):
            return
        await asyncio.sleep(0.05)
    raise AssertionError(f"{text!r} never appeared in {path}")


@pytest.fixture
def make_controller(tmp_path):
    def _factory(resolver: Optional[TargetResolver] = None, **overrides) -> CaptureController:
        return build_controller(tmp_path, resolver or ScriptResolver(), **overrides)

    return _factory
