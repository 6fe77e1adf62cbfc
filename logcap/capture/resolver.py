"""Translate a capture request into the commands that produce its logs."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..errors import ConfigurationError

SWIFTUI_SUBSYSTEM = "com.apple.SwiftUI"

SubsystemFilter = Union[str, List[str]]


class TargetKind(str, Enum):
    SIMULATOR = "simulator"
    DEVICE = "device"

    @classmethod
    def parse(cls, value: Union[str, "TargetKind"]) -> "TargetKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(f"unknown target kind: {value!r}") from None


class CommandRole(str, Enum):
    CONSOLE = "console"
    LOG_STREAM = "log_stream"


@dataclass(frozen=True, slots=True)
class LogCommand:
    """One process to spawn for a capture session."""

    role: CommandRole
    label: str
    argv: Tuple[str, ...]


@dataclass(slots=True)
class CaptureRequest:
    target_kind: Union[str, TargetKind]
    target_id: str
    bundle_id: str
    capture_console: bool = False
    launch_args: List[str] = field(default_factory=list)
    subsystem_filter: SubsystemFilter = "app"


def subsystems_for(bundle_id: str, subsystem_filter: SubsystemFilter) -> Optional[List[str]]:
    """Return the subsystems to keep, or ``None`` when nothing is filtered."""
    if subsystem_filter == "all":
        return None
    if subsystem_filter == "app":
        return [bundle_id]
    if subsystem_filter == "swiftui":
        return [bundle_id, SWIFTUI_SUBSYSTEM]
    if isinstance(subsystem_filter, str):
        raise ConfigurationError(f"unknown subsystem filter: {subsystem_filter!r}")
    # dict.fromkeys keeps first-seen order while dropping duplicates
    return list(dict.fromkeys([bundle_id, *subsystem_filter]))


def build_log_predicate(bundle_id: str, subsystem_filter: SubsystemFilter) -> Optional[str]:
    subsystems = subsystems_for(bundle_id, subsystem_filter)
    if subsystems is None:
        return None
    return " OR ".join(f'subsystem == "{name}"' for name in subsystems)


class TargetResolver:
    """Builds the concrete invocations for one kind of target."""

    kind: TargetKind

    def console_command(self, target_id: str, bundle_id: str, launch_args: Sequence[str]) -> LogCommand:
        raise NotImplementedError

    def log_stream_command(self, target_id: str, bundle_id: str, subsystem_filter: SubsystemFilter) -> LogCommand:
        raise NotImplementedError

    def resolve(self, request: CaptureRequest) -> List[LogCommand]:
        commands: List[LogCommand] = []
        if request.capture_console:
            commands.append(self.console_command(request.target_id, request.bundle_id, request.launch_args))
        commands.append(self.log_stream_command(request.target_id, request.bundle_id, request.subsystem_filter))
        return commands


class SimulatorResolver(TargetResolver):
    kind = TargetKind.SIMULATOR

    def console_command(self, target_id: str, bundle_id: str, launch_args: Sequence[str]) -> LogCommand:
        argv = [
            "xcrun",
            "simctl",
            "launch",
            "--console-pty",
            "--terminate-running-process",
            target_id,
            bundle_id,
            *launch_args,
        ]
        return LogCommand(CommandRole.CONSOLE, "console log capture", tuple(argv))

    def log_stream_command(self, target_id: str, bundle_id: str, subsystem_filter: SubsystemFilter) -> LogCommand:
        argv = ["xcrun", "simctl", "spawn", target_id, "log", "stream", "--level=debug"]
        predicate = build_log_predicate(bundle_id, subsystem_filter)
        if predicate:
            argv.extend(["--predicate", predicate])
        return LogCommand(CommandRole.LOG_STREAM, "os log capture", tuple(argv))


class DeviceResolver(TargetResolver):
    kind = TargetKind.DEVICE

    def console_command(self, target_id: str, bundle_id: str, launch_args: Sequence[str]) -> LogCommand:
        argv = [
            "xcrun",
            "devicectl",
            "device",
            "process",
            "launch",
            "--console",
            "--terminate-existing",
            "--device",
            target_id,
            bundle_id,
            *launch_args,
        ]
        return LogCommand(CommandRole.CONSOLE, "device console capture", tuple(argv))

    def log_stream_command(self, target_id: str, bundle_id: str, subsystem_filter: SubsystemFilter) -> LogCommand:
        argv = ["idevicesyslog", "--udid", target_id]
        for name in subsystems_for(bundle_id, subsystem_filter) or []:
            argv.extend(["--match", name])
        return LogCommand(CommandRole.LOG_STREAM, "device syslog capture", tuple(argv))


DEFAULT_RESOLVERS: Dict[TargetKind, TargetResolver] = {
    TargetKind.SIMULATOR: SimulatorResolver(),
    TargetKind.DEVICE: DeviceResolver(),
}


def resolve_commands(
    request: CaptureRequest,
    resolvers: Optional[Dict[TargetKind, TargetResolver]] = None,
) -> List[LogCommand]:
    """Return the ordered commands for ``request`` without side effects."""
    kind = TargetKind.parse(request.target_kind)
    if not request.target_id or not request.target_id.strip():
        raise ConfigurationError("target id is required")
    if not request.bundle_id or not request.bundle_id.strip():
        raise ConfigurationError("bundle id is required")

    table = resolvers if resolvers is not None else DEFAULT_RESOLVERS
    resolver = table.get(kind)
    if resolver is None:
        raise ConfigurationError(f"no resolver registered for {kind.value}")
    return resolver.resolve(request)


__all__ = [
    "CaptureRequest",
    "CommandRole",
    "DEFAULT_RESOLVERS",
    "DeviceResolver",
    "LogCommand",
    "SimulatorResolver",
    "SubsystemFilter",
    "TargetKind",
    "TargetResolver",
    "build_log_predicate",
    "resolve_commands",
    "subsystems_for",
]
