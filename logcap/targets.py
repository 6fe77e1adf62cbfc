"""Look up simulators and devices through the Xcode command line tools."""
from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .capture.resolver import TargetKind
from .errors import TargetLookupError

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str]], Awaitable[str]]

SIMCTL_LIST = ("xcrun", "simctl", "list", "devices", "available", "--json")
DEVICECTL_LIST = ("xcrun", "devicectl", "list", "devices", "--json-output")


@dataclass(frozen=True, slots=True)
class Target:
    kind: TargetKind
    target_id: str
    name: str
    state: str
    platform: Optional[str] = None


async def run_command(argv: Sequence[str]) -> str:
    """Run ``argv`` to completion and return stdout."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise TargetLookupError(f"{argv[0]} could not be started: {exc.strerror or exc}") from exc
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip() or f"exit code {process.returncode}"
        raise TargetLookupError(f"{' '.join(argv[:4])} failed: {detail}")
    return stdout.decode("utf-8", errors="replace")


def parse_simulators(payload: Dict[str, Any]) -> List[Target]:
    targets: List[Target] = []
    for runtime, devices in (payload.get("devices") or {}).items():
        platform = runtime.rsplit(".", 1)[-1]
        for device in devices or []:
            if device.get("isAvailable") is False:
                continue
            udid = device.get("udid")
            if not udid:
                continue
            targets.append(
                Target(
                    kind=TargetKind.SIMULATOR,
                    target_id=udid,
                    name=device.get("name", "Unknown Simulator"),
                    state=device.get("state", "Unknown"),
                    platform=platform,
                )
            )
    return targets


def parse_devices(payload: Dict[str, Any]) -> List[Target]:
    targets: List[Target] = []
    for device in (payload.get("result") or {}).get("devices") or []:
        if device.get("visibilityClass") == "Simulator":
            continue
        connection = device.get("connectionProperties") or {}
        properties = device.get("deviceProperties") or {}
        hardware = device.get("hardwareProperties") or {}
        target_id = hardware.get("udid") or device.get("identifier")
        if not target_id:
            continue
        if connection.get("pairingState") == "paired":
            state = "Available" if connection.get("tunnelState") == "connected" else "Available (WiFi)"
        else:
            state = "Unpaired"
        targets.append(
            Target(
                kind=TargetKind.DEVICE,
                target_id=target_id,
                name=properties.get("name", "Unknown Device"),
                state=state,
                platform=hardware.get("platform"),
            )
        )
    return targets


class TargetDirectory:
    """Resolves target identifiers to simulators or paired devices."""

    def __init__(self, runner: Optional[CommandRunner] = None) -> None:
        self._run = runner or run_command

    async def list_targets(self, kind: TargetKind) -> List[Target]:
        kind = TargetKind.parse(kind)
        if kind is TargetKind.SIMULATOR:
            output = await self._run(list(SIMCTL_LIST))
            return parse_simulators(self._decode(output))
        return parse_devices(await self._list_devices_json())

    async def exists(self, kind: TargetKind, target_id: str) -> bool:
        targets = await self.list_targets(kind)
        wanted = target_id.strip().lower()
        return any(target.target_id.lower() == wanted for target in targets)

    async def _list_devices_json(self) -> Dict[str, Any]:
        # devicectl only writes machine-readable output to a file
        with tempfile.TemporaryDirectory(prefix="logcap-devicectl-") as tmp:
            output_path = Path(tmp) / "devices.json"
            await self._run([*DEVICECTL_LIST, str(output_path)])
            if not output_path.is_file():
                raise TargetLookupError("devicectl did not write a device list")
            return self._decode(output_path.read_text(encoding="utf-8"))

    @staticmethod
    def _decode(text: str) -> Dict[str, Any]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TargetLookupError(f"could not parse target list: {exc}") from exc
        if not isinstance(data, dict):
            raise TargetLookupError("unexpected target list format")
        return data


__all__ = ["Target", "TargetDirectory", "parse_devices", "parse_simulators", "run_command"]
