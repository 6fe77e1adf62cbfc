"""Runtime configuration helpers for logcap."""
from __future__ import annotations

import logging
import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_FILES = [
    Path.cwd() / ".logcap.toml",
    Path.home() / ".config" / "logcap" / "config.toml",
]

SUBSYSTEM_PRESETS = ("app", "all", "swiftui")


class LogcapSettings(BaseModel):
    log_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "logcap",
        description="Directory holding one log file per capture session",
    )
    file_prefix: str = Field(default="logcap", min_length=1, description="Log file name prefix")
    grace_period: float = Field(default=5.0, gt=0, description="Seconds to wait after SIGTERM before SIGKILL")
    kill_timeout: float = Field(default=2.0, gt=0, description="Seconds to wait for exit after SIGKILL")
    drain_timeout: float = Field(default=2.0, gt=0, description="Seconds to wait for output readers at stop")
    retention_days: int = Field(default=3, ge=0, description="Delete old log files after this many days (0 disables)")
    read_chunk_size: int = Field(default=4096, ge=1, description="Bytes read per chunk from each process stream")
    verify_targets: bool = Field(default=True, description="Check that the target exists before spawning")
    default_subsystem_filter: str = Field(default="app", description="app, all, swiftui or a comma separated list")
    use_color: bool = Field(default=False, description="Rich colour output")
    log_level: str = Field(default="WARNING", description="Python logging level for the CLI")

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def _normalize_paths(self) -> "LogcapSettings":
        self.log_dir = self.log_dir.expanduser()
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["log_dir"] = str(self.log_dir)
        return data


@dataclass
class ConfigLoadResult:
    settings: LogcapSettings
    source: Optional[Path]
    searched: List[Path]


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(explicit_path: Optional[Path] = None) -> ConfigLoadResult:
    """Load configuration from the first available location."""
    candidates: List[Path] = []
    if explicit_path is not None:
        candidates.append(explicit_path.expanduser())
    candidates.extend(DEFAULT_CONFIG_FILES)

    config_data: Dict[str, Any] = {}
    loaded_from: Optional[Path] = None
    for candidate in candidates:
        if candidate.is_file():
            config_data = _load_toml(candidate)
            loaded_from = candidate
            break

    return ConfigLoadResult(settings=LogcapSettings(**config_data), source=loaded_from, searched=candidates)


def parse_subsystem_filter(value: str | List[str] | None) -> str | List[str]:
    """Turn a CLI/config value into a preset name or a list of subsystems."""
    if value is None:
        return "app"
    if isinstance(value, list):
        return [item.strip() for item in value if item.strip()]
    text = value.strip()
    if not text or text in SUBSYSTEM_PRESETS:
        return text or "app"
    return [item.strip() for item in text.split(",") if item.strip()]


__all__ = ["ConfigLoadResult", "LogcapSettings", "load_config", "parse_subsystem_filter"]
