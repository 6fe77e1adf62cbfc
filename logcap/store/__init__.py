"""Log file storage."""

from .logfiles import LogFileStore

__all__ = ["LogFileStore"]
