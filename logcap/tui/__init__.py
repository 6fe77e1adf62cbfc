"""Interactive terminal front end."""

from .shell import CaptureShell

__all__ = ["CaptureShell"]
