"""logcap: simulator and device log capture sessions."""

from importlib import metadata

try:
    __version__ = metadata.version("logcap")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = ["__version__"]
