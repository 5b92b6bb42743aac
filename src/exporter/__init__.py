"""Export Service - export job lifecycle and recurring export schedules."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("exporter")
except PackageNotFoundError:
    __version__ = "0.0.0"  # Fallback for development
