"""Export generation and job coordination."""

from .coordinator import ExportRequestCoordinator
from .generator import ExportGenerator

__all__ = ["ExportGenerator", "ExportRequestCoordinator"]
