"""Command line tools for Cerberus."""

from .admin import AdminTool
from .export import ExportConfig, ExportTool
from .inspect import InspectTool

__all__ = ["AdminTool", "ExportConfig", "ExportTool", "InspectTool"]
