"""Relayed tool catalog, dispatch and result formatting."""

from ethrelay.tools.catalog import TOOLS, ToolSpec
from ethrelay.tools.formatting import format_result
from ethrelay.tools.registry import ToolRegistry, UnknownToolError

__all__ = ["TOOLS", "ToolSpec", "ToolRegistry", "UnknownToolError", "format_result"]
