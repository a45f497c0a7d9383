"""
Tools module: the structured calls the Sage can make to shape an adventure.
"""

from .base import EventQueue, PendingEvent, Tool, ToolContext, ToolInput, ToolResult
from .definitions import get_tools_for_stage, tool_names_for_stage
from .registry import ToolDispatcher, ToolRegistry, get_tool_registry

__all__ = [
    "EventQueue",
    "PendingEvent",
    "Tool",
    "ToolContext",
    "ToolInput",
    "ToolResult",
    "ToolDispatcher",
    "ToolRegistry",
    "get_tool_registry",
    "get_tools_for_stage",
    "tool_names_for_stage",
]
