"""Tool framework for tools a memory instance exposes to the generation step."""

from threadmem.tools.base import BaseTool, ToolParams, ToolResult
from threadmem.tools.registry import ToolRegistry

__all__ = ["BaseTool", "ToolParams", "ToolRegistry", "ToolResult"]
