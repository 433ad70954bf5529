"""Tool system — base classes, registry, command and REPL tools."""

from shellmcp.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from shellmcp.tool.command import CommandTool
from shellmcp.tool.registry import ToolRegistry
from shellmcp.tool.repl import build_repl_tools
from shellmcp.tool.truncation import truncate_output

__all__ = [
    "BaseTool",
    "CommandTool",
    "ToolError",
    "ToolOk",
    "ToolRegistry",
    "ToolResult",
    "build_repl_tools",
    "truncate_output",
]
