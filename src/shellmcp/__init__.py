"""shellmcp — expose shell commands and interactive programs as MCP tools."""

__version__ = "0.1.0"
