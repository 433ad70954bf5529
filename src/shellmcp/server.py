"""MCP server — serves configured commands and REPLs over stdio."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from shellmcp.config import ShellMcpConfig
from shellmcp.process import SessionRegistry
from shellmcp.security import SecurityValidator
from shellmcp.tool import CommandTool, ToolRegistry, build_repl_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "shellmcp"


class ToolCallError(Exception):
    """A tool reported failure; the MCP layer turns this into ``isError``."""


class ShellMcpServer:
    """Wires configuration, tools and the session registry to MCP.

    One :class:`SessionRegistry` is shared by every REPL tool and torn
    down when the server stops.
    """

    def __init__(self, config: ShellMcpConfig) -> None:
        self.config = config
        self.validator = SecurityValidator(config.security)
        self.sessions = SessionRegistry(self.validator)
        self.tools = ToolRegistry()
        self._register_tools()

        self.server: Server = Server(SERVER_NAME)
        self._register_handlers()

    def _register_tools(self) -> None:
        for key, tool_config in self.config.tools.items():
            self.tools.register(CommandTool(key, tool_config, self.validator))
        for key, repl_config in self.config.repls.items():
            self.tools.register_many(
                build_repl_tools(key, repl_config, self.sessions, self.validator)
            )
        logger.info(
            "Registered %d tools (%d commands, %d REPLs)",
            len(self.tools),
            len(self.config.tools),
            len(self.config.repls),
        )

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            logger.debug("list_tools called")
            return [Tool(**spec) for spec in self.tools.get_specs()]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return await self.call(name, arguments)

    async def call(self, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """Dispatch one tool call.

        Raises:
            ToolCallError: The tool reported an error.
        """
        start = time.monotonic()
        content, is_error = await self.tools.dispatch(name, arguments)
        logger.info(
            "call_tool %s: %s in %.0fms",
            name,
            "error" if is_error else "ok",
            (time.monotonic() - start) * 1000,
        )
        if is_error:
            raise ToolCallError(content)
        return [TextContent(type="text", text=content)]

    async def run(self) -> None:
        """Serve over stdio until the client disconnects or a signal arrives."""
        loop = asyncio.get_running_loop()
        task = asyncio.current_task()
        if task is not None:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, task.cancel)

        logger.info("Starting %s server (stdio transport)", SERVER_NAME)
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        active = self.sessions.list_active()
        logger.info("Shutting down, closing %d active REPL sessions", len(active))
        await self.sessions.close_all()
