"""CLI entry point for shellmcp."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import typer

from shellmcp.config import (
    CommandConfig,
    ReplConfig,
    SecurityConfig,
    ShellMcpConfig,
    parse_argument_string,
)

app = typer.Typer(
    name="shellmcp",
    help="Expose shell commands and interactive programs as MCP tools.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = ("debug", "info", "warning", "error")


def setup_logging(level: str = "info") -> None:
    # stdout carries the MCP stdio transport, so logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def build_config(
    config_file: str | None = None,
    cmd: str | None = None,
    repl: str | None = None,
    name: str | None = None,
    description: str | None = None,
    args: list[str] | None = None,
    timeout: float | None = None,
    start_args: list[str] | None = None,
    end_args: list[str] | None = None,
    prompt: str | None = None,
    security: SecurityConfig | None = None,
) -> ShellMcpConfig:
    """Assemble a configuration from exactly one of the three modes.

    Raises:
        ValueError: No mode, several modes, or a malformed option.
    """
    modes = [m for m, v in (("config", config_file), ("cmd", cmd), ("repl", repl)) if v]
    if not modes:
        raise ValueError("Must specify one of: --config, --cmd, or --repl")
    if len(modes) > 1:
        raise ValueError(f"Cannot specify multiple modes: {', '.join(modes)}")
    if timeout is not None and timeout <= 0:
        raise ValueError("Timeout must be a positive number")

    if config_file:
        config = ShellMcpConfig.load(config_file)
    elif cmd:
        from shellmcp.tool.command import default_tool_name

        arg_configs = dict(parse_argument_string(a) for a in args or [])
        key = name or default_tool_name(cmd)
        tool = CommandConfig(cmd=cmd, name=name, description=description, args=arg_configs)
        if timeout is not None:
            tool.timeout = timeout
        config = ShellMcpConfig.load()
        config.tools = {key: tool}
    else:
        assert repl is not None
        key = name or os.path.basename(repl.split()[0])
        repl_config = ReplConfig(
            command=repl,
            name=name,
            description=description,
            start_args=start_args or [],
            end_args=end_args or [],
            prompt=prompt,
        )
        if timeout is not None:
            repl_config.timeout = timeout
        config = ShellMcpConfig.load()
        config.repls = {key: repl_config}

    if security is not None:
        config.security = security
    return config


def _security_from_flags(
    allow_shell_operators: bool,
    allow_file_operations: bool,
    blocked_commands: list[str] | None,
    allowed_commands: list[str] | None,
    max_timeout: float | None,
) -> SecurityConfig | None:
    if not (
        allow_shell_operators
        or allow_file_operations
        or blocked_commands
        or allowed_commands
        or max_timeout is not None
    ):
        return None
    security = SecurityConfig(
        allow_shell_operators=allow_shell_operators,
        allow_file_operations=allow_file_operations,
        blocked_commands=blocked_commands or [],
        allowed_commands=allowed_commands or [],
    )
    if max_timeout is not None:
        security.max_timeout = max_timeout
    return security


# Shared option declarations for `serve` and `tools`.
_CONFIG = typer.Option(None, "--config", "-c", help="JSON configuration file.")
_CMD = typer.Option(None, "--cmd", help="Single command to wrap as a tool.")
_REPL = typer.Option(None, "--repl", help="Interactive program to wrap as session tools.")
_NAME = typer.Option(None, "--name", "-n", help="Tool name (or REPL tool prefix).")
_DESCRIPTION = typer.Option(None, "--description", "-d", help="Tool description.")
_ARGS = typer.Option(
    None, "--arg", "-a", help='Argument definition "NAME:type:description" (repeatable).'
)
_TIMEOUT = typer.Option(None, "--timeout", "-t", help="Timeout in seconds.")
_START_ARGS = typer.Option(None, "--start-arg", help="Argument passed when starting the REPL.")
_END_ARGS = typer.Option(None, "--end-arg", help="Command sent to the REPL when closing.")
_PROMPT = typer.Option(None, "--prompt", help="Default end marker for REPL receives.")
_ALLOW_OPS = typer.Option(False, "--allow-shell-operators", help="Allow &&, ||, |, etc.")
_ALLOW_FILES = typer.Option(False, "--allow-file-operations", help="Allow rm, mv, cp, etc.")
_BLOCKED = typer.Option(None, "--blocked-command", help="Block a base command (repeatable).")
_ALLOWED = typer.Option(None, "--allowed-command", help="Allow-list a base command (repeatable).")
_MAX_TIMEOUT = typer.Option(None, "--max-timeout", help="Largest timeout callers may request.")


def _load(**kwargs) -> ShellMcpConfig:
    try:
        return build_config(**kwargs)
    except (ValueError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def serve(
    config_file: str | None = _CONFIG,
    cmd: str | None = _CMD,
    repl: str | None = _REPL,
    name: str | None = _NAME,
    description: str | None = _DESCRIPTION,
    arg: list[str] | None = _ARGS,
    timeout: float | None = _TIMEOUT,
    start_arg: list[str] | None = _START_ARGS,
    end_arg: list[str] | None = _END_ARGS,
    prompt: str | None = _PROMPT,
    allow_shell_operators: bool = _ALLOW_OPS,
    allow_file_operations: bool = _ALLOW_FILES,
    blocked_command: list[str] | None = _BLOCKED,
    allowed_command: list[str] | None = _ALLOWED,
    max_timeout: float | None = _MAX_TIMEOUT,
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help=f"Log level ({', '.join(LOG_LEVELS)})."
    ),
) -> None:
    """Run the MCP server on stdio."""
    config = _load(
        config_file=config_file,
        cmd=cmd,
        repl=repl,
        name=name,
        description=description,
        args=arg,
        timeout=timeout,
        start_args=start_arg,
        end_args=end_arg,
        prompt=prompt,
        security=_security_from_flags(
            allow_shell_operators,
            allow_file_operations,
            blocked_command,
            allowed_command,
            max_timeout,
        ),
    )
    if log_level:
        config.log_level = log_level.lower()
    setup_logging(config.log_level)

    from shellmcp.server import ShellMcpServer

    server = ShellMcpServer(config)
    try:
        asyncio.run(server.run())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Server stopped")


@app.command()
def tools(
    config_file: str | None = _CONFIG,
    cmd: str | None = _CMD,
    repl: str | None = _REPL,
    name: str | None = _NAME,
    description: str | None = _DESCRIPTION,
    arg: list[str] | None = _ARGS,
    timeout: float | None = _TIMEOUT,
    start_arg: list[str] | None = _START_ARGS,
    end_arg: list[str] | None = _END_ARGS,
    prompt: str | None = _PROMPT,
    allow_shell_operators: bool = _ALLOW_OPS,
    allow_file_operations: bool = _ALLOW_FILES,
    blocked_command: list[str] | None = _BLOCKED,
    allowed_command: list[str] | None = _ALLOWED,
    max_timeout: float | None = _MAX_TIMEOUT,
) -> None:
    """Print the tools a server with these options would expose."""
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    from shellmcp.server import ShellMcpServer

    config = _load(
        config_file=config_file,
        cmd=cmd,
        repl=repl,
        name=name,
        description=description,
        args=arg,
        timeout=timeout,
        start_args=start_arg,
        end_args=end_arg,
        prompt=prompt,
        security=_security_from_flags(
            allow_shell_operators,
            allow_file_operations,
            blocked_command,
            allowed_command,
            max_timeout,
        ),
    )
    server = ShellMcpServer(config)

    table = Table(title="shellmcp tools")
    table.add_column("Name", style="bold cyan", no_wrap=True)
    table.add_column("Description")
    table.add_column("Parameters", style="green")
    for spec in server.tools.get_specs():
        schema = spec["inputSchema"]
        required = set(schema.get("required", []))
        params = ", ".join(
            p if p in required else f"[{p}]" for p in schema.get("properties", {})
        )
        table.add_row(spec["name"], escape(spec["description"]), escape(params))
    Console().print(table)


if __name__ == "__main__":
    app()
