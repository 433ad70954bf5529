"""Single-shot command tool — run a templated command once, return its output.

The command template is split into an argument list with shell-style
quoting rules, placeholders are filled per token, and the result is
executed directly. No shell ever sees the text, so argument values
cannot introduce new commands.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import signal
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, create_model

from shellmcp.config import ArgumentConfig, CommandConfig
from shellmcp.security import SecurityValidator
from shellmcp.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from shellmcp.tool.truncation import clean_output

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")
_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_PYTHON_TYPES: dict[str, Any] = {
    "string": str,
    "int": int,
    "float": float,
    "boolean": bool,
    "string[]": list[str],
}


class CommandRejected(ValueError):
    """The rendered command or one of its arguments failed validation."""


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def build_param_model(tool_name: str, args: dict[str, ArgumentConfig]) -> type[BaseModel]:
    """Create the Pydantic parameter model for a configured command."""
    fields: dict[str, Any] = {}
    for arg_name, arg in args.items():
        py_type = _PYTHON_TYPES[arg.type]
        description = arg.description or f"Parameter {arg_name}"
        if arg.default is not None:
            fields[arg_name] = (py_type, Field(default=arg.default, description=description))
        elif arg.optional:
            fields[arg_name] = (py_type | None, Field(default=None, description=description))
        else:
            fields[arg_name] = (py_type, Field(..., description=description))

    model_name = "".join(part.title() for part in re.split(r"[^A-Za-z0-9]+", tool_name))
    return create_model(f"{model_name or 'Command'}Params", **fields)


def default_tool_name(cmd: str) -> str:
    """Derive a tool name from the command's program name."""
    program = cmd.split()[0] if cmd.split() else "command"
    return re.sub(r"[^a-zA-Z0-9]", "_", os.path.basename(program))


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class CommandTool(BaseTool[BaseModel]):
    """Execute one configured command per call.

    Arguments fill ``$NAME`` / ``${NAME}`` placeholders in the template
    and are also exported as environment variables of the same name.
    A placeholder that makes up a whole token and receives a list expands
    into one argument per element.
    """

    def __init__(
        self,
        tool_name: str,
        config: CommandConfig,
        validator: SecurityValidator | None = None,
    ) -> None:
        self.config = config
        self.validator = validator or SecurityValidator()
        self.name = config.name or tool_name  # type: ignore[misc]
        self.description = (  # type: ignore[misc]
            config.description or f"Execute command: {config.cmd}"
        )
        self.param_model = build_param_model(self.name, config.args)  # type: ignore[misc]

    async def execute(self, params: BaseModel) -> ToolResult:
        values = {k: v for k, v in params.model_dump().items() if v is not None}
        try:
            result = await self.run(values)
        except CommandRejected as e:
            return ToolError(output=str(e), brief=f"rejected: {self.name}")
        except asyncio.TimeoutError:
            return ToolError(
                output=f"Command timed out after {self.config.timeout}s: {self.config.cmd}",
                brief=f"Timeout: {self.name}",
            )
        except OSError as e:
            return ToolError(output=f"Failed to execute command: {e}")

        brief = f"exit={result.exit_code}: {self.name}"
        if not result.success:
            return ToolError(
                output=f"Command failed (exit code {result.exit_code}):\n"
                f"{result.stderr or result.stdout}",
                brief=brief,
            )
        return ToolOk(
            output=result.stdout or "Command executed successfully (no output)",
            brief=brief,
        )

    def render(self, values: dict[str, Any]) -> list[str]:
        """Build the argument list for ``values``.

        Raises:
            CommandRejected: An argument value failed validation.
        """
        for arg_name, value in values.items():
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, str):
                    verdict = self.validator.validate_argument(item, arg_name)
                    if not verdict.valid:
                        raise CommandRejected(verdict.reason)

        def substitute(match: re.Match[str]) -> str:
            arg_name = match.group(1) or match.group(2)
            if arg_name not in self.config.args:
                return match.group(0)  # Not ours; keep literally
            value = values.get(arg_name)
            if value is None:
                return ""
            if isinstance(value, list):
                return " ".join(_format_value(v) for v in value)
            return self.validator.sanitize_input(_format_value(value))

        argv: list[str] = []
        for token in shlex.split(self.config.cmd):
            whole = _PLACEHOLDER_RE.fullmatch(token)
            if whole:
                arg_name = whole.group(1) or whole.group(2)
                value = values.get(arg_name)
                if arg_name in self.config.args and value is None:
                    continue  # Omitted optional argument
                if isinstance(value, list):
                    argv.extend(self.validator.sanitize_input(_format_value(v)) for v in value)
                    continue
            argv.append(_PLACEHOLDER_RE.sub(substitute, token))
        return argv

    def environment(self, values: dict[str, Any]) -> dict[str, str]:
        """Arguments (and defaults) as environment variables."""
        env: dict[str, str] = {}
        for arg_name in self.config.args:
            value = values.get(arg_name)
            if value is None or not _ENV_NAME_RE.match(arg_name):
                continue
            if isinstance(value, list):
                env[arg_name] = " ".join(_format_value(v) for v in value)
            else:
                env[arg_name] = _format_value(value)
        return env

    async def run(self, values: dict[str, Any]) -> CommandResult:
        """Render, screen and execute the command.

        Raises:
            CommandRejected: Validation failed; nothing was executed.
            asyncio.TimeoutError: The command outlived its timeout and was killed.
            OSError: The program could not be executed.
        """
        verdict = self.validator.validate_timeout(self.config.timeout)
        if not verdict.valid:
            raise CommandRejected(f"Timeout validation failed: {verdict.reason}")

        argv = self.render(values)
        if not argv:
            raise CommandRejected("Command is empty")

        command_line = " ".join(argv)
        verdict = self.validator.validate(command_line)
        if not verdict.valid:
            raise CommandRejected(f"Security validation failed: {verdict.reason}")

        logger.info("Executing command: %s", command_line)
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,  # Own process group for clean kills
            env={**os.environ, **self.environment(values), "TERM": "dumb"},
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            await process.wait()
            logger.warning("Command timed out after %ss: %s", self.config.timeout, command_line)
            raise

        result = CommandResult(
            stdout=clean_output(stdout.decode("utf-8", errors="replace")),
            stderr=clean_output(stderr.decode("utf-8", errors="replace")),
            exit_code=process.returncode or 0,
        )
        logger.debug(
            "Command %s exited %d (%d stdout chars, %d stderr chars)",
            argv[0],
            result.exit_code,
            len(result.stdout),
            len(result.stderr),
        )
        return result
