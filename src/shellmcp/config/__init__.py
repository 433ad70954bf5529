"""Configuration — Pydantic models for shellmcp settings."""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from shellmcp.process.spec import SessionSpec

logger = logging.getLogger(__name__)

ArgumentType = Literal["string", "int", "float", "boolean", "string[]"]
ARGUMENT_TYPES: tuple[str, ...] = ("string", "int", "float", "boolean", "string[]")

DEFAULT_TIMEOUT = 30.0  # seconds


class ArgumentConfig(BaseModel):
    """One named parameter of a single-shot command tool."""

    type: ArgumentType = "string"
    description: str = ""
    optional: bool = False
    default: Any = None


class CommandConfig(BaseModel):
    """A command run once per tool call.

    ``cmd`` is a template; ``$NAME`` or ``${NAME}`` placeholders are filled
    from the tool arguments, e.g. ``"echo Hello, $NAME!"``.
    """

    cmd: str
    name: str | None = None
    description: str | None = None
    args: dict[str, ArgumentConfig] = Field(default_factory=dict)
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Seconds")

    @field_validator("cmd")
    @classmethod
    def _cmd_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Tool config must have a non-empty "cmd" property')
        return v


class ReplConfig(BaseModel):
    """An interactive program exposed as a set of session tools."""

    model_config = ConfigDict(populate_by_name=True)

    command: str
    name: str | None = None
    description: str | None = None
    timeout: float = Field(
        default=DEFAULT_TIMEOUT, description="Default receive timeout in seconds"
    )
    start_args: list[str] = Field(default_factory=list, alias="startArgs")
    end_args: list[str] = Field(default_factory=list, alias="endArgs")
    prompt: str | None = Field(
        default=None, description="Default end marker for receive calls"
    )
    cwd: str | None = None

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('REPL config must have a non-empty "command" property')
        return v

    def to_spec(self) -> SessionSpec:
        from shellmcp.process.spec import SessionSpec

        return SessionSpec(
            program=self.command,
            start_args=self.start_args,
            shutdown_args=self.end_args,
            timeout=self.timeout,
            prompt=self.prompt,
            cwd=self.cwd,
        )


class SecurityConfig(BaseModel):
    """What the validation gate lets through."""

    model_config = ConfigDict(populate_by_name=True)

    allow_shell_operators: bool = Field(default=False, alias="allowShellOperators")
    allow_file_operations: bool = Field(default=False, alias="allowFileOperations")
    blocked_commands: list[str] = Field(default_factory=list, alias="blockedCommands")
    allowed_commands: list[str] = Field(default_factory=list, alias="allowedCommands")
    max_timeout: float = Field(
        default=300.0, alias="maxTimeout", description="Seconds; 0 disables the cap"
    )


class ShellMcpConfig(BaseModel):
    """Top-level shellmcp configuration."""

    tools: dict[str, CommandConfig] = Field(default_factory=dict)
    repls: dict[str, ReplConfig] = Field(default_factory=dict)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    log_level: str = Field(default="info")

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellMcpConfig:
        """Load config from a JSON file and env vars.

        Priority: env vars > config file > defaults.

        A file with neither ``tools`` nor ``repls`` is read in the legacy
        layout, where every root-level object with a ``cmd`` key is a tool.

        Env vars:
            SHELLMCP_LOG_LEVEL    - Override log level (debug/info/warning/error)
            SHELLMCP_MAX_TIMEOUT  - Override the security timeout cap (seconds)

        Raises:
            FileNotFoundError: ``config_path`` does not exist.
            ValueError: The file is not valid JSON or fails validation.
        """
        try:
            from dotenv import load_dotenv

            load_dotenv()
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path:
            if not os.path.exists(config_path):
                raise FileNotFoundError(f"Config file not found: {config_path}")
            logger.info("Parsing config file %s", config_path)
            with open(config_path) as f:
                try:
                    raw = json.load(f)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Failed to parse config file: {e}") from e
            config_data = _normalize(raw)

        env_log_level = os.environ.get("SHELLMCP_LOG_LEVEL")
        if env_log_level:
            config_data["log_level"] = env_log_level.lower()

        env_max_timeout = os.environ.get("SHELLMCP_MAX_TIMEOUT")
        if env_max_timeout:
            security = dict(config_data.get("security", {}))
            security.pop("maxTimeout", None)
            security["max_timeout"] = float(env_max_timeout)
            config_data["security"] = security

        return cls.model_validate(config_data)


def _normalize(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a JSON object")
    if "tools" in raw or "repls" in raw:
        return raw

    # Legacy layout: tools at the root level
    data = {k: v for k, v in raw.items() if k in ("security", "log_level")}
    data["tools"] = {
        name: value
        for name, value in raw.items()
        if isinstance(value, dict) and "cmd" in value
    }
    return data


def parse_argument_string(arg_string: str) -> tuple[str, ArgumentConfig]:
    """Parse a CLI argument definition.

    Formats: ``name:type:description`` or ``name:type:optional:description``.

    Raises:
        ValueError: Fewer than three fields, or an unknown type.
    """
    parts = arg_string.split(":")
    if len(parts) < 3:
        raise ValueError(
            f"Invalid argument format: {arg_string}. Expected format: name:type:description"
        )

    name, arg_type, *desc_parts = parts
    description = ":".join(desc_parts)
    optional = False
    if description.lower().startswith("optional:"):
        optional = True
        description = description[len("optional:") :]
    description = description.strip("'\"")

    if not name:
        raise ValueError(f"Invalid argument format: {arg_string}. Name is empty")
    if arg_type not in ARGUMENT_TYPES:
        raise ValueError(
            f"Invalid argument type: {arg_type}. Must be one of: {', '.join(ARGUMENT_TYPES)}"
        )

    return name, ArgumentConfig(type=arg_type, description=description, optional=optional)
