"""Base tool classes with Pydantic parameter validation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from shellmcp.tool.truncation import truncate_output

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass
class ToolResult:
    """Base result from a tool execution."""

    output: str = ""
    brief: str = ""  # Short description for logs
    is_error: bool = False


@dataclass
class ToolOk(ToolResult):
    """Successful tool result."""

    is_error: bool = False


@dataclass
class ToolError(ToolResult):
    """Failed tool result."""

    is_error: bool = True


class BaseTool(ABC, Generic[T]):
    """Base class for all tools.

    A tool turns validated arguments into a :class:`ToolResult`. Parameters
    are declared as a Pydantic model, which also yields the JSON schema
    advertised to MCP clients.

    Static tools set ``name``, ``description`` and ``param_model`` as class
    attributes; tools generated from configuration set them per instance.

    Usage:
        class EchoParams(BaseModel):
            text: str

        class EchoTool(BaseTool[EchoParams]):
            name = "echo"
            description = "Echo text back"
            param_model = EchoParams

            async def execute(self, params: EchoParams) -> ToolResult:
                return ToolOk(output=params.text)
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    async def __call__(self, arguments: dict[str, Any]) -> tuple[str, bool]:
        """Validate arguments, execute, truncate output.

        Returns:
            (content, is_error) tuple.
        """
        try:
            params = self.param_model.model_validate(arguments)
        except ValidationError as e:
            return f"Invalid parameters: {e}", True

        try:
            result = await self.execute(params)  # type: ignore[arg-type]
        except Exception as e:
            logger.error("Tool %s execution error: %s", self.name, e, exc_info=True)
            return f"Error executing {self.name}: {e}", True

        if result.brief:
            logger.info("Tool %s: %s", self.name, result.brief)
        return truncate_output(result.output), result.is_error

    @abstractmethod
    async def execute(self, params: T) -> ToolResult:
        """Execute the tool with validated parameters."""
        ...

    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the parameters, without Pydantic's title noise."""
        schema = self.param_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def to_spec(self) -> dict[str, Any]:
        """MCP tool listing entry."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }
