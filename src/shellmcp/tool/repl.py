"""REPL tools — expose one configured interactive program as session tools.

For a program named ``python`` this yields ``python_start_session``,
``python_send``, ``python_receive``, ``python_send_receive``,
``python_close_session`` and ``python_list_sessions``. All of them share
one :class:`SessionRegistry`, which owns the processes.
"""

from __future__ import annotations

import json
import logging
import re
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from shellmcp.config import ReplConfig
from shellmcp.process import CollectedOutput, CompletionReason, SessionError, SessionRegistry
from shellmcp.process.spec import SessionSpec
from shellmcp.security import SecurityValidator
from shellmcp.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from shellmcp.tool.truncation import clean_output

logger = logging.getLogger(__name__)

NO_OUTPUT = "(no output)"


class StartSessionParams(BaseModel):
    args: list[str] = Field(
        default_factory=list, description="Additional arguments to start the session"
    )


class SendParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(
        alias="sessionId", description="Session ID returned from start_session"
    )
    command: str = Field(description="Command to send to the session")


class ReceiveParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", description="Session ID")
    timeout: float | None = Field(
        default=None,
        description="Seconds to wait for output (defaults to the session's timeout)",
    )
    end_marker: str | None = Field(
        default=None,
        alias="endMarker",
        description="Return as soon as this string appears in the output",
    )


class SendReceiveParams(ReceiveParams):
    command: str = Field(description="Command to send to the session")


class CloseSessionParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", description="Session ID to close")
    args: list[str] = Field(
        default_factory=list,
        description="Additional shutdown commands sent before closing",
    )


class ListSessionsParams(BaseModel):
    pass


def format_output(output: CollectedOutput) -> str:
    """Render collected output as tool text."""
    parts = []
    stdout = clean_output(output.stdout)
    stderr = clean_output(output.stderr)
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    if output.reason is CompletionReason.CLOSED:
        parts.append(f"[process exited with code {output.exit_code}]")
    return "\n".join(parts) or NO_OUTPUT


class _ReplTool(BaseTool[BaseModel]):
    """Shared plumbing: name derivation, timeout screening, error mapping."""

    suffix: ClassVar[str]
    summary: ClassVar[str]

    def __init__(
        self,
        base_name: str,
        spec: SessionSpec,
        registry: SessionRegistry,
        validator: SecurityValidator,
        program_label: str | None = None,
    ) -> None:
        self.spec = spec
        self.registry = registry
        self.validator = validator
        self.name = f"{base_name}_{self.suffix}"  # type: ignore[misc]
        self.description = self.summary.format(  # type: ignore[misc]
            program=program_label or spec.program
        )

    async def execute(self, params: BaseModel) -> ToolResult:
        try:
            return await self.run(params)
        except SessionError as e:
            logger.info("Tool %s failed: %s", self.name, e)
            return ToolError(output=str(e), brief=type(e).__name__)

    async def run(self, params: BaseModel) -> ToolResult:
        raise NotImplementedError

    def _check_timeout(self, timeout: float | None) -> str | None:
        if timeout is None:
            return None
        verdict = self.validator.validate_timeout(timeout)
        return None if verdict.valid else f"Timeout validation failed: {verdict.reason}"


class StartSessionTool(_ReplTool):
    suffix = "start_session"
    summary = "Start a {program} REPL session. Returns the session ID."
    param_model = StartSessionParams

    async def run(self, params: StartSessionParams) -> ToolResult:  # type: ignore[override]
        session_id = await self.registry.create_session(self.spec, params.args)
        return ToolOk(output=f"Session started: {session_id}", brief=session_id)


class SendTool(_ReplTool):
    suffix = "send"
    summary = "Send a command to a {program} session without waiting for output."
    param_model = SendParams

    async def run(self, params: SendParams) -> ToolResult:  # type: ignore[override]
        command = self.validator.sanitize_input(params.command)
        await self.registry.send(params.session_id, command)
        return ToolOk(output="Command sent", brief=params.session_id)


class ReceiveTool(_ReplTool):
    suffix = "receive"
    summary = (
        "Read output from a {program} session. Waits until the end marker "
        "appears or the timeout elapses; an empty result is not an error."
    )
    param_model = ReceiveParams

    async def run(self, params: ReceiveParams) -> ToolResult:  # type: ignore[override]
        error = self._check_timeout(params.timeout)
        if error:
            return ToolError(output=error)
        output = await self.registry.receive(
            params.session_id, params.timeout, params.end_marker
        )
        return _result(output, params.session_id)


class SendReceiveTool(_ReplTool):
    suffix = "send_receive"
    summary = "Send a command to a {program} session and return the output it produces."
    param_model = SendReceiveParams

    async def run(self, params: SendReceiveParams) -> ToolResult:  # type: ignore[override]
        error = self._check_timeout(params.timeout)
        if error:
            return ToolError(output=error)
        command = self.validator.sanitize_input(params.command)
        output = await self.registry.send_and_receive(
            params.session_id, command, params.timeout, params.end_marker
        )
        return _result(output, params.session_id)


class CloseSessionTool(_ReplTool):
    suffix = "close_session"
    summary = "Close a {program} session and terminate its process."
    param_model = CloseSessionParams

    async def run(self, params: CloseSessionParams) -> ToolResult:  # type: ignore[override]
        exit_code = await self.registry.close(params.session_id, params.args)
        return ToolOk(
            output=f"Session closed: {params.session_id}",
            brief=f"exit={exit_code}",
        )


class ListSessionsTool(_ReplTool):
    suffix = "list_sessions"
    summary = "List open {program} sessions."
    param_model = ListSessionsParams

    async def run(self, params: ListSessionsParams) -> ToolResult:  # type: ignore[override]
        sessions = self.registry.list_sessions(spec=self.spec)
        return ToolOk(output=json.dumps(sessions, indent=2))


def _result(output: CollectedOutput, session_id: str) -> ToolResult:
    brief = f"{session_id}: {output.reason.value} after {output.elapsed:.2f}s"
    if not output.success:
        return ToolError(output=format_output(output), brief=brief)
    return ToolOk(output=format_output(output), brief=brief)


def repl_base_name(key: str, config: ReplConfig) -> str:
    """Tool-name prefix: the configured name, else the config key, made safe."""
    return re.sub(r"[^a-zA-Z0-9_]", "_", config.name or key)


def build_repl_tools(
    key: str,
    config: ReplConfig,
    registry: SessionRegistry,
    validator: SecurityValidator,
) -> list[BaseTool]:
    """Create the session tools for one configured program."""
    base_name = repl_base_name(key, config)
    spec = config.to_spec()
    return [
        tool_cls(base_name, spec, registry, validator, program_label=base_name)
        for tool_cls in (
            StartSessionTool,
            SendTool,
            ReceiveTool,
            SendReceiveTool,
            CloseSessionTool,
            ListSessionsTool,
        )
    ]
