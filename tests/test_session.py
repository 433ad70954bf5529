"""Tests for shellmcp.process.session (ReplSession lifecycle and I/O)."""

from __future__ import annotations

import asyncio
import shutil
import signal
import sys
from typing import Callable

import pytest

from shellmcp.config import SecurityConfig
from shellmcp.process import handle as handle_module
from shellmcp.process import session as session_module
from shellmcp.process import (
    CompletionReason,
    ReplSession,
    SecurityRejected,
    SessionError,
    SessionNotActive,
    SessionSpec,
    SessionState,
    SpawnFailed,
)
from shellmcp.security import SecurityValidator

# Exits at once while a child process keeps its output pipes open.
HOLD_PIPES_SCRIPT = (
    "import subprocess, sys\n"
    "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
    "sys.exit(4)\n"
)


def _session(spec: SessionSpec, validator: SecurityValidator | None = None) -> ReplSession:
    return ReplSession(id="session_test", spec=spec, validator=validator or SecurityValidator())


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


class TestStart:
    async def test_becomes_active(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        assert session.state is SessionState.STARTING
        try:
            assert await session.start() == "session_test"
            assert session.state is SessionState.ACTIVE
            assert session.alive
            assert session.pid is not None
        finally:
            await session.close()

    async def test_start_twice(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            with pytest.raises(SessionError):
                await session.start()
        finally:
            await session.close()

    async def test_missing_program(self) -> None:
        session = _session(SessionSpec(program="/nonexistent/repl"))
        with pytest.raises(SpawnFailed):
            await session.start()
        assert session.state is SessionState.CLOSED

    async def test_exits_immediately(self) -> None:
        false = shutil.which("false")
        if false is None:
            pytest.skip("false(1) not available")
        session = _session(SessionSpec(program=false))
        with pytest.raises(SpawnFailed, match="exited immediately"):
            await session.start()
        assert session.state is SessionState.CLOSED

    async def test_rejected_extra_args(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        with pytest.raises(SecurityRejected):
            await session.start(["; rm -rf /"])
        assert session.state is SessionState.CLOSED
        assert session.pid is None

    async def test_extra_args_screened_as_arguments(self, echo_spec: SessionSpec) -> None:
        # An allow list names base commands; it must not apply to argv tokens.
        validator = SecurityValidator(SecurityConfig(allowed_commands=["print"]))
        session = _session(echo_spec, validator)
        try:
            await session.start(["-q"])
            assert session.state is SessionState.ACTIVE
        finally:
            await session.close()

    async def test_exit_detected_while_pipes_held_open(
        self,
        script_spec: Callable[..., SessionSpec],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(session_module, "SPAWN_GRACE", 1.0)
        monkeypatch.setattr(handle_module, "DRAIN_TIMEOUT", 5.0)
        spec = script_spec(HOLD_PIPES_SCRIPT)
        session = _session(spec)
        with pytest.raises(SpawnFailed, match="exited immediately with code 4"):
            await session.start()
        assert session.state is SessionState.CLOSED
        assert session.handle is not None
        assert not session.handle.is_running()
        assert await session.handle.wait(5) == 4

    def test_empty_program_rejected(self) -> None:
        with pytest.raises(ValueError):
            SessionSpec(program="  ")


# ---------------------------------------------------------------------------
# send / receive
# ---------------------------------------------------------------------------


class TestSendReceive:
    async def test_send_and_receive(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            out = await session.send_and_receive("ping", timeout=2, end_marker="\n")
            assert out.reason is CompletionReason.MARKER
            assert "echo: ping" in out.stdout
        finally:
            await session.close()

    async def test_send_then_receive_delayed_reply(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            await session.send("later ping")
            out = await session.receive(timeout=2, end_marker="ping")
            assert "ping" in out.stdout
        finally:
            await session.close()

    async def test_receive_without_output_is_success(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            loop = asyncio.get_running_loop()
            started = loop.time()
            out = await session.receive(timeout=0.3)
            elapsed = loop.time() - started
            assert out.reason is CompletionReason.TIMEOUT
            assert out.success
            assert out.stdout == ""
            assert 0.25 <= elapsed < 2
        finally:
            await session.close()

    async def test_end_marker_returns_early(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            out = await session.send_and_receive("slow", timeout=10, end_marker="DONE")
            assert out.reason is CompletionReason.MARKER
            assert "working" in out.stdout
            assert "DONE" in out.stdout
            assert out.elapsed < 3
        finally:
            await session.close()

    async def test_prompt_is_default_marker(
        self, script_spec: Callable[..., SessionSpec]
    ) -> None:
        session = _session(script_spec(prompt="DONE", timeout=10))
        await session.start()
        try:
            out = await session.send_and_receive("slow")
            assert out.reason is CompletionReason.MARKER
        finally:
            await session.close()

    async def test_stderr_is_captured(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            out = await session.send_and_receive("err oops", timeout=0.5)
            assert out.stderr.strip() == "oops"
        finally:
            await session.close()

    async def test_rejected_send_never_reaches_process(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            with pytest.raises(SecurityRejected) as exc:
                await session.send("hello; whoami")
            assert "dangerous operator" in str(exc.value)
            assert session.state is SessionState.ACTIVE

            out = await session.send_and_receive("ping", timeout=2, end_marker="ping")
            assert "whoami" not in out.stdout
            assert "hello" not in out.stdout
        finally:
            await session.close()

    async def test_updates_last_activity(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            before = session.last_activity
            await asyncio.sleep(0.01)
            await session.send("noop")
            assert session.last_activity > before
            assert session.created_at <= before
        finally:
            await session.close()

    async def test_concurrent_calls_are_serialized(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            first, second = await asyncio.gather(
                session.send_and_receive("a", timeout=2, end_marker="\n"),
                session.send_and_receive("b", timeout=2, end_marker="\n"),
            )
            assert first.stdout == "echo: a\n"
            assert second.stdout == "echo: b\n"
        finally:
            await session.close()

    async def test_process_exit_reported(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        try:
            out = await session.send_and_receive("exit 3", timeout=5)
            assert out.reason is CompletionReason.CLOSED
            assert out.exit_code == 3
            assert not out.success
            assert not session.alive
            assert session.state is SessionState.CLOSED
            assert session.info()["exit_code"] == 3

            with pytest.raises(SessionNotActive):
                await session.send("hello")
            with pytest.raises(SessionNotActive):
                await session.receive(timeout=0.1)
        finally:
            await session.close()

    async def test_exit_without_receive_closes_session(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        await session.send("exit 0")
        assert session.handle is not None
        assert await session.handle.wait(5) == 0
        assert session.state is SessionState.CLOSED
        assert await session.close() == 0


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------


class TestClose:
    async def test_shutdown_command(self, script_spec: Callable[..., SessionSpec]) -> None:
        session = _session(script_spec(shutdown_args=["quit"]))
        await session.start()
        assert await session.close() == 0
        assert session.state is SessionState.CLOSED
        assert not session.alive

    async def test_eof_without_shutdown_args(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        assert await session.close() == 0

    async def test_failing_shutdown_args_still_close(
        self, script_spec: Callable[..., SessionSpec]
    ) -> None:
        session = _session(script_spec(shutdown_args=["exit && reboot", "quit"]))
        await session.start()
        await session.close(["../../escape"])
        assert session.state is SessionState.CLOSED
        assert not session.alive

    async def test_forced_kill(self, stubborn_spec: SessionSpec) -> None:
        session = _session(stubborn_spec)
        await session.start()
        assert await session.close() == -signal.SIGKILL
        assert session.state is SessionState.CLOSED

    async def test_close_is_idempotent(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        first = await session.close()
        assert await session.close() == first

    async def test_concurrent_close(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        codes = await asyncio.gather(session.close(), session.close())
        assert codes[0] == codes[1] == 0
        assert session.state is SessionState.CLOSED

    async def test_close_aborts_pending_receive(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        receive = asyncio.create_task(session.receive(timeout=30))
        await asyncio.sleep(0.1)
        await asyncio.wait_for(session.close(), timeout=5)
        out = await asyncio.wait_for(receive, timeout=1)
        assert out.reason is CompletionReason.ABORTED
        assert session.handle is not None and session.handle.listener_count == 0

    async def test_operations_after_close(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        await session.close()
        with pytest.raises(SessionNotActive):
            await session.send("ping")
        with pytest.raises(SessionNotActive):
            await session.receive(timeout=0.1)

    async def test_info(self, echo_spec: SessionSpec) -> None:
        session = _session(echo_spec)
        await session.start()
        info = session.info()
        assert info["id"] == "session_test"
        assert info["program"] == sys.executable
        assert info["state"] == "active"
        assert info["alive"] is True
        await session.close()
        assert session.info()["state"] == "closed"
