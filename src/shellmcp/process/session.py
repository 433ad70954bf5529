"""REPL session — a long-lived interactive process with a lifecycle."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Sequence

from shellmcp.process.collector import CollectedOutput, OutputCollector
from shellmcp.process.errors import (
    SecurityRejected,
    SessionError,
    SessionNotActive,
    SpawnError,
    SpawnFailed,
    WriteError,
    WriteFailed,
)
from shellmcp.process.handle import ProcessHandle
from shellmcp.process.spec import SessionSpec

if TYPE_CHECKING:
    from shellmcp.security import Validator

logger = logging.getLogger(__name__)

SPAWN_GRACE = 0.1  # A new process must survive this long to count as started
SHUTDOWN_COMMAND_DELAY = 0.1  # Pause after each shutdown command
GRACEFUL_EXIT_WAIT = 0.5  # Wait after closing stdin before signalling


class SessionState(enum.Enum):
    """Lifecycle states for a REPL session."""

    STARTING = "starting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReplSession:
    """An interactive program driven over its stdin/stdout/stderr.

    Every outbound line passes through the validation gate first. All
    operations on one session are serialized by a per-session lock;
    :meth:`close` additionally aborts an in-flight receive so it never
    has to wait out a long timeout.

    A program that exits on its own takes the session straight from
    ``ACTIVE`` to ``CLOSED``; a receive already in flight still reports
    the exit with reason ``closed``.
    """

    id: str
    spec: SessionSpec
    validator: Validator
    created_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)

    # Internal state
    _handle: ProcessHandle | None = field(default=None, init=False)
    _state: SessionState = field(default=SessionState.STARTING, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _collector: OutputCollector | None = field(default=None, init=False)

    async def start(self, extra_args: Sequence[str] = ()) -> str:
        """Spawn the program and confirm it stays up for the grace interval.

        Raises:
            SecurityRejected: A caller-supplied argument failed validation.
            SpawnFailed: The program is missing, unexecutable, or exited
                immediately.
        """
        if self._state is not SessionState.STARTING:
            raise SessionError(f"Session {self.id} was already started")

        for i, arg in enumerate(extra_args):
            verdict = self.validator.validate_argument(arg, f"arg_{i}")
            if not verdict.valid:
                self._state = SessionState.CLOSED
                raise SecurityRejected(verdict.reason or "argument rejected")

        args = [*self.spec.start_args, *extra_args]
        logger.info("Starting session %s: %s %s", self.id, self.spec.program, args)
        try:
            self._handle = await ProcessHandle.start(
                self.spec.program, args, cwd=self.spec.cwd
            )
        except SpawnError as e:
            self._state = SessionState.CLOSED
            raise SpawnFailed(str(e)) from e

        self._handle.subscribe_close(self._on_process_exit)
        await self._handle.wait(SPAWN_GRACE)
        if not self._handle.is_running():
            self._state = SessionState.CLOSED
            # Descendants may still hold the pipes open.
            await self._handle.terminate(graceful=False)
            raise SpawnFailed(
                f"{self.spec.program} exited immediately with code {self._handle.returncode}"
            )

        self._state = SessionState.ACTIVE
        self._touch()
        logger.info("Session %s active (pid=%d)", self.id, self._handle.pid)
        return self.id

    async def send(self, text: str) -> None:
        """Validate ``text`` and write it as one line to the program."""
        async with self._lock:
            self._require_active()
            await self._write(text)

    async def receive(
        self, timeout: float | None = None, end_marker: str | None = None
    ) -> CollectedOutput:
        """Collect output for up to ``timeout`` seconds or until ``end_marker``.

        Zero bytes within the timeout is a valid, successful result.
        """
        async with self._lock:
            self._require_active()
            collector = self._new_collector(timeout, end_marker)
            try:
                return await collector.collect()
            finally:
                self._collector = None
                self._touch()

    async def send_and_receive(
        self,
        text: str,
        timeout: float | None = None,
        end_marker: str | None = None,
    ) -> CollectedOutput:
        """Send ``text`` and collect the output it provokes.

        The collector is armed before the write, so a reply that comes
        back immediately is not missed.
        """
        async with self._lock:
            self._require_active()
            collector = self._new_collector(timeout, end_marker)
            collector.arm()
            try:
                await self._write(text)
                return await collector.collect()
            finally:
                collector.abort()
                self._collector = None
                self._touch()

    async def close(self, extra_shutdown_args: Sequence[str] = ()) -> int | None:
        """Shut the program down and reach ``CLOSED`` no matter what.

        Shutdown commands are best-effort: failures are logged and the
        sequence continues to closing stdin, a grace wait, and finally a
        forced kill.

        Returns:
            The process exit code, if known.
        """
        if self._state is SessionState.CLOSED:
            return self.exit_code

        self._state = SessionState.CLOSING
        if self._collector is not None:
            self._collector.abort()

        async with self._lock:
            if self._state is SessionState.CLOSED:
                # A concurrent close finished first.
                return self.exit_code
            self._state = SessionState.CLOSING
            try:
                await self._shutdown(extra_shutdown_args)
            except Exception:
                logger.exception("Error while closing session %s", self.id)
                if self._handle is not None:
                    await self._handle.terminate(graceful=False)
            finally:
                self._state = SessionState.CLOSED
                self._touch()

        logger.info("Closed session %s (exit code %s)", self.id, self.exit_code)
        return self.exit_code

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write(self, text: str) -> None:
        verdict = self.validator.validate(text)
        if not verdict.valid:
            logger.warning("Session %s rejected input: %s", self.id, verdict.reason)
            raise SecurityRejected(verdict.reason or "input rejected")

        assert self._handle is not None
        try:
            await self._handle.write_line(text)
        except WriteError as e:
            raise WriteFailed(str(e)) from e
        self._touch()

    async def _shutdown(self, extra_shutdown_args: Sequence[str]) -> None:
        handle = self._handle
        if handle is None:
            return

        commands = [*self.spec.shutdown_args, *extra_shutdown_args]
        for command in commands:
            if not handle.is_running():
                break
            try:
                await self._write(command)
            except (SecurityRejected, WriteFailed) as e:
                logger.warning(
                    "Shutdown command %r failed for session %s: %s", command, self.id, e
                )
            await asyncio.sleep(SHUTDOWN_COMMAND_DELAY)

        handle.close_input()
        await handle.wait(GRACEFUL_EXIT_WAIT)
        if not handle.closed:
            await handle.terminate(graceful=True)

    def _new_collector(
        self, timeout: float | None, end_marker: str | None
    ) -> OutputCollector:
        assert self._handle is not None
        collector = OutputCollector(
            self._handle,
            timeout if timeout is not None else self.spec.timeout,
            end_marker or self.spec.prompt,
        )
        self._collector = collector
        return collector

    def _on_process_exit(self, returncode: int | None) -> None:
        # Only an ACTIVE session moves here; start() and close() own the
        # other transitions.
        if self._state is not SessionState.ACTIVE:
            return
        self._state = SessionState.CLOSED
        if self._handle is not None:
            self._handle.close_input()
        logger.info("Session %s process exited on its own (code %s)", self.id, returncode)

    def _require_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise SessionNotActive(self.id)

    def _touch(self) -> None:
        self.last_activity = _now()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def alive(self) -> bool:
        return self._handle is not None and self._handle.is_running()

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @property
    def exit_code(self) -> int | None:
        return self._handle.returncode if self._handle is not None else None

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    def info(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "program": self.spec.program,
            "state": self._state.value,
            "alive": self.alive,
            "pid": self.pid,
            "exit_code": self.exit_code,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }
