"""Session registry — owns every live REPL session for one host process."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from typing import Any, Sequence

from shellmcp.process.collector import CollectedOutput
from shellmcp.process.errors import SessionNotActive, SessionNotFound, WriteFailed
from shellmcp.process.session import ReplSession, SessionState
from shellmcp.process.spec import SessionSpec
from shellmcp.security import SecurityValidator, Validator

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Creates, tracks and tears down REPL sessions.

    The registry is the only component that inserts into or removes from
    the id -> session map. Callers never hold a session directly: every
    operation goes through a wrapper here that looks the session up,
    checks its state and delegates. Operations on different sessions run
    in parallel; each session serializes its own operations.

    Construct one per host process and call :meth:`close_all` on shutdown.
    """

    def __init__(self, validator: Validator | None = None) -> None:
        self._sessions: dict[str, ReplSession] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._validator: Validator = validator or SecurityValidator()

    def _next_id(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"session_{n}_{time.time_ns() // 1_000_000}"

    async def create_session(
        self, spec: SessionSpec, args: Sequence[str] = ()
    ) -> str:
        """Start a session for ``spec`` and return its id.

        Raises:
            SpawnFailed: The program could not be started.
            SecurityRejected: An extra argument failed validation.
        """
        session = ReplSession(id=self._next_id(), spec=spec, validator=self._validator)
        await session.start(args)
        with self._lock:
            self._sessions[session.id] = session
        return session.id

    def _lookup(self, session_id: str) -> ReplSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def _get_active(self, session_id: str) -> ReplSession:
        session = self._lookup(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.state is not SessionState.ACTIVE:
            raise SessionNotActive(session_id)
        return session

    async def send(self, session_id: str, text: str) -> None:
        session = self._get_active(session_id)
        try:
            await session.send(text)
        except WriteFailed:
            await self._discard_dead(session_id)
            raise

    async def receive(
        self,
        session_id: str,
        timeout: float | None = None,
        end_marker: str | None = None,
    ) -> CollectedOutput:
        session = self._get_active(session_id)
        return await session.receive(timeout, end_marker)

    async def send_and_receive(
        self,
        session_id: str,
        text: str,
        timeout: float | None = None,
        end_marker: str | None = None,
    ) -> CollectedOutput:
        session = self._get_active(session_id)
        try:
            return await session.send_and_receive(text, timeout, end_marker)
        except WriteFailed:
            await self._discard_dead(session_id)
            raise

    async def close(
        self, session_id: str, extra_shutdown_args: Sequence[str] = ()
    ) -> int | None:
        """Close a session and drop it from the registry.

        Returns the process exit code, if known.
        """
        session = self._lookup(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        try:
            return await session.close(extra_shutdown_args)
        finally:
            with self._lock:
                if self._sessions.get(session_id) is session:
                    del self._sessions[session_id]

    async def _discard_dead(self, session_id: str) -> None:
        logger.warning("Session %s input stream failed, closing it", session_id)
        try:
            await self.close(session_id)
        except SessionNotFound:
            pass

    def list_active(self) -> list[str]:
        """Snapshot of ids currently in the ``ACTIVE`` state."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.id for s in sessions if s.state is SessionState.ACTIVE]

    def list_sessions(self, spec: SessionSpec | None = None) -> list[dict[str, Any]]:
        """Details of every tracked session, optionally only those for ``spec``."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.info() for s in sessions if spec is None or s.spec == spec]

    async def close_all(self) -> None:
        """Close every tracked session. Called on shutdown.

        Individual failures are logged and do not stop the sweep.
        """
        with self._lock:
            ids = list(self._sessions.keys())
        if not ids:
            return

        results = await asyncio.gather(
            *(self.close(session_id) for session_id in ids), return_exceptions=True
        )
        for session_id, result in zip(ids, results):
            if isinstance(result, SessionNotFound):
                continue
            if isinstance(result, BaseException):
                logger.error("Failed to close session %s: %s", session_id, result)
        logger.info("All REPL sessions cleaned up (%d)", len(ids))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
