"""Session error taxonomy.

``SpawnError`` and ``WriteError`` are raised by the process handle; the
session layer translates them into ``SpawnFailed`` / ``WriteFailed`` so
callers only ever see ``SessionError`` subclasses.
"""

from __future__ import annotations


class SpawnError(OSError):
    """The child process could not be located or executed."""


class WriteError(OSError):
    """The child's input stream is closed or broken."""


class SessionError(Exception):
    """Base class for all session-level failures."""


class SpawnFailed(SessionError):
    """The session's process could not be started or exited immediately."""


class SecurityRejected(SessionError):
    """The validation gate refused the outbound text.

    The session is left untouched and remains usable.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(f"Security validation failed: {reason}")
        self.reason = reason


class SessionNotFound(SessionError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionNotActive(SessionError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session is not active: {session_id}")
        self.session_id = session_id


class WriteFailed(SessionError):
    """Writing to the session's input stream failed; the session is dead."""
