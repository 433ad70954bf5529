"""Interactive process management — REPL sessions over plain pipes.

Each session owns exactly one child process, started without a shell.
Output is read through single-use collectors that stop on an end
marker, a deadline, or process exit.
"""

from shellmcp.process.collector import (
    CollectedOutput,
    CompletionReason,
    OutputCollector,
)
from shellmcp.process.errors import (
    SecurityRejected,
    SessionError,
    SessionNotActive,
    SessionNotFound,
    SpawnError,
    SpawnFailed,
    WriteError,
    WriteFailed,
)
from shellmcp.process.handle import ProcessHandle
from shellmcp.process.registry import SessionRegistry
from shellmcp.process.session import ReplSession, SessionState
from shellmcp.process.spec import SessionSpec

__all__ = [
    "CollectedOutput",
    "CompletionReason",
    "OutputCollector",
    "ProcessHandle",
    "ReplSession",
    "SecurityRejected",
    "SessionError",
    "SessionNotActive",
    "SessionNotFound",
    "SessionRegistry",
    "SessionSpec",
    "SessionState",
    "SpawnError",
    "SpawnFailed",
    "WriteError",
    "WriteFailed",
]
