"""Output collector — one bounded observation window over a process's output."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from shellmcp.process.handle import ProcessHandle

logger = logging.getLogger(__name__)

# Floor for receive timeouts; a zero or negative timeout still listens
# for this long.
MIN_RECEIVE_TIMEOUT = 0.05


class CompletionReason(enum.Enum):
    """Why a collector stopped listening."""

    MARKER = "marker"  # End marker seen in stdout
    TIMEOUT = "timeout"  # Deadline elapsed (not an error)
    CLOSED = "closed"  # Process exited
    ABORTED = "aborted"  # Session is closing


class CollectorState(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    DONE = "done"


@dataclass
class CollectedOutput:
    """Everything a single collector observed."""

    stdout: str = ""
    stderr: str = ""
    reason: CompletionReason = CompletionReason.TIMEOUT
    exit_code: int | None = None
    elapsed: float = 0.0

    @property
    def success(self) -> bool:
        """A timeout or marker match is success; closure reports the exit status."""
        if self.reason is CompletionReason.CLOSED:
            return self.exit_code == 0
        return True

    @property
    def timed_out(self) -> bool:
        return self.reason is CompletionReason.TIMEOUT


class OutputCollector:
    """Single-use accumulator: attach, wait for a termination condition, detach.

    Listens to a :class:`ProcessHandle`'s stdout and stderr until one of:

    * the end marker appears in accumulated stdout,
    * the deadline passes,
    * the process closes,
    * :meth:`abort` is called.

    The deadline is a fixed loop-time value. It is checked on every
    stdout chunk and backed by exactly one scheduled wake-up, which is
    cancelled when the collector finishes early.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        timeout: float,
        end_marker: str | None = None,
    ) -> None:
        self._handle = handle
        self._timeout = max(timeout, MIN_RECEIVE_TIMEOUT)
        self._marker = end_marker.encode("utf-8") if end_marker else None
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._scanned = 0  # stdout bytes already searched for the marker
        self._state = CollectorState.IDLE
        self._loop: asyncio.AbstractEventLoop | None = None
        self._done: asyncio.Future[CompletionReason] | None = None
        self._started = 0.0
        self._deadline = 0.0
        self._wakeup: asyncio.TimerHandle | None = None
        self._detachers: list[Callable[[], None]] = []

    @property
    def state(self) -> CollectorState:
        return self._state

    @property
    def attached(self) -> bool:
        return bool(self._detachers)

    def arm(self) -> None:
        """Attach listeners and start the clock without waiting.

        Lets a caller start listening before it writes to the process.
        :meth:`collect` then waits for the armed window to end.
        """
        if self._state is not CollectorState.IDLE:
            raise RuntimeError("OutputCollector is single-use")

        self._loop = asyncio.get_running_loop()
        self._started = self._loop.time()
        self._done = self._loop.create_future()

        if self._handle.closed:
            self._state = CollectorState.DONE
            self._done.set_result(CompletionReason.CLOSED)
            return

        self._deadline = self._started + self._timeout
        self._detachers = [
            self._handle.subscribe_output(self._on_stdout),
            self._handle.subscribe_error(self._on_stderr),
            self._handle.subscribe_close(self._on_close),
        ]
        self._state = CollectorState.LISTENING
        self._wakeup = self._loop.call_at(
            self._deadline, self._finish, CompletionReason.TIMEOUT
        )

    async def collect(self) -> CollectedOutput:
        """Wait for the observation window to end and return its output."""
        if self._state is CollectorState.IDLE:
            self.arm()
        assert self._done is not None and self._loop is not None
        try:
            reason = await self._done
        finally:
            self._state = CollectorState.DONE
            self._detach()

        return CollectedOutput(
            stdout=self._stdout.decode("utf-8", errors="replace"),
            stderr=self._stderr.decode("utf-8", errors="replace"),
            reason=reason,
            exit_code=self._handle.returncode,
            elapsed=self._loop.time() - self._started,
        )

    def abort(self) -> None:
        """Stop listening now and return what has been gathered."""
        self._finish(CompletionReason.ABORTED)

    # ------------------------------------------------------------------
    # Listener callbacks (run on the event loop by the handle's readers)
    # ------------------------------------------------------------------

    def _on_stdout(self, data: bytes) -> None:
        if self._state is not CollectorState.LISTENING:
            return
        self._stdout.extend(data)

        if self._marker is not None:
            # Only rescan the tail that could hold a marker split across chunks.
            start = max(0, self._scanned - len(self._marker) + 1)
            self._scanned = len(self._stdout)
            if self._stdout.find(self._marker, start) != -1:
                self._finish(CompletionReason.MARKER)
                return

        if self._loop is not None and self._loop.time() >= self._deadline:
            self._finish(CompletionReason.TIMEOUT)

    def _on_stderr(self, data: bytes) -> None:
        if self._state is CollectorState.LISTENING:
            self._stderr.extend(data)

    def _on_close(self, returncode: int | None) -> None:
        self._finish(CompletionReason.CLOSED)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _finish(self, reason: CompletionReason) -> None:
        if self._state is not CollectorState.LISTENING:
            return
        self._state = CollectorState.DONE
        self._detach()
        if self._done is not None and not self._done.done():
            self._done.set_result(reason)
        logger.debug(
            "Collector for pid %d finished: %s (%d stdout bytes, %d stderr bytes)",
            self._handle.pid,
            reason.value,
            len(self._stdout),
            len(self._stderr),
        )

    def _detach(self) -> None:
        if self._wakeup is not None:
            self._wakeup.cancel()
            self._wakeup = None
        for detach in self._detachers:
            detach()
        self._detachers = []
