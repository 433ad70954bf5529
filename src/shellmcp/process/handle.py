"""Process handle — one spawned child with subscribable output streams."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Callable, Sequence

from shellmcp.process.errors import SpawnError, WriteError

logger = logging.getLogger(__name__)

Listener = Callable[[bytes], None]
CloseListener = Callable[["int | None"], None]
Unsubscribe = Callable[[], None]

READ_CHUNK_SIZE = 4096
TERMINATE_GRACE = 1.0  # seconds between SIGTERM and SIGKILL, and after SIGKILL
DRAIN_TIMEOUT = 0.5  # seconds to let readers flush pipes after exit


class ProcessHandle:
    """A child process started without a shell, with listener-based output.

    The handle continuously drains stdout and stderr and hands each chunk
    to whatever listeners are attached at that moment. Nothing is
    buffered for absent listeners: bytes that arrive while nobody is
    subscribed are dropped.

    The child runs in its own session (``start_new_session``) so the
    whole process tree can be signalled at once.
    """

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        proc: asyncio.subprocess.Process,
    ) -> None:
        self.program = program
        self.args = list(args)
        self._proc = proc
        try:
            self._pgid = os.getpgid(proc.pid)
        except ProcessLookupError:
            # Already gone; with start_new_session the group id is the pid.
            self._pgid = proc.pid
        self._stdout_listeners: list[Listener] = []
        self._stderr_listeners: list[Listener] = []
        self._close_listeners: list[CloseListener] = []
        self._closed = asyncio.Event()
        self._readers: list[asyncio.Task] = []
        self._watcher: asyncio.Task | None = None

    @classmethod
    async def start(
        cls,
        program: str,
        args: Sequence[str] = (),
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessHandle:
        """Spawn ``program`` with a discrete argument list.

        Raises:
            SpawnError: The program could not be located or executed.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,  # Own process group
                cwd=cwd,
                env={**os.environ, **(env or {})},
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Cannot execute {program!r}: {e}") from e

        handle = cls(program, args, proc)
        handle._readers = [
            asyncio.create_task(
                handle._read_loop(proc.stdout, handle._stdout_listeners, "stdout")
            ),
            asyncio.create_task(
                handle._read_loop(proc.stderr, handle._stderr_listeners, "stderr")
            ),
        ]
        handle._watcher = asyncio.create_task(handle._watch_exit())

        logger.info(
            "Process started: pid=%d pgid=%d cmd=%s",
            proc.pid,
            handle._pgid,
            " ".join([program, *args]),
        )
        return handle

    # ------------------------------------------------------------------
    # Stream pumping
    # ------------------------------------------------------------------

    async def _read_loop(
        self,
        stream: asyncio.StreamReader | None,
        listeners: list[Listener],
        name: str,
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                data = await stream.read(READ_CHUNK_SIZE)
            except (OSError, ValueError) as e:
                logger.debug("%s reader for pid %d ended: %s", name, self.pid, e)
                break
            if not data:
                break
            # Copy: listeners may unsubscribe themselves while being called.
            for listener in list(listeners):
                try:
                    listener(data)
                except Exception:
                    logger.exception("Error in %s listener for pid %d", name, self.pid)

    async def _watch_exit(self) -> None:
        returncode = await self._proc.wait()
        await asyncio.wait(self._readers, timeout=DRAIN_TIMEOUT)
        self._closed.set()
        logger.info("Process %d (%s) exited with code %s", self.pid, self.program, returncode)
        for listener in list(self._close_listeners):
            try:
                listener(returncode)
            except Exception:
                logger.exception("Error in close listener for pid %d", self.pid)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_output(self, listener: Listener) -> Unsubscribe:
        """Attach a stdout listener. Returns a callable that detaches it."""
        return _subscribe(self._stdout_listeners, listener)

    def subscribe_error(self, listener: Listener) -> Unsubscribe:
        """Attach a stderr listener. Returns a callable that detaches it."""
        return _subscribe(self._stderr_listeners, listener)

    def subscribe_close(self, listener: CloseListener) -> Unsubscribe:
        """Attach a listener called once with the exit code on closure."""
        return _subscribe(self._close_listeners, listener)

    @property
    def listener_count(self) -> int:
        return (
            len(self._stdout_listeners)
            + len(self._stderr_listeners)
            + len(self._close_listeners)
        )

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def write_line(self, text: str) -> None:
        """Write ``text`` plus a newline to the child's stdin.

        Raises:
            WriteError: The input stream is closed or the child is gone.
        """
        stdin = self._proc.stdin
        if stdin is None or stdin.is_closing():
            raise WriteError("Process input stream is closed")
        if not self.is_running():
            raise WriteError(f"Process {self.pid} has exited")
        try:
            stdin.write((text + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WriteError(f"Failed to write to process {self.pid}: {e}") from e
        logger.debug("pid %d <- %r", self.pid, text)

    def close_input(self) -> None:
        """Close stdin so the child sees EOF."""
        stdin = self._proc.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        """Non-blocking liveness check."""
        return self._proc.returncode is None

    @property
    def closed(self) -> bool:
        """True once the child has exited and its streams were drained."""
        return self._closed.is_set()

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def pid(self) -> int:
        return self._proc.pid

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for closure. Returns the exit code, or None on timeout."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._proc.returncode

    async def terminate(
        self, graceful: bool = True, grace: float = TERMINATE_GRACE
    ) -> int | None:
        """Stop the process tree.

        Graceful: SIGTERM, then wait ``grace`` seconds. Whatever happened,
        a process still running at that point is SIGKILLed.
        """
        if self.closed:
            return self.returncode

        if graceful:
            self._signal(signal.SIGTERM)
            await self.wait(grace)
            if self.closed:
                return self.returncode
            logger.warning("Process %d ignored SIGTERM, killing", self.pid)

        self._signal(signal.SIGKILL)
        await self.wait(grace)
        if not self.closed:
            logger.error("Process %d did not exit after SIGKILL", self.pid)
            for task in [*self._readers, self._watcher]:
                if task is not None:
                    task.cancel()
        return self.returncode

    def _signal(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self._pgid, sig)
            logger.info("Sent %s to process group %d", sig.name, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except PermissionError as e:
            logger.warning("Cannot signal process group %d: %s", self._pgid, e)


def _subscribe(listeners: list, listener: Callable) -> Unsubscribe:
    listeners.append(listener)

    def unsubscribe() -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            pass

    return unsubscribe
