"""Session spec — what to launch for an interactive session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class SessionSpec:
    """Immutable description of an interactive program.

    ``start_args`` are passed on the command line at spawn time;
    ``shutdown_args`` are written to the program's input, one per line,
    when the session is closed (e.g. ``exit()`` or ``\\q``). ``prompt`` is
    used as the default end marker when a receive names none.
    """

    program: str
    start_args: Sequence[str] = ()
    shutdown_args: Sequence[str] = ()
    timeout: float = 30.0
    prompt: str | None = None
    cwd: str | None = None

    def __post_init__(self) -> None:
        if not self.program or not self.program.strip():
            raise ValueError("SessionSpec.program must be non-empty")
        object.__setattr__(self, "start_args", tuple(self.start_args))
        object.__setattr__(self, "shutdown_args", tuple(self.shutdown_args))
