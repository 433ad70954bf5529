"""Shared fixtures: small Python scripts standing in for interactive programs."""

from __future__ import annotations

import sys
from typing import AsyncIterator, Callable

import pytest

from shellmcp.process import SessionRegistry, SessionSpec

# Line-oriented echo program with a few verbs for timing and exit tests.
ECHO_SCRIPT = r"""
import sys, time
for line in sys.stdin:
    cmd = line.strip()
    if cmd == "quit":
        print("bye", flush=True)
        sys.exit(0)
    elif cmd.startswith("later "):
        time.sleep(0.3)
        print(cmd[6:], flush=True)
    elif cmd.startswith("exit "):
        sys.exit(int(cmd[5:]))
    elif cmd.startswith("err "):
        print(cmd[4:], file=sys.stderr, flush=True)
    elif cmd == "slow":
        print("working", flush=True)
        time.sleep(0.5)
        print("DONE", flush=True)
    else:
        print("echo: " + cmd, flush=True)
"""

# Ignores SIGTERM and never reads stdin, so only SIGKILL stops it.
STUBBORN_SCRIPT = r"""
import signal, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ready", flush=True)
time.sleep(60)
"""


@pytest.fixture
def echo_argv() -> list[str]:
    return ["-u", "-c", ECHO_SCRIPT]


@pytest.fixture
def script_spec() -> Callable[..., SessionSpec]:
    def make(script: str = ECHO_SCRIPT, **kwargs) -> SessionSpec:
        kwargs.setdefault("timeout", 5.0)
        return SessionSpec(program=sys.executable, start_args=("-u", "-c", script), **kwargs)

    return make


@pytest.fixture
def echo_spec(script_spec: Callable[..., SessionSpec]) -> SessionSpec:
    return script_spec()


@pytest.fixture
async def registry() -> AsyncIterator[SessionRegistry]:
    reg = SessionRegistry()
    yield reg
    await reg.close_all()


@pytest.fixture
def stubborn_argv() -> list[str]:
    return ["-u", "-c", STUBBORN_SCRIPT]


@pytest.fixture
def stubborn_spec(script_spec: Callable[..., SessionSpec]) -> SessionSpec:
    return script_spec(STUBBORN_SCRIPT)
