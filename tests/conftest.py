"""Shared pytest fixtures for tunnel-serve tests."""

import asyncio
import sys
from collections.abc import Callable
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import structlog

from tunnel_serve.common.logging import setup_logging


@pytest.fixture(autouse=True)
def _diagnostics_to_stderr():
    """Keep structlog diagnostics off the captured stdout."""
    setup_logging(level="DEBUG", stream=sys.stderr)
    yield
    structlog.reset_defaults()


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process driven by the test."""

    def __init__(self, pid: int = 12345):
        self.pid = pid
        self.returncode: int | None = None
        self.stdin = Mock()
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.kill = Mock(side_effect=self._kill)
        self._exited = asyncio.Event()

    def emit(self, line: str) -> None:
        """Write a line to standard output."""
        self.stdout.feed_data(f"{line}\n".encode())

    def emit_error(self, line: str) -> None:
        """Write a line to standard error."""
        self.stderr.feed_data(f"{line}\n".encode())

    def exit(self, code: int) -> None:
        """Close the output streams and exit with the given code."""
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def _kill(self) -> None:
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Coroutine function that lets pending reader and watcher tasks run."""
    return _settle


@pytest.fixture
def fake_exec(monkeypatch):
    """Patch asyncio.create_subprocess_exec to hand out FakeProcess objects.

    Set ``fake_exec.on_spawn`` to script output before the caller reads it.

    Returns:
        SimpleNamespace with ``processes``, ``calls`` and ``on_spawn``
    """
    state = SimpleNamespace(processes=[], calls=[], on_spawn=None)

    async def _create(*cmd, **kwargs):
        state.calls.append((list(cmd), kwargs))
        process = FakeProcess(pid=12345 + len(state.processes))
        state.processes.append(process)
        on_spawn: Callable[[FakeProcess], None] | None = state.on_spawn
        if on_spawn is not None:
            on_spawn(process)
        return process

    monkeypatch.setattr("asyncio.create_subprocess_exec", _create)
    return state


class FakeConnection:
    """Connection returned by a fake connector."""

    def __init__(self, url: str):
        self.url = url
        self.close = Mock(side_effect=self._close)
        self._closed = asyncio.Event()

    def _close(self) -> None:
        self._closed.set()

    def drop(self) -> None:
        """Simulate the remote end closing the tunnel."""
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()


@pytest.fixture
def fake_connector():
    """Connector resolving to a FakeConnection for https://abc.loca.lt.

    Returns:
        SimpleNamespace with ``connect``, ``calls`` and ``connections``
    """
    state = SimpleNamespace(calls=[], connections=[], error=None)

    async def connect(local_port, subdomain=None):
        state.calls.append((local_port, subdomain))
        if state.error is not None:
            raise state.error
        connection = FakeConnection(f"https://{subdomain or 'abc'}.loca.lt")
        state.connections.append(connection)
        return connection

    state.connect = connect
    return state


@pytest.fixture
def site_dir(tmp_path):
    """Directory with a small static site."""
    (tmp_path / "index.html").write_text("<h1>hello</h1>")
    (tmp_path / "notes.txt").write_text("some notes")
    return tmp_path
