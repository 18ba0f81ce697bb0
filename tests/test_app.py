"""Tests for run orchestration."""

import asyncio
import socket

import pytest

from tunnel_serve.app import run
from tunnel_serve.common.exceptions import TunnelConnectError
from tunnel_serve.config import ServeOptions
from tunnel_serve.coordinator import CoordinatorSettings, ExitCoordinator
from tunnel_serve.tunnel.models import TunnelRequest
from tunnel_serve.tunnel.registry import LOCALTUNNEL, PINGGY

pytestmark = pytest.mark.integration


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class InputScript(list):
    """Callables run against the coordinator once it listens for input."""

    def __init__(self):
        super().__init__()
        self.attached = []
        self.tasks = []


@pytest.fixture
def input_actions(monkeypatch, settle):
    """Replace keyboard attachment with scripted input.

    Append callables taking the coordinator. They run in order, with
    pending tasks settled before and after each one, after the
    coordinator starts listening for input.
    """
    script = InputScript()

    async def play(coordinator):
        await settle()
        for action in script:
            action(coordinator)
            await settle()

    def attach(self):
        script.attached.append(self)
        script.tasks.append(asyncio.ensure_future(play(self)))
        return False

    monkeypatch.setattr(ExitCoordinator, "attach", attach)
    return script


@pytest.fixture
def options(site_dir):
    def _make(provider=None, subdomain=None):
        port = _free_port()
        tunnel = None
        if provider is not None:
            tunnel = TunnelRequest(provider=provider, local_port=port, subdomain=subdomain)
        return ServeOptions(port=port, path=site_dir, tunnel=tunnel)

    return _make


class TestRun:
    @pytest.mark.asyncio
    async def test_without_tunnel_until_confirmed(self, options, input_actions, capsys):
        """Serving only ends on confirmed shutdown"""
        input_actions.append(lambda c: c.feed(c.settings.confirm_key))
        input_actions.append(lambda c: c.feed(c.settings.confirm_key))

        status = await run(options(), CoordinatorSettings(window=5.0))

        assert status == 0
        out = capsys.readouterr().out
        assert "Serving" in out
        assert "http://localhost:" in out
        assert "Press Ctrl+C again to stop" in out

    @pytest.mark.asyncio
    async def test_connected_tunnel_closed_remotely(
        self, options, input_actions, fake_connector, capsys
    ):
        input_actions.append(lambda c: fake_connector.connections[0].drop())

        status = await run(options(LOCALTUNNEL, "demo"), connector=fake_connector.connect)

        assert status == 0
        assert fake_connector.calls[0][1] == "demo"
        out = capsys.readouterr().out
        assert "Public URL: https://demo.loca.lt" in out
        assert "Tunnel closed" in out

    @pytest.mark.asyncio
    async def test_confirmed_shutdown_closes_connection(
        self, options, input_actions, fake_connector, capsys
    ):
        input_actions.append(lambda c: c.feed(c.settings.confirm_key))
        input_actions.append(lambda c: c.feed(c.settings.confirm_key))

        status = await run(options(LOCALTUNNEL), connector=fake_connector.connect)

        assert status == 0
        fake_connector.connections[0].close.assert_called_once()
        assert "Tunnel closed" not in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_confirmed_shutdown_while_connecting(
        self, options, input_actions, capsys
    ):
        """Shutdown does not wait for a pending connect call"""
        events = []

        async def connect(local_port, subdomain=None):
            events.append(("connect", len(input_actions.attached)))
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                events.append(("cancelled", None))
                raise

        input_actions.append(lambda c: c.feed(c.settings.confirm_key))
        input_actions.append(lambda c: c.feed(c.settings.confirm_key))

        status = await asyncio.wait_for(
            run(options(LOCALTUNNEL), connector=connect), timeout=2.0
        )

        assert status == 0
        assert events == [("connect", 1), ("cancelled", None)]
        captured = capsys.readouterr()
        assert "Press Ctrl+C twice to stop" in captured.out
        assert "Public URL" not in captured.out
        assert "Error" not in captured.err

    @pytest.mark.asyncio
    async def test_session_ended_while_connecting(self, options, input_actions):
        """A terminated coordinator leaves no connect call running"""
        cancelled = asyncio.Event()

        async def connect(local_port, subdomain=None):
            try:
                await asyncio.Event().wait()
            finally:
                cancelled.set()

        input_actions.append(lambda c: c.terminate(1))

        status = await asyncio.wait_for(
            run(options(LOCALTUNNEL), connector=connect), timeout=2.0
        )

        assert status == 1
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_connect_failure(self, options, input_actions, fake_connector, capsys):
        fake_connector.error = TunnelConnectError("Timed out waiting for localtunnel URL (30s)")

        status = await run(options(LOCALTUNNEL), connector=fake_connector.connect)

        assert status == 1
        err = capsys.readouterr().err
        assert "Tunnel failed" in err
        assert "Timed out" in err

    @pytest.mark.asyncio
    async def test_subprocess_tunnel_abnormal_exit(
        self, options, input_actions, fake_exec, capsys
    ):
        """A provider dying after its URL ends the run with failure"""
        fake_exec.on_spawn = lambda p: p.emit("https://abc.a.free.pinggy.link")
        input_actions.append(lambda c: fake_exec.processes[0].exit(7))

        status = await run(options(PINGGY))

        assert status == 1
        captured = capsys.readouterr()
        assert "Public URL: https://abc.a.free.pinggy.link" in captured.out
        assert "abnormally" in captured.err
        assert "exit code 7" in captured.err

    @pytest.mark.asyncio
    async def test_subprocess_tunnel_benign_exit(
        self, options, input_actions, fake_exec, capsys
    ):
        fake_exec.on_spawn = lambda p: p.emit("https://abc.a.free.pinggy.link")
        input_actions.append(lambda c: fake_exec.processes[0].exit(255))

        assert await run(options(PINGGY)) == 0
        assert "Tunnel closed" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_subprocess_spawn_failure(self, options, input_actions, monkeypatch, capsys):
        async def _missing(*cmd, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        monkeypatch.setattr("asyncio.create_subprocess_exec", _missing)

        assert await run(options(PINGGY)) == 1
        assert "Failed to start 'ssh'" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_port_in_use(self, site_dir, capsys):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("0.0.0.0", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            status = await run(ServeOptions(port=port, path=site_dir))

        assert status == 1
        assert "Could not listen on port" in capsys.readouterr().err
