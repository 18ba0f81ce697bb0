"""Tests for the localtunnel connector."""

import asyncio

import pytest

from tunnel_serve.common.exceptions import SpawnError, TunnelConnectError
from tunnel_serve.tunnel.localtunnel import LocaltunnelClient


def _which(*available):
    def which(name):
        return f"/usr/local/bin/{name}" if name in available else None

    return which


class TestBuildCommand:
    def test_prefers_lt(self, monkeypatch):
        monkeypatch.setattr("shutil.which", _which("lt", "npx"))
        client = LocaltunnelClient()

        assert client.build_command(3000) == ["lt", "--port", "3000"]

    def test_falls_back_to_npx(self, monkeypatch):
        monkeypatch.setattr("shutil.which", _which("npx"))
        client = LocaltunnelClient()

        assert client.build_command(3000, "mysite") == [
            "npx",
            "--yes",
            "localtunnel",
            "--port",
            "3000",
            "--subdomain",
            "mysite",
        ]

    def test_custom_host(self, monkeypatch):
        monkeypatch.setattr("shutil.which", _which("lt"))
        client = LocaltunnelClient(host="https://tunnel.example.com")

        cmd = client.build_command(8080)
        assert cmd[-2:] == ["--host", "https://tunnel.example.com"]

    def test_missing_client(self, monkeypatch):
        monkeypatch.setattr("shutil.which", _which())
        with pytest.raises(SpawnError, match="npm install -g localtunnel"):
            LocaltunnelClient().build_command(3000)


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_resolves_url(self, monkeypatch, fake_exec):
        """--tunnel localtunnel resolves to the printed URL"""
        monkeypatch.setattr("shutil.which", _which("lt"))
        fake_exec.on_spawn = lambda process: process.emit("your url is: https://abc.loca.lt/")

        connection = await LocaltunnelClient().connect(3000)

        assert connection.url == "https://abc.loca.lt"
        cmd, kwargs = fake_exec.calls[0]
        assert cmd == ["lt", "--port", "3000"]
        assert kwargs["stderr"] == asyncio.subprocess.STDOUT

    @pytest.mark.asyncio
    async def test_close_kills_client(self, monkeypatch, fake_exec):
        monkeypatch.setattr("shutil.which", _which("lt"))
        fake_exec.on_spawn = lambda process: process.emit("your url is: https://abc.loca.lt")
        connection = await LocaltunnelClient().connect(3000)
        process = fake_exec.processes[0]

        connection.close()
        connection.close()
        await asyncio.wait_for(connection.wait_closed(), timeout=1.0)

        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_wait_closed_on_client_exit(self, monkeypatch, fake_exec):
        monkeypatch.setattr("shutil.which", _which("lt"))
        fake_exec.on_spawn = lambda process: process.emit("your url is: https://abc.loca.lt")
        connection = await LocaltunnelClient().connect(3000)

        fake_exec.processes[0].emit("Error: connection refused: localtunnel.me")
        fake_exec.processes[0].exit(1)
        await asyncio.wait_for(connection.wait_closed(), timeout=1.0)

        connection.close()
        fake_exec.processes[0].kill.assert_not_called()

    @pytest.mark.asyncio
    async def test_exit_before_url(self, monkeypatch, fake_exec):
        monkeypatch.setattr("shutil.which", _which("lt"))

        def _fail(process):
            process.emit("Error: subdomain is taken")
            process.exit(1)

        fake_exec.on_spawn = _fail

        with pytest.raises(TunnelConnectError, match="exited with code 1"):
            await LocaltunnelClient().connect(3000, "taken")

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch, fake_exec):
        """No URL within the timeout rejects the connect call"""
        monkeypatch.setattr("shutil.which", _which("lt"))

        with pytest.raises(TunnelConnectError, match="Timed out"):
            await LocaltunnelClient(url_timeout=0.05).connect(3000)

        fake_exec.processes[0].kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_spawn_failure(self, monkeypatch):
        monkeypatch.setattr("shutil.which", _which("lt"))

        async def _broken(*cmd, **kwargs):
            raise PermissionError(13, "Permission denied", "lt")

        monkeypatch.setattr("asyncio.create_subprocess_exec", _broken)

        with pytest.raises(SpawnError, match="Failed to start 'lt'"):
            await LocaltunnelClient().connect(3000)

    @pytest.mark.asyncio
    async def test_cancelled_connect_kills_client(self, monkeypatch, fake_exec, settle):
        """Abandoning the connect call does not leave the client running"""
        monkeypatch.setattr("shutil.which", _which("lt"))
        task = asyncio.create_task(LocaltunnelClient().connect(3000))
        await settle()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        process = fake_exec.processes[0]
        process.kill.assert_called_once()
        assert process.returncode == -9
