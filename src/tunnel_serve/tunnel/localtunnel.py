"""localtunnel connector.

Drives the official localtunnel client (``lt``, or ``npx localtunnel`` when
it is not installed globally) behind an awaitable ``connect()`` call that
resolves to a connection with a public URL or raises.
"""

import asyncio
import re
import shutil

from ..common.exceptions import SpawnError, TunnelConnectError
from ..common.logging import get_logger
from .lines import iter_lines

logger = get_logger(__name__)

URL_PATTERN = re.compile(r"your url is:\s*(https://\S+)", re.IGNORECASE)

DEFAULT_URL_TIMEOUT = 30.0


class LocaltunnelConnection:
    """An established localtunnel with its client process."""

    def __init__(self, url: str, process: asyncio.subprocess.Process):
        self.url = url
        self._process = process
        self._closed = False
        self._drain_task = asyncio.create_task(self._drain())

    @property
    def pid(self) -> int:
        return self._process.pid

    async def _drain(self) -> None:
        """Keep reading client output so its pipe never fills."""
        assert self._process.stdout is not None
        async for line in iter_lines(self._process.stdout):
            if line.strip():
                logger.warning("localtunnel reported", line=line)

    async def wait_closed(self) -> None:
        """Wait until the tunnel client exits."""
        await self._drain_task
        code = await self._process.wait()
        logger.info("localtunnel client exited", pid=self.pid, exit_code=code)

    def close(self) -> None:
        """Kill the tunnel client if it is still running."""
        if self._closed:
            return
        self._closed = True
        if self._process.returncode is not None:
            return
        logger.info("Stopping localtunnel client", pid=self.pid)
        try:
            self._process.kill()
        except ProcessLookupError:
            logger.debug("localtunnel client already exited", pid=self.pid)


class LocaltunnelClient:
    """Opens localtunnel connections for a local port."""

    def __init__(
        self,
        url_timeout: float = DEFAULT_URL_TIMEOUT,
        host: str | None = None,
    ):
        """Initialize client.

        Args:
            url_timeout: Seconds to wait for the public URL
            host: Alternative localtunnel server, e.g. https://localtunnel.me
        """
        self.url_timeout = url_timeout
        self.host = host

    def build_command(self, local_port: int, subdomain: str | None = None) -> list[str]:
        """Build the client command line.

        Raises:
            SpawnError: If neither ``lt`` nor ``npx`` is on PATH
        """
        if shutil.which("lt"):
            cmd = ["lt"]
        elif shutil.which("npx"):
            cmd = ["npx", "--yes", "localtunnel"]
        else:
            raise SpawnError(
                "Neither 'lt' nor 'npx' found on PATH. "
                "Install localtunnel: npm install -g localtunnel"
            )

        cmd.extend(["--port", str(local_port)])
        if subdomain:
            cmd.extend(["--subdomain", subdomain])
        if self.host:
            cmd.extend(["--host", self.host])
        return cmd

    async def connect(
        self, local_port: int, subdomain: str | None = None
    ) -> LocaltunnelConnection:
        """Open a tunnel and wait for its public URL.

        Raises:
            SpawnError: If the client cannot be started
            TunnelConnectError: If no URL is received
        """
        cmd = self.build_command(local_port, subdomain)
        logger.info("Starting localtunnel client", command=" ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise SpawnError(f"Failed to start '{cmd[0]}': {e}") from e

        try:
            async with asyncio.timeout(self.url_timeout):
                url = await self._read_url(process)
        except TimeoutError:
            process.kill()
            await process.wait()
            raise TunnelConnectError(
                f"Timed out waiting for localtunnel URL ({self.url_timeout:g} s)"
            ) from None
        except asyncio.CancelledError:
            logger.info("localtunnel connect cancelled", pid=process.pid)
            if process.returncode is None:
                process.kill()
            raise

        if url is None:
            code = await process.wait()
            raise TunnelConnectError(
                f"localtunnel exited with code {code} before printing a URL"
            )

        if subdomain and not url.startswith(f"https://{subdomain}."):
            logger.warning(
                "Requested subdomain was not granted", subdomain=subdomain, url=url
            )

        logger.info("localtunnel ready", url=url, pid=process.pid)
        return LocaltunnelConnection(url, process)

    async def _read_url(self, process: asyncio.subprocess.Process) -> str | None:
        assert process.stdout is not None
        async for line in iter_lines(process.stdout):
            logger.debug("localtunnel output", line=line)
            match = URL_PATTERN.search(line)
            if match:
                return match.group(1).rstrip("/")
        return None
