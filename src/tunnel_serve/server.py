"""Static file HTTP server.

Serves a directory tree, or a single file at ``/`` and ``/<filename>``,
from a background thread so the event loop stays free for the tunnel.
"""

import functools
import posixpath
import threading
import urllib.parse
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

from .common.exceptions import ServerError
from .common.logging import get_logger

logger = get_logger(__name__)


class QuietRequestHandler(SimpleHTTPRequestHandler):
    """Request handler that logs through the structured logger."""

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("HTTP request", client=self.address_string(), message=format % args)


class SingleFileRequestHandler(QuietRequestHandler):
    """Serves one file at ``/`` and at its own name, 404 elsewhere."""

    def __init__(self, *args: Any, filename: str, **kwargs: Any):
        self.filename = filename
        super().__init__(*args, **kwargs)

    def send_head(self):  # type: ignore[no-untyped-def]
        path = urllib.parse.urlsplit(self.path).path
        path = posixpath.normpath(urllib.parse.unquote(path))
        if path not in ("/", f"/{self.filename}"):
            self.send_error(HTTPStatus.NOT_FOUND, "File not found")
            return None
        self.path = f"/{urllib.parse.quote(self.filename)}"
        return super().send_head()


class StaticServer:
    """Local HTTP server for a file or directory."""

    def __init__(self, path: str | Path, port: int, host: str = "0.0.0.0"):
        """Initialize server.

        Args:
            path: File or directory to serve
            port: Port to listen on (0 picks a free port)
            host: Interface to bind
        """
        self.path = Path(path).resolve()
        self.host = host
        self.port = port
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _handler_class(self) -> Any:
        if self.path.is_file():
            return functools.partial(
                SingleFileRequestHandler,
                directory=str(self.path.parent),
                filename=self.path.name,
            )
        return functools.partial(QuietRequestHandler, directory=str(self.path))

    def start(self) -> "StaticServer":
        """Bind the port and start serving.

        The socket is listening when this returns.

        Raises:
            ServerError: If the port cannot be bound
        """
        if self._httpd is not None:
            return self

        try:
            self._httpd = ThreadingHTTPServer(
                (self.host, self.port), self._handler_class()
            )
        except OSError as e:
            raise ServerError(f"Could not listen on port {self.port}: {e}") from e

        self.port = self._httpd.server_address[1]
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, daemon=True, name="static-server"
        )
        self._thread.start()
        logger.info("Static server started", path=str(self.path), port=self.port)
        return self

    def stop(self) -> None:
        """Stop serving and release the port."""
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        self._httpd = None
        self._thread = None
        logger.info("Static server stopped", port=self.port)

    @property
    def is_running(self) -> bool:
        return self._httpd is not None

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.port}"

    def __enter__(self) -> "StaticServer":
        return self.start()

    def __exit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        self.stop()
