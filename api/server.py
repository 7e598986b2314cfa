"""
Conduit - HTTP Listener

Runs a FastAPI application under uvicorn inside the caller's event loop.
The socket is bound here rather than by uvicorn so bind failures surface as
``ListenError`` with the OS errno, and so port 0 resolves to a real port.
Signal handling stays with the lifecycle's ShutdownCoordinator.
"""

from __future__ import annotations

import asyncio
import contextlib
import socket
from typing import Any, Iterator, Optional

import uvicorn

from core.errors import ListenError
from observability.logging import get_logger

logger = get_logger(__name__)

STARTUP_POLL_INTERVAL = 0.01


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signals alone."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        return None


class HttpListener:
    """
    Bind, serve and close one HTTP server.

    Args:
        host: interface to bind
        port: TCP port; 0 picks a free one
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 0, log_level: str = "warning"):
        self.host = host
        self.requested_port = port
        self.log_level = log_level
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def port(self) -> int:
        if self._socket is None:
            return self.requested_port
        return self._socket.getsockname()[1]

    @property
    def listening(self) -> bool:
        return self._server is not None and self._server.started and not self._server.should_exit

    def bind(self) -> socket.socket:
        """Bind the listening socket, raising ListenError with the OS errno."""
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.requested_port))
        except OSError as e:
            sock.close()
            raise ListenError(
                f"Unable to bind {self.host}:{self.requested_port}: {e.strerror or e}",
                port=self.requested_port,
                errno=e.errno,
                cause=e,
            ) from e
        self._socket = sock
        return sock

    async def listen(self, app: Any) -> None:
        """Serve ``app`` and return once uvicorn reports it is accepting connections."""
        sock = self._socket or self.bind()
        config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            lifespan="off",
            log_config=None,
            log_level=self.log_level,
            access_log=False,
            server_header=False,
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.get_running_loop().create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                raise ListenError(
                    f"Listener on port {self.port} stopped during startup",
                    port=self.port,
                    cause=error,
                )
            await asyncio.sleep(STARTUP_POLL_INTERVAL)

        logger.info("Listener started", host=self.host, port=self.port)

    async def close(self) -> None:
        """Stop accepting connections and wait for the server task to finish."""
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            await self._task
            self._task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        logger.info("Listener closed", host=self.host)
