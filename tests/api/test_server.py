"""
Tests for api/server.py - HTTP Listener.

These bind real sockets on the loopback interface.
"""
import errno
import socket

import httpx
import pytest
from fastapi import FastAPI

from api.server import HttpListener
from core.errors import ListenError


def hello_app() -> FastAPI:
    app = FastAPI()

    @app.get("/hello")
    async def hello():
        return {"hello": "world"}

    return app


class TestHttpListener:
    """Tests for HttpListener."""

    @pytest.mark.asyncio
    async def test_serves_and_closes(self):
        listener = HttpListener("127.0.0.1", 0)
        await listener.listen(hello_app())
        port = listener.port

        try:
            assert port > 0
            assert listener.listening
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", trust_env=False) as client:
                response = await client.get("/hello")
        finally:
            await listener.close()

        assert response.json() == {"hello": "world"}
        assert "server" not in response.headers
        assert not listener.listening

    @pytest.mark.asyncio
    async def test_port_in_use(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]

        try:
            with pytest.raises(ListenError) as excinfo:
                await HttpListener("127.0.0.1", port).listen(hello_app())
        finally:
            blocker.close()

        assert excinfo.value.errno == errno.EADDRINUSE
        assert excinfo.value.port == port

    def test_port_before_bind(self):
        assert HttpListener("127.0.0.1", 5050).port == 5050

    @pytest.mark.asyncio
    async def test_close_without_listen(self):
        listener = HttpListener("127.0.0.1", 0)

        await listener.close()

        assert not listener.listening
