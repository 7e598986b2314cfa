"""
End-to-end tests: a real listener, the in-memory discovery client and the
full request pipeline.
"""
import os

import httpx
import pytest
from fastapi import APIRouter, Request
from unittest.mock import MagicMock

from core.lifecycle import LifecyclePhase, ServiceLifecycle
from core.plugins import PluginBase
from discovery import InMemoryDiscoveryClient
from tests.conftest import make_config


def offers_router() -> APIRouter:
    router = APIRouter()

    @router.get("/")
    async def list_offers():
        return {"offers": ["spring-sale"]}

    @router.post("/")
    async def create_offer(request: Request):
        return {"received": request.state.body}

    @router.get("/broken")
    async def broken():
        raise RuntimeError("offer store offline")

    return router


class ReadyCheck(PluginBase):
    """Calls its own service once the listener is live."""

    def __init__(self):
        super().__init__("ready-check")
        self.status = None

    async def on_service_ready(self):
        port = self.owner.listening_port
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", trust_env=False) as client:
            response = await client.get("/v1/offers/")
        self.status = response.status_code


@pytest.mark.asyncio
async def test_service_lifecycle_over_http(settings, app_logger, tmp_path):
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<html>offers</html>")

    discovery = InMemoryDiscoveryClient(instance_id="e2e")
    lifecycle = ServiceLifecycle(
        discovery=discovery,
        app_logger=app_logger,
        settings=settings,
        exit_func=MagicMock(),
        force_exit=MagicMock(),
    )
    ready_check = ReadyCheck()
    await lifecycle.use(ready_check)

    config = make_config(
        name="offers",
        public_folder_path=str(public),
        route_registration_callback=lambda: lifecycle.register_routes("/v1/offers", offers_router()),
    )
    config["service_descriptor"]["service_ip"] = "127.0.0.1"

    descriptor = await lifecycle.init(config, "1.2.0")
    port = lifecycle.listening_port

    try:
        assert descriptor.service_port == port
        assert ready_check.status == 200
        assert "[GET]/v1/offers/" in discovery.routes

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", trust_env=False) as client:
            listed = await client.get("/v1/offers/")
            created = await client.post("/v1/offers/", json={"name": "summer"})
            broken = await client.get("/v1/offers/broken")
            index = await client.get("/dashboard/settings")

        assert listed.json() == {"offers": ["spring-sale"]}
        assert listed.headers["x-powered-by"] == "offers/1.2.0"
        assert listed.headers["x-process-id"] == str(os.getpid())
        assert created.json() == {"received": {"name": "summer"}}
        assert broken.status_code == 500
        assert broken.json() == {"code": 500}
        assert index.text == "<html>offers</html>"
    finally:
        result = await lifecycle.shutdown()

    assert result == {"instance_id": "e2e", "deregistered": True}
    assert lifecycle.phase == LifecyclePhase.TERMINATED
    assert app_logger.at("fatal")[0]["error"] == "RuntimeError"

    with pytest.raises(httpx.HTTPError):
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", trust_env=False) as client:
            await client.get("/v1/offers/")
