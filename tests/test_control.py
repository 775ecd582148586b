# tests/test_control.py
import asyncio

import httpx
import pytest

from conftest import FakeSource, mk
from ordersync.config import MonitorSettings
from ordersync.control import build_app
from ordersync.enums import ViewKind
from ordersync.errors import SourceError
from ordersync.manager import ViewManager
from ordersync.services.push_channel import OrderHubFeed


async def _ready(manager):
    for _ in range(200):
        if manager.ready:
            return
        await asyncio.sleep(0.005)
    raise AssertionError("views never synced")


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://control")


@pytest.mark.asyncio
async def test_health_ready_and_orders():
    src = FakeSource([mk(1, table=4), mk(2)])
    manager = ViewManager(src, OrderHubFeed(),
                          MonitorSettings(views=(ViewKind.SALON,), poll_interval_s=60, poll_interval_disconnected_s=60))
    app = build_app(manager)
    async with _client(app) as client:
        r = await client.get("/readyz")
        assert r.status_code == 503

        await manager.start_from_cfg()
        try:
            await _ready(manager)
            assert (await client.get("/healthz")).json() == {"ok": True}
            assert (await client.get("/readyz")).status_code == 200

            r = await client.get("/views/salon/orders")
            body = r.json()
            assert body["view"] == "salon"
            assert [o["id"] for o in body["orders"]] == [1]
            assert body["orders"][0]["tableId"] == 4

            assert (await client.get("/views/delivery/orders")).status_code == 404
            assert (await client.get("/views/kitchen/orders")).status_code == 404
            assert (await client.get("/views")).json() == {"views": ["salon"]}
            assert (await client.get("/status")).json()["views"]["salon"]["synced"] is True
        finally:
            await manager.stop_all()


@pytest.mark.asyncio
async def test_open_resync_close_view():
    src = FakeSource([mk(1)])
    manager = ViewManager(src, OrderHubFeed(),
                          MonitorSettings(views=(), poll_interval_s=60, poll_interval_disconnected_s=60))
    app = build_app(manager)
    async with _client(app) as client:
        try:
            r = await client.put("/views/delivery")
            assert r.json() == {"ok": True, "added": True}
            await _ready(manager)

            src.put(mk(2))
            r = await client.post("/views/delivery/resync")
            assert r.json() == {"ok": True, "size": 2}

            src.fail = SourceError("backend down", status=503)
            r = await client.post("/views/delivery/resync")
            assert r.status_code == 502
            src.fail = None

            assert (await client.delete("/views/delivery")).status_code == 200
            assert (await client.delete("/views/delivery")).status_code == 404
            assert (await client.post("/views/delivery/resync")).status_code == 404
        finally:
            await manager.stop_all()


@pytest.mark.asyncio
async def test_change_status_endpoint():
    src = FakeSource([mk(7, courier=3)])
    manager = ViewManager(src, OrderHubFeed(),
                          MonitorSettings(views=(ViewKind.DELIVERY,), poll_interval_s=60, poll_interval_disconnected_s=60))
    app = build_app(manager)
    await manager.start_from_cfg()
    try:
        await _ready(manager)
        async with _client(app) as client:
            r = await client.post("/orders/7/status", json={"status": "delivering", "deliveryPersonId": 4})
            assert r.status_code == 200
            assert r.json()["order"]["deliveryPersonId"] == 4
            assert src.status_updates[-1] == (7, "delivering", 4)

            r = await client.post("/orders/7/status", json={"status": "teleported"})
            assert r.status_code == 422

            src.fail = SourceError("down")
            r = await client.post("/orders/7/status", json={"status": "completed"})
            assert r.status_code == 502
    finally:
        await manager.stop_all()


@pytest.mark.asyncio
async def test_token_is_enforced():
    manager = ViewManager(FakeSource(), OrderHubFeed(), MonitorSettings(views=()))
    app = build_app(manager, token="s3cret")
    async with _client(app) as client:
        assert (await client.get("/status")).status_code == 401
        assert (await client.get("/status", headers={"x-token": "s3cret"})).status_code == 200
        assert (await client.get("/healthz")).status_code == 200
