# tests/test_manager.py
import asyncio

import pytest

from conftest import FakeSource, ids, mk
from ordersync.config import MonitorSettings
from ordersync.enums import OrderStatus, ViewKind
from ordersync.errors import MalformedEventError
from ordersync.manager import ViewManager
from ordersync.services.push_channel import OrderHubFeed


async def _synced(manager: ViewManager, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not manager.ready:
        if loop.time() > deadline:
            raise AssertionError("views never synced")
        await asyncio.sleep(0.005)


def _settings(*views):
    return MonitorSettings(views=tuple(views), poll_interval_s=60, poll_interval_disconnected_s=60)


@pytest.mark.asyncio
async def test_views_are_independent_over_one_feed():
    src = FakeSource([mk(1, table=2), mk(2, courier=5)])
    feed = OrderHubFeed()
    manager = ViewManager(src, feed, _settings(ViewKind.SALON, ViewKind.DELIVERY))
    await manager.start_from_cfg()
    try:
        await _synced(manager)
        assert ids(manager.snapshot("salon")) == [1]
        assert ids(manager.snapshot("delivery")) == [2]

        await feed.dispatch({"target": "OrderCreated", "arguments": [{"id": 3, "status": "pending", "tableId": 1}]})
        await feed.dispatch({"target": "OrderDeleted", "arguments": [2]})
        assert ids(manager.snapshot(ViewKind.SALON)) == [3, 1]
        assert manager.snapshot(ViewKind.DELIVERY) == ()
        assert sorted(await manager.list_views()) == ["delivery", "salon"]
    finally:
        await manager.stop_all()
    assert await manager.list_views() == []


@pytest.mark.asyncio
async def test_add_remove_view():
    manager = ViewManager(FakeSource(), OrderHubFeed(), _settings())
    assert await manager.add_view("all") is True
    assert await manager.add_view(ViewKind.ALL) is False
    await _synced(manager)
    assert await manager.remove_view("all") is True
    assert await manager.remove_view("all") is False
    assert not manager.ready
    with pytest.raises(KeyError):
        manager.snapshot("all")


@pytest.mark.asyncio
async def test_change_status_reaches_every_view_once():
    src = FakeSource([mk(1, table=2)])
    manager = ViewManager(src, OrderHubFeed(), _settings(ViewKind.SALON, ViewKind.ALL))
    await manager.start_from_cfg()
    try:
        await _synced(manager)
        order = await manager.change_status(1, "completed")
        assert order.status is OrderStatus.COMPLETED
        assert src.calls.count("update_status") == 1
        assert manager.snapshot("salon") == ()
        assert manager.snapshot("all") == ()

        with pytest.raises(MalformedEventError):
            await manager.change_status(1, "teleported")
    finally:
        await manager.stop_all()


@pytest.mark.asyncio
async def test_status_reports_each_view():
    manager = ViewManager(FakeSource([mk(1)]), OrderHubFeed(), _settings(ViewKind.ALL))
    await manager.start_from_cfg()
    try:
        await _synced(manager)
        st = await manager.status()
    finally:
        await manager.stop_all()
    assert st["feed_connected"] is False
    assert st["views"]["all"]["size"] == 1
    assert st["views"]["all"]["poll_ticks"] >= 1
