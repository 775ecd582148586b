# tests/test_poller.py
import asyncio

import pytest

from conftest import FakeSource, ids, mk
from ordersync.enums import ViewKind
from ordersync.errors import SourceError
from ordersync.services.poller import FallbackPoller
from ordersync.services.reconcile_service import ReconcileService


async def _wait_for(pred, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not pred():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_first_tick_initializes_then_polls():
    src = FakeSource([mk(1)])
    eng = ReconcileService(ViewKind.ALL, src)
    poller = FallbackPoller(eng, interval_s=0.02)
    poller.start()
    try:
        await _wait_for(lambda: poller.ticks >= 3)
    finally:
        await poller.stop()
    assert eng.synced
    assert eng.status()["counters"]["initialize"] == 1
    assert eng.status()["counters"]["poll"] >= 2
    assert not poller.running


@pytest.mark.asyncio
async def test_failures_are_counted_not_raised():
    src = FakeSource([mk(1)])
    src.fail = SourceError("down")
    eng = ReconcileService(ViewKind.ALL, src)
    poller = FallbackPoller(eng, interval_s=0.02)
    poller.start()
    try:
        await _wait_for(lambda: poller.failures >= 2)
        assert poller.running
        src.fail = None
        await _wait_for(lambda: eng.synced)
    finally:
        await poller.stop()
    assert ids(eng.get_snapshot()) == [1]


@pytest.mark.asyncio
async def test_disconnect_shortens_interval_and_reconnect_polls_at_once():
    eng = ReconcileService(ViewKind.ALL, FakeSource([mk(1)]))
    poller = FallbackPoller(eng, interval_s=60, disconnected_interval_s=0.02)
    poller.start()
    try:
        await _wait_for(lambda: poller.ticks == 1)
        await asyncio.sleep(0.05)
        assert poller.ticks == 1

        poller.set_connected(False)
        assert poller.current_interval == 0.02
        await _wait_for(lambda: poller.ticks >= 3)

        poller.set_connected(True)
        assert poller.current_interval == 60
        ticks = poller.ticks
        # the reconnect tick runs before the long interval starts
        await _wait_for(lambda: poller.ticks == ticks + 1)
    finally:
        await poller.stop()


@pytest.mark.asyncio
async def test_poke_runs_a_tick_now():
    eng = ReconcileService(ViewKind.ALL, FakeSource())
    poller = FallbackPoller(eng, interval_s=60)
    poller.start()
    try:
        await _wait_for(lambda: poller.ticks == 1)
        poller.poke()
        await _wait_for(lambda: poller.ticks == 2)
    finally:
        await poller.stop()


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        FallbackPoller(ReconcileService(ViewKind.ALL, FakeSource()), interval_s=0)
