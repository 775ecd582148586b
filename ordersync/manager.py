# ordersync/manager.py
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ordersync.config import MonitorSettings
from ordersync.enums import OrderStatus, ViewKind
from ordersync.models import Order
from ordersync.normalize import parse_status
from ordersync.services.data_source import OrderSource
from ordersync.services.poller import FallbackPoller
from ordersync.services.push_channel import OrderHubFeed, PushHandlers
from ordersync.services.reconcile_service import ReconcileService
from utils.logger import logger


@dataclass
class _ViewRuntime:
    engine: ReconcileService
    poller: FallbackPoller
    unsubscribe: Callable[[], None]


class ViewManager:
    """One engine and one poller per open view, all fed by a shared feed and source."""

    def __init__(self, source: OrderSource, feed: OrderHubFeed, settings: Optional[MonitorSettings] = None):
        self.source = source
        self.feed = feed
        self.settings = settings or MonitorSettings()
        self.views: Dict[ViewKind, _ViewRuntime] = {}
        self._lock = asyncio.Lock()

    async def start_from_cfg(self):
        for view in self.settings.views:
            await self.add_view(view)

    async def stop_all(self):
        async with self._lock:
            views = list(self.views.keys())
        for view in views:
            await self.remove_view(view)

    async def add_view(self, view) -> bool:
        """Open a view; False when it was already open."""
        view = ViewKind.parse(view)
        async with self._lock:
            if view in self.views:
                return False
            engine = ReconcileService(view, self.source)
            poller = FallbackPoller(engine,
                                    interval_s=self.settings.poll_interval_s,
                                    disconnected_interval_s=self.settings.poll_interval_disconnected_s)
            poller.set_connected(self.feed.connected)
            unsubscribe = self.feed.subscribe(PushHandlers(
                on_created=engine.on_order_created,
                on_updated=engine.on_order_updated,
                on_status_changed=engine.on_order_status_changed,
                on_deleted=engine.on_order_deleted,
                on_connection_change=poller.set_connected,
            ))
            self.views[view] = _ViewRuntime(engine, poller, unsubscribe)
        # the first tick runs initialize
        poller.start()
        logger.info(f"View {view.value} opened")
        return True

    async def remove_view(self, view) -> bool:
        view = ViewKind.parse(view)
        async with self._lock:
            rt = self.views.pop(view, None)
        if rt is None:
            return False
        rt.unsubscribe()
        await rt.poller.stop()
        logger.info(f"View {view.value} closed")
        return True

    def _runtime(self, view) -> _ViewRuntime:
        view = ViewKind.parse(view)
        rt = self.views.get(view)
        if rt is None:
            raise KeyError(view.value)
        return rt

    def engine(self, view) -> ReconcileService:
        return self._runtime(view).engine

    async def list_views(self) -> List[str]:
        async with self._lock:
            return [v.value for v in self.views]

    def snapshot(self, view) -> Tuple[Order, ...]:
        return self._runtime(view).engine.get_snapshot()

    async def resync(self, view) -> Tuple[Order, ...]:
        return await self._runtime(view).engine.initialize()

    async def change_status(self, order_id: int, status: OrderStatus,
                            assignee_id: Optional[int] = None) -> Order:
        """Send the status change once; every open view folds in the answer."""
        status = parse_status(status)
        async with self._lock:
            runtimes = list(self.views.values())
        if not runtimes:
            order = await self.source.update_status(order_id, status, assignee_id)
            return order or await self.source.get_order(order_id)

        first, rest = runtimes[0], runtimes[1:]
        order = await first.engine.change_status(order_id, status, assignee_id)
        for rt in rest:
            await rt.engine.on_order_updated(order)
        return order

    @property
    def ready(self) -> bool:
        return bool(self.views) and all(rt.engine.synced for rt in self.views.values())

    async def status(self) -> Dict[str, Any]:
        async with self._lock:
            data: Dict[str, Any] = {"feed_connected": self.feed.connected, "views": {}}
            for view, rt in self.views.items():
                st = rt.engine.status()
                st["poll_interval_s"] = rt.poller.current_interval
                st["poll_ticks"] = rt.poller.ticks
                st["poll_failures"] = rt.poller.failures
                data["views"][view.value] = st
            return data

