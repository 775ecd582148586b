# ordersync/services/push_channel.py
import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from infra.ws_client import HubClient
from ordersync.errors import MalformedEventError
from ordersync.normalize import normalize_deleted, normalize_status_change
from utils.logger import logger as default_logger

TARGET_CREATED = "OrderCreated"
TARGET_UPDATED = "OrderUpdated"
TARGET_STATUS_CHANGED = "OrderStatusChanged"
TARGET_DELETED = "OrderDeleted"

AsyncHandler = Callable[..., Awaitable[None]]


@dataclass
class PushHandlers:
    """One subscriber's callbacks; any of them may be left out."""
    on_created: Optional[AsyncHandler] = None          # (raw)
    on_updated: Optional[AsyncHandler] = None          # (raw)
    on_status_changed: Optional[AsyncHandler] = None   # (order_id, status, at)
    on_deleted: Optional[AsyncHandler] = None          # (order_id)
    on_connection_change: Optional[Callable[[bool], None]] = None


class OrderHubFeed:
    """
    Fans hub invocations out to every subscribed handler set.

    Delivery is best-effort: a handler that raises is logged and the
    remaining handlers still get the event.
    """

    def __init__(self, hub: Optional[HubClient] = None, *, queue_size: int = 4096, logger=None):
        self._hub = hub
        self._q: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._log = logger or default_logger
        self._subs: List[PushHandlers] = []
        self._tasks: List[asyncio.Task] = []
        if hub is not None:
            hub.bind_queue(self._q, put_timeout_ms=50, drop_when_full=True)
            hub.on_connection_change(self._connection_changed)

    @property
    def connected(self) -> bool:
        return bool(self._hub and self._hub.connected)

    def subscribe(self, handlers: PushHandlers) -> Callable[[], None]:
        self._subs.append(handlers)

        def _unsubscribe() -> None:
            if handlers in self._subs:
                self._subs.remove(handlers)

        return _unsubscribe

    async def start(self):
        if self._tasks:
            return
        if self._hub is not None:
            self._tasks.append(asyncio.create_task(self._hub.run_forever()))
        self._tasks.append(asyncio.create_task(self._drain()))

    async def stop(self):
        if self._hub is not None:
            await self._hub.stop()
        for t in self._tasks:
            t.cancel()
        for t in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        self._tasks = []

    async def _drain(self):
        while True:
            msg = await self._q.get()
            try:
                await self.dispatch(msg)
            except Exception:
                self._log.exception("Feed dispatch failed")

    def _connection_changed(self, up: bool) -> None:
        for h in list(self._subs):
            if h.on_connection_change is None:
                continue
            try:
                h.on_connection_change(up)
            except Exception:
                self._log.exception("Feed connection handler failed")

    async def dispatch(self, message: Dict[str, Any]) -> None:
        """Route one {"target", "arguments"} message to the subscribers."""
        target = message.get("target")
        args = message.get("arguments") or []

        try:
            if target in (TARGET_CREATED, TARGET_UPDATED):
                if not args:
                    raise MalformedEventError("event without payload", target=target)
                attr = "on_created" if target == TARGET_CREATED else "on_updated"
                call_args: tuple = (args[0],)
            elif target == TARGET_STATUS_CHANGED:
                change = normalize_status_change(args)
                attr = "on_status_changed"
                call_args = (change.order_id, change.status, change.at)
            elif target == TARGET_DELETED:
                attr = "on_deleted"
                call_args = (normalize_deleted(args),)
            else:
                self._log.debug(f"Feed ignored target={target}")
                return
        except MalformedEventError as e:
            self._log.debug(f"Feed dropped malformed {target}: {e}")
            return

        handlers = [getattr(h, attr) for h in list(self._subs) if getattr(h, attr) is not None]
        if not handlers:
            return
        results = await asyncio.gather(*(fn(*call_args) for fn in handlers), return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException):
                self._log.opt(exception=r).error(f"Feed handler for {target} failed")
