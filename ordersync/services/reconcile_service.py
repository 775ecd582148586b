# ordersync/services/reconcile_service.py
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ordersync.enums import OrderStatus, ViewKind
from ordersync.errors import MalformedEventError, SourceError
from ordersync.event_bus import EventBus, TOPIC_SNAPSHOT, TOPIC_SYNC_FAILED
from ordersync.membership import accepts, membership_key
from ordersync.models import Order, PollDiff, SnapshotChanged
from ordersync.normalize import normalize_order, parse_order_id, parse_status
from ordersync.services.data_source import OrderSource
from ordersync.stores.order_store import OrderStore
from utils.logger import logger as default_logger
from utils.time import utc_now


class ReconcileService:
    """
    Keeps one view's working set of active orders consistent across the
    initial REST fetch, the push feed and the fallback poll.

    Working-set mutations never await, so each handler applies atomically
    on the event loop. Full fetches (initialize / poll) carry a sequence
    number and a result only lands if no later fetch has landed before it.
    """

    def __init__(self, view: ViewKind, source: OrderSource, *,
                 store: Optional[OrderStore] = None,
                 bus: Optional[EventBus] = None,
                 logger=None) -> None:
        self._view = ViewKind.parse(view)
        self._source = source
        self._orders = store or OrderStore()
        self._bus = bus or EventBus()
        self._log = logger or default_logger

        self._issued_seq = 0
        self._applied_seq = 0
        self._synced = False
        self._last_sync: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._counters: Dict[str, int] = {"initialize": 0, "poll": 0, "resync": 0, "discarded": 0, "dropped": 0}

    # ---- read side -----------------------------------------------------------------
    @property
    def view(self) -> ViewKind:
        return self._view

    @property
    def synced(self) -> bool:
        """True once a full fetch has landed successfully."""
        return self._synced

    def get_snapshot(self) -> Tuple[Order, ...]:
        return self._orders.snapshot()

    def subscribe(self, listener: Callable[[SnapshotChanged], None]) -> Callable[[], None]:
        """Called with a SnapshotChanged after every change; returns an unsubscribe callable."""
        return self._bus.subscribe(TOPIC_SNAPSHOT, listener)

    def on_sync_failed(self, listener: Callable[[SourceError], None]) -> Callable[[], None]:
        return self._bus.subscribe(TOPIC_SYNC_FAILED, listener)

    def status(self) -> Dict[str, Any]:
        return {
            "view": self._view.value,
            "size": len(self._orders),
            "synced": self._synced,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error,
            "counters": dict(self._counters),
        }

    def _changed(self, reason: str) -> None:
        self._bus.publish(TOPIC_SNAPSHOT, SnapshotChanged(self._view, self.get_snapshot(), reason))

    # ---- full fetches --------------------------------------------------------------
    def _next_seq(self) -> int:
        self._issued_seq += 1
        return self._issued_seq

    def _is_stale(self, seq: int) -> bool:
        return seq <= self._applied_seq

    def _fail(self, err: SourceError) -> None:
        self._last_error = str(err)
        self._bus.publish(TOPIC_SYNC_FAILED, err)

    async def initialize(self, view: Optional[ViewKind] = None) -> Tuple[Order, ...]:
        """
        Fetch every active order for the view and replace the working set.

        A source failure empties the working set and is re-raised. Passing a
        different view switches the filter right away.
        """
        if view is not None:
            view = ViewKind.parse(view)
            if view is not self._view:
                self._switch_view(view)

        seq = self._next_seq()
        self._counters["initialize"] += 1
        fetch_view = self._view
        try:
            remote = await self._source.list_active(fetch_view)
        except SourceError as e:
            if self._is_stale(seq):
                self._log.debug(f"[{fetch_view.value}] stale initialize #{seq} failed: {e}")
                raise
            self._applied_seq = seq
            self._fail(e)
            had = len(self._orders) > 0
            self._orders.clear()
            self._log.warning(f"[{fetch_view.value}] initialize #{seq} failed, working set cleared: {e}")
            if had:
                self._changed("initialize_failed")
            raise

        if self._is_stale(seq) or fetch_view is not self._view:
            self._counters["discarded"] += 1
            self._log.debug(f"[{fetch_view.value}] initialize #{seq} superseded, result discarded")
            return self.get_snapshot()

        self._applied_seq = seq
        before = self._orders.snapshot()
        self._orders.reset(o for o in remote if accepts(o, self._view))
        self._mark_synced()
        self._log.info(f"[{self._view.value}] initialize #{seq}: {len(self._orders)}/{len(remote)} orders tracked")
        if self._orders.snapshot() != before:
            self._changed("initialize")
        return self.get_snapshot()

    async def poll_fallback(self, view: Optional[ViewKind] = None) -> PollDiff:
        """
        Converge with the source without a full replace: add missing orders
        at the front, drop the ones the source no longer lists, patch the rest.

        A source failure leaves the working set untouched and is re-raised.
        """
        if view is not None and ViewKind.parse(view) is not self._view:
            raise ValueError(f"poll for {view} on a {self._view.value} view; use initialize() to switch views")

        seq = self._next_seq()
        self._counters["poll"] += 1
        fetch_view = self._view
        try:
            remote = await self._source.list_active(fetch_view)
        except SourceError as e:
            if not self._is_stale(seq):
                self._fail(e)
            self._log.warning(f"[{fetch_view.value}] poll #{seq} failed, keeping working set: {e}")
            raise

        if self._is_stale(seq) or fetch_view is not self._view:
            self._counters["discarded"] += 1
            self._log.debug(f"[{fetch_view.value}] poll #{seq} superseded, result discarded")
            return PollDiff()
        self._applied_seq = seq

        wanted: Dict[int, Order] = {}
        for o in remote:
            if accepts(o, self._view) and o.id not in wanted:
                wanted[o.id] = o

        removed = [oid for oid in self._orders.ids() if oid not in wanted]
        for oid in removed:
            self._orders.remove(oid)

        patched: List[int] = []
        added: List[int] = []
        for oid, o in wanted.items():
            if oid in self._orders:
                if self._orders.replace(self._carry(o)):
                    patched.append(oid)
            else:
                added.append(oid)
        # keep the source's listing order among the new ones, ahead of the rest
        for oid in reversed(added):
            self._orders.upsert(wanted[oid])

        self._mark_synced()
        diff = PollDiff(added=tuple(added), removed=tuple(removed), patched=tuple(patched))
        if diff.changed:
            self._log.info(f"[{self._view.value}] poll #{seq}: +{len(added)} -{len(removed)} ~{len(patched)}")
            self._changed("poll")
        return diff

    def _mark_synced(self) -> None:
        self._synced = True
        self._last_sync = utc_now()
        self._last_error = None

    def _switch_view(self, view: ViewKind) -> None:
        self._log.info(f"View switch {self._view.value} -> {view.value}")
        self._view = view
        stale = [o.id for o in self._orders.snapshot() if not accepts(o, view)]
        for oid in stale:
            self._orders.remove(oid)
        if stale:
            self._changed("view_switch")

    async def _resync(self, reason: str) -> None:
        self._counters["resync"] += 1
        self._log.info(f"[{self._view.value}] resync: {reason}")
        try:
            await self.initialize()
        except SourceError as e:
            # already published on TOPIC_SYNC_FAILED; the poller retries
            self._log.warning(f"[{self._view.value}] resync failed: {e}")

    def _carry(self, order: Order) -> Order:
        """Creation time is immutable once tracked; an empty update time keeps the held one."""
        held = self._orders.get_by_id(order.id)
        if held is None:
            return order
        return replace(order, created_at=held.created_at, updated_at=order.updated_at or held.updated_at)

    # ---- push events ---------------------------------------------------------------
    def _ingest(self, raw: Any, kind: str) -> Optional[Order]:
        try:
            return normalize_order(raw)
        except MalformedEventError as e:
            self._counters["dropped"] += 1
            self._log.debug(f"[{self._view.value}] dropped malformed {kind} event: {e}")
            return None

    async def on_order_created(self, raw: Any) -> None:
        order = self._ingest(raw, "created")
        if order is None:
            return
        if order.id in self._orders:
            # re-delivered or late create for a tracked id: update semantics
            await self.on_order_updated(order)
            return
        if not accepts(order, self._view):
            return
        self._orders.upsert(order)
        self._changed("created")

    async def on_order_updated(self, raw: Any) -> None:
        order = self._ingest(raw, "updated")
        if order is None:
            return
        held = self._orders.get_by_id(order.id)

        if held is not None and membership_key(held, self._view) != membership_key(order, self._view):
            await self._resync(f"order #{order.id} changed table/courier assignment")
            return

        if not accepts(order, self._view):
            if self._orders.remove(order.id) is not None:
                self._changed("updated_removed")
            return

        if held is not None:
            if self._orders.replace(self._carry(order)):
                self._changed("updated")
            return

        self._orders.upsert(order)
        self._changed("updated_inserted")

    async def on_order_status_changed(self, order_id: Any, new_status: Any,
                                      at: Optional[datetime] = None) -> None:
        try:
            oid = parse_order_id(order_id)
            status = parse_status(new_status)
        except MalformedEventError as e:
            self._counters["dropped"] += 1
            self._log.debug(f"[{self._view.value}] dropped malformed status event: {e}")
            return

        held = self._orders.get_by_id(oid)
        if held is None:
            # no synthesis from a partial event
            return
        updated = held.with_status(status, at)
        if accepts(updated, self._view):
            if self._orders.replace(updated):
                self._changed("status")
        else:
            self._orders.remove(oid)
            self._changed("status_removed")

    async def on_order_deleted(self, order_id: Any) -> None:
        try:
            oid = parse_order_id(order_id)
        except MalformedEventError as e:
            self._counters["dropped"] += 1
            self._log.debug(f"[{self._view.value}] dropped malformed delete event: {e}")
            return
        if self._orders.remove(oid) is not None:
            self._changed("deleted")

    # ---- commands ------------------------------------------------------------------
    async def change_status(self, order_id: int, status: OrderStatus,
                            assignee_id: Optional[int] = None) -> Order:
        """Ask the backend for a status change and fold its answer in."""
        status = parse_status(status)
        order = await self._source.update_status(order_id, status, assignee_id)
        if order is None:
            order = await self._source.get_order(order_id)
        await self.on_order_updated(order)
        return order
