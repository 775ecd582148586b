# ordersync/services/poller.py
import asyncio
import contextlib
from typing import Optional

from ordersync.errors import SourceError
from ordersync.services.reconcile_service import ReconcileService
from utils.logger import logger as default_logger


class FallbackPoller:
    """
    Periodic re-poll of one engine, independent of the push feed.

    Runs every `interval_s` while the feed is up and every
    `disconnected_interval_s` while it is down. Until the engine has synced
    once, each tick is a full initialize instead of a poll.
    """

    def __init__(self, engine: ReconcileService, interval_s: float = 10.0,
                 disconnected_interval_s: Optional[float] = None, logger=None):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self.engine = engine
        self.interval_s = float(interval_s)
        self.disconnected_interval_s = float(disconnected_interval_s or interval_s)
        self._log = logger or default_logger
        self._connected = True
        self._wake = asyncio.Event()
        self._poke_pending = False
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current_interval(self) -> float:
        return self.interval_s if self._connected else self.disconnected_interval_s

    def set_connected(self, up: bool) -> None:
        was = self._connected
        self._connected = up
        if up and not was:
            # events may have been lost while the feed was down
            self.poke()
        elif not up and was:
            # re-arm the wait with the shorter interval
            self._wake.set()

    def poke(self) -> None:
        """Run the next tick now."""
        self._poke_pending = True
        self._wake.set()

    async def tick(self) -> None:
        self.ticks += 1
        try:
            if self.engine.synced:
                await self.engine.poll_fallback()
            else:
                await self.engine.initialize()
        except SourceError as e:
            self.failures += 1
            self._log.warning(f"[{self.engine.view.value}] fallback tick failed: {e}")

    async def _run(self) -> None:
        self._poke_pending = True
        while True:
            self._wake.clear()
            if self._poke_pending:
                self._poke_pending = False
                await self.tick()
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.current_interval)
            except asyncio.TimeoutError:
                self._poke_pending = True

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
