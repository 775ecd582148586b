# ordersync/event_bus.py
from typing import Any, Callable, Dict

from utils.logger import logger

class EventBus:
    """
    Lightweight synchronous pub/sub for snapshot and sync notifications.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, list[Callable[[Any], None]]] = {}

    def subscribe(self, topic: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register a synchronous callback; returns a callable that removes it."""
        self._subs.setdefault(topic, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._subs.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: str, payload: Any) -> None:
        """Publish an event to subscribers (fire-and-forget)."""
        for h in list(self._subs.get(topic, [])):
            try:
                h(payload)
            except Exception:
                logger.exception(f"EventBus handler failed on topic={topic}")

    def count(self, topic: str) -> int:
        return len(self._subs.get(topic, []))

# Common topics
TOPIC_SNAPSHOT = "orders.snapshot"
TOPIC_SYNC_FAILED = "orders.sync_failed"
