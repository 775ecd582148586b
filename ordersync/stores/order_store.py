# ordersync/stores/order_store.py
from typing import Dict, Iterable, List, Optional, Tuple

from ordersync.models import Order

class OrderStore:
    """
    In-memory working set keyed by order id, most recent first.

    Ids are unique: inserting a known id replaces it where it stands.
    """

    def __init__(self) -> None:
        self._by_id: Dict[int, Order] = {}
        self._ids: List[int] = []

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, order_id: int) -> bool:
        return order_id in self._by_id

    def get_by_id(self, order_id: int) -> Optional[Order]:
        return self._by_id.get(order_id)

    def ids(self) -> Tuple[int, ...]:
        return tuple(self._ids)

    def upsert(self, order: Order) -> bool:
        """Replace in place or insert at the front; True when inserted."""
        if order.id in self._by_id:
            self._by_id[order.id] = order
            return False
        self._by_id[order.id] = order
        self._ids.insert(0, order.id)
        return True

    def replace(self, order: Order) -> bool:
        """Replace a tracked order keeping its position; False if untracked or unchanged."""
        cur = self._by_id.get(order.id)
        if cur is None or cur == order:
            return False
        self._by_id[order.id] = order
        return True

    def remove(self, order_id: int) -> Optional[Order]:
        order = self._by_id.pop(order_id, None)
        if order is not None:
            self._ids.remove(order_id)
        return order

    def reset(self, orders: Iterable[Order]) -> None:
        """Swap the whole content; later duplicates of an id are dropped."""
        by_id: Dict[int, Order] = {}
        ids: List[int] = []
        for o in orders:
            if o.id in by_id:
                continue
            by_id[o.id] = o
            ids.append(o.id)
        self._by_id = by_id
        self._ids = ids

    def clear(self) -> None:
        self._by_id = {}
        self._ids = []

    def snapshot(self) -> Tuple[Order, ...]:
        return tuple(self._by_id[i] for i in self._ids)
