# ordersync/models.py
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ordersync.enums import OrderStatus, ViewKind

# raw status key variants; normalization reads the first present one
STATUS_KEYS = ("status", "Status", "state", "newStatus", "NewStatus")


@dataclass(frozen=True)
class Order:
    id: int
    status: OrderStatus
    table_id: Optional[int] = None     # set -> salon order
    assignee_id: Optional[int] = None  # delivery courier
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # items, totals, customer and receipt data; opaque to reconciliation
    payload: Dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def has_table(self) -> bool:
        return self.table_id is not None

    @property
    def has_assignee(self) -> bool:
        return self.assignee_id is not None

    def with_status(self, status: OrderStatus, at: Optional[datetime] = None) -> "Order":
        # keep the raw payload in step with the canonical status
        payload = {k: v for k, v in self.payload.items() if k not in STATUS_KEYS}
        payload["status"] = status.value
        return replace(self, status=status, updated_at=at or self.updated_at, payload=payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "tableId": self.table_id,
            "deliveryPersonId": self.assignee_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "payload": dict(self.payload),
        }


@dataclass(frozen=True)
class StatusChange:
    order_id: int
    status: OrderStatus
    assignee_name: Optional[str] = None
    at: Optional[datetime] = None


@dataclass(frozen=True)
class PollDiff:
    added: Tuple[int, ...] = ()
    removed: Tuple[int, ...] = ()
    patched: Tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.patched)


@dataclass(frozen=True)
class SnapshotChanged:
    view: ViewKind
    snapshot: Tuple[Order, ...]
    reason: str
