# ordersync/normalize.py
from typing import Any, Iterable, Mapping, Optional

from ordersync.enums import OrderStatus
from ordersync.errors import MalformedEventError
from ordersync.models import STATUS_KEYS, Order, StatusChange
from utils.time import parse_ts, utc_now

# Backend serializers disagree on casing; first present key wins.
ID_KEYS = ("id", "Id", "ID", "orderId", "OrderId", "order_id")
TABLE_KEYS = ("tableId", "TableId", "table_id")
TABLE_NESTED = ("table", "Table")
ASSIGNEE_KEYS = ("deliveryPersonId", "DeliveryPersonId", "delivery_person_id", "assigneeId", "courierId")
ASSIGNEE_NESTED = ("deliveryPerson", "DeliveryPerson", "courier")
ASSIGNEE_NAME_KEYS = ("deliveryPersonName", "DeliveryPersonName", "delivery_person_name")
CREATED_KEYS = ("createdAt", "CreatedAt", "created_at")
UPDATED_KEYS = ("updatedAt", "UpdatedAt", "updated_at")
EVENT_TS_KEYS = ("timestamp", "Timestamp", "ts")
NESTED_ID_KEYS = ("id", "Id", "ID")


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return None


def _to_int(x: Any) -> Optional[int]:
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    if isinstance(x, float):
        return int(x) if x.is_integer() else None
    s = str(x).strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def _to_ref(x: Any) -> Optional[int]:
    """Foreign reference; missing, empty and 0 all mean 'none'."""
    v = _to_int(x)
    return v if v else None


def _nested_ref(raw: Mapping[str, Any], flat_keys, nested_keys) -> Optional[int]:
    ref = _to_ref(_first(raw, flat_keys))
    if ref is not None:
        return ref
    nested = _first(raw, nested_keys)
    if isinstance(nested, Mapping):
        return _to_ref(_first(nested, NESTED_ID_KEYS))
    return None


def parse_order_id(x: Any) -> int:
    oid = _to_int(x)
    if oid is None or oid <= 0:
        raise MalformedEventError("missing or invalid order id", field="id", value=x)
    return oid


def parse_status(x: Any) -> OrderStatus:
    if isinstance(x, OrderStatus):
        return x
    if x is None:
        raise MalformedEventError("missing status", field="status")
    try:
        return OrderStatus(str(x).strip().lower())
    except ValueError:
        raise MalformedEventError("unknown status", field="status", value=x) from None


def normalize_order(raw: Any) -> Order:
    """
    Map a loosely typed order payload onto the canonical Order.

    Raises MalformedEventError when id or status is still missing after
    all key variants were tried.
    """
    if isinstance(raw, Order):
        return raw
    if not isinstance(raw, Mapping):
        raise MalformedEventError("order payload is not a mapping", type=type(raw).__name__)

    oid = parse_order_id(_first(raw, ID_KEYS))
    status = parse_status(_first(raw, STATUS_KEYS))

    created = parse_ts(_first(raw, CREATED_KEYS)) or utc_now()
    # left empty when absent so a re-delivered payload compares equal
    updated = parse_ts(_first(raw, UPDATED_KEYS))

    return Order(
        id=oid,
        status=status,
        table_id=_nested_ref(raw, TABLE_KEYS, TABLE_NESTED),
        assignee_id=_nested_ref(raw, ASSIGNEE_KEYS, ASSIGNEE_NESTED),
        created_at=created,
        updated_at=updated,
        payload=dict(raw),
    )


def normalize_status_change(raw: Any) -> StatusChange:
    """OrderStatusChanged arguments: an event mapping or a positional [id, status] list."""
    if isinstance(raw, (list, tuple)):
        if len(raw) == 1:
            return normalize_status_change(raw[0])
        if len(raw) < 2:
            raise MalformedEventError("status event needs id and status", args=len(raw))
        return StatusChange(order_id=parse_order_id(raw[0]), status=parse_status(raw[1]))
    if not isinstance(raw, Mapping):
        raise MalformedEventError("status event is not a mapping", type=type(raw).__name__)

    name = _first(raw, ASSIGNEE_NAME_KEYS)
    return StatusChange(
        order_id=parse_order_id(_first(raw, ID_KEYS)),
        status=parse_status(_first(raw, STATUS_KEYS)),
        assignee_name=str(name) if name else None,
        at=parse_ts(_first(raw, EVENT_TS_KEYS)),
    )


def normalize_deleted(raw: Any) -> int:
    """OrderDeleted argument: {'orderId': n} in any casing, or the bare id."""
    if isinstance(raw, (list, tuple)) and len(raw) == 1:
        raw = raw[0]
    if isinstance(raw, Mapping):
        return parse_order_id(_first(raw, ID_KEYS))
    return parse_order_id(raw)
