# ordersync/membership.py
from typing import Callable, Dict, Tuple

from ordersync.enums import OrderStatus, ViewKind
from ordersync.models import Order

Predicate = Callable[[Order], bool]
view_registry: Dict[ViewKind, Predicate] = {}

ACTIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.DELIVERING})
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def register_view(view: ViewKind):
    def decorator(fn: Predicate):
        view_registry[view] = fn
        return fn
    return decorator


@register_view(ViewKind.COURIER_OWN)
def courier_own(order: Order) -> bool:
    # the courier's own identity is applied by the source query
    return not order.has_table and order.has_assignee

@register_view(ViewKind.SALON)
def salon(order: Order) -> bool:
    return order.has_table

@register_view(ViewKind.DELIVERY)
def delivery(order: Order) -> bool:
    return not order.has_table

@register_view(ViewKind.ALL)
def everything(order: Order) -> bool:
    return True


def is_active(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES


def matches_view(order: Order, view: ViewKind) -> bool:
    return view_registry[view](order)


def accepts(order: Order, view: ViewKind) -> bool:
    """Working-set membership: active status and the view's predicate."""
    return is_active(order.status) and matches_view(order, view)


def membership_key(order: Order, view: ViewKind) -> Tuple:
    """
    The fields that decide which views an order belongs to, as seen from `view`.

    Two versions of the same order with different keys may belong to
    different views; an update that changes the key cannot be patched locally.
    """
    if view is ViewKind.ALL:
        return ()
    if view is ViewKind.COURIER_OWN:
        return (order.has_table, order.assignee_id)
    return (order.has_table,)
