# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datetime import datetime, timezone
from typing import Dict, List, Optional

import yaml
import pytest
import pytest_asyncio
from infra.http_client import HttpClient
from ordersync.enums import OrderStatus, ViewKind
from ordersync.errors import SourceError
from ordersync.models import Order

@pytest.fixture
def test_cfg():
    def load_cfg():
        with open(Path(__file__).resolve().parents[1] / "config.yaml", "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    cfg = load_cfg()
    # raw yaml still holds the ${ORDERSYNC_API_TOKEN} placeholder; keep retries fast
    cfg["backend"]["api_token"] = "test-token"
    cfg["retries"] = {"rest_max_attempts": 2, "backoff_ms": 1}
    return cfg


@pytest_asyncio.fixture
async def http_client(test_cfg):
    """
    HttpClient inside its async context manager so the session is closed after each test.
    """
    async with HttpClient(test_cfg) as client:
        yield client


class FakeSource:
    """
    In-process data source: a mutable backend table of orders.

    list_active answers with every order of the table; filtering is the engine's job,
    except for courierOwn where the source scopes to `courier_id`.
    """

    def __init__(self, orders: Optional[List[Order]] = None, courier_id: Optional[int] = None):
        self.orders: Dict[int, Order] = {o.id: o for o in (orders or [])}
        self.courier_id = courier_id
        self.fail: Optional[SourceError] = None
        self.calls: List[str] = []
        self.status_updates: List[tuple] = []
        self.return_body = True

    def put(self, *orders: Order) -> None:
        for o in orders:
            self.orders[o.id] = o

    def drop(self, order_id: int) -> None:
        self.orders.pop(order_id, None)

    async def list_active(self, view: ViewKind) -> List[Order]:
        self.calls.append("list_active")
        if self.fail:
            raise self.fail
        rows = list(self.orders.values())
        if view is ViewKind.COURIER_OWN and self.courier_id is not None:
            rows = [o for o in rows if o.assignee_id == self.courier_id]
        return rows

    async def get_order(self, order_id: int) -> Order:
        self.calls.append("get_order")
        if self.fail:
            raise self.fail
        if order_id not in self.orders:
            raise SourceError(f"order {order_id} not found", status=404)
        return self.orders[order_id]

    async def update_status(self, order_id: int, status: OrderStatus, assignee_id: Optional[int] = None):
        self.calls.append("update_status")
        self.status_updates.append((order_id, status, assignee_id))
        if self.fail:
            raise self.fail
        cur = self.orders[order_id]
        new = Order(id=cur.id, status=status, table_id=cur.table_id,
                    assignee_id=assignee_id if assignee_id is not None else cur.assignee_id,
                    created_at=cur.created_at, updated_at=cur.updated_at, payload=cur.payload)
        self.orders[order_id] = new
        return new if self.return_body else None


@pytest.fixture
def fake_source():
    return FakeSource()


def mk(order_id: int, status="pending", table=None, courier=None, **payload) -> Order:
    ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return Order(id=order_id, status=OrderStatus(status), table_id=table, assignee_id=courier,
                 created_at=ts, updated_at=ts, payload=dict(payload))


def ids(snapshot) -> List[int]:
    return [o.id for o in snapshot]

