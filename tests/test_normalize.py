# tests/test_normalize.py
from datetime import datetime, timezone

import pytest

from ordersync.enums import OrderStatus
from ordersync.errors import MalformedEventError
from ordersync.normalize import (
    normalize_deleted, normalize_order, normalize_status_change, parse_order_id,
)
from utils.time import parse_ts


def test_pascal_case_payload():
    o = normalize_order({"Id": "12", "Status": "Preparing", "TableId": 4,
                         "CreatedAt": "2024-05-01T10:00:00Z"})
    assert o.id == 12
    assert o.status is OrderStatus.PREPARING
    assert o.table_id == 4
    assert o.assignee_id is None
    assert o.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def test_nested_references_and_zero_means_none():
    o = normalize_order({"orderId": 3, "state": "delivering", "tableId": 0,
                         "deliveryPerson": {"id": 9, "name": "Ana"}})
    assert o.table_id is None
    assert o.assignee_id == 9
    assert not o.has_table and o.has_assignee


def test_payload_is_kept_opaque():
    raw = {"id": 5, "status": "pending", "items": [{"sku": "A", "qty": 2}], "total": 17.5}
    o = normalize_order(raw)
    assert o.payload["items"] == [{"sku": "A", "qty": 2}]
    assert o.payload["total"] == 17.5


@pytest.mark.parametrize("raw", [
    {"status": "pending"},
    {"id": 0, "status": "pending"},
    {"id": True, "status": "pending"},
    {"id": "x1", "status": "pending"},
    {"id": 1},
    {"id": 1, "status": "shipped"},
    "not a mapping",
    None,
])
def test_incomplete_payloads_are_rejected(raw):
    with pytest.raises(MalformedEventError):
        normalize_order(raw)


def test_missing_created_at_defaults_to_now_and_updated_stays_empty():
    before = datetime.now(tz=timezone.utc)
    o = normalize_order({"id": 1, "status": "pending"})
    assert o.created_at >= before
    assert o.updated_at is None


def test_status_change_variants():
    sc = normalize_status_change([{"OrderId": 4, "NewStatus": "COMPLETED",
                                   "DeliveryPersonName": "Bo", "Timestamp": 1714557600000}])
    assert (sc.order_id, sc.status, sc.assignee_name) == (4, OrderStatus.COMPLETED, "Bo")
    assert sc.at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    sc = normalize_status_change([7, "cancelled"])
    assert (sc.order_id, sc.status, sc.at) == (7, OrderStatus.CANCELLED, None)

    with pytest.raises(MalformedEventError):
        normalize_status_change([7])


def test_deleted_variants():
    assert normalize_deleted({"orderId": 8}) == 8
    assert normalize_deleted(["8"]) == 8
    assert normalize_deleted(8) == 8
    with pytest.raises(MalformedEventError):
        normalize_deleted({"foo": 1})


def test_parse_order_id_accepts_integral_float():
    assert parse_order_id(3.0) == 3
    with pytest.raises(MalformedEventError):
        parse_order_id(3.5)


def test_parse_ts_variants():
    assert parse_ts("2024-05-01T10:00:00.1234567Z") == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert parse_ts("2024-05-01T12:00:00+02:00") == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_ts("2024-05-01T10:00:00") == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_ts("1714557600000") == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_ts("yesterday") is None
    assert parse_ts(True) is None
