# ordersync/services/data_source.py
from typing import Any, List, Optional, Protocol

from infra import HttpPort
from infra.http_client import HttpError, unwrap_data
from ordersync.enums import OrderStatus, ViewKind
from ordersync.errors import MalformedEventError, SourceError
from ordersync.models import Order
from ordersync.normalize import normalize_order
from ordersync.services.endpoints import Endpoints
from utils.logger import logger as default_logger
from utils.time import utc_ms


class OrderSource(Protocol):
    async def list_active(self, view: ViewKind) -> List[Order]: ...
    async def get_order(self, order_id: int) -> Order: ...
    async def update_status(self, order_id: int, status: OrderStatus,
                            assignee_id: Optional[int] = None) -> Optional[Order]: ...


class RestOrderSource:
    """
    Data source over the backend REST API.

    Every transport or backend failure surfaces as SourceError; rows that
    cannot be normalized are left out of listings.
    """

    def __init__(self, http_client: HttpPort, endpoints: Endpoints, logger=None) -> None:
        self._http = http_client
        self._ep = endpoints
        self.log = logger or getattr(http_client, "log", None) or default_logger

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        try:
            return await getattr(self._http, method)(path, **kwargs)
        except HttpError as e:
            raise SourceError(f"{method.upper()} {path} failed: {e.message}", status=e.status) from e

    async def list_active(self, view: ViewKind) -> List[Order]:
        if view is ViewKind.COURIER_OWN or self._ep.is_courier:
            path, params = self._ep.courier_orders, None
        else:
            # cache-buster, the backend sits behind caching proxies
            path, params = self._ep.active_orders, {"t": utc_ms()}

        resp = await self._call("get", path, params=params)
        rows = unwrap_data(resp)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise SourceError(f"GET {path}: expected a list, got {type(rows).__name__}")

        orders: List[Order] = []
        for row in rows:
            try:
                orders.append(normalize_order(row))
            except MalformedEventError as e:
                self.log.warning(f"Skipping unreadable order row from {path}: {e}")
        return orders

    async def get_order(self, order_id: int) -> Order:
        tpl = self._ep.courier_order_detail if self._ep.is_courier else self._ep.order_detail
        path = tpl.format(order_id=order_id)
        resp = await self._call("get", path)
        try:
            return normalize_order(unwrap_data(resp))
        except MalformedEventError as e:
            raise SourceError(f"GET {path}: unreadable order ({e})") from e

    async def update_status(self, order_id: int, status: OrderStatus,
                            assignee_id: Optional[int] = None) -> Optional[Order]:
        status = OrderStatus(status)
        if self._ep.is_courier:
            path = self._ep.courier_order_status.format(order_id=order_id)
            resp = await self._call("patch", path, json_body={"status": status.value})
        else:
            path = self._ep.order_status.format(order_id=order_id)
            body = {"status": status.value, "deliveryPersonId": assignee_id}
            resp = await self._call("put", path, json_body=body)

        data = unwrap_data(resp)
        if not data:
            return None
        try:
            return normalize_order(data)
        except MalformedEventError:
            self.log.debug(f"Status update for #{order_id} answered without an order body")
            return None
