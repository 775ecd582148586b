# ordersync/services/endpoints.py
from dataclasses import dataclass, fields
from typing import Any, Mapping

ROLE_ADMIN = "admin"
ROLE_COURIER = "courier"

@dataclass
class Endpoints:
    # backend base URL and hub location
    rest_base: str
    hub_url: str
    # "admin" reads the restaurant-wide lists, "courier" the courier-scoped ones
    role: str = ROLE_ADMIN

    active_orders: str = "/admin/api/orders/active"
    order_detail: str = "/api/orders/{order_id}"
    order_status: str = "/admin/api/orders/{order_id}/status"
    courier_orders: str = "/api/deliveryperson/orders"
    courier_order_detail: str = "/api/deliveryperson/orders/{order_id}"
    courier_order_status: str = "/api/deliveryperson/orders/{order_id}/status"
    health: str = "/health"

    @property
    def is_courier(self) -> bool:
        return self.role == ROLE_COURIER


_PATH_FIELDS = {f.name for f in fields(Endpoints)} - {"rest_base", "hub_url", "role"}

def make_endpoints_from_cfg(cfg: Mapping[str, Any]) -> Endpoints:
    try:
        backend = cfg["backend"]
        rest_base = str(backend["rest_base"]).rstrip("/")
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid cfg missing key: {e}") from e

    role = str(backend.get("role") or ROLE_ADMIN).lower()
    if role not in (ROLE_ADMIN, ROLE_COURIER):
        raise ValueError(f"Invalid backend.role: {role}")

    hub_url = (cfg.get("hub") or {}).get("url") or ""
    if not hub_url:
        # the hub is served next to the REST API by default
        hub_url = rest_base.replace("https://", "wss://", 1).replace("http://", "ws://", 1) + "/hubs/orders"

    overrides = {k: v for k, v in (backend.get("paths") or {}).items() if k in _PATH_FIELDS and v}

    return Endpoints(rest_base=rest_base, hub_url=hub_url, role=role, **overrides)
