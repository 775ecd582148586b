# ordersync/enums.py
from enum import Enum

class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class ViewKind(str, Enum):
    SALON = "salon"
    DELIVERY = "delivery"
    ALL = "all"
    COURIER_OWN = "courierOwn"

    @classmethod
    def parse(cls, value) -> "ViewKind":
        if isinstance(value, cls):
            return value
        s = str(value).strip()
        for v in cls:
            if s == v.value or s.lower() == v.value.lower() or s.upper() == v.name:
                return v
        raise ValueError(f"unknown view: {value!r}")
