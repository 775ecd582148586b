# ordersync/errors.py
from typing import Optional


class OrderSyncError(Exception):
    """Base order sync error."""
    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__


class SourceError(OrderSyncError):
    """Data source unreachable or answered with an error."""

    def __init__(self, msg: str = "", status: Optional[int] = None):
        super().__init__(msg)
        self.status = status

    def __str__(self):
        base = super().__str__()
        if self.status is not None:
            return f"{base} [status={self.status}]"
        return base


class MalformedEventError(OrderSyncError):
    """Payload still lacks a required field after normalization."""

    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.ctx = ctx

    def __str__(self):
        base = super().__str__()
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base
