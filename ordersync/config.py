# ordersync/config.py
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Tuple

from ordersync.enums import ViewKind
from utils.time import parse_tf


def _seconds(value: Any, default: str) -> float:
    if value is None or value == "":
        value = default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return parse_tf(str(value)) / 1000.0


@dataclass
class MonitorSettings:
    """Order monitor runtime configuration."""
    views: Tuple[ViewKind, ...] = (ViewKind.ALL,)

    poll_interval_s: float = 10.0
    poll_interval_disconnected_s: float = 3.0   # while the push feed is down

    hub_groups: List[str] = field(default_factory=lambda: ["admin"])
    hub_ping_interval_s: float = 15.0
    hub_reconnect_cap_s: float = 30.0
    hub_queue_size: int = 4096

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any]) -> "MonitorSettings":
        sync = cfg.get("sync") or {}
        hub = cfg.get("hub") or {}

        raw_views = sync.get("views") or [ViewKind.ALL.value]
        if isinstance(raw_views, str):
            raw_views = [raw_views]
        views: List[ViewKind] = []
        for v in raw_views:
            kind = ViewKind.parse(v)
            if kind not in views:
                views.append(kind)

        groups = hub.get("groups")
        if groups is None:
            groups = ["admin"]
        elif isinstance(groups, str):
            groups = [groups]

        settings = cls(
            views=tuple(views),
            poll_interval_s=_seconds(sync.get("poll_interval"), "10s"),
            poll_interval_disconnected_s=_seconds(sync.get("poll_interval_disconnected"), "3s"),
            hub_groups=[str(g) for g in groups],
            hub_ping_interval_s=_seconds(hub.get("ping_interval"), "15s"),
            hub_reconnect_cap_s=_seconds(hub.get("reconnect_cap"), "30s"),
            hub_queue_size=int(hub.get("queue_size") or 4096),
        )
        if settings.poll_interval_s <= 0 or settings.poll_interval_disconnected_s <= 0:
            raise ValueError("sync poll intervals must be positive")
        return settings
