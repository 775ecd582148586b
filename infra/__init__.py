# infra/__init__.py
from __future__ import annotations

from typing import Protocol, Mapping, Any, Optional

from infra.http_client import HttpClient, HttpError
from utils.logger import logger as default_logger

# ========== 1) Port: services depend on this, not on HttpClient ==========
class HttpPort(Protocol):
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any: ...
    async def post(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any: ...
    async def put(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any: ...
    async def patch(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any: ...


# ========== 2) Health probe ==========
async def http_healthcheck(http: HttpPort, path: str = "/health") -> bool:
    try:
        await http.get(path)
        return True
    except HttpError:
        return False


# ========== 3) Container: start / close ==========
class HttpContainer:
    """
    Owns the HttpClient for the composition root.
    - The entry point holds it.
    - Services receive container.http.
    """
    def __init__(self, http: HttpClient) -> None:
        self.http = http

    @classmethod
    async def start(cls,
                    cfg: Mapping[str, Any],
                    logger: Optional[Any] = None,
                    api_token: Optional[str] = None,
                    *,
                    health_path: Optional[str] = "/health",
                    ) -> "HttpContainer":
        log = logger or default_logger
        http = HttpClient(cfg, logger=log, api_token=api_token)
        if health_path and not await http_healthcheck(http, health_path):
            # not fatal: the poller keeps retrying
            log.warning(f"Backend health probe failed at {http.base_url}{health_path}")
        return cls(http)

    async def stop(self) -> None:
        await self.http.close()
