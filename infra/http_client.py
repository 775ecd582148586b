# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from utils.logger import logger as default_logger

JSON_SEPARATORS = (",", ":")

class HttpError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message
        self.payload = payload or {}


def _error_message(status: int, text: str) -> tuple[str, dict]:
    """
    Backend error bodies carry the reason under error/message/details;
    fall back to the raw text.
    """
    try:
        body = json.loads(text) if text else {}
    except json.JSONDecodeError:
        return (text[:256] or f"status {status}"), {}
    if not isinstance(body, dict):
        return (text[:256] or f"status {status}"), {}
    msg = body.get("error") or body.get("message") or body.get("details") or f"status {status}"
    return str(msg), body

def _json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=JSON_SEPARATORS, ensure_ascii=False)

def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/")

def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]

def unwrap_data(payload: Any) -> Any:
    """List endpoints answer either a bare list or a {"data": ...} envelope."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload

class HttpClient:
    def __init__(self,
                 cfg: Mapping[str, Any],
                 logger: Optional[Any] = None,
                 api_token: Optional[str] = None,
                 *,
                 timeout_ms: Optional[int] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 ) -> None:
        self.cfg = cfg
        self.log = logger or default_logger
        self.session = session
        self._owned_session = session is None

        backend_cfg = cfg.get("backend", {})
        self.base_url = str(backend_cfg.get("rest_base") or "http://127.0.0.1:5000").rstrip("/")
        self.api_token = api_token if api_token is not None else (backend_cfg.get("api_token") or None)

        # timeouts & retries
        timeouts_cfg = cfg.get("timeouts", {})
        retries_cfg = cfg.get("retries", {})
        self.timeout_ms = int(timeout_ms or timeouts_cfg.get("rest_ms", 5000))
        self.max_attempts = int(retries_cfg.get("rest_max_attempts", 3))
        self.backoff_ms = int(retries_cfg.get("backoff_ms", 200))

        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)

        self.log.debug(
            f"HttpClient init base_url={self.base_url} token={_mask(self.api_token)}"
        )

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def _auth_headers(self) -> Dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Mapping[str, Any]] = None,
            headers: Optional[Mapping[str, str]] = None,
            timeout_ms: Optional[int] = None,
            retry: bool = True,
        ) -> Any:
        """
        Single request entry point.
        - method: "GET" | "POST" | "PUT" | "PATCH" | "DELETE"
        - path: absolute path on the backend, e.g. "/admin/api/orders/active"
        - params: querystring
        - json_body: JSON request body
        - timeout_ms: overrides the default timeout
        - retry: exponential backoff on 429/5xx and network errors

        Returns the decoded JSON body, or None for an empty body.
        """
        assert path.startswith("/"), "path must start with /"
        method = method.upper()
        url = self.base_url + path + _build_query(params)
        body_str = _json_dumps_compact(json_body) if json_body is not None else ""
        req_headers = {
            "Content-Type": "application/json", "Accept": "application/json"
        }
        req_headers.update(self._auth_headers())
        if headers:
            req_headers.update(headers)

        req_kwargs: Dict[str, Any] = {}
        if timeout_ms:
            req_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.session.request(
                    method,
                    url,
                    data=body_str if body_str else None,
                    headers=req_headers,
                    **req_kwargs,
                ) as resp:
                    text = await resp.text()
                    status = resp.status
                    if status >= 400:
                        if retry and (status >= 500 or status == 429) and attempt < self.max_attempts:
                            self.log.warning(f"HTTP {status} on {method} {path}, retrying (attempt={attempt})")
                            await self._sleep_backoff(attempt)
                            continue
                        msg, body = _error_message(status, text)
                        raise HttpError(status, msg, body)

                    if not text:
                        return None
                    try:
                        return json.loads(text)
                    except json.JSONDecodeError:
                        raise HttpError(status, f"invalid json: {text[:256]}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if retry and attempt < self.max_attempts:
                    await self._sleep_backoff(attempt)
                    self.log.warning(f"Network error: {e} when requesting {url}, retrying...")
                    continue
                raise HttpError(599, f"Network error: {e}") from e
            except HttpError:
                raise
            except Exception as e:
                raise HttpError(599, f"Unexpected error: {e}") from e

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.backoff_ms)
        await asyncio.sleep((base + jitter) / 1000.0)

    # ---- convenience wrappers ------------------------------------------------------
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("POST", path, json_body=json_body)

    async def put(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("PUT", path, json_body=json_body)

    async def patch(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("PATCH", path, json_body=json_body)
