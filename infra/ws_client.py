# infra/ws_client.py
from utils.logger import logger
import contextlib
import asyncio, itertools, json, random, websockets
from typing import Any, Callable, Dict, Iterable, List, Optional
from websockets.exceptions import InvalidStatus, ConnectionClosedError, ConnectionClosedOK

Json = Dict[str, Any]

RECORD_SEPARATOR = "\x1e"
HANDSHAKE = {"protocol": "json", "version": 1}

# SignalR hub message types
MSG_INVOCATION = 1
MSG_COMPLETION = 3
MSG_PING = 6
MSG_CLOSE = 7


class HubProtocolError(Exception):
    """Hub refused the handshake or sent something unreadable."""


def encode_message(msg: Json) -> str:
    return json.dumps(msg, separators=(",", ":")) + RECORD_SEPARATOR


def split_frames(raw: Any) -> List[Json]:
    """One websocket frame may carry several separator-terminated messages."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    out: List[Json] = []
    for part in str(raw).split(RECORD_SEPARATOR):
        part = part.strip()
        if not part:
            continue
        try:
            data = json.loads(part)
        except json.JSONDecodeError:
            logger.debug(f"Hub frame dropped, not json: {part[:128]}")
            continue
        if isinstance(data, dict):
            out.append(data)
    return out


def backoff_s(retry: int, cap_s: float) -> float:
    """0, 2, 4, 8, 16, then cap."""
    if retry <= 0:
        return 0.0
    return float(min(cap_s, 2 ** min(retry, 6)))


class HubClient:
    def __init__(self,
        url: str,
        groups: Iterable[str] = (),
        api_token: str = "",
        ping_interval: float = 15,
        reconnect_cap_s: float = 30,
        handshake_timeout_s: float = 5,
        name: str = "orders",
    ):
        self.url = url
        self.groups = list(groups)
        self.api_token = api_token
        self.ping_interval = ping_interval
        self.reconnect_cap_s = reconnect_cap_s
        self.handshake_timeout_s = handshake_timeout_s
        self.name = name
        self._ws = None
        self._stop = False
        self._connected = False
        self._invocation_ids = itertools.count(1)
        self._on_connection_change: List[Callable[[bool], None]] = []

        self._q: Optional[asyncio.Queue] = None
        self._put_timeout_ms = 50
        self._drop_when_full = True

        logger.info(f"HubClient {name} init url={url} groups={self.groups} "
                    f"ping_interval={ping_interval}s reconnect_cap_s={reconnect_cap_s}")

    @property
    def connected(self) -> bool:
        return self._connected

    def bind_queue(self, q: asyncio.Queue, *,
                   put_timeout_ms: int = 50,
                   drop_when_full: bool = True):
        self._q = q
        self._put_timeout_ms = put_timeout_ms
        self._drop_when_full = drop_when_full

    def on_connection_change(self, cb: Callable[[bool], None]) -> None:
        self._on_connection_change.append(cb)

    def _set_connected(self, value: bool) -> None:
        if value == self._connected:
            return
        self._connected = value
        logger.info(f"Hub {self.name} connection: {'up' if value else 'down'}")
        for cb in list(self._on_connection_change):
            try:
                cb(value)
            except Exception:
                logger.exception(f"Hub {self.name} connection callback failed")

    def _headers(self) -> Dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}

    async def _handshake(self) -> List[Json]:
        """Send the protocol handshake; return any messages that rode along with the ack."""
        await self._ws.send(encode_message(HANDSHAKE))
        raw = await asyncio.wait_for(self._ws.recv(), timeout=self.handshake_timeout_s)
        msgs = split_frames(raw)
        if not msgs:
            raise HubProtocolError(f"empty handshake response: {raw!r}")
        ack, rest = msgs[0], msgs[1:]
        if ack.get("error"):
            raise HubProtocolError(f"handshake rejected: {ack['error']}")
        logger.info(f"Hub {self.name} handshake: ok")
        return rest

    async def invoke(self, target: str, *args: Any) -> None:
        """Fire an invocation; the completion is only logged."""
        if not self._ws:
            return
        msg = {
            "type": MSG_INVOCATION,
            "invocationId": str(next(self._invocation_ids)),
            "target": target,
            "arguments": list(args),
        }
        await self._ws.send(encode_message(msg))

    async def _join_groups(self):
        for g in self.groups:
            logger.info(f"Hub {self.name} join group {g}")
            await self.invoke("JoinGroup", g)

    async def _heartbeat(self):
        while not self._stop and self._ws:
            await asyncio.sleep(self.ping_interval)
            try:
                await self._ws.send(encode_message({"type": MSG_PING}))
            except Exception:
                return

    async def _handle(self, msg: Json) -> bool:
        """Route one hub message; False when the server asked to close."""
        mtype = msg.get("type")
        if mtype == MSG_INVOCATION:
            await self._q_put({"target": msg.get("target"), "arguments": msg.get("arguments") or []})
            return True
        if mtype == MSG_COMPLETION:
            if msg.get("error"):
                logger.error(f"Hub {self.name} invocation {msg.get('invocationId')} failed: {msg['error']}")
            return True
        if mtype == MSG_PING:
            return True
        if mtype == MSG_CLOSE:
            logger.warning(f"Hub {self.name} close frame: error={msg.get('error')} "
                           f"allowReconnect={msg.get('allowReconnect')}")
            return False
        logger.debug(f"Hub {self.name} ignored message type={mtype}")
        return True

    async def _session(self, ws) -> None:
        pending = await self._handshake()
        await self._join_groups()
        self._set_connected(True)
        for msg in pending:
            if not await self._handle(msg):
                return
        # main read loop
        async for raw in ws:
            for msg in split_frames(raw):
                if not await self._handle(msg):
                    return

    async def run_forever(self):
        retry = 0
        while not self._stop:
            hb = None
            try:
                delay = backoff_s(retry, self.reconnect_cap_s)
                await asyncio.sleep(delay * random.uniform(0.8, 1.3) + random.uniform(0.0, 0.5))

                logger.info(f"Hub {self.name} connect: connecting to {self.url} (retry={retry})")
                async with websockets.connect(self.url, ping_interval=None, close_timeout=10,
                                              additional_headers=self._headers()) as ws:
                    self._ws = ws
                    hb = asyncio.create_task(self._heartbeat())
                    await self._session(ws)
            except asyncio.CancelledError:
                raise
            except InvalidStatus as e:
                code = getattr(getattr(e, "response", None), "status_code", None)
                logger.warning(f"Hub {self.name} handshake rejected: HTTP {code}")
            except (ConnectionClosedError, ConnectionClosedOK, ConnectionResetError,
                    TimeoutError, asyncio.TimeoutError) as e:
                logger.warning(f"Hub {self.name} connection closed: {type(e).__name__} ({e})")
            except HubProtocolError as e:
                logger.error(f"Hub {self.name} protocol error: {e}")
            except Exception:
                logger.exception(f"Hub {self.name} loop: exception")
            finally:
                # a session that got past the handshake reconnects immediately
                retry = 0 if self._connected else retry + 1
                self._set_connected(False)
                if hb:
                    hb.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await hb
                try:
                    if self._ws:
                        await self._ws.close()
                except Exception:
                    logger.opt(exception=True).debug(f"Hub {self.name} close failed")
                finally:
                    self._ws = None
                logger.info(f"Hub {self.name} close: websocket closed")

    async def _q_put(self, item):
        if not self._q: return
        try:
            if self._put_timeout_ms <= 0:
                self._q.put_nowait(item)
            else:
                await asyncio.wait_for(self._q.put(item), timeout=self._put_timeout_ms/1000)
        except (asyncio.TimeoutError, asyncio.QueueFull) as e:
            exc_type = type(e).__name__
            if self._drop_when_full:
                logger.warning(f"Hub {self.name} queue full/timeout ({exc_type}), drop 1 msg")
            else:
                await self._q.put(item)

    async def stop(self):
        self._stop = True
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
            logger.info(f"Hub {self.name} stop: websocket closed")
