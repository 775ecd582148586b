# app/run_order_monitor.py
import asyncio, signal, os, argparse
import uvicorn
import contextlib

from utils.config import load_cfg
from utils.logger import logger
from infra import HttpContainer
from infra.ws_client import HubClient
from ordersync.config import MonitorSettings
from ordersync.control import build_app
from ordersync.manager import ViewManager
from ordersync.services.data_source import RestOrderSource
from ordersync.services.endpoints import make_endpoints_from_cfg
from ordersync.services.push_channel import OrderHubFeed

def env_default(name: str, default=None):
    return os.getenv(name, default)

def build_parser():
    p = argparse.ArgumentParser("order-monitor")
    p.add_argument("--host",      default=env_default("CONTROL_HOST", None))
    p.add_argument("--port",      type=int, default=int(env_default("CONTROL_PORT", "0") or 0))
    p.add_argument("--token",     default=env_default("CONTROL_TOKEN", None))
    p.add_argument("--views",     default=env_default("ORDERSYNC_VIEWS", None),
                   help="comma separated: salon,delivery,all,courierOwn")
    p.add_argument("--config-path", default=env_default("ORDERSYNC_CONFIG", None))
    return p

async def main():
    args = build_parser().parse_args()

    cfg = load_cfg(args.config_path)
    if args.views:
        cfg.setdefault("sync", {})["views"] = [v for v in args.views.split(",") if v.strip()]

    endpoints = make_endpoints_from_cfg(cfg)
    settings = MonitorSettings.from_cfg(cfg)

    host = args.host or cfg.get("control", {}).get("host", "127.0.0.1")
    port = args.port or int(cfg.get("control", {}).get("port", 24940))
    token = args.token

    container = await HttpContainer.start(cfg, health_path=endpoints.health)
    source = RestOrderSource(container.http, endpoints)
    hub = HubClient(endpoints.hub_url,
                    groups=settings.hub_groups,
                    api_token=container.http.api_token or "",
                    ping_interval=settings.hub_ping_interval_s,
                    reconnect_cap_s=settings.hub_reconnect_cap_s)
    feed = OrderHubFeed(hub, queue_size=settings.hub_queue_size)

    manager = ViewManager(source, feed, settings)
    await feed.start()
    await manager.start_from_cfg()
    logger.info(f"Order monitor up: views={[v.value for v in settings.views]} role={endpoints.role} "
                f"control=http://{host}:{port}")

    app = build_app(manager, token=token)
    server = uvicorn.Server(
        uvicorn.Config(app, host=host,
                            port=port,
                            loop="asyncio",
                            lifespan="off",
                            timeout_keep_alive=10,
                            log_config=None,
                            access_log=False)
    )

    http_task = asyncio.create_task(server.serve(), name="http")
    stop_event = asyncio.Event()

    def _graceful(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _graceful)
        except NotImplementedError:
            pass

    await stop_event.wait()
    logger.info("Order monitor stopping")
    await manager.stop_all()
    await feed.stop()
    await container.stop()
    http_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await http_task

def cli():
    asyncio.run(main())

if __name__ == "__main__":
    cli()
