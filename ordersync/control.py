# ordersync/control.py
from fastapi import FastAPI, Header, HTTPException, Response
from pydantic import BaseModel
from typing import Optional

from ordersync.enums import ViewKind
from ordersync.errors import MalformedEventError, SourceError
from ordersync.manager import ViewManager

def build_app(manager: ViewManager, token: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="Order Monitor Control")

    def _auth(x_token: Optional[str]):
        if token and x_token != token:
            raise HTTPException(status_code=401, detail="unauthorized")

    def _view(view: str) -> ViewKind:
        try:
            return ViewKind.parse(view)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"unknown view: {view}")

    class StatusReq(BaseModel):
        status: str
        deliveryPersonId: Optional[int] = None

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.get("/readyz")
    async def readyz(response: Response):
        ready = manager.ready
        if not ready:
            response.status_code = 503
        return {"ok": ready}

    @app.get("/status")
    async def get_status(x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        return await manager.status()

    @app.get("/views")
    async def list_views(x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        return {"views": await manager.list_views()}

    @app.get("/views/{view}/orders")
    async def view_orders(view: str, x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        kind = _view(view)
        try:
            orders = manager.snapshot(kind)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"view not open: {kind.value}")
        return {"view": kind.value, "orders": [o.to_dict() for o in orders]}

    @app.put("/views/{view}")
    async def open_view(view: str, x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        added = await manager.add_view(_view(view))
        return {"ok": True, "added": added}

    @app.delete("/views/{view}")
    async def close_view(view: str, x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        removed = await manager.remove_view(_view(view))
        if not removed:
            raise HTTPException(status_code=404, detail=f"view not open: {view}")
        return {"ok": True}

    @app.post("/views/{view}/resync")
    async def resync_view(view: str, x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        kind = _view(view)
        try:
            orders = await manager.resync(kind)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"view not open: {kind.value}")
        except SourceError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"ok": True, "size": len(orders)}

    @app.post("/orders/{order_id}/status")
    async def change_status(order_id: int, req: StatusReq, x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        try:
            order = await manager.change_status(order_id, req.status, req.deliveryPersonId)
        except MalformedEventError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except SourceError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"ok": True, "order": order.to_dict()}

    return app
