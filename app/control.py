# app/control.py
from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional, Union

from fulfillment.services.scheduler import SyncScheduler
from utils.logger import logger


def build_app(scheduler: SyncScheduler, token: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="Bsale Sync")
    # any origin is accepted and echoed back
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Token"],
    )

    def _auth(x_token: Optional[str]):
        if token and x_token != token:
            raise HTTPException(status_code=401, detail="unauthorized")

    class OrderTrigger(BaseModel):
        # webhook payloads send the id as a number or a string
        order_id: Optional[Union[int, str]] = None

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.post("/api/bsale", status_code=202)
    async def enqueue_order(req: Optional[OrderTrigger] = None, x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        order_id = req.order_id if req else None
        if order_id is None or str(order_id).strip() == "":
            return JSONResponse(status_code=400, content={"error": "missing order_id"})

        order_id = str(order_id).strip()
        logger.info(f"[api] /api/bsale received order_id={order_id}")
        scheduler.trigger_order(order_id)
        return {"message": "Received. It will be processed shortly.", "order_id": order_id}

    @app.post("/api/sync/stock", status_code=202)
    async def sync_stock(x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        if scheduler.jobs["stock"].lock.locked():
            return {"message": "Stock sync already running."}
        scheduler.spawn(scheduler.run_stock_pass(), name="manual:stock")
        return {"message": "Stock sync started."}

    @app.get("/status")
    async def get_status(x_token: Optional[str] = Header(default=None)):
        _auth(x_token)
        status = {
            name: {
                "running": job.lock.locked(),
                "runs": job.runs,
                "skipped": job.skipped,
                "failures": job.failures,
            }
            for name, job in scheduler.jobs.items()
        }
        status["pending_triggers"] = scheduler.pending_triggers()
        return status

    return app
