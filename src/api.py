"""HTTP trigger surface for schedulers.

Each endpoint runs exactly one cycle and returns its counters as JSON.
``/scan`` answers 502 when the feed could not be reached at all, so cron
services surface upstream outages.

Logging, storage and the notifier are set up once at startup; missing
credentials stop the process before it serves any request.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

import app as runner
import settings
from logging_setup import configure_logging

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(api: FastAPI):
    configure_logging()
    api.state.storage = runner.build_storage()
    api.state.notifier = runner.build_notifier()
    LOGGER.info("Trigger API ready (scan mode: %s)", settings.SCAN_MODE)
    yield


app = FastAPI(title="redwatch", lifespan=lifespan)


def require_trigger_key(x_trigger_key: Optional[str]) -> None:
    expected = os.environ.get("TRIGGER_API_KEY")
    if expected and x_trigger_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.api_route("/scan", methods=["GET", "POST"])
async def scan(request: Request, x_trigger_key: Optional[str] = Header(default=None)):
    require_trigger_key(x_trigger_key)
    summary = await runner.run_scan(storage=request.app.state.storage)
    status = 200 if summary.feed_reachable else 502
    return JSONResponse(summary.as_dict(), status_code=status)


@app.api_route("/dispatch", methods=["GET", "POST"])
async def dispatch(
    request: Request,
    batch_size: Optional[int] = Query(default=None, ge=1, le=500),
    x_trigger_key: Optional[str] = Header(default=None),
):
    require_trigger_key(x_trigger_key)
    summary = await runner.run_dispatch(
        storage=request.app.state.storage,
        batch_size=batch_size,
        notifier=request.app.state.notifier,
    )
    return JSONResponse(summary.as_dict(), status_code=200)


@app.get("/health")
def health():
    return {"ok": True}
