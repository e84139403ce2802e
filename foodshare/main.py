from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from foodshare.api.routers import dashboard, food_reports, identity, profiles, realtime
from foodshare.domain.models import FOOD_REPORTS_TABLE
from foodshare.infra import redis_state
from foodshare.infra.audit import AuditMiddleware
from foodshare.infra.db import check_db_ready
from foodshare.infra.events import event_bus
from foodshare.infra.logging_setup import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    event_bus.subscribe(FOOD_REPORTS_TABLE, realtime.change_hub.handle_change)
    relay_task: asyncio.Task[None] | None = None
    if redis_state.REDIS_FANOUT_ENABLED:
        event_bus.subscribe(FOOD_REPORTS_TABLE, realtime.relay_to_redis)
        relay_task = asyncio.create_task(realtime.listen_redis_changes(realtime.change_hub))
    logger.info("foodshare started (redis fanout=%s)", redis_state.REDIS_FANOUT_ENABLED)
    try:
        yield
    finally:
        event_bus.unsubscribe(FOOD_REPORTS_TABLE, realtime.change_hub.handle_change)
        if relay_task is not None:
            event_bus.unsubscribe(FOOD_REPORTS_TABLE, realtime.relay_to_redis)
            relay_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await relay_task


app = FastAPI(
    title="foodshare",
    description="Surplus food pickup and delivery coordination between hotels and delivery agents.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(profiles.router, prefix="/api/profiles", tags=["profiles"])
app.include_router(food_reports.router, prefix="/api/food-reports", tags=["food-reports"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
app.include_router(realtime.ws_router, tags=["realtime"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    ready = db_ok
    if redis_state.REDIS_FANOUT_ENABLED:
        redis_ok = redis_state.check_redis_ready()
        checks["redis"] = "ok" if redis_ok else "fail"
        ready = ready and redis_ok
    if not ready:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
