# src/perpindexer/interfaces/api/main.py
import logging

from fastapi import FastAPI

from perpindexer.config import settings
from perpindexer.logging_conf import setup_logging
from perpindexer.boot import build_indexer_services
from perpindexer.interfaces.api.metrics import count_requests, router as metrics_router
from perpindexer.interfaces.api.routers import queries as queries_router
from perpindexer.interfaces.webhook import events as events_webhook

log = logging.getLogger(__name__)

app = FastAPI(title="perpindexer API", version="1.0.0")
# Tests (and embedding processes) may pre-populate this before startup.
app.state.services = None


@app.on_event("startup")
async def on_startup():
    setup_logging()
    log.info("Application startup sequence initiated...")
    if app.state.services is None:
        from perpindexer.infrastructure.db.base import engine
        from perpindexer.infrastructure.db.uow import create_tables
        create_tables(engine)
        app.state.services = build_indexer_services()
    log.info("Application startup complete.")


@app.on_event("shutdown")
async def on_shutdown():
    services = app.state.services or {}
    coordinator = services.get("coordinator")
    if coordinator:
        await coordinator.aclose()


@app.get("/")
def root(): return {"message": "perpindexer API running"}


@app.get("/health")
def health_check(): return {"status": "ok"}


app.include_router(queries_router.router)
app.include_router(events_webhook.router)
if settings.METRICS_ENABLED:
    app.middleware("http")(count_requests)
    app.include_router(metrics_router)
