"""
Table Order Service — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from tableorder.api import analytics, health, notifications, orders
from tableorder.api.errors import register_exception_handlers
from tableorder.core.config import get_settings
from tableorder.core.notifier import build_notifier
from tableorder.core.redis_client import close_redis, get_redis
from tableorder.db.database import Base, engine
from tableorder.middleware.idempotency import IdempotencyMiddleware

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis = get_redis() if settings.NOTIFIER_BACKEND == "redis" else None
    notifier = build_notifier(settings, redis)
    await notifier.open()
    app.state.notifier = notifier
    logger.info("%s %s started (notifier=%s)", settings.SERVICE_NAME, settings.SERVICE_VERSION, settings.NOTIFIER_BACKEND)

    yield

    await notifier.close()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Table Order Service",
    description="Order lifecycle for table-side ordering: create, amend, status, archive, live updates.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.IDEMPOTENCY_ENABLED:
    app.add_middleware(IdempotencyMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

register_exception_handlers(app)

app.include_router(orders.router)
app.include_router(notifications.router)
app.include_router(analytics.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}


def run() -> None:
    """Console entrypoint: serve the app with uvicorn."""
    uvicorn.run(
        "tableorder.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
