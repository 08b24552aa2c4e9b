from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from fiskalni_api.api.routes.sync import router as sync_router
from fiskalni_api.core.config import settings
from fiskalni_api.core.exceptions import register_exception_handlers
from fiskalni_api.core.logging import setup_json_logging
from fiskalni_api.core.rate_limit import RateLimitMiddleware
from fiskalni_api.core.request_logging import RequestLoggingMiddleware
from fiskalni_api.db.session import create_store
from fiskalni_api.services.realtime import RealtimeHub, run_relay

setup_json_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = create_store(settings.database_url)
    if store.dialect_name == "sqlite":
        # Local/dev databases only; Postgres schema is owned by Alembic.
        await store.create_all()
    hub = RealtimeHub()
    redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True) if settings.redis_url else None
    app.state.store = store
    app.state.hub = hub
    app.state.redis = redis
    relay = asyncio.create_task(run_relay(redis, hub)) if redis is not None else None
    try:
        yield
    finally:
        if relay is not None:
            relay.cancel()
            with suppress(asyncio.CancelledError):
                await relay
        if redis is not None:
            await redis.aclose()
        await store.dispose()


app = FastAPI(title="fiskalni sync api", lifespan=lifespan)
register_exception_handlers(app)
allowed_origins = [item.strip() for item in settings.cors_allowed_origins.split(",") if item.strip()]
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
)
app.include_router(sync_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {
        "status": "ok",
        "env": settings.app_env,
    }
