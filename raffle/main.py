from __future__ import annotations

import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from raffle.api.routes import cleanup, metrics, ping, state
from raffle.core.config import Settings, get_settings
from raffle.core.logging import configure_logging, init_tracer, shutdown_tracer
from raffle.dependencies.state import StateStoreUnavailableError
from raffle.security.rate_limit import FixedWindowRateLimiter, RateLimitExceededError
from raffle.services.postgres import PostgresPool
from raffle.state.errors import StateStoreError
from raffle.state.factory import create_state_store


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings: Settings = app.state.settings
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    postgres_pool: PostgresPool | None = None
    pool = None
    if settings.storage_backend == "postgres":
        if not settings.postgres_dsn:
            raise StateStoreError("RAFFLE_POSTGRES_DSN must be set when RAFFLE_STORAGE_BACKEND=postgres")
        postgres_pool = PostgresPool(
            dsn=settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )
        pool = await postgres_pool.get_pool()

    store = await create_state_store(settings, pool=pool)
    app.state.postgres_pool = postgres_pool
    app.state.state_store = store
    try:
        yield
    finally:
        await store.close()
        if postgres_pool is not None:
            await postgres_pool.close()
        shutdown_tracer(tracer_provider)


async def _rate_limited(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        {"error": "Too many requests. Please try again later."},
        status_code=429,
        headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
    )


async def _store_unavailable(request: Request, exc: StateStoreUnavailableError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=503)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.state_store = None
    app.state.rate_limiter = FixedWindowRateLimiter(
        settings.rate_limit_requests,
        settings.rate_limit_window_seconds,
    )
    app.add_exception_handler(RateLimitExceededError, _rate_limited)
    app.add_exception_handler(StateStoreUnavailableError, _store_unavailable)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(state.router)
    app.include_router(cleanup.router)
    return app


app = create_app()
