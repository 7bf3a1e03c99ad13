from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from raffle.metrics import metrics_registry
from raffle.metrics.definitions import HTTP_RATE_LIMITED_TOTAL
from raffle.security.rate_limit import FixedWindowRateLimiter, RateLimitExceededError
from raffle.state.store import StateStore


class StateStoreUnavailableError(RuntimeError):
    """Raised when a request arrives before the state store has been opened."""


async def get_state_store(request: Request) -> StateStore:
    store = getattr(request.app.state, "state_store", None)
    if store is None:
        raise StateStoreUnavailableError("State store is not configured")
    return store


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter | None:
    return getattr(request.app.state, "rate_limiter", None)


async def enforce_rate_limit(
    request: Request,
    limiter: Annotated[FixedWindowRateLimiter | None, Depends(get_rate_limiter)],
) -> None:
    if limiter is None:
        return
    client = request.client.host if request.client else "anonymous"
    try:
        limiter.hit(client)
    except RateLimitExceededError:
        metrics_registry.counter(HTTP_RATE_LIMITED_TOTAL).inc()
        raise


StateStoreDep = Annotated[StateStore, Depends(get_state_store)]
