from __future__ import annotations

import logging

import asyncpg

from raffle.core.config import Settings

from .errors import StateStoreError
from .file_store import FileStateStore
from .postgres_store import PostgresStateStore
from .store import Clock, StateStore

logger = logging.getLogger(__name__)


async def create_state_store(
    settings: Settings,
    *,
    pool: asyncpg.Pool | None = None,
    clock: Clock | None = None,
) -> StateStore:
    """Build and open the state store selected by ``settings.storage_backend``."""

    store: StateStore
    if settings.storage_backend == "postgres":
        if pool is None:
            raise StateStoreError("The postgres backend requires a connection pool (set RAFFLE_POSTGRES_DSN)")
        store = PostgresStateStore(
            pool,
            query_timeout_ms=settings.query_timeout_ms,
            retention_days=settings.snapshot_retention_days,
            clock=clock,
        )
    else:
        store = FileStateStore(settings.data_dir, clock=clock)

    await store.open()
    logger.info("Opened %s state store", store.backend_name)
    return store
