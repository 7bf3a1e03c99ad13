from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Mapping, TypeVar

import asyncpg

from .errors import StorageTimeoutError
from .models import SnapshotInfo, now_ms
from .store import Clock, StateStore

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

SINGLETON_ID = "singleton"


class PostgresStateStore(StateStore):
    """State store keeping the current state in a singleton row plus a snapshot table."""

    backend_name = "postgres"
    supports_cleanup = True

    _CREATE_STATE_SQL = """
    CREATE TABLE IF NOT EXISTS raffle_state (
        id TEXT PRIMARY KEY,
        payload JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """

    _CREATE_SNAPSHOTS_SQL = """
    CREATE TABLE IF NOT EXISTS raffle_snapshots (
        id TEXT PRIMARY KEY,
        payload JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """

    _CREATE_SNAPSHOTS_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS raffle_snapshots_created_at_idx ON raffle_snapshots (created_at DESC)
    """

    _SELECT_STATE_SQL = """
    SELECT payload FROM raffle_state WHERE id = $1 LIMIT 1
    """

    _INSERT_SNAPSHOT_SQL = """
    INSERT INTO raffle_snapshots (id, payload)
    VALUES ($1, $2::jsonb)
    ON CONFLICT (id) DO NOTHING
    """

    _UPSERT_STATE_SQL = """
    INSERT INTO raffle_state (id, payload, updated_at)
    VALUES ($1, $2::jsonb, now())
    ON CONFLICT (id) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
    """

    _LIST_SNAPSHOTS_SQL = """
    SELECT id, created_at FROM raffle_snapshots ORDER BY created_at DESC, id DESC
    """

    _SELECT_SNAPSHOT_SQL = """
    SELECT payload FROM raffle_snapshots WHERE id = $1 LIMIT 1
    """

    _DELETE_OLD_SNAPSHOTS_SQL = """
    DELETE FROM raffle_snapshots
    WHERE created_at < now() - make_interval(days => $1)
    RETURNING id
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        query_timeout_ms: int = 5000,
        retention_days: int | None = 30,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(clock=clock, retention_days=retention_days)
        self._pool = pool
        self._query_timeout_ms = query_timeout_ms

    async def _timed(self, awaitable: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._query_timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise StorageTimeoutError(f"Database query timed out after {self._query_timeout_ms}ms") from exc

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await self._timed(connection.execute(self._CREATE_STATE_SQL))
            await self._timed(connection.execute(self._CREATE_SNAPSHOTS_SQL))
            await self._timed(connection.execute(self._CREATE_SNAPSHOTS_INDEX_SQL))

    async def open(self) -> None:
        await self.ensure_schema()
        await super().open()

    async def _read_current_payload(self) -> Mapping[str, Any] | None:
        async with self._pool.acquire() as connection:
            row = await self._timed(connection.fetchrow(self._SELECT_STATE_SQL, SINGLETON_ID))
        if row is None:
            return None
        return _decode_payload(row["payload"])

    async def _write(self, payload: Mapping[str, Any], snapshot_id: str) -> None:
        encoded = json.dumps(payload)
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await self._timed(connection.execute(self._INSERT_SNAPSHOT_SQL, snapshot_id, encoded))
                await self._timed(connection.execute(self._UPSERT_STATE_SQL, SINGLETON_ID, encoded))

    async def _list_snapshot_records(self) -> list[SnapshotInfo]:
        async with self._pool.acquire() as connection:
            rows = await self._timed(connection.fetch(self._LIST_SNAPSHOTS_SQL))
        return [
            SnapshotInfo(id=str(row["id"]), timestamp=_to_epoch_ms(row["created_at"]), path=str(row["id"]))
            for row in rows
        ]

    async def _read_snapshot_payload(self, snapshot_id: str) -> Mapping[str, Any] | None:
        async with self._pool.acquire() as connection:
            row = await self._timed(connection.fetchrow(self._SELECT_SNAPSHOT_SQL, snapshot_id))
        if row is None:
            return None
        return _decode_payload(row["payload"])

    async def _delete_snapshots_older_than(self, retention_days: int) -> int:
        async with self._pool.acquire() as connection:
            rows = await self._timed(connection.fetch(self._DELETE_OLD_SNAPSHOTS_SQL, retention_days))
        return len(rows)


def _decode_payload(value: Any) -> Mapping[str, Any] | None:
    # asyncpg hands JSONB back as text unless a type codec is registered
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    if not isinstance(value, dict):
        logger.warning("Ignoring stored payload with unexpected type %s", type(value).__name__)
        return None
    return value


def _to_epoch_ms(value: Any) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
    return now_ms()
