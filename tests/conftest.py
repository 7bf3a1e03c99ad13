from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from raffle.state.file_store import FileStateStore
from raffle.state.postgres_store import PostgresStateStore

BASE_TS = 1_700_000_000_000


class FixedClock:
    """Clock frozen at one millisecond unless advanced explicitly."""

    def __init__(self, value: int = BASE_TS) -> None:
        self.value = value

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int) -> None:
        self.value += ms


class FakeDatabase:
    """In-memory stand-in for the two raffle tables."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.state: dict[str, str] = {}
        self.snapshots: dict[str, tuple[str, datetime]] = {}
        self.executed: list[str] = []

    def tick(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now


class FakeTransaction:
    def __init__(self, database: FakeDatabase) -> None:
        self._database = database
        self._saved: tuple[dict, dict] | None = None

    async def __aenter__(self):
        self._saved = (copy.deepcopy(self._database.state), copy.deepcopy(self._database.snapshots))
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None and self._saved is not None:
            self._database.state, self._database.snapshots = self._saved
        return False


class FakeConnection:
    def __init__(self, database: FakeDatabase) -> None:
        self._database = database

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self._database)

    async def execute(self, sql: str, *args):
        db = self._database
        db.executed.append(sql)
        if sql == PostgresStateStore._INSERT_SNAPSHOT_SQL:
            snapshot_id, payload = args
            db.snapshots.setdefault(snapshot_id, (payload, db.tick()))
        elif sql == PostgresStateStore._UPSERT_STATE_SQL:
            row_id, payload = args
            db.state[row_id] = payload
        return "OK"

    async def fetchrow(self, sql: str, *args):
        db = self._database
        if sql == PostgresStateStore._SELECT_STATE_SQL:
            payload = db.state.get(args[0])
        elif sql == PostgresStateStore._SELECT_SNAPSHOT_SQL:
            entry = db.snapshots.get(args[0])
            payload = entry[0] if entry else None
        else:
            raise AssertionError(f"unexpected fetchrow: {sql}")
        return None if payload is None else {"payload": payload}

    async def fetch(self, sql: str, *args):
        db = self._database
        if sql == PostgresStateStore._LIST_SNAPSHOTS_SQL:
            rows = [{"id": key, "created_at": created} for key, (_, created) in db.snapshots.items()]
            return sorted(rows, key=lambda row: (row["created_at"], row["id"]), reverse=True)
        if sql == PostgresStateStore._DELETE_OLD_SNAPSHOTS_SQL:
            cutoff = db.now - timedelta(days=args[0])
            expired = [key for key, (_, created) in db.snapshots.items() if created < cutoff]
            for key in expired:
                del db.snapshots[key]
            return [{"id": key} for key in expired]
        raise AssertionError(f"unexpected fetch: {sql}")


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePool:
    def __init__(self, database: FakeDatabase | None = None) -> None:
        self.database = database or FakeDatabase()
        self.connection = FakeConnection(self.database)

    def acquire(self):
        return DummyAcquire(self.connection)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest_asyncio.fixture(params=["file", "postgres"])
async def store(request, tmp_path, clock, fake_pool):
    if request.param == "file":
        instance = FileStateStore(tmp_path / "data", clock=clock)
    else:
        instance = PostgresStateStore(fake_pool, clock=clock)
    await instance.open()
    try:
        yield instance
    finally:
        await instance.close()


@pytest_asyncio.fixture
async def file_store(tmp_path, clock):
    instance = FileStateStore(tmp_path / "data", clock=clock)
    await instance.open()
    yield instance


@pytest_asyncio.fixture
async def postgres_store(fake_pool, clock):
    instance = PostgresStateStore(fake_pool, clock=clock, retention_days=30)
    await instance.open()
    yield instance
