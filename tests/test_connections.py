from unittest.mock import AsyncMock, MagicMock

import pytest

from raffle.core.config import Settings
from raffle.services.postgres import PostgresPool
from raffle.state.errors import StateStoreError
from raffle.state.factory import create_state_store
from raffle.state.file_store import FileStateStore
from raffle.state.postgres_store import PostgresStateStore


@pytest.mark.asyncio
async def test_postgres_pool_creates_once_and_tests_connection(monkeypatch):
    connection_mock = AsyncMock()

    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()
    created: list[dict] = []

    async def create_pool(**kwargs):
        created.append(kwargs)
        return pool_mock

    monkeypatch.setattr("raffle.services.postgres.asyncpg.create_pool", create_pool)

    postgres_pool = PostgresPool("postgresql://test", min_size=2, max_size=4)
    assert await postgres_pool.get_pool() is pool_mock
    assert await postgres_pool.test_connection() is True
    connection_mock.execute.assert_awaited_with("SELECT 1")
    assert len(created) == 1
    assert created[0]["min_size"] == 2
    await postgres_pool.close()
    pool_mock.close.assert_awaited()


@pytest.mark.asyncio
async def test_factory_builds_file_store(tmp_path):
    settings = Settings(_env_file=None, data_dir=tmp_path / "raffle")

    store = await create_state_store(settings)

    assert isinstance(store, FileStateStore)
    assert store.base_dir == tmp_path / "raffle"


@pytest.mark.asyncio
async def test_factory_builds_postgres_store(fake_pool):
    settings = Settings(_env_file=None, storage_backend="postgres", postgres_dsn="postgresql://x", query_timeout_ms=900)

    store = await create_state_store(settings, pool=fake_pool)

    assert isinstance(store, PostgresStateStore)
    assert PostgresStateStore._CREATE_STATE_SQL in fake_pool.database.executed


@pytest.mark.asyncio
async def test_factory_requires_pool_for_postgres():
    settings = Settings(_env_file=None, storage_backend="postgres")

    with pytest.raises(StateStoreError):
        await create_state_store(settings)
