import asyncio
import os
from contextlib import asynccontextmanager

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTO_ASSIGN_ENABLED", "true")

from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from app.models import Base


@asynccontextmanager
async def database(path):
    # One pooled connection: SQLite allows a single writer, so sessions queue
    # for it the way they would queue on row locks in PostgreSQL.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        poolclass=AsyncAdaptedQueuePool,
        pool_size=1,
        max_overflow=0,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; issue BEGIN ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def run_db(tmp_path):
    """Run ``scenario(sessionmaker)`` against a fresh database file."""

    def _run(scenario):
        async def _main():
            async with database(tmp_path / "support.db") as sessionmaker:
                return await scenario(sessionmaker)

        return asyncio.run(_main())

    return _run
