from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)


@dataclass(frozen=True)
class PoolOptions:
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30
    # concurrent DB users; None follows pool_size
    gate_limit: Optional[int] = None

    @property
    def gate(self) -> int:
        return max(1, self.gate_limit or self.pool_size)


def async_url(url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


# DB-GATE: bounds how many coroutines hold a connection at once
@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    async with sem:
        yield


def _sqlite_pragmas(dbapi_connection, _record) -> None:
    cur = dbapi_connection.cursor()
    # busy_timeout first: switching journal mode may need the lock
    for pragma in (
        "busy_timeout=5000",
        "journal_mode=WAL",
        "synchronous=NORMAL",
        "foreign_keys=ON",
    ):
        cur.execute(f"PRAGMA {pragma};")
    cur.close()


def make_async_engine(
    database_url: str, pool: Optional[PoolOptions] = None,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession], Gated]:
    pool = pool or PoolOptions()
    url = async_url(database_url)

    kw = dict(pool_pre_ping=True)
    if url.startswith("postgresql+asyncpg://"):
        kw.update(
            pool_size=pool.pool_size,
            max_overflow=pool.max_overflow,
            pool_timeout=pool.pool_timeout,
        )
    engine = create_async_engine(url, **kw)
    if url.startswith("sqlite+aiosqlite://"):
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    sem = asyncio.Semaphore(pool.gate)

    def gated():
        return _gated(sem)

    return engine, sessions, gated
