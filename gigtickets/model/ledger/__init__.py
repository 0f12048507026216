# model/ledger/__init__.py
from typing import Optional

from ...infra.sql import PoolOptions
from ._redis import RedisLedger
from ._sql import SqlLedger
from .base import Aggregate, Ledger, NewTicket, Order, Ticket

BACKENDS = ("sql", "redis")


# Factory keeps server.py simple and backend-agnostic:
def new_ledger(backend: str, *, database_url: str = "",
               redis_url: str = "",
               pool: Optional[PoolOptions] = None) -> Ledger:
    backend = backend.lower()
    if backend == "sql":
        if not database_url:
            raise RuntimeError("Ledger(sql) requires database_url")
        return SqlLedger.from_url(database_url, pool)
    if backend == "redis":
        if not redis_url:
            raise RuntimeError("Ledger(redis) requires redis_url")
        return RedisLedger.from_url(redis_url)
    raise RuntimeError(
        f"unknown ledger backend {backend!r}, expected one of {BACKENDS}"
    )


__all__ = [
    "Ledger", "SqlLedger", "RedisLedger", "new_ledger", "BACKENDS",
    "Order", "Ticket", "NewTicket", "Aggregate",
]
