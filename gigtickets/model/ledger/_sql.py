"""
SQL ledger (PostgreSQL via asyncpg, SQLite via aiosqlite).

- orders: one row per payment, payment_ref UNIQUE is the idempotency key
- tickets: one row per admission, code UNIQUE, redeemed flips once
- place_order writes an order and its tickets in one transaction; a taken
  code rolls the order back with it
- redemption is a single conditional UPDATE; the affected row count decides
  which of several racing scanners won
"""
from __future__ import annotations
import logging
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    false,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from ...errors import DuplicatePayment, LedgerUnavailable
from ...helpers import now_ts
from ...infra.sql import Gated, PoolOptions, make_async_engine
from .base import Aggregate, Ledger, NewTicket, Order, Placement, Ticket

logger = logging.getLogger(__name__)

Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class OrderRow(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    buyer_email = Column(String, nullable=False)
    payment_ref = Column(String, nullable=False, unique=True)
    amount = Column(Integer, nullable=False)  # cents
    created_at = Column(Float, nullable=False)


class TicketRow(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False)
    code = Column(String, nullable=False, unique=True)
    event_date = Column(String, nullable=False, index=True)
    redeemed = Column(
        Boolean, nullable=False, default=False, server_default=false()
    )


# ----------------------------
# Statements
# ----------------------------
SQL_INSERT_TICKET = text("""
    INSERT INTO tickets (id, order_id, code, event_date, redeemed)
    VALUES (:id, :order_id, :code, :event_date, :redeemed)
    ON CONFLICT (code) DO NOTHING
    RETURNING id
""")

SQL_FIND_TICKET = text("""
    SELECT id, order_id, code, event_date, redeemed
    FROM tickets
    WHERE code = :code AND event_date = :event_date
""")

# the whole at-most-once guarantee lives in the WHERE clause
SQL_MARK_REDEEMED = text("""
    UPDATE tickets SET redeemed = :yes
    WHERE id = :id AND redeemed = :no
""")

SQL_AGGREGATE = text("""
    SELECT
      COUNT(*) AS sold,
      COALESCE(SUM(CASE WHEN redeemed THEN 1 ELSE 0 END), 0) AS scanned
    FROM tickets
    WHERE event_date = :event_date
""")

SQL_EXPORT_CODES = text("""
    SELECT code FROM tickets WHERE event_date = :event_date ORDER BY code
""")

SQL_GET_ORDER = text("""
    SELECT id, buyer_email, payment_ref, amount, created_at
    FROM orders WHERE id = :id
""")

SQL_TICKETS_FOR_ORDER = text("""
    SELECT id, order_id, code, event_date, redeemed
    FROM tickets WHERE order_id = :order_id ORDER BY code
""")


def _ticket(row) -> Ticket:
    return Ticket(
        id=row["id"],
        order_id=row["order_id"],
        code=row["code"],
        event_date=row["event_date"],
        # SQLite hands back 0/1
        redeemed=bool(row["redeemed"]),
    )


def _order_row(
    order_id: str, buyer_email: str, payment_ref: str, amount: int
) -> OrderRow:
    return OrderRow(
        id=order_id,
        buyer_email=buyer_email,
        payment_ref=payment_ref,
        amount=amount,
        created_at=now_ts(),
    )


@asynccontextmanager
async def _storage_errors(op: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("ledger.%s failed: %s", op, e)
        raise LedgerUnavailable(f"{op}: {e}") from e


class SqlLedger(Ledger):
    def __init__(
        self, *, engine: AsyncEngine,
        sessions: async_sessionmaker[AsyncSession], gated: Gated,
    ) -> None:
        self.engine = engine
        self.sessions = sessions
        self.gated = gated

    @classmethod
    def from_url(
        cls, database_url: str, pool: Optional[PoolOptions] = None
    ) -> SqlLedger:
        engine, sessions, gated = make_async_engine(database_url, pool)
        return cls(engine=engine, sessions=sessions, gated=gated)

    async def init_schema(self) -> None:
        async with _storage_errors("init_schema"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def record_order(
        self, buyer_email: str, payment_ref: str, amount: int
    ) -> str:
        order_id = uuid.uuid4().hex
        async with _storage_errors("record_order"):
            try:
                async with self.gated():
                    async with self.sessions() as db:
                        async with db.begin():
                            db.add(_order_row(
                                order_id, buyer_email, payment_ref, amount
                            ))
            except IntegrityError:
                # unique(payment_ref): the gateway delivered this one before
                raise DuplicatePayment(payment_ref) from None
        return order_id

    async def place_order(
        self, buyer_email: str, payment_ref: str, amount: int,
        tickets: Sequence[NewTicket],
    ) -> Placement:
        order_id = uuid.uuid4().hex
        async with _storage_errors("place_order"):
            async with self.gated():
                async with self.sessions() as db:
                    db.add(_order_row(order_id, buyer_email, payment_ref,
                                      amount))
                    try:
                        await db.flush()
                    except IntegrityError:
                        raise DuplicatePayment(payment_ref) from None
                    rejected = await self._insert_tickets(db, order_id, tickets)
                    if rejected:
                        # leaving the session uncommitted rolls the order back
                        return Placement(order_id=None, rejected=rejected)
                    await db.commit()
        return Placement(order_id=order_id, rejected=[])

    async def _insert_tickets(
        self, db: AsyncSession, order_id: str, tickets: Sequence[NewTicket]
    ) -> List[str]:
        rejected: List[str] = []
        for t in tickets:
            row = (await db.execute(SQL_INSERT_TICKET, {
                "id": uuid.uuid4().hex,
                "order_id": order_id,
                "code": t.code,
                "event_date": t.event_date,
                "redeemed": False,
            })).first()
            if row is None:
                rejected.append(t.code)
        return rejected

    async def add_tickets(
        self, order_id: str, tickets: Sequence[NewTicket]
    ) -> List[str]:
        async with _storage_errors("add_tickets"):
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        return await self._insert_tickets(
                            db, order_id, tickets
                        )

    async def find_ticket(
        self, code: str, event_date: str
    ) -> Optional[Ticket]:
        async with _storage_errors("find_ticket"):
            async with self.gated():
                async with self.sessions() as db:
                    row = (await db.execute(SQL_FIND_TICKET, {
                        "code": code, "event_date": event_date,
                    })).mappings().first()
        return _ticket(row) if row else None

    async def mark_redeemed(self, ticket_id: str) -> bool:
        async with _storage_errors("mark_redeemed"):
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        result = await db.execute(SQL_MARK_REDEEMED, {
                            "id": ticket_id, "yes": True, "no": False,
                        })
                        flipped = result.rowcount == 1
        return flipped

    async def aggregate(self, event_date: str) -> Aggregate:
        async with _storage_errors("aggregate"):
            async with self.gated():
                async with self.sessions() as db:
                    row = (await db.execute(SQL_AGGREGATE, {
                        "event_date": event_date,
                    })).mappings().first()
        return Aggregate(sold=int(row["sold"]), scanned=int(row["scanned"]))

    async def export_codes(self, event_date: str) -> List[str]:
        async with _storage_errors("export_codes"):
            async with self.gated():
                async with self.sessions() as db:
                    rows = (await db.execute(SQL_EXPORT_CODES, {
                        "event_date": event_date,
                    })).all()
        return [r[0] for r in rows]

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with _storage_errors("get_order"):
            async with self.gated():
                async with self.sessions() as db:
                    row = (await db.execute(SQL_GET_ORDER, {
                        "id": order_id,
                    })).mappings().first()
        if not row:
            return None
        return Order(
            id=row["id"],
            buyer_email=row["buyer_email"],
            payment_ref=row["payment_ref"],
            amount=int(row["amount"]),
            created_at=float(row["created_at"]),
        )

    async def tickets_for_order(self, order_id: str) -> List[Ticket]:
        async with _storage_errors("tickets_for_order"):
            async with self.gated():
                async with self.sessions() as db:
                    rows = (await db.execute(SQL_TICKETS_FOR_ORDER, {
                        "order_id": order_id,
                    })).mappings().all()
        return [_ticket(r) for r in rows]
