# model/ledger/_redis.py
"""
Redis ledger. Expects a client created with decode_responses=True.

Uniqueness comes from SET NX claims (payment refs, ticket codes). A claim
carries a TTL until the MULTI/EXEC that writes the order and its tickets
persists it, so a write that dies half-way frees its claims even when the
compensating DELETE cannot reach the server. Redemption is an SADD into the
per-event redeemed set, so exactly one concurrent caller sees "added" for a
given code.
"""
from __future__ import annotations
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from ...errors import DuplicatePayment, LedgerUnavailable
from ...helpers import now_ts
from .base import Aggregate, Ledger, NewTicket, Order, Placement, Ticket

logger = logging.getLogger(__name__)

# seconds an unconfirmed claim survives
CLAIM_TTL = 30


# ---- keys
def k_payref(ref: str) -> str: return f"payref:{ref}"
def k_order(oid: str) -> str: return f"order:{oid}"
def k_order_tickets(oid: str) -> str: return f"order:{oid}:tickets"
def k_code(code: str) -> str: return f"code:{code}"
def k_ticket(tid: str) -> str: return f"ticket:{tid}"
def k_event_codes(d: str) -> str: return f"event:{d}:codes"
def k_event_redeemed(d: str) -> str: return f"event:{d}:redeemed"


def _order_hash(
    order_id: str, buyer_email: str, payment_ref: str, amount: int
) -> dict:
    return {
        "id": order_id,
        "buyer_email": buyer_email,
        "payment_ref": payment_ref,
        "amount": str(amount),
        "created_at": str(now_ts()),
    }


@asynccontextmanager
async def _storage_errors(op: str):
    try:
        yield
    except RedisError as e:
        logger.error("ledger.%s failed: %s", op, e)
        raise LedgerUnavailable(f"{op}: {e}") from e


class RedisLedger(Ledger):
    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    @classmethod
    def from_url(cls, redis_url: str) -> RedisLedger:
        return cls(redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        ))

    async def init_schema(self) -> None:
        # schemaless; kept for parity with the SQL ledger
        return None

    async def close(self) -> None:
        await self.r.aclose()

    async def _release(self, *keys: str) -> None:
        # undo claims of a write that failed half-way
        with contextlib.suppress(RedisError):
            await self.r.delete(*keys)

    async def record_order(
        self, buyer_email: str, payment_ref: str, amount: int
    ) -> str:
        order_id = uuid.uuid4().hex
        async with _storage_errors("record_order"):
            await self._claim_payment(payment_ref, order_id)
            try:
                pipe = self.r.pipeline(transaction=True)
                pipe.hset(
                    k_order(order_id),
                    mapping=_order_hash(order_id, buyer_email, payment_ref,
                                        amount),
                )
                pipe.persist(k_payref(payment_ref))
                await pipe.execute()
            except RedisError:
                await self._release(k_payref(payment_ref))
                raise
        return order_id

    async def place_order(
        self, buyer_email: str, payment_ref: str, amount: int,
        tickets: Sequence[NewTicket],
    ) -> Placement:
        order_id = uuid.uuid4().hex
        async with _storage_errors("place_order"):
            await self._claim_payment(payment_ref, order_id)
            claims = [k_payref(payment_ref)]
            try:
                won, rejected = await self._claim_codes(tickets)
                claims += [k_code(t.code) for _, t in won]
                if rejected:
                    await self._release(*claims)
                    return Placement(order_id=None, rejected=rejected)

                # order and tickets land in one MULTI/EXEC
                pipe = self.r.pipeline(transaction=True)
                pipe.hset(
                    k_order(order_id),
                    mapping=_order_hash(order_id, buyer_email, payment_ref,
                                        amount),
                )
                pipe.persist(k_payref(payment_ref))
                self._insert_tickets(pipe, order_id, won)
                await pipe.execute()
            except RedisError:
                await self._release(*claims)
                raise
        return Placement(order_id=order_id, rejected=[])

    async def add_tickets(
        self, order_id: str, tickets: Sequence[NewTicket]
    ) -> List[str]:
        async with _storage_errors("add_tickets"):
            won, rejected = await self._claim_codes(tickets)
            if not won:
                return rejected
            try:
                pipe = self.r.pipeline(transaction=True)
                self._insert_tickets(pipe, order_id, won)
                await pipe.execute()
            except RedisError:
                await self._release(*(k_code(t.code) for _, t in won))
                raise
        return rejected

    async def _claim_payment(self, payment_ref: str, order_id: str) -> None:
        ok = await self.r.set(
            k_payref(payment_ref), order_id, nx=True, ex=CLAIM_TTL
        )
        if not ok:
            raise DuplicatePayment(payment_ref)

    async def _claim_codes(
        self, tickets: Sequence[NewTicket]
    ) -> Tuple[List[Tuple[str, NewTicket]], List[str]]:
        # one RTT; SET NX also catches a code repeated inside the batch
        planned = [(uuid.uuid4().hex, t) for t in tickets]
        pipe = self.r.pipeline(transaction=False)
        for tid, t in planned:
            pipe.set(k_code(t.code), tid, nx=True, ex=CLAIM_TTL)
        claimed = await pipe.execute()

        won = [p for p, ok in zip(planned, claimed) if ok]
        rejected = [t.code for (_, t), ok in zip(planned, claimed) if not ok]
        return won, rejected

    def _insert_tickets(
        self, pipe, order_id: str, won: Sequence[Tuple[str, NewTicket]]
    ) -> None:
        for tid, t in won:
            pipe.hset(k_ticket(tid), mapping={
                "id": tid,
                "order_id": order_id,
                "code": t.code,
                "event_date": t.event_date,
            })
            pipe.persist(k_code(t.code))
            pipe.sadd(k_order_tickets(order_id), tid)
            pipe.sadd(k_event_codes(t.event_date), t.code)

    async def _load_ticket(self, tid: str) -> Optional[Ticket]:
        h = await self.r.hgetall(k_ticket(tid))
        if not h:
            return None
        redeemed = await self.r.sismember(
            k_event_redeemed(h["event_date"]), h["code"]
        )
        return Ticket(
            id=h["id"],
            order_id=h["order_id"],
            code=h["code"],
            event_date=h["event_date"],
            redeemed=bool(redeemed),
        )

    async def find_ticket(
        self, code: str, event_date: str
    ) -> Optional[Ticket]:
        async with _storage_errors("find_ticket"):
            tid = await self.r.get(k_code(code))
            if tid is None:
                return None
            ticket = await self._load_ticket(tid)
        if ticket is None or ticket.event_date != event_date:
            return None
        return ticket

    async def mark_redeemed(self, ticket_id: str) -> bool:
        async with _storage_errors("mark_redeemed"):
            code, event_date = await self.r.hmget(
                k_ticket(ticket_id), "code", "event_date"
            )
            if code is None:
                return False
            added = await self.r.sadd(k_event_redeemed(event_date), code)
        return added == 1

    async def aggregate(self, event_date: str) -> Aggregate:
        async with _storage_errors("aggregate"):
            pipe = self.r.pipeline(transaction=False)
            pipe.scard(k_event_codes(event_date))
            pipe.scard(k_event_redeemed(event_date))
            sold, scanned = await pipe.execute()
        return Aggregate(sold=int(sold), scanned=int(scanned))

    async def export_codes(self, event_date: str) -> List[str]:
        async with _storage_errors("export_codes"):
            codes = await self.r.smembers(k_event_codes(event_date))
        return sorted(codes)

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with _storage_errors("get_order"):
            h = await self.r.hgetall(k_order(order_id))
        if not h:
            return None
        return Order(
            id=h["id"],
            buyer_email=h["buyer_email"],
            payment_ref=h["payment_ref"],
            amount=int(h["amount"]),
            created_at=float(h["created_at"]),
        )

    async def tickets_for_order(self, order_id: str) -> List[Ticket]:
        async with _storage_errors("tickets_for_order"):
            tids = await self.r.smembers(k_order_tickets(order_id))
            tickets = []
            for tid in tids:
                t = await self._load_ticket(tid)
                if t is not None:
                    tickets.append(t)
        return sorted(tickets, key=lambda t: t.code)
