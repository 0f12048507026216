from __future__ import annotations
import asyncio
from typing import List, Sequence, Tuple

import fakeredis
import pytest
import pytest_asyncio

from gigtickets.errors import NotificationFailure
from gigtickets.fulfillment import FulfillmentOrchestrator, PaymentConfirmed
from gigtickets.model.ledger import NewTicket, RedisLedger, SqlLedger
from gigtickets.notifier import Notifier

# a Saturday
EVENT_DATE = "2026-10-24"


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Tuple[str, List[NewTicket]]] = []

    async def send_tickets(
        self, buyer_email: str, tickets: Sequence[NewTicket]
    ) -> None:
        if self.fail:
            raise NotificationFailure("smtp down")
        self.sent.append((buyer_email, list(tickets)))


class InterleavingLedger:
    """Holds every reader until all of them have looked the ticket up."""

    def __init__(self, inner, readers: int) -> None:
        self.inner = inner
        self.readers = readers
        self.seen = 0
        self.all_read = asyncio.Event()

    async def find_ticket(self, code, event_date):
        ticket = await self.inner.find_ticket(code, event_date)
        self.seen += 1
        if self.seen >= self.readers:
            self.all_read.set()
        await self.all_read.wait()
        return ticket

    async def mark_redeemed(self, ticket_id):
        return await self.inner.mark_redeemed(ticket_id)


def scenario_a() -> PaymentConfirmed:
    return PaymentConfirmed(
        payment_ref="pay_1",
        buyer_email="a@x.com",
        amount_paid=9000,
        unit_price=4500,
    )


async def _sql_ledger(tmp_path) -> SqlLedger:
    ledger = SqlLedger.from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    await ledger.init_schema()
    return ledger


def _redis_ledger() -> RedisLedger:
    return RedisLedger(fakeredis.FakeAsyncRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    ))


@pytest_asyncio.fixture
async def sql_ledger(tmp_path):
    ledger = await _sql_ledger(tmp_path)
    yield ledger
    await ledger.close()


@pytest_asyncio.fixture
async def redis_ledger():
    ledger = _redis_ledger()
    yield ledger
    await ledger.close()


@pytest_asyncio.fixture(params=["sql", "redis"])
async def ledger(request, tmp_path):
    """Every ledger contract test runs against both backends."""
    if request.param == "sql":
        lg = await _sql_ledger(tmp_path)
    else:
        lg = _redis_ledger()
    yield lg
    await lg.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(ledger, notifier) -> FulfillmentOrchestrator:
    return FulfillmentOrchestrator(
        ledger, notifier, event_date=lambda: EVENT_DATE
    )
