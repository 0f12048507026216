"""
Fulfillment: payment confirmed -> order recorded -> tickets minted ->
buyer notified.

The order and its tickets are written by one all-or-nothing ledger call. A
ledger failure (or running out of collision retries) leaves nothing behind
and propagates to the webhook handler, so the gateway's redelivery starts
from scratch; once the order exists, the unique payment reference turns any
further delivery into a no-op. The notifier only runs after the write has
returned. Its failures are logged and nothing is undone: the tickets are
valid whether or not the email ever arrives.
"""
from __future__ import annotations
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .codes import MAX_ATTEMPTS, generate_code
from .errors import DuplicatePayment, GenerationFailure
from .helpers import current_event_date
from .infra.timings import timeit
from .model.ledger import Ledger, NewTicket
from .notifier import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentConfirmed:
    payment_ref: str
    buyer_email: str
    amount_paid: int  # cents
    unit_price: int  # cents


@dataclass
class FulfillmentResult:
    order_id: Optional[str]
    tickets: List[NewTicket] = field(default_factory=list)
    duplicate: bool = False
    notified: bool = False


class FulfillmentOrchestrator:
    def __init__(
        self,
        ledger: Ledger,
        notifier: Notifier,
        *,
        event_date: Callable[[], str] = current_event_date,
        generate: Callable[[], str] = generate_code,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self.ledger = ledger
        self.notifier = notifier
        self.event_date = event_date
        self.generate = generate
        self.max_attempts = max_attempts

    async def fulfill(self, event: PaymentConfirmed) -> FulfillmentResult:
        if event.unit_price <= 0:
            raise ValueError("unit_price must be positive")

        quantity, remainder = divmod(event.amount_paid, event.unit_price)
        if remainder:
            # deliver what was paid for; reconciliation sorts out the rest
            logger.warning(
                "reconciliation: payment %s amount %d is not a multiple of "
                "unit price %d (remainder %d), minting %d ticket(s)",
                event.payment_ref, event.amount_paid, event.unit_price,
                remainder, quantity,
            )

        try:
            order_id, tickets = await self._place(
                event, quantity, self.event_date()
            )
        except DuplicatePayment:
            logger.info(
                "payment %s already fulfilled, ignoring redelivery",
                event.payment_ref,
            )
            return FulfillmentResult(order_id=None, duplicate=True)

        logger.info(
            "order %s (payment %s, %s): %d ticket(s) minted",
            order_id, event.payment_ref, event.buyer_email, len(tickets),
        )

        result = FulfillmentResult(order_id=order_id, tickets=tickets)
        if not tickets:
            logger.warning(
                "order %s: amount %d buys no ticket at %d, nothing to send",
                order_id, event.amount_paid, event.unit_price,
            )
            return result

        result.notified = await self._notify(event.buyer_email, tickets)
        return result

    async def _place(
        self, event: PaymentConfirmed, quantity: int, event_date: str
    ) -> Tuple[str, List[NewTicket]]:
        pending = [
            NewTicket(self.generate(), event_date) for _ in range(quantity)
        ]
        rejected: List[str] = []
        for attempt in range(1, self.max_attempts + 1):
            async with timeit("ledger.place_order"):
                placed = await self.ledger.place_order(
                    event.buyer_email, event.payment_ref, event.amount_paid,
                    pending,
                )
            if placed.order_id is not None:
                return placed.order_id, pending

            rejected = placed.rejected
            logger.warning(
                "payment %s: %d ticket code collision(s) on attempt %d/%d",
                event.payment_ref, len(rejected), attempt, self.max_attempts,
            )
            if attempt == self.max_attempts:
                break
            # only the rejected entries get a fresh code
            todo = Counter(rejected)
            fresh: List[NewTicket] = []
            for t in pending:
                if todo[t.code]:
                    todo[t.code] -= 1
                    t = NewTicket(self.generate(), event_date)
                fresh.append(t)
            pending = fresh
        raise GenerationFailure(event.payment_ref, rejected, self.max_attempts)

    async def _notify(self, buyer_email: str,
                      tickets: List[NewTicket]) -> bool:
        try:
            async with timeit("notifier.send_tickets"):
                await self.notifier.send_tickets(buyer_email, tickets)
        except Exception:
            logger.exception(
                "could not notify %s about %d ticket(s); tickets stay valid",
                buyer_email, len(tickets),
            )
            return False
        return True
