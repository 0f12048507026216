"""
Redemption gate: Unredeemed -> Redeemed (terminal), at most once per ticket.

Staff check-in and scan verification share one algorithm. The lookup only
decides between "invalid", "already used" and "worth trying"; the transition
itself is the ledger's atomic conditional update, so of two scanners racing
on the same code exactly one sees VALID and the other ALREADY_USED.
"""
from __future__ import annotations
import enum
import logging
from typing import Callable, Optional

from .helpers import current_event_date, normalize_code
from .infra.timings import timeit
from .model.ledger import Ledger

logger = logging.getLogger(__name__)


class Redemption(str, enum.Enum):
    VALID = "valid"
    ALREADY_USED = "used"
    INVALID = "invalid"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    Redemption.VALID: "Entry allowed",
    Redemption.ALREADY_USED: "Already checked in",
    Redemption.INVALID: "Invalid ticket",
}


class RedemptionGate:
    def __init__(
        self,
        ledger: Ledger,
        *,
        current_event: Callable[[], str] = current_event_date,
    ) -> None:
        self.ledger = ledger
        self.current_event = current_event

    async def check_in(
        self, code: Optional[str], event_date: str
    ) -> Redemption:
        normalized = normalize_code(code)
        if not normalized:
            return Redemption.INVALID

        async with timeit("ledger.find_ticket"):
            ticket = await self.ledger.find_ticket(normalized, event_date)

        if ticket is None:
            outcome = Redemption.INVALID
        elif ticket.redeemed:
            outcome = Redemption.ALREADY_USED
        else:
            async with timeit("ledger.mark_redeemed"):
                won = await self.ledger.mark_redeemed(ticket.id)
            # lost the race against another scanner
            outcome = Redemption.VALID if won else Redemption.ALREADY_USED

        logger.info(
            "redemption %s @ %s: %s", normalized, event_date, outcome.value
        )
        return outcome

    async def verify(self, code: Optional[str]) -> Redemption:
        return await self.check_in(code, self.current_event())
