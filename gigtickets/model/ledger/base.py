from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence


# ----------------------------
# Ledger records
# ----------------------------
@dataclass(frozen=True)
class Order:
    id: str
    buyer_email: str
    payment_ref: str
    amount: int  # cents
    created_at: float


@dataclass(frozen=True)
class Ticket:
    id: str
    order_id: str
    code: str
    event_date: str  # ISO date of the event instance
    redeemed: bool


@dataclass(frozen=True)
class NewTicket:
    code: str
    event_date: str


@dataclass(frozen=True)
class Placement:
    # order_id is None when codes were rejected and nothing was written
    order_id: Optional[str]
    rejected: List[str]


@dataclass(frozen=True)
class Aggregate:
    sold: int
    scanned: int

    @property
    def remaining(self) -> int:
        return self.sold - self.scanned

    def as_dict(self) -> Dict[str, int]:
        return {
            "sold": self.sold,
            "scanned": self.scanned,
            "remaining": self.remaining,
        }


# ----------------------------
# Ledger interface
# ----------------------------
class Ledger(ABC):
    """
    Durable record of paid orders and the tickets they minted.

    Every method raises `LedgerUnavailable` when the storage fails; a failed
    write leaves nothing behind.
    """

    @abstractmethod
    async def init_schema(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    # raises DuplicatePayment if payment_ref was already recorded
    @abstractmethod
    async def record_order(
        self, buyer_email: str, payment_ref: str, amount: int
    ) -> str: ...

    @abstractmethod
    async def place_order(
        self, buyer_email: str, payment_ref: str, amount: int,
        tickets: Sequence[NewTicket],
    ) -> Placement:
        """
        Record an order together with all of its tickets, or nothing.

        Raises DuplicatePayment like `record_order`. If any ticket code is
        already taken (or repeats inside the batch) nothing is written and
        the offending codes come back in `Placement.rejected`.
        """

    # returns the codes that were rejected as duplicates (empty: all stored)
    @abstractmethod
    async def add_tickets(
        self, order_id: str, tickets: Sequence[NewTicket]
    ) -> List[str]: ...

    @abstractmethod
    async def find_ticket(
        self, code: str, event_date: str
    ) -> Optional[Ticket]: ...

    @abstractmethod
    async def mark_redeemed(self, ticket_id: str) -> bool:
        """
        Set the redeemed flag. Atomic with respect to concurrent callers:
        True only for the one call that flipped it from false to true.
        """

    @abstractmethod
    async def aggregate(self, event_date: str) -> Aggregate: ...

    @abstractmethod
    async def export_codes(self, event_date: str) -> List[str]: ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    async def tickets_for_order(self, order_id: str) -> List[Ticket]: ...
