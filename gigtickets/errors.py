"""
Failure taxonomy of the ticketing core.

Redemption outcomes (valid / already used / invalid) are *not* errors; they
are values of `gigtickets.redemption.Redemption`.
"""
from __future__ import annotations
from typing import Sequence


class TicketingError(Exception):
    pass


class LedgerUnavailable(TicketingError):
    """Storage failed; the current request is aborted, nothing half-written."""


class DuplicatePayment(TicketingError):
    """The payment reference was already recorded (redelivered webhook)."""

    def __init__(self, payment_ref: str) -> None:
        super().__init__(f"payment {payment_ref!r} already recorded")
        self.payment_ref = payment_ref


class GenerationFailure(TicketingError):
    """Ticket codes kept colliding after every retry round; nothing written."""

    def __init__(self, payment_ref: str, codes: Sequence[str], attempts: int):
        super().__init__(
            f"payment {payment_ref}: {len(codes)} code(s) still colliding "
            f"after {attempts} attempts"
        )
        self.payment_ref = payment_ref
        self.codes = list(codes)
        self.attempts = attempts


class NotificationFailure(TicketingError):
    pass


class InvalidWebhook(TicketingError):
    pass
