from __future__ import annotations
from typing import Callable, List, Optional

from .helpers import current_event_date
from .infra.timings import timeit
from .model.ledger import Aggregate, Ledger


class ReportingView:
    """Read-only door numbers. Derived from the ledger, never written."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        current_event: Callable[[], str] = current_event_date,
    ) -> None:
        self.ledger = ledger
        self.current_event = current_event

    async def aggregate(self, event_date: Optional[str] = None) -> Aggregate:
        async with timeit("ledger.aggregate"):
            return await self.ledger.aggregate(
                event_date or self.current_event()
            )

    # flat code list for door devices that lose connectivity
    async def export(self, event_date: Optional[str] = None) -> List[str]:
        async with timeit("ledger.export_codes"):
            return await self.ledger.export_codes(
                event_date or self.current_event()
            )
