#!/usr/bin/env python3
"""
Door race client (async)

Buys tickets through the signed payment webhook, then hammers every minted
code with concurrent check-ins, the way two door staff scanning the same
phone would:
  1) POST /payments/webhook  (signed payment.succeeded) -> {order_id}
  2) GET  /api/orders/{order_id}  -> ticket codes
  3) N x POST /checkin per code, all at once
  4) every code must collect exactly one "valid"

Also redelivers each payment event once to check that a duplicate webhook
mints nothing.

Usage:
  python -m gigtickets.door_race --base http://localhost:3000 \
                                 --orders 20 --tickets 2 --scanners 8
"""

import argparse
import asyncio
import json
import random
import string
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from .mockpay import MockPay, SIGNATURE_HEADER


def _rand_email() -> str:
    name = ''.join(
        random.choices(string.ascii_lowercase + string.digits, k=10)
    )
    return f"{name}@example.com"


@dataclass
class CodeResult:
    code: str
    outcomes: Counter = field(default_factory=Counter)

    @property
    def ok(self) -> bool:
        return self.outcomes["valid"] == 1


@dataclass
class Stats:
    results: List[CodeResult] = field(default_factory=list)
    orders: int = 0
    duplicates_minted: int = 0
    errors: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "orders": self.orders,
            "codes": len(self.results),
            "exactly_one_valid": sum(1 for r in self.results if r.ok),
            "double_entry": sum(
                1 for r in self.results if r.outcomes["valid"] > 1
            ),
            "never_valid": sum(
                1 for r in self.results if r.outcomes["valid"] == 0
            ),
            "duplicates_minted": self.duplicates_minted,
            "errors": len(self.errors),
        }

    def print(self, elapsed_s: float):
        s = self.summary()
        print("\n=== Door Race Summary ===")
        print(
            f"Orders: {s['orders']}   Codes: {s['codes']}   "
            f"Exactly one valid: {s['exactly_one_valid']}   "
            f"Double entry: {s['double_entry']}   "
            f"Never valid: {s['never_valid']}"
        )
        print(
            f"Redelivered payments that minted again: "
            f"{s['duplicates_minted']}   Errors: {s['errors']}"
        )
        for e in self.errors[:10]:
            print(f"  ! {e}")
        print(f"Wall time: {elapsed_s:.3f}s")


async def post_payment(
    client: httpx.AsyncClient, base: str, mockpay: MockPay, event: dict
) -> dict:
    payload = json.dumps(event).encode()
    resp = await client.post(
        f"{base}/payments/webhook",
        content=payload,
        headers={
            SIGNATURE_HEADER: mockpay.sign(payload),
            "content-type": "application/json",
        },
        timeout=30.0,
    )
    resp.raise_for_status()
    return resp.json()


async def race_code(
    client: httpx.AsyncClient, base: str, code: str, event_date: str,
    scanners: int,
) -> CodeResult:
    async def scan() -> str:
        resp = await client.post(
            f"{base}/checkin",
            json={"ticketCode": code, "eventDate": event_date},
            timeout=30.0,
        )
        resp.raise_for_status()
        return resp.json()["status"]

    outcomes = await asyncio.gather(*(scan() for _ in range(scanners)))
    return CodeResult(code=code, outcomes=Counter(outcomes))


async def one_order(
    client: httpx.AsyncClient, base: str, mockpay: MockPay,
    tickets: int, unit_price: int, scanners: int, stats: Stats,
) -> None:
    event = {
        "type": "payment.succeeded",
        "payment_ref": f"pay_{uuid.uuid4().hex[:16]}",
        "customer_email": _rand_email(),
        "amount": tickets * unit_price,
        "unit_price": unit_price,
        "idempotency_key": f"evt_{uuid.uuid4().hex}",
    }
    try:
        first = await post_payment(client, base, mockpay, event)
        again = await post_payment(client, base, mockpay, event)
    except httpx.HTTPError as e:
        stats.errors.append(f"webhook: {e}")
        return
    if not again.get("idempotent"):
        stats.duplicates_minted += 1

    order_id: Optional[str] = first.get("order_id")
    if not order_id:
        stats.errors.append(f"no order in webhook answer: {first}")
        return
    stats.orders += 1

    try:
        g = await client.get(f"{base}/api/orders/{order_id}", timeout=10.0)
        g.raise_for_status()
        minted = g.json()["tickets"]
        for t in minted:
            stats.results.append(await race_code(
                client, base, t["ticket_code"], t["event_date"], scanners
            ))
    except httpx.HTTPError as e:
        stats.errors.append(f"order {order_id}: {e}")


async def run_race(
    base: str, secret: str, orders: int, tickets: int, unit_price: int,
    scanners: int, concurrency: int,
) -> Stats:
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()
    mockpay = MockPay(secret)

    limits = httpx.Limits(
        max_keepalive_connections=concurrency * scanners,
        max_connections=concurrency * scanners,
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "GigTicketsDoorRace/1.0"}
    ) as client:

        async def worker():
            async with sem:
                await one_order(
                    client, base, mockpay, tickets, unit_price, scanners,
                    stats,
                )

        await asyncio.gather(*(worker() for _ in range(orders)))

    return stats


def main():
    ap = argparse.ArgumentParser(description="Gig Tickets door race client")
    ap.add_argument("--base", default="http://localhost:3000",
                    help="Base URL of the app")
    ap.add_argument("--secret", default="supersecret",
                    help="MOCK_SECRET the server verifies webhooks with")
    ap.add_argument("--orders", type=int, default=20,
                    help="Payments to emit")
    ap.add_argument("--tickets", type=int, default=2,
                    help="Tickets per payment")
    ap.add_argument("--unit-price", type=int, default=4500,
                    help="Ticket price in cents")
    ap.add_argument("--scanners", type=int, default=8,
                    help="Concurrent check-ins per code")
    ap.add_argument("--concurrency", type=int, default=5,
                    help="Orders raced at the same time")
    args = ap.parse_args()

    t_start = time.perf_counter()
    stats = asyncio.run(run_race(
        base=args.base.rstrip("/"),
        secret=args.secret,
        orders=args.orders,
        tickets=args.tickets,
        unit_price=args.unit_price,
        scanners=args.scanners,
        concurrency=args.concurrency,
    ))
    elapsed = time.perf_counter() - t_start
    stats.print(elapsed)
    s = stats.summary()
    if s["double_entry"] or s["never_valid"] or s["duplicates_minted"]:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
