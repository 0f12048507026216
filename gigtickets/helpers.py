"""
Small pure functions shared by the webhook, door and admin paths: clock
and date handling, ticket code and email normalisation, and the
constant-time compare used for admin credentials.
"""
import hmac
import re
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional

# one "@", a dot in the domain, no whitespace; deliverability is the
# gateway's problem
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def now_ts() -> float:
    """Epoch seconds, as stored in `created_at` by both ledgers."""
    return time.time()


def to_iso(ts: Optional[float]) -> Optional[str]:
    # ledger timestamps rendered for the order API; None passes through
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and _EMAIL.match(email.strip()) is not None


def ct_equal(supplied: str, expected: str) -> bool:
    # timing must not leak how much of an admin credential matched
    return hmac.compare_digest(supplied.encode(), expected.encode())


def normalize_code(code: Optional[str]) -> str:
    # codes are minted upper-case; scanners and humans may not be
    return (code or "").strip().upper()


def current_event_date(today: Optional[date] = None) -> str:
    """ISO date of this week's Saturday (Sunday rolls over to the next one)."""
    today = today or date.today()
    days = (5 - today.weekday()) % 7
    return (today + timedelta(days=days)).isoformat()
