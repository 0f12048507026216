from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import Optional

from .infra.sql import PoolOptions


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ----------------------------
# Config & Constants
# ----------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./tickets.db"
    ledger_backend: str = "sql"  # 'sql' | 'redis'
    redis_url: str = "redis://127.0.0.1:6379"
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_gate_limit: Optional[int] = None

    ticket_price: int = 4500  # cents
    currency: str = "aud"
    event_name: str = "Saturday Night Greek Live Music"
    venue_name: str = "Ramsgate Live"
    base_url: str = "http://localhost:3000"

    notifier: str = "log"  # 'log' | 'smtp'
    smtp_host: str = "smtp.office365.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True

    mock_secret: str = "supersecret"
    session_secret: str = "dev-secret-change-me"
    admin_username: str = "admin"
    admin_password: str = "supasecret"

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            ledger_backend=os.getenv(
                "LEDGER_BACKEND", cls.ledger_backend
            ).lower(),
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            db_pool_size=_env_int("DB_POOL_SIZE", cls.db_pool_size),
            db_max_overflow=_env_int("DB_MAX_OVERFLOW", cls.db_max_overflow),
            db_pool_timeout=_env_int("DB_POOL_TIMEOUT", cls.db_pool_timeout),
            db_gate_limit=_env_int("DB_GATE_LIMIT", 0) or None,
            ticket_price=_env_int("TICKET_PRICE", cls.ticket_price),
            currency=os.getenv("CURRENCY", cls.currency),
            event_name=os.getenv("EVENT_NAME", cls.event_name),
            venue_name=os.getenv("VENUE_NAME", cls.venue_name),
            base_url=os.getenv("BASE_URL", cls.base_url),
            notifier=os.getenv("NOTIFIER", cls.notifier).lower(),
            smtp_host=os.getenv("SMTP_HOST", cls.smtp_host),
            smtp_port=_env_int("SMTP_PORT", cls.smtp_port),
            smtp_user=os.getenv("SMTP_USER", cls.smtp_user),
            smtp_password=os.getenv("SMTP_PASSWORD", cls.smtp_password),
            smtp_starttls=_env_bool("SMTP_STARTTLS", cls.smtp_starttls),
            mock_secret=os.getenv("MOCK_SECRET", cls.mock_secret),
            session_secret=os.getenv("SESSION_SECRET", cls.session_secret),
            admin_username=os.getenv("ADMIN_USERNAME", cls.admin_username),
            admin_password=os.getenv("ADMIN_PASSWORD", cls.admin_password),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )

    def pool_options(self) -> PoolOptions:
        return PoolOptions(
            pool_size=self.db_pool_size,
            max_overflow=self.db_max_overflow,
            pool_timeout=self.db_pool_timeout,
            gate_limit=self.db_gate_limit,
        )


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(handler)

    # uvicorn logs every request otherwise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
