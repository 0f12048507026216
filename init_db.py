import asyncio

from gigtickets.config import Settings, setup_logging
from gigtickets.model.ledger import new_ledger


async def init_ledger(settings: Settings) -> None:
    ledger = new_ledger(
        settings.ledger_backend,
        database_url=settings.database_url,
        redis_url=settings.redis_url,
        pool=settings.pool_options(),
    )
    try:
        await ledger.init_schema()
    finally:
        await ledger.close()
    print(f'✅ {settings.ledger_backend} ledger schema present / created')


if __name__ == '__main__':
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    asyncio.run(init_ledger(settings))
