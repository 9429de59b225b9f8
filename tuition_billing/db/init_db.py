"""
Create billing tables if they do not exist.

Run: python -m tuition_billing.db.init_db
"""
import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

# Import all models so Base.metadata knows every table
from tuition_billing.core import models  # noqa: F401
from tuition_billing.core.logging import configure_logging, get_logger
from tuition_billing.db.session import Base, engine

logger = get_logger(__name__)


async def create_tables(bind: AsyncEngine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db.tables_ready", tables=sorted(Base.metadata.tables))


async def main() -> None:
    configure_logging()
    await create_tables(engine)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
