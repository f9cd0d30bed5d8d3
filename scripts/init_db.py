"""Create the journal tables in the configured database.

Usage:
    python -m scripts.init_db

Alembic migrations in alembic/versions/ are the production path; this
script is for local development databases.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine

from src.config.settings import get_settings
from src.db.models import Base

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main() -> None:
    """Create all tables that do not exist yet."""
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Journal tables ready: %s", ", ".join(sorted(Base.metadata.tables)))

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
