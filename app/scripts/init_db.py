import os
import sys
import asyncio
import logging

# Required to import core and models when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.db import create_schema, engine
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def init_db():
    """Creates the registry tables, partial unique indexes and append-only ledger triggers."""
    await create_schema(engine)
    await engine.dispose()
    logger.info("Registry schema created")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_db())
