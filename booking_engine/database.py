from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from .config import settings

# Every store call opens its own short transaction on this engine
engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)

Base = declarative_base()


async def init_db(bind=None):
    """
    Creates any missing tables. Only for development - production schemas
    are owned by migrations and may lag behind the models.
    """
    from . import models  # noqa: F401  registers the tables on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
