from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from fee_ledger.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Pool settings per backend. Server databases get liveness checks and recycling so idle
    connections dropped by the network are replaced; SQLite gets a busy timeout so a
    receipt counter commit waits for a ledger commit instead of failing.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True, "pool_recycle": 300}


engine = create_async_engine(settings.database_url, echo=False, future=True, **engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def sibling_session(db: AsyncSession) -> AsyncSession:
    """Open an independent session on the same engine, for work that must commit on its own."""
    return AsyncSession(bind=db.bind, expire_on_commit=False)
