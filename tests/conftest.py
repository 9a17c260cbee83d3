import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./fee_ledger_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from decimal import Decimal
from typing import AsyncGenerator, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from fee_ledger.api.v1.fees import service as fees_service
from fee_ledger.api.v1.fees.schemas import LedgerCreate
from fee_ledger.auth.security import create_access_token
from fee_ledger.core import models  # noqa: F401  (registers tables on Base.metadata)
from fee_ledger.db.session import Base, engine_options, get_db
from fee_ledger.main import app


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite per test so independent sessions see each other's commits."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'fees.db'}"
    engine = create_async_engine(url, echo=False, future=True, **engine_options(url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app; each request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_id() -> uuid.UUID:
    return uuid.uuid4()


def _bearer(user_id: uuid.UUID, role: str, **claims) -> Dict[str, str]:
    subject = {"sub": str(user_id), "role": role}
    subject.update(claims)
    return {"Authorization": f"Bearer {create_access_token(subject=subject)}"}


@pytest.fixture()
def bearer():
    """Build Authorization headers for an arbitrary role and claim set."""
    return _bearer


@pytest.fixture()
def admin_headers(admin_id: uuid.UUID) -> Dict[str, str]:
    return _bearer(admin_id, "ADMIN")


@pytest.fixture()
def make_ledger(db_session: AsyncSession, admin_id: uuid.UUID):
    """Create a ledger; defaults match the 5000 class / 600 bus fixture used throughout."""

    async def _make(
        class_fee_total: str = "5000",
        bus_fee_total: str = "600",
        student_id: Optional[uuid.UUID] = None,
    ):
        return await fees_service.create_ledger(
            db_session,
            LedgerCreate(
                student_id=student_id or uuid.uuid4(),
                class_fee_total=Decimal(class_fee_total),
                bus_fee_total=Decimal(bus_fee_total),
            ),
            actor=admin_id,
        )

    return _make
