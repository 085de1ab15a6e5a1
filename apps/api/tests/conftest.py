import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.business import Business
from models.user import User
from routers import rate_limit
from services.credits import CreditLedger


TEST_USER_ID = "owner-user"


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "ledger.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def seed_business(session_maker):
    """Factory creating a business whose starting balance is posted as a bonus transaction."""

    async def _seed(
        *,
        business_id: str = "biz-1",
        user_id: str = TEST_USER_ID,
        credits: int = 100,
        plan: str = "FREE",
    ) -> str:
        async with session_maker() as session:
            if await session.get(User, user_id) is None:
                session.add(User(id=user_id, email=f"{user_id}@example.com"))
            session.add(
                Business(
                    id=business_id,
                    user_id=user_id,
                    business_name="Acme Ads",
                    credits=0,
                    subscription_plan=plan,
                    subscription_status="active",
                )
            )
            await session.commit()
            if credits > 0:
                await CreditLedger(session).add_credits(business_id, credits, "bonus", description="Seed credits")
        return business_id

    return _seed
