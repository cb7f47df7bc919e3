# Author: Bradley R. Kinnard — shared fixtures, shared pain

"""
Fixtures for every test: in-memory db, seeded users, identity resolver.
Env vars go in before any src import so Settings picks them up.
"""

import os

# set env vars before imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ENVIRONMENT"] = "development"

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.criticode.adapters.database import Base, UserRow, create_engine
from src.criticode.config import settings
from src.criticode.core.identity import IdentityResolver, UserDirectory
from tests.fakes import ALICE_ID, BOB_ID


@pytest.fixture
async def sessions():
    """fresh in-memory schema per test"""
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def users(sessions):
    async with sessions() as session, session.begin():
        session.add_all([
            UserRow(id=ALICE_ID, email="alice@example.com", full_name="Alice"),
            UserRow(id=BOB_ID, email="bob@example.com", full_name="Bob"),
        ])
    return {"alice": ALICE_ID, "bob": BOB_ID}


@pytest.fixture
def resolver(sessions):
    return IdentityResolver(
        users=UserDirectory(sessions),
        secret=settings.jwt_secret,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )
