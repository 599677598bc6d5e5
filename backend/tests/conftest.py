"""
Pytest fixtures for test database, client, and authentication.

Each test gets a fresh schema. By default that is a SQLite file under the
test's tmp_path; set TEST_DATABASE_URL to a postgresql+asyncpg URL to run the
suite against PostgreSQL. SQLite serializes writers, PostgreSQL runs the
parallel acceptance race with real row-level contention.

Every HTTP request gets its own session, committed or rolled back exactly as
`get_db` does in production, so savepoints and conditional updates behave the
way they do live.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from campus_market.main import app
from campus_market.api.routes.admin import get_sweeper
from campus_market.db.base import Base
from campus_market.db.session import get_db
from campus_market.core.security import create_access_token, hash_password
from campus_market.models.booking_request import BookingRequest
from campus_market.models.listing import Listing
from campus_market.models.user import User
from campus_market.services.sweeper import ExpirySweeper

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


def _enable_sqlite_savepoints(engine) -> None:
    """pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN.

    IMMEDIATE takes the write lock up front, so concurrent requests queue on the
    busy timeout instead of failing a read-to-write lock upgrade.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables on a fresh engine, yield a session factory, then drop everything."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'campus_market_test.db'}"
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False, connect_args={"timeout": 30})
        _enable_sqlite_savepoints(engine)
    else:
        engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB dependency pointed at the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_sweeper = ExpirySweeper(session_factory)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sweeper] = lambda: test_sweeper

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def add_row(session_factory: async_sessionmaker, obj):
    async with session_factory() as session:
        session.add(obj)
        await session.commit()
        await session.refresh(obj)
    return obj


async def make_user(session_factory, username: str, is_admin: bool = False) -> User:
    return await add_row(
        session_factory,
        User(
            email=f"{username}@campus.edu",
            username=username,
            full_name=username.capitalize(),
            hashed_password=hash_password("testpassword123"),
            is_admin=is_admin,
        ),
    )


def headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def owner(session_factory) -> User:
    return await make_user(session_factory, "owner")


@pytest_asyncio.fixture
async def requester(session_factory) -> User:
    return await make_user(session_factory, "alice")


@pytest_asyncio.fixture
async def other_requester(session_factory) -> User:
    return await make_user(session_factory, "bob")


@pytest_asyncio.fixture
async def admin(session_factory) -> User:
    return await make_user(session_factory, "moderator", is_admin=True)


@pytest_asyncio.fixture
async def owner_headers(owner: User) -> dict:
    return headers_for(owner)


@pytest_asyncio.fixture
async def requester_headers(requester: User) -> dict:
    return headers_for(requester)


@pytest_asyncio.fixture
async def other_headers(other_requester: User) -> dict:
    return headers_for(other_requester)


@pytest_asyncio.fixture
async def admin_headers(admin: User) -> dict:
    return headers_for(admin)


def make_listing(owner: User, kind: str, capacity: int = 1, **fields) -> Listing:
    return Listing(
        owner_id=owner.id,
        kind=kind,
        title=fields.pop("title", f"Test {kind}"),
        total_capacity=capacity,
        remaining_capacity=fields.pop("remaining_capacity", capacity),
        status=fields.pop("status", "active"),
        **fields,
    )


@pytest_asyncio.fixture
async def ride_listing(session_factory, owner: User) -> Listing:
    """A ride with two seats, departing in two days."""
    return await add_row(
        session_factory,
        make_listing(
            owner,
            "ride",
            capacity=2,
            title="Campus to airport",
            location="North gate",
            price=Decimal("15.00"),
            scheduled_at=datetime.now(timezone.utc) + timedelta(days=2),
        ),
    )


@pytest_asyncio.fixture
async def past_ride(session_factory, owner: User) -> Listing:
    """A ride whose departure time has already passed but was never swept."""
    return await add_row(
        session_factory,
        make_listing(
            owner,
            "ride",
            capacity=3,
            title="Yesterday's ride",
            scheduled_at=datetime.now(timezone.utc) - timedelta(hours=1),
        ),
    )


@pytest_asyncio.fixture
async def ticket_listing(session_factory, owner: User) -> Listing:
    return await add_row(
        session_factory,
        make_listing(
            owner,
            "ticket",
            capacity=3,
            title="Spring concert tickets",
            price=Decimal("40.00"),
            scheduled_at=datetime.now(timezone.utc) + timedelta(days=10),
        ),
    )


@pytest_asyncio.fixture
async def room_listing(session_factory, owner: User) -> Listing:
    return await add_row(
        session_factory,
        make_listing(owner, "room", title="Sublet near library", price=Decimal("650.00")),
    )


@pytest_asyncio.fixture
async def lostfound_listing(session_factory, owner: User) -> Listing:
    return await add_row(
        session_factory,
        make_listing(owner, "lostfound", title="Blue water bottle", location="Gym lockers"),
    )


def request_payload(**overrides) -> dict:
    payload = {
        "message": "Hi, I would really like this one, thanks!",
        "contact_method": "alice@campus.edu",
    }
    payload.update(overrides)
    return payload


async def add_request(session_factory, listing: Listing, requester: User, **fields) -> BookingRequest:
    """Insert a request row directly, bypassing the API checks."""
    return await add_row(
        session_factory,
        BookingRequest(
            listing_id=listing.id,
            kind=listing.kind,
            requester_id=requester.id,
            owner_id=listing.owner_id,
            quantity_requested=fields.pop("quantity_requested", 1),
            message=fields.pop("message", "Please consider my request"),
            contact_method=fields.pop("contact_method", "dm me"),
            status=fields.pop("status", "pending"),
            **fields,
        ),
    )
