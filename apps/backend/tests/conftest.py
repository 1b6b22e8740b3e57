"""
Shared pytest configuration for backend tests.

Service tests run against an in-memory SQLite database (aiosqlite) built from
the ORM metadata, one fresh database per test. Set TEST_DATABASE_URL to run
them against another database instead.

SAFETY: a non-SQLite TEST_DATABASE_URL must name a database containing
"test", since every table is dropped after each test.
"""

import os

# Must be set before the app modules are imported (rate limiter, engine)
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from datetime import date

import pytest
import pytest_asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from backend.database import db
from backend.database.db import Base, create_engine_for, is_sqlite, make_session_factory
from backend.database.models import (
    Championship,
    ChampionshipEdition,
    Event,
    EventFormat,
    EventGender,
    EventType,
    Federation,
    Gender,
    Member,
    MemberRole,
    Organization,
    Player,
    Registration,
    RegistrationPlayer,
    User,
    UserRole,
)
from backend.services.access import OrganizationContext


def _resolve_test_database_url() -> str:
    url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    if not url.startswith("sqlite"):
        db_name = url.rsplit("/", 1)[-1].split("?")[0]
        if "test" not in db_name.lower():
            raise RuntimeError(
                f"SAFETY: Refusing to run tests against database '{db_name}'. "
                f"Set TEST_DATABASE_URL to a database whose name contains 'test'."
            )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """
    Create a test database engine with every table created.

    An in-memory SQLite database lives as long as its connection, so SQLite
    uses a StaticPool (one shared connection); other databases use NullPool.
    """
    if is_sqlite(TEST_DATABASE_URL):
        engine = create_engine_for(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine_for(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Request handlers and the websocket route open sessions through db.session_scope
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = make_session_factory(engine)

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """A session for one test; uncommitted work is rolled back afterwards."""
    async_session_maker = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Data factories
#
# Each factory inserts rows with flush() only, so everything stays in the
# test's transaction.
# ============================================================================


@pytest_asyncio.fixture
async def make_user(db_session):
    counter = {"n": 0}

    async def _make(name=None, role=UserRole.USER, federation_id=None, federation_role=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            name=name or f"User {counter['n']}",
            password_hash="hash",
            role=role,
            federation_id=federation_id,
            federation_role=federation_role,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _make


@pytest_asyncio.fixture
async def make_org(db_session):
    counter = {"n": 0}

    async def _make(name=None, owner=None):
        counter["n"] += 1
        org = Organization(name=name or f"Club {counter['n']}", slug=f"club-{counter['n']}")
        db_session.add(org)
        await db_session.flush()
        if owner is not None:
            db_session.add(Member(organization_id=org.id, user_id=owner.id, role=MemberRole.OWNER))
            await db_session.flush()
        return org

    return _make


@pytest_asyncio.fixture
async def make_player(db_session):
    async def _make(organization, name="Player", date_of_birth=date(2010, 6, 15), gender=Gender.MALE):
        player = Player(
            name=name,
            organization_id=organization.id,
            date_of_birth=date_of_birth,
            gender=gender,
        )
        db_session.add(player)
        await db_session.flush()
        return player

    return _make


@pytest_asyncio.fixture
async def make_event(db_session):
    async def _make(
        organization=None,
        edition=None,
        event_type=EventType.SINGLES,
        event_format=EventFormat.SINGLE_ELIMINATION,
        **fields,
    ):
        values = {
            "name": "Open",
            "gender": EventGender.MIXED,
            "best_of": 3,
            "min_players": 1,
            "max_players": 1,
        }
        values.update(fields)
        ev = Event(
            organization_id=organization.id if organization is not None else None,
            championship_edition_id=edition.id if edition is not None else None,
            event_type=event_type,
            format=event_format,
            **values,
        )
        db_session.add(ev)
        await db_session.flush()
        return ev

    return _make


@pytest_asyncio.fixture
async def make_registrations(db_session, make_player):
    """Register `count` fresh single players of `organization` for an event."""

    async def _make(ev, organization, count):
        ids = []
        for i in range(count):
            player = await make_player(organization, name=f"Entrant {i + 1}")
            registration = Registration(event_id=ev.id)
            registration.players.append(RegistrationPlayer(player_id=player.id, order=1))
            db_session.add(registration)
            await db_session.flush()
            ids.append(registration.id)
        return ids

    return _make


@pytest_asyncio.fixture
async def make_federation(db_session):
    counter = {"n": 0}

    async def _make(name=None):
        counter["n"] += 1
        federation = Federation(name=name or f"Federation {counter['n']}")
        db_session.add(federation)
        await db_session.flush()
        return federation

    return _make


@pytest_asyncio.fixture
async def make_edition(db_session):
    async def _make(federation, year=2025):
        championship = Championship(federation_id=federation.id, name=f"National {year}")
        db_session.add(championship)
        await db_session.flush()
        edition = ChampionshipEdition(championship_id=championship.id, year=year)
        db_session.add(edition)
        await db_session.flush()
        return edition

    return _make


def user_dict(user: User) -> dict:
    """The shape user_service returns, for building contexts by hand."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "federation_id": user.federation_id,
        "federation_role": (
            user.federation_role.value
            if hasattr(user.federation_role, "value")
            else user.federation_role
        ),
    }


@pytest_asyncio.fixture
async def club(make_user, make_org):
    """An owner, their club and the owner's OrganizationContext."""
    owner = await make_user(name="Owner")
    org = await make_org(owner=owner)
    ctx = OrganizationContext(
        user=user_dict(owner),
        organization_id=org.id,
        role=MemberRole.OWNER.value,
        memberships={org.id: MemberRole.OWNER.value},
    )
    return {"owner": owner, "org": org, "ctx": ctx}


@pytest_asyncio.fixture
async def system_admin_ctx(make_user):
    admin = await make_user(name="Admin", role=UserRole.ADMIN)
    return OrganizationContext(user=user_dict(admin))


@pytest.fixture
def make_ctx():
    """Build an OrganizationContext for a user, optionally inside one club."""

    def _make(user, organization=None, role=None):
        memberships = {organization.id: role} if organization is not None and role else {}
        return OrganizationContext(
            user=user_dict(user),
            organization_id=organization.id if organization is not None else None,
            role=role,
            memberships=memberships,
        )

    return _make
