from dataclasses import dataclass

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardledger.db import catalog
from cardledger.db.database import get_session
from cardledger.models.db import Base, ColorDB, ManufacturerDB, OrganizationDB, PlayerAliasDB


@dataclass
class SeededCatalog:
    """Ids of the canonical rows every resolution test starts from."""

    topps: int
    mlb: int
    topps_2024: int
    topps_2024_base: int
    chrome_2024: int
    chrome_2024_base: int
    gold: int
    refractor: int
    angels: int
    yankees: int
    mets: int
    trout: int
    judge: int
    soto: int
    ohtani: int
    trout_angels: int
    judge_yankees: int
    soto_yankees: int
    soto_mets: int
    ohtani_angels: int


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    # SQLite savepoints need explicit BEGIN handling
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


async def seed_catalog(session: AsyncSession) -> SeededCatalog:
    topps = ManufacturerDB(name="Topps")
    mlb = OrganizationDB(name="Major League Baseball", abbreviation="MLB")
    gold = ColorDB(name="Gold", hex_value="#FFD700")
    refractor = ColorDB(name="Refractor")
    session.add_all([topps, mlb, gold, refractor])
    await session.flush()

    topps_2024 = await catalog.create_set(
        session, "2024 Topps", 2024, manufacturer_id=topps.id, organization_id=mlb.id
    )
    chrome_2024 = await catalog.create_set(session, "2024 Topps Chrome", 2024)
    topps_2024_base = await catalog.get_base_series(session, topps_2024.id)
    chrome_2024_base = await catalog.get_base_series(session, chrome_2024.id)

    angels = await catalog.create_team(
        session, "Los Angeles Angels", city="Los Angeles", mascot="Angels", abbreviation="LAA"
    )
    yankees = await catalog.create_team(
        session, "New York Yankees", city="New York", mascot="Yankees", abbreviation="NYY"
    )
    mets = await catalog.create_team(
        session, "New York Mets", city="New York", mascot="Mets", abbreviation="NYM"
    )

    trout = await catalog.create_player(session, "Mike", "Trout")
    judge = await catalog.create_player(session, "Aaron", "Judge")
    soto = await catalog.create_player(session, "Juan", "Soto")
    ohtani = await catalog.create_player(session, "Shohei", "Ohtani")
    session.add(PlayerAliasDB(player_id=ohtani.id, alias_name="Shotime"))

    trout_angels, _ = await catalog.get_or_create_player_team(session, trout.id, angels.id)
    judge_yankees, _ = await catalog.get_or_create_player_team(session, judge.id, yankees.id)
    soto_yankees, _ = await catalog.get_or_create_player_team(session, soto.id, yankees.id)
    soto_mets, _ = await catalog.get_or_create_player_team(session, soto.id, mets.id)
    ohtani_angels, _ = await catalog.get_or_create_player_team(session, ohtani.id, angels.id)

    await session.commit()

    assert topps_2024_base is not None and chrome_2024_base is not None
    return SeededCatalog(
        topps=topps.id,
        mlb=mlb.id,
        topps_2024=topps_2024.id,
        topps_2024_base=topps_2024_base.id,
        chrome_2024=chrome_2024.id,
        chrome_2024_base=chrome_2024_base.id,
        gold=gold.id,
        refractor=refractor.id,
        angels=angels.id,
        yankees=yankees.id,
        mets=mets.id,
        trout=trout.id,
        judge=judge.id,
        soto=soto.id,
        ohtani=ohtani.id,
        trout_angels=trout_angels.id,
        judge_yankees=judge_yankees.id,
        soto_yankees=soto_yankees.id,
        soto_mets=soto_mets.id,
        ohtani_angels=ohtani_angels.id,
    )


@pytest.fixture
async def seeded(session_factory) -> SeededCatalog:
    """Canonical catalog: 2024 Topps sets, three teams, four players."""
    async with session_factory() as seed_session:
        return await seed_catalog(seed_session)


@pytest.fixture
async def client(session_factory):
    """Provide an async test client with overridden database session."""
    from cardledger.main import app

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


CONTRIBUTOR = {"X-User-Id": "contributor-1"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
