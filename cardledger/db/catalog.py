"""
Canonical Entity Store operations.

Read access used by the auto-resolver, and the create operations used by
the bundle review engine when an admin supplies creation parameters.

All queries are SQLAlchemy expressions with bound parameters; raw
contributor text is never interpolated into SQL.
"""

import logging
import re
from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cardledger.models.db import (
    CardDB,
    CardPlayerTeamDB,
    ColorDB,
    ManufacturerDB,
    OrganizationDB,
    PlayerAliasDB,
    PlayerDB,
    PlayerTeamDB,
    SeriesDB,
    SetDB,
    TeamDB,
)
from cardledger.models.resolution import Candidate

logger = logging.getLogger(__name__)

# Upper bound on players pulled into one fuzzy-match pool
PLAYER_POOL_LIMIT = 200

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(*parts: str | int) -> str:
    """Build a URL slug: lowercase alphanumerics joined by single hyphens."""
    text = "-".join(str(p) for p in parts if p is not None and str(p).strip())
    return _NON_ALNUM.sub("-", text.lower()).strip("-")


# --- Lookups by id ---


async def get_set(session: AsyncSession, set_id: int) -> SetDB | None:
    return await session.get(SetDB, set_id)


async def get_series(session: AsyncSession, series_id: int) -> SeriesDB | None:
    return await session.get(SeriesDB, series_id)


async def get_color(session: AsyncSession, color_id: int) -> ColorDB | None:
    return await session.get(ColorDB, color_id)


async def get_player(session: AsyncSession, player_id: int) -> PlayerDB | None:
    return await session.get(PlayerDB, player_id)


async def get_team(session: AsyncSession, team_id: int) -> TeamDB | None:
    return await session.get(TeamDB, team_id)


async def get_manufacturer(session: AsyncSession, manufacturer_id: int) -> ManufacturerDB | None:
    return await session.get(ManufacturerDB, manufacturer_id)


async def get_organization(session: AsyncSession, organization_id: int) -> OrganizationDB | None:
    return await session.get(OrganizationDB, organization_id)


# --- Candidate pools ---


async def set_candidates(session: AsyncSession, year: int) -> list[Candidate]:
    """Sets released in the given year."""
    result = await session.execute(select(SetDB).where(SetDB.year == year).order_by(SetDB.id))
    return [Candidate(id=s.id, name=s.name) for s in result.scalars().all()]


async def series_candidates(session: AsyncSession, set_id: int) -> list[Candidate]:
    """Series belonging to one set."""
    result = await session.execute(
        select(SeriesDB).where(SeriesDB.set_id == set_id).order_by(SeriesDB.id)
    )
    return [Candidate(id=s.id, name=s.name) for s in result.scalars().all()]


async def get_base_series(session: AsyncSession, set_id: int) -> SeriesDB | None:
    """
    The base series of a set.

    Flagged is_base first; otherwise a series named like the set itself.
    """
    result = await session.execute(
        select(SeriesDB)
        .join(SetDB, SeriesDB.set_id == SetDB.id)
        .where(
            SeriesDB.set_id == set_id,
            or_(SeriesDB.is_base.is_(True), func.lower(SeriesDB.name) == func.lower(SetDB.name)),
        )
        .order_by(SeriesDB.is_base.desc(), SeriesDB.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def color_candidates(session: AsyncSession) -> list[Candidate]:
    result = await session.execute(select(ColorDB).order_by(ColorDB.id))
    return [Candidate(id=c.id, name=c.name) for c in result.scalars().all()]


def team_candidate(team: TeamDB) -> Candidate:
    """Teams match on full name, abbreviation, mascot or city."""
    aliases = tuple(a for a in (team.abbreviation, team.mascot, team.city) if a)
    return Candidate(id=team.id, name=team.name, aliases=aliases)


async def team_candidates(session: AsyncSession) -> list[Candidate]:
    result = await session.execute(select(TeamDB).order_by(TeamDB.id))
    return [team_candidate(t) for t in result.scalars().all()]


async def player_candidates(session: AsyncSession, normalized_name: str) -> list[Candidate]:
    """
    Players plausibly named normalized_name.

    Pre-filters in SQL on exact first/last name tokens, last-name prefix
    and exact alias, then leaves scoring to the matcher. Players whose
    first and last names both appear in the input are kept first.
    """
    tokens = [t for t in _NON_ALNUM.split(normalized_name) if t]
    if not tokens:
        return []

    # Prefix is alphanumeric only, so it cannot carry LIKE wildcards
    prefix = tokens[-1][:3]
    first_name = func.lower(PlayerDB.first_name)
    last_name = func.lower(PlayerDB.last_name)
    alias_ids = select(PlayerAliasDB.player_id).where(
        func.lower(PlayerAliasDB.alias_name) == normalized_name
    )
    # Full-name and alias hits rank ahead of the limit so namesakes cannot crowd them out
    exact_rank = case(
        (and_(first_name.in_(tokens), last_name.in_(tokens)), 0),
        (PlayerDB.id.in_(alias_ids), 0),
        else_=1,
    )
    result = await session.execute(
        select(PlayerDB)
        .where(
            or_(
                first_name.in_(tokens),
                last_name.in_(tokens),
                last_name.like(f"{prefix}%"),
                PlayerDB.id.in_(alias_ids),
            )
        )
        .options(selectinload(PlayerDB.aliases))
        .order_by(exact_rank, PlayerDB.card_count.desc(), PlayerDB.id)
        .limit(PLAYER_POOL_LIMIT)
    )
    return [
        Candidate(
            id=p.id,
            name=p.full_name,
            aliases=tuple(a.alias_name for a in p.aliases),
        )
        for p in result.scalars().all()
    ]


async def player_team_associations(
    session: AsyncSession, player_ids: Iterable[int]
) -> dict[int, list[tuple[PlayerTeamDB, TeamDB]]]:
    """Team associations for each player, keyed by player id."""
    ids = list(player_ids)
    if not ids:
        return {}

    result = await session.execute(
        select(PlayerTeamDB, TeamDB)
        .join(TeamDB, PlayerTeamDB.team_id == TeamDB.id)
        .where(PlayerTeamDB.player_id.in_(ids))
        .order_by(PlayerTeamDB.player_id, PlayerTeamDB.id)
    )
    associations: dict[int, list[tuple[PlayerTeamDB, TeamDB]]] = defaultdict(list)
    for player_team, team in result.all():
        associations[player_team.player_id].append((player_team, team))
    return dict(associations)


async def get_player_team(
    session: AsyncSession, player_id: int, team_id: int
) -> PlayerTeamDB | None:
    result = await session.execute(
        select(PlayerTeamDB).where(
            PlayerTeamDB.player_id == player_id,
            PlayerTeamDB.team_id == team_id,
        )
    )
    return result.scalar_one_or_none()


async def find_existing_card(
    session: AsyncSession,
    series_id: int,
    card_number: str,
    player_team_ids: list[int],
) -> int | None:
    """
    Id of an already-catalogued card with this series, number and pairings.

    With pairings given, the card must depict exactly that set of
    player-team associations. Without pairings, the first card with the
    number is returned.
    """
    result = await session.execute(
        select(CardDB.id)
        .where(CardDB.series_id == series_id, CardDB.card_number == card_number.strip())
        .order_by(CardDB.id)
    )
    card_ids = list(result.scalars().all())
    if not card_ids:
        return None
    if not player_team_ids:
        return card_ids[0]

    links = await session.execute(
        select(CardPlayerTeamDB.card_id, CardPlayerTeamDB.player_team_id).where(
            CardPlayerTeamDB.card_id.in_(card_ids)
        )
    )
    by_card: dict[int, set[int]] = defaultdict(set)
    for card_id, player_team_id in links.all():
        by_card[card_id].add(player_team_id)

    wanted = set(player_team_ids)
    for card_id in card_ids:
        if by_card.get(card_id) == wanted:
            return card_id
    return None


# --- Exact-name lookups (duplicate guards) ---


async def find_set_by_name(session: AsyncSession, name: str, year: int) -> SetDB | None:
    result = await session.execute(
        select(SetDB)
        .where(func.lower(SetDB.name) == name.strip().lower(), SetDB.year == year)
        .order_by(SetDB.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_series_by_name(session: AsyncSession, set_id: int, name: str) -> SeriesDB | None:
    result = await session.execute(
        select(SeriesDB)
        .where(SeriesDB.set_id == set_id, func.lower(SeriesDB.name) == name.strip().lower())
        .order_by(SeriesDB.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_team_by_name(session: AsyncSession, name: str) -> TeamDB | None:
    result = await session.execute(
        select(TeamDB)
        .where(func.lower(TeamDB.name) == name.strip().lower())
        .order_by(TeamDB.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_player_by_name(
    session: AsyncSession, first_name: str, last_name: str
) -> PlayerDB | None:
    result = await session.execute(
        select(PlayerDB)
        .where(
            func.lower(PlayerDB.first_name) == first_name.strip().lower(),
            func.lower(PlayerDB.last_name) == last_name.strip().lower(),
        )
        .order_by(PlayerDB.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


# --- Creation (admin review only) ---


async def _unique_slug(session: AsyncSession, column, base: str, *criteria) -> str:
    """
    First free slug among base, base-2, base-3, ...

    Uniqueness holds only within this transaction's view; the table's
    unique constraint is the final arbiter under concurrency.
    """
    result = await session.execute(
        select(column).where(or_(column == base, column.like(f"{base}-%")), *criteria)
    )
    taken = set(result.scalars().all())
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


async def create_set(
    session: AsyncSession,
    name: str,
    year: int,
    manufacturer_id: int | None = None,
    organization_id: int | None = None,
) -> SetDB:
    """
    Create a set together with its base series.

    The base series carries the set's name and is_base=True, so cards
    submitted without a series name resolve to it.
    """
    slug = await _unique_slug(session, SetDB.slug, slugify(year, name))
    new_set = SetDB(
        name=name.strip(),
        year=year,
        slug=slug,
        manufacturer_id=manufacturer_id,
        organization_id=organization_id,
        card_count=0,
        series_count=1,
    )
    session.add(new_set)
    await session.flush()

    base = SeriesDB(
        set_id=new_set.id,
        name=new_set.name,
        slug="base",
        is_base=True,
        card_count=0,
        card_entered_count=0,
    )
    session.add(base)
    await session.flush()

    logger.info("Created set %d (%s %d) with base series %d", new_set.id, name, year, base.id)
    return new_set


async def create_series(
    session: AsyncSession,
    parent: SetDB,
    name: str,
    is_base: bool = False,
    color_id: int | None = None,
) -> SeriesDB:
    """Create a series under an existing set and bump the set's series count."""
    slug = await _unique_slug(
        session, SeriesDB.slug, slugify(name) or "series", SeriesDB.set_id == parent.id
    )
    series = SeriesDB(
        set_id=parent.id,
        name=name.strip(),
        slug=slug,
        is_base=is_base,
        color_id=color_id,
        card_count=0,
        card_entered_count=0,
    )
    session.add(series)
    parent.series_count = (parent.series_count or 0) + 1
    await session.flush()

    logger.info("Created series %d (%s) in set %d", series.id, name, parent.id)
    return series


async def create_player(session: AsyncSession, first_name: str, last_name: str) -> PlayerDB:
    slug = await _unique_slug(session, PlayerDB.slug, slugify(first_name, last_name) or "player")
    player = PlayerDB(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        slug=slug,
        card_count=0,
    )
    session.add(player)
    await session.flush()

    logger.info("Created player %d (%s %s)", player.id, first_name, last_name)
    return player


async def create_team(
    session: AsyncSession,
    name: str,
    city: str | None = None,
    mascot: str | None = None,
    abbreviation: str | None = None,
    organization_id: int | None = None,
) -> TeamDB:
    team = TeamDB(
        name=name.strip(),
        city=city,
        mascot=mascot,
        abbreviation=abbreviation,
        organization_id=organization_id,
        player_count=0,
    )
    session.add(team)
    await session.flush()

    logger.info("Created team %d (%s)", team.id, name)
    return team


async def get_or_create_player_team(
    session: AsyncSession, player_id: int, team_id: int
) -> tuple[PlayerTeamDB, bool]:
    """
    Get the player-team association or create it.

    Returns:
        Tuple of (association, created) where created is True if new.
    """
    existing = await get_player_team(session, player_id, team_id)
    if existing:
        return existing, False

    player_team = PlayerTeamDB(player_id=player_id, team_id=team_id)
    session.add(player_team)

    team = await get_team(session, team_id)
    if team is not None:
        team.player_count = (team.player_count or 0) + 1

    await session.flush()
    return player_team, True
