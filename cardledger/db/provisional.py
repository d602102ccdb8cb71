"""
Provisional Card & Bundle Store operations.

Persistence for contributor bundles, their provisional cards, the parsed
player pairings, and the contributors' collection entries.

INVARIANTS:
1. A bundle and all its children are staged in one flush; the request
   transaction commits them together or not at all
2. Status leaves pending exactly once (conditional UPDATE)
3. Reference updates touch one row; sibling rows are never rewritten
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cardledger.models.db import (
    ProvisionalCardBundleDB,
    ProvisionalCardDB,
    ProvisionalCardPlayerDB,
    UserCardDB,
)
from cardledger.models.resolution import BundleStatus

logger = logging.getLogger(__name__)

_CARD_COLUMNS = frozenset(ProvisionalCardDB.__table__.columns.keys())
_PAIRING_COLUMNS = frozenset(ProvisionalCardPlayerDB.__table__.columns.keys())


def utcnow() -> datetime:
    return datetime.now(UTC)


# --- Create ---


async def create_bundle(
    session: AsyncSession,
    user_id: str,
    cards: Sequence[ProvisionalCardDB],
    collection_entries: Sequence[UserCardDB],
    *,
    requires_new_set: bool = False,
    requires_new_series: bool = False,
    requires_new_player: bool = False,
    requires_new_team: bool = False,
) -> ProvisionalCardBundleDB:
    """
    Persist a bundle with its cards, pairings and collection entries.

    Args:
        session: Database session
        user_id: Submitting contributor
        cards: Provisional cards with their players attached, in input order
        collection_entries: One entry per card, same order as cards
        requires_new_*: Bundle-level summary of entities to create

    Returns:
        The flushed bundle, ids assigned
    """
    if len(cards) != len(collection_entries):
        raise ValueError("Each provisional card needs exactly one collection entry")

    submitted_at = utcnow()
    for card in cards:
        card.user_id = user_id
        card.created_at = submitted_at

    # Cards cascade with the bundle; inserts keep list order, so ids do too
    bundle = ProvisionalCardBundleDB(
        user_id=user_id,
        status=BundleStatus.PENDING.value,
        submitted_at=submitted_at,
        card_count=len(cards),
        auto_resolved_count=sum(1 for c in cards if c.auto_resolved),
        needs_review_count=sum(1 for c in cards if c.needs_review),
        requires_new_set=requires_new_set,
        requires_new_series=requires_new_series,
        requires_new_player=requires_new_player,
        requires_new_team=requires_new_team,
        cards=list(cards),
    )
    session.add(bundle)
    await session.flush()

    for card, entry in zip(cards, collection_entries, strict=True):
        entry.user_id = user_id
        entry.provisional_card_id = card.id
        entry.card_id = None
        entry.is_provisional = True
        entry.created_at = submitted_at
        session.add(entry)
    await session.flush()

    logger.info("Created bundle %d with %d card(s) for user %s", bundle.id, len(cards), user_id)
    return bundle


# --- Read ---


async def get_bundle(
    session: AsyncSession, bundle_id: int, *, for_update: bool = False
) -> ProvisionalCardBundleDB | None:
    """
    Bundle with every card and pairing loaded (the admin diff view).

    With for_update, the bundle row is locked until the transaction ends
    and its state is re-read from the database.
    """
    stmt = (
        select(ProvisionalCardBundleDB)
        .where(ProvisionalCardBundleDB.id == bundle_id)
        .options(selectinload(ProvisionalCardBundleDB.cards).selectinload(ProvisionalCardDB.players))
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_provisional_card(session: AsyncSession, card_id: int) -> ProvisionalCardDB | None:
    """Provisional card with its bundle and pairings loaded."""
    result = await session.execute(
        select(ProvisionalCardDB)
        .where(ProvisionalCardDB.id == card_id)
        .options(
            selectinload(ProvisionalCardDB.players),
            selectinload(ProvisionalCardDB.bundle),
        )
    )
    return result.scalar_one_or_none()


async def get_card_player(session: AsyncSession, pairing_id: int) -> ProvisionalCardPlayerDB | None:
    """Pairing with its card, the card's bundle and sibling pairings loaded."""
    result = await session.execute(
        select(ProvisionalCardPlayerDB)
        .where(ProvisionalCardPlayerDB.id == pairing_id)
        .options(
            selectinload(ProvisionalCardPlayerDB.provisional_card).selectinload(
                ProvisionalCardDB.players
            ),
            selectinload(ProvisionalCardPlayerDB.provisional_card).selectinload(
                ProvisionalCardDB.bundle
            ),
        )
    )
    return result.scalar_one_or_none()


async def list_user_bundles(
    session: AsyncSession, user_id: str, limit: int = 50, offset: int = 0
) -> list[ProvisionalCardBundleDB]:
    """A contributor's bundles, newest first."""
    result = await session.execute(
        select(ProvisionalCardBundleDB)
        .where(ProvisionalCardBundleDB.user_id == user_id)
        .order_by(ProvisionalCardBundleDB.submitted_at.desc(), ProvisionalCardBundleDB.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_user_provisional_cards(
    session: AsyncSession,
    user_id: str,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ProvisionalCardDB]:
    """A contributor's provisional cards with pairings, newest first."""
    stmt = select(ProvisionalCardDB).where(ProvisionalCardDB.user_id == user_id)
    if status is not None:
        stmt = stmt.where(ProvisionalCardDB.status == status)
    result = await session.execute(
        stmt.options(selectinload(ProvisionalCardDB.players))
        .order_by(ProvisionalCardDB.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_bundles_by_status(
    session: AsyncSession, status: str, limit: int = 50, offset: int = 0
) -> list[ProvisionalCardBundleDB]:
    """Review queue: bundles in a status, oldest submitted first."""
    result = await session.execute(
        select(ProvisionalCardBundleDB)
        .where(ProvisionalCardBundleDB.status == status)
        .order_by(ProvisionalCardBundleDB.submitted_at.asc(), ProvisionalCardBundleDB.id.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_user_cards(session: AsyncSession, user_id: str) -> list[UserCardDB]:
    """A contributor's collection entries, provisional or not."""
    result = await session.execute(
        select(UserCardDB).where(UserCardDB.user_id == user_id).order_by(UserCardDB.id)
    )
    return list(result.scalars().all())


# --- Update ---


async def update_provisional_card(
    session: AsyncSession, card: ProvisionalCardDB, **values: object
) -> ProvisionalCardDB:
    """Set columns on one provisional card."""
    unknown = set(values) - _CARD_COLUMNS
    if unknown:
        raise ValueError(f"Unknown provisional card columns: {sorted(unknown)}")
    for column, value in values.items():
        setattr(card, column, value)
    await session.flush()
    return card


async def update_card_player(
    session: AsyncSession, pairing: ProvisionalCardPlayerDB, **values: object
) -> ProvisionalCardPlayerDB:
    """Set columns on one player pairing."""
    unknown = set(values) - _PAIRING_COLUMNS
    if unknown:
        raise ValueError(f"Unknown pairing columns: {sorted(unknown)}")
    for column, value in values.items():
        setattr(pairing, column, value)
    await session.flush()
    return pairing


async def refresh_review_count(session: AsyncSession, bundle: ProvisionalCardBundleDB) -> int:
    """Recompute the bundle's needs_review_count from its cards' flags."""
    await session.flush()
    result = await session.execute(
        select(func.count())
        .select_from(ProvisionalCardDB)
        .where(
            ProvisionalCardDB.bundle_id == bundle.id,
            ProvisionalCardDB.needs_review.is_(True),
        )
    )
    bundle.needs_review_count = result.scalar_one()
    return bundle.needs_review_count


async def transition_bundle_status(
    session: AsyncSession,
    bundle_id: int,
    new_status: BundleStatus,
    reviewer_id: str,
    notes: str | None,
) -> bool:
    """
    Move a bundle out of pending.

    Conditional on the row still being pending, so of two concurrent
    reviewers only one can win.

    Returns:
        True if this call performed the transition
    """
    result = await session.execute(
        update(ProvisionalCardBundleDB)
        .where(
            ProvisionalCardBundleDB.id == bundle_id,
            ProvisionalCardBundleDB.status == BundleStatus.PENDING.value,
        )
        .values(
            status=new_status.value,
            reviewed_at=utcnow(),
            reviewed_by=reviewer_id,
            review_notes=notes,
        )
        .execution_options(synchronize_session="fetch")
    )
    transitioned = result.rowcount == 1
    if transitioned:
        logger.info("Bundle %d -> %s by %s", bundle_id, new_status.value, reviewer_id)
    return transitioned


async def relink_user_cards(session: AsyncSession, provisional_card_id: int, card_id: int) -> int:
    """Point provisional collection entries at the real card. Returns rows updated."""
    result = await session.execute(
        update(UserCardDB)
        .where(
            UserCardDB.provisional_card_id == provisional_card_id,
            UserCardDB.is_provisional.is_(True),
        )
        .values(card_id=card_id, is_provisional=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


async def delete_provisional_user_cards(
    session: AsyncSession, provisional_card_ids: Sequence[int]
) -> int:
    """Remove still-provisional collection entries. Returns rows deleted."""
    if not provisional_card_ids:
        return 0
    result = await session.execute(
        delete(UserCardDB)
        .where(
            UserCardDB.provisional_card_id.in_(list(provisional_card_ids)),
            UserCardDB.is_provisional.is_(True),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount
