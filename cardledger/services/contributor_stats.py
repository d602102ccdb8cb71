"""
Contributor trust stats.

Counts each contributor's submissions and review outcomes, and turns
review outcomes into trust points:

    approval  +5
    rejection -2   (points never drop below zero)

Levels by points: novice < 50 <= contributor < 150 <= trusted < 300
<= expert < 500 <= master.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.config import Settings, settings
from cardledger.db.provisional import utcnow
from cardledger.models.db import ContributorStatsDB

logger = logging.getLogger(__name__)

# Highest threshold first
TRUST_LEVELS: tuple[tuple[int, str], ...] = (
    (500, "master"),
    (300, "expert"),
    (150, "trusted"),
    (50, "contributor"),
    (0, "novice"),
)


def calculate_trust_level(points: int) -> str:
    for threshold, level in TRUST_LEVELS:
        if points >= threshold:
            return level
    return "novice"


async def ensure_contributor_stats(session: AsyncSession, user_id: str) -> ContributorStatsDB:
    """Get the contributor's stats row, creating a zeroed one if needed."""
    stats = await session.get(ContributorStatsDB, user_id)
    if stats is not None:
        return stats

    stats = ContributorStatsDB(
        user_id=user_id,
        total_submissions=0,
        bundle_submissions=0,
        pending_submissions=0,
        approved_submissions=0,
        rejected_submissions=0,
        provisional_cards_submitted=0,
        provisional_cards_resolved=0,
        trust_points=0,
        trust_level=calculate_trust_level(0),
        approval_rate=None,
    )
    session.add(stats)
    await session.flush()
    return stats


async def record_submission(
    session: AsyncSession, user_id: str, card_count: int
) -> ContributorStatsDB:
    """Count one submitted bundle of card_count provisional cards."""
    stats = await ensure_contributor_stats(session, user_id)
    now = utcnow()

    stats.total_submissions += 1
    stats.bundle_submissions += 1
    stats.pending_submissions += 1
    stats.provisional_cards_submitted += card_count
    if stats.first_submission_at is None:
        stats.first_submission_at = now
    stats.last_submission_at = now

    await session.flush()
    return stats


async def record_review(
    session: AsyncSession,
    user_id: str,
    approved: bool,
    cards_resolved: int = 0,
    config: Settings | None = None,
) -> ContributorStatsDB:
    """
    Apply a review outcome to the contributor's counters and trust.

    Args:
        session: Database session
        user_id: Contributor whose bundle was reviewed
        approved: True for approval, False for rejection
        cards_resolved: Provisional cards materialized or linked on approval
        config: Settings override for point values
    """
    config = config or settings
    stats = await ensure_contributor_stats(session, user_id)

    stats.pending_submissions = max(0, stats.pending_submissions - 1)
    if approved:
        stats.approved_submissions += 1
        stats.provisional_cards_resolved += cards_resolved
        delta = config.approval_trust_points
    else:
        stats.rejected_submissions += 1
        delta = config.rejection_trust_points

    previous_level = stats.trust_level
    stats.trust_points = max(0, stats.trust_points + delta)
    stats.trust_level = calculate_trust_level(stats.trust_points)

    reviewed = stats.approved_submissions + stats.rejected_submissions
    stats.approval_rate = round(stats.approved_submissions / reviewed, 4) if reviewed else None

    if stats.trust_level != previous_level:
        logger.info(
            "Contributor %s trust level %s -> %s", user_id, previous_level, stats.trust_level
        )

    await session.flush()
    return stats
