"""
Bundle submission.

Auto-resolves every card description in a contributor's bundle, then
persists the bundle, its provisional cards, their player pairings and
the contributor's collection entries in one go.

Nothing is persisted when any description fails validation.
"""

import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.config import Settings, settings
from cardledger.db import provisional as store
from cardledger.models.db import ProvisionalCardDB, ProvisionalCardPlayerDB, UserCardDB
from cardledger.models.failure import FailureKind, ValidationError
from cardledger.models.resolution import ProvisionalCardStatus, Resolution
from cardledger.models.submission import (
    BundleSubmissionResult,
    CardDescription,
    CardSubmissionResult,
)
from cardledger.services.auto_resolver import AutoResolver
from cardledger.services.contributor_stats import record_submission
from cardledger.services.player_parser import split_segments

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100


def validate_descriptions(
    cards: Sequence[CardDescription], max_cards: int, delimiter: str | None = None
) -> None:
    """
    Reject the whole bundle on the first malformed description.

    Raises:
        ValidationError: Empty or oversized bundle, or a missing/invalid field
    """
    if not cards:
        raise ValidationError(
            "At least one card is required",
            kind=FailureKind.MISSING_REQUIRED,
        )
    if len(cards) > max_cards:
        raise ValidationError(
            f"A bundle holds at most {max_cards} cards",
            detail=f"Received {len(cards)} cards",
            suggestion="Split the submission into several bundles",
        )

    for index, card in enumerate(cards, start=1):
        for field_name in ("player_name", "set_name", "card_number"):
            if not (getattr(card, field_name) or "").strip():
                raise ValidationError(
                    f"Card {index}: {field_name} is required",
                    kind=FailureKind.MISSING_REQUIRED,
                )
        if not split_segments(card.player_name, delimiter):
            raise ValidationError(
                f"Card {index}: player_name names no players",
                kind=FailureKind.MISSING_REQUIRED,
                detail=f"Received {card.player_name!r}",
            )
        if not MIN_YEAR <= card.year <= MAX_YEAR:
            raise ValidationError(
                f"Card {index}: year must be between {MIN_YEAR} and {MAX_YEAR}",
                detail=f"Received {card.year}",
            )


def summary_message(card_count: int, auto_resolved: int, needs_review: int) -> str:
    """Contributor-facing summary of a submission."""
    if needs_review == 0:
        return f"{card_count} card(s) added to your collection!"
    return (
        f"{card_count} card(s) submitted. "
        f"{auto_resolved} auto-resolved, {needs_review} pending review."
    )


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_provisional_card(
    description: CardDescription,
    resolution: Resolution,
    existing_card_id: int | None,
) -> ProvisionalCardDB:
    """Provisional card row (with pairings) for one resolved description."""
    fully_resolved = resolution.fully_resolved
    threshold = resolution.threshold

    card = ProvisionalCardDB(
        set_name_raw=description.set_name.strip(),
        series_name_raw=_clean(description.series_name),
        color_name_raw=_clean(description.color_name),
        player_names_raw=description.player_name.strip(),
        team_names_raw=_clean(description.team_name),
        year=description.year,
        card_number=description.card_number.strip(),
        print_run=description.print_run,
        user_notes=_clean(description.notes),
        is_rookie=description.is_rookie,
        is_autograph=description.is_autograph,
        is_relic=description.is_relic,
        is_short_print=description.is_short_print,
        resolved_set_id=resolution.set.id if resolution.set else None,
        set_match_confidence=resolution.set.confidence if resolution.set else None,
        resolved_series_id=resolution.series.id if resolution.series else None,
        series_match_confidence=resolution.series.confidence if resolution.series else None,
        resolved_color_id=resolution.color.id if resolution.color else None,
        color_match_confidence=resolution.color.confidence if resolution.color else None,
        resolved_card_id=None,
        existing_card_id=existing_card_id,
        status=(
            ProvisionalCardStatus.AUTO_RESOLVED.value
            if fully_resolved
            else ProvisionalCardStatus.PENDING.value
        ),
        auto_resolved=fully_resolved,
        needs_review=not fully_resolved,
        players=[
            ProvisionalCardPlayerDB(
                position=position,
                player_name_raw=player.raw_player_name,
                team_name_raw=player.raw_team_name,
                resolved_player_id=player.player_id,
                resolved_team_id=player.team_id,
                resolved_player_team_id=player.player_team_id,
                match_confidence=player.confidence if player.player_id is not None else None,
                auto_matched=player.is_resolved(threshold),
                needs_review=not player.is_resolved(threshold),
            )
            for position, player in enumerate(resolution.players, start=1)
        ],
    )
    return card


async def submit_bundle(
    session: AsyncSession,
    user_id: str,
    cards: Sequence[CardDescription],
    resolver: AutoResolver | None = None,
    config: Settings | None = None,
) -> BundleSubmissionResult:
    """
    Submit a bundle of card descriptions.

    Args:
        session: Database session (the request transaction)
        user_id: Submitting contributor
        cards: Descriptions in input order
        resolver: Auto-resolver override; defaults to one on this session
        config: Settings override

    Returns:
        Bundle id, per-card resolution summary and bundle-level flags

    Raises:
        ValidationError: If any description is malformed (nothing persisted)
    """
    config = config or settings
    validate_descriptions(cards, config.max_cards_per_bundle, config.multi_value_delimiter)
    resolver = resolver or AutoResolver(session, config=config)

    resolutions: list[Resolution] = []
    rows: list[ProvisionalCardDB] = []
    entries: list[UserCardDB] = []
    existing_ids: list[int | None] = []

    for description in cards:
        resolution = await resolver.auto_resolve(
            set_name_raw=description.set_name,
            series_name_raw=description.series_name,
            color_name_raw=description.color_name,
            player_name_raw=description.player_name,
            team_name_raw=description.team_name,
            year=description.year,
        )
        existing_card_id = await resolver.find_existing_card(resolution, description.card_number)

        resolutions.append(resolution)
        existing_ids.append(existing_card_id)
        rows.append(build_provisional_card(description, resolution, existing_card_id))
        entries.append(
            UserCardDB(
                serial_number=description.serial_number,
                purchase_price=description.purchase_price,
                user_location_id=description.user_location_id,
                notes=_clean(description.notes),
            )
        )

    bundle = await store.create_bundle(
        session,
        user_id,
        rows,
        entries,
        requires_new_set=any(r.requires_new_set for r in resolutions),
        requires_new_series=any(r.requires_new_series for r in resolutions),
        requires_new_player=any(r.requires_new_player for r in resolutions),
        requires_new_team=any(r.requires_new_team for r in resolutions),
    )
    await record_submission(session, user_id, len(rows))

    results = [
        CardSubmissionResult(
            provisional_card_id=row.id,
            fully_resolved=resolution.fully_resolved,
            needs_review=resolution.needs_review,
            set=resolution.set,
            series=resolution.series,
            color=resolution.color,
            players=resolution.players,
            existing_card_id=existing_card_id,
            requires_new_set=resolution.requires_new_set,
            requires_new_series=resolution.requires_new_series,
            requires_new_color=resolution.requires_new_color,
            requires_new_player=resolution.requires_new_player,
            requires_new_team=resolution.requires_new_team,
        )
        for row, resolution, existing_card_id in zip(rows, resolutions, existing_ids, strict=True)
    ]

    logger.info(
        "User %s submitted bundle %d: %d card(s), %d auto-resolved, %d need review",
        user_id,
        bundle.id,
        bundle.card_count,
        bundle.auto_resolved_count,
        bundle.needs_review_count,
    )
    return BundleSubmissionResult(
        bundle_id=bundle.id,
        card_count=bundle.card_count,
        auto_resolved_count=bundle.auto_resolved_count,
        needs_review_count=bundle.needs_review_count,
        requires_new_set=bundle.requires_new_set,
        requires_new_series=bundle.requires_new_series,
        requires_new_player=bundle.requires_new_player,
        requires_new_team=bundle.requires_new_team,
        message=summary_message(
            bundle.card_count, bundle.auto_resolved_count, bundle.needs_review_count
        ),
        cards=results,
    )
