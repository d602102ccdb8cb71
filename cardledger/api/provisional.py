"""
Contributor API endpoints.

Bundle submission and the contributor's own view of what they submitted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.api.auth import CurrentUser
from cardledger.config import MAX_REVIEW_NOTES_LENGTH, settings
from cardledger.db import provisional as store
from cardledger.db.database import get_session
from cardledger.models.resolution import FieldResolution, PlayerResolution, ProvisionalCardStatus
from cardledger.models.submission import CardDescription, CardSubmissionResult
from cardledger.services.contributor_stats import ensure_contributor_stats
from cardledger.services.submission import submit_bundle

router = APIRouter(prefix="/crowdsource", tags=["crowdsource"])


# --- Requests ---


class ProvisionalCardRequest(BaseModel):
    """One card description as typed by the contributor."""

    player_name: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="One or more players, separated by '/'",
        examples=["Juan Soto / Aaron Judge"],
    )
    set_name: str = Field(..., min_length=1, max_length=255, examples=["2024 Topps"])
    card_number: str = Field(..., min_length=1, max_length=50, examples=["1"])
    year: int = Field(..., ge=1900, le=2100)
    team_name: str | None = Field(
        default=None,
        max_length=500,
        description="Teams matching the players positionally, or one team for all",
        examples=["Mets / Yankees"],
    )
    series_name: str | None = Field(
        default=None,
        max_length=255,
        description="Series within the set; omit for the base series",
    )
    color_name: str | None = Field(default=None, max_length=100)
    print_run: int | None = Field(default=None, ge=1, le=100000)
    is_rookie: bool = False
    is_autograph: bool = False
    is_relic: bool = False
    is_short_print: bool = False
    notes: str | None = Field(default=None, max_length=MAX_REVIEW_NOTES_LENGTH)

    # The contributor's own copy
    serial_number: int | None = Field(default=None, ge=1)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    user_location_id: int | None = Field(default=None, ge=1)


class SubmitBundleRequest(BaseModel):
    """Request model for submitting a bundle of provisional cards."""

    cards: list[ProvisionalCardRequest] = Field(
        ...,
        min_length=1,
        max_length=settings.max_cards_per_bundle,
    )


# --- Responses ---


class FieldMatchResponse(BaseModel):
    id: int
    name: str
    confidence: float


class PlayerMatchResponse(BaseModel):
    """How one parsed (player, team) pairing was resolved."""

    position: int
    player_name_raw: str
    team_name_raw: str | None = None
    player_id: int | None = None
    player_name: str | None = None
    team_id: int | None = None
    team_name: str | None = None
    player_team_id: int | None = None
    confidence: float = 0.0
    resolved: bool = False


class CardResolutionSummary(BaseModel):
    provisional_card_id: int
    fully_resolved: bool
    needs_review: bool
    set: FieldMatchResponse | None = None
    series: FieldMatchResponse | None = None
    color: FieldMatchResponse | None = None
    players: list[PlayerMatchResponse] = Field(default_factory=list)
    existing_card_id: int | None = None
    requires_new_set: bool = False
    requires_new_series: bool = False
    requires_new_color: bool = False
    requires_new_player: bool = False
    requires_new_team: bool = False


class SubmitBundleResponse(BaseModel):
    """Response model for a submitted bundle."""

    bundle_id: int
    card_count: int
    auto_resolved: int
    needs_review: int
    requires_new_set: bool
    requires_new_series: bool
    requires_new_player: bool
    requires_new_team: bool
    message: str = Field(..., description="User-friendly summary of the submission")
    cards: list[CardResolutionSummary] = Field(default_factory=list)


class BundleSummaryResponse(BaseModel):
    """One bundle without its cards."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    status: str
    submitted_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_notes: str | None = None
    card_count: int
    auto_resolved_count: int
    needs_review_count: int
    requires_new_set: bool
    requires_new_series: bool
    requires_new_player: bool
    requires_new_team: bool


class ProvisionalCardPlayerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position: int
    player_name_raw: str
    team_name_raw: str | None = None
    resolved_player_id: int | None = None
    resolved_team_id: int | None = None
    resolved_player_team_id: int | None = None
    match_confidence: float | None = None
    auto_matched: bool
    needs_review: bool


class ProvisionalCardResponse(BaseModel):
    """Raw input beside its resolved references and per-field confidence."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    bundle_id: int
    set_name_raw: str
    series_name_raw: str | None = None
    color_name_raw: str | None = None
    player_names_raw: str
    team_names_raw: str | None = None
    year: int
    card_number: str
    print_run: int | None = None
    user_notes: str | None = None
    is_rookie: bool
    is_autograph: bool
    is_relic: bool
    is_short_print: bool
    resolved_set_id: int | None = None
    set_match_confidence: float | None = None
    resolved_series_id: int | None = None
    series_match_confidence: float | None = None
    resolved_color_id: int | None = None
    color_match_confidence: float | None = None
    resolved_card_id: int | None = None
    existing_card_id: int | None = None
    status: str
    auto_resolved: bool
    needs_review: bool
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    players: list[ProvisionalCardPlayerResponse] = Field(default_factory=list)


class BundleDetailResponse(BundleSummaryResponse):
    """Full diff view of a bundle."""

    cards: list[ProvisionalCardResponse] = Field(default_factory=list)


class ContributorStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    total_submissions: int
    bundle_submissions: int
    pending_submissions: int
    approved_submissions: int
    rejected_submissions: int
    provisional_cards_submitted: int
    provisional_cards_resolved: int
    trust_points: int
    trust_level: str
    approval_rate: float | None = None
    first_submission_at: datetime | None = None
    last_submission_at: datetime | None = None


def _field_match(resolution: FieldResolution | None) -> FieldMatchResponse | None:
    if resolution is None:
        return None
    return FieldMatchResponse(
        id=resolution.id, name=resolution.name, confidence=resolution.confidence
    )


def _player_match(
    position: int, player: PlayerResolution, threshold: float
) -> PlayerMatchResponse:
    return PlayerMatchResponse(
        position=position,
        player_name_raw=player.raw_player_name,
        team_name_raw=player.raw_team_name,
        player_id=player.player_id,
        player_name=player.player_name,
        team_id=player.team_id,
        team_name=player.team_name,
        player_team_id=player.player_team_id,
        confidence=player.confidence,
        resolved=player.is_resolved(threshold),
    )


def _card_summary(card: CardSubmissionResult) -> CardResolutionSummary:
    threshold = settings.auto_accept_threshold
    return CardResolutionSummary(
        provisional_card_id=card.provisional_card_id,
        fully_resolved=card.fully_resolved,
        needs_review=card.needs_review,
        set=_field_match(card.set),
        series=_field_match(card.series),
        color=_field_match(card.color),
        players=[
            _player_match(position, player, threshold)
            for position, player in enumerate(card.players, start=1)
        ],
        existing_card_id=card.existing_card_id,
        requires_new_set=card.requires_new_set,
        requires_new_series=card.requires_new_series,
        requires_new_color=card.requires_new_color,
        requires_new_player=card.requires_new_player,
        requires_new_team=card.requires_new_team,
    )


# --- Endpoints ---


@router.post(
    "/provisional-cards",
    response_model=SubmitBundleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_provisional_cards(
    request: SubmitBundleRequest,
    user: CurrentUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SubmitBundleResponse:
    """
    Submit a bundle of 1-100 card descriptions.

    Each card is auto-resolved against the catalog and added to the
    contributor's collection right away, linked to its provisional card.
    Cards that could not be resolved confidently wait for admin review.
    """
    descriptions = [CardDescription(**card.model_dump()) for card in request.cards]
    result = await submit_bundle(session, user.user_id, descriptions)

    return SubmitBundleResponse(
        bundle_id=result.bundle_id,
        card_count=result.card_count,
        auto_resolved=result.auto_resolved_count,
        needs_review=result.needs_review_count,
        requires_new_set=result.requires_new_set,
        requires_new_series=result.requires_new_series,
        requires_new_player=result.requires_new_player,
        requires_new_team=result.requires_new_team,
        message=result.message,
        cards=[_card_summary(card) for card in result.cards],
    )


@router.get("/my-bundles", response_model=list[BundleSummaryResponse])
async def list_my_bundles(
    user: CurrentUser,
    session: Annotated[AsyncSession, Depends(get_session)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[BundleSummaryResponse]:
    """The caller's bundles, newest first."""
    bundles = await store.list_user_bundles(session, user.user_id, limit=limit, offset=offset)
    return [BundleSummaryResponse.model_validate(b) for b in bundles]


@router.get("/my-provisional-cards", response_model=list[ProvisionalCardResponse])
async def list_my_provisional_cards(
    user: CurrentUser,
    session: Annotated[AsyncSession, Depends(get_session)],
    card_status: Annotated[ProvisionalCardStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ProvisionalCardResponse]:
    """The caller's provisional cards with their player pairings."""
    cards = await store.list_user_provisional_cards(
        session,
        user.user_id,
        status=card_status.value if card_status else None,
        limit=limit,
        offset=offset,
    )
    return [ProvisionalCardResponse.model_validate(c) for c in cards]


@router.get("/my-stats", response_model=ContributorStatsResponse)
async def get_my_stats(
    user: CurrentUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ContributorStatsResponse:
    """The caller's submission counters and trust level."""
    stats = await ensure_contributor_stats(session, user.user_id)
    return ContributorStatsResponse.model_validate(stats)
