"""
Admin review API endpoints.

Review queue, bundle diff view, inline entity resolution, and the
approve/reject transitions.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.api.auth import AdminUser
from cardledger.api.provisional import (
    BundleDetailResponse,
    BundleSummaryResponse,
    ProvisionalCardResponse,
)
from cardledger.config import MAX_REVIEW_NOTES_LENGTH, MIN_REJECTION_NOTES_LENGTH
from cardledger.db.database import get_session
from cardledger.models.resolution import BundleStatus
from cardledger.models.review import (
    ApprovalResult,
    NewPlayer,
    NewSeries,
    NewSet,
    NewTeam,
)
from cardledger.services.bundle_review import BundleReviewEngine

router = APIRouter(prefix="/crowdsource/admin", tags=["crowdsource-admin"])


# --- Requests ---


class ApproveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=MAX_REVIEW_NOTES_LENGTH)


class RejectRequest(BaseModel):
    notes: str = Field(
        ...,
        min_length=MIN_REJECTION_NOTES_LENGTH,
        max_length=MAX_REVIEW_NOTES_LENGTH,
        description="Why the bundle was rejected; shown to the contributor",
    )


class ResolveSetRequest(BaseModel):
    """Link an existing set by id, or give name and year to create one."""

    set_id: int | None = Field(default=None, ge=1)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    year: int | None = Field(default=None, ge=1900, le=2100)
    manufacturer_id: int | None = Field(default=None, ge=1)
    organization_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _name_needs_year(self) -> "ResolveSetRequest":
        if self.name is not None and self.year is None:
            raise ValueError("year is required when creating a set")
        return self

    def new_set(self) -> NewSet | None:
        if self.name is None or self.year is None:
            return None
        return NewSet(
            name=self.name,
            year=self.year,
            manufacturer_id=self.manufacturer_id,
            organization_id=self.organization_id,
        )


class ResolveSeriesRequest(BaseModel):
    """Link an existing series by id, or give a name to create one."""

    series_id: int | None = Field(default=None, ge=1)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    is_base: bool = False
    color_id: int | None = Field(default=None, ge=1)

    def new_series(self) -> NewSeries | None:
        if self.name is None:
            return None
        return NewSeries(name=self.name, is_base=self.is_base, color_id=self.color_id)


class ResolvePlayerRequest(BaseModel):
    """
    Resolve one player pairing.

    Player: player_id, or first_name + last_name to create. Team:
    team_id, or team_name (+ optional details) to create. Omitted parts
    keep the pairing's current resolution.
    """

    player_id: int | None = Field(default=None, ge=1)
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, min_length=1, max_length=255)
    allow_duplicate_name: bool = False

    team_id: int | None = Field(default=None, ge=1)
    team_name: str | None = Field(default=None, min_length=1, max_length=255)
    team_city: str | None = Field(default=None, max_length=255)
    team_mascot: str | None = Field(default=None, max_length=255)
    team_abbreviation: str | None = Field(default=None, max_length=20)
    team_organization_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _first_name_needs_last(self) -> "ResolvePlayerRequest":
        if self.first_name is not None and self.last_name is None:
            raise ValueError("last_name is required when creating a player")
        return self

    def new_player(self) -> NewPlayer | None:
        if self.last_name is None:
            return None
        return NewPlayer(
            first_name=self.first_name or "",
            last_name=self.last_name,
            allow_duplicate_name=self.allow_duplicate_name,
        )

    def new_team(self) -> NewTeam | None:
        if self.team_name is None:
            return None
        return NewTeam(
            name=self.team_name,
            city=self.team_city,
            mascot=self.team_mascot,
            abbreviation=self.team_abbreviation,
            organization_id=self.team_organization_id,
        )


# --- Responses ---


class CardErrorResponse(BaseModel):
    provisional_card_id: int
    error: str


class ApprovalResponse(BaseModel):
    """Outcome of an approval; failed cards are listed, not raised."""

    bundle_id: int
    status: str
    cards_created: int
    cards_linked: int
    user_cards_updated: int
    errors: list[CardErrorResponse] = Field(default_factory=list)
    message: str


class RejectionResponse(BaseModel):
    bundle_id: int
    status: str
    cards_rejected: int
    user_cards_removed: int


def _approval_response(result: ApprovalResult, bundle_status: str) -> ApprovalResponse:
    message = (
        f"{result.cards_created} card(s) created, {result.cards_linked} linked"
        if not result.errors
        else f"{result.cards_created} card(s) created, {result.cards_linked} linked, "
        f"{len(result.errors)} failed"
    )
    return ApprovalResponse(
        bundle_id=result.bundle_id,
        status=bundle_status,
        cards_created=result.cards_created,
        cards_linked=result.cards_linked,
        user_cards_updated=result.user_cards_updated,
        errors=[
            CardErrorResponse(provisional_card_id=e.provisional_card_id, error=e.error)
            for e in result.errors
        ],
        message=message,
    )


# --- Endpoints ---


@router.get("/bundles", response_model=list[BundleSummaryResponse])
async def list_bundles(
    _admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
    bundle_status: Annotated[BundleStatus, Query(alias="status")] = BundleStatus.PENDING,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[BundleSummaryResponse]:
    """Review queue, oldest submission first."""
    engine = BundleReviewEngine(session)
    bundles = await engine.list_bundles(bundle_status, limit=limit, offset=offset)
    return [BundleSummaryResponse.model_validate(b) for b in bundles]


@router.get("/bundles/{bundle_id}", response_model=BundleDetailResponse)
async def get_bundle(
    bundle_id: int,
    _admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> BundleDetailResponse:
    """Every card and pairing of a bundle: raw input beside resolution."""
    bundle = await BundleReviewEngine(session).get_bundle(bundle_id)
    return BundleDetailResponse.model_validate(bundle)


@router.post("/bundles/{bundle_id}/approve", response_model=ApprovalResponse)
async def approve_bundle(
    bundle_id: int,
    admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
    request: Annotated[ApproveRequest | None, Body()] = None,
) -> ApprovalResponse:
    """
    Approve a pending bundle and materialize its cards.

    Cards that cannot be materialized yet are listed in errors; they can
    be resolved and retried through the materialize endpoint.
    """
    engine = BundleReviewEngine(session)
    result = await engine.approve(bundle_id, admin.user_id, request.notes if request else None)
    return _approval_response(result, BundleStatus.APPROVED.value)


@router.post("/bundles/{bundle_id}/reject", response_model=RejectionResponse)
async def reject_bundle(
    bundle_id: int,
    request: RejectRequest,
    admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RejectionResponse:
    """Reject a pending bundle; the contributor's provisional entries are removed."""
    result = await BundleReviewEngine(session).reject(bundle_id, admin.user_id, request.notes)
    return RejectionResponse(
        bundle_id=result.bundle_id,
        status=BundleStatus.REJECTED.value,
        cards_rejected=result.cards_rejected,
        user_cards_removed=result.user_cards_removed,
    )


@router.post(
    "/provisional-cards/{card_id}/resolve-set",
    response_model=ProvisionalCardResponse,
)
async def resolve_set(
    card_id: int,
    request: ResolveSetRequest,
    _admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ProvisionalCardResponse:
    card = await BundleReviewEngine(session).resolve_set(
        card_id, set_id=request.set_id, new_set=request.new_set()
    )
    return ProvisionalCardResponse.model_validate(card)


@router.post(
    "/provisional-cards/{card_id}/resolve-series",
    response_model=ProvisionalCardResponse,
)
async def resolve_series(
    card_id: int,
    request: ResolveSeriesRequest,
    _admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ProvisionalCardResponse:
    card = await BundleReviewEngine(session).resolve_series(
        card_id, series_id=request.series_id, new_series=request.new_series()
    )
    return ProvisionalCardResponse.model_validate(card)


@router.post(
    "/provisional-card-players/{pairing_id}/resolve",
    response_model=ProvisionalCardResponse,
)
async def resolve_player(
    pairing_id: int,
    request: ResolvePlayerRequest,
    _admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ProvisionalCardResponse:
    card = await BundleReviewEngine(session).resolve_player(
        pairing_id,
        player_id=request.player_id,
        new_player=request.new_player(),
        team_id=request.team_id,
        new_team=request.new_team(),
    )
    return ProvisionalCardResponse.model_validate(card)


@router.post(
    "/provisional-cards/{card_id}/materialize",
    response_model=ApprovalResponse,
)
async def materialize_card(
    card_id: int,
    _admin: AdminUser,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ApprovalResponse:
    """Retry a card an approval could not materialize."""
    result = await BundleReviewEngine(session).materialize_card(card_id)
    return _approval_response(result, BundleStatus.APPROVED.value)
