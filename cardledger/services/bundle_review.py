"""
Bundle Review Engine.

Admin-side state machine over contributor bundles:

    pending --approve--> approved
    pending --reject---> rejected

Both transitions are terminal. Before approving, an admin resolves what
the auto-resolver could not, either by linking an existing canonical id
or by supplying creation parameters. Approval then materializes one
canonical Card per provisional card, in creation order.

INVARIANTS:
1. Re-reviewing a bundle raises InvalidStateError before any write
2. A series is never resolved on a card whose set is unresolved
3. A card is never materialized without a series and fully paired players
4. One card failing to materialize never blocks the others
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.config import MAX_REVIEW_NOTES_LENGTH, Settings, settings
from cardledger.db import catalog
from cardledger.db import provisional as store
from cardledger.models.db import (
    CardDB,
    CardPlayerTeamDB,
    ProvisionalCardBundleDB,
    ProvisionalCardDB,
    ProvisionalCardPlayerDB,
)
from cardledger.models.failure import (
    DuplicateError,
    FailureKind,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from cardledger.models.resolution import (
    OPEN_CARD_STATUSES,
    BundleStatus,
    ProvisionalCardStatus,
)
from cardledger.models.review import (
    ApprovalResult,
    CardFailure,
    NewPlayer,
    NewSeries,
    NewSet,
    NewTeam,
    RejectionResult,
)
from cardledger.services.auto_resolver import AutoResolver
from cardledger.services.contributor_stats import record_review

logger = logging.getLogger(__name__)

MANUAL_CONFIDENCE = 1.0


class CardNotMaterializable(Exception):
    """A provisional card is missing something it needs to become a Card."""


def pairing_needs_review(pairing: ProvisionalCardPlayerDB, threshold: float) -> bool:
    """A pairing is settled only through a player-team association at threshold."""
    return (
        pairing.resolved_player_team_id is None
        or pairing.match_confidence is None
        or pairing.match_confidence < threshold
    )


def card_needs_review(card: ProvisionalCardDB, threshold: float) -> bool:
    """True when set, series or any pairing is unresolved or below threshold."""
    set_ok = card.resolved_set_id is not None and (card.set_match_confidence or 0.0) >= threshold
    series_ok = (
        card.resolved_series_id is not None
        and (card.series_match_confidence or 0.0) >= threshold
    )
    players_ok = bool(card.players) and not any(
        pairing_needs_review(p, threshold) for p in card.players
    )
    return not (set_ok and series_ok and players_ok)


def _not_both(entity: str, entity_id: int | None, params: object | None) -> None:
    if entity_id is not None and params is not None:
        raise ValidationError(
            f"Provide either an existing {entity} id or {entity} details, not both"
        )


def _missing(entity: str) -> ValidationError:
    return ValidationError(
        f"An existing {entity} id or {entity} details are required",
        kind=FailureKind.MISSING_REQUIRED,
    )


class BundleReviewEngine:
    """
    Review actions for one request.

    Args:
        session: The request transaction; every action stages its writes here
        resolver: Used to re-attempt series matching after a set changes
        config: Settings override
    """

    def __init__(
        self,
        session: AsyncSession,
        resolver: AutoResolver | None = None,
        config: Settings | None = None,
    ) -> None:
        self._session = session
        self._config = config or settings
        self._resolver = resolver or AutoResolver(session, config=self._config)

    @property
    def threshold(self) -> float:
        return self._config.auto_accept_threshold

    # --- Reads ---

    async def get_bundle(self, bundle_id: int) -> ProvisionalCardBundleDB:
        bundle = await store.get_bundle(self._session, bundle_id)
        if bundle is None:
            raise NotFoundError("Bundle", bundle_id)
        return bundle

    async def list_bundles(
        self, status: BundleStatus = BundleStatus.PENDING, limit: int = 50, offset: int = 0
    ) -> list[ProvisionalCardBundleDB]:
        return await store.list_bundles_by_status(self._session, status.value, limit, offset)

    # --- Resolve actions ---

    async def _open_card(self, card_id: int) -> ProvisionalCardDB:
        card = await store.get_provisional_card(self._session, card_id)
        if card is None:
            raise NotFoundError("Provisional card", card_id)
        self._require_open(card)
        return card

    @staticmethod
    def _require_open(card: ProvisionalCardDB) -> None:
        if card.bundle.status == BundleStatus.REJECTED.value:
            raise InvalidStateError(
                f"Bundle {card.bundle_id} was rejected",
                detail="Cards in a rejected bundle can no longer be resolved",
            )
        if card.status not in OPEN_CARD_STATUSES or card.resolved_card_id is not None:
            raise InvalidStateError(
                f"Provisional card {card.id} is already {card.status}",
            )

    async def _refresh(self, card: ProvisionalCardDB) -> None:
        card.needs_review = card_needs_review(card, self.threshold)
        await store.refresh_review_count(self._session, card.bundle)

    async def resolve_set(
        self,
        card_id: int,
        set_id: int | None = None,
        new_set: NewSet | None = None,
    ) -> ProvisionalCardDB:
        """
        Link or create the card's set.

        Linking a different set clears the series, which belonged to the
        old set; an unresolved series is then re-matched within the new set.

        Raises:
            NotFoundError: Card, set, manufacturer or organization missing
            DuplicateError: new_set names a set that already exists for the year
            InvalidStateError: Card no longer open for review
        """
        _not_both("set", set_id, new_set)
        card = await self._open_card(card_id)

        if set_id is not None:
            target = await catalog.get_set(self._session, set_id)
            if target is None:
                raise NotFoundError("Set", set_id)
        elif new_set is None:
            raise _missing("set")
        else:
            existing = await catalog.find_set_by_name(self._session, new_set.name, new_set.year)
            if existing is not None:
                raise DuplicateError("Set", existing.id, existing.name)
            if new_set.manufacturer_id is not None and (
                await catalog.get_manufacturer(self._session, new_set.manufacturer_id) is None
            ):
                raise NotFoundError("Manufacturer", new_set.manufacturer_id)
            if new_set.organization_id is not None and (
                await catalog.get_organization(self._session, new_set.organization_id) is None
            ):
                raise NotFoundError("Organization", new_set.organization_id)
            target = await catalog.create_set(
                self._session,
                new_set.name,
                new_set.year,
                manufacturer_id=new_set.manufacturer_id,
                organization_id=new_set.organization_id,
            )

        values: dict[str, object] = {
            "resolved_set_id": target.id,
            "set_match_confidence": MANUAL_CONFIDENCE,
            "existing_card_id": None,
        }
        if card.resolved_set_id != target.id:
            values["resolved_series_id"] = None
            values["series_match_confidence"] = None
        await store.update_provisional_card(self._session, card, **values)

        if card.resolved_series_id is None:
            series = await self._resolver.resolve_series(card.series_name_raw, target.id)
            if series is not None:
                await store.update_provisional_card(
                    self._session,
                    card,
                    resolved_series_id=series.id,
                    series_match_confidence=series.confidence,
                )

        await self._refresh(card)
        logger.info("Card %d set resolved to %d", card.id, target.id)
        return card

    async def resolve_series(
        self,
        card_id: int,
        series_id: int | None = None,
        new_series: NewSeries | None = None,
    ) -> ProvisionalCardDB:
        """
        Link or create the card's series within its resolved set.

        Raises:
            InvalidStateError: The card's set is not resolved yet
            ValidationError: series_id belongs to a different set
            DuplicateError: new_series names an existing series of the set
        """
        _not_both("series", series_id, new_series)
        card = await self._open_card(card_id)

        if card.resolved_set_id is None:
            raise InvalidStateError(
                "Resolve the card's set before its series",
                detail=f"Provisional card {card.id} has no resolved set",
                kind=FailureKind.ORDERING_VIOLATION,
            )

        if series_id is not None:
            target = await catalog.get_series(self._session, series_id)
            if target is None:
                raise NotFoundError("Series", series_id)
            if target.set_id != card.resolved_set_id:
                raise ValidationError(
                    "Series does not belong to the card's set",
                    detail=f"Series {series_id} is in set {target.set_id}, "
                    f"card is resolved to set {card.resolved_set_id}",
                )
        elif new_series is None:
            raise _missing("series")
        else:
            existing = await catalog.find_series_by_name(
                self._session, card.resolved_set_id, new_series.name
            )
            if existing is not None:
                raise DuplicateError("Series", existing.id, existing.name)
            if new_series.color_id is not None and (
                await catalog.get_color(self._session, new_series.color_id) is None
            ):
                raise NotFoundError("Color", new_series.color_id)
            parent = await catalog.get_set(self._session, card.resolved_set_id)
            if parent is None:
                raise NotFoundError("Set", card.resolved_set_id)
            target = await catalog.create_series(
                self._session,
                parent,
                new_series.name,
                is_base=new_series.is_base,
                color_id=new_series.color_id,
            )

        await store.update_provisional_card(
            self._session,
            card,
            resolved_series_id=target.id,
            series_match_confidence=MANUAL_CONFIDENCE,
            existing_card_id=None,
        )
        await self._refresh(card)
        logger.info("Card %d series resolved to %d", card.id, target.id)
        return card

    async def resolve_player(
        self,
        pairing_id: int,
        player_id: int | None = None,
        new_player: NewPlayer | None = None,
        team_id: int | None = None,
        new_team: NewTeam | None = None,
    ) -> ProvisionalCardDB:
        """
        Link or create a pairing's player and team, then its association.

        Omitting both player arguments keeps the pairing's current player;
        the same holds for the team. The pairing stays under review until a
        player-team association exists.

        Returns:
            The owning provisional card, pairings included
        """
        pairing = await store.get_card_player(self._session, pairing_id)
        if pairing is None:
            raise NotFoundError("Provisional card player", pairing_id)
        card = pairing.provisional_card
        self._require_open(card)

        _not_both("player", player_id, new_player)
        _not_both("team", team_id, new_team)

        # Player
        if new_player is not None:
            if not new_player.allow_duplicate_name:
                existing_player = await catalog.find_player_by_name(
                    self._session, new_player.first_name, new_player.last_name
                )
                if existing_player is not None:
                    raise DuplicateError("Player", existing_player.id, existing_player.full_name)
            player = await catalog.create_player(
                self._session, new_player.first_name, new_player.last_name
            )
        else:
            resolved_player_id = player_id if player_id is not None else pairing.resolved_player_id
            if resolved_player_id is None:
                raise ValidationError(
                    "An existing player id or player details are required",
                    kind=FailureKind.MISSING_REQUIRED,
                )
            player = await catalog.get_player(self._session, resolved_player_id)
            if player is None:
                raise NotFoundError("Player", resolved_player_id)

        # Team
        team = None
        if new_team is not None:
            existing_team = await catalog.find_team_by_name(self._session, new_team.name)
            if existing_team is not None:
                raise DuplicateError("Team", existing_team.id, existing_team.name)
            if new_team.organization_id is not None and (
                await catalog.get_organization(self._session, new_team.organization_id) is None
            ):
                raise NotFoundError("Organization", new_team.organization_id)
            team = await catalog.create_team(
                self._session,
                new_team.name,
                city=new_team.city,
                mascot=new_team.mascot,
                abbreviation=new_team.abbreviation,
                organization_id=new_team.organization_id,
            )
        else:
            resolved_team_id = team_id if team_id is not None else pairing.resolved_team_id
            if resolved_team_id is not None:
                team = await catalog.get_team(self._session, resolved_team_id)
                if team is None:
                    raise NotFoundError("Team", resolved_team_id)

        player_team_id = None
        if team is not None:
            player_team, created = await catalog.get_or_create_player_team(
                self._session, player.id, team.id
            )
            player_team_id = player_team.id
            if created:
                logger.info("Associated player %d with team %d", player.id, team.id)

        await store.update_card_player(
            self._session,
            pairing,
            resolved_player_id=player.id,
            resolved_team_id=team.id if team is not None else None,
            resolved_player_team_id=player_team_id,
            match_confidence=MANUAL_CONFIDENCE,
            auto_matched=False,
            needs_review=player_team_id is None,
        )
        await store.update_provisional_card(self._session, card, existing_card_id=None)
        await self._refresh(card)
        logger.info(
            "Pairing %d resolved to player %d, player-team %s",
            pairing.id,
            player.id,
            player_team_id,
        )
        return card

    # --- Transitions ---

    async def _lock_pending(self, bundle_id: int) -> ProvisionalCardBundleDB:
        bundle = await store.get_bundle(self._session, bundle_id, for_update=True)
        if bundle is None:
            raise NotFoundError("Bundle", bundle_id)
        if bundle.status != BundleStatus.PENDING.value:
            raise InvalidStateError(
                f"Bundle {bundle_id} has already been {bundle.status}",
                detail="Only pending bundles can be reviewed",
            )
        return bundle

    async def _transition(
        self,
        bundle: ProvisionalCardBundleDB,
        new_status: BundleStatus,
        reviewer_id: str,
        notes: str | None,
    ) -> None:
        if not await store.transition_bundle_status(
            self._session, bundle.id, new_status, reviewer_id, notes
        ):
            raise InvalidStateError(
                f"Bundle {bundle.id} was reviewed concurrently",
                detail="Only pending bundles can be reviewed",
            )

    async def approve(
        self, bundle_id: int, reviewer_id: str, notes: str | None = None
    ) -> ApprovalResult:
        """
        Approve a pending bundle and materialize its cards.

        Cards are processed one at a time in creation order, each inside its
        own savepoint. A card that cannot be materialized is reported in
        ApprovalResult.errors; the bundle is approved regardless.

        Raises:
            NotFoundError: No such bundle
            InvalidStateError: Bundle is not pending (nothing written)
        """
        notes = _optional_notes(notes)
        bundle = await self._lock_pending(bundle_id)
        await self._transition(bundle, BundleStatus.APPROVED, reviewer_id, notes)

        result = ApprovalResult(bundle_id=bundle.id)
        for card in bundle.cards:
            await self._materialize_into(card, result)

        await store.refresh_review_count(self._session, bundle)
        await record_review(
            self._session,
            bundle.user_id,
            approved=True,
            cards_resolved=result.cards_resolved,
            config=self._config,
        )
        logger.info(
            "Bundle %d approved by %s: %d created, %d linked, %d failed",
            bundle.id,
            reviewer_id,
            result.cards_created,
            result.cards_linked,
            len(result.errors),
        )
        return result

    async def reject(self, bundle_id: int, reviewer_id: str, notes: str) -> RejectionResult:
        """
        Reject a pending bundle.

        Every open card becomes rejected (the rows are kept) and the
        contributor's provisional collection entries are removed.

        Raises:
            ValidationError: Notes empty or too long
            NotFoundError: No such bundle
            InvalidStateError: Bundle is not pending (nothing written)
        """
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError(
                "Review notes are required to reject a bundle",
                kind=FailureKind.MISSING_REQUIRED,
            )
        notes = _optional_notes(notes)

        bundle = await self._lock_pending(bundle_id)
        await self._transition(bundle, BundleStatus.REJECTED, reviewer_id, notes)

        result = RejectionResult(bundle_id=bundle.id)
        card_ids: list[int] = []
        for card in bundle.cards:
            card_ids.append(card.id)
            if card.status in OPEN_CARD_STATUSES:
                card.status = ProvisionalCardStatus.REJECTED.value
                result.cards_rejected += 1
        await self._session.flush()

        result.user_cards_removed = await store.delete_provisional_user_cards(
            self._session, card_ids
        )
        await record_review(self._session, bundle.user_id, approved=False, config=self._config)
        logger.info(
            "Bundle %d rejected by %s: %d card(s), %d collection entries removed",
            bundle.id,
            reviewer_id,
            result.cards_rejected,
            result.user_cards_removed,
        )
        return result

    async def materialize_card(self, card_id: int) -> ApprovalResult:
        """
        Retry materializing one card of an approved bundle.

        Raises:
            NotFoundError: No such card
            InvalidStateError: Bundle not approved, or card already materialized
        """
        card = await store.get_provisional_card(self._session, card_id)
        if card is None:
            raise NotFoundError("Provisional card", card_id)
        if card.bundle.status != BundleStatus.APPROVED.value:
            raise InvalidStateError(
                f"Bundle {card.bundle_id} is {card.bundle.status}",
                detail="Only cards of approved bundles can be materialized",
            )
        self._require_open(card)

        result = ApprovalResult(bundle_id=card.bundle_id)
        await self._materialize_into(card, result)
        await store.refresh_review_count(self._session, card.bundle)
        return result

    # --- Materialization ---

    async def _materialize_into(self, card: ProvisionalCardDB, result: ApprovalResult) -> None:
        """Materialize one card in a savepoint, recording the outcome in result."""
        card_id = card.id
        if card.status not in OPEN_CARD_STATUSES or card.resolved_card_id is not None:
            return

        try:
            _check_materializable(card)
            async with self._session.begin_nested():
                created, user_cards_updated = await self._materialize(card)
        except CardNotMaterializable as exc:
            result.errors.append(CardFailure(provisional_card_id=card_id, error=str(exc)))
            return
        except SQLAlchemyError:
            logger.exception("Database error materializing provisional card %d", card_id)
            result.errors.append(
                CardFailure(provisional_card_id=card_id, error="Database error while creating card")
            )
            return

        if created:
            result.cards_created += 1
        else:
            result.cards_linked += 1
        result.user_cards_updated += user_cards_updated

    async def _materialize(self, card: ProvisionalCardDB) -> tuple[bool, int]:
        """
        Turn one provisional card into a canonical Card, or link an existing one.

        Returns:
            Tuple of (created, collection entries re-linked)
        """
        created = False
        real_card_id = card.existing_card_id

        if real_card_id is None:
            if card.resolved_series_id is None:
                raise CardNotMaterializable("Series is not resolved")
            series = await catalog.get_series(self._session, card.resolved_series_id)
            if series is None:
                raise CardNotMaterializable(f"Series {card.resolved_series_id} no longer exists")

            player_team_ids = list(
                dict.fromkeys(
                    p.resolved_player_team_id
                    for p in card.players
                    if p.resolved_player_team_id is not None
                )
            )
            real_card_id = await catalog.find_existing_card(
                self._session, series.id, card.card_number, player_team_ids
            )
            if real_card_id is None:
                new_card = CardDB(
                    series_id=series.id,
                    card_number=card.card_number,
                    sort_order=0,
                    is_rookie=card.is_rookie,
                    is_autograph=card.is_autograph,
                    is_relic=card.is_relic,
                    is_short_print=card.is_short_print,
                    color_id=card.resolved_color_id,
                    print_run=card.print_run,
                )
                self._session.add(new_card)
                await self._session.flush()
                self._session.add_all(
                    CardPlayerTeamDB(card_id=new_card.id, player_team_id=pt_id)
                    for pt_id in player_team_ids
                )
                series.card_entered_count = (series.card_entered_count or 0) + 1
                real_card_id = new_card.id
                created = True

        card.resolved_card_id = real_card_id
        card.status = ProvisionalCardStatus.APPROVED.value
        card.needs_review = False
        card.resolved_at = store.utcnow()
        await self._session.flush()

        user_cards_updated = await store.relink_user_cards(self._session, card.id, real_card_id)
        logger.debug(
            "Provisional card %d -> card %d (%s)",
            card.id,
            real_card_id,
            "created" if created else "linked",
        )
        return created, user_cards_updated


def _optional_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    notes = notes.strip()
    if len(notes) > MAX_REVIEW_NOTES_LENGTH:
        raise ValidationError(
            f"Review notes must be at most {MAX_REVIEW_NOTES_LENGTH} characters",
            detail=f"Received {len(notes)} characters",
        )
    return notes or None


def _check_materializable(card: ProvisionalCardDB) -> None:
    """Refuse cards without a series or with unpaired players; linked cards pass."""
    if card.existing_card_id is not None:
        return
    if card.resolved_series_id is None:
        raise CardNotMaterializable("Series is not resolved")
    if not card.players:
        raise CardNotMaterializable("Card has no players")
    unpaired = [p.position for p in card.players if p.resolved_player_team_id is None]
    if unpaired:
        positions = ", ".join(str(p) for p in unpaired)
        raise CardNotMaterializable(f"Player pairing not resolved at position {positions}")
