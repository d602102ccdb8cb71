"""Tests for the bundle review engine."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.db import catalog
from cardledger.db import provisional as store
from cardledger.models.db import CardDB, CardPlayerTeamDB, ContributorStatsDB
from cardledger.models.failure import (
    DuplicateError,
    FailureKind,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from cardledger.models.resolution import BundleStatus, ProvisionalCardStatus
from cardledger.models.review import NewPlayer, NewSeries, NewSet, NewTeam
from cardledger.models.submission import BundleSubmissionResult, CardDescription
from cardledger.services.bundle_review import BundleReviewEngine, card_needs_review
from cardledger.services.submission import submit_bundle
from tests.conftest import SeededCatalog

USER = "contributor-1"
REVIEWER = "admin-1"


def describe(**overrides) -> CardDescription:
    values = {
        "player_name": "Mike Trout",
        "team_name": "Angels",
        "set_name": "2024 Topps",
        "card_number": "1",
        "year": 2024,
    }
    values.update(overrides)
    return CardDescription(**values)


async def submit(session: AsyncSession, *cards: CardDescription) -> BundleSubmissionResult:
    return await submit_bundle(session, USER, list(cards))


async def card_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(CardDB))
    return result.scalar_one()


@pytest.fixture
def engine(session: AsyncSession) -> BundleReviewEngine:
    return BundleReviewEngine(session)


class TestQueue:
    async def test_pending_bundles_oldest_first(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        first = await submit(session, describe())
        second = await submit(session, describe(card_number="2"))

        queue = await engine.list_bundles()

        assert [b.id for b in queue] == [first.bundle_id, second.bundle_id]

    async def test_reviewed_bundles_leave_the_queue(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        await engine.approve(submitted.bundle_id, REVIEWER)

        assert await engine.list_bundles() == []
        assert [b.id for b in await engine.list_bundles(BundleStatus.APPROVED)] == [
            submitted.bundle_id
        ]

    async def test_missing_bundle(self, engine: BundleReviewEngine, seeded: SeededCatalog) -> None:
        with pytest.raises(NotFoundError):
            await engine.get_bundle(404)


class TestResolveSet:
    async def test_link_existing_set_rematches_series(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(set_name="Bowman Chrome"))
        card_id = submitted.cards[0].provisional_card_id

        card = await engine.resolve_set(card_id, set_id=seeded.chrome_2024)

        assert card.resolved_set_id == seeded.chrome_2024
        assert card.set_match_confidence == 1.0
        assert card.resolved_series_id == seeded.chrome_2024_base
        assert card.needs_review is False

    async def test_changing_set_replaces_series(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        card_id = submitted.cards[0].provisional_card_id

        card = await engine.resolve_set(card_id, set_id=seeded.chrome_2024)

        assert card.resolved_series_id == seeded.chrome_2024_base

    async def test_create_set(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(set_name="2024 Panini Prizm"))
        assert submitted.requires_new_set is True
        card_id = submitted.cards[0].provisional_card_id

        card = await engine.resolve_set(
            card_id, new_set=NewSet(name="2024 Panini Prizm", year=2024)
        )

        created = await catalog.find_set_by_name(session, "2024 Panini Prizm", 2024)
        assert created is not None
        assert card.resolved_set_id == created.id
        base = await catalog.get_base_series(session, created.id)
        assert base is not None and card.resolved_series_id == base.id
        bundle = await engine.get_bundle(submitted.bundle_id)
        assert bundle.needs_review_count == 0

    async def test_create_duplicate_set(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(set_name="Topps 24"))

        with pytest.raises(DuplicateError) as exc_info:
            await engine.resolve_set(
                submitted.cards[0].provisional_card_id,
                new_set=NewSet(name="2024 topps", year=2024),
            )

        assert exc_info.value.existing_id == seeded.topps_2024

    async def test_unknown_manufacturer(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(set_name="2024 Panini Prizm"))

        with pytest.raises(NotFoundError):
            await engine.resolve_set(
                submitted.cards[0].provisional_card_id,
                new_set=NewSet(name="2024 Panini Prizm", year=2024, manufacturer_id=999),
            )

    async def test_id_and_details_are_exclusive(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        card_id = submitted.cards[0].provisional_card_id

        with pytest.raises(ValidationError):
            await engine.resolve_set(
                card_id, set_id=seeded.topps_2024, new_set=NewSet(name="X", year=2024)
            )
        with pytest.raises(ValidationError):
            await engine.resolve_set(card_id)

    async def test_missing_card(self, engine: BundleReviewEngine, seeded: SeededCatalog) -> None:
        with pytest.raises(NotFoundError):
            await engine.resolve_set(12345, set_id=seeded.topps_2024)


class TestResolveSeries:
    async def test_create_series_under_resolved_set(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(series_name="Chrome Refractors"))
        assert submitted.requires_new_series is True
        card_id = submitted.cards[0].provisional_card_id
        parent = await catalog.get_set(session, seeded.topps_2024)
        assert parent is not None
        series_count_before = parent.series_count

        card = await engine.resolve_series(card_id, new_series=NewSeries(name="Chrome Refractors"))

        created = await catalog.find_series_by_name(session, seeded.topps_2024, "Chrome Refractors")
        assert created is not None
        assert card.resolved_series_id == created.id
        assert card.series_match_confidence == 1.0
        assert parent.series_count == series_count_before + 1
        assert card.needs_review is False

    async def test_requires_resolved_set(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(set_name="Panini Prizm", series_name="Silver"))

        with pytest.raises(InvalidStateError) as exc_info:
            await engine.resolve_series(
                submitted.cards[0].provisional_card_id, new_series=NewSeries(name="Silver")
            )

        assert exc_info.value.kind == FailureKind.ORDERING_VIOLATION

    async def test_series_from_another_set(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())

        with pytest.raises(ValidationError, match="does not belong"):
            await engine.resolve_series(
                submitted.cards[0].provisional_card_id, series_id=seeded.chrome_2024_base
            )

    async def test_id_or_details_required(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(series_name="Chrome Refractors"))

        with pytest.raises(ValidationError) as exc_info:
            await engine.resolve_series(submitted.cards[0].provisional_card_id)

        assert exc_info.value.kind == FailureKind.MISSING_REQUIRED
        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card.resolved_series_id is None

    async def test_duplicate_series(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(series_name="Chrome Refractors"))

        with pytest.raises(DuplicateError):
            await engine.resolve_series(
                submitted.cards[0].provisional_card_id, new_series=NewSeries(name="2024 Topps")
            )


class TestResolvePlayer:
    async def test_create_player_and_team(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(player_name="Bobby Witt", team_name="Royals"))
        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card is not None
        pairing_id = card.players[0].id

        card = await engine.resolve_player(
            pairing_id,
            new_player=NewPlayer(first_name="Bobby", last_name="Witt"),
            new_team=NewTeam(name="Kansas City Royals", city="Kansas City", abbreviation="KC"),
        )

        pairing = card.players[0]
        player = await catalog.find_player_by_name(session, "Bobby", "Witt")
        team = await catalog.find_team_by_name(session, "Kansas City Royals")
        assert player is not None and team is not None
        player_team = await catalog.get_player_team(session, player.id, team.id)
        assert player_team is not None
        assert pairing.resolved_player_team_id == player_team.id
        assert pairing.match_confidence == 1.0
        assert pairing.auto_matched is False
        assert pairing.needs_review is False
        assert card.needs_review is False

    async def test_player_without_team_stays_under_review(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(player_name="Juan Soto", team_name=None))
        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card is not None
        pairing_id = card.players[0].id

        card = await engine.resolve_player(pairing_id, player_id=seeded.soto)
        assert card.players[0].needs_review is True
        assert card.needs_review is True

        card = await engine.resolve_player(pairing_id, team_id=seeded.mets)
        assert card.players[0].resolved_player_id == seeded.soto
        assert card.players[0].resolved_player_team_id == seeded.soto_mets
        assert card.needs_review is False

    async def test_new_association_for_known_entities(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(player_name="Aaron Judge", team_name="Mets"))
        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card is not None

        card = await engine.resolve_player(card.players[0].id)

        player_team = await catalog.get_player_team(session, seeded.judge, seeded.mets)
        assert player_team is not None
        assert card.players[0].resolved_player_team_id == player_team.id

    async def test_duplicate_player_name(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(player_name="Mike Trout Jr"))
        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card is not None
        pairing_id = card.players[0].id

        with pytest.raises(DuplicateError):
            await engine.resolve_player(
                pairing_id, new_player=NewPlayer(first_name="Mike", last_name="Trout")
            )

        card = await engine.resolve_player(
            pairing_id,
            new_player=NewPlayer(first_name="Mike", last_name="Trout", allow_duplicate_name=True),
            team_id=seeded.angels,
        )
        assert card.players[0].resolved_player_id != seeded.trout

    async def test_missing_pairing(self, engine: BundleReviewEngine, seeded: SeededCatalog) -> None:
        with pytest.raises(NotFoundError):
            await engine.resolve_player(999, player_id=seeded.trout)


class TestApprove:
    async def test_partial_approval_reports_failures(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(
            session,
            describe(),
            describe(player_name="Aaron Judge", team_name="Yankees", card_number="99"),
            describe(player_name="Bobby Witt", team_name=None, card_number="7"),
        )
        failing_id = submitted.cards[2].provisional_card_id

        result = await engine.approve(submitted.bundle_id, REVIEWER, notes="Looks good")

        assert result.cards_created == 2
        assert result.user_cards_updated == 2
        assert [e.provisional_card_id for e in result.errors] == [failing_id]
        bundle = await engine.get_bundle(submitted.bundle_id)
        assert bundle.status == BundleStatus.APPROVED.value
        assert bundle.reviewed_by == REVIEWER
        assert bundle.review_notes == "Looks good"
        assert bundle.needs_review_count == 1
        assert [c.status for c in bundle.cards] == [
            ProvisionalCardStatus.APPROVED.value,
            ProvisionalCardStatus.APPROVED.value,
            ProvisionalCardStatus.PENDING.value,
        ]

    async def test_materialized_card_carries_pairings(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(
            session,
            describe(
                player_name="Juan Soto / Aaron Judge",
                team_name="Mets / Yankees",
                card_number="US50",
                is_rookie=True,
                color_name="Gold",
                print_run=50,
            ),
        )

        await engine.approve(submitted.bundle_id, REVIEWER)

        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card is not None and card.resolved_card_id is not None
        real = await session.get(CardDB, card.resolved_card_id)
        assert real is not None
        assert real.series_id == seeded.topps_2024_base
        assert real.card_number == "US50"
        assert real.is_rookie is True
        assert real.color_id == seeded.gold
        assert real.print_run == 50
        links = await session.execute(
            select(CardPlayerTeamDB.player_team_id).where(CardPlayerTeamDB.card_id == real.id)
        )
        assert set(links.scalars().all()) == {seeded.soto_mets, seeded.judge_yankees}
        series = await catalog.get_series(session, seeded.topps_2024_base)
        assert series is not None and series.card_entered_count == 1

    async def test_same_card_twice_in_bundle_is_created_once(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(), describe())

        result = await engine.approve(submitted.bundle_id, REVIEWER)

        assert result.cards_created == 1
        assert result.cards_linked == 1
        assert await card_count(session) == 1

    async def test_approving_twice_writes_nothing(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        await engine.approve(submitted.bundle_id, REVIEWER)
        cards_before = await card_count(session)

        with pytest.raises(InvalidStateError, match="already been approved"):
            await engine.approve(submitted.bundle_id, "admin-2")

        assert await card_count(session) == cards_before
        bundle = await engine.get_bundle(submitted.bundle_id)
        assert bundle.reviewed_by == REVIEWER
        stats = await session.get(ContributorStatsDB, USER)
        assert stats is not None and stats.approved_submissions == 1

    async def test_approval_awards_trust(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())

        await engine.approve(submitted.bundle_id, REVIEWER)

        stats = await session.get(ContributorStatsDB, USER)
        assert stats is not None
        assert stats.trust_points == 5
        assert stats.approval_rate == 1.0
        assert stats.pending_submissions == 0
        assert stats.provisional_cards_resolved == 1

    async def test_missing_bundle(self, engine: BundleReviewEngine, seeded: SeededCatalog) -> None:
        with pytest.raises(NotFoundError):
            await engine.approve(404, REVIEWER)

    async def test_resolving_an_approved_card_is_refused(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        await engine.approve(submitted.bundle_id, REVIEWER)

        with pytest.raises(InvalidStateError):
            await engine.resolve_set(
                submitted.cards[0].provisional_card_id, set_id=seeded.chrome_2024
            )


class TestMaterializeCard:
    async def test_retry_after_resolving_failed_card(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(
            session,
            describe(),
            describe(player_name="Juan Soto", team_name=None, card_number="22"),
        )
        approval = await engine.approve(submitted.bundle_id, REVIEWER)
        failed_id = approval.errors[0].provisional_card_id

        card = await store.get_provisional_card(session, failed_id)
        assert card is not None
        await engine.resolve_player(card.players[0].id, team_id=seeded.yankees)
        retry = await engine.materialize_card(failed_id)

        assert retry.cards_created == 1
        assert retry.errors == []
        bundle = await engine.get_bundle(submitted.bundle_id)
        assert bundle.needs_review_count == 0
        entries = await store.list_user_cards(session, USER)
        assert all(e.is_provisional is False for e in entries)

    async def test_requires_approved_bundle(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())

        with pytest.raises(InvalidStateError, match="is pending"):
            await engine.materialize_card(submitted.cards[0].provisional_card_id)

    async def test_already_materialized(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        await engine.approve(submitted.bundle_id, REVIEWER)

        with pytest.raises(InvalidStateError):
            await engine.materialize_card(submitted.cards[0].provisional_card_id)


class TestReject:
    async def test_reject_requires_notes(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())

        with pytest.raises(ValidationError) as exc_info:
            await engine.reject(submitted.bundle_id, REVIEWER, "   ")

        assert exc_info.value.kind == FailureKind.MISSING_REQUIRED
        bundle = await engine.get_bundle(submitted.bundle_id)
        assert bundle.status == BundleStatus.PENDING.value

    async def test_reject_closes_cards_and_collection(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe(), describe(set_name="Panini Prizm"))

        result = await engine.reject(submitted.bundle_id, REVIEWER, "Duplicate of bundle 12")

        assert result.cards_rejected == 2
        assert result.user_cards_removed == 2
        assert await store.list_user_cards(session, USER) == []
        bundle = await engine.get_bundle(submitted.bundle_id)
        assert bundle.status == BundleStatus.REJECTED.value
        assert bundle.review_notes == "Duplicate of bundle 12"
        assert {c.status for c in bundle.cards} == {ProvisionalCardStatus.REJECTED.value}
        assert await card_count(session) == 0

    async def test_rejection_trust_never_negative(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())

        await engine.reject(submitted.bundle_id, REVIEWER, "Card number does not exist")

        stats = await session.get(ContributorStatsDB, USER)
        assert stats is not None
        assert stats.trust_points == 0
        assert stats.rejected_submissions == 1
        assert stats.approval_rate == 0.0

    async def test_rejected_bundle_is_closed(
        self, engine: BundleReviewEngine, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        await engine.reject(submitted.bundle_id, REVIEWER, "Not a real card")

        with pytest.raises(InvalidStateError):
            await engine.resolve_set(
                submitted.cards[0].provisional_card_id, set_id=seeded.chrome_2024
            )
        with pytest.raises(InvalidStateError, match="already been rejected"):
            await engine.approve(submitted.bundle_id, REVIEWER)


class TestCardNeedsReview:
    async def test_low_confidence_set_needs_review(
        self, session: AsyncSession, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(session, describe())
        card = await store.get_provisional_card(session, submitted.cards[0].provisional_card_id)
        assert card is not None

        assert card_needs_review(card, 0.95) is False
        card.set_match_confidence = 0.9
        assert card_needs_review(card, 0.95) is True
