"""Tests for admin review API endpoints."""

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from cardledger.db import catalog
from tests.conftest import ADMIN, CONTRIBUTOR, SeededCatalog
from tests.test_api_provisional import card, submit

ADMIN_BASE = "/crowdsource/admin"


async def first_card_id(client: AsyncClient, bundle_id: int) -> int:
    response = await client.get(f"{ADMIN_BASE}/bundles/{bundle_id}", headers=ADMIN)
    return response.json()["cards"][0]["id"]


class TestAdminAccess:
    async def test_contributor_is_forbidden(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        response = await client.get(f"{ADMIN_BASE}/bundles", headers=CONTRIBUTOR)

        assert response.status_code == 403
        assert response.json()["failure"]["kind"] == "forbidden"

    async def test_anonymous_is_unauthenticated(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        response = await client.get(f"{ADMIN_BASE}/bundles")

        assert response.status_code == 401


class TestReviewQueue:
    async def test_pending_oldest_first(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        first = await submit(client, card())
        second = await submit(client, card(set_name="Panini Prizm"))

        response = await client.get(f"{ADMIN_BASE}/bundles", headers=ADMIN)

        assert response.status_code == 200
        assert [b["id"] for b in response.json()] == [first["bundle_id"], second["bundle_id"]]

    async def test_filter_by_status(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        submitted = await submit(client, card())
        await client.post(f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}/approve", headers=ADMIN)

        pending = await client.get(f"{ADMIN_BASE}/bundles", headers=ADMIN)
        approved = await client.get(
            f"{ADMIN_BASE}/bundles", params={"status": "approved"}, headers=ADMIN
        )

        assert pending.json() == []
        assert [b["id"] for b in approved.json()] == [submitted["bundle_id"]]

    async def test_diff_view(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        """Raw input is shown beside what it resolved to."""
        submitted = await submit(
            client, card(player_name="Juan Soto / Aaron Judge", team_name="Mets / Yankees")
        )

        response = await client.get(f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()
        assert data["card_count"] == 1
        detail = data["cards"][0]
        assert detail["set_name_raw"] == "2024 Topps"
        assert detail["resolved_set_id"] == seeded.topps_2024
        assert detail["set_match_confidence"] == 1.0
        assert [p["resolved_player_team_id"] for p in detail["players"]] == [
            seeded.soto_mets,
            seeded.judge_yankees,
        ]

    async def test_missing_bundle(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        response = await client.get(f"{ADMIN_BASE}/bundles/999", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["failure"]["kind"] == "not_found"


class TestApprove:
    async def test_approve_creates_cards(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        submitted = await submit(
            client,
            card(),
            card(player_name="Aaron Judge", team_name="Yankees", card_number="99"),
            card(player_name="Bobby Witt", team_name=None, card_number="7"),
        )

        response = await client.post(
            f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}/approve",
            json={"notes": "Checked against checklist"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "approved"
        assert data["cards_created"] == 2
        assert [e["provisional_card_id"] for e in data["errors"]] == [
            submitted["cards"][2]["provisional_card_id"]
        ]
        assert data["message"] == "2 card(s) created, 0 linked, 1 failed"

        mine = await client.get("/crowdsource/my-provisional-cards", headers=CONTRIBUTOR)
        statuses = {c["id"]: c["status"] for c in mine.json()}
        assert statuses[submitted["cards"][0]["provisional_card_id"]] == "approved"
        assert statuses[submitted["cards"][2]["provisional_card_id"]] == "pending"

    async def test_approve_twice_conflicts(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(client, card())
        url = f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}/approve"

        first = await client.post(url, headers=ADMIN)
        second = await client.post(url, headers=ADMIN)

        assert first.status_code == 200
        assert second.status_code == 409
        data = second.json()
        assert data["outcome"] == "known_failure"
        assert data["failure"]["kind"] == "invalid_state"

    async def test_approval_updates_contributor_stats(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(client, card())
        await client.post(f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}/approve", headers=ADMIN)

        stats = (await client.get("/crowdsource/my-stats", headers=CONTRIBUTOR)).json()

        assert stats["approved_submissions"] == 1
        assert stats["trust_points"] == 5
        assert stats["provisional_cards_resolved"] == 1


class TestReject:
    async def test_short_notes_rejected(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        submitted = await submit(client, card())

        response = await client.post(
            f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}/reject",
            json={"notes": "no"},
            headers=ADMIN,
        )

        assert response.status_code == 422

    async def test_reject_bundle(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        submitted = await submit(client, card(), card(card_number="2"))

        response = await client.post(
            f"{ADMIN_BASE}/bundles/{submitted['bundle_id']}/reject",
            json={"notes": "These cards are from 2023"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "rejected"
        assert data["cards_rejected"] == 2
        assert data["user_cards_removed"] == 2

        mine = await client.get(
            "/crowdsource/my-provisional-cards", params={"status": "rejected"}, headers=CONTRIBUTOR
        )
        assert len(mine.json()) == 2
        bundles = (await client.get("/crowdsource/my-bundles", headers=CONTRIBUTOR)).json()
        assert bundles[0]["review_notes"] == "These cards are from 2023"


class TestResolveEndpoints:
    async def test_resolve_series_before_set(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(client, card(set_name="Panini Prizm", series_name="Silver"))
        card_id = submitted["cards"][0]["provisional_card_id"]

        response = await client.post(
            f"{ADMIN_BASE}/provisional-cards/{card_id}/resolve-series",
            json={"name": "Silver"},
            headers=ADMIN,
        )

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "ordering_violation"

    async def test_create_set_then_series(
        self, client: AsyncClient, session_factory: async_sessionmaker, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(client, card(set_name="2024 Panini Prizm", series_name="Silver"))
        card_id = submitted["cards"][0]["provisional_card_id"]

        set_response = await client.post(
            f"{ADMIN_BASE}/provisional-cards/{card_id}/resolve-set",
            json={"name": "2024 Panini Prizm", "year": 2024},
            headers=ADMIN,
        )
        series_response = await client.post(
            f"{ADMIN_BASE}/provisional-cards/{card_id}/resolve-series",
            json={"name": "Silver"},
            headers=ADMIN,
        )

        assert set_response.status_code == 200
        assert set_response.json()["resolved_series_id"] is None
        assert series_response.status_code == 200
        resolved = series_response.json()
        assert resolved["series_match_confidence"] == 1.0
        assert resolved["needs_review"] is False
        async with session_factory() as check:
            created = await catalog.find_set_by_name(check, "2024 Panini Prizm", 2024)
            assert created is not None
            assert created.series_count == 2
            assert resolved["resolved_set_id"] == created.id

    async def test_create_set_requires_year(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(client, card(set_name="Panini Prizm"))
        card_id = submitted["cards"][0]["provisional_card_id"]

        response = await client.post(
            f"{ADMIN_BASE}/provisional-cards/{card_id}/resolve-set",
            json={"name": "2024 Panini Prizm"},
            headers=ADMIN,
        )

        assert response.status_code == 422

    async def test_duplicate_set(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        submitted = await submit(client, card(set_name="Panini Prizm"))
        card_id = submitted["cards"][0]["provisional_card_id"]

        response = await client.post(
            f"{ADMIN_BASE}/provisional-cards/{card_id}/resolve-set",
            json={"name": "2024 Topps", "year": 2024},
            headers=ADMIN,
        )

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "duplicate"

    async def test_resolve_player_then_materialize(
        self, client: AsyncClient, seeded: SeededCatalog
    ) -> None:
        submitted = await submit(client, card(player_name="Bobby Witt", team_name="Royals"))
        bundle_id = submitted["bundle_id"]
        approval = await client.post(f"{ADMIN_BASE}/bundles/{bundle_id}/approve", headers=ADMIN)
        assert approval.json()["cards_created"] == 0

        detail = await client.get(f"{ADMIN_BASE}/bundles/{bundle_id}", headers=ADMIN)
        pairing_id = detail.json()["cards"][0]["players"][0]["id"]
        resolved = await client.post(
            f"{ADMIN_BASE}/provisional-card-players/{pairing_id}/resolve",
            json={"first_name": "Bobby", "last_name": "Witt", "team_name": "Kansas City Royals"},
            headers=ADMIN,
        )
        assert resolved.status_code == 200
        assert resolved.json()["players"][0]["resolved_player_team_id"] is not None

        card_id = await first_card_id(client, bundle_id)
        response = await client.post(
            f"{ADMIN_BASE}/provisional-cards/{card_id}/materialize", headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["cards_created"] == 1
        mine = (await client.get("/crowdsource/my-provisional-cards", headers=CONTRIBUTOR)).json()
        assert mine[0]["status"] == "approved"
        assert mine[0]["resolved_card_id"] is not None

    async def test_missing_pairing(self, client: AsyncClient, seeded: SeededCatalog) -> None:
        response = await client.post(
            f"{ADMIN_BASE}/provisional-card-players/999/resolve",
            json={"player_id": seeded.trout},
            headers=ADMIN,
        )

        assert response.status_code == 404
