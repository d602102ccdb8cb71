"""
Auto-Resolver.

Resolves the free-text fragments of one card description against the
canonical catalog: set, series, color, and every (player, team) pairing.

INVARIANTS:
1. Read-only: never creates or updates canonical rows
2. Absence of a match is a normal outcome, reported per field, never raised
3. Series is only looked up inside a resolved set
4. A pairing is resolved only through an existing player-team association
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cardledger.config import Settings, settings
from cardledger.db import catalog
from cardledger.models.resolution import (
    Candidate,
    EntityKind,
    EntityMatch,
    FieldResolution,
    PlayerResolution,
    PlayerTeamPair,
    Resolution,
)
from cardledger.services.entity_matcher import EntityMatcher, is_ambiguous, normalize_string
from cardledger.services.player_parser import parse_player_teams

logger = logging.getLogger(__name__)

# Series names contributors use to mean "the base series of this set"
BASE_SERIES_NAMES = frozenset({"base", "base set"})


def reorder_last_first(name: str) -> str:
    """Turn "Trout, Mike" into "Mike Trout"; leave other input untouched."""
    if name.count(",") != 1:
        return name
    last, first = (part.strip() for part in name.split(","))
    if not last or not first:
        return name
    return f"{first} {last}"


class AutoResolver:
    """
    Orchestrates matcher calls for one submission request.

    Holds an explicit session handle; the team pool is cached for the
    lifetime of this instance only, which is one request.
    """

    def __init__(
        self,
        session: AsyncSession,
        matcher: EntityMatcher | None = None,
        config: Settings | None = None,
    ) -> None:
        self._session = session
        self._config = config or settings
        self._matcher = matcher or EntityMatcher(self._config)
        self._team_pool: list[Candidate] | None = None

    @property
    def threshold(self) -> float:
        return self._config.auto_accept_threshold

    async def auto_resolve(
        self,
        set_name_raw: str,
        series_name_raw: str | None,
        color_name_raw: str | None,
        player_name_raw: str,
        team_name_raw: str | None,
        year: int,
        pending_set_submission_id: int | None = None,
    ) -> Resolution:
        """
        Resolve one card description.

        Args:
            set_name_raw: Set name as typed
            series_name_raw: Series name as typed; blank or "base" means base series
            color_name_raw: Optional parallel color
            player_name_raw: One or more players separated by the delimiter
            team_name_raw: Matching team list, a single team, or nothing
            year: Release year; scopes the set lookup
            pending_set_submission_id: A set already submitted for creation;
                set and series resolution are deferred to its review

        Returns:
            Resolution with per-field matches and requires_new_* flags
        """
        resolution = Resolution(threshold=self.threshold)

        # 1. Set
        if pending_set_submission_id is not None:
            logger.debug(
                "Set resolution deferred to pending set submission %d", pending_set_submission_id
            )
        else:
            resolution.set = await self._resolve_set(set_name_raw, year)
            resolution.requires_new_set = resolution.set is None

        # 2. Series, only inside a resolved set
        if resolution.set is not None:
            resolution.series = await self.resolve_series(series_name_raw, resolution.set.id)
            resolution.requires_new_series = resolution.series is None
        elif pending_set_submission_id is None:
            resolution.requires_new_series = bool(normalize_string(series_name_raw))

        # 3. Color (never blocks)
        if normalize_string(color_name_raw):
            resolution.color = await self._resolve_color(color_name_raw or "")
            resolution.requires_new_color = resolution.color is None

        # 4. Player/team pairings
        for pair in parse_player_teams(
            player_name_raw, team_name_raw, self._config.multi_value_delimiter
        ):
            player = await self._resolve_pairing(pair)
            if player.player_id is None:
                resolution.requires_new_player = True
            if pair.team_name and player.team_id is None:
                resolution.requires_new_team = True
            resolution.players.append(player)

        logger.debug(
            "Resolved '%s' (%d): fully_resolved=%s",
            set_name_raw,
            year,
            resolution.fully_resolved,
        )
        return resolution

    # --- Single fields ---

    def _accept(self, matches: list[EntityMatch]) -> FieldResolution | None:
        """Best match as a field resolution; ties between entities are capped below threshold."""
        if not matches:
            return None
        top = matches[0]
        confidence = top.confidence
        if is_ambiguous(matches):
            confidence = min(confidence, self._config.ambiguous_match_cap)
        return FieldResolution(id=top.candidate_id, name=top.name, confidence=confidence)

    async def _resolve_set(self, set_name_raw: str, year: int) -> FieldResolution | None:
        candidates = await catalog.set_candidates(self._session, year)
        return self._accept(self._matcher.match(set_name_raw, candidates, EntityKind.SET))

    async def resolve_series(
        self, series_name_raw: str | None, set_id: int
    ) -> FieldResolution | None:
        normalized = normalize_string(series_name_raw)
        if not normalized or normalized in BASE_SERIES_NAMES:
            base = await catalog.get_base_series(self._session, set_id)
            if base is None:
                return None
            return FieldResolution(id=base.id, name=base.name, confidence=1.0)

        candidates = await catalog.series_candidates(self._session, set_id)
        return self._accept(self._matcher.match(series_name_raw, candidates, EntityKind.SERIES))

    async def _resolve_color(self, color_name_raw: str) -> FieldResolution | None:
        candidates = await catalog.color_candidates(self._session)
        return self._accept(self._matcher.match(color_name_raw, candidates, EntityKind.COLOR))

    async def _teams(self) -> list[Candidate]:
        if self._team_pool is None:
            self._team_pool = await catalog.team_candidates(self._session)
        return self._team_pool

    # --- Pairings ---

    async def _resolve_pairing(self, pair: PlayerTeamPair) -> PlayerResolution:
        resolved = PlayerResolution(
            raw_player_name=pair.player_name,
            raw_team_name=pair.team_name,
        )
        name = reorder_last_first(pair.player_name)
        candidates = await catalog.player_candidates(self._session, normalize_string(name))
        player = self._accept(self._matcher.match(name, candidates, EntityKind.PLAYER))

        if player is None:
            # Unknown player: the team can still be resolved for the admin
            if pair.team_name:
                team = self._accept(
                    self._matcher.match(pair.team_name, await self._teams(), EntityKind.TEAM)
                )
                if team is not None:
                    resolved.team_id = team.id
                    resolved.team_name = team.name
            return resolved

        resolved.player_id = player.id
        resolved.player_name = player.name
        resolved.confidence = player.confidence

        associations = (
            await catalog.player_team_associations(self._session, [player.id])
        ).get(player.id, [])

        if not pair.team_name:
            # Without a team, only an unambiguous single association links
            if len(associations) == 1:
                player_team, team = associations[0]
                resolved.team_id = team.id
                resolved.team_name = team.name
                resolved.player_team_id = player_team.id
            return resolved

        association_pool = [catalog.team_candidate(team) for _, team in associations]
        team = self._accept(self._matcher.match(pair.team_name, association_pool, EntityKind.TEAM))
        if team is not None:
            player_team = next(pt for pt, t in associations if t.id == team.id)
            resolved.team_id = team.id
            resolved.team_name = team.name
            resolved.player_team_id = player_team.id
            resolved.confidence = min(player.confidence, team.confidence)
            return resolved

        # Team is not one the player is associated with
        resolved.confidence = min(player.confidence, self._config.team_mismatch_cap)
        other_team = self._accept(
            self._matcher.match(pair.team_name, await self._teams(), EntityKind.TEAM)
        )
        if other_team is not None:
            resolved.team_id = other_team.id
            resolved.team_name = other_team.name
        return resolved

    async def find_existing_card(
        self, resolution: Resolution, card_number: str
    ) -> int | None:
        """Already-catalogued card matching a fully resolved description, if any."""
        if not resolution.fully_resolved or resolution.series is None:
            return None
        return await catalog.find_existing_card(
            self._session,
            resolution.series.id,
            card_number,
            resolution.player_team_ids,
        )
