"""
Resolution Models.

Value objects passed between the matcher, the player parser, and the
auto-resolver. None of these touch the database.

INVARIANTS:
- Every confidence is within [0.0, 1.0]
- 1.0 means exact (case-insensitive) or manual match
- A pairing is resolved only when BOTH player and player-team exist
"""

from dataclasses import dataclass, field
from enum import Enum


class EntityKind(str, Enum):
    """Kind of canonical entity a text fragment is matched against."""

    SET = "set"
    SERIES = "series"
    COLOR = "color"
    PLAYER = "player"
    TEAM = "team"


class BundleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProvisionalCardStatus(str, Enum):
    PENDING = "pending"
    AUTO_RESOLVED = "auto_resolved"
    APPROVED = "approved"
    REJECTED = "rejected"


# Card statuses that can still be materialized or adjudicated
OPEN_CARD_STATUSES = (
    ProvisionalCardStatus.PENDING.value,
    ProvisionalCardStatus.AUTO_RESOLVED.value,
)


@dataclass(frozen=True, slots=True)
class Candidate:
    """
    A canonical entity offered to the matcher.

    Attributes:
        id: Primary key of the canonical row
        name: Display name the raw text is compared against
        aliases: Alternate names; an exact alias hit counts as exact
    """

    id: int
    name: str
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class EntityMatch:
    """One ranked matcher result."""

    candidate_id: int
    name: str
    confidence: float


@dataclass(frozen=True, slots=True)
class PlayerTeamPair:
    """One (player, team) fragment parsed from free text."""

    player_name: str
    team_name: str | None = None


@dataclass
class FieldResolution:
    """Resolution of a single-valued field (set, series, color)."""

    id: int
    name: str
    confidence: float

    def meets(self, threshold: float) -> bool:
        return self.confidence >= threshold


@dataclass
class PlayerResolution:
    """
    Resolution of one parsed (player, team) pairing.

    player_team_id is the card-linkable association; a pairing without
    it is never resolved, even when both player and team are known.
    """

    raw_player_name: str
    raw_team_name: str | None
    player_id: int | None = None
    player_name: str | None = None
    team_id: int | None = None
    team_name: str | None = None
    player_team_id: int | None = None
    confidence: float = 0.0

    def is_resolved(self, threshold: float) -> bool:
        return (
            self.player_id is not None
            and self.player_team_id is not None
            and self.confidence >= threshold
        )


@dataclass
class Resolution:
    """Outcome of auto-resolving one card description."""

    threshold: float
    set: FieldResolution | None = None
    series: FieldResolution | None = None
    color: FieldResolution | None = None
    players: list[PlayerResolution] = field(default_factory=list)
    requires_new_set: bool = False
    requires_new_series: bool = False
    requires_new_color: bool = False
    requires_new_player: bool = False
    requires_new_team: bool = False

    @property
    def fully_resolved(self) -> bool:
        """Set, series and every pairing meet the threshold. Color never blocks."""
        return (
            self.set is not None
            and self.set.meets(self.threshold)
            and self.series is not None
            and self.series.meets(self.threshold)
            and len(self.players) > 0
            and all(p.is_resolved(self.threshold) for p in self.players)
        )

    @property
    def needs_review(self) -> bool:
        return not self.fully_resolved

    @property
    def player_team_ids(self) -> list[int]:
        return [p.player_team_id for p in self.players if p.player_team_id is not None]
