"""
Review Models.

Creation parameters an admin can supply instead of linking an existing
canonical id, and the structured outcomes of review actions.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class NewSet:
    name: str
    year: int
    manufacturer_id: int | None = None
    organization_id: int | None = None


@dataclass(frozen=True, slots=True)
class NewSeries:
    name: str
    is_base: bool = False
    color_id: int | None = None


@dataclass(frozen=True, slots=True)
class NewPlayer:
    """
    A player to create.

    allow_duplicate_name permits two players with the same name
    (namesakes are real); every other entity kind refuses duplicates.
    """

    first_name: str
    last_name: str
    allow_duplicate_name: bool = False


@dataclass(frozen=True, slots=True)
class NewTeam:
    name: str
    city: str | None = None
    mascot: str | None = None
    abbreviation: str | None = None
    organization_id: int | None = None


@dataclass(frozen=True, slots=True)
class CardFailure:
    """One provisional card that could not be materialized, and why."""

    provisional_card_id: int
    error: str


@dataclass
class ApprovalResult:
    """
    Outcome of approving a bundle (or retrying one card).

    Per-card failures are collected here rather than raised; the cards
    that could be materialized stay materialized.
    """

    bundle_id: int
    cards_created: int = 0
    cards_linked: int = 0
    user_cards_updated: int = 0
    errors: list[CardFailure] = field(default_factory=list)

    @property
    def cards_resolved(self) -> int:
        return self.cards_created + self.cards_linked


@dataclass
class RejectionResult:
    bundle_id: int
    cards_rejected: int = 0
    user_cards_removed: int = 0
