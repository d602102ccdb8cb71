"""
Submission Models.

CardDescription is UNTRUSTED contributor input: free text exactly as
typed, plus the contributor's own copy details. The result types report
what the auto-resolver made of it.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from cardledger.models.resolution import FieldResolution, PlayerResolution


@dataclass(frozen=True, slots=True)
class CardDescription:
    """
    One card as described by a contributor.

    Attributes:
        player_name: One or more players, "/"-separated
        set_name: Set name as typed
        card_number: Number printed on the card
        year: Release year
        team_name: Teams, "/"-separated, or a single team for all players
        series_name: Series within the set; blank means the base series
        color_name: Parallel color
        serial_number, purchase_price, user_location_id: Contributor's copy
    """

    player_name: str
    set_name: str
    card_number: str
    year: int
    team_name: str | None = None
    series_name: str | None = None
    color_name: str | None = None
    print_run: int | None = None
    is_rookie: bool = False
    is_autograph: bool = False
    is_relic: bool = False
    is_short_print: bool = False
    notes: str | None = None
    serial_number: int | None = None
    purchase_price: Decimal | None = None
    user_location_id: int | None = None


@dataclass
class CardSubmissionResult:
    """Resolution summary for one submitted card."""

    provisional_card_id: int
    fully_resolved: bool
    needs_review: bool
    set: FieldResolution | None
    series: FieldResolution | None
    color: FieldResolution | None
    players: list[PlayerResolution]
    existing_card_id: int | None = None
    requires_new_set: bool = False
    requires_new_series: bool = False
    requires_new_color: bool = False
    requires_new_player: bool = False
    requires_new_team: bool = False


@dataclass
class BundleSubmissionResult:
    """Outcome of submitting one bundle."""

    bundle_id: int
    card_count: int
    auto_resolved_count: int
    needs_review_count: int
    requires_new_set: bool
    requires_new_series: bool
    requires_new_player: bool
    requires_new_team: bool
    message: str
    cards: list[CardSubmissionResult] = field(default_factory=list)
