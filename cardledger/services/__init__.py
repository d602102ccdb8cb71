"""
CardLedger services.

Entity resolution for contributor submissions and the admin review
workflow that turns them into catalog cards.
"""

from cardledger.services.auto_resolver import AutoResolver
from cardledger.services.bundle_review import BundleReviewEngine, CardNotMaterializable
from cardledger.services.contributor_stats import (
    calculate_trust_level,
    ensure_contributor_stats,
    record_review,
    record_submission,
)
from cardledger.services.entity_matcher import (
    EntityMatcher,
    is_ambiguous,
    normalize_string,
    similarity,
)
from cardledger.services.player_parser import parse_player_teams, split_segments
from cardledger.services.submission import submit_bundle

__all__ = [
    "AutoResolver",
    "BundleReviewEngine",
    "CardNotMaterializable",
    "EntityMatcher",
    "calculate_trust_level",
    "ensure_contributor_stats",
    "is_ambiguous",
    "normalize_string",
    "parse_player_teams",
    "record_review",
    "record_submission",
    "similarity",
    "split_segments",
    "submit_bundle",
]
