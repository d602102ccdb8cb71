from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CARDLEDGER_")

    app_name: str = "CardLedger"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "postgresql+asyncpg://localhost:5432/cardledger"

    # Confidence at or above which a match is accepted without review.
    # Policy value, independent of the similarity algorithm.
    auto_accept_threshold: float = 0.95

    # Matches scoring below these floors are discarded (entity needs creation)
    set_match_floor: float = 0.70
    series_match_floor: float = 0.70
    color_match_floor: float = 0.50
    team_match_floor: float = 0.60
    player_match_floor: float = 0.70

    # Ceiling applied when two different candidates tie for the best match
    ambiguous_match_cap: float = 0.90

    # Ceiling applied to a player whose supplied team matches none of
    # the player's team associations
    team_mismatch_cap: float = 0.80

    max_cards_per_bundle: int = 100
    multi_value_delimiter: str = "/"

    # Contributor trust points
    approval_trust_points: int = 5
    rejection_trust_points: int = -2


settings = Settings()


# =============================================================================
# REVIEW ROLES
# =============================================================================

# Roles allowed to act on the admin review queue
ADMIN_ROLES = frozenset({"admin", "superadmin", "data_admin"})

# Review notes length bounds for rejection
MIN_REJECTION_NOTES_LENGTH = 10
MAX_REVIEW_NOTES_LENGTH = 2000
