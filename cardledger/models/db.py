"""
SQLAlchemy ORM models for persistent storage.

Two groups of tables:
- Canonical catalog (sets, series, players, teams, cards, ...): the
  authoritative rows every provisional submission is resolved against.
- Provisional submissions (bundles, provisional cards, player pairings):
  raw contributor input plus its resolution state.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# --- Canonical catalog ---


class ManufacturerDB(Base):
    """Card manufacturer (Topps, Panini, ...)."""

    __tablename__ = "manufacturers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)

    def __repr__(self) -> str:
        return f"<ManufacturerDB(id={self.id}, name={self.name})>"


class OrganizationDB(Base):
    """Sports organization (MLB, NFL, ...)."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    abbreviation: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<OrganizationDB(id={self.id}, name={self.name})>"


class SetDB(Base):
    """A released product line for one year, e.g. "2024 Topps Chrome"."""

    __tablename__ = "sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    year: Mapped[int] = mapped_column(Integer, index=True)
    slug: Mapped[str] = mapped_column(String(300), unique=True)
    manufacturer_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("manufacturers.id"), nullable=True
    )
    organization_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=True
    )
    card_count: Mapped[int] = mapped_column(Integer, default=0)
    series_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    series: Mapped[list["SeriesDB"]] = relationship(back_populates="set")

    def __repr__(self) -> str:
        return f"<SetDB(id={self.id}, name={self.name}, year={self.year})>"


class SeriesDB(Base):
    """
    A series within a set.

    The base series of a set is flagged with is_base and usually carries
    the same name as the set itself.
    """

    __tablename__ = "series"
    __table_args__ = (UniqueConstraint("set_id", "slug", name="uq_series_set_slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    set_id: Mapped[int] = mapped_column(Integer, ForeignKey("sets.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(300))
    is_base: Mapped[bool] = mapped_column(Boolean, default=False)
    color_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("colors.id"), nullable=True)
    card_count: Mapped[int] = mapped_column(Integer, default=0)
    card_entered_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    set: Mapped["SetDB"] = relationship(back_populates="series")

    def __repr__(self) -> str:
        return f"<SeriesDB(id={self.id}, name={self.name}, set_id={self.set_id})>"


class ColorDB(Base):
    """Parallel color (e.g. "Gold Refractor")."""

    __tablename__ = "colors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    hex_value: Mapped[str | None] = mapped_column(String(7), nullable=True)

    def __repr__(self) -> str:
        return f"<ColorDB(id={self.id}, name={self.name})>"


class PlayerDB(Base):
    """An athlete depicted on cards."""

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(255), index=True)
    last_name: Mapped[str] = mapped_column(String(255), index=True)
    slug: Mapped[str] = mapped_column(String(300), unique=True)
    card_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    aliases: Mapped[list["PlayerAliasDB"]] = relationship(
        back_populates="player", cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<PlayerDB(id={self.id}, name={self.full_name})>"


class PlayerAliasDB(Base):
    """Alternate name a player is known by (nickname, maiden name, ...)."""

    __tablename__ = "player_aliases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("players.id", ondelete="CASCADE"), index=True
    )
    alias_name: Mapped[str] = mapped_column(String(255), index=True)

    player: Mapped["PlayerDB"] = relationship(back_populates="aliases")


class TeamDB(Base):
    """A team a player appears for on a card."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mascot: Mapped[str | None] = mapped_column(String(255), nullable=True)
    abbreviation: Mapped[str | None] = mapped_column(String(20), nullable=True)
    organization_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=True
    )
    player_count: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<TeamDB(id={self.id}, name={self.name})>"


class PlayerTeamDB(Base):
    """Association of a player with a team. Cards reference these, not players."""

    __tablename__ = "player_teams"
    __table_args__ = (UniqueConstraint("player_id", "team_id", name="uq_player_team"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(Integer, ForeignKey("players.id"), index=True)
    team_id: Mapped[int] = mapped_column(Integer, ForeignKey("teams.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    player: Mapped["PlayerDB"] = relationship()
    team: Mapped["TeamDB"] = relationship()


class CardDB(Base):
    """A canonical card within a series."""

    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_id: Mapped[int] = mapped_column(Integer, ForeignKey("series.id"), index=True)
    card_number: Mapped[str] = mapped_column(String(50), index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_rookie: Mapped[bool] = mapped_column(Boolean, default=False)
    is_autograph: Mapped[bool] = mapped_column(Boolean, default=False)
    is_relic: Mapped[bool] = mapped_column(Boolean, default=False)
    is_short_print: Mapped[bool] = mapped_column(Boolean, default=False)
    color_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("colors.id"), nullable=True)
    print_run: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<CardDB(id={self.id}, series_id={self.series_id}, number={self.card_number})>"


class CardPlayerTeamDB(Base):
    """Links a card to each player-team pairing it depicts."""

    __tablename__ = "card_player_teams"
    __table_args__ = (UniqueConstraint("card_id", "player_team_id", name="uq_card_player_team"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("cards.id", ondelete="CASCADE"), index=True
    )
    player_team_id: Mapped[int] = mapped_column(Integer, ForeignKey("player_teams.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserCardDB(Base):
    """
    A contributor's own copy of a card.

    Points at a provisional card (is_provisional=True) until the owning
    bundle is reviewed, then at the real card.
    """

    __tablename__ = "user_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    card_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("cards.id"), nullable=True)
    provisional_card_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("provisional_cards.id"), nullable=True, index=True
    )
    is_provisional: Mapped[bool] = mapped_column(Boolean, default=False)
    serial_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    purchase_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    user_location_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<UserCardDB(id={self.id}, user_id={self.user_id}, card_id={self.card_id}, "
            f"provisional_card_id={self.provisional_card_id})>"
        )


# --- Provisional submissions ---


class ProvisionalCardBundleDB(Base):
    """A batch of provisional cards submitted together by one contributor."""

    __tablename__ = "provisional_card_bundles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    card_count: Mapped[int] = mapped_column(Integer, default=0)
    auto_resolved_count: Mapped[int] = mapped_column(Integer, default=0)
    needs_review_count: Mapped[int] = mapped_column(Integer, default=0)

    requires_new_set: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_new_series: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_new_player: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_new_team: Mapped[bool] = mapped_column(Boolean, default=False)

    cards: Mapped[list["ProvisionalCardDB"]] = relationship(
        back_populates="bundle", order_by="ProvisionalCardDB.id"
    )

    def __repr__(self) -> str:
        return f"<ProvisionalCardBundleDB(id={self.id}, status={self.status})>"


class ProvisionalCardDB(Base):
    """One contributor-described card: raw text beside its resolution state."""

    __tablename__ = "provisional_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bundle_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("provisional_card_bundles.id"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True)

    # Raw input, exactly as typed
    set_name_raw: Mapped[str] = mapped_column(String(255))
    series_name_raw: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color_name_raw: Mapped[str | None] = mapped_column(String(100), nullable=True)
    player_names_raw: Mapped[str] = mapped_column(String(500))
    team_names_raw: Mapped[str | None] = mapped_column(String(500), nullable=True)
    year: Mapped[int] = mapped_column(Integer)
    card_number: Mapped[str] = mapped_column(String(50))
    print_run: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_rookie: Mapped[bool] = mapped_column(Boolean, default=False)
    is_autograph: Mapped[bool] = mapped_column(Boolean, default=False)
    is_relic: Mapped[bool] = mapped_column(Boolean, default=False)
    is_short_print: Mapped[bool] = mapped_column(Boolean, default=False)

    # Resolved references
    resolved_set_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sets.id"), nullable=True
    )
    resolved_series_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("series.id"), nullable=True
    )
    resolved_color_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("colors.id"), nullable=True
    )
    resolved_card_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("cards.id"), nullable=True
    )
    existing_card_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("cards.id"), nullable=True
    )
    set_match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    series_match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    color_match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    auto_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    bundle: Mapped["ProvisionalCardBundleDB"] = relationship(back_populates="cards")
    players: Mapped[list["ProvisionalCardPlayerDB"]] = relationship(
        back_populates="provisional_card",
        order_by="ProvisionalCardPlayerDB.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ProvisionalCardDB(id={self.id}, bundle_id={self.bundle_id}, status={self.status})>"


class ProvisionalCardPlayerDB(Base):
    """One (player, team) pairing parsed from a provisional card."""

    __tablename__ = "provisional_card_players"
    __table_args__ = (
        UniqueConstraint("provisional_card_id", "position", name="uq_provisional_card_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provisional_card_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("provisional_cards.id"), index=True
    )
    position: Mapped[int] = mapped_column(Integer)
    player_name_raw: Mapped[str] = mapped_column(String(500))
    team_name_raw: Mapped[str | None] = mapped_column(String(500), nullable=True)

    resolved_player_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("players.id"), nullable=True
    )
    resolved_team_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=True
    )
    resolved_player_team_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("player_teams.id"), nullable=True
    )
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    auto_matched: Mapped[bool] = mapped_column(Boolean, default=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=True)

    provisional_card: Mapped["ProvisionalCardDB"] = relationship(back_populates="players")

    def __repr__(self) -> str:
        return (
            f"<ProvisionalCardPlayerDB(id={self.id}, card={self.provisional_card_id}, "
            f"position={self.position})>"
        )


class ContributorStatsDB(Base):
    """Per-contributor submission counters and trust level."""

    __tablename__ = "contributor_stats"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    total_submissions: Mapped[int] = mapped_column(Integer, default=0)
    bundle_submissions: Mapped[int] = mapped_column(Integer, default=0)
    pending_submissions: Mapped[int] = mapped_column(Integer, default=0)
    approved_submissions: Mapped[int] = mapped_column(Integer, default=0)
    rejected_submissions: Mapped[int] = mapped_column(Integer, default=0)
    provisional_cards_submitted: Mapped[int] = mapped_column(Integer, default=0)
    provisional_cards_resolved: Mapped[int] = mapped_column(Integer, default=0)
    trust_points: Mapped[int] = mapped_column(Integer, default=0)
    trust_level: Mapped[str] = mapped_column(String(20), default="novice")
    approval_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    first_submission_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_submission_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<ContributorStatsDB(user_id={self.user_id}, trust_level={self.trust_level})>"
