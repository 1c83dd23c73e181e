from sqlalchemy.orm import relationship
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Boolean,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base

DEFAULT_ELO = 1200


class Club(Base):
    __tablename__ = "club"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class Player(Base):
    """Rating aggregate for a club member.

    ``current_elo`` and the match counters are only ever changed by the
    conditional updates in :mod:`app.services.match_store`.
    """

    __tablename__ = "player"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    club_id = Column(String, ForeignKey("club.id"), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    current_elo = Column(Integer, nullable=False, default=DEFAULT_ELO)
    best_elo = Column(Integer, nullable=False, default=DEFAULT_ELO)
    matches_played = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    last_match_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    club = relationship("Club")


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    club_id = Column(String, ForeignKey("club.id"), nullable=True)
    player1_id = Column(String, ForeignKey("player.id"), nullable=False)
    player2_id = Column(String, ForeignKey("player.id"), nullable=False)
    winner_id = Column(String, ForeignKey("player.id"), nullable=False)
    score = Column(String, nullable=False)
    match_format = Column(String, nullable=False, default="two_sets")
    played_at = Column(DateTime(timezone=True), nullable=False)

    # Frozen at report time; never recomputed.
    player1_elo_before = Column(Integer, nullable=False)
    player1_elo_after = Column(Integer, nullable=False)
    player2_elo_before = Column(Integer, nullable=False)
    player2_elo_after = Column(Integer, nullable=False)
    modifiers_applied = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )

    reported_by = Column(String, ForeignKey("player.id"), nullable=False)
    validated = Column(Boolean, nullable=False, default=False)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    validated_by = Column(String, ForeignKey("player.id"), nullable=True)
    auto_validated = Column(Boolean, nullable=False, default=False)
    auto_validate_at = Column(DateTime(timezone=True), nullable=False)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    contested = Column(Boolean, nullable=False, default=False)
    contested_by = Column(String, ForeignKey("player.id"), nullable=True)
    contested_at = Column(DateTime(timezone=True), nullable=True)
    contest_reason = Column(Text, nullable=True)
    contest_resolved_at = Column(DateTime(timezone=True), nullable=True)
    contest_resolution = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_match_pending_deadline", "validated", "contested", "auto_validate_at"),
        Index("ix_match_contested_by_at", "contested_by", "contested_at"),
    )


class RatingLedgerEntry(Base):
    """Immutable record of one player's rating change from one match."""

    __tablename__ = "rating_ledger"
    id = Column(String, primary_key=True)
    player_id = Column(String, ForeignKey("player.id"), nullable=False)
    match_id = Column(String, ForeignKey("match.id"), nullable=False, index=True)
    elo_after = Column(Integer, nullable=False)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)  # "match_win" | "match_loss"
    meta = Column("metadata", JSON, nullable=False, default=dict)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "player_id",
            "match_id",
            name="uq_rating_ledger_player_id_match_id",
        ),
    )


class Notification(Base):
    __tablename__ = "notification"
    id = Column(String, primary_key=True)
    player_id = Column(String, ForeignKey("player.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)


class Badge(Base):
    __tablename__ = "badge"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    icon = Column(String, nullable=True)
    category = Column(String, nullable=False, default="milestone")
    description = Column(Text, nullable=True)
    rule = Column(JSON, nullable=True)


class PlayerBadge(Base):
    __tablename__ = "player_badge"
    id = Column(String, primary_key=True)
    player_id = Column(String, ForeignKey("player.id"), nullable=False)
    badge_id = Column(String, ForeignKey("badge.id"), nullable=False)
    earned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "player_id",
            "badge_id",
            name="uq_player_badge_player_id_badge_id",
        ),
    )
