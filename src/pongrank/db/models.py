"""
SQLAlchemy ORM models for PongRank.

This module defines all database tables and their relationships.

Key design decisions:
- Player rating/wins/losses are only ever changed through atomic SQL
  increments (see db/repository.py), never read-modify-write
- Player level is a cached, derived value (see rating/levels.py)
- Tournaments own their matches (cascade delete); players are shared
  between tournaments through the tournament_players association table
- Match ids are strings so knockout pairing order is a pure function of ids
- The exact Elo deltas applied on completion are cached on the match so a
  deletion can reverse them exactly

Tables:
- players: Registered players with rating, level and win/loss tallies
- tournaments: Tournament master data (format, status, settlement marker)
- tournament_players: Tournament membership
- matches: All matches (placeholders, scheduled, in progress, completed)
- notifications: Write-only event feed
- users: Admin accounts for the web API
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def new_match_id() -> str:
    """Generate a match id (uuid4 string, 36 chars)."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Tournament membership (many-to-many, no ownership direction)
tournament_players = Table(
    "tournament_players",
    Base.metadata,
    Column("tournament_id", ForeignKey("tournaments.id", ondelete="CASCADE"), primary_key=True),
    Column("player_id", ForeignKey("players.id", ondelete="CASCADE"), primary_key=True),
)


# =============================================================================
# Player Models
# =============================================================================

class Player(Base):
    """
    Registered player.

    rating starts at the configured default (1000) and moves with every
    completed match and every tournament settlement. level (1-5) is derived
    from the player's percentile among all players and is refreshed by the
    level classifier after any rating change.
    """
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Rating state
    rating: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    tournaments: Mapped[list["Tournament"]] = relationship(
        secondary=tournament_players, back_populates="players"
    )

    __table_args__ = (
        Index("idx_players_rating", "rating"),
        Index("idx_players_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, name='{self.name}', rating={self.rating})>"


# =============================================================================
# Admin Models
# =============================================================================

class User(Base):
    """User account for protected web workflows."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_users_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<User(username='{self.username}', admin={self.is_admin}, active={self.is_active})>"


# =============================================================================
# Tournament Models
# =============================================================================

class Tournament(Base):
    """
    Tournament master data.

    Formats:
    - 'league': Round robin, repeated `rounds` times
    - 'knockout': Single-elimination bracket
    - 'groups_knockout': Round-robin groups, then a knockout bracket for the
      top `advance_count` players of each of the `group_count` groups

    Status lifecycle: 'draft' -> 'active' -> 'completed'. Settlement runs on
    the transition into 'completed' and stamps settled_at, which is never
    cleared except by a full rating recalculation.
    """
    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    format: Mapped[str] = mapped_column(String(20), nullable=False, default="knockout")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # Format parameters
    rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    advance_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Set once when completion bonuses have been applied
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    players: Mapped[list["Player"]] = relationship(
        secondary=tournament_players, back_populates="tournaments"
    )
    matches: Mapped[list["Match"]] = relationship(
        back_populates="tournament",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_tournaments_status", "status"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None

    def __repr__(self) -> str:
        return f"<Tournament(id={self.id}, name='{self.name}', format='{self.format}')>"


# =============================================================================
# Match Models
# =============================================================================

class Match(Base):
    """
    Unified match table - handles the full lifecycle from placeholder to completed.

    Match status lifecycle:
    - 'pending': Knockout placeholder (both players are the TBD player)
    - 'scheduled': Players known, not started
    - 'in_progress': Best-of-three match with at least one decided game
    - 'completed': Result applied to ratings and tallies

    Score semantics:
    - Single game: player1_score/player2_score are the points scored
    - Best-of-three: player1_score/player2_score are the games won; raw game
      points live in the player{1,2}_game{1,2,3}_score columns
    """
    __tablename__ = "matches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_match_id)

    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )

    # Players (always use foreign keys, never store names directly)
    player1_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    player2_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)

    date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Tournament context
    round: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    stage: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # 'group', 'knockout', 'league'
    group_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Slot within a knockout round (1-indexed); winners of slots 2p-1 and 2p
    # meet in slot p of the next round
    bracket_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")

    # ==========================================================================
    # Scores
    # ==========================================================================

    player1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    best_of_three: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    player1_game1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_game1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player1_game2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_game2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player1_game3_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_game3_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player1_wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    player2_wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_game: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # ==========================================================================
    # Applied rating effects (set on completion, used for exact reversal)
    # ==========================================================================

    player1_elo_delta: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_elo_delta: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    winner_bonus: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Set when the completion was folded into player wins/losses
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    tournament: Mapped["Tournament"] = relationship(back_populates="matches")
    player1: Mapped["Player"] = relationship(foreign_keys=[player1_id])
    player2: Mapped["Player"] = relationship(foreign_keys=[player2_id])

    __table_args__ = (
        Index("idx_matches_tournament", "tournament_id"),
        Index("idx_matches_tournament_stage_round", "tournament_id", "stage", "round"),
        Index("idx_matches_player1", "player1_id"),
        Index("idx_matches_player2", "player2_id"),
        Index("idx_matches_status", "status"),
        Index("idx_matches_date", "date"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_placeholder(self) -> bool:
        """Knockout slot whose players are not known yet."""
        return self.status == "pending"

    @property
    def has_scores(self) -> bool:
        return self.player1_score is not None and self.player2_score is not None

    @property
    def winner_id(self) -> Optional[int]:
        """Winner by overall score, or None while undecided or tied."""
        if not self.has_scores or self.player1_score == self.player2_score:
            return None
        return self.player1_id if self.player1_score > self.player2_score else self.player2_id

    @property
    def loser_id(self) -> Optional[int]:
        winner = self.winner_id
        if winner is None:
            return None
        return self.player2_id if winner == self.player1_id else self.player1_id

    def game_scores(self) -> tuple[tuple[Optional[int], Optional[int]], ...]:
        """The three (player1, player2) game score pairs, in game order."""
        return (
            (self.player1_game1_score, self.player2_game1_score),
            (self.player1_game2_score, self.player2_game2_score),
            (self.player1_game3_score, self.player2_game3_score),
        )

    def set_game_scores(
        self, games: tuple[tuple[Optional[int], Optional[int]], ...]
    ) -> None:
        """Write back the three (player1, player2) game score pairs."""
        (
            (self.player1_game1_score, self.player2_game1_score),
            (self.player1_game2_score, self.player2_game2_score),
            (self.player1_game3_score, self.player2_game3_score),
        ) = games

    def __repr__(self) -> str:
        return (
            f"<Match(id='{self.id}', round={self.round}, stage={self.stage}, "
            f"{self.player1_id} vs {self.player2_id}, status='{self.status}')>"
        )


# =============================================================================
# Notification Models
# =============================================================================

class Notification(Base):
    """
    Event feed entry.

    Types: 'match', 'tournament', 'system'. Written best-effort after the
    operation that produced them has committed.
    """
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    read: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_notifications_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification(type='{self.type}', title='{self.title}')>"
