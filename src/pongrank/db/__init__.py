"""
Database module for PongRank.

Provides SQLAlchemy ORM models, session management and the persistence
helpers the services go through.

Usage:
    from pongrank.db import get_session, Player, Match

    with get_session() as session:
        players = session.query(Player).all()
"""

from pongrank.db.models import (
    Base,
    Match,
    Notification,
    Player,
    Tournament,
    User,
    new_match_id,
    tournament_players,
)
from pongrank.db.session import SessionLocal, get_db, get_engine, get_session

__all__ = [
    # Base
    "Base",
    # Models
    "Player",
    "Tournament",
    "Match",
    "Notification",
    "User",
    "tournament_players",
    "new_match_id",
    # Session
    "get_session",
    "get_db",
    "get_engine",
    "SessionLocal",
]
