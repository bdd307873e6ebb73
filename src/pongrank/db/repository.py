"""
Persistence helpers used by the rating and tournament services.

This is the only module the services use to read and write players,
matches, tournaments and notifications. Rating, win and loss changes are
always issued as atomic SQL increments:

    UPDATE players SET rating = rating + :delta, wins = wins + :w ...

so two matches settled at the same time can never overwrite each other's
changes with a stale snapshot.

Unless stated otherwise, functions flush but do not commit; callers decide
the transaction boundary (usually via run_transaction()).

Usage:
    from pongrank.db import repository

    def work(session):
        repository.increment_player(session, winner_id, rating=12, wins=1)
        repository.increment_player(session, loser_id, rating=-12, losses=1)

    repository.run_transaction(session, work)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from pongrank.bracket import TBD_MARKER
from pongrank.config import settings
from pongrank.db.models import Match, Notification, Player, Tournament
from pongrank.errors import NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Transactions
# =============================================================================

def run_transaction(session: Session, work: Callable[[Session], T]) -> T:
    """
    Run ``work(session)`` and commit it as one unit.

    On any exception the session is rolled back and the exception
    re-raised, so either every mutation made by ``work`` lands or none do.
    """
    try:
        result = work(session)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return result


# =============================================================================
# Players
# =============================================================================

def get_player(session: Session, player_id: int) -> Player:
    player = session.get(Player, player_id, populate_existing=True)
    if player is None:
        raise NotFoundError("Player", player_id)
    return player


def list_players(session: Session, player_ids: Optional[Iterable[int]] = None) -> list[Player]:
    """All players (or the given subset), highest rating first."""
    stmt = select(Player).order_by(Player.rating.desc(), Player.id)
    if player_ids is not None:
        stmt = stmt.where(Player.id.in_(list(player_ids)))
    return list(session.scalars(stmt))


def create_player(
    session: Session,
    name: str,
    rating: Optional[int] = None,
    level: Optional[int] = None,
) -> Player:
    player = Player(
        name=name,
        rating=settings.default_rating if rating is None else rating,
        level=settings.default_level if level is None else level,
        wins=0,
        losses=0,
    )
    session.add(player)
    session.flush()
    return player


def find_tbd_player(session: Session) -> Optional[Player]:
    """The bracket placeholder player (name contains "TBD"), if it exists."""
    stmt = select(Player).where(Player.name.contains(TBD_MARKER)).order_by(Player.id)
    return session.scalars(stmt).first()


def get_or_create_tbd_player(session: Session) -> Player:
    """
    Return the bracket placeholder player, creating it on first use.

    Created with the configured placeholder name, level 3 and the default
    rating. Never ranked by the level classifier.
    """
    player = find_tbd_player(session)
    if player is None:
        player = create_player(
            session,
            name=settings.tbd_player_name,
            rating=settings.default_rating,
            level=3,
        )
        logger.info("Created TBD placeholder player id=%d", player.id)
    return player


def increment_player(
    session: Session,
    player_id: int,
    rating: int = 0,
    wins: int = 0,
    losses: int = 0,
) -> None:
    """
    Atomically add to a player's rating/wins/losses.

    Negative values decrement (used when reversing a deleted match).
    Issues nothing when every increment is zero.
    """
    if not (rating or wins or losses):
        return
    session.execute(
        update(Player)
        .where(Player.id == player_id)
        .values(
            rating=Player.rating + rating,
            wins=Player.wins + wins,
            losses=Player.losses + losses,
        )
    )
    logger.debug(
        "Player %d incremented: rating %+d, wins %+d, losses %+d",
        player_id, rating, wins, losses,
    )


def update_player(session: Session, player_id: int, **fields: Any) -> None:
    """Overwrite player columns (absolute values, e.g. level or a reset)."""
    session.execute(update(Player).where(Player.id == player_id).values(**fields))


# =============================================================================
# Matches
# =============================================================================

def get_match(session: Session, match_id: str) -> Match:
    match = session.get(Match, match_id, populate_existing=True)
    if match is None:
        raise NotFoundError("Match", match_id)
    return match


def list_matches(
    session: Session,
    tournament_id: Optional[int] = None,
    stage: Optional[str] = None,
    round: Optional[int] = None,
    statuses: Optional[Iterable[str]] = None,
) -> list[Match]:
    """
    Fresh query of matches matching every given filter.

    Always hits the database so callers see completions committed by
    concurrent requests.
    """
    stmt = select(Match).execution_options(populate_existing=True)
    if tournament_id is not None:
        stmt = stmt.where(Match.tournament_id == tournament_id)
    if stage is not None:
        stmt = stmt.where(Match.stage == stage)
    if round is not None:
        stmt = stmt.where(Match.round == round)
    if statuses is not None:
        stmt = stmt.where(Match.status.in_(list(statuses)))
    stmt = stmt.order_by(Match.round, Match.date, Match.id)
    return list(session.scalars(stmt))


def create_match(session: Session, **fields: Any) -> Match:
    match = Match(**fields)
    session.add(match)
    session.flush()
    return match


def update_match(session: Session, match_id: str, **fields: Any) -> Match:
    match = get_match(session, match_id)
    for key, value in fields.items():
        setattr(match, key, value)
    session.flush()
    return match


def delete_match(session: Session, match_id: str) -> None:
    match = get_match(session, match_id)
    session.delete(match)
    session.flush()


# =============================================================================
# Tournaments
# =============================================================================

def get_tournament(
    session: Session,
    tournament_id: int,
    with_relations: bool = False,
) -> Tournament:
    if with_relations:
        stmt = (
            select(Tournament)
            .where(Tournament.id == tournament_id)
            .options(selectinload(Tournament.players), selectinload(Tournament.matches))
            .execution_options(populate_existing=True)
        )
        tournament = session.scalars(stmt).first()
    else:
        tournament = session.get(Tournament, tournament_id)
    if tournament is None:
        raise NotFoundError("Tournament", tournament_id)
    return tournament


def update_tournament(session: Session, tournament_id: int, **fields: Any) -> Tournament:
    tournament = get_tournament(session, tournament_id)
    for key, value in fields.items():
        setattr(tournament, key, value)
    session.flush()
    return tournament


# =============================================================================
# Notifications
# =============================================================================

def create_notification(session: Session, title: str, message: str, type: str) -> Notification:
    notification = Notification(title=title, message=message, type=type, read=False)
    session.add(notification)
    session.flush()
    return notification
