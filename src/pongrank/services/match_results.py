"""
Match result service - score submission, completion and deletion.

Score submission is the main entry point into the rating system:

    validate -> resolve outcome -> Elo deltas -> atomic player increments
    (commit) -> level refresh (best-effort) -> bracket progression (commit)

Two submission modes exist, selected by Match.best_of_three:

- **Single game** (submit_single_game_score): the submitted points are the
  result. Completing applies one Elo delta (K=32 by default) plus the
  opponent-strength bonus for the winner.

- **Best-of-three** (submit_game_score): one game at a time. Once a player
  has two game wins the match completes and every decided game is rated at
  K=16 from the pre-match ratings, plus one match-level bonus.

Every rejection (not found, wrong state, invalid score) is raised before
anything is written. The exact Elo deltas and bonus applied on completion
are cached on the match so deletion can reverse them.

Matches against the TBD placeholder (walkovers) are recorded but never
rated or tallied.

Usage:
    result = submit_game_score(session, match_id, editing_game=2,
                               player1_score=11, player2_score=9)
    drain_notifications(session, result.notifications)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from pongrank.bracket import is_tbd_name, max_round
from pongrank.config import settings
from pongrank.db import repository
from pongrank.db.models import Match, Player
from pongrank.errors import ConflictError, ValidationError
from pongrank.match_statuses import MATCH_STAGES, can_transition, get_status_group
from pongrank.notifications import NotificationOutbox
from pongrank.rating.calculator import EloUpdate, calculate_best_of_three, calculate_single_game
from pongrank.rating.constants import single_game_k_factor
from pongrank.rating.levels import refresh_levels_best_effort
from pongrank.scoring import BestOfThreeState, validate_single_game_score
from pongrank.services.bracket_progression import ProgressionResult, advance_bracket, applies_to

logger = logging.getLogger(__name__)

# Statuses a single-game submission may request
SINGLE_GAME_TARGET_STATUSES = get_status_group("playable") + ("completed",)

RateFn = Callable[[Player, Player, int], EloUpdate]


@dataclass
class MatchResult:
    """Outcome of a score submission."""
    match_id: str
    status: str
    elo: Optional[EloUpdate] = None
    progression: Optional[ProgressionResult] = None
    notifications: NotificationOutbox = field(default_factory=NotificationOutbox)

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    def summary(self) -> str:
        lines = [f"Match {self.match_id}: {self.status}"]
        if self.elo is not None:
            lines.append(
                f"  Elo: P1 {self.elo.player1_change:+d}, P2 {self.elo.player2_change:+d} "
                f"(K={self.elo.k_factor}, games={self.elo.games_rated}, bonus={self.elo.winner_bonus})"
            )
        if self.progression is not None:
            lines.append(f"  {self.progression.summary()}")
        return "\n".join(lines)


@dataclass
class DeletionResult:
    """Outcome of deleting a match."""
    match_id: str
    tallies_reversed: bool = False
    rating_reversed: bool = False
    notifications: NotificationOutbox = field(default_factory=NotificationOutbox)


# =============================================================================
# Shared helpers
# =============================================================================

def _ensure_accepts_scores(match: Match) -> None:
    if match.is_placeholder:
        raise ConflictError(f"Match {match.id} is waiting for its players to be decided")
    if not can_transition(match.status, "in_progress"):
        raise ConflictError(f"Match {match.id} is already completed")


def _load_players(session: Session, match: Match) -> tuple[Player, Player]:
    return (
        repository.get_player(session, match.player1_id),
        repository.get_player(session, match.player2_id),
    )


def _single_game_k(session: Session, match: Match) -> int:
    if not settings.use_tournament_k_factors:
        return single_game_k_factor()
    is_final = False
    if match.stage == "knockout":
        rounds = [
            m.round
            for m in repository.list_matches(
                session, tournament_id=match.tournament_id, stage="knockout"
            )
        ]
        is_final = match.round == max_round(rounds)
    return single_game_k_factor(stage=match.stage, is_final=is_final)


def _complete(
    session: Session,
    match: Match,
    player1: Player,
    player2: Player,
    rate: RateFn,
) -> Optional[EloUpdate]:
    """
    Mark ``match`` completed and apply its rating effects.

    Scores must already be on the match. Returns None for walkovers
    against the TBD placeholder, which are not rated.
    """
    match.status = "completed"
    match.settled_at = datetime.utcnow()

    if is_tbd_name(player1.name) or is_tbd_name(player2.name):
        logger.info("Match %s completed against the TBD placeholder; not rated", match.id)
        session.flush()
        return None

    player1_won = match.winner_id == player1.id
    loser = player2 if player1_won else player1
    update = rate(player1, player2, loser.level)

    repository.increment_player(
        session, player1.id,
        rating=update.player1_change,
        wins=1 if player1_won else 0,
        losses=0 if player1_won else 1,
    )
    repository.increment_player(
        session, player2.id,
        rating=update.player2_change,
        wins=0 if player1_won else 1,
        losses=1 if player1_won else 0,
    )
    match.player1_elo_delta = update.player1_delta
    match.player2_elo_delta = update.player2_delta
    match.winner_bonus = update.winner_bonus
    session.flush()
    return update


def replay_completion(session: Session, match: Match) -> Optional[EloUpdate]:
    """
    Re-apply the rating effects of an already completed match.

    Used by the full recalculation, which replays results in date order
    against freshly reset players. The match must carry its final scores.
    """
    player1, player2 = _load_players(session, match)
    player1_won = match.winner_id == player1.id
    if match.best_of_three:
        winners = BestOfThreeState.from_match(match).decided_game_winners()
        return _complete(
            session, match, player1, player2,
            lambda p1, p2, loser_level: calculate_best_of_three(
                p1.rating, p2.rating, winners, player1_won, loser_level
            ),
        )
    k = _single_game_k(session, match)
    return _complete(
        session, match, player1, player2,
        lambda p1, p2, loser_level: calculate_single_game(
            p1.rating, p2.rating, player1_won, loser_level, k=k
        ),
    )


def _after_completion(session: Session, match: Match, result: MatchResult) -> None:
    """Post-commit steps: level refresh, notification, bracket progression."""
    refresh_levels_best_effort(session)

    tournament = repository.get_tournament(session, match.tournament_id)
    winner = repository.get_player(session, match.winner_id)
    loser = repository.get_player(session, match.loser_id)
    high = max(match.player1_score, match.player2_score)
    low = min(match.player1_score, match.player2_score)
    result.notifications.add(
        title="Match completed",
        message=f'{winner.name} beat {loser.name} {high}-{low} in "{tournament.name}"',
        type="match",
    )

    if applies_to(match, tournament):
        result.progression = advance_bracket(session, match, result.notifications)


# =============================================================================
# Score submission
# =============================================================================

def submit_single_game_score(
    session: Session,
    match_id: str,
    player1_score: int,
    player2_score: int,
    status: str = "completed",
) -> MatchResult:
    """
    Record the points of a single-game match.

    With status 'completed' the match is settled: Elo delta, winner bonus,
    wins and losses. Any other playable status only stores the scores.

    Raises:
        NotFoundError: Unknown match
        ConflictError: Match already completed or still a placeholder
        ValidationError: Best-of-three match, bad status or bad scores
    """
    match = repository.get_match(session, match_id)
    _ensure_accepts_scores(match)
    if match.best_of_three:
        raise ValidationError(f"Match {match.id} is best-of-three; submit scores game by game")
    if status not in SINGLE_GAME_TARGET_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(SINGLE_GAME_TARGET_STATUSES)} (got {status!r})"
        )
    if not can_transition(match.status, status):
        raise ConflictError(f"Match {match.id} cannot move from {match.status!r} to {status!r}")
    completing = status == "completed"
    validate_single_game_score(player1_score, player2_score, completing)

    def work(s: Session) -> Optional[EloUpdate]:
        player1, player2 = _load_players(s, match)
        k = _single_game_k(s, match) if completing else None
        match.player1_score = player1_score
        match.player2_score = player2_score
        if not completing:
            match.status = status
            return None
        return _complete(
            s, match, player1, player2,
            lambda p1, p2, loser_level: calculate_single_game(
                p1.rating, p2.rating, player1_score > player2_score, loser_level, k=k
            ),
        )

    elo = repository.run_transaction(session, work)
    result = MatchResult(match_id=match.id, status=match.status, elo=elo)
    logger.info(result.summary())

    if completing:
        _after_completion(session, match, result)
    return result


def submit_game_score(
    session: Session,
    match_id: str,
    editing_game: int,
    player1_score: int,
    player2_score: int,
) -> MatchResult:
    """
    Record one game of a best-of-three match.

    Win counts are re-derived from all three game slots. The second game win
    completes the match and rates every decided game.

    Raises:
        NotFoundError: Unknown match
        ConflictError: Match already completed or still a placeholder
        ValidationError: Single-game match, bad game number or bad score
    """
    match = repository.get_match(session, match_id)
    _ensure_accepts_scores(match)
    if not match.best_of_three:
        raise ValidationError(f"Match {match.id} is a single game; submit the final score")
    state = BestOfThreeState.from_match(match).with_game(editing_game, player1_score, player2_score)

    def work(s: Session) -> Optional[EloUpdate]:
        player1, player2 = _load_players(s, match)
        match.set_game_scores(state.as_pairs())
        match.player1_wins = state.player1_wins
        match.player2_wins = state.player2_wins
        match.player1_score = state.player1_wins
        match.player2_score = state.player2_wins
        match.current_game = state.current_game
        if not state.is_complete:
            match.status = state.status
            return None
        return _complete(
            s, match, player1, player2,
            lambda p1, p2, loser_level: calculate_best_of_three(
                p1.rating, p2.rating, state.decided_game_winners(),
                state.winner == 1, loser_level,
            ),
        )

    elo = repository.run_transaction(session, work)
    result = MatchResult(match_id=match.id, status=match.status, elo=elo)
    logger.info(result.summary())

    if state.is_complete:
        _after_completion(session, match, result)
    return result


# =============================================================================
# Manual creation and deletion
# =============================================================================

def create_match(
    session: Session,
    tournament_id: int,
    player1_id: Optional[int],
    player2_id: Optional[int],
    date: Optional[datetime] = None,
    round: int = 1,
    stage: Optional[str] = None,
    group_name: Optional[str] = None,
    best_of_three: bool = False,
    bracket_position: Optional[int] = None,
) -> Match:
    """
    Create a match by hand (admin scheduling).

    Both players are added to the tournament if they are not members yet.

    Raises:
        ValidationError: Missing or identical players, bad round or stage
        NotFoundError: Unknown tournament or player
    """
    if player1_id is None or player2_id is None:
        raise ValidationError("Both player1_id and player2_id are required")
    if player1_id == player2_id:
        raise ValidationError("A player cannot play against themselves")
    if round < 1:
        raise ValidationError(f"round must be a positive integer (got {round})")
    if stage is not None and stage not in MATCH_STAGES:
        raise ValidationError(f"stage must be one of {', '.join(MATCH_STAGES)} (got {stage!r})")

    tournament = repository.get_tournament(session, tournament_id, with_relations=True)
    players = [repository.get_player(session, pid) for pid in (player1_id, player2_id)]
    for player in players:
        if is_tbd_name(player.name):
            raise ValidationError("The TBD placeholder cannot be scheduled by hand")

    def work(s: Session) -> Match:
        for player in players:
            if player not in tournament.players:
                tournament.players.append(player)
        return repository.create_match(
            s,
            tournament_id=tournament.id,
            player1_id=player1_id,
            player2_id=player2_id,
            date=date or datetime.utcnow(),
            round=round,
            stage=stage,
            group_name=group_name,
            best_of_three=best_of_three,
            bracket_position=bracket_position,
            status="scheduled",
        )

    match = repository.run_transaction(session, work)
    logger.info("Created match %s in tournament %d", match.id, tournament_id)
    return match


def _applied_elo_deltas(match: Match, player1: Player, player2: Player) -> tuple[int, int]:
    """
    Elo deltas the completion applied (bonus excluded).

    Uses the cached values; matches completed before caching existed are
    re-rated from the players' current ratings.
    """
    if match.player1_elo_delta is not None and match.player2_elo_delta is not None:
        return match.player1_elo_delta, match.player2_elo_delta

    player1_won = match.winner_id == player1.id
    if match.best_of_three:
        state = BestOfThreeState.from_match(match)
        update = calculate_best_of_three(
            player1.rating, player2.rating, state.decided_game_winners(), player1_won
        )
    else:
        update = calculate_single_game(player1.rating, player2.rating, player1_won)
    logger.warning("Match %s has no cached Elo deltas; reversing recomputed values", match.id)
    return update.player1_delta, update.player2_delta


def delete_match(session: Session, match_id: str) -> DeletionResult:
    """
    Delete a match and reverse what its completion applied.

    A completed, tallied match gives back the winner's win and the loser's
    loss. In league tournaments the Elo deltas are reversed as well; the
    winner bonus is kept.

    Raises:
        NotFoundError: Unknown match
    """
    match = repository.get_match(session, match_id)
    tournament = repository.get_tournament(session, match.tournament_id)
    result = DeletionResult(match_id=match.id)

    def work(s: Session) -> str:
        player1, player2 = _load_players(s, match)
        description = f"{player1.name} vs {player2.name}"
        counted = (
            match.status == "completed"
            and match.settled_at is not None
            and match.winner_id is not None
            and not is_tbd_name(player1.name)
            and not is_tbd_name(player2.name)
        )
        if counted:
            repository.increment_player(s, match.winner_id, wins=-1)
            repository.increment_player(s, match.loser_id, losses=-1)
            result.tallies_reversed = True
            if tournament.format == "league":
                delta1, delta2 = _applied_elo_deltas(match, player1, player2)
                repository.increment_player(s, player1.id, rating=-delta1)
                repository.increment_player(s, player2.id, rating=-delta2)
                result.rating_reversed = True
        repository.delete_match(s, match.id)
        return description

    description = repository.run_transaction(session, work)
    logger.info(
        "Deleted match %s (tallies reversed: %s, rating reversed: %s)",
        match_id, result.tallies_reversed, result.rating_reversed,
    )

    if result.tallies_reversed:
        refresh_levels_best_effort(session)
    result.notifications.add(
        title="Match deleted",
        message=f'{description} in "{tournament.name}" was deleted',
        type="match",
    )
    return result
