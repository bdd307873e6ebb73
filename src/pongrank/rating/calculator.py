"""
Elo rating calculator for ping-pong matches.

Implements the standard Elo formula with integer deltas:

  Expected score: E_A = 1 / (1 + 10^((R_B - R_A) / 400))
  Delta:          D_A = round(K * (actual - expected))

Where:
  R_A, R_B = Current ratings of players A and B
  K = How much ratings change (volatility factor)

Deltas are rounded half away from zero and the loser's delta is always the
exact negation of the winner's, so every rated result is zero-sum. The
opponent-strength bonus is added on top for the match winner only.

Best-of-three matches are rated game by game: every decided game produces
its own delta at the best-of-three K (16), always computed from the
pre-match ratings, and the deltas are summed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from pongrank.rating.constants import (
    K_BEST_OF_THREE_GAME,
    OPPONENT_STRENGTH_BONUS,
    SPREAD_FACTOR,
    get_k_factor,
    single_game_k_factor,
)


@dataclass
class EloUpdate:
    """
    Result of rating one match.

    Contains everything needed to update the two players and to reverse
    the change later.
    """
    # Ratings before the match
    player1_before: int
    player2_before: int

    # Zero-sum Elo deltas (player2_delta == -player1_delta)
    player1_delta: int
    player2_delta: int

    # Who won: 1 or 2
    winner: int

    # Opponent-strength bonus for the winner (never mirrored onto the loser)
    winner_bonus: int = 0

    # What was used
    k_factor: int = 0
    games_rated: int = 1

    @property
    def player1_change(self) -> int:
        """Total rating change for player 1 (delta plus bonus if they won)."""
        return self.player1_delta + (self.winner_bonus if self.winner == 1 else 0)

    @property
    def player2_change(self) -> int:
        """Total rating change for player 2 (delta plus bonus if they won)."""
        return self.player2_delta + (self.winner_bonus if self.winner == 2 else 0)

    @property
    def player1_after(self) -> int:
        return self.player1_before + self.player1_change

    @property
    def player2_after(self) -> int:
        return self.player2_before + self.player2_change

    @property
    def was_upset(self) -> bool:
        """Whether the lower-rated player won."""
        if self.winner == 1:
            return self.player1_before < self.player2_before
        return self.player2_before < self.player1_before

    def __repr__(self) -> str:
        return (
            f"<EloUpdate(P1: {self.player1_before} -> {self.player1_after}, "
            f"P2: {self.player2_before} -> {self.player2_after}, "
            f"winner={self.winner}, bonus={self.winner_bonus})>"
        )


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def expected_score(rating_self: float, rating_opponent: float) -> float:
    """
    Probability that ``rating_self`` beats ``rating_opponent``.

    Example:
        expected_score(1000, 1000)  # 0.5
        expected_score(1400, 1000)  # ~0.909
    """
    try:
        return 1.0 / (1.0 + 10.0 ** ((rating_opponent - rating_self) / SPREAD_FACTOR))
    except OverflowError:
        return 0.0 if rating_opponent > rating_self else 1.0


def elo_delta(rating_self: float, rating_opponent: float, did_win: bool, k: float) -> int:
    """
    Integer rating change for one rated result.

    The loss case is defined as the negation of the opponent's win, which
    makes the function exactly antisymmetric:

        elo_delta(a, b, True, k) == -elo_delta(b, a, False, k)

    Args:
        rating_self: Rating of the player whose delta is returned
        rating_opponent: Opponent's rating
        did_win: Whether ``rating_self`` won
        k: K-factor

    Returns:
        Signed integer delta (positive for a win, negative or zero for a loss)
    """
    if not did_win:
        return -elo_delta(rating_opponent, rating_self, True, k)
    return round_half_away(k * (1.0 - expected_score(rating_self, rating_opponent)))


def opponent_strength_bonus(loser_level: int | None) -> int:
    """Bonus for beating a player of ``loser_level`` (5 -> 10 ... 1 -> 1, else 0)."""
    if loser_level is None:
        return 0
    return OPPONENT_STRENGTH_BONUS.get(loser_level, 0)


def calculate_single_game(
    rating1: int,
    rating2: int,
    player1_won: bool,
    loser_level: int | None = None,
    k: int | None = None,
) -> EloUpdate:
    """
    Rate a single-game match: one delta at K (32 by default) plus the bonus.

    Example:
        update = calculate_single_game(1000, 1000, player1_won=True, loser_level=3)
        update.player1_delta   # 16
        update.player1_change  # 21 (16 + 5 bonus for beating a level 3)
    """
    if k is None:
        k = single_game_k_factor()
    delta1 = elo_delta(rating1, rating2, player1_won, k)
    return EloUpdate(
        player1_before=rating1,
        player2_before=rating2,
        player1_delta=delta1,
        player2_delta=-delta1,
        winner=1 if player1_won else 2,
        winner_bonus=opponent_strength_bonus(loser_level),
        k_factor=k,
        games_rated=1,
    )


def calculate_best_of_three(
    rating1: int,
    rating2: int,
    game_winners: Sequence[bool],
    player1_won: bool,
    loser_level: int | None = None,
    k: int | None = None,
) -> EloUpdate:
    """
    Rate a best-of-three match game by game.

    Args:
        rating1: Player 1's pre-match rating (used for every game)
        rating2: Player 2's pre-match rating (used for every game)
        game_winners: For each decided game, True if player 1 won it
        player1_won: Whether player 1 won the match (by games)
        loser_level: Level of the match loser (drives the bonus)
        k: K-factor per game (16 by default)

    Returns:
        EloUpdate with the summed per-game deltas and a single match bonus
    """
    if k is None:
        k = get_k_factor(K_BEST_OF_THREE_GAME)
    delta1 = sum(elo_delta(rating1, rating2, won, k) for won in game_winners)
    return EloUpdate(
        player1_before=rating1,
        player2_before=rating2,
        player1_delta=delta1,
        player2_delta=-delta1,
        winner=1 if player1_won else 2,
        winner_bonus=opponent_strength_bonus(loser_level),
        k_factor=k,
        games_rated=len(game_winners),
    )
