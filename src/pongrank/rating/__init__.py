"""
Rating system module.

Implements the ping-pong rating rules:
- Integer Elo deltas (K=32 single game, K=16 per best-of-three game)
- Opponent-strength bonus for the match winner
- Percentile-based levels recomputed over the whole population
"""

from pongrank.rating.calculator import (
    EloUpdate,
    calculate_best_of_three,
    calculate_single_game,
    elo_delta,
    expected_score,
    opponent_strength_bonus,
)
from pongrank.rating.levels import (
    compute_levels,
    level_for_percentile,
    recalculate_player_levels,
    refresh_levels_best_effort,
)

__all__ = [
    "EloUpdate",
    "calculate_best_of_three",
    "calculate_single_game",
    "elo_delta",
    "expected_score",
    "opponent_strength_bonus",
    "compute_levels",
    "level_for_percentile",
    "recalculate_player_levels",
    "refresh_levels_best_effort",
]
