"""
Rating system constants.

K factor: Controls rating volatility (how much ratings change per match)
  - Higher K = bigger rating swings
  - Lower K = more stable ratings

S factor: Controls the spread (how rating differences translate to win
probability). Fixed at the classic 400: a 400-point gap means the stronger
player is expected to win 10 times out of 11.

Best-of-three matches apply a smaller K once per decided game instead of a
single match-level delta, so a 2-1 win moves ratings less than a 2-0 win
against the same opponent.
"""

from __future__ import annotations

from pongrank.config import settings

SPREAD_FACTOR = 400

# K-factor keys
K_SINGLE_GAME = "single_game"
K_BEST_OF_THREE_GAME = "best_of_three_game"
K_TOURNAMENT = "tournament"
K_FINAL = "final"

# Bonus awarded to a match winner, keyed by the loser's level
OPPONENT_STRENGTH_BONUS = {
    5: 10,
    4: 7,
    3: 5,
    2: 3,
    1: 1,
}

# Percentile lower bounds (inclusive) for each level, strongest first
LEVEL_THRESHOLDS: tuple[tuple[float, int], ...] = (
    (80.0, 5),
    (60.0, 4),
    (40.0, 3),
    (20.0, 2),
)
MIN_LEVEL = 1
MAX_LEVEL = 5


def get_k_factor(kind: str) -> int:
    """
    K-factor for a kind of rated result, honouring settings overrides.

    Example:
        k = get_k_factor(K_BEST_OF_THREE_GAME)  # 16 unless overridden

    Defaults: single game 32, best-of-three game 16, tournament 48,
    final 64. The last two only apply when use_tournament_k_factors is on.
    """
    overrides = {
        K_SINGLE_GAME: settings.k_factor_single_game,
        K_BEST_OF_THREE_GAME: settings.k_factor_best_of_three_game,
        K_TOURNAMENT: settings.k_factor_tournament,
        K_FINAL: settings.k_factor_final,
    }
    return overrides[kind]


def single_game_k_factor(stage: str | None = None, is_final: bool = False) -> int:
    """
    K-factor for a single-game match.

    Ordinary single games use 32. With use_tournament_k_factors enabled,
    games inside a league/knockout stage use the tournament K and the final
    uses the final K.
    """
    if not settings.use_tournament_k_factors or stage is None:
        return get_k_factor(K_SINGLE_GAME)
    if is_final:
        return get_k_factor(K_FINAL)
    return get_k_factor(K_TOURNAMENT)
