"""
Match outcome resolution.

Pure functions and value objects that decide what a score submission does
to a match, without touching the database.

Single game:
    The submitted points are the result. Completing requires a winner
    (scores must differ).

Best-of-three:
    One game is submitted at a time (editing_game in 1..3). A game must be
    won with at least 11 points and a 2-point lead (21-point games satisfy
    the same rule). Win counts are always re-derived from all three game
    slots, never incremented, so resubmitting a game is safe. A game counts
    as decided only when both scores are present and at least one is > 0.
    The first player to two game wins takes the match.

Usage:
    state = BestOfThreeState.from_match(match)
    state = state.with_game(editing_game=2, player1=11, player2=9)
    if state.is_complete:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence

from pongrank.errors import ValidationError

GAMES_PER_MATCH = 3
GAMES_TO_WIN = 2
MIN_WINNING_POINTS = 11
MIN_WINNING_MARGIN = 2


class GameScore(NamedTuple):
    """Points scored by each player in one game slot (None = not played)."""
    player1: Optional[int] = None
    player2: Optional[int] = None

    @property
    def is_decided(self) -> bool:
        if self.player1 is None or self.player2 is None:
            return False
        return self.player1 > 0 or self.player2 > 0

    @property
    def winner(self) -> Optional[int]:
        """1 or 2 for a decided game, None otherwise (including a tie)."""
        if not self.is_decided or self.player1 == self.player2:
            return None
        return 1 if self.player1 > self.player2 else 2


def _validate_points(player1: object, player2: object) -> None:
    for value in (player1, player2):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("Scores must be whole numbers")
        if value < 0:
            raise ValidationError("Scores cannot be negative")


def validate_game_score(player1: int, player2: int) -> None:
    """
    Check one best-of-three game result.

    Raises:
        ValidationError: If the higher score is below 11 or the lead is under 2
    """
    _validate_points(player1, player2)
    if max(player1, player2) < MIN_WINNING_POINTS:
        raise ValidationError(
            f"A game is won with at least {MIN_WINNING_POINTS} points "
            f"(got {player1}-{player2})"
        )
    if abs(player1 - player2) < MIN_WINNING_MARGIN:
        raise ValidationError(
            f"A game is won by at least {MIN_WINNING_MARGIN} points "
            f"(got {player1}-{player2})"
        )


def validate_single_game_score(player1: int, player2: int, completing: bool) -> None:
    """
    Check a single-game result.

    Raises:
        ValidationError: On negative/non-integer scores, or a tie when completing
    """
    _validate_points(player1, player2)
    if completing and player1 == player2:
        raise ValidationError("A completed match needs a winner; scores are tied")


@dataclass(frozen=True)
class BestOfThreeState:
    """
    The three game slots of a best-of-three match plus the game being edited.

    Immutable: with_game() returns a new state.
    """
    games: tuple[GameScore, GameScore, GameScore] = (GameScore(), GameScore(), GameScore())
    editing_game: int = 1

    @classmethod
    def from_pairs(
        cls,
        pairs: Sequence[tuple[Optional[int], Optional[int]]],
        editing_game: int = 1,
    ) -> "BestOfThreeState":
        if len(pairs) != GAMES_PER_MATCH:
            raise ValueError(f"expected {GAMES_PER_MATCH} game slots, got {len(pairs)}")
        games = tuple(GameScore(p1, p2) for p1, p2 in pairs)
        return cls(games=games, editing_game=editing_game)

    @classmethod
    def from_match(cls, match) -> "BestOfThreeState":
        """Build from a Match row (see Match.game_scores())."""
        return cls.from_pairs(match.game_scores(), editing_game=match.current_game or 1)

    def with_game(self, editing_game: int, player1: int, player2: int) -> "BestOfThreeState":
        """
        Return a new state with one game slot replaced.

        Raises:
            ValidationError: If editing_game is not 1-3 or the score is invalid
        """
        if editing_game not in range(1, GAMES_PER_MATCH + 1):
            raise ValidationError(f"editing_game must be 1, 2 or 3 (got {editing_game})")
        validate_game_score(player1, player2)
        games = list(self.games)
        games[editing_game - 1] = GameScore(player1, player2)
        return BestOfThreeState(games=tuple(games), editing_game=editing_game)

    def as_pairs(self) -> tuple[tuple[Optional[int], Optional[int]], ...]:
        return tuple((game.player1, game.player2) for game in self.games)

    @property
    def player1_wins(self) -> int:
        return sum(1 for game in self.games if game.winner == 1)

    @property
    def player2_wins(self) -> int:
        return sum(1 for game in self.games if game.winner == 2)

    @property
    def decided_count(self) -> int:
        return sum(1 for game in self.games if game.is_decided)

    @property
    def is_complete(self) -> bool:
        return self.player1_wins >= GAMES_TO_WIN or self.player2_wins >= GAMES_TO_WIN

    @property
    def winner(self) -> Optional[int]:
        """1 or 2 once complete, else None."""
        if self.player1_wins >= GAMES_TO_WIN:
            return 1
        if self.player2_wins >= GAMES_TO_WIN:
            return 2
        return None

    @property
    def status(self) -> str:
        return "completed" if self.is_complete else "in_progress"

    @property
    def current_game(self) -> int:
        """
        Game number shown as current.

        Completed: min(total wins, 3). Otherwise the next undecided slot.
        """
        if self.is_complete:
            return min(self.player1_wins + self.player2_wins, GAMES_PER_MATCH)
        return min(self.decided_count + 1, GAMES_PER_MATCH)

    def decided_game_winners(self) -> list[bool]:
        """For every decided game with a winner, True if player 1 won it."""
        return [game.winner == 1 for game in self.games if game.winner is not None]
