"""
Knockout bracket utility functions.

Provides positional math for single-elimination brackets. Rounds are
numbered 1..N (N = final) and bracket positions are 1-indexed within each
round:

    Round r, position p  ->  Round r+1, position ceil(p/2)

So positions 1 and 2 feed into position 1 of the next round, positions 3
and 4 feed into position 2, etc.

Pairing order for progression is a pure function of persisted match fields
(bracket_position, then id), so re-running progression after a crash never
reorders pairings that were already materialised.

These functions are used by:
- Tournament setup (seeding players into round 1)
- Bracket progression (pairing winners into the next round)
- Settlement (round-survival bonuses)
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

# Substring identifying the placeholder player in undetermined slots
TBD_MARKER = "TBD"


class _BracketMatch(Protocol):
    id: str
    round: int
    bracket_position: Optional[int]
    player1_id: int
    player2_id: int
    player1_score: Optional[int]
    player2_score: Optional[int]


M = TypeVar("M", bound=_BracketMatch)


def is_tbd_name(name: Optional[str]) -> bool:
    """Whether a player name marks the TBD placeholder."""
    return bool(name) and TBD_MARKER in name


def max_round(rounds: Iterable[Optional[int]]) -> int:
    """
    Highest valid round number, ignoring missing/non-positive values.

    Returns 0 when there is no valid round.

    Examples:
        >>> max_round([1, 2, 3, 0, None])
        3
        >>> max_round([])
        0
    """
    valid = [r for r in rounds if isinstance(r, int) and r > 0]
    return max(valid) if valid else 0


def bracket_sort_key(match: _BracketMatch) -> tuple[int, int, str]:
    """Deterministic order within a round: bracket position, then id."""
    position = match.bracket_position
    if position is None:
        return (1, 0, str(match.id))
    return (0, position, str(match.id))


def pair_round_matches(matches: Sequence[M]) -> list[tuple[M, ...]]:
    """
    Group a round's matches into feeder pairs for the next round.

    Matches are ordered by bracket_sort_key() and paired consecutively. An
    odd leftover becomes a singleton pair whose winner meets the TBD
    placeholder.

    Examples:
        4 matches -> [(m1, m2), (m3, m4)]
        3 matches -> [(m1, m2), (m3,)]
    """
    ordered = sorted(matches, key=bracket_sort_key)
    return [tuple(ordered[i:i + 2]) for i in range(0, len(ordered), 2)]


def expected_next_round_matches(current_round_count: int) -> int:
    """Number of next-round matches produced by a round of ``current_round_count``."""
    return math.ceil(current_round_count / 2)


def resolve_winner_id(match: _BracketMatch) -> Optional[int]:
    """
    Winner of a source match by overall score.

    A match with a missing score (or a tie) contributes no winner.
    """
    if match.player1_score is None or match.player2_score is None:
        return None
    if match.player1_score == match.player2_score:
        return None
    return match.player1_id if match.player1_score > match.player2_score else match.player2_id


def resolve_loser_id(match: _BracketMatch) -> Optional[int]:
    winner = resolve_winner_id(match)
    if winner is None:
        return None
    return match.player2_id if winner == match.player1_id else match.player1_id


def is_best_of_three_round(current_round: int, last_round: int) -> bool:
    """
    Best-of-three policy for a match created after ``current_round`` completes.

    The next round is best-of-three when ``current_round >= last_round - 2``,
    i.e. the semifinal and final are best-of-three, earlier rounds single-game.
    """
    return current_round >= last_round - 2


def is_best_of_three_for_round(round_number: int, total_rounds: int) -> bool:
    """Same policy expressed for the round being created (semifinal or final)."""
    return is_best_of_three_round(round_number - 1, total_rounds)


def get_next_bracket_position(position: int) -> int:
    """
    Compute the bracket position in the next round.

    Examples:
        >>> get_next_bracket_position(1)
        1
        >>> get_next_bracket_position(4)
        2
    """
    return math.ceil(position / 2)


def bracket_size(player_count: int) -> int:
    """
    Smallest power of two that fits ``player_count`` players.

    Examples:
        >>> bracket_size(5)
        8
        >>> bracket_size(8)
        8
    """
    size = 1
    while size < player_count:
        size *= 2
    return size


def total_rounds(player_count: int) -> int:
    """Number of knockout rounds for ``player_count`` players (ceil(log2 n))."""
    if player_count < 2:
        return 0
    return int(math.log2(bracket_size(player_count)))


def seed_order(size: int) -> list[int]:
    """
    Standard bracket seed order for a power-of-two ``size``.

    Slot i of round 1 holds seed seed_order(size)[i]; consecutive slots play
    each other. Top seeds can only meet in the latest possible round.

    Examples:
        >>> seed_order(4)
        [1, 4, 2, 3]
        >>> seed_order(8)
        [1, 8, 4, 5, 2, 7, 3, 6]
    """
    if size < 1 or size & (size - 1):
        raise ValueError(f"size must be a power of two, got {size}")
    order = [1]
    while len(order) < size:
        span = len(order) * 2 + 1
        order = [seed for s in order for seed in (s, span - s)]
    return order


def seed_slots(seeded_ids: Sequence[int]) -> list[Optional[int]]:
    """
    Place seeded entrants into round-1 slots; empty slots are byes (None).

    ``seeded_ids`` is ordered best seed first.

    Examples:
        >>> seed_slots([10, 20, 30])
        [10, None, 20, 30]
    """
    size = bracket_size(len(seeded_ids))
    return [
        seeded_ids[seed - 1] if seed <= len(seeded_ids) else None
        for seed in seed_order(size)
    ]


def knockout_round_bonus(round_number: int, last_round: int) -> int:
    """
    Settlement bonus for winning a knockout match in ``round_number``.

    Examples (3-round bracket):
        >>> knockout_round_bonus(3, 3)   # won the final
        60
        >>> knockout_round_bonus(2, 3)   # reached the final
        30
        >>> knockout_round_bonus(1, 3)   # reached the semifinal
        20
    """
    if round_number == last_round:
        return 60
    if round_number == last_round - 1:
        return 30
    if round_number == last_round - 2:
        return 20
    if round_number == last_round - 3:
        return 15
    return 10
