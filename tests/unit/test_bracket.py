"""Unit tests for knockout bracket math."""

from dataclasses import dataclass
from typing import Optional

import pytest

from pongrank.bracket import (
    bracket_size,
    expected_next_round_matches,
    get_next_bracket_position,
    is_best_of_three_for_round,
    is_best_of_three_round,
    is_tbd_name,
    knockout_round_bonus,
    max_round,
    pair_round_matches,
    resolve_loser_id,
    resolve_winner_id,
    seed_order,
    seed_slots,
    total_rounds,
)


@dataclass
class FakeMatch:
    id: str
    round: int = 1
    bracket_position: Optional[int] = None
    player1_id: int = 1
    player2_id: int = 2
    player1_score: Optional[int] = None
    player2_score: Optional[int] = None


def test_is_tbd_name():
    assert is_tbd_name("TBD (to be determined)")
    assert is_tbd_name("TBD")
    assert not is_tbd_name("Tobias")
    assert not is_tbd_name(None)
    assert not is_tbd_name("")


def test_max_round_ignores_invalid_values():
    assert max_round([1, 2, 3, 0, None, -1]) == 3
    assert max_round([]) == 0
    assert max_round([None]) == 0


class TestPairing:
    def test_pairs_by_position(self):
        matches = [FakeMatch("d", bracket_position=4), FakeMatch("a", bracket_position=1),
                   FakeMatch("c", bracket_position=3), FakeMatch("b", bracket_position=2)]
        pairs = pair_round_matches(matches)
        assert [[m.id for m in pair] for pair in pairs] == [["a", "b"], ["c", "d"]]

    def test_falls_back_to_id_order(self):
        matches = [FakeMatch("zz"), FakeMatch("aa"), FakeMatch("mm"), FakeMatch("bb")]
        pairs = pair_round_matches(matches)
        assert [[m.id for m in pair] for pair in pairs] == [["aa", "bb"], ["mm", "zz"]]

    def test_positioned_matches_come_first(self):
        matches = [FakeMatch("a"), FakeMatch("z", bracket_position=1)]
        pairs = pair_round_matches(matches)
        assert [m.id for m in pairs[0]] == ["z", "a"]

    def test_odd_round_leaves_singleton(self):
        matches = [FakeMatch(str(i), bracket_position=i) for i in range(1, 4)]
        pairs = pair_round_matches(matches)
        assert [len(pair) for pair in pairs] == [2, 1]
        assert expected_next_round_matches(3) == 2

    def test_pairing_is_stable_across_calls(self):
        matches = [FakeMatch(name) for name in ("c", "a", "d", "b")]
        first = [[m.id for m in p] for p in pair_round_matches(matches)]
        second = [[m.id for m in p] for p in pair_round_matches(list(reversed(matches)))]
        assert first == second


class TestWinnerResolution:
    def test_winner_and_loser(self):
        match = FakeMatch("m", player1_id=10, player2_id=20, player1_score=2, player2_score=1)
        assert resolve_winner_id(match) == 10
        assert resolve_loser_id(match) == 20

    def test_missing_score_has_no_winner(self):
        match = FakeMatch("m", player1_score=11)
        assert resolve_winner_id(match) is None
        assert resolve_loser_id(match) is None

    def test_tie_has_no_winner(self):
        match = FakeMatch("m", player1_score=5, player2_score=5)
        assert resolve_winner_id(match) is None


class TestBestOfThreePolicy:
    @pytest.mark.parametrize(
        "current,last,expected",
        [(1, 4, False), (2, 4, True), (3, 4, True), (1, 3, True), (1, 2, True)],
    )
    def test_next_round_policy(self, current, last, expected):
        assert is_best_of_three_round(current, last) is expected

    def test_round_being_created(self):
        # 3-round bracket: quarterfinals single game, semifinal and final bo3
        assert not is_best_of_three_for_round(1, 3)
        assert is_best_of_three_for_round(2, 3)
        assert is_best_of_three_for_round(3, 3)


class TestSizing:
    @pytest.mark.parametrize("n,size", [(1, 1), (2, 2), (3, 4), (5, 8), (8, 8), (9, 16)])
    def test_bracket_size(self, n, size):
        assert bracket_size(n) == size

    @pytest.mark.parametrize("n,rounds", [(1, 0), (2, 1), (3, 2), (4, 2), (5, 3), (16, 4)])
    def test_total_rounds(self, n, rounds):
        assert total_rounds(n) == rounds

    def test_next_position(self):
        assert [get_next_bracket_position(p) for p in range(1, 9)] == [1, 1, 2, 2, 3, 3, 4, 4]


class TestSeeding:
    def test_seed_order(self):
        assert seed_order(2) == [1, 2]
        assert seed_order(4) == [1, 4, 2, 3]
        assert seed_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]

    def test_seed_order_rejects_non_power_of_two(self):
        with pytest.raises(ValueError):
            seed_order(6)

    def test_top_seeds_get_the_byes(self):
        slots = seed_slots([10, 20, 30, 40, 50])
        assert slots == [10, None, 40, 50, 20, None, 30, None]


def test_knockout_round_bonus_three_rounds():
    assert [knockout_round_bonus(r, 3) for r in (3, 2, 1)] == [60, 30, 20]


def test_knockout_round_bonus_deep_bracket():
    assert [knockout_round_bonus(r, 5) for r in (5, 4, 3, 2, 1)] == [60, 30, 20, 15, 10]
