"""
Unit tests for the Elo calculator.

Tests the core rating logic to ensure:
- Favorites winning gain less than underdogs winning
- Elo deltas are zero-sum; only the winner bonus is not mirrored
- Best-of-three matches are rated game by game at the smaller K
- Rounding is half away from zero
"""

import pytest

from pongrank.rating.calculator import (
    calculate_best_of_three,
    calculate_single_game,
    elo_delta,
    expected_score,
    opponent_strength_bonus,
    round_half_away,
)
from pongrank.rating.constants import single_game_k_factor
from pongrank.config import settings


class TestExpectedScore:
    def test_equal_ratings(self):
        assert expected_score(1000, 1000) == pytest.approx(0.5)

    def test_400_point_gap(self):
        """A 400-point favorite is expected to win 10 times out of 11."""
        assert expected_score(1400, 1000) == pytest.approx(10 / 11)
        assert expected_score(1000, 1400) == pytest.approx(1 / 11)

    def test_extreme_gap_does_not_overflow(self):
        assert expected_score(0, 10**6) == pytest.approx(0.0)


class TestRounding:
    @pytest.mark.parametrize(
        "value,expected",
        [(2.5, 3), (-2.5, -3), (2.4, 2), (-2.4, -2), (0.5, 1), (16.0, 16)],
    )
    def test_half_away_from_zero(self, value, expected):
        assert round_half_away(value) == expected


class TestEloDelta:
    def test_favorite_wins(self):
        """Winning as the favorite gains few points."""
        assert elo_delta(1400, 1000, True, 32) == 3

    def test_underdog_wins(self):
        """Beating a much stronger player gains a lot."""
        assert elo_delta(1000, 1400, True, 32) == 29

    def test_antisymmetric(self):
        for a, b in [(1000, 1000), (1234, 987), (1500, 900), (1003, 1001)]:
            assert elo_delta(a, b, True, 32) == -elo_delta(b, a, False, 32)

    def test_loss_is_never_positive(self):
        assert elo_delta(1000, 1400, False, 32) <= 0
        assert elo_delta(1400, 1000, False, 32) < 0


class TestOpponentStrengthBonus:
    @pytest.mark.parametrize(
        "level,bonus",
        [(5, 10), (4, 7), (3, 5), (2, 3), (1, 1), (None, 0), (0, 0), (6, 0)],
    )
    def test_bonus_by_loser_level(self, level, bonus):
        assert opponent_strength_bonus(level) == bonus


class TestSingleGame:
    def test_equal_players(self):
        """1000 vs 1000, loser level 3: delta 16, bonus 5."""
        update = calculate_single_game(1000, 1000, player1_won=True, loser_level=3)

        assert update.player1_delta == 16
        assert update.player2_delta == -16
        assert update.winner_bonus == 5
        assert update.player1_change == 21
        assert update.player2_change == -16
        assert update.player1_after == 1021
        assert update.player2_after == 984
        assert update.k_factor == 32
        assert update.games_rated == 1

    def test_bonus_goes_to_player2_when_they_win(self):
        update = calculate_single_game(1000, 1000, player1_won=False, loser_level=5)

        assert update.winner == 2
        assert update.player2_change == 16 + 10
        assert update.player1_change == -16

    def test_zero_sum_deltas(self):
        update = calculate_single_game(1312, 1187, player1_won=False, loser_level=2)
        assert update.player1_delta + update.player2_delta == 0

    def test_upset_flag(self):
        assert calculate_single_game(1000, 1200, player1_won=True).was_upset
        assert not calculate_single_game(1200, 1000, player1_won=True).was_upset

    def test_explicit_k(self):
        update = calculate_single_game(1000, 1000, player1_won=True, k=64)
        assert update.player1_delta == 32


class TestBestOfThree:
    def test_two_nil(self):
        update = calculate_best_of_three(
            1000, 1000, game_winners=[True, True], player1_won=True, loser_level=3
        )

        assert update.player1_delta == 16
        assert update.player1_change == 21
        assert update.player2_change == -16
        assert update.games_rated == 2
        assert update.k_factor == 16

    def test_two_one_moves_less_than_two_nil(self):
        """A lost game is rated too, so 2-1 gains less than 2-0."""
        update = calculate_best_of_three(
            1000, 1000, game_winners=[True, False, True], player1_won=True, loser_level=3
        )

        assert update.player1_delta == 8
        assert update.player2_delta == -8
        assert update.player1_change == 13
        assert update.games_rated == 3

    def test_every_game_uses_pre_match_ratings(self):
        update = calculate_best_of_three(
            1400, 1000, game_winners=[False, False], player1_won=False, loser_level=4
        )

        # Each game: 1000 beats 1400 at K=16 -> 16 * 10/11 = 14.5 -> 15
        assert update.player2_delta == 30
        assert update.player2_change == 37


class TestKFactorSelection:
    def test_default_single_game_k(self):
        assert single_game_k_factor() == 32
        assert single_game_k_factor(stage="knockout", is_final=True) == 32

    def test_tournament_k_factors_when_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "use_tournament_k_factors", True)

        assert single_game_k_factor() == 32
        assert single_game_k_factor(stage="league") == 48
        assert single_game_k_factor(stage="knockout", is_final=True) == 64
