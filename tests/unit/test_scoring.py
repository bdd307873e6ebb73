"""Unit tests for the best-of-three resolver and score validation."""

import pytest

from pongrank.errors import ValidationError
from pongrank.scoring import (
    BestOfThreeState,
    GameScore,
    validate_game_score,
    validate_single_game_score,
)


class TestGameScore:
    def test_unplayed_game_is_undecided(self):
        assert not GameScore().is_decided
        assert GameScore().winner is None

    def test_zero_zero_is_undecided(self):
        assert not GameScore(0, 0).is_decided

    def test_winner(self):
        assert GameScore(11, 7).winner == 1
        assert GameScore(9, 11).winner == 2


class TestValidation:
    @pytest.mark.parametrize("p1,p2", [(11, 9), (13, 11), (21, 19), (0, 11), (25, 23)])
    def test_valid_game_scores(self, p1, p2):
        validate_game_score(p1, p2)

    @pytest.mark.parametrize("p1,p2", [(10, 8), (11, 10), (12, 12), (5, 3)])
    def test_invalid_game_scores(self, p1, p2):
        with pytest.raises(ValidationError):
            validate_game_score(p1, p2)

    @pytest.mark.parametrize("p1,p2", [(-1, 11), (11.0, 9), ("11", 9), (True, 11)])
    def test_non_integer_or_negative_rejected(self, p1, p2):
        with pytest.raises(ValidationError):
            validate_game_score(p1, p2)

    def test_single_game_tie_rejected_only_when_completing(self):
        validate_single_game_score(5, 5, completing=False)
        with pytest.raises(ValidationError, match="tied"):
            validate_single_game_score(5, 5, completing=True)

    def test_single_game_any_margin(self):
        validate_single_game_score(3, 2, completing=True)


class TestBestOfThreeState:
    def test_first_game(self):
        state = BestOfThreeState().with_game(1, 11, 9)

        assert state.player1_wins == 1
        assert state.player2_wins == 0
        assert state.status == "in_progress"
        assert state.current_game == 2
        assert not state.is_complete

    def test_two_nil_completes(self):
        state = BestOfThreeState().with_game(1, 11, 9).with_game(2, 11, 5)

        assert state.is_complete
        assert state.winner == 1
        assert state.status == "completed"
        assert state.current_game == 2
        assert state.decided_game_winners() == [True, True]

    def test_one_one_then_decider(self):
        state = (
            BestOfThreeState()
            .with_game(1, 11, 9)
            .with_game(2, 8, 11)
        )
        assert state.current_game == 3
        assert not state.is_complete

        state = state.with_game(3, 7, 11)
        assert state.winner == 2
        assert state.current_game == 3
        assert state.decided_game_winners() == [True, False, False]

    def test_resubmitting_a_game_rederives_wins(self):
        """Wins are counted from the slots, never incremented."""
        state = BestOfThreeState().with_game(1, 11, 9).with_game(1, 11, 9)
        assert state.player1_wins == 1

        state = state.with_game(1, 9, 11)
        assert state.player1_wins == 0
        assert state.player2_wins == 1

    @pytest.mark.parametrize("game", [0, 4, -1])
    def test_editing_game_out_of_range(self, game):
        with pytest.raises(ValidationError):
            BestOfThreeState().with_game(game, 11, 9)

    def test_state_is_immutable(self):
        start = BestOfThreeState()
        start.with_game(1, 11, 9)
        assert start.player1_wins == 0

    def test_from_pairs_round_trip(self):
        pairs = ((11, 9), (None, None), (None, None))
        assert BestOfThreeState.from_pairs(pairs).as_pairs() == pairs

    def test_from_pairs_needs_three_slots(self):
        with pytest.raises(ValueError):
            BestOfThreeState.from_pairs(((11, 9),))
