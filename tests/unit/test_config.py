"""Unit tests for settings validation."""

import pytest
from pydantic import ValidationError

from pongrank.config import Settings


def test_defaults(monkeypatch):
    for var in ("DEFAULT_RATING", "LOG_LEVEL", "TBD_PLAYER_NAME", "NEXT_ROUND_DELAY_HOURS"):
        monkeypatch.delenv(var, raising=False)
    s = Settings(_env_file=None)

    assert s.default_rating == 1000
    assert s.default_level == 3
    assert s.k_factor_single_game == 32
    assert s.k_factor_best_of_three_game == 16
    assert s.next_round_delay_hours == 24
    assert s.group_advance_bonus == 15
    assert "TBD" in s.tbd_player_name


def test_log_level_is_normalised():
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"


def test_invalid_log_level():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="LOUD")


def test_tbd_name_must_carry_marker():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, tbd_player_name="Placeholder")


@pytest.mark.parametrize("level", [0, 6])
def test_default_level_range(level):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, default_level=level)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DEFAULT_RATING", "1200")
    monkeypatch.setenv("USE_TOURNAMENT_K_FACTORS", "true")

    s = Settings(_env_file=None)

    assert s.default_rating == 1200
    assert s.use_tournament_k_factors is True
