"""Unit tests for percentile levels."""

import pytest

from pongrank.db import repository
from pongrank.rating.levels import (
    compute_levels,
    level_for_percentile,
    recalculate_player_levels,
    refresh_levels_best_effort,
)


@pytest.mark.parametrize(
    "percentile,level",
    [(100, 5), (80, 5), (79.9, 4), (60, 4), (40, 3), (20, 2), (19.99, 1), (0, 1)],
)
def test_level_for_percentile(percentile, level):
    assert level_for_percentile(percentile) == level


def test_ten_player_population():
    ratings = [(i, 2000 - i * 10) for i in range(1, 11)]
    levels = compute_levels(ratings)
    assert [levels[i] for i in range(1, 11)] == [5, 5, 5, 4, 4, 3, 3, 2, 2, 1]


def test_two_players():
    assert compute_levels([(1, 1200), (2, 1000)]) == {1: 5, 2: 3}


def test_single_player_is_top_level():
    assert compute_levels([(7, 900)]) == {7: 5}


def test_equal_ratings_ordered_by_id():
    levels = compute_levels([(3, 1000), (1, 1000), (2, 1000), (4, 1000), (5, 1000)])
    assert levels == {1: 5, 2: 5, 3: 4, 4: 3, 5: 2}


def test_empty_population():
    assert compute_levels([]) == {}


def test_recalculate_persists_changes_and_skips_tbd(db_session, make_player):
    top = make_player("Top", rating=1500, level=1)
    mid = make_player("Mid", rating=1000, level=3)
    tbd = repository.get_or_create_tbd_player(db_session)
    db_session.commit()

    changed = recalculate_player_levels(db_session)
    db_session.commit()

    assert changed == 1
    assert repository.get_player(db_session, top.id).level == 5
    assert repository.get_player(db_session, mid.id).level == 3
    # Placeholder keeps its fixed level
    assert repository.get_player(db_session, tbd.id).level == 3


def test_recalculate_is_idempotent(db_session, make_player):
    make_player("A", rating=1200, level=1)
    make_player("B", rating=1100, level=1)
    recalculate_player_levels(db_session)
    db_session.commit()

    assert recalculate_player_levels(db_session) == 0


def test_refresh_best_effort_never_raises(db_session, monkeypatch):
    def boom(session):
        raise RuntimeError("database went away")

    monkeypatch.setattr("pongrank.rating.levels.recalculate_player_levels", boom)
    assert refresh_levels_best_effort(db_session) is False
