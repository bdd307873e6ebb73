"""Unit tests for the pure seeding helpers used by tournament setup."""

from types import SimpleNamespace

from pongrank.services.tournament_setup import (
    deal_into_groups,
    group_name,
    knockout_seeds,
    seed_by_rating,
    seeded_pairs,
)


def test_group_names():
    assert [group_name(i) for i in range(3)] == ["Group A", "Group B", "Group C"]


def test_seed_by_rating_breaks_ties_by_id():
    players = [
        SimpleNamespace(id=3, rating=1000),
        SimpleNamespace(id=1, rating=1200),
        SimpleNamespace(id=2, rating=1000),
    ]
    assert seed_by_rating(players) == [1, 2, 3]


def test_deal_into_groups_snakes_by_seed():
    assert deal_into_groups([1, 2, 3, 4, 5], 2) == [[1, 3, 5], [2, 4]]
    assert deal_into_groups([1, 2, 3], 3) == [[1], [2], [3]]


def test_seeded_pairs_full_bracket():
    assert seeded_pairs([1, 2, 3, 4]) == [(1, 4), (2, 3)]


def test_seeded_pairs_with_byes():
    assert seeded_pairs([10, 20, 30]) == [(10, None), (20, 30)]
    pairs = seeded_pairs([1, 2, 3, 4, 5, 6])
    assert pairs == [(1, None), (4, 5), (2, None), (3, 6)]


def test_knockout_seeds_cross_groups():
    ranked = {"Group B": [4, 5, 6], "Group A": [1, 2, 3]}
    seeds = knockout_seeds(ranked, 2)

    assert seeds == [1, 4, 2, 5]
    # Winner of A meets runner-up of B in the first round
    assert seeded_pairs(seeds) == [(1, 5), (4, 2)]


def test_knockout_seeds_short_group():
    assert knockout_seeds({"Group A": [1], "Group B": [2, 3]}, 2) == [1, 2, 3]
