"""
Integration tests for tournament setup and administration.

Covers the three formats, knockout generation from groups, the completion
guard on manual status edits, deletion and the full recalculation.
"""

import pytest

from pongrank.db import repository
from pongrank.errors import ConflictError, NotFoundError, ValidationError
from pongrank.services import (
    create_tournament,
    delete_tournament,
    edit_tournament,
    generate_knockout,
    recalculate_all,
    submit_game_score,
    submit_single_game_score,
    update_tournament_details,
    update_tournament_status,
)


def _complete_all(session, matches):
    for match in matches:
        if match.best_of_three:
            submit_game_score(session, match.id, 1, 11, 5)
            submit_game_score(session, match.id, 2, 11, 5)
        else:
            submit_single_game_score(session, match.id, 11, 5)


class TestCreateTournament:
    def test_league_round_robin(self, db_session, players):
        result = create_tournament(
            db_session, "League", "league", [p.id for p in players[:4]], rounds=2
        )

        matches = repository.list_matches(db_session, tournament_id=result.tournament_id)
        assert result.matches_created == 12
        assert len(matches) == 12
        assert {m.round for m in matches} == {1, 2}
        assert all(m.stage == "league" and m.status == "scheduled" for m in matches)
        assert [e.title for e in result.notifications] == ["Tournament created"]

    def test_league_manual_matches(self, db_session, players):
        a, b, c = (p.id for p in players[:3])
        result = create_tournament(
            db_session, "Friendlies", "league", [a, b, c], manual_matches=[(a, b), (b, c)]
        )
        assert result.matches_created == 2

    def test_knockout_byes_and_placeholders(self, db_session, players):
        result = create_tournament(db_session, "Five", "knockout", [p.id for p in players[:5]])

        assert result.byes == 3
        assert result.placeholders == 3
        assert result.matches_created == 7
        tbd = repository.find_tbd_player(db_session)
        tournament = repository.get_tournament(db_session, result.tournament_id, with_relations=True)
        assert tbd.id not in {p.id for p in tournament.players}

    def test_groups(self, db_session, players):
        result = create_tournament(
            db_session, "Groups", "groups_knockout", [p.id for p in players], group_count=2
        )

        matches = repository.list_matches(db_session, tournament_id=result.tournament_id)
        assert result.matches_created == 12
        by_group = {}
        for match in matches:
            by_group.setdefault(match.group_name, set()).update((match.player1_id, match.player2_id))
        ids = [p.id for p in players]
        assert by_group == {
            "Group A": {ids[0], ids[2], ids[4], ids[6]},
            "Group B": {ids[1], ids[3], ids[5], ids[7]},
        }
        tournament = repository.get_tournament(db_session, result.tournament_id)
        assert (tournament.group_count, tournament.advance_count) == (2, 2)

    def test_group_assignments(self, db_session, players):
        ids = [p.id for p in players[:4]]
        result = create_tournament(
            db_session, "Picked", "groups_knockout", ids,
            group_assignments={"Red": [ids[0], ids[1]], "Blue": [ids[2], ids[3]]},
        )
        matches = repository.list_matches(db_session, tournament_id=result.tournament_id)
        assert sorted(m.group_name for m in matches) == ["Blue", "Red"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "  "},
            {"format": "swiss"},
            {"status": "completed"},
            {"rounds": 0},
        ],
    )
    def test_validation(self, db_session, players, kwargs):
        args = {"name": "Cup", "format": "league", "player_ids": [p.id for p in players[:2]], **kwargs}
        with pytest.raises(ValidationError):
            create_tournament(db_session, **args)

    def test_needs_two_distinct_players(self, db_session, players):
        with pytest.raises(ValidationError):
            create_tournament(db_session, "Solo", "league", [players[0].id])
        with pytest.raises(ValidationError):
            create_tournament(db_session, "Twice", "league", [players[0].id, players[0].id])

    def test_unknown_player(self, db_session, players):
        with pytest.raises(NotFoundError):
            create_tournament(db_session, "Ghost", "league", [players[0].id, 9999])

    def test_manual_pair_outside_participants(self, db_session, players):
        a, b, c = (p.id for p in players[:3])
        with pytest.raises(ValidationError):
            create_tournament(db_session, "Bad", "knockout", [a, b], manual_matches=[(a, c)])

    def test_knockout_manual_pairs_use_each_player_once(self, db_session, players):
        a, b, c = (p.id for p in players[:3])
        with pytest.raises(ValidationError):
            create_tournament(
                db_session, "Bad", "knockout", [a, b, c], manual_matches=[(a, b), (a, c)]
            )
        assert repository.find_tbd_player(db_session) is None


class TestGenerateKnockout:
    @pytest.fixture
    def groups_cup(self, db_session, players):
        result = create_tournament(
            db_session, "Groups", "groups_knockout", [p.id for p in players], group_count=2
        )
        return result.tournament_id

    def test_top_two_of_each_group_advance(self, db_session, groups_cup, players):
        group_matches = repository.list_matches(db_session, tournament_id=groups_cup, stage="group")
        # Higher seed (player 1 of every pairing) always wins
        _complete_all(db_session, group_matches)
        ratings = {p.id: repository.get_player(db_session, p.id).rating for p in players}

        result = generate_knockout(db_session, groups_cup)

        ids = [p.id for p in players]
        # Group A: Ana, Cleo, Eli, Gus; Group B: Ben, Dev, Fay, Hal
        assert result.advanced_player_ids == [ids[0], ids[1], ids[2], ids[3]]
        for player_id in result.advanced_player_ids:
            assert repository.get_player(db_session, player_id).rating == ratings[player_id] + 15
        assert repository.get_player(db_session, ids[4]).rating == ratings[ids[4]]

        knockout = repository.list_matches(db_session, tournament_id=groups_cup, stage="knockout")
        assert len(knockout) == 3
        first = sorted((m for m in knockout if m.round == 1), key=lambda m: m.bracket_position)
        # Group winners meet the other group's runner-up
        assert [(m.player1_id, m.player2_id) for m in first] == [(ids[0], ids[3]), (ids[1], ids[2])]
        assert [e.title for e in result.notifications] == [
            "Players advanced to the knockout stage",
            "Knockout stage created",
        ]

    def test_only_once(self, db_session, groups_cup):
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=groups_cup))
        generate_knockout(db_session, groups_cup)

        with pytest.raises(ConflictError):
            generate_knockout(db_session, groups_cup)

    def test_wrong_format(self, db_session, players):
        result = create_tournament(db_session, "League", "league", [p.id for p in players[:3]])
        with pytest.raises(ValidationError):
            generate_knockout(db_session, result.tournament_id)

    def test_full_groups_knockout_settlement(self, db_session, groups_cup, players):
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=groups_cup))
        generate_knockout(db_session, groups_cup)

        for round_number in (1, 2):
            _complete_all(
                db_session,
                repository.list_matches(
                    db_session, tournament_id=groups_cup, stage="knockout", round=round_number
                ),
            )

        tournament = repository.get_tournament(db_session, groups_cup)
        assert tournament.status == "completed"
        assert tournament.settled_at is not None


class TestStatusChanges:
    @pytest.fixture
    def league(self, db_session, players):
        result = create_tournament(db_session, "League", "league", [p.id for p in players[:3]])
        return result.tournament_id

    def test_draft_to_active(self, db_session, league):
        change = update_tournament_status(db_session, league, "active")
        assert change.changed
        assert change.settlement is None
        assert repository.get_tournament(db_session, league).status == "active"

    def test_completion_guard(self, db_session, league):
        matches = repository.list_matches(db_session, tournament_id=league)
        _complete_all(db_session, matches[:2])

        with pytest.raises(ConflictError):
            update_tournament_status(db_session, league, "completed")
        assert repository.get_tournament(db_session, league).status == "draft"

    def test_completion_settles_once(self, db_session, league, players):
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=league))
        before = [repository.get_player(db_session, p.id).rating for p in players[:3]]

        change = update_tournament_status(db_session, league, "completed")

        assert change.settlement is not None
        after = [repository.get_player(db_session, p.id).rating for p in players[:3]]
        assert all(a > b for a, b in zip(after, before))
        assert "Tournament completed" in [e.title for e in change.notifications]

        again = update_tournament_status(db_session, league, "completed")
        assert not again.changed
        assert again.settlement is None
        assert [repository.get_player(db_session, p.id).rating for p in players[:3]] == after

    def test_completed_cannot_be_reopened(self, db_session, league):
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=league))
        update_tournament_status(db_session, league, "completed")

        with pytest.raises(ConflictError):
            update_tournament_status(db_session, league, "active")

    def test_unknown_status(self, db_session, league):
        with pytest.raises(ValidationError):
            update_tournament_status(db_session, league, "archived")

    def test_edit_details(self, db_session, league):
        update_tournament_details(db_session, league, name="Renamed", location="Hall 2")

        tournament = repository.get_tournament(db_session, league)
        assert (tournament.name, tournament.location) == ("Renamed", "Hall 2")

        with pytest.raises(ValidationError):
            update_tournament_details(db_session, league, format="knockout")
        with pytest.raises(ValidationError):
            update_tournament_details(db_session, league, name="")


class TestEditTournament:
    def _ids(self, db_session, tournament_id):
        tournament = repository.get_tournament(db_session, tournament_id, with_relations=True)
        return sorted(p.id for p in tournament.players)

    def test_rejected_completion_keeps_details(self, db_session, players):
        result = create_tournament(db_session, "League", "league", [p.id for p in players[:3]])

        with pytest.raises(ConflictError):
            edit_tournament(db_session, result.tournament_id, status="completed", name="Renamed")

        tournament = repository.get_tournament(db_session, result.tournament_id)
        assert (tournament.name, tournament.status) == ("League", "draft")

    def test_league_added_player_gets_fixtures(self, db_session, players):
        a, b, c, d = (p.id for p in players[:4])
        result = create_tournament(db_session, "League", "league", [a, b, c], rounds=2)

        edit = edit_tournament(db_session, result.tournament_id, player_ids=[a, b, c, d])

        assert edit.players_added == [d]
        assert edit.matches_created == 6
        matches = repository.list_matches(db_session, tournament_id=result.tournament_id)
        assert len(matches) == 12
        assert sum(1 for m in matches if d in (m.player1_id, m.player2_id)) == 6
        assert self._ids(db_session, result.tournament_id) == sorted([a, b, c, d])
        assert [e.title for e in edit.notifications] == ["Tournament players updated"]

    def test_league_removed_player_loses_fixtures(self, db_session, players):
        a, b, c = (p.id for p in players[:3])
        result = create_tournament(db_session, "League", "league", [a, b, c])
        played = next(
            m for m in repository.list_matches(db_session, tournament_id=result.tournament_id)
            if {m.player1_id, m.player2_id} == {a, c}
        )
        submit_single_game_score(db_session, played.id, 11, 5)
        rating = repository.get_player(db_session, a).rating

        edit = edit_tournament(db_session, result.tournament_id, player_ids=[a, b])

        assert edit.players_removed == [c]
        assert edit.matches_removed == 2
        (left,) = repository.list_matches(db_session, tournament_id=result.tournament_id)
        assert {left.player1_id, left.player2_id} == {a, b}
        # Ratings already applied stay
        assert repository.get_player(db_session, a).rating == rating

    def test_unstarted_knockout_is_rebuilt(self, db_session, players):
        ids = [p.id for p in players[:5]]
        result = create_tournament(db_session, "Cup", "knockout", ids[:4])

        edit = edit_tournament(db_session, result.tournament_id, player_ids=ids)

        assert edit.matches_removed == 3
        assert edit.matches_created == 7
        first = repository.list_matches(
            db_session, tournament_id=result.tournament_id, stage="knockout", round=1
        )
        assert len(first) == 4
        assert sum(1 for m in first if m.status == "completed") == 3

    def test_started_knockout_keeps_its_players(self, db_session, players):
        ids = [p.id for p in players[:5]]
        result = create_tournament(db_session, "Cup", "knockout", ids[:4])
        opener = repository.list_matches(
            db_session, tournament_id=result.tournament_id, stage="knockout", round=1
        )[0]
        _complete_all(db_session, [opener])

        with pytest.raises(ConflictError):
            edit_tournament(db_session, result.tournament_id, player_ids=ids)
        assert self._ids(db_session, result.tournament_id) == sorted(ids[:4])

    def test_groups_added_player_joins_smallest_group(self, db_session, players):
        ids = [p.id for p in players[:6]]
        result = create_tournament(
            db_session, "Groups", "groups_knockout", ids[:5], group_count=2
        )

        edit = edit_tournament(db_session, result.tournament_id, player_ids=ids)

        assert edit.matches_created == 2
        group_b = [
            m for m in repository.list_matches(db_session, tournament_id=result.tournament_id)
            if m.group_name == "Group B"
        ]
        assert len(group_b) == 3
        assert ids[5] in {m.player2_id for m in group_b}

    def test_completed_tournament_players_are_final(self, db_session, players):
        a, b, c = (p.id for p in players[:3])
        result = create_tournament(db_session, "League", "league", [a, b])
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=result.tournament_id))
        update_tournament_status(db_session, result.tournament_id, "completed")

        with pytest.raises(ConflictError):
            edit_tournament(db_session, result.tournament_id, player_ids=[a, b, c])

    def test_completion_checked_against_reworked_matches(self, db_session, players):
        a, b, c = (p.id for p in players[:3])
        result = create_tournament(db_session, "League", "league", [a, b])
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=result.tournament_id))

        with pytest.raises(ConflictError):
            edit_tournament(
                db_session, result.tournament_id, status="completed", player_ids=[a, b, c]
            )

        assert self._ids(db_session, result.tournament_id) == sorted([a, b])
        assert len(repository.list_matches(db_session, tournament_id=result.tournament_id)) == 1
        assert repository.get_tournament(db_session, result.tournament_id).settled_at is None

    def test_unchanged_player_list_is_not_an_edit(self, db_session, players):
        ids = [p.id for p in players[:2]]
        result = create_tournament(db_session, "League", "league", ids)

        edit = edit_tournament(db_session, result.tournament_id, player_ids=list(reversed(ids)))

        assert edit.players_added == [] and edit.players_removed == []
        assert len(edit.notifications) == 0


def test_delete_tournament_keeps_ratings(db_session, players):
    result = create_tournament(db_session, "League", "league", [p.id for p in players[:2]])
    (match,) = repository.list_matches(db_session, tournament_id=result.tournament_id)
    submit_single_game_score(db_session, match.id, 11, 5)
    rating = repository.get_player(db_session, players[0].id).rating

    outbox = delete_tournament(db_session, result.tournament_id)

    assert [e.title for e in outbox] == ["Tournament deleted"]
    with pytest.raises(NotFoundError):
        repository.get_tournament(db_session, result.tournament_id)
    assert repository.list_matches(db_session, tournament_id=result.tournament_id) == []
    assert repository.get_player(db_session, players[0].id).rating == rating


class TestRecalculateAll:
    def test_rebuild_reproduces_live_ratings(self, db_session, make_player):
        alice = make_player("Alice")
        bob = make_player("Bob")
        result = create_tournament(db_session, "League", "league", [alice.id, bob.id])
        (match,) = repository.list_matches(db_session, tournament_id=result.tournament_id)
        submit_single_game_score(db_session, match.id, 11, 5)
        update_tournament_status(db_session, result.tournament_id, "completed")

        live = {
            p.id: (p.rating, p.wins, p.losses, p.level)
            for p in (repository.get_player(db_session, pid) for pid in (alice.id, bob.id))
        }
        # 1000 + 16 + 5, then 1st of 2: 56 + round(3 * 1.5) + 10
        assert live[alice.id][0] == 1092
        # 1000 - 16, then 2nd of 2: 39 + round(5 * 1.5)
        assert live[bob.id][0] == 1031

        repository.update_player(db_session, alice.id, rating=1500, wins=9)
        db_session.commit()

        stats = recalculate_all(db_session)

        assert stats.matches_replayed == 1
        assert stats.tournaments_settled == 1
        rebuilt = {
            p.id: (p.rating, p.wins, p.losses, p.level)
            for p in (repository.get_player(db_session, pid) for pid in (alice.id, bob.id))
        }
        assert rebuilt == live

    def test_advance_bonus_replayed(self, db_session, players):
        result = create_tournament(
            db_session, "Groups", "groups_knockout", [p.id for p in players[:5]], group_count=2
        )
        tid = result.tournament_id
        _complete_all(db_session, repository.list_matches(db_session, tournament_id=tid))
        generate_knockout(db_session, tid)

        stats = recalculate_all(db_session)

        assert stats.advance_bonuses == 4
        assert stats.matches_skipped == 0
        assert "recalculation complete" in stats.summary()

    def test_empty_database(self, db_session):
        stats = recalculate_all(db_session)
        assert stats.players_reset == 0
        assert stats.matches_replayed == 0
