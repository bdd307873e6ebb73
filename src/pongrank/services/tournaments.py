"""
Tournament administration - edits, deletion and full recalculation.

edit_tournament() changes details, participants and status in one
transaction. Changing participants reworks the matches: league and group
matches of removed players are deleted and added players get their
pairings, while an unstarted knockout bracket is rebuilt.

Completing a tournament by hand goes through the same guard as the bracket
does: every match of the terminal round must be completed first. The
terminal round is the last knockout round when knockout matches exist,
otherwise the tournament's last round. Only a real transition into
'completed' settles the tournament; saving 'completed' again is a no-op.

recalculate_all() rebuilds every rating from scratch:

1. Reset every player to the default rating/level and zero tallies
2. Clear the cached Elo deltas and settlement stamps
3. Replay every completed match in date order
4. Re-award the group-advance bonus for every generated knockout stage
5. Recompute levels, re-settle every completed tournament, recompute levels

Usage:
    with get_session() as session:
        stats = recalculate_all(session)
        print(stats.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from pongrank.bracket import max_round
from pongrank.config import settings
from pongrank.db import repository
from pongrank.db.models import Match, Player, Tournament
from pongrank.errors import ConflictError, ValidationError
from pongrank.match_statuses import TOURNAMENT_STATUSES
from pongrank.notifications import NotificationOutbox
from pongrank.rating.levels import recalculate_player_levels, refresh_levels_best_effort
from pongrank.services.match_results import replay_completion
from pongrank.services.settlement import SettlementResult, settle_tournament
from pongrank.services.tournament_setup import (
    SetupResult,
    build_bracket,
    group_name,
    load_participants,
    seed_by_rating,
    seeded_pairs,
)

logger = logging.getLogger(__name__)

# Fields an admin may edit besides status
EDITABLE_FIELDS = ("name", "description", "location", "start_date", "end_date")


@dataclass
class TournamentEdit:
    """Outcome of a tournament edit."""
    tournament_id: int
    previous_status: str
    status: str
    fields_changed: list[str] = field(default_factory=list)
    players_added: list[int] = field(default_factory=list)
    players_removed: list[int] = field(default_factory=list)
    matches_created: int = 0
    matches_removed: int = 0
    settlement: Optional[SettlementResult] = None
    notifications: NotificationOutbox = field(default_factory=NotificationOutbox)

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status


@dataclass
class RecalculationStats:
    """Statistics from a full rating recalculation."""
    players_reset: int = 0
    matches_replayed: int = 0
    matches_skipped: int = 0
    walkovers: int = 0
    advance_bonuses: int = 0
    tournaments_settled: int = 0
    levels_changed: int = 0
    elapsed_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> str:
        """Return a human-readable summary of the recalculation."""
        lines = [
            "Rating recalculation complete:",
            f"  Players reset:        {self.players_reset}",
            f"  Matches replayed:     {self.matches_replayed}",
            f"  Walkovers:            {self.walkovers}",
            f"  Skipped (no winner):  {self.matches_skipped}",
            f"  Advance bonuses:      {self.advance_bonuses}",
            f"  Tournaments settled:  {self.tournaments_settled}",
            f"  Levels changed:       {self.levels_changed}",
            f"  Elapsed:              {self.elapsed_seconds:.2f}s",
        ]
        if self.errors:
            lines.append(f"  Errors: {len(self.errors)}")
            for err in self.errors[:5]:
                lines.append(f"    - {err}")
        return "\n".join(lines)


# =============================================================================
# Tournament edits
# =============================================================================

def terminal_round_matches(tournament: Tournament) -> list[Match]:
    """Matches whose completion completes the tournament."""
    knockout = [m for m in tournament.matches if m.stage == "knockout"]
    candidates = knockout or list(tournament.matches)
    last_round = max_round(m.round for m in candidates)
    return [m for m in candidates if m.round == last_round]


def check_status_change(tournament: Tournament, status: str) -> bool:
    """
    Validate moving ``tournament`` to ``status`` against its current matches.

    Returns:
        True when the edit completes the tournament and so settles it

    Raises:
        ValidationError: Unknown status
        ConflictError: Reopening a completed tournament, or completing one
            whose terminal round is unfinished
    """
    if status not in TOURNAMENT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(TOURNAMENT_STATUSES)}")
    if tournament.status == status:
        return False
    if tournament.is_completed:
        raise ConflictError(f"Tournament {tournament.id} is completed and cannot be reopened")
    if status != "completed":
        return False

    terminal = terminal_round_matches(tournament)
    if not terminal:
        raise ConflictError(f"Tournament {tournament.id} has no matches to complete")
    unfinished = [m for m in terminal if m.status != "completed"]
    if unfinished:
        raise ConflictError(
            f"Tournament {tournament.id} cannot be completed: "
            f"{len(unfinished)} final-round matches are not completed"
        )
    return True


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationError("Tournament name is required")


def bracket_started(matches: Iterable[Match], tbd_id: Optional[int]) -> bool:
    """Whether any knockout match between two real players has been played."""
    return any(
        m.stage == "knockout"
        and m.status in ("in_progress", "completed")
        and tbd_id not in (m.player1_id, m.player2_id)
        for m in matches
    )


def _check_participant_change(session: Session, tournament: Tournament) -> None:
    if tournament.is_completed:
        raise ConflictError(f"Tournament {tournament.id} is completed; its players are final")
    if tournament.format == "knockout":
        tbd = repository.find_tbd_player(session)
        if bracket_started(tournament.matches, tbd.id if tbd else None):
            raise ConflictError(
                f"Tournament {tournament.id} has started its bracket; players cannot change"
            )
    elif tournament.format == "groups_knockout":
        if any(m.stage == "knockout" for m in tournament.matches):
            raise ConflictError(
                f"Tournament {tournament.id} already has its knockout stage; players cannot change"
            )


def _rework_league(
    session: Session,
    tournament: Tournament,
    player_ids: Sequence[int],
    added: Sequence[int],
    edit: TournamentEdit,
) -> None:
    played = {
        (m.round, frozenset((m.player1_id, m.player2_id)))
        for m in tournament.matches
    }
    now = datetime.utcnow()
    for player_id in added:
        for opponent_id in player_ids:
            if opponent_id == player_id:
                continue
            for round_number in range(1, (tournament.rounds or 1) + 1):
                key = (round_number, frozenset((player_id, opponent_id)))
                if key in played:
                    continue
                repository.create_match(
                    session,
                    tournament_id=tournament.id,
                    player1_id=player_id,
                    player2_id=opponent_id,
                    round=round_number,
                    stage="league",
                    status="scheduled",
                    date=now + timedelta(days=round_number),
                )
                played.add(key)
                edit.matches_created += 1


def _rework_groups(
    session: Session,
    tournament: Tournament,
    added: Sequence[int],
    edit: TournamentEdit,
) -> None:
    groups: dict[str, list[int]] = {}
    for match in tournament.matches:
        if match.stage != "group" or not match.group_name:
            continue
        members = groups.setdefault(match.group_name, [])
        for player_id in (match.player1_id, match.player2_id):
            if player_id not in members:
                members.append(player_id)

    start = datetime.utcnow() + timedelta(days=1)
    for player_id in added:
        if groups:
            target = min(sorted(groups), key=lambda name: len(groups[name]))
        else:
            target = group_name(0)
            groups[target] = []
        for opponent_id in groups[target]:
            repository.create_match(
                session,
                tournament_id=tournament.id,
                player1_id=opponent_id,
                player2_id=player_id,
                round=1,
                stage="group",
                group_name=target,
                status="scheduled",
                date=start,
            )
            edit.matches_created += 1
        groups[target].append(player_id)


def _apply_participants(
    session: Session,
    tournament: Tournament,
    players: Sequence[Player],
    edit: TournamentEdit,
) -> None:
    """
    Replace the participant list and rework the affected matches.

    League and group matches of removed players are deleted and new
    pairings are created for added players. An unstarted knockout bracket
    is rebuilt from scratch. Ratings already applied by deleted matches
    are kept.
    """
    player_ids = [p.id for p in players]
    removed = set(edit.players_removed)

    if tournament.format == "knockout":
        doomed = [m for m in tournament.matches if m.stage == "knockout"]
    else:
        doomed = [
            m for m in tournament.matches
            if m.player1_id in removed or m.player2_id in removed
        ]
    for match in doomed:
        session.delete(match)
    edit.matches_removed = len(doomed)
    session.flush()
    session.expire(tournament, ["matches"])
    tournament.players = list(players)

    if tournament.format == "knockout":
        rebuilt = SetupResult(tournament_id=tournament.id, format=tournament.format)
        start = datetime.utcnow() + timedelta(days=1)
        build_bracket(session, tournament, seeded_pairs(seed_by_rating(players)), start, rebuilt)
        edit.matches_created += rebuilt.matches_created
    elif tournament.format == "league":
        _rework_league(session, tournament, player_ids, edit.players_added, edit)
    else:
        _rework_groups(session, tournament, edit.players_added, edit)

    session.flush()
    session.expire(tournament, ["matches"])


def edit_tournament(
    session: Session,
    tournament_id: int,
    status: Optional[str] = None,
    player_ids: Optional[Sequence[int]] = None,
    **fields: Any,
) -> TournamentEdit:
    """
    Edit a tournament's details, participants and status as one unit.

    Either every part of the edit lands or none does. Participant changes
    run first, so a completion in the same edit is checked against the
    reworked matches. Only a real transition into 'completed' settles the
    tournament.

    Raises:
        NotFoundError: Unknown tournament or player
        ValidationError: Unknown field or status, empty name, bad player list
        ConflictError: Reopening or re-entering players into a completed
            tournament, changing players once play has started, or
            completing with an unfinished terminal round
    """
    _check_fields(fields)
    tournament = repository.get_tournament(session, tournament_id, with_relations=True)
    edit = TournamentEdit(
        tournament_id=tournament.id,
        previous_status=tournament.status,
        status=status or tournament.status,
        fields_changed=sorted(fields),
    )

    players: Optional[list[Player]] = None
    if player_ids is not None:
        players = load_participants(session, player_ids)
        current = [p.id for p in tournament.players]
        edit.players_added = [pid for pid in player_ids if pid not in current]
        edit.players_removed = [pid for pid in current if pid not in player_ids]
        if edit.players_added or edit.players_removed:
            _check_participant_change(session, tournament)
        else:
            players = None

    completing = False
    if status is not None and players is None:
        completing = check_status_change(tournament, status)

    def work(s: Session) -> Optional[SettlementResult]:
        nonlocal completing
        if players is not None:
            _apply_participants(s, tournament, players, edit)
            if status is not None:
                completing = check_status_change(tournament, status)
        for key, value in fields.items():
            setattr(tournament, key, value.strip() if key == "name" else value)
        if status is None or status == tournament.status:
            return None
        tournament.status = status
        if not completing:
            return None
        return settle_tournament(s, tournament, edit.notifications)

    edit.settlement = repository.run_transaction(session, work)

    if edit.fields_changed:
        logger.info("Tournament %d fields edited: %s", tournament.id, ", ".join(edit.fields_changed))
    if players is not None:
        logger.info(
            "Tournament %d players: +%d -%d, matches: +%d -%d",
            tournament.id, len(edit.players_added), len(edit.players_removed),
            edit.matches_created, edit.matches_removed,
        )
        edit.notifications.add(
            title="Tournament players updated",
            message=(
                f'"{tournament.name}": {len(edit.players_added)} players added, '
                f"{len(edit.players_removed)} removed"
            ),
            type="tournament",
        )
    if edit.changed:
        logger.info("Tournament %d status %s -> %s", tournament.id, edit.previous_status, edit.status)
    if edit.settlement is not None:
        refresh_levels_best_effort(session)
        logger.info("Tournament %d completed by hand and settled", tournament.id)
        edit.notifications.add(
            title="Tournament completed",
            message=f'"{tournament.name}" has been completed',
            type="tournament",
        )
    return edit


def update_tournament_status(session: Session, tournament_id: int, status: str) -> TournamentEdit:
    """Change a tournament's status, settling it on completion."""
    return edit_tournament(session, tournament_id, status=status)


def update_tournament_details(session: Session, tournament_id: int, **fields: Any) -> TournamentEdit:
    """Edit descriptive fields (see EDITABLE_FIELDS)."""
    return edit_tournament(session, tournament_id, **fields)


def delete_tournament(session: Session, tournament_id: int) -> NotificationOutbox:
    """
    Delete a tournament and all of its matches.

    Ratings already applied by its matches and settlement are kept.
    """
    tournament = repository.get_tournament(session, tournament_id, with_relations=True)
    name = tournament.name
    match_count = len(tournament.matches)

    def work(s: Session) -> None:
        s.delete(tournament)
        s.flush()

    repository.run_transaction(session, work)
    logger.info("Deleted tournament %d (%d matches)", tournament_id, match_count)
    outbox = NotificationOutbox()
    outbox.add(
        title="Tournament deleted",
        message=f'Tournament "{name}" and its {match_count} matches were deleted',
        type="tournament",
    )
    return outbox


# =============================================================================
# Full recalculation
# =============================================================================

def _reset(session: Session, stats: RecalculationStats) -> None:
    result = session.execute(
        update(Player).values(
            rating=settings.default_rating,
            level=settings.default_level,
            wins=0,
            losses=0,
        )
    )
    stats.players_reset = result.rowcount
    session.execute(
        update(Match).values(
            player1_elo_delta=None,
            player2_elo_delta=None,
            winner_bonus=None,
            settled_at=None,
        )
    )
    session.execute(update(Tournament).values(settled_at=None))


def _replay_matches(session: Session, stats: RecalculationStats) -> None:
    matches = list(
        session.scalars(
            select(Match)
            .where(Match.status == "completed")
            .order_by(Match.date, Match.created_at, Match.id)
            .execution_options(populate_existing=True)
        )
    )
    for match in matches:
        if match.winner_id is None:
            stats.matches_skipped += 1
            stats.errors.append(f"Match {match.id} is completed without a winner")
            continue
        if replay_completion(session, match) is None:
            stats.walkovers += 1
        else:
            stats.matches_replayed += 1


def _replay_advance_bonuses(session: Session, stats: RecalculationStats) -> None:
    tbd = repository.find_tbd_player(session)
    first_round = session.scalars(
        select(Match)
        .join(Tournament, Match.tournament_id == Tournament.id)
        .where(
            Tournament.format == "groups_knockout",
            Match.stage == "knockout",
            Match.round == 1,
        )
    )
    for match in first_round:
        for player_id in (match.player1_id, match.player2_id):
            if tbd is not None and player_id == tbd.id:
                continue
            repository.increment_player(session, player_id, rating=settings.group_advance_bonus)
            stats.advance_bonuses += 1


def _resettle(session: Session, stats: RecalculationStats) -> None:
    tournaments = session.scalars(
        select(Tournament)
        .where(Tournament.status == "completed")
        .order_by(Tournament.end_date, Tournament.id)
        .execution_options(populate_existing=True)
    )
    # Notifications from replayed settlements are not re-announced
    discarded = NotificationOutbox()
    for tournament in tournaments:
        settle_tournament(session, tournament, discarded)
        stats.tournaments_settled += 1


def recalculate_all(session: Session) -> RecalculationStats:
    """
    Rebuild every rating, tally and level from the match history.

    Runs as one transaction: either the whole rebuild commits or nothing
    changes.

    Returns:
        RecalculationStats
    """
    stats = RecalculationStats()
    start = perf_counter()

    def work(s: Session) -> None:
        _reset(s, stats)
        _replay_matches(s, stats)
        _replay_advance_bonuses(s, stats)
        s.flush()
        recalculate_player_levels(s)
        _resettle(s, stats)
        s.flush()
        stats.levels_changed = recalculate_player_levels(s)

    repository.run_transaction(session, work)
    stats.elapsed_seconds = perf_counter() - start
    logger.info(stats.summary())
    return stats


def recalculation_notice(stats: RecalculationStats) -> NotificationOutbox:
    """The 'system' notification announcing a finished recalculation."""
    outbox = NotificationOutbox()
    outbox.add(
        title="Player statistics recalculated",
        message=(
            f"All player statistics were recalculated from {stats.matches_replayed} matches "
            f"and {stats.tournaments_settled} completed tournaments"
        ),
        type="system",
    )
    return outbox
