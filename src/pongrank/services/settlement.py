"""
Tournament settlement service - one-time bonuses when a tournament completes.

Settlement runs exactly once per tournament, on its transition into
'completed'. It computes bonus-only rating increments on top of the Elo
deltas already applied match by match:

1. **League**: league points (3 per win, 1 per draw) rank the players. Rank
   bonus (1st 50+min(n*3,30), 2nd 35+min(n*2,20), 3rd 25+min(n,15), top
   quarter 20, top half 15, top three quarters 10, rest 5), plus
   round(average opponent level * 1.5), plus 10/5 for a win rate of at
   least 80%/60%.

2. **Groups** (groups_knockout only): per-group standings, 20/15/10 for the
   top three of each group, plus 25 for every player who reached the
   knockout stage.

3. **Knockout**: every knockout-match win in round r earns
   knockout_round_bonus(r, last_round) (60/30/20/15/10 from the final
   backwards). The runner-up gets +40 and position 2, each semifinal loser
   +30 and position 3, the champion position 1.

Ties in any standings are broken by point difference, then head-to-head
points among the tied players, then points scored, then player id.

Every format branch fills the same SettlementTable (player id -> small
accumulator); the table is then applied as one batch of atomic increments
in the caller's transaction.

Usage:
    outbox = NotificationOutbox()
    result = settle_tournament(session, tournament, outbox)
    session.commit()
    refresh_levels_best_effort(session)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from pongrank.bracket import knockout_round_bonus, max_round, resolve_loser_id, resolve_winner_id
from pongrank.db.models import Match, Player, Tournament
from pongrank.db.repository import find_tbd_player, increment_player
from pongrank.errors import ConflictError
from pongrank.notifications import NotificationOutbox
from pongrank.rating.calculator import round_half_away

logger = logging.getLogger(__name__)

WIN_POINTS = 3
DRAW_POINTS = 1

GROUP_RANK_BONUS = {1: 20, 2: 15, 3: 10}
KNOCKOUT_QUALIFIER_BONUS = 25
RUNNER_UP_BONUS = 40
SEMIFINAL_LOSER_BONUS = 30


# ---------------------------------------------------------------------------
# Accumulators
# ---------------------------------------------------------------------------

@dataclass
class PlayerAccumulator:
    """Everything settlement decides for one player."""
    player_id: int
    rating_bonus: int = 0
    wins: int = 0
    losses: int = 0
    position: Optional[int] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.rating_bonus or self.wins or self.losses)


@dataclass
class SettlementTable:
    """Player id -> accumulator, filled by the format branches."""
    excluded_ids: frozenset[int] = frozenset()
    entries: dict[int, PlayerAccumulator] = field(default_factory=dict)

    def entry(self, player_id: int) -> Optional[PlayerAccumulator]:
        """Accumulator for a player, or None for excluded (placeholder) ids."""
        if player_id in self.excluded_ids:
            return None
        if player_id not in self.entries:
            self.entries[player_id] = PlayerAccumulator(player_id=player_id)
        return self.entries[player_id]

    def add_bonus(self, player_id: int, amount: int) -> None:
        acc = self.entry(player_id)
        if acc is not None:
            acc.rating_bonus += amount

    def set_position(self, player_id: int, position: int) -> None:
        acc = self.entry(player_id)
        if acc is not None:
            acc.position = position

    def bonus_for(self, player_id: int) -> int:
        acc = self.entries.get(player_id)
        return acc.rating_bonus if acc else 0

    def position_for(self, player_id: int) -> Optional[int]:
        acc = self.entries.get(player_id)
        return acc.position if acc else None

    @property
    def total_bonus(self) -> int:
        return sum(acc.rating_bonus for acc in self.entries.values())


@dataclass
class Standing:
    player_id: int
    played: int = 0
    wins: int = 0
    draws: int = 0
    points: int = 0
    points_for: int = 0
    points_against: int = 0
    opponent_level_total: int = 0

    @property
    def point_diff(self) -> int:
        return self.points_for - self.points_against

    @property
    def win_rate(self) -> float:
        return self.wins / self.played * 100 if self.played else 0.0

    @property
    def avg_opponent_level(self) -> float:
        return self.opponent_level_total / self.played if self.played else 0.0


@dataclass
class SettlementResult:
    """Summary returned by settle_tournament()."""
    tournament_id: int
    format: str
    table: SettlementTable
    matches_tallied: int = 0

    @property
    def players_updated(self) -> int:
        return sum(1 for acc in self.table.entries.values() if acc.has_changes)

    def summary(self) -> str:
        lines = [
            f"Tournament {self.tournament_id} settled ({self.format}):",
            f"  Players updated:  {self.players_updated}",
            f"  Total bonus:      {self.table.total_bonus}",
            f"  Matches tallied:  {self.matches_tallied}",
        ]
        podium = sorted(
            (acc for acc in self.table.entries.values() if acc.position in (1, 2, 3)),
            key=lambda acc: (acc.position, acc.player_id),
        )
        for acc in podium:
            lines.append(f"  #{acc.position}: player {acc.player_id} (+{acc.rating_bonus})")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Standings
# ---------------------------------------------------------------------------

def _is_scored(match: Match) -> bool:
    return (
        match.status == "completed"
        and match.player1_score is not None
        and match.player2_score is not None
    )


def _involves(match: Match, player_ids: frozenset[int]) -> bool:
    return match.player1_id in player_ids or match.player2_id in player_ids


def compute_standings(
    matches: Iterable[Match],
    levels: Optional[dict[int, int]] = None,
    excluded_ids: frozenset[int] = frozenset(),
) -> dict[int, Standing]:
    """League-style standings over completed, scored matches."""
    levels = levels or {}
    standings: dict[int, Standing] = {}

    for match in matches:
        if not _is_scored(match) or _involves(match, excluded_ids):
            continue
        s1 = standings.setdefault(match.player1_id, Standing(match.player1_id))
        s2 = standings.setdefault(match.player2_id, Standing(match.player2_id))
        for own, own_score, other_score, other_id in (
            (s1, match.player1_score, match.player2_score, match.player2_id),
            (s2, match.player2_score, match.player1_score, match.player1_id),
        ):
            own.played += 1
            own.points_for += own_score
            own.points_against += other_score
            own.opponent_level_total += levels.get(other_id, 0)
            if own_score > other_score:
                own.wins += 1
                own.points += WIN_POINTS
            elif own_score == other_score:
                own.draws += 1
                own.points += DRAW_POINTS

    return standings


def _head_to_head_points(
    player_id: int,
    rivals: set[int],
    matches: Sequence[Match],
) -> int:
    points = 0
    for match in matches:
        if not _is_scored(match):
            continue
        if match.player1_id == player_id and match.player2_id in rivals:
            own, other = match.player1_score, match.player2_score
        elif match.player2_id == player_id and match.player1_id in rivals:
            own, other = match.player2_score, match.player1_score
        else:
            continue
        if own > other:
            points += WIN_POINTS
        elif own == other:
            points += DRAW_POINTS
    return points


def rank_standings(
    standings: dict[int, Standing],
    matches: Sequence[Match],
) -> list[Standing]:
    """
    Order standings best first.

    Sort keys: points, point difference, head-to-head points among players
    level on both, points scored, player id.
    """
    tied_groups: dict[tuple[int, int], set[int]] = defaultdict(set)
    for standing in standings.values():
        tied_groups[(standing.points, standing.point_diff)].add(standing.player_id)

    def sort_key(standing: Standing) -> tuple[int, int, int, int, int]:
        rivals = tied_groups[(standing.points, standing.point_diff)] - {standing.player_id}
        h2h = _head_to_head_points(standing.player_id, rivals, matches) if rivals else 0
        return (
            -standing.points,
            -standing.point_diff,
            -h2h,
            -standing.points_for,
            standing.player_id,
        )

    return sorted(standings.values(), key=sort_key)


# ---------------------------------------------------------------------------
# Format branches (pure)
# ---------------------------------------------------------------------------

def league_position_bonus(position: int, participants: int) -> int:
    """Rank bonus for finishing ``position`` of ``participants`` in a league."""
    if position == 1:
        return 50 + min(participants * 3, 30)
    if position == 2:
        return 35 + min(participants * 2, 20)
    if position == 3:
        return 25 + min(participants, 15)
    if position <= participants * 0.25:
        return 20
    if position <= participants * 0.5:
        return 15
    if position <= participants * 0.75:
        return 10
    return 5


def win_rate_bonus(win_rate: float) -> int:
    if win_rate >= 80:
        return 10
    if win_rate >= 60:
        return 5
    return 0


def apply_league(table: SettlementTable, matches: Sequence[Match], levels: dict[int, int]) -> None:
    """Fill ``table`` with league position, opponent-level and win-rate bonuses."""
    standings = compute_standings(matches, levels, table.excluded_ids)
    ranked = rank_standings(standings, matches)
    participants = len(ranked)

    for index, standing in enumerate(ranked):
        position = index + 1
        bonus = league_position_bonus(position, participants)
        bonus += round_half_away(standing.avg_opponent_level * 1.5)
        bonus += win_rate_bonus(standing.win_rate)
        table.add_bonus(standing.player_id, bonus)
        table.set_position(standing.player_id, position)


def rank_groups(
    group_matches: Iterable[Match],
    excluded_ids: frozenset[int] = frozenset(),
) -> dict[str, list[Standing]]:
    """
    Ranked standings of every group, best first, keyed by group name.

    Players with no completed group match still hold a place in their group.
    """
    by_group: dict[str, list[Match]] = defaultdict(list)
    for match in group_matches:
        if match.group_name:
            by_group[match.group_name].append(match)

    ranked: dict[str, list[Standing]] = {}
    for group_name in sorted(by_group):
        matches = by_group[group_name]
        standings = compute_standings(matches, excluded_ids=excluded_ids)
        for match in matches:
            for player_id in (match.player1_id, match.player2_id):
                if player_id not in excluded_ids:
                    standings.setdefault(player_id, Standing(player_id))
        ranked[group_name] = rank_standings(standings, matches)
    return ranked


def apply_groups(
    table: SettlementTable,
    group_matches: Sequence[Match],
    knockout_matches: Sequence[Match],
) -> None:
    """Fill ``table`` with group placement and knockout-qualification bonuses."""
    for standings in rank_groups(group_matches, table.excluded_ids).values():
        for index, standing in enumerate(standings):
            table.add_bonus(standing.player_id, GROUP_RANK_BONUS.get(index + 1, 0))

    qualifiers: set[int] = set()
    for match in knockout_matches:
        qualifiers.update((match.player1_id, match.player2_id))
    for player_id in sorted(qualifiers):
        table.add_bonus(player_id, KNOCKOUT_QUALIFIER_BONUS)


def apply_knockout(table: SettlementTable, knockout_matches: Sequence[Match]) -> None:
    """Fill ``table`` with round-survival, runner-up and semifinal bonuses."""
    last_round = max_round(m.round for m in knockout_matches)
    if last_round == 0:
        return

    for round_number in range(last_round, 0, -1):
        for match in knockout_matches:
            if match.round != round_number or not _is_scored(match):
                continue
            # Byes and placeholder pairings earn nothing
            if _involves(match, table.excluded_ids):
                continue
            winner_id = resolve_winner_id(match)
            loser_id = resolve_loser_id(match)
            if winner_id is None:
                continue
            table.add_bonus(winner_id, knockout_round_bonus(round_number, last_round))
            if round_number == last_round:
                table.set_position(winner_id, 1)
                table.set_position(loser_id, 2)
                table.add_bonus(loser_id, RUNNER_UP_BONUS)
            elif round_number == last_round - 1:
                table.set_position(loser_id, 3)
                table.add_bonus(loser_id, SEMIFINAL_LOSER_BONUS)


def tally_unsettled_results(table: SettlementTable, matches: Sequence[Match]) -> list[Match]:
    """
    Fold completed matches not yet reflected in wins/losses into the table.

    Returns:
        The matches that were tallied (caller stamps their settled_at)
    """
    tallied = []
    for match in matches:
        if not _is_scored(match) or match.settled_at is not None:
            continue
        winner_id = resolve_winner_id(match)
        loser_id = resolve_loser_id(match)
        if winner_id is not None:
            winner = table.entry(winner_id)
            loser = table.entry(loser_id)
            if winner is not None:
                winner.wins += 1
            if loser is not None:
                loser.losses += 1
        tallied.append(match)
    return tallied


def build_settlement_table(
    tournament_format: str,
    matches: Sequence[Match],
    levels: dict[int, int],
    excluded_ids: frozenset[int] = frozenset(),
) -> tuple[SettlementTable, list[Match]]:
    """
    Compute the whole settlement for one tournament without touching the DB.

    Returns:
        (table, matches whose results were tallied into wins/losses)
    """
    table = SettlementTable(excluded_ids=excluded_ids)

    if tournament_format == "league":
        apply_league(table, matches, levels)
    elif tournament_format == "groups_knockout":
        group_matches = [m for m in matches if m.stage == "group"]
        knockout_matches = [m for m in matches if m.stage == "knockout"]
        apply_groups(table, group_matches, knockout_matches)
        apply_knockout(table, knockout_matches)
    elif tournament_format == "knockout":
        apply_knockout(table, list(matches))
    else:
        raise ValueError(f"Unsupported tournament format: {tournament_format}")

    tallied = tally_unsettled_results(table, matches)
    return table, tallied


# ---------------------------------------------------------------------------
# Service entry point
# ---------------------------------------------------------------------------

def _load_levels(session: Session, player_ids: Iterable[int]) -> dict[int, int]:
    ids = list(set(player_ids))
    if not ids:
        return {}
    rows = session.execute(select(Player.id, Player.level).where(Player.id.in_(ids))).all()
    return {row.id: row.level for row in rows}


def settle_tournament(
    session: Session,
    tournament: Tournament,
    outbox: NotificationOutbox,
) -> SettlementResult:
    """
    Apply completion bonuses for ``tournament`` as one batch.

    Runs inside the caller's transaction; caller commits and then refreshes
    levels. Appends one 'system' notification to ``outbox``.

    Raises:
        ConflictError: If the tournament was already settled
    """
    if tournament.is_settled:
        raise ConflictError(f"Tournament {tournament.id} has already been settled")

    matches = list(
        session.scalars(
            select(Match)
            .where(Match.tournament_id == tournament.id)
            .execution_options(populate_existing=True)
        )
    )
    tbd = find_tbd_player(session)
    excluded = frozenset({tbd.id}) if tbd is not None else frozenset()
    levels = _load_levels(
        session,
        [pid for m in matches for pid in (m.player1_id, m.player2_id)],
    )

    table, tallied = build_settlement_table(tournament.format, matches, levels, excluded)

    for acc in table.entries.values():
        increment_player(
            session,
            acc.player_id,
            rating=acc.rating_bonus,
            wins=acc.wins,
            losses=acc.losses,
        )
    now = datetime.utcnow()
    for match in tallied:
        match.settled_at = now
    tournament.settled_at = now
    session.flush()

    result = SettlementResult(
        tournament_id=tournament.id,
        format=tournament.format,
        table=table,
        matches_tallied=len(tallied),
    )
    logger.info(result.summary())

    outbox.add(
        title="Player rankings updated",
        message=f'Ratings were updated from the results of tournament "{tournament.name}"',
        type="system",
    )
    return result
