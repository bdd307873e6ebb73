"""
Tournament setup - creates a tournament and its initial match slate.

Formats:

- **league**: every participant plays every other participant once per
  round (``rounds`` times). Round r is scheduled r days out.

- **knockout**: participants are seeded by rating into a bracket of the
  next power-of-two size using standard seeding (1 v N, 2 v N-1, ...).
  Round-1 pairs with two players are scheduled; a seed without an opponent
  gets a bye, stored as a completed 1-0 walkover against the TBD player.
  Every later round is pre-created as 'pending' TBD-vs-TBD placeholders so
  the final round number is known from the first match on.

- **groups_knockout**: participants are dealt into ``group_count`` groups
  by rating ("Group A", "Group B", ...) and play a round robin inside their
  group. generate_knockout() later seeds the top ``advance_count`` of every
  group into a knockout bracket.

Semifinal and final rounds are best-of-three; earlier rounds are single
games.

Usage:
    result = create_tournament(session, "Spring Cup", "knockout", player_ids)
    drain_notifications(session, result.notifications)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from pongrank.bracket import (
    bracket_size,
    is_best_of_three_for_round,
    is_tbd_name,
    seed_slots,
    total_rounds,
)
from pongrank.config import settings
from pongrank.db import repository
from pongrank.db.models import Player, Tournament
from pongrank.errors import ConflictError, ValidationError
from pongrank.match_statuses import TOURNAMENT_FORMATS, TOURNAMENT_STATUSES
from pongrank.notifications import NotificationOutbox
from pongrank.rating.levels import refresh_levels_best_effort
from pongrank.services.settlement import rank_groups

logger = logging.getLogger(__name__)

DEFAULT_GROUP_COUNT = 2
DEFAULT_ADVANCE_COUNT = 2

# Score recorded for a bye (walkover against the TBD player)
BYE_SCORE = (1, 0)

PlayerPair = tuple[Optional[int], Optional[int]]


@dataclass
class SetupResult:
    """What a setup operation created."""
    tournament_id: int
    format: str
    matches_created: int = 0
    byes: int = 0
    placeholders: int = 0
    advanced_player_ids: list[int] = field(default_factory=list)
    notifications: NotificationOutbox = field(default_factory=NotificationOutbox)

    def summary(self) -> str:
        lines = [
            f"Tournament {self.tournament_id} ({self.format}) set up:",
            f"  Matches created: {self.matches_created}",
            f"  Byes:            {self.byes}",
            f"  Placeholders:    {self.placeholders}",
        ]
        if self.advanced_player_ids:
            lines.append(f"  Advanced:        {len(self.advanced_player_ids)} players")
        return "\n".join(lines)


def group_name(index: int) -> str:
    """
    Display name of the group at ``index``.

    Examples:
        >>> group_name(0)
        'Group A'
        >>> group_name(2)
        'Group C'
    """
    return f"Group {chr(ord('A') + index)}"


def seed_by_rating(players: Sequence[Player]) -> list[int]:
    """Player ids ordered best seed first (rating descending, then id)."""
    return [p.id for p in sorted(players, key=lambda p: (-p.rating, p.id))]


def deal_into_groups(seeded_ids: Sequence[int], group_count: int) -> list[list[int]]:
    """
    Distribute seeded players round-robin over the groups.

    Examples:
        >>> deal_into_groups([1, 2, 3, 4, 5], 2)
        [[1, 3, 5], [2, 4]]
    """
    groups: list[list[int]] = [[] for _ in range(group_count)]
    for index, player_id in enumerate(seeded_ids):
        groups[index % group_count].append(player_id)
    return groups


# =============================================================================
# Bracket construction
# =============================================================================

def build_bracket(
    session: Session,
    tournament: Tournament,
    first_round: Sequence[PlayerPair],
    start: datetime,
    result: SetupResult,
) -> None:
    """
    Create every knockout match for ``first_round`` pairs.

    A pair with one missing player is a bye. Later rounds are pre-created
    as pending placeholders, sized for the full power-of-two bracket.
    """
    tbd_id = repository.get_or_create_tbd_player(session).id
    last_round = total_rounds(bracket_size(len(first_round)) * 2)
    delay = timedelta(hours=settings.next_round_delay_hours)
    now = datetime.utcnow()

    for position, (player1_id, player2_id) in enumerate(first_round, start=1):
        if player1_id is None and player2_id is None:
            raise ValidationError(f"Bracket slot {position} has no players")
        if player1_id is not None and player2_id is not None:
            repository.create_match(
                session,
                tournament_id=tournament.id,
                player1_id=player1_id,
                player2_id=player2_id,
                round=1,
                stage="knockout",
                status="scheduled",
                date=start,
                best_of_three=is_best_of_three_for_round(1, last_round),
                bracket_position=position,
            )
            result.matches_created += 1
            continue

        advancing = player1_id if player1_id is not None else player2_id
        repository.create_match(
            session,
            tournament_id=tournament.id,
            player1_id=advancing,
            player2_id=tbd_id,
            round=1,
            stage="knockout",
            status="completed",
            date=start,
            player1_score=BYE_SCORE[0],
            player2_score=BYE_SCORE[1],
            bracket_position=position,
            settled_at=now,
        )
        result.matches_created += 1
        result.byes += 1

    for round_number in range(2, last_round + 1):
        for position in range(1, 2 ** (last_round - round_number) + 1):
            repository.create_match(
                session,
                tournament_id=tournament.id,
                player1_id=tbd_id,
                player2_id=tbd_id,
                round=round_number,
                stage="knockout",
                status="pending",
                date=start + delay * (round_number - 1),
                best_of_three=is_best_of_three_for_round(round_number, last_round),
                bracket_position=position,
            )
            result.matches_created += 1
            result.placeholders += 1

    logger.info(
        "Bracket for tournament %d: %d first-round slots, %d rounds, %d byes",
        tournament.id, len(first_round), last_round, result.byes,
    )


def seeded_pairs(seeded_ids: Sequence[int]) -> list[PlayerPair]:
    """
    First-round pairs for seeded players (None marks a bye).

    Examples:
        >>> seeded_pairs([10, 20, 30])
        [(10, None), (20, 30)]
    """
    slots = seed_slots(seeded_ids)
    return [(slots[i], slots[i + 1]) for i in range(0, len(slots), 2)]


# =============================================================================
# Round robins
# =============================================================================

def create_round_robin(
    session: Session,
    tournament: Tournament,
    player_ids: Sequence[int],
    round_number: int,
    stage: str,
    date: datetime,
    group: Optional[str] = None,
) -> int:
    created = 0
    for player1_id, player2_id in combinations(player_ids, 2):
        repository.create_match(
            session,
            tournament_id=tournament.id,
            player1_id=player1_id,
            player2_id=player2_id,
            round=round_number,
            stage=stage,
            group_name=group,
            status="scheduled",
            date=date,
        )
        created += 1
    return created


# =============================================================================
# Validation
# =============================================================================

def load_participants(session: Session, player_ids: Sequence[int]) -> list[Player]:
    if len(player_ids) < 2:
        raise ValidationError("A tournament needs at least two players")
    if len(set(player_ids)) != len(player_ids):
        raise ValidationError("Each player can only be entered once")
    players = [repository.get_player(session, pid) for pid in player_ids]
    for player in players:
        if is_tbd_name(player.name):
            raise ValidationError("The TBD placeholder cannot be entered into a tournament")
    return players


def _check_manual_pairs(
    pairs: Sequence[tuple[int, int]],
    participant_ids: set[int],
    one_match_each: bool = False,
) -> None:
    """
    Validate manual pairings. With ``one_match_each`` (knockout first
    rounds) a player may appear in at most one pairing.
    """
    if not pairs:
        raise ValidationError("manual_matches must contain at least one pairing")
    seen: set[int] = set()
    for player1_id, player2_id in pairs:
        if player1_id is None or player2_id is None:
            raise ValidationError("Every manual match needs two players")
        if player1_id == player2_id:
            raise ValidationError("A player cannot play against themselves")
        missing = {player1_id, player2_id} - participant_ids
        if missing:
            raise ValidationError(
                f"Manual match players {sorted(missing)} are not tournament participants"
            )
        if one_match_each:
            repeated = {player1_id, player2_id} & seen
            if repeated:
                raise ValidationError(
                    f"Players {sorted(repeated)} appear in more than one first-round match"
                )
            seen.update((player1_id, player2_id))


def _check_group_assignments(
    assignments: dict[str, list[int]],
    participant_ids: set[int],
) -> None:
    seen: set[int] = set()
    for name, members in assignments.items():
        if not name:
            raise ValidationError("Group names cannot be empty")
        for player_id in members:
            if player_id not in participant_ids:
                raise ValidationError(f"Player {player_id} in {name} is not a participant")
            if player_id in seen:
                raise ValidationError(f"Player {player_id} is assigned to more than one group")
            seen.add(player_id)


# =============================================================================
# Public operations
# =============================================================================

def create_tournament(
    session: Session,
    name: str,
    format: str,
    player_ids: Sequence[int],
    rounds: int = 1,
    group_count: Optional[int] = None,
    advance_count: Optional[int] = None,
    status: str = "draft",
    description: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    location: Optional[str] = None,
    manual_matches: Optional[Sequence[tuple[int, int]]] = None,
    group_assignments: Optional[dict[str, list[int]]] = None,
) -> SetupResult:
    """
    Create a tournament with its participants and initial matches.

    ``manual_matches`` replaces the generated first round (league and
    knockout). ``group_assignments`` replaces the rating-based group draw.

    Raises:
        ValidationError: Bad name, format, status, counts or pairings
        NotFoundError: Unknown player id
    """
    if not name or not name.strip():
        raise ValidationError("Tournament name is required")
    if format not in TOURNAMENT_FORMATS:
        raise ValidationError(f"format must be one of {', '.join(TOURNAMENT_FORMATS)}")
    if status not in TOURNAMENT_STATUSES or status == "completed":
        raise ValidationError("A new tournament must start as 'draft' or 'active'")
    if rounds < 1:
        raise ValidationError("rounds must be at least 1")

    players = load_participants(session, player_ids)
    participant_ids = {p.id for p in players}

    if format == "groups_knockout":
        group_count = group_count or DEFAULT_GROUP_COUNT
        advance_count = advance_count or DEFAULT_ADVANCE_COUNT
        if manual_matches:
            raise ValidationError("Groups tournaments take group_assignments, not manual_matches")
        if group_assignments:
            _check_group_assignments(group_assignments, participant_ids)
        elif group_count < 1 or group_count > len(players):
            raise ValidationError(f"group_count must be between 1 and {len(players)}")
        if advance_count < 1:
            raise ValidationError("advance_count must be at least 1")
    elif manual_matches:
        _check_manual_pairs(manual_matches, participant_ids, one_match_each=format == "knockout")

    def work(s: Session) -> SetupResult:
        tournament = Tournament(
            name=name.strip(),
            description=description,
            format=format,
            status=status,
            rounds=rounds,
            group_count=group_count if format == "groups_knockout" else None,
            advance_count=advance_count if format == "groups_knockout" else None,
            start_date=start_date or datetime.utcnow(),
            end_date=end_date,
            location=location,
            players=list(players),
        )
        s.add(tournament)
        s.flush()
        result = SetupResult(tournament_id=tournament.id, format=format)
        now = datetime.utcnow()
        one_day = timedelta(days=1)

        if format == "league":
            if manual_matches:
                for player1_id, player2_id in manual_matches:
                    repository.create_match(
                        s, tournament_id=tournament.id, player1_id=player1_id,
                        player2_id=player2_id, round=1, stage="league",
                        status="scheduled", date=now + one_day,
                    )
                    result.matches_created += 1
            else:
                ordered = [p.id for p in players]
                for round_number in range(1, rounds + 1):
                    result.matches_created += create_round_robin(
                        s, tournament, ordered, round_number, "league",
                        now + one_day * round_number,
                    )

        elif format == "knockout":
            pairs = list(manual_matches) if manual_matches else seeded_pairs(seed_by_rating(players))
            build_bracket(s, tournament, pairs, now + one_day, result)

        else:
            if group_assignments:
                groups = {gname: list(members) for gname, members in sorted(group_assignments.items())}
            else:
                dealt = deal_into_groups(seed_by_rating(players), group_count)
                groups = {group_name(i): members for i, members in enumerate(dealt)}
            for gname, members in groups.items():
                result.matches_created += create_round_robin(
                    s, tournament, members, 1, "group", now + one_day, group=gname
                )
        return result

    result = repository.run_transaction(session, work)
    logger.info(result.summary())
    result.notifications.add(
        title="Tournament created",
        message=f'New tournament "{name.strip()}" created with {len(players)} players',
        type="tournament",
    )
    return result


def knockout_seeds(ranked_groups: dict[str, list[int]], advance_count: int) -> list[int]:
    """
    Seed list for the knockout stage: all group winners first, then all
    runners-up, and so on, groups in name order.

    With standard seeding this puts a group winner against another
    group's runner-up in the first round.

    Examples:
        >>> knockout_seeds({"Group A": [1, 2, 3], "Group B": [4, 5, 6]}, 2)
        [1, 4, 2, 5]
    """
    seeds = []
    for place in range(advance_count):
        for gname in sorted(ranked_groups):
            members = ranked_groups[gname]
            if place < len(members):
                seeds.append(members[place])
    return seeds


def generate_knockout(session: Session, tournament_id: int) -> SetupResult:
    """
    Build the knockout stage of a groups_knockout tournament.

    The top ``advance_count`` players of every group advance, each earning
    the group-advance rating bonus, and are seeded into a bracket.

    Raises:
        NotFoundError: Unknown tournament
        ValidationError: Wrong format, no group matches, too few qualifiers
        ConflictError: Knockout matches already exist
    """
    tournament = repository.get_tournament(session, tournament_id, with_relations=True)
    if tournament.format != "groups_knockout":
        raise ValidationError(f"Tournament {tournament.id} is not a groups + knockout tournament")
    if any(m.stage == "knockout" for m in tournament.matches):
        raise ConflictError(f"Tournament {tournament.id} already has knockout matches")

    group_matches = [m for m in tournament.matches if m.stage == "group"]
    if not group_matches:
        raise ValidationError(f"Tournament {tournament.id} has no group matches")
    unfinished = sum(1 for m in group_matches if m.status != "completed")
    if unfinished:
        logger.warning(
            "Generating knockout for tournament %d with %d group matches unfinished",
            tournament.id, unfinished,
        )

    advance_count = tournament.advance_count or DEFAULT_ADVANCE_COUNT
    ranked = {
        gname: [s.player_id for s in standings]
        for gname, standings in rank_groups(group_matches).items()
    }
    seeds = knockout_seeds(ranked, advance_count)
    if len(seeds) < 2:
        raise ValidationError("Not enough players advancing to create a knockout stage")

    def work(s: Session) -> SetupResult:
        result = SetupResult(tournament_id=tournament.id, format=tournament.format)
        for player_id in seeds:
            repository.increment_player(s, player_id, rating=settings.group_advance_bonus)
        result.advanced_player_ids = list(seeds)
        start = datetime.utcnow() + timedelta(days=2)
        build_bracket(s, tournament, seeded_pairs(seeds), start, result)
        return result

    result = repository.run_transaction(session, work)
    logger.info(result.summary())
    refresh_levels_best_effort(session)

    result.notifications.add(
        title="Players advanced to the knockout stage",
        message=f'{len(seeds)} players advanced to the knockout stage of "{tournament.name}"',
        type="tournament",
    )
    result.notifications.add(
        title="Knockout stage created",
        message=(
            f'The knockout stage of "{tournament.name}" was created '
            f"with {result.matches_created} matches"
        ),
        type="tournament",
    )
    return result
