"""
Knockout bracket progression - advances winners once a round is complete.

Called after a knockout-stage match has been completed and committed:

1. **Earlier round**: when every match of the completed match's round is
   done, the round's matches are paired (bracket position, then id) and each
   pair's winners fill slot k+1 of the next round. Existing next-round rows
   (setup placeholders or an earlier run) are updated in place; missing
   ones are created. A missing winner is filled with the TBD placeholder.

2. **Final round**: when every final-round match is done, the tournament
   is marked completed and settled in the same transaction.

Round completion is always re-queried so two siblings completing at the
same time both see each other's committed result. Running progression
twice on the same state updates the same rows and creates nothing.

Usage:
    outbox = NotificationOutbox()
    result = advance_bracket(session, completed_match, outbox)
    print(result.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from pongrank.bracket import (
    bracket_sort_key,
    expected_next_round_matches,
    get_next_bracket_position,
    is_best_of_three_round,
    max_round,
    pair_round_matches,
    resolve_winner_id,
)
from pongrank.config import settings
from pongrank.db.models import Match, Tournament
from pongrank.db.repository import (
    create_match,
    get_or_create_tbd_player,
    get_player,
    get_tournament,
    list_matches,
    run_transaction,
)
from pongrank.match_statuses import BRACKET_FORMATS
from pongrank.notifications import NotificationOutbox
from pongrank.rating.levels import refresh_levels_best_effort
from pongrank.services.settlement import SettlementResult, settle_tournament

logger = logging.getLogger(__name__)


@dataclass
class ProgressionResult:
    """What one progression check did."""
    tournament_id: int
    round_completed: Optional[int] = None
    matches_created: int = 0
    matches_updated: int = 0
    tournament_completed: bool = False
    settlement: Optional[SettlementResult] = None

    @property
    def changed(self) -> bool:
        return bool(self.matches_created or self.matches_updated or self.tournament_completed)

    def summary(self) -> str:
        if self.tournament_completed:
            return f"Tournament {self.tournament_id}: final complete, tournament settled"
        if self.round_completed is None:
            return f"Tournament {self.tournament_id}: round still in progress"
        return (
            f"Tournament {self.tournament_id}: round {self.round_completed} complete, "
            f"{self.matches_created} created, {self.matches_updated} updated"
        )


def applies_to(match: Match, tournament: Tournament) -> bool:
    """Progression only runs for knockout-stage matches of bracket formats."""
    return match.stage == "knockout" and tournament.format in BRACKET_FORMATS


def advance_bracket(
    session: Session,
    match: Match,
    outbox: NotificationOutbox,
) -> ProgressionResult:
    """
    Advance the bracket after ``match`` completed.

    Commits its own work. Notifications are appended to ``outbox``.

    Args:
        session: Database session (the match completion is already committed)
        match: The knockout match that just completed
        outbox: Collects post-commit notifications

    Returns:
        ProgressionResult describing what changed
    """
    tournament = get_tournament(session, match.tournament_id)
    result = ProgressionResult(tournament_id=tournament.id)
    if not applies_to(match, tournament):
        return result

    knockout = list_matches(session, tournament_id=tournament.id, stage="knockout")
    last_round = max_round(m.round for m in knockout)
    current_round = match.round

    if current_round >= last_round:
        return _complete_final(session, tournament, knockout, last_round, outbox, result)

    round_matches = [m for m in knockout if m.round == current_round]
    if not all(m.status == "completed" for m in round_matches):
        logger.debug(
            "Tournament %d round %d not complete yet (%d/%d)",
            tournament.id, current_round,
            sum(1 for m in round_matches if m.status == "completed"), len(round_matches),
        )
        return result

    next_round = [m for m in knockout if m.round == current_round + 1]
    run_transaction(
        session,
        lambda s: _fill_next_round(
            s, tournament, round_matches, next_round, current_round, last_round, result
        ),
    )
    result.round_completed = current_round
    logger.info(result.summary())

    if result.changed:
        outbox.add(
            title=f"Round {current_round + 1} created",
            message=(
                f'Round {current_round} of "{tournament.name}" is complete; '
                f"round {current_round + 1} matches are ready"
            ),
            type="tournament",
        )
    return result


def _fill_next_round(
    session: Session,
    tournament: Tournament,
    round_matches: list[Match],
    next_round: list[Match],
    current_round: int,
    last_round: int,
    result: ProgressionResult,
) -> None:
    pairs = pair_round_matches(round_matches)
    existing = sorted(next_round, key=bracket_sort_key)
    tbd_id = get_or_create_tbd_player(session).id
    next_date = datetime.utcnow() + timedelta(hours=settings.next_round_delay_hours)

    if len(existing) > expected_next_round_matches(len(round_matches)):
        logger.warning(
            "Tournament %d round %d has %d matches, expected at most %d",
            tournament.id, current_round + 1, len(existing),
            expected_next_round_matches(len(round_matches)),
        )

    for k, pair in enumerate(pairs):
        winners = [resolve_winner_id(m) for m in pair]
        player1_id = winners[0] if winners[0] is not None else tbd_id
        player2_id = winners[1] if len(winners) > 1 and winners[1] is not None else tbd_id
        position = get_next_bracket_position(2 * k + 1)
        status = "pending" if player1_id == player2_id == tbd_id else "scheduled"

        if k < len(existing):
            target = existing[k]
            if target.status in ("in_progress", "completed"):
                if (target.player1_id, target.player2_id) != (player1_id, player2_id):
                    logger.warning(
                        "Match %s already %s; not re-pairing it", target.id, target.status
                    )
                continue
            if (
                target.player1_id == player1_id
                and target.player2_id == player2_id
                and target.status == status
            ):
                continue
            target.player1_id = player1_id
            target.player2_id = player2_id
            target.status = status
            if target.bracket_position is None:
                target.bracket_position = position
            result.matches_updated += 1
            continue

        create_match(
            session,
            tournament_id=tournament.id,
            player1_id=player1_id,
            player2_id=player2_id,
            round=current_round + 1,
            stage="knockout",
            status=status,
            date=next_date,
            best_of_three=is_best_of_three_round(current_round, last_round),
            bracket_position=position,
        )
        result.matches_created += 1
    session.flush()


def _complete_final(
    session: Session,
    tournament: Tournament,
    knockout: list[Match],
    last_round: int,
    outbox: NotificationOutbox,
    result: ProgressionResult,
) -> ProgressionResult:
    finals = [m for m in knockout if m.round == last_round]
    if not finals or not all(m.status == "completed" for m in finals):
        return result
    if tournament.is_completed or tournament.is_settled:
        return result

    def work(s: Session) -> SettlementResult:
        tournament.status = "completed"
        return settle_tournament(s, tournament, outbox)

    result.settlement = run_transaction(session, work)
    result.tournament_completed = True
    result.round_completed = last_round
    refresh_levels_best_effort(session)

    champion_id = resolve_winner_id(sorted(finals, key=bracket_sort_key)[0])
    champion = get_player(session, champion_id).name if champion_id is not None else "unknown"
    logger.info('Tournament %d "%s" completed, champion %s', tournament.id, tournament.name, champion)
    outbox.add(
        title="Tournament completed",
        message=f'"{tournament.name}" is complete. Champion: {champion}',
        type="tournament",
    )
    return result
