"""
PongRank services - business logic on top of the rating and bracket math.

Every operation validates first, commits its own primary change, runs the
best-effort level refresh, and returns a result object whose
``notifications`` the caller drains after it returns.

Operations:
1. Match results: score submission, manual creation, deletion
2. Bracket progression: next-round pairing, final detection
3. Settlement: one-time completion bonuses
4. Tournament setup: formats, byes, placeholders, knockout generation
5. Tournament administration: status edits, deletion, full recalculation

Usage:
    from pongrank.services import (
        submit_game_score,
        update_tournament_status,
        recalculate_all,
    )
"""

from pongrank.services.bracket_progression import ProgressionResult, advance_bracket
from pongrank.services.match_results import (
    DeletionResult,
    MatchResult,
    create_match,
    delete_match,
    submit_game_score,
    submit_single_game_score,
)
from pongrank.services.settlement import SettlementResult, SettlementTable, settle_tournament
from pongrank.services.tournament_setup import SetupResult, create_tournament, generate_knockout
from pongrank.services.tournaments import (
    RecalculationStats,
    TournamentEdit,
    delete_tournament,
    edit_tournament,
    recalculate_all,
    update_tournament_details,
    update_tournament_status,
)

__all__ = [
    # Match results
    "submit_single_game_score",
    "submit_game_score",
    "create_match",
    "delete_match",
    "MatchResult",
    "DeletionResult",
    # Bracket progression
    "advance_bracket",
    "ProgressionResult",
    # Settlement
    "settle_tournament",
    "SettlementTable",
    "SettlementResult",
    # Setup
    "create_tournament",
    "generate_knockout",
    "SetupResult",
    # Administration
    "edit_tournament",
    "update_tournament_status",
    "update_tournament_details",
    "delete_tournament",
    "recalculate_all",
    "TournamentEdit",
    "RecalculationStats",
]
