"""
Percentile-based skill levels.

A player's level (1-5) is not a function of their own rating but of their
rank within the whole player population:

    percentile = 100 - (rank_index / player_count * 100)

    percentile >= 80 -> level 5
    percentile >= 60 -> level 4
    percentile >= 40 -> level 3
    percentile >= 20 -> level 2
    otherwise        -> level 1

Because levels are relative, one player's rating change can move other
players' levels, so the whole population is reclassified after every
rating-affecting operation. The TBD bracket placeholder is never ranked.

Usage:
    from pongrank.rating.levels import recalculate_player_levels

    changed = recalculate_player_levels(session)
    session.commit()
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pongrank.bracket import is_tbd_name
from pongrank.db.models import Player
from pongrank.db.repository import update_player
from pongrank.rating.constants import LEVEL_THRESHOLDS, MIN_LEVEL

logger = logging.getLogger(__name__)


def level_for_percentile(percentile: float) -> int:
    """Map a percentile (0-100, higher is better) to a level 1-5."""
    for lower_bound, level in LEVEL_THRESHOLDS:
        if percentile >= lower_bound:
            return level
    return MIN_LEVEL


def compute_levels(ratings: Iterable[tuple[int, int]]) -> dict[int, int]:
    """
    Classify a full population snapshot.

    Args:
        ratings: (player_id, rating) pairs for every ranked player

    Returns:
        Mapping of player_id -> level. Equal ratings are ordered by id so the
        result is deterministic.

    Example:
        compute_levels([(1, 1200), (2, 1000)])  # {1: 5, 2: 3}
    """
    ordered = sorted(ratings, key=lambda pair: (-pair[1], pair[0]))
    total = len(ordered)
    levels: dict[int, int] = {}
    for index, (player_id, _rating) in enumerate(ordered):
        percentile = 100 - (index / total * 100)
        levels[player_id] = level_for_percentile(percentile)
    return levels


def recalculate_player_levels(session: Session) -> int:
    """
    Recompute and persist every player's level.

    Only rows whose level actually changed are written. Idempotent.
    Caller is responsible for commit.

    Returns:
        Number of players whose level changed
    """
    rows = session.execute(select(Player.id, Player.name, Player.rating, Player.level)).all()
    ranked = [(row.id, row.rating) for row in rows if not is_tbd_name(row.name)]
    levels = compute_levels(ranked)

    changed = 0
    for row in rows:
        new_level = levels.get(row.id)
        if new_level is None or new_level == row.level:
            continue
        update_player(session, row.id, level=new_level)
        changed += 1

    if changed:
        logger.info("Levels recalculated: %d of %d players changed", changed, len(ranked))
    return changed


def refresh_levels_best_effort(session: Session) -> bool:
    """
    Recalculate levels in their own transaction, never raising.

    Used after a primary change has already committed: a failure here is
    logged and rolled back, and the committed change stays in place.

    Returns:
        True when the recalculation committed
    """
    try:
        recalculate_player_levels(session)
        session.commit()
        return True
    except Exception:
        session.rollback()
        logger.exception("Level recalculation failed; ratings are committed, levels are stale")
        return False
