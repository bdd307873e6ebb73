"""Shared match/tournament status definitions and helpers.

This module is the single source of truth for status groups that are reused
across web handlers, scoring and bracket services.
"""

from __future__ import annotations

from typing import Iterable

# Individual match statuses currently used in the system.
ALL_MATCH_STATUSES: tuple[str, ...] = (
    "pending",
    "scheduled",
    "in_progress",
    "completed",
)

# Canonical status groups.
MATCH_STATUS_GROUPS: dict[str, tuple[str, ...]] = {
    # Knockout placeholders whose players are still TBD.
    "placeholder": ("pending",),
    # Matches that can accept a score submission.
    "playable": ("scheduled", "in_progress"),
    # Statuses for matches still awaiting a result.
    "open": ("pending", "scheduled", "in_progress"),
    "terminal": ("completed",),
    "all": ALL_MATCH_STATUSES,
}

# Legal forward transitions; deletion is handled separately.
MATCH_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("scheduled",),
    "scheduled": ("scheduled", "in_progress", "completed"),
    "in_progress": ("in_progress", "completed"),
    "completed": (),
}

TOURNAMENT_FORMATS: tuple[str, ...] = ("league", "knockout", "groups_knockout")
TOURNAMENT_STATUSES: tuple[str, ...] = ("draft", "active", "completed")
MATCH_STAGES: tuple[str, ...] = ("group", "knockout", "league")

# Formats whose knockout-stage matches drive bracket progression.
BRACKET_FORMATS: tuple[str, ...] = ("knockout", "groups_knockout")


def get_status_group(group_name: str) -> tuple[str, ...]:
    """Return a named status group, raising KeyError for unknown names."""
    return MATCH_STATUS_GROUPS[group_name]


def can_transition(current: str, target: str) -> bool:
    """Whether a match may move from ``current`` to ``target``."""
    return target in MATCH_TRANSITIONS.get(current, ())


def normalize_status_filter(
    raw_statuses: Iterable[str] | None,
    *,
    default_group: str = "all",
) -> list[str]:
    """Normalize requested statuses against known values.

    - If no statuses are provided, returns the statuses from ``default_group``.
    - Unknown statuses are ignored.
    - Order is preserved and duplicates are removed.
    """
    if raw_statuses is None:
        return list(get_status_group(default_group))

    seen: set[str] = set()
    normalized: list[str] = []

    for raw in raw_statuses:
        status = raw.strip().lower()
        if not status or status in seen or status not in ALL_MATCH_STATUSES:
            continue
        seen.add(status)
        normalized.append(status)

    if normalized:
        return normalized

    return list(get_status_group(default_group))
