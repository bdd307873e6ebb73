"""Unit tests for match status groups and transitions."""

import pytest

from pongrank.match_statuses import can_transition, get_status_group, normalize_status_filter


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("pending", "scheduled", True),
        ("pending", "completed", False),
        ("scheduled", "in_progress", True),
        ("scheduled", "completed", True),
        ("in_progress", "completed", True),
        ("in_progress", "scheduled", False),
        ("completed", "in_progress", False),
        ("completed", "completed", False),
        ("unknown", "scheduled", False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_status_groups():
    assert get_status_group("playable") == ("scheduled", "in_progress")
    with pytest.raises(KeyError):
        get_status_group("archived")


def test_normalize_status_filter():
    assert normalize_status_filter(None) == ["pending", "scheduled", "in_progress", "completed"]
    assert normalize_status_filter([" Completed", "bogus", "completed", "pending"]) == [
        "completed",
        "pending",
    ]
