"""
Post-commit notification events.

Services never write notifications inline. They append NotificationEvent
objects to the outbox carried by their result, and whoever called the
service (web handler, script) drains the outbox once the service's own
transactions have committed:

    result = submit_game_score(session, match_id, 2, 11, 9)
    drain_notifications(session, result.notifications)

Draining is best-effort: a failure to store one event is logged and
rolled back, and the remaining events are still attempted. It never
raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from pongrank.db.repository import create_notification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("match", "tournament", "system")


@dataclass(frozen=True)
class NotificationEvent:
    title: str
    message: str
    type: str = "system"


@dataclass
class NotificationOutbox:
    """Ordered list of events produced by one operation."""
    events: list[NotificationEvent] = field(default_factory=list)

    def add(self, title: str, message: str, type: str) -> None:
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"unknown notification type: {type}")
        self.events.append(NotificationEvent(title=title, message=message, type=type))

    def __iter__(self):
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)


def drain_notifications(session: Session, events: Iterable[NotificationEvent]) -> int:
    """
    Store events one by one, each in its own transaction.

    Returns:
        Number of events stored
    """
    stored = 0
    for event in events:
        try:
            create_notification(session, event.title, event.message, event.type)
            session.commit()
            stored += 1
        except Exception:
            session.rollback()
            logger.warning("Failed to store notification %r", event.title, exc_info=True)
    return stored
