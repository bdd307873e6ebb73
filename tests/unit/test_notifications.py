"""Unit tests for the post-commit notification outbox."""

import pytest
from sqlalchemy import select

from pongrank.db.models import Notification
from pongrank.notifications import NotificationOutbox, drain_notifications


def test_outbox_keeps_order():
    outbox = NotificationOutbox()
    outbox.add("First", "one", "match")
    outbox.add("Second", "two", "system")

    assert [e.title for e in outbox] == ["First", "Second"]
    assert len(outbox) == 2


def test_unknown_type_rejected():
    with pytest.raises(ValueError):
        NotificationOutbox().add("Title", "message", "email")


def test_drain_stores_every_event(db_session):
    outbox = NotificationOutbox()
    outbox.add("Match completed", "A beat B 11-4", "match")
    outbox.add("Player rankings updated", "Ratings updated", "system")

    assert drain_notifications(db_session, outbox) == 2

    rows = db_session.scalars(select(Notification).order_by(Notification.id)).all()
    assert [(n.title, n.type, n.read) for n in rows] == [
        ("Match completed", "match", False),
        ("Player rankings updated", "system", False),
    ]


def test_drain_failure_is_isolated(db_session, monkeypatch):
    calls = []

    def flaky(session, title, message, type):
        calls.append(title)
        if title == "Broken":
            raise RuntimeError("insert failed")
        session.add(Notification(title=title, message=message, type=type, read=False))
        session.flush()

    monkeypatch.setattr("pongrank.notifications.create_notification", flaky)
    outbox = NotificationOutbox()
    outbox.add("Broken", "x", "system")
    outbox.add("Fine", "y", "system")

    assert drain_notifications(db_session, outbox) == 1
    assert calls == ["Broken", "Fine"]
    assert db_session.scalars(select(Notification.title)).all() == ["Fine"]
