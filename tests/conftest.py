"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pongrank.config import settings
from pongrank.db import repository
from pongrank.db.models import Base


@pytest.fixture
def test_engine():
    """
    Create a test database engine.

    Uses SQLite in-memory for fast tests that don't need
    PostgreSQL-specific features. The services commit their own
    transactions, so every test gets a fresh database instead of a
    rolled-back outer transaction. StaticPool keeps the single in-memory
    connection alive and shareable with the TestClient thread.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Create a database session for a test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def default_rating_settings(monkeypatch):
    """Pin the settings the rating rules depend on."""
    monkeypatch.setattr(settings, "default_rating", 1000)
    monkeypatch.setattr(settings, "default_level", 3)
    monkeypatch.setattr(settings, "use_tournament_k_factors", False)
    monkeypatch.setattr(settings, "k_factor_single_game", 32)
    monkeypatch.setattr(settings, "k_factor_best_of_three_game", 16)
    monkeypatch.setattr(settings, "group_advance_bonus", 15)


@pytest.fixture
def make_player(db_session):
    """Factory creating committed players."""
    def _make(name: str, rating: int = 1000, level: int = 3):
        player = repository.create_player(db_session, name, rating=rating, level=level)
        db_session.commit()
        return player
    return _make


@pytest.fixture
def players(make_player):
    """Eight players with distinct ratings, strongest first."""
    names = ["Ana", "Ben", "Cleo", "Dev", "Eli", "Fay", "Gus", "Hal"]
    return [make_player(name, rating=1400 - i * 50) for i, name in enumerate(names)]
