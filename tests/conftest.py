"""
Shared fixtures: a frozen clock and an in-memory relational store.
"""

import pytest
from datetime import datetime, timezone

from core.clock import MockClock
from pulse.alerts.store import AlertStore
from storage.database import create_database_engine, create_session_factory, initialize_database


T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return MockClock(T0)


@pytest.fixture
def db_engine():
    engine = create_database_engine("sqlite://")
    initialize_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def alert_store(session_factory, clock):
    return AlertStore(session_factory, clock=clock, events_per_alert=100)
