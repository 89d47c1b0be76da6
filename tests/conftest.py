"""Shared fixtures: in-memory SQLite, fake clock, scripted RNG, wired services."""

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  registers the tables on Base.metadata
from core.bet_manager import BetManager
from core.container import build_services
from core.round_manager import RoundManager
from database import Base, Settings
from factories import FakeClock, RecordingNotifier, ScriptedRng


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        scheduler_enabled=False,
        round_duration_seconds=30,
        retention_rounds=500,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 12, 0, 0))


@pytest.fixture
def rng():
    return ScriptedRng()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(settings, session_factory, clock, rng, notifier):
    return build_services(settings, session_factory=session_factory, clock=clock, rng=rng, notifier=notifier)


@pytest.fixture
def round_manager(services) -> RoundManager:
    return services.rounds


@pytest.fixture
def bet_manager(services) -> BetManager:
    return services.bets


@pytest.fixture
def open_round(db, round_manager):
    return round_manager.ensure_active_round(db)
