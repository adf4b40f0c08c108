"""Pytest configuration and shared fixtures."""

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from mastery_engine.db.engine import create_db_engine
from mastery_engine.db.session import create_session_factory, init_db
from tests.helpers.seed import FIXED_NOW, DiagnosticScenario, seed_diagnostic_scenario


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_db_engine("sqlite://", echo=False)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine: Engine) -> Generator[Session, None, None]:
    """Session bound to the per-test database. Application code may commit freely."""
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def learner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def clock():
    """Clock pinned to a fixed instant."""
    return lambda: FIXED_NOW


@pytest.fixture
def scenario(db: Session) -> DiagnosticScenario:
    return seed_diagnostic_scenario(db)
