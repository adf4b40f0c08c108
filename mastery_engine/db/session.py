"""Database session management."""

from collections.abc import Generator

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from mastery_engine.db.base import Base


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,  # Prevent lazy loading issues
    )


def get_db(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a session from ``factory`` and close it afterwards."""
    db = factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create all tables known to the model registry."""
    import mastery_engine.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
