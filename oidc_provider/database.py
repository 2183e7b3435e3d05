"""
SQLAlchemy engine and sessions. SQLite unless OIDC_DATABASE_URL says otherwise.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from oidc_provider.config import DATABASE_URL
from oidc_provider.models import Base


def _make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url)
    # Request handlers run in a threadpool, so the connection crosses threads
    kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # One shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False)


def init_db() -> None:
    """Create missing tables."""
    Base.metadata.create_all(bind=engine)


def reset_db() -> None:
    """Drop and recreate every table."""
    Base.metadata.drop_all(bind=engine)
    init_db()


def get_db():
    """Dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
