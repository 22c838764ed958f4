"""Database connection and session management."""

from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_database_engine(database_url: str, echo: bool = False,
                           connect_args: Optional[dict] = None) -> Engine:
    """Create an engine; SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args=connect_args or {"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(database_url, echo=echo, connect_args=connect_args or {})


def init_database(database_url: str, echo: bool = False,
                  connect_args: Optional[dict] = None) -> sessionmaker:
    """Configure the global engine and session factory."""
    global _engine, _session_factory
    reset_database_engine()
    _engine = create_database_engine(database_url, echo, connect_args)
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _session_factory


def get_database_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database is not initialized; call init_database() first")
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database is not initialized; call init_database() first")
    return _session_factory


def reset_database_engine():
    """Dispose of the global database engine (mainly for testing)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401  registers mappers on Base
    Base.metadata.create_all(bind=get_database_engine())
