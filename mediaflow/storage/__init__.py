"""Database models and storage layer."""

from .database import (
    Base,
    create_database_engine,
    init_database,
    get_database_engine,
    get_session_factory,
    reset_database_engine,
    create_tables,
)
from .models import WorkflowModel

__all__ = [
    "Base",
    "create_database_engine",
    "init_database",
    "get_database_engine",
    "get_session_factory",
    "reset_database_engine",
    "create_tables",
    "WorkflowModel",
]
