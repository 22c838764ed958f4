"""SQLAlchemy database models for the media workflow engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow graphs."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    definition = Column(JSON, nullable=False)  # nodes and edges as stored by the editor
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
