"""
User database model.
"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from meterhub.core.database import Base


class UserRow(Base):
    """User model."""

    __tablename__ = "users"

    username = Column(String(255), primary_key=True)
    admin = Column(Boolean, default=False, nullable=False)
    properties = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
