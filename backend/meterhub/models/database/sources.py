"""
Source, source property and source hierarchy database models.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from meterhub.core.database import Base


class SourceRow(Base):
    """Source model."""

    __tablename__ = "sources"

    name = Column(String(255), primary_key=True)
    owner = Column(String(255), ForeignKey("users.username", ondelete="CASCADE"), nullable=False, index=True)
    public = Column(Boolean, default=False, nullable=False)
    virtual = Column(Boolean, default=False, nullable=False)
    coordinates = Column(String(255), nullable=True)
    location = Column(String(1000), nullable=True)
    description = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class SourcePropertyRow(Base):
    """Key/value property attached to a source."""

    __tablename__ = "source_properties"

    source_name = Column(String(255), ForeignKey("sources.name", ondelete="CASCADE"), primary_key=True)
    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)


class SourceHierarchyRow(Base):
    """Edge from a virtual source to one of its subsources."""

    __tablename__ = "source_hierarchy"

    parent_name = Column(String(255), ForeignKey("sources.name", ondelete="CASCADE"), primary_key=True)
    subsource_name = Column(String(255), ForeignKey("sources.name", ondelete="CASCADE"), primary_key=True, index=True)
