"""
Sensor data database model for time-series readings.
"""
from sqlalchemy import Column, String, JSON, DateTime, ForeignKey
from meterhub.core.database import Base


class SensorDataRow(Base):
    """One reading; unique per (source, timestamp)."""

    __tablename__ = "sensor_data"

    # The composite primary key doubles as the (source, timestamp) index
    # used by range, before/after and latest lookups.
    source_name = Column(String(255), ForeignKey("sources.name", ondelete="CASCADE"), primary_key=True)
    timestamp = Column(DateTime(timezone=True), primary_key=True)
    tool = Column(String(255), nullable=False, default="")
    properties = Column(JSON, nullable=True)
