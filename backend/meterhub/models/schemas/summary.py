"""
Schemas for source summaries.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class SensorDataStats(BaseModel):
    """Row count and timestamp span of one source's sensor data."""
    count: int = 0
    first: Optional[datetime] = None
    last: Optional[datetime] = None


class SourceSummary(BaseModel):
    """Summary of all sensor data reachable from a source."""
    href: str
    first_sensor_data: Optional[datetime] = None
    last_sensor_data: Optional[datetime] = None
    total_sensor_datas: int = 0
