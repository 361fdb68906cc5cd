# Pydantic schemas package
from meterhub.models.schemas.users import User
from meterhub.models.schemas.sources import Source, SourceProperty
from meterhub.models.schemas.sensor_data import SensorData, SensorDataProperty
from meterhub.models.schemas.summary import SensorDataStats, SourceSummary

__all__ = [
    "User",
    "Source",
    "SourceProperty",
    "SensorData",
    "SensorDataProperty",
    "SensorDataStats",
    "SourceSummary",
]
