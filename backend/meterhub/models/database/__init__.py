# Database models package
from meterhub.models.database.users import UserRow
from meterhub.models.database.sources import SourceRow, SourcePropertyRow, SourceHierarchyRow
from meterhub.models.database.sensor_data import SensorDataRow

__all__ = [
    "UserRow",
    "SourceRow",
    "SourcePropertyRow",
    "SourceHierarchyRow",
    "SensorDataRow",
]
