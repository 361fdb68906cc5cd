"""
Pydantic schema for sensor data readings.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator

from meterhub.core.exceptions import BadArgumentError
from meterhub.core.timestamps import ensure_utc


class SensorDataProperty:
    """Well-known property keys on sensor data."""
    POWER_CONSUMED = "powerConsumed"  # W
    POWER_GENERATED = "powerGenerated"  # W
    ENERGY_CONSUMED_TO_DATE = "energyConsumedToDate"  # Wh
    ENERGY_GENERATED_TO_DATE = "energyGeneratedToDate"  # Wh

    # Set on readings synthesized by queries
    ENERGY_CONSUMED = "energyConsumed"  # Wh over an interval
    ENERGY_GENERATED = "energyGenerated"  # Wh over an interval
    CARBON_EMITTED = "carbonEmitted"  # lbs CO2 over an interval
    INTERPOLATED = "interpolated"

    NUMERIC = (
        POWER_CONSUMED,
        POWER_GENERATED,
        ENERGY_CONSUMED_TO_DATE,
        ENERGY_GENERATED_TO_DATE,
    )


class SensorData(BaseModel):
    """One reading from a source at a timestamp."""
    source: str = Field(..., min_length=1, description="Name of the source")
    timestamp: datetime
    tool: str = Field("", description="Free-text provenance of the reading")
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def get_property(self, key: str) -> Optional[Any]:
        return self.properties.get(key)

    def get_property_as_float(self, key: str) -> Optional[float]:
        """
        Return a property parsed as a float.

        Returns None when the property is absent; raises BadArgumentError
        when it is present but not numeric.
        """
        value = self.properties.get(key)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            raise BadArgumentError(
                f"Sensor data {self.source}@{self.timestamp.isoformat()} "
                f"property {key} is not numeric: {value!r}"
            )

    @property
    def interpolated(self) -> bool:
        value = self.properties.get(SensorDataProperty.INTERPOLATED)
        return str(value).lower() == "true"
