"""
Pydantic schema for sources (physical meters and virtual aggregates).
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from meterhub.core.exceptions import BadArgumentError


class SourceProperty:
    """Property keys on a Source that carry meaning for queries."""
    CARBON_INTENSITY = "carbonIntensity"  # lbs CO2 per MWh
    FUEL_TYPE = "fuelType"
    UPDATE_INTERVAL = "updateInterval"
    ENERGY_DIRECTION = "energyDirection"
    SUPPORTS_ENERGY_COUNTERS = "supportsEnergyCounters"
    CACHE_WINDOW_LENGTH = "cacheWindowLength"
    CACHE_CHECKPOINT_INTERVAL = "cacheCheckpointInterval"


class Source(BaseModel):
    """A named meter, or a virtual source defined by its subsources."""
    name: str = Field(..., min_length=1, max_length=255)
    owner: str = Field(..., min_length=1, description="Username of the owning user")
    public: bool = False
    virtual: bool = False
    coordinates: Optional[str] = Field(None, description="Latitude,longitude,elevation")
    location: Optional[str] = None
    description: Optional[str] = None
    properties: Dict[str, str] = Field(default_factory=dict)
    subsources: List[str] = Field(default_factory=list, description="Names of subsources (virtual only)")

    @field_validator('properties', mode='before')
    @classmethod
    def stringify_properties(cls, v):
        """Property values are stored as strings; accept numbers and booleans."""
        if isinstance(v, dict):
            return {
                key: (str(value).lower() if isinstance(value, bool) else str(value))
                for key, value in v.items()
            }
        return v

    @field_validator('subsources')
    @classmethod
    def dedupe_subsources(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    def get_property(self, key: str) -> Optional[str]:
        return self.properties.get(key)

    def get_property_as_float(self, key: str, default: float = 0.0) -> float:
        value = self.properties.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise BadArgumentError(f"Source {self.name} property {key} is not numeric: {value!r}")

    def is_property_true(self, key: str) -> bool:
        value = self.properties.get(key)
        return value is not None and value.strip().lower() == "true"
