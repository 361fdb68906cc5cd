"""
Carbon emitted by generation over an interval.

Carbon for a pair of straddles is the generated energy between them
scaled by the source's ``carbonIntensity`` (lbs CO2 per MWh).
"""
from datetime import datetime
from typing import Optional, Sequence

from meterhub.core.config import settings
from meterhub.core.exceptions import BadArgumentError
from meterhub.models.schemas import SensorData, Source
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.models.schemas.sources import SourceProperty
from meterhub.services.energy import EnergyIntegrator, energy_between
from meterhub.services.straddle import Straddle

WATT_HOURS_PER_MEGAWATT_HOUR = 1e6


def carbon_between(start: Straddle, end: Straddle, carbon_intensity: float) -> float:
    """Pounds of CO2 emitted generating energy between two straddles."""
    generated, _ = energy_between(start, end, "generated")
    return generated / WATT_HOURS_PER_MEGAWATT_HOUR * carbon_intensity


def carbon_over_straddles(straddles: Sequence[Straddle], carbon_intensity: float) -> float:
    return sum(
        carbon_between(first, second, carbon_intensity)
        for first, second in zip(straddles, straddles[1:])
    )


def make_carbon_reading(timestamp: datetime, source: str, carbon_emitted: float) -> SensorData:
    # Carbon is always computed from interpolated energy
    return SensorData(
        source=source,
        timestamp=timestamp,
        tool=settings.SERVER_TOOL_NAME,
        properties={
            SensorDataProperty.CARBON_EMITTED: carbon_emitted,
            SensorDataProperty.INTERPOLATED: "true",
        },
    )


class CarbonCalculator:
    """Carbon emitted by a single non-virtual source."""

    def __init__(self, integrator: EnergyIntegrator):
        self.integrator = integrator

    async def leaf_carbon(
        self,
        source: Source,
        start: datetime,
        end: Optional[datetime] = None,
        interval_minutes: Optional[int] = None
    ) -> float:
        """
        Pounds of CO2 emitted by ``source`` between start and end.

        A source without a carbon intensity emits nothing, but the range
        must still be coverable by its data.
        """
        if source.virtual:
            raise BadArgumentError(f"Leaf carbon needs a non-virtual source, got {source.name}")
        carbon_intensity = source.get_property_as_float(SourceProperty.CARBON_INTENSITY, 0.0)
        straddles = await self.integrator.straddle_series(source, start, end, interval_minutes)
        return carbon_over_straddles(straddles, carbon_intensity)
