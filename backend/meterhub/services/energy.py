"""
Energy integration over straddles.

Energy between two straddles is the trapezoidal area under the power
curve joining their (possibly interpolated) power values. Longer ranges
are split at a caller-supplied sampling interval and the trapezoids
summed. Sources that report cumulative energy counters use the counter
difference instead.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from meterhub.core.config import settings
from meterhub.core.exceptions import BadArgumentError, BadIntervalError, EnergyCounterError
from meterhub.core.logging import get_logger
from meterhub.core.timestamps import ensure_utc
from meterhub.models.schemas import SensorData, Source
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.models.schemas.sources import SourceProperty
from meterhub.services.straddle import Straddle, StraddleResolver
from meterhub.storage.base import PersistenceBackend

logger = get_logger(__name__)

SECONDS_PER_HOUR = 60.0 * 60.0

POWER_KEYS = {
    "generated": SensorDataProperty.POWER_GENERATED,
    "consumed": SensorDataProperty.POWER_CONSUMED,
}


@dataclass(frozen=True)
class EnergyTotals:
    """Generated and consumed energy in watt-hours."""
    generated: float = 0.0
    consumed: float = 0.0
    interpolated: bool = False

    def __add__(self, other: "EnergyTotals") -> "EnergyTotals":
        return EnergyTotals(
            generated=self.generated + other.generated,
            consumed=self.consumed + other.consumed,
            interpolated=self.interpolated or other.interpolated,
        )


def energy_between(start: Straddle, end: Straddle, direction: str = "consumed") -> Tuple[float, bool]:
    """
    Trapezoidal energy between two straddles for one power direction.

    Args:
        start: Straddle at the start of the range
        end: Straddle at the end of the range
        direction: "generated" or "consumed"

    Returns:
        (watt-hours, interpolated) where interpolated is True when either
        straddle was non-degenerate
    """
    try:
        key = POWER_KEYS[direction]
    except KeyError:
        raise BadArgumentError(f"Unknown power direction: {direction}")

    range_seconds = (end.timestamp - start.timestamp).total_seconds()
    start_power = start.interpolate(key) or 0.0
    end_power = end.interpolate(key) or 0.0

    # area in watt-seconds, converted to watt-hours
    watt_hours = (
        range_seconds * start_power + 0.5 * range_seconds * (end_power - start_power)
    ) / SECONDS_PER_HOUR
    return watt_hours, not (start.degenerate and end.degenerate)


def integrate_straddles(straddles: Sequence[Straddle]) -> EnergyTotals:
    """Sum the trapezoids between each consecutive pair of straddles."""
    totals = EnergyTotals()
    for first, second in zip(straddles, straddles[1:]):
        generated, interpolated = energy_between(first, second, "generated")
        consumed, _ = energy_between(first, second, "consumed")
        totals = totals + EnergyTotals(generated, consumed, interpolated)
    return totals


def energy_from_counters(start: Straddle, end: Straddle) -> EnergyTotals:
    """
    Energy as the difference of cumulative to-date counters.

    Raises:
        EnergyCounterError: A counter decreased over the range
    """
    def counter_delta(key: str) -> float:
        delta = (end.interpolate(key) or 0.0) - (start.interpolate(key) or 0.0)
        if delta < 0:
            raise EnergyCounterError(
                f"Counter {key} of source {start.source} decreased by {-delta} Wh "
                f"between {start.timestamp.isoformat()} and {end.timestamp.isoformat()}"
            )
        return delta

    return EnergyTotals(
        generated=counter_delta(SensorDataProperty.ENERGY_GENERATED_TO_DATE),
        consumed=counter_delta(SensorDataProperty.ENERGY_CONSUMED_TO_DATE),
        interpolated=not (start.degenerate and end.degenerate),
    )


def sample_timestamps(
    start: datetime,
    end: datetime,
    interval_minutes: Optional[int] = None
) -> List[datetime]:
    """
    Sample boundaries from start to end, stepping by the sampling interval.

    The last boundary is always ``end``. No interval (or zero) gives just
    the two endpoints.

    Raises:
        BadIntervalError: start is after end, or the interval is longer than the range
        BadArgumentError: negative interval
    """
    start, end = ensure_utc(start), ensure_utc(end)
    if start > end:
        raise BadIntervalError(start, end)
    if not interval_minutes:
        return [start, end]
    if interval_minutes < 0:
        raise BadArgumentError(f"Sampling interval must not be negative: {interval_minutes}")

    step = timedelta(minutes=interval_minutes)
    if step > end - start:
        raise BadIntervalError(
            start,
            end,
            f"Sampling interval of {interval_minutes} minutes is longer than the range "
            f"{start.isoformat()} to {end.isoformat()}",
        )

    timestamps = [start]
    current = start + step
    while current < end:
        timestamps.append(current)
        current += step
    timestamps.append(end)
    return timestamps


def make_energy_reading(
    timestamp: datetime,
    source: str,
    energy_generated: float,
    energy_consumed: float,
    interpolated: bool
) -> SensorData:
    """Synthetic reading carrying energy totals for a range starting at ``timestamp``."""
    properties = {
        SensorDataProperty.ENERGY_GENERATED: energy_generated,
        SensorDataProperty.ENERGY_CONSUMED: energy_consumed,
    }
    if interpolated:
        properties[SensorDataProperty.INTERPOLATED] = "true"
    return SensorData(
        source=source,
        timestamp=timestamp,
        tool=settings.SERVER_TOOL_NAME,
        properties=properties,
    )


class EnergyIntegrator:
    """Computes interval energy for a single non-virtual source."""

    def __init__(self, backend: PersistenceBackend, straddles: Optional[StraddleResolver] = None):
        self.backend = backend
        self.straddles = straddles or StraddleResolver(backend)

    async def resolve_end(self, source: Source, end: Optional[datetime]) -> datetime:
        """Use the source's latest reading as the end of an open-ended range."""
        if end is not None:
            return ensure_utc(end)
        latest = await self.backend.get_latest_sensor_data(source.name)
        return latest.timestamp

    async def straddle_series(
        self,
        source: Source,
        start: datetime,
        end: Optional[datetime],
        interval_minutes: Optional[int] = None
    ) -> List[Straddle]:
        """One straddle per sample boundary; fails if any boundary has none."""
        start = ensure_utc(start)
        end = await self.resolve_end(source, end)
        return [
            await self.straddles.resolve_leaf(source.name, timestamp)
            for timestamp in sample_timestamps(start, end, interval_minutes)
        ]

    async def interval_energy(
        self,
        source: Source,
        start: datetime,
        end: Optional[datetime] = None,
        interval_minutes: Optional[int] = None
    ) -> SensorData:
        """
        Energy generated and consumed by ``source`` between start and end.

        Args:
            source: A non-virtual source
            start: Start of the range
            end: End of the range; None means the source's latest reading
            interval_minutes: Sampling interval; None or 0 integrates the
                whole range as one trapezoid

        Returns:
            Synthetic reading stamped at ``start``
        """
        if source.virtual:
            raise BadArgumentError(f"Interval energy needs a non-virtual source, got {source.name}")
        start = ensure_utc(start)

        if source.is_property_true(SourceProperty.SUPPORTS_ENERGY_COUNTERS):
            end = await self.resolve_end(source, end)
            # Validates the interval against the range even though counters
            # only need the endpoints.
            timestamps = sample_timestamps(start, end, interval_minutes)
            first = await self.straddles.resolve_leaf(source.name, timestamps[0])
            last = await self.straddles.resolve_leaf(source.name, timestamps[-1])
            totals = energy_from_counters(first, last)
        else:
            totals = integrate_straddles(
                await self.straddle_series(source, start, end, interval_minutes)
            )

        logger.debug(
            f"Energy for {source.name} from {start.isoformat()}: "
            f"generated={totals.generated:.3f}Wh consumed={totals.consumed:.3f}Wh"
        )
        return make_energy_reading(
            start, source.name, totals.generated, totals.consumed, totals.interpolated
        )
