"""
Straddles: the pair of stored readings that bracket a timestamp.

A straddle lets us estimate any numeric property at a timestamp that
has no reading of its own by linear interpolation between its
neighbours. When a reading exists exactly at the timestamp the straddle
is degenerate and both sides are that reading.
"""
from datetime import datetime
from typing import Optional, Union

from meterhub.core.config import settings
from meterhub.core.exceptions import BadArgumentError, NotFoundError
from meterhub.core.timestamps import ensure_utc
from meterhub.models.schemas import SensorData, Source
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.storage.base import PersistenceBackend


class Straddle:
    """Two readings of one source with ``before <= timestamp <= after``."""

    def __init__(self, timestamp: datetime, before: SensorData, after: SensorData):
        if before is None or after is None:
            raise BadArgumentError("A straddle needs both a before and an after reading")
        if before.timestamp > after.timestamp:
            raise BadArgumentError(
                f"Straddle readings out of order: {before.timestamp} > {after.timestamp}"
            )
        timestamp = ensure_utc(timestamp)
        if not before.timestamp <= timestamp <= after.timestamp:
            raise BadArgumentError(
                f"Timestamp {timestamp} is outside straddle {before.timestamp} to {after.timestamp}"
            )
        self.timestamp = timestamp
        self.before = before
        self.after = after

    @property
    def degenerate(self) -> bool:
        """True when a reading exists exactly at the timestamp."""
        return self.before.timestamp == self.after.timestamp

    @property
    def source(self) -> str:
        return self.before.source

    def interpolate(self, key: str) -> Optional[float]:
        """
        Linearly interpolated value of a numeric property at the timestamp.

        Returns None when either reading lacks the property.
        """
        before_value = self.before.get_property_as_float(key)
        if self.degenerate:
            return before_value
        after_value = self.after.get_property_as_float(key)
        if before_value is None or after_value is None:
            return None

        span = (self.after.timestamp - self.before.timestamp).total_seconds()
        offset = (self.timestamp - self.before.timestamp).total_seconds()
        return before_value + (after_value - before_value) * offset / span

    @property
    def power_generated(self) -> float:
        return self.interpolate(SensorDataProperty.POWER_GENERATED) or 0.0

    @property
    def power_consumed(self) -> float:
        return self.interpolate(SensorDataProperty.POWER_CONSUMED) or 0.0

    def power(self) -> SensorData:
        """
        Reading that represents power at the timestamp.

        A degenerate straddle returns its stored reading unchanged.
        """
        if self.degenerate:
            return self.before
        return make_power_reading(
            self.timestamp, self.source, self.power_generated, self.power_consumed, interpolated=True
        )

    def __repr__(self) -> str:
        return (
            f"Straddle(source={self.source!r}, timestamp={self.timestamp.isoformat()}, "
            f"before={self.before.timestamp.isoformat()}, after={self.after.timestamp.isoformat()})"
        )


def make_power_reading(
    timestamp: datetime,
    source: str,
    power_generated: float,
    power_consumed: float,
    interpolated: bool
) -> SensorData:
    """Synthetic reading carrying power values computed by the server."""
    properties = {
        SensorDataProperty.POWER_GENERATED: power_generated,
        SensorDataProperty.POWER_CONSUMED: power_consumed,
    }
    if interpolated:
        properties[SensorDataProperty.INTERPOLATED] = "true"
    return SensorData(
        source=source,
        timestamp=timestamp,
        tool=settings.SERVER_TOOL_NAME,
        properties=properties,
    )


class StraddleResolver:
    """Finds the straddle of a non-virtual source around a timestamp."""

    def __init__(self, backend: PersistenceBackend):
        self.backend = backend

    async def resolve(self, source: Union[str, Source], timestamp: datetime) -> Straddle:
        """
        Resolve the straddle for a source given by name or object.

        Raises:
            BadArgumentError: The source is virtual
            NotFoundError: Unknown source, or the timestamp lies outside its data
        """
        if isinstance(source, str):
            source = await self.backend.get_source(source)
        if source.virtual:
            raise BadArgumentError(f"Cannot straddle virtual source {source.name}")
        return await self.resolve_leaf(source.name, timestamp)

    async def resolve_leaf(self, source_name: str, timestamp: datetime) -> Straddle:
        """Resolve a straddle for a source already known to be non-virtual."""
        timestamp = ensure_utc(timestamp)

        # The greatest reading at or before the timestamp doubles as the
        # exact-match lookup.
        before = await self.backend.get_sensor_data_before(source_name, timestamp)
        if before is not None and before.timestamp == timestamp:
            return Straddle(timestamp, before, before)

        after = await self.backend.get_sensor_data_after(source_name, timestamp)
        if before is None or after is None:
            raise NotFoundError(
                f"No sensor data straddles {timestamp.isoformat()} for source {source_name}"
            )
        return Straddle(timestamp, before, after)
