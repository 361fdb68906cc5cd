"""
Builders for users, sources and readings used across the test suite.
"""
from datetime import datetime, timedelta, timezone
from typing import Iterable, List

from meterhub.models.schemas import SensorData, Source, User
from meterhub.models.schemas.sensor_data import SensorDataProperty

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    """Timestamp ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


def reading(source: str, minutes: float, **properties) -> SensorData:
    return SensorData(source=source, timestamp=at(minutes), tool="test-meter", properties=properties)


async def add_user(backend, username: str = "alice") -> User:
    user = User(username=username)
    await backend.put_user(user)
    return user


async def add_meter(backend, name: str, owner: str = "alice", **properties) -> Source:
    source = Source(name=name, owner=owner, properties=properties)
    await backend.put_source(source)
    return source


async def add_virtual(backend, name: str, subsources: Iterable[str], owner: str = "alice") -> Source:
    source = Source(name=name, owner=owner, virtual=True, subsources=list(subsources))
    await backend.put_source(source)
    return source


async def add_readings(backend, readings: Iterable[SensorData]) -> List[SensorData]:
    stored = list(readings)
    for data in stored:
        await backend.put_sensor_data(data)
    return stored


async def add_flat_power(
    backend,
    source: str,
    watts: float,
    minutes: int = 60,
    step: int = 15,
    key: str = SensorDataProperty.POWER_CONSUMED
) -> List[SensorData]:
    """Constant power readings every ``step`` minutes from T0 through T0 + minutes."""
    return await add_readings(
        backend,
        (reading(source, offset, **{key: watts}) for offset in range(0, minutes + 1, step)),
    )
