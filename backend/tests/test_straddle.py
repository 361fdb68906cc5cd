"""
Straddle resolution and interpolation.
"""
import pytest

from meterhub.core.exceptions import BadArgumentError, NotFoundError
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.services.straddle import Straddle, StraddleResolver

from tests.factories import add_meter, add_readings, add_virtual, at, reading


@pytest.fixture
def straddles(owned_backend):
    return StraddleResolver(owned_backend)


async def test_exact_match_is_degenerate(owned_backend, straddles):
    await add_meter(owned_backend, "meter-1")
    stored = await add_readings(owned_backend, [
        reading("meter-1", 0, powerConsumed=100),
        reading("meter-1", 10, powerConsumed=200),
        reading("meter-1", 20, powerConsumed=300),
    ])

    straddle = await straddles.resolve("meter-1", at(10))

    assert straddle.degenerate
    assert straddle.before == straddle.after == stored[1]
    assert straddle.interpolate(SensorDataProperty.POWER_CONSUMED) == 200
    assert straddle.power() == stored[1]
    assert not straddle.power().interpolated


async def test_midpoint_interpolation(owned_backend, straddles):
    await add_meter(owned_backend, "meter-1")
    await add_readings(owned_backend, [
        reading("meter-1", 0, powerConsumed=100, powerGenerated=0),
        reading("meter-1", 60, powerConsumed=200, powerGenerated=60),
    ])

    straddle = await straddles.resolve("meter-1", at(30))

    assert not straddle.degenerate
    assert straddle.before.timestamp == at(0)
    assert straddle.after.timestamp == at(60)
    assert straddle.power_consumed == pytest.approx(150)
    assert straddle.power_generated == pytest.approx(30)

    power = straddle.power()
    assert power.timestamp == at(30)
    assert power.interpolated
    assert power.get_property_as_float(SensorDataProperty.POWER_CONSUMED) == pytest.approx(150)


async def test_interpolation_uses_nearest_neighbours(owned_backend, straddles):
    await add_meter(owned_backend, "meter-1")
    await add_readings(owned_backend, [
        reading("meter-1", 0, powerConsumed=0),
        reading("meter-1", 40, powerConsumed=400),
        reading("meter-1", 50, powerConsumed=500),
        reading("meter-1", 100, powerConsumed=0),
    ])

    straddle = await straddles.resolve("meter-1", at(45))

    assert (straddle.before.timestamp, straddle.after.timestamp) == (at(40), at(50))
    assert straddle.power_consumed == pytest.approx(450)


async def test_property_on_one_side_only_is_missing(owned_backend, straddles):
    await add_meter(owned_backend, "meter-1")
    await add_readings(owned_backend, [
        reading("meter-1", 0, powerConsumed=100, powerGenerated=50),
        reading("meter-1", 10, powerConsumed=100),
    ])

    straddle = await straddles.resolve("meter-1", at(5))

    assert straddle.interpolate(SensorDataProperty.POWER_GENERATED) is None
    assert straddle.power_generated == 0.0


@pytest.mark.parametrize("minutes", [-5, 25])
async def test_outside_recorded_span_not_found(owned_backend, straddles, minutes):
    await add_meter(owned_backend, "meter-1")
    await add_readings(owned_backend, [
        reading("meter-1", 0, powerConsumed=1),
        reading("meter-1", 20, powerConsumed=1),
    ])

    with pytest.raises(NotFoundError):
        await straddles.resolve("meter-1", at(minutes))


async def test_source_without_data_not_found(owned_backend, straddles):
    await add_meter(owned_backend, "meter-1")
    with pytest.raises(NotFoundError):
        await straddles.resolve("meter-1", at(0))


async def test_unknown_source_not_found(straddles):
    with pytest.raises(NotFoundError):
        await straddles.resolve("ghost", at(0))


async def test_virtual_source_rejected(owned_backend, straddles):
    await add_meter(owned_backend, "meter-1")
    await add_virtual(owned_backend, "campus", ["meter-1"])
    with pytest.raises(BadArgumentError):
        await straddles.resolve("campus", at(0))


class TestStraddleValidation:
    def test_timestamp_outside_readings(self):
        with pytest.raises(BadArgumentError):
            Straddle(at(30), reading("m", 0), reading("m", 10))

    def test_readings_out_of_order(self):
        with pytest.raises(BadArgumentError):
            Straddle(at(5), reading("m", 10), reading("m", 0))

    def test_missing_side(self):
        with pytest.raises(BadArgumentError):
            Straddle(at(0), reading("m", 0), None)
