"""
Carbon emitted by generation.
"""
import pytest

from meterhub.core.exceptions import BadIntervalError
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.services.carbon import carbon_between
from meterhub.services.straddle import Straddle

from tests.factories import add_flat_power, add_meter, add_virtual, at, reading

CARBON_EMITTED = SensorDataProperty.CARBON_EMITTED
POWER_GENERATED = SensorDataProperty.POWER_GENERATED


def test_carbon_between_scales_generated_energy():
    start = reading("plant", 0, powerGenerated=1000)
    end = reading("plant", 60, powerGenerated=1000)

    # 1 kWh at 2000 lbs/MWh
    carbon = carbon_between(Straddle(start.timestamp, start, start), Straddle(end.timestamp, end, end), 2000)
    assert carbon == pytest.approx(2.0)


async def test_physical_source_carbon(owned_backend, resolver):
    await add_meter(owned_backend, "plant", carbonIntensity="2000")
    await add_flat_power(owned_backend, "plant", 1000, key=POWER_GENERATED)

    carbon = await resolver.carbon("plant", at(0), at(60), 15)

    assert carbon.get_property_as_float(CARBON_EMITTED) == pytest.approx(2.0)
    assert carbon.interpolated
    assert carbon.timestamp == at(0)


async def test_consumption_emits_nothing(owned_backend, resolver):
    await add_meter(owned_backend, "meter-1", carbonIntensity="2000")
    await add_flat_power(owned_backend, "meter-1", 1000)

    carbon = await resolver.carbon("meter-1", at(0), at(60))

    assert carbon.get_property_as_float(CARBON_EMITTED) == pytest.approx(0.0)


async def test_virtual_source_sums_leaves(owned_backend, resolver):
    await add_meter(owned_backend, "coal", carbonIntensity="2000")
    await add_meter(owned_backend, "solar")
    await add_virtual(owned_backend, "grid", ["coal", "solar"])
    await add_flat_power(owned_backend, "coal", 1000, key=POWER_GENERATED)
    await add_flat_power(owned_backend, "solar", 5000, key=POWER_GENERATED)

    carbon = await resolver.carbon("grid", at(0), at(60))

    assert carbon.source == "grid"
    assert carbon.get_property_as_float(CARBON_EMITTED) == pytest.approx(2.0)


async def test_interval_longer_than_range(owned_backend, resolver):
    await add_meter(owned_backend, "plant", carbonIntensity="2000")
    await add_flat_power(owned_backend, "plant", 1000, key=POWER_GENERATED)

    with pytest.raises(BadIntervalError):
        await resolver.carbon("plant", at(0), at(10), 20)
