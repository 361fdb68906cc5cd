"""
Persistence contract tests, run against every backend.
"""
from datetime import datetime

import pytest

from meterhub.core.exceptions import (
    BackendFailure,
    BadArgumentError,
    BadIntervalError,
    ConflictError,
    NotFoundError,
    ReferentialError,
)
from meterhub.models.database import SourceRow
from meterhub.models.schemas import Source, User
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.storage import SqlAlchemyBackend

from tests.factories import T0, add_meter, add_readings, add_user, add_virtual, at, reading


class TestUsers:
    async def test_put_and_get_user(self, backend):
        await backend.put_user(User(username="alice", admin=True, properties={"team": "ops"}))

        user = await backend.get_user("alice")
        assert user.admin is True
        assert user.properties == {"team": "ops"}

    async def test_duplicate_user_conflicts(self, backend):
        await add_user(backend, "alice")
        with pytest.raises(ConflictError):
            await add_user(backend, "alice")

    async def test_unknown_user_not_found(self, backend):
        with pytest.raises(NotFoundError):
            await backend.get_user("nobody")

    async def test_blank_username_is_bad_argument(self, backend):
        with pytest.raises(BadArgumentError):
            await backend.get_user("  ")

    async def test_users_sorted_by_name(self, backend):
        for name in ("carol", "alice", "bob"):
            await add_user(backend, name)
        assert [u.username for u in await backend.get_users()] == ["alice", "bob", "carol"]

    async def test_delete_user_cascades_to_owned_sources(self, owned_backend):
        backend = owned_backend
        await add_user(backend, "bob")
        await add_meter(backend, "bob-meter", owner="bob")
        await add_readings(backend, [reading("bob-meter", 0, powerConsumed=10)])
        await add_meter(backend, "alice-meter")
        await add_virtual(backend, "campus", ["alice-meter", "bob-meter"])

        await backend.delete_user("bob")

        with pytest.raises(NotFoundError):
            await backend.get_user("bob")
        with pytest.raises(NotFoundError):
            await backend.get_source("bob-meter")
        assert (await backend.get_source("campus")).subsources == ["alice-meter"]

    async def test_delete_unknown_user_not_found(self, backend):
        with pytest.raises(NotFoundError):
            await backend.delete_user("nobody")


class TestSources:
    async def test_put_and_get_source(self, owned_backend):
        await owned_backend.put_source(Source(
            name="meter-1",
            owner="alice",
            public=True,
            location="Roof",
            properties={"carbonIntensity": 1500, "supportsEnergyCounters": True},
        ))

        source = await owned_backend.get_source("meter-1")
        assert source.public is True
        assert source.location == "Roof"
        assert source.properties == {"carbonIntensity": "1500", "supportsEnergyCounters": "true"}
        assert source.subsources == []

    async def test_duplicate_source_conflicts_without_overwrite(self, owned_backend):
        await add_meter(owned_backend, "meter-1", fuelType="solar")
        with pytest.raises(ConflictError):
            await add_meter(owned_backend, "meter-1", fuelType="wind")
        assert (await owned_backend.get_source("meter-1")).properties == {"fuelType": "solar"}

    async def test_overwrite_replaces_source(self, owned_backend):
        await add_meter(owned_backend, "meter-1", fuelType="solar")

        await owned_backend.put_source(
            Source(name="meter-1", owner="alice", description="Replaced", properties={"updateInterval": "60"}),
            overwrite=True,
        )

        source = await owned_backend.get_source("meter-1")
        assert source.description == "Replaced"
        assert source.properties == {"updateInterval": "60"}

    async def test_switching_to_virtual_drops_readings(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", 0, powerConsumed=1)])

        await owned_backend.put_source(Source(name="meter-1", owner="alice", virtual=True), overwrite=True)
        await owned_backend.put_source(Source(name="meter-1", owner="alice"), overwrite=True)

        assert (await owned_backend.get_sensor_data_stats("meter-1")).count == 0
        assert await owned_backend.get_sensor_data_before("meter-1", at(0)) is None

    async def test_overwrite_keeps_readings_of_physical_source(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", 0, powerConsumed=1)])

        await owned_backend.put_source(
            Source(name="meter-1", owner="alice", description="Replaced"), overwrite=True
        )

        assert (await owned_backend.get_sensor_data_stats("meter-1")).count == 1

    async def test_unknown_owner_is_referential_error(self, backend):
        with pytest.raises(ReferentialError):
            await add_meter(backend, "meter-1", owner="ghost")

    async def test_unknown_subsource_is_referential_error(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        with pytest.raises(ReferentialError):
            await add_virtual(owned_backend, "campus", ["meter-1", "meter-2"])

    async def test_non_virtual_source_cannot_have_subsources(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        with pytest.raises(BadArgumentError):
            await owned_backend.put_source(Source(name="meter-2", owner="alice", subsources=["meter-1"]))

    async def test_subsources_sorted(self, owned_backend):
        for name in ("meter-c", "meter-a", "meter-b"):
            await add_meter(owned_backend, name)
        await add_virtual(owned_backend, "campus", ["meter-c", "meter-a", "meter-b"])

        assert await owned_backend.get_subsources("campus") == ["meter-a", "meter-b", "meter-c"]
        assert (await owned_backend.get_source("campus")).subsources == ["meter-a", "meter-b", "meter-c"]

    async def test_sources_sorted_with_subsources(self, owned_backend):
        await add_meter(owned_backend, "meter-2")
        await add_meter(owned_backend, "meter-1")
        await add_virtual(owned_backend, "campus", ["meter-2", "meter-1"])

        sources = await owned_backend.get_sources()
        assert [s.name for s in sources] == ["campus", "meter-1", "meter-2"]
        assert sources[0].subsources == ["meter-1", "meter-2"]

    async def test_delete_source_cascades(self, owned_backend):
        backend = owned_backend
        await add_meter(backend, "meter-1", fuelType="solar")
        await add_meter(backend, "meter-2")
        await add_virtual(backend, "campus", ["meter-1", "meter-2"])
        await add_readings(backend, [reading("meter-1", m, powerConsumed=100) for m in (0, 15, 30)])

        await backend.delete_source("meter-1")

        with pytest.raises(NotFoundError):
            await backend.get_source("meter-1")
        with pytest.raises(NotFoundError):
            await backend.get_sensor_data_range("meter-1", T0)
        assert await backend.get_subsources("campus") == ["meter-2"]

        # The name can be reused, and nothing of the old source survives
        await add_meter(backend, "meter-1")
        assert (await backend.get_source("meter-1")).properties == {}
        assert await backend.get_sensor_data_range("meter-1", T0) == []

    async def test_delete_unknown_source_not_found(self, owned_backend):
        with pytest.raises(NotFoundError):
            await owned_backend.delete_source("missing")


class TestSensorData:
    async def test_put_and_get_exact(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", 0, powerConsumed=100.5)])

        data = await owned_backend.get_sensor_data("meter-1", T0)
        assert data.source == "meter-1"
        assert data.timestamp == T0
        assert data.tool == "test-meter"
        assert data.get_property_as_float(SensorDataProperty.POWER_CONSUMED) == 100.5
        assert await owned_backend.has_sensor_data("meter-1", T0)
        assert not await owned_backend.has_sensor_data("meter-1", at(1))

    async def test_naive_timestamps_are_utc(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", 0, powerConsumed=1)])

        data = await owned_backend.get_sensor_data("meter-1", datetime(2024, 1, 1))
        assert data.timestamp == T0
        assert data.timestamp.tzinfo is not None

    async def test_duplicate_reading_conflicts_and_keeps_original(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", 0, powerConsumed=100)])

        with pytest.raises(ConflictError):
            await owned_backend.put_sensor_data(reading("meter-1", 0, powerConsumed=200))

        data = await owned_backend.get_sensor_data("meter-1", T0)
        assert data.get_property_as_float(SensorDataProperty.POWER_CONSUMED) == 100

    async def test_reading_for_unknown_source_is_referential_error(self, owned_backend):
        with pytest.raises(ReferentialError):
            await owned_backend.put_sensor_data(reading("ghost", 0, powerConsumed=1))

    async def test_reading_for_virtual_source_rejected(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_virtual(owned_backend, "campus", ["meter-1"])
        with pytest.raises(BadArgumentError):
            await owned_backend.put_sensor_data(reading("campus", 0, powerConsumed=1))

    async def test_missing_reading_not_found(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        with pytest.raises(NotFoundError):
            await owned_backend.get_sensor_data("meter-1", T0)
        with pytest.raises(NotFoundError):
            await owned_backend.get_sensor_data("ghost", T0)

    async def test_range_is_ascending_and_inclusive(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", m, powerConsumed=m) for m in (30, 0, 45, 15, 60)])

        rows = await owned_backend.get_sensor_data_range("meter-1", at(15), at(45))
        assert [r.timestamp for r in rows] == [at(15), at(30), at(45)]

        open_ended = await owned_backend.get_sensor_data_range("meter-1", at(20))
        assert [r.timestamp for r in open_ended] == [at(30), at(45), at(60)]

    async def test_range_start_after_end_is_bad_interval(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        with pytest.raises(BadIntervalError):
            await owned_backend.get_sensor_data_range("meter-1", at(10), at(5))

    async def test_range_of_unknown_source_not_found(self, owned_backend):
        with pytest.raises(NotFoundError):
            await owned_backend.get_sensor_data_range("ghost", T0, at(10))

    async def test_latest(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        with pytest.raises(NotFoundError):
            await owned_backend.get_latest_sensor_data("meter-1")

        await add_readings(owned_backend, [reading("meter-1", m, powerConsumed=m) for m in (10, 50, 20)])
        assert (await owned_backend.get_latest_sensor_data("meter-1")).timestamp == at(50)

    async def test_before_and_after(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", m, powerConsumed=m) for m in (0, 10, 20)])

        assert (await owned_backend.get_sensor_data_before("meter-1", at(15))).timestamp == at(10)
        assert (await owned_backend.get_sensor_data_after("meter-1", at(15))).timestamp == at(20)
        assert (await owned_backend.get_sensor_data_before("meter-1", at(10))).timestamp == at(10)
        assert (await owned_backend.get_sensor_data_after("meter-1", at(10))).timestamp == at(10)
        assert await owned_backend.get_sensor_data_before("meter-1", at(-1)) is None
        assert await owned_backend.get_sensor_data_after("meter-1", at(21)) is None

        with pytest.raises(NotFoundError):
            await owned_backend.get_sensor_data_before("ghost", at(5))

    async def test_stats(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        empty = await owned_backend.get_sensor_data_stats("meter-1")
        assert (empty.count, empty.first, empty.last) == (0, None, None)

        await add_readings(owned_backend, [reading("meter-1", m, powerConsumed=1) for m in (30, 5, 90)])
        stats = await owned_backend.get_sensor_data_stats("meter-1")
        assert stats.count == 3
        assert stats.first == at(5)
        assert stats.last == at(90)

    async def test_delete_reading(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", m, powerConsumed=1) for m in (0, 10)])

        await owned_backend.delete_sensor_data("meter-1", T0)

        assert [r.timestamp for r in await owned_backend.get_sensor_data_range("meter-1", T0)] == [at(10)]
        with pytest.raises(NotFoundError):
            await owned_backend.delete_sensor_data("meter-1", T0)

    async def test_delete_all_readings(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", m, powerConsumed=1) for m in (0, 10, 20)])

        await owned_backend.delete_all_sensor_data("meter-1")

        assert await owned_backend.get_sensor_data_range("meter-1", T0) == []
        await owned_backend.get_source("meter-1")
        with pytest.raises(NotFoundError):
            await owned_backend.delete_all_sensor_data("ghost")


class TestLifecycle:
    async def test_wipe_data(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await add_readings(owned_backend, [reading("meter-1", 0, powerConsumed=1)])

        await owned_backend.wipe_data()

        assert await owned_backend.get_users() == []
        assert await owned_backend.get_sources() == []

    async def test_maintenance_is_safe_to_run(self, owned_backend):
        await add_meter(owned_backend, "meter-1")
        await owned_backend.perform_maintenance()
        assert [s.name for s in await owned_backend.get_sources()] == ["meter-1"]


class TestSqlFailures:
    async def test_unreachable_database_is_backend_failure(self, tmp_path):
        store = SqlAlchemyBackend(database_url=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'meterhub.db'}")
        try:
            with pytest.raises(BackendFailure) as excinfo:
                await store.get_users()
            assert excinfo.value.status_code == 503
            with pytest.raises(BackendFailure):
                await store.initialize()
        finally:
            await store.close()

    async def test_owner_deleted_during_write_is_referential_error(self, sql_backend, monkeypatch):
        await add_user(sql_backend, "alice")

        # Skips the up-front checks, as if the owner vanished after them
        async def write_unchecked(session, source, overwrite):
            session.add(SourceRow(name=source.name, owner=source.owner))
            await session.flush()

        monkeypatch.setattr(sql_backend, "_write_source", write_unchecked)
        with pytest.raises(ReferentialError):
            await sql_backend.put_source(Source(name="meter-1", owner="ghost"))

    async def test_concurrent_duplicate_source_is_conflict(self, sql_backend, monkeypatch):
        await add_user(sql_backend, "alice")
        await add_meter(sql_backend, "meter-1")

        async def write_unchecked(session, source, overwrite):
            session.add(SourceRow(name=source.name, owner=source.owner))
            await session.flush()

        monkeypatch.setattr(sql_backend, "_write_source", write_unchecked)
        with pytest.raises(ConflictError):
            await sql_backend.put_source(Source(name="meter-1", owner="alice"))
