"""
Queries that treat virtual and physical sources the same way.

A virtual source behaves as one physical meter whose numeric properties
are the sums of its leaves' properties. Leaves are the distinct
non-virtual sources reachable through the subsource hierarchy. Per-leaf
backend reads run concurrently and are reduced with sum/min/max, so the
result does not depend on the order they complete in.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Set, Tuple, TypeVar

from meterhub.core.config import settings
from meterhub.core.exceptions import CyclicHierarchyError, MeterHubError, NotFoundError
from meterhub.core.logging import get_logger
from meterhub.core.metrics import queries_total, query_leaf_count
from meterhub.core.timestamps import ensure_utc
from meterhub.models.schemas import SensorData, Source
from meterhub.models.schemas.sensor_data import SensorDataProperty
from meterhub.services.carbon import CarbonCalculator, make_carbon_reading
from meterhub.services.energy import EnergyIntegrator, make_energy_reading
from meterhub.services.straddle import StraddleResolver, make_power_reading
from meterhub.storage.base import PersistenceBackend

logger = get_logger(__name__)

T = TypeVar("T")


async def gather_leaves(
    leaves: List[Source],
    query: Callable[[Source], Awaitable[T]],
    concurrency: Optional[int] = None
) -> List[T]:
    """
    Run ``query`` for every leaf concurrently, at most ``concurrency`` at once.

    Results come back in leaf order. The first failure propagates once the
    queries still pending have been cancelled and have finished unwinding.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.LEAF_QUERY_CONCURRENCY)

    async def run(leaf: Source) -> T:
        async with semaphore:
            return await query(leaf)

    tasks = [asyncio.ensure_future(run(leaf)) for leaf in leaves]
    try:
        return list(await asyncio.gather(*tasks))
    except Exception:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(f"Cancelled {len(pending)} pending leaf query(ies) after a failure")
            await asyncio.gather(*pending, return_exceptions=True)
        raise


@asynccontextmanager
async def track_query(query_type: str):
    """Count a query by type and outcome."""
    try:
        yield
    except MeterHubError as e:
        queries_total.labels(query_type=query_type, status=e.code).inc()
        raise
    else:
        queries_total.labels(query_type=query_type, status="success").inc()


class VirtualSourceResolver:
    """Latest reading, power, energy and carbon for any source."""

    def __init__(self, backend: PersistenceBackend, concurrency: Optional[int] = None):
        self.backend = backend
        self.concurrency = concurrency or settings.LEAF_QUERY_CONCURRENCY
        self.straddles = StraddleResolver(backend)
        self.integrator = EnergyIntegrator(backend, self.straddles)
        self.carbon_calculator = CarbonCalculator(self.integrator)

    async def flatten(self, source: Source) -> List[Source]:
        """
        Distinct non-virtual leaves reachable from ``source``.

        A non-virtual source flattens to itself. Leaves come back in
        depth-first order over each source's (sorted) subsources, and a leaf
        reachable through several parents appears once.

        Raises:
            CyclicHierarchyError: A source contains itself transitively
            NotFoundError: A subsource no longer exists
        """
        if not source.virtual:
            return [source]

        leaves: List[Source] = []
        seen: Set[str] = {source.name}
        path: List[str] = [source.name]
        stack: List[Tuple[Source, Iterator[str]]] = [(source, iter(source.subsources))]

        while stack:
            node, children = stack[-1]
            child_name = next(children, None)
            if child_name is None:
                stack.pop()
                path.pop()
                continue
            if child_name in path:
                raise CyclicHierarchyError(path[path.index(child_name):] + [child_name])
            if child_name in seen:
                continue
            seen.add(child_name)

            child = await self.backend.get_source(child_name)
            if child.virtual:
                stack.append((child, iter(child.subsources)))
                path.append(child.name)
            else:
                leaves.append(child)

        logger.debug(f"Flattened {source.name} to {len(leaves)} leaf source(s)")
        return leaves

    async def _leaves_of(self, source: Source, query_type: str) -> List[Source]:
        leaves = await self.flatten(source)
        if not leaves:
            raise NotFoundError(f"Virtual source {source.name} has no non-virtual subsources")
        query_leaf_count.labels(query_type=query_type).observe(len(leaves))
        return leaves

    async def _gather(self, leaves: List[Source], query: Callable[[Source], Awaitable[T]]) -> List[T]:
        return await gather_leaves(leaves, query, self.concurrency)

    async def _earliest_latest(self, leaves: List[Source]) -> Tuple[datetime, List[SensorData]]:
        readings = await self._gather(
            leaves, lambda leaf: self.backend.get_latest_sensor_data(leaf.name)
        )
        # Earliest of the latest: every leaf has data up to this point.
        return min(reading.timestamp for reading in readings), readings

    async def latest_reading(self, source_name: str) -> SensorData:
        """
        Newest reading of a source.

        For a virtual source the well-known numeric properties are summed
        across leaves and the timestamp is the earliest of the leaves'
        latest timestamps.
        """
        async with track_query("latest"):
            source = await self.backend.get_source(source_name)
            if not source.virtual:
                return await self.backend.get_latest_sensor_data(source.name)

            leaves = await self._leaves_of(source, "latest")
            timestamp, readings = await self._earliest_latest(leaves)

            properties: Dict[str, float] = {}
            for key in SensorDataProperty.NUMERIC:
                values = [
                    value for value in (reading.get_property_as_float(key) for reading in readings)
                    if value is not None
                ]
                if values:
                    properties[key] = sum(values)

            return SensorData(
                source=source.name,
                timestamp=timestamp,
                tool=settings.SERVER_TOOL_NAME,
                properties=properties,
            )

    async def power_at(self, source_name: str, timestamp: datetime) -> SensorData:
        """
        Power generated and consumed at ``timestamp``.

        A physical source with a reading at exactly ``timestamp`` returns
        that reading. Otherwise power is interpolated, summed over leaves
        for a virtual source.
        """
        timestamp = ensure_utc(timestamp)
        async with track_query("power"):
            source = await self.backend.get_source(source_name)
            if not source.virtual:
                straddle = await self.straddles.resolve_leaf(source.name, timestamp)
                return straddle.power()

            leaves = await self._leaves_of(source, "power")
            straddles = await self._gather(
                leaves, lambda leaf: self.straddles.resolve_leaf(leaf.name, timestamp)
            )
            return make_power_reading(
                timestamp,
                source.name,
                sum(straddle.power_generated for straddle in straddles),
                sum(straddle.power_consumed for straddle in straddles),
                interpolated=any(not straddle.degenerate for straddle in straddles),
            )

    async def _resolve_virtual_end(self, leaves: List[Source], end: Optional[datetime]) -> datetime:
        if end is not None:
            return ensure_utc(end)
        timestamp, _ = await self._earliest_latest(leaves)
        return timestamp

    async def interval_energy(
        self,
        source_name: str,
        start: datetime,
        end: Optional[datetime] = None,
        interval_minutes: Optional[int] = None
    ) -> SensorData:
        """
        Energy generated and consumed between start and end.

        Args:
            source_name: Virtual or physical source
            start: Start of the range
            end: End of the range; None means up to the latest data
            interval_minutes: Sampling interval; None or 0 uses the endpoints only

        Returns:
            Synthetic reading stamped at ``start``. Sums over several leaves
            are always marked interpolated.
        """
        start = ensure_utc(start)
        async with track_query("energy"):
            source = await self.backend.get_source(source_name)
            if not source.virtual:
                return await self.integrator.interval_energy(source, start, end, interval_minutes)

            leaves = await self._leaves_of(source, "energy")
            end = await self._resolve_virtual_end(leaves, end)
            readings = await self._gather(
                leaves,
                lambda leaf: self.integrator.interval_energy(leaf, start, end, interval_minutes),
            )
            return make_energy_reading(
                start,
                source.name,
                sum(r.get_property_as_float(SensorDataProperty.ENERGY_GENERATED) for r in readings),
                sum(r.get_property_as_float(SensorDataProperty.ENERGY_CONSUMED) for r in readings),
                interpolated=True,
            )

    async def carbon(
        self,
        source_name: str,
        start: datetime,
        end: Optional[datetime] = None,
        interval_minutes: Optional[int] = None
    ) -> SensorData:
        """Pounds of CO2 emitted between start and end, summed over leaves."""
        start = ensure_utc(start)
        async with track_query("carbon"):
            source = await self.backend.get_source(source_name)
            if not source.virtual:
                emitted = await self.carbon_calculator.leaf_carbon(source, start, end, interval_minutes)
                return make_carbon_reading(start, source.name, emitted)

            leaves = await self._leaves_of(source, "carbon")
            end = await self._resolve_virtual_end(leaves, end)
            emitted = await self._gather(
                leaves,
                lambda leaf: self.carbon_calculator.leaf_carbon(leaf, start, end, interval_minutes),
            )
            return make_carbon_reading(start, source.name, sum(emitted))
