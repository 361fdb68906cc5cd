"""
SQL persistence backend built on async SQLAlchemy.

Works with any async driver SQLAlchemy supports; production runs on
PostgreSQL (asyncpg), tests and single-node installs on SQLite
(aiosqlite). Every multi-row write, including the delete cascades, runs
inside a single transaction.
"""
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, inspect, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from meterhub.core.database import Base, create_engine, create_session_factory
from meterhub.core.exceptions import (
    BackendFailure,
    BadArgumentError,
    ConflictError,
    MeterHubError,
    NotFoundError,
    ReferentialError,
)
from meterhub.core.logging import get_logger
from meterhub.core.metrics import (
    backend_errors_total,
    backend_operation_duration_seconds,
    sensor_data_stored_total,
)
from meterhub.core.timestamps import ensure_utc
from meterhub.models.database import (
    SensorDataRow,
    SourceHierarchyRow,
    SourcePropertyRow,
    SourceRow,
    UserRow,
)
from meterhub.models.schemas import SensorData, SensorDataStats, Source, User
from meterhub.storage.base import PersistenceBackend

logger = get_logger(__name__)


class SqlAlchemyBackend(PersistenceBackend):
    """Relational storage for users, sources, hierarchy edges and readings."""

    name = "sql"

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self._engine = engine or create_engine(database_url)
        self._session_factory = create_session_factory(self._engine)
        self._freshly_created = False

    @asynccontextmanager
    async def _operation(self, operation: str):
        """Time an operation and turn driver errors into BackendFailure."""
        start_time = time.perf_counter()
        try:
            yield
        except MeterHubError:
            raise
        except SQLAlchemyError as e:
            backend_errors_total.labels(backend=self.name, operation=operation).inc()
            logger.error(f"Database error in {operation}: {e}", exc_info=True)
            raise BackendFailure(f"Database error in {operation}") from e
        finally:
            backend_operation_duration_seconds.labels(
                backend=self.name, operation=operation
            ).observe(time.perf_counter() - start_time)

    # Lifecycle

    async def initialize(self, wipe: bool = False) -> None:
        async with self._operation("initialize"):
            async with self._engine.begin() as conn:
                existed = await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).has_table(SensorDataRow.__tablename__)
                )
                if wipe and existed:
                    await conn.run_sync(Base.metadata.drop_all)
                await conn.run_sync(Base.metadata.create_all)
        self._freshly_created = wipe or not existed
        logger.info(
            f"SQL storage initialized (fresh={self._freshly_created}, "
            f"dialect={self._engine.dialect.name})"
        )

    @property
    def is_freshly_created(self) -> bool:
        return self._freshly_created

    async def wipe_data(self) -> None:
        async with self._operation("wipe_data"):
            async with self._session_factory() as session:
                async with session.begin():
                    for model in (SensorDataRow, SourceHierarchyRow, SourcePropertyRow, SourceRow, UserRow):
                        await session.execute(delete(model))
        logger.info("SQL storage wiped")

    async def perform_maintenance(self) -> None:
        statement = {"postgresql": "ANALYZE", "sqlite": "PRAGMA optimize"}.get(self._engine.dialect.name)
        if statement is None:
            return
        async with self._operation("perform_maintenance"):
            async with self._engine.begin() as conn:
                await conn.exec_driver_sql(statement)
        logger.info(f"Database maintenance completed: {statement}")

    async def close(self) -> None:
        await self._engine.dispose()

    # Row conversion

    @staticmethod
    def _to_user(row: UserRow) -> User:
        return User(username=row.username, admin=row.admin, properties=row.properties or {})

    @staticmethod
    def _to_source(row: SourceRow, properties: Dict[str, str], subsources: List[str]) -> Source:
        return Source(
            name=row.name,
            owner=row.owner,
            public=row.public,
            virtual=row.virtual,
            coordinates=row.coordinates,
            location=row.location,
            description=row.description,
            properties=properties,
            subsources=subsources,
        )

    @staticmethod
    def _to_sensor_data(row: SensorDataRow) -> SensorData:
        return SensorData(
            source=row.source_name,
            timestamp=ensure_utc(row.timestamp),
            tool=row.tool or "",
            properties=row.properties or {},
        )

    async def _ensure_source(self, session: AsyncSession, name: str) -> SourceRow:
        self._require_name(name, "source name")
        row = await session.get(SourceRow, name)
        if row is None:
            raise NotFoundError(f"Unknown source: {name}")
        return row

    async def _source_exists(self, name: str) -> bool:
        async with self._session_factory() as session:
            return await session.get(SourceRow, name) is not None

    async def _source_integrity_error(self, source: Source) -> MeterHubError:
        """
        Classify an IntegrityError raised while writing a source.

        A row referenced by the source may have been deleted concurrently
        after it was checked; only a surviving set of references means the
        source itself collided.
        """
        async with self._session_factory() as session:
            if await session.get(UserRow, source.owner) is None:
                return ReferentialError(f"Source {source.name} has unknown owner: {source.owner}")
            unknown = await self._unknown_subsources(session, source)
            if unknown:
                return ReferentialError(
                    f"Source {source.name} has unknown subsource(s): {', '.join(unknown)}"
                )
        return ConflictError(f"Source already exists: {source.name}")

    # Users

    async def get_users(self) -> List[User]:
        async with self._operation("get_users"):
            async with self._session_factory() as session:
                result = await session.execute(select(UserRow).order_by(UserRow.username))
                return [self._to_user(row) for row in result.scalars().all()]

    async def get_user(self, username: str) -> User:
        self._require_name(username, "username")
        async with self._operation("get_user"):
            async with self._session_factory() as session:
                row = await session.get(UserRow, username)
                if row is None:
                    raise NotFoundError(f"Unknown user: {username}")
                return self._to_user(row)

    async def put_user(self, user: User) -> None:
        self._require_name(user.username, "username")
        async with self._operation("put_user"):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        if await session.get(UserRow, user.username) is not None:
                            raise ConflictError(f"User already exists: {user.username}")
                        session.add(UserRow(
                            username=user.username,
                            admin=user.admin,
                            properties=dict(user.properties),
                        ))
                except IntegrityError as e:
                    raise ConflictError(f"User already exists: {user.username}") from e

    async def delete_user(self, username: str) -> None:
        self._require_name(username, "username")
        async with self._operation("delete_user"):
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(UserRow, username)
                    if row is None:
                        raise NotFoundError(f"Unknown user: {username}")
                    result = await session.execute(
                        select(SourceRow.name).where(SourceRow.owner == username)
                    )
                    owned = list(result.scalars().all())
                    for source_name in owned:
                        await self._delete_source_rows(session, source_name)
                    await session.delete(row)
        logger.info(f"Deleted user {username} and {len(owned)} owned source(s)")

    # Sources

    async def get_sources(self) -> List[Source]:
        async with self._operation("get_sources"):
            async with self._session_factory() as session:
                rows = (await session.execute(select(SourceRow).order_by(SourceRow.name))).scalars().all()
                properties: Dict[str, Dict[str, str]] = {}
                for prop in (await session.execute(select(SourcePropertyRow))).scalars().all():
                    properties.setdefault(prop.source_name, {})[prop.key] = prop.value
                children: Dict[str, List[str]] = {}
                edges = await session.execute(
                    select(SourceHierarchyRow).order_by(SourceHierarchyRow.subsource_name)
                )
                for edge in edges.scalars().all():
                    children.setdefault(edge.parent_name, []).append(edge.subsource_name)
                return [
                    self._to_source(row, properties.get(row.name, {}), children.get(row.name, []))
                    for row in rows
                ]

    async def get_source(self, name: str) -> Source:
        async with self._operation("get_source"):
            async with self._session_factory() as session:
                row = await self._ensure_source(session, name)
                props = await session.execute(
                    select(SourcePropertyRow).where(SourcePropertyRow.source_name == name)
                )
                properties = {prop.key: prop.value for prop in props.scalars().all()}
                subsources = await self._subsource_names(session, name)
                return self._to_source(row, properties, subsources)

    async def _subsource_names(self, session: AsyncSession, parent: str) -> List[str]:
        result = await session.execute(
            select(SourceHierarchyRow.subsource_name)
            .where(SourceHierarchyRow.parent_name == parent)
            .order_by(SourceHierarchyRow.subsource_name)
        )
        return list(result.scalars().all())

    async def put_source(self, source: Source, overwrite: bool = False) -> None:
        self._require_name(source.name, "source name")
        if source.subsources and not source.virtual:
            raise BadArgumentError(f"Non-virtual source {source.name} cannot have subsources")
        async with self._operation("put_source"):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        await self._write_source(session, source, overwrite)
                except IntegrityError as e:
                    raise await self._source_integrity_error(source) from e

    async def _unknown_subsources(self, session: AsyncSession, source: Source) -> List[str]:
        if not source.subsources:
            return []
        result = await session.execute(
            select(SourceRow.name).where(SourceRow.name.in_(source.subsources))
        )
        known = set(result.scalars().all())
        return [name for name in source.subsources if name not in known]

    async def _write_source(self, session: AsyncSession, source: Source, overwrite: bool) -> None:
        existing = await session.get(SourceRow, source.name)
        if existing is not None and not overwrite:
            raise ConflictError(f"Source already exists: {source.name}")
        if await session.get(UserRow, source.owner) is None:
            raise ReferentialError(f"Source {source.name} has unknown owner: {source.owner}")
        unknown = await self._unknown_subsources(session, source)
        if unknown:
            raise ReferentialError(
                f"Source {source.name} has unknown subsource(s): {', '.join(unknown)}"
            )

        if existing is None:
            existing = SourceRow(name=source.name)
            session.add(existing)
        else:
            await session.execute(
                delete(SourcePropertyRow).where(SourcePropertyRow.source_name == source.name)
            )
            await session.execute(
                delete(SourceHierarchyRow).where(SourceHierarchyRow.parent_name == source.name)
            )
            if source.virtual:
                # Virtual sources hold no readings of their own
                await session.execute(
                    delete(SensorDataRow).where(SensorDataRow.source_name == source.name)
                )
        existing.owner = source.owner
        existing.public = source.public
        existing.virtual = source.virtual
        existing.coordinates = source.coordinates
        existing.location = source.location
        existing.description = source.description
        # Parent row must exist before property and edge rows reference it
        await session.flush()

        session.add_all(
            SourcePropertyRow(source_name=source.name, key=key, value=value)
            for key, value in source.properties.items()
        )
        session.add_all(
            SourceHierarchyRow(parent_name=source.name, subsource_name=name)
            for name in source.subsources
        )

    async def delete_source(self, name: str) -> None:
        async with self._operation("delete_source"):
            async with self._session_factory() as session:
                async with session.begin():
                    await self._ensure_source(session, name)
                    await self._delete_source_rows(session, name)

    async def _delete_source_rows(self, session: AsyncSession, name: str) -> None:
        await session.execute(delete(SensorDataRow).where(SensorDataRow.source_name == name))
        await session.execute(delete(SourcePropertyRow).where(SourcePropertyRow.source_name == name))
        await session.execute(
            delete(SourceHierarchyRow).where(
                or_(
                    SourceHierarchyRow.parent_name == name,
                    SourceHierarchyRow.subsource_name == name,
                )
            )
        )
        await session.execute(delete(SourceRow).where(SourceRow.name == name))

    async def get_subsources(self, parent: str) -> List[str]:
        async with self._operation("get_subsources"):
            async with self._session_factory() as session:
                await self._ensure_source(session, parent)
                return await self._subsource_names(session, parent)

    # Sensor data

    async def get_sensor_data(self, source: str, timestamp: datetime) -> SensorData:
        self._require_name(source, "source name")
        timestamp = ensure_utc(timestamp)
        async with self._operation("get_sensor_data"):
            async with self._session_factory() as session:
                row = await session.get(SensorDataRow, (source, timestamp))
                if row is None:
                    await self._ensure_source(session, source)
                    raise NotFoundError(f"No sensor data for {source} at {timestamp.isoformat()}")
                return self._to_sensor_data(row)

    async def has_sensor_data(self, source: str, timestamp: datetime) -> bool:
        self._require_name(source, "source name")
        timestamp = ensure_utc(timestamp)
        async with self._operation("has_sensor_data"):
            async with self._session_factory() as session:
                row = await session.get(SensorDataRow, (source, timestamp))
                if row is None:
                    await self._ensure_source(session, source)
                return row is not None

    async def get_sensor_data_range(
        self,
        source: str,
        start: datetime,
        end: Optional[datetime] = None
    ) -> List[SensorData]:
        start = ensure_utc(start) if start is not None else None
        end = ensure_utc(end) if end is not None else None
        self._check_interval(start, end)
        async with self._operation("get_sensor_data_range"):
            async with self._session_factory() as session:
                await self._ensure_source(session, source)
                query = select(SensorDataRow).where(
                    SensorDataRow.source_name == source,
                    SensorDataRow.timestamp >= start,
                )
                if end is not None:
                    query = query.where(SensorDataRow.timestamp <= end)
                result = await session.execute(query.order_by(SensorDataRow.timestamp))
                return [self._to_sensor_data(row) for row in result.scalars().all()]

    async def _first_row(self, session: AsyncSession, source: str, query) -> Optional[SensorDataRow]:
        row = (await session.execute(query.limit(1))).scalars().first()
        if row is None:
            await self._ensure_source(session, source)
        return row

    async def get_latest_sensor_data(self, source: str) -> SensorData:
        self._require_name(source, "source name")
        async with self._operation("get_latest_sensor_data"):
            async with self._session_factory() as session:
                row = await self._first_row(
                    session,
                    source,
                    select(SensorDataRow)
                    .where(SensorDataRow.source_name == source)
                    .order_by(SensorDataRow.timestamp.desc()),
                )
                if row is None:
                    raise NotFoundError(f"Source {source} has no sensor data")
                return self._to_sensor_data(row)

    async def get_sensor_data_before(self, source: str, timestamp: datetime) -> Optional[SensorData]:
        self._require_name(source, "source name")
        timestamp = ensure_utc(timestamp)
        async with self._operation("get_sensor_data_before"):
            async with self._session_factory() as session:
                row = await self._first_row(
                    session,
                    source,
                    select(SensorDataRow)
                    .where(SensorDataRow.source_name == source, SensorDataRow.timestamp <= timestamp)
                    .order_by(SensorDataRow.timestamp.desc()),
                )
                return self._to_sensor_data(row) if row is not None else None

    async def get_sensor_data_after(self, source: str, timestamp: datetime) -> Optional[SensorData]:
        self._require_name(source, "source name")
        timestamp = ensure_utc(timestamp)
        async with self._operation("get_sensor_data_after"):
            async with self._session_factory() as session:
                row = await self._first_row(
                    session,
                    source,
                    select(SensorDataRow)
                    .where(SensorDataRow.source_name == source, SensorDataRow.timestamp >= timestamp)
                    .order_by(SensorDataRow.timestamp.asc()),
                )
                return self._to_sensor_data(row) if row is not None else None

    async def get_sensor_data_stats(self, source: str) -> SensorDataStats:
        async with self._operation("get_sensor_data_stats"):
            async with self._session_factory() as session:
                await self._ensure_source(session, source)
                result = await session.execute(
                    select(
                        func.count(),
                        func.min(SensorDataRow.timestamp),
                        func.max(SensorDataRow.timestamp),
                    ).where(SensorDataRow.source_name == source)
                )
                count, first, last = result.one()
                if not count:
                    return SensorDataStats()
                return SensorDataStats(count=count, first=ensure_utc(first), last=ensure_utc(last))

    async def put_sensor_data(self, data: SensorData) -> None:
        self._require_name(data.source, "source name")
        timestamp = ensure_utc(data.timestamp)
        conflict = f"Sensor data already exists for {data.source} at {timestamp.isoformat()}"
        async with self._operation("put_sensor_data"):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        source_row = await session.get(SourceRow, data.source)
                        if source_row is None:
                            raise ReferentialError(
                                f"Sensor data refers to unknown source: {data.source}"
                            )
                        if source_row.virtual:
                            raise BadArgumentError(
                                f"Cannot store sensor data for virtual source {data.source}"
                            )
                        if await session.get(SensorDataRow, (data.source, timestamp)) is not None:
                            raise ConflictError(conflict)
                        session.add(SensorDataRow(
                            source_name=data.source,
                            timestamp=timestamp,
                            tool=data.tool,
                            properties=dict(data.properties),
                        ))
                except IntegrityError as e:
                    if not await self._source_exists(data.source):
                        raise ReferentialError(
                            f"Sensor data refers to unknown source: {data.source}"
                        ) from e
                    raise ConflictError(conflict) from e
        sensor_data_stored_total.labels(backend=self.name).inc()

    async def delete_sensor_data(self, source: str, timestamp: datetime) -> None:
        self._require_name(source, "source name")
        timestamp = ensure_utc(timestamp)
        async with self._operation("delete_sensor_data"):
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SensorDataRow, (source, timestamp))
                    if row is None:
                        await self._ensure_source(session, source)
                        raise NotFoundError(
                            f"No sensor data for {source} at {timestamp.isoformat()}"
                        )
                    await session.delete(row)

    async def delete_all_sensor_data(self, source: str) -> None:
        async with self._operation("delete_all_sensor_data"):
            async with self._session_factory() as session:
                async with session.begin():
                    await self._ensure_source(session, source)
                    await session.execute(
                        delete(SensorDataRow).where(SensorDataRow.source_name == source)
                    )
