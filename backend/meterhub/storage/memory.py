"""
In-memory persistence backend.

Readings for each source are kept in a timestamp-sorted list, so exact,
before/after and latest lookups are binary searches. Nothing survives a
restart; this backend is meant for tests, demos and ephemeral caches.
"""
import bisect
import threading
from datetime import datetime
from typing import Dict, List, Optional

from meterhub.core.exceptions import (
    BadArgumentError,
    ConflictError,
    NotFoundError,
    ReferentialError,
)
from meterhub.core.logging import get_logger
from meterhub.core.metrics import sensor_data_stored_total
from meterhub.core.timestamps import ensure_utc
from meterhub.models.schemas import SensorData, SensorDataStats, Source, User
from meterhub.storage.base import PersistenceBackend

logger = get_logger(__name__)


class _SourceReadings:
    """Sorted timestamps plus a timestamp -> reading map for one source."""

    __slots__ = ("timestamps", "rows")

    def __init__(self):
        self.timestamps: List[datetime] = []
        self.rows: Dict[datetime, SensorData] = {}


class MemoryBackend(PersistenceBackend):
    """Dict-backed store guarded by a single re-entrant lock."""

    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._sources: Dict[str, Source] = {}
        self._readings: Dict[str, _SourceReadings] = {}
        self._initialized = False

    async def initialize(self, wipe: bool = False) -> None:
        # Nothing is persisted, so every start is a fresh start.
        with self._lock:
            self._clear()
            self._initialized = True
        logger.info("In-memory storage initialized")

    @property
    def is_freshly_created(self) -> bool:
        return True

    async def wipe_data(self) -> None:
        with self._lock:
            self._clear()
        logger.info("In-memory storage wiped")

    def _clear(self) -> None:
        self._users.clear()
        self._sources.clear()
        self._readings.clear()

    # Users

    async def get_users(self) -> List[User]:
        with self._lock:
            return [self._users[name].model_copy(deep=True) for name in sorted(self._users)]

    async def get_user(self, username: str) -> User:
        self._require_name(username, "username")
        with self._lock:
            user = self._users.get(username)
            if user is None:
                raise NotFoundError(f"Unknown user: {username}")
            return user.model_copy(deep=True)

    async def put_user(self, user: User) -> None:
        self._require_name(user.username, "username")
        with self._lock:
            if user.username in self._users:
                raise ConflictError(f"User already exists: {user.username}")
            self._users[user.username] = user.model_copy(deep=True)

    async def delete_user(self, username: str) -> None:
        self._require_name(username, "username")
        with self._lock:
            if username not in self._users:
                raise NotFoundError(f"Unknown user: {username}")
            owned = [s.name for s in self._sources.values() if s.owner == username]
            for source_name in owned:
                self._remove_source(source_name)
            del self._users[username]
        logger.info(f"Deleted user {username} and {len(owned)} owned source(s)")

    # Sources

    async def get_sources(self) -> List[Source]:
        with self._lock:
            return [self._sources[name].model_copy(deep=True) for name in sorted(self._sources)]

    async def get_source(self, name: str) -> Source:
        self._require_name(name, "source name")
        with self._lock:
            source = self._sources.get(name)
            if source is None:
                raise NotFoundError(f"Unknown source: {name}")
            return source.model_copy(deep=True)

    async def put_source(self, source: Source, overwrite: bool = False) -> None:
        self._require_name(source.name, "source name")
        if source.subsources and not source.virtual:
            raise BadArgumentError(f"Non-virtual source {source.name} cannot have subsources")
        with self._lock:
            if source.name in self._sources and not overwrite:
                raise ConflictError(f"Source already exists: {source.name}")
            if source.owner not in self._users:
                raise ReferentialError(f"Source {source.name} has unknown owner: {source.owner}")
            unknown = [name for name in source.subsources if name not in self._sources]
            if unknown:
                raise ReferentialError(
                    f"Source {source.name} has unknown subsource(s): {', '.join(unknown)}"
                )
            stored = source.model_copy(deep=True)
            stored.subsources = sorted(stored.subsources)
            self._sources[source.name] = stored
            if stored.virtual:
                # Virtual sources hold no readings of their own
                self._readings[source.name] = _SourceReadings()
            else:
                self._readings.setdefault(source.name, _SourceReadings())

    async def delete_source(self, name: str) -> None:
        self._require_name(name, "source name")
        with self._lock:
            if name not in self._sources:
                raise NotFoundError(f"Unknown source: {name}")
            self._remove_source(name)

    def _remove_source(self, name: str) -> None:
        del self._sources[name]
        self._readings.pop(name, None)
        for other in self._sources.values():
            if name in other.subsources:
                other.subsources = [s for s in other.subsources if s != name]

    async def get_subsources(self, parent: str) -> List[str]:
        self._require_name(parent, "source name")
        with self._lock:
            source = self._sources.get(parent)
            if source is None:
                raise NotFoundError(f"Unknown source: {parent}")
            return list(source.subsources)

    # Sensor data

    def _readings_for(self, source: str) -> _SourceReadings:
        self._require_name(source, "source name")
        if source not in self._sources:
            raise NotFoundError(f"Unknown source: {source}")
        return self._readings.setdefault(source, _SourceReadings())

    async def get_sensor_data(self, source: str, timestamp: datetime) -> SensorData:
        timestamp = ensure_utc(timestamp)
        with self._lock:
            row = self._readings_for(source).rows.get(timestamp)
            if row is None:
                raise NotFoundError(f"No sensor data for {source} at {timestamp.isoformat()}")
            return row.model_copy(deep=True)

    async def has_sensor_data(self, source: str, timestamp: datetime) -> bool:
        timestamp = ensure_utc(timestamp)
        with self._lock:
            return timestamp in self._readings_for(source).rows

    async def get_sensor_data_range(
        self,
        source: str,
        start: datetime,
        end: Optional[datetime] = None
    ) -> List[SensorData]:
        start = ensure_utc(start) if start is not None else None
        end = ensure_utc(end) if end is not None else None
        self._check_interval(start, end)
        with self._lock:
            readings = self._readings_for(source)
            lo = bisect.bisect_left(readings.timestamps, start)
            hi = (
                bisect.bisect_right(readings.timestamps, end)
                if end is not None else len(readings.timestamps)
            )
            return [readings.rows[ts].model_copy(deep=True) for ts in readings.timestamps[lo:hi]]

    async def get_latest_sensor_data(self, source: str) -> SensorData:
        with self._lock:
            readings = self._readings_for(source)
            if not readings.timestamps:
                raise NotFoundError(f"Source {source} has no sensor data")
            return readings.rows[readings.timestamps[-1]].model_copy(deep=True)

    async def get_sensor_data_before(self, source: str, timestamp: datetime) -> Optional[SensorData]:
        timestamp = ensure_utc(timestamp)
        with self._lock:
            readings = self._readings_for(source)
            index = bisect.bisect_right(readings.timestamps, timestamp)
            if index == 0:
                return None
            return readings.rows[readings.timestamps[index - 1]].model_copy(deep=True)

    async def get_sensor_data_after(self, source: str, timestamp: datetime) -> Optional[SensorData]:
        timestamp = ensure_utc(timestamp)
        with self._lock:
            readings = self._readings_for(source)
            index = bisect.bisect_left(readings.timestamps, timestamp)
            if index == len(readings.timestamps):
                return None
            return readings.rows[readings.timestamps[index]].model_copy(deep=True)

    async def get_sensor_data_stats(self, source: str) -> SensorDataStats:
        with self._lock:
            readings = self._readings_for(source)
            if not readings.timestamps:
                return SensorDataStats()
            return SensorDataStats(
                count=len(readings.timestamps),
                first=readings.timestamps[0],
                last=readings.timestamps[-1],
            )

    async def put_sensor_data(self, data: SensorData) -> None:
        self._require_name(data.source, "source name")
        timestamp = ensure_utc(data.timestamp)
        with self._lock:
            source = self._sources.get(data.source)
            if source is None:
                raise ReferentialError(f"Sensor data refers to unknown source: {data.source}")
            if source.virtual:
                raise BadArgumentError(f"Cannot store sensor data for virtual source {data.source}")
            readings = self._readings.setdefault(data.source, _SourceReadings())
            if timestamp in readings.rows:
                raise ConflictError(
                    f"Sensor data already exists for {data.source} at {timestamp.isoformat()}"
                )
            bisect.insort(readings.timestamps, timestamp)
            readings.rows[timestamp] = data.model_copy(deep=True)
        sensor_data_stored_total.labels(backend=self.name).inc()

    async def delete_sensor_data(self, source: str, timestamp: datetime) -> None:
        timestamp = ensure_utc(timestamp)
        with self._lock:
            readings = self._readings_for(source)
            if timestamp not in readings.rows:
                raise NotFoundError(f"No sensor data for {source} at {timestamp.isoformat()}")
            del readings.rows[timestamp]
            readings.timestamps.pop(bisect.bisect_left(readings.timestamps, timestamp))

    async def delete_all_sensor_data(self, source: str) -> None:
        with self._lock:
            self._readings_for(source)
            self._readings[source] = _SourceReadings()
