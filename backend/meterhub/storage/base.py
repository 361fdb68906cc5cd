"""
Abstract persistence backend.

Every storage engine the service can run on implements this contract.
The query services only ever talk to a PersistenceBackend and never
branch on which implementation they were given.

Failures are raised as MeterHubError subclasses:
NotFoundError, ConflictError, ReferentialError, BadArgumentError,
BadIntervalError and BackendFailure.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from meterhub.core.exceptions import BadArgumentError, BadIntervalError
from meterhub.models.schemas import SensorData, SensorDataStats, Source, User


class PersistenceBackend(ABC):
    """Storage of users, sources, source hierarchy edges and sensor data."""

    #: Short identifier used in logs and metrics labels.
    name: str = "abstract"

    # Lifecycle

    @abstractmethod
    async def initialize(self, wipe: bool = False) -> None:
        """
        Prepare the storage system, creating it if it does not exist yet.

        Args:
            wipe: Discard all stored data before returning
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def is_freshly_created(self) -> bool:
        """True if initialize() created a brand new, empty store."""
        raise NotImplementedError

    @abstractmethod
    async def wipe_data(self) -> None:
        """Delete every user, source and reading."""
        raise NotImplementedError

    async def perform_maintenance(self) -> None:
        """Run engine-specific housekeeping. Most engines need none."""
        return None

    async def close(self) -> None:
        """Release connections and other resources."""
        return None

    # Users

    @abstractmethod
    async def get_users(self) -> List[User]:
        """All users, sorted by username."""
        raise NotImplementedError

    @abstractmethod
    async def get_user(self, username: str) -> User:
        """Return the named user or raise NotFoundError."""
        raise NotImplementedError

    @abstractmethod
    async def put_user(self, user: User) -> None:
        """Store a new user; ConflictError if the username is taken."""
        raise NotImplementedError

    @abstractmethod
    async def delete_user(self, username: str) -> None:
        """
        Delete a user and, atomically, every source it owns together with
        their sensor data, properties and hierarchy edges.
        """
        raise NotImplementedError

    # Sources

    @abstractmethod
    async def get_sources(self) -> List[Source]:
        """All sources, sorted by name."""
        raise NotImplementedError

    @abstractmethod
    async def get_source(self, name: str) -> Source:
        """Return the named source (with its subsources) or raise NotFoundError."""
        raise NotImplementedError

    @abstractmethod
    async def put_source(self, source: Source, overwrite: bool = False) -> None:
        """
        Store a source.

        Raises:
            ConflictError: The source exists and overwrite is False
            ReferentialError: Unknown owner or unknown subsource
            BadArgumentError: Subsources given for a non-virtual source
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_source(self, name: str) -> None:
        """
        Delete a source along with its sensor data, properties and every
        hierarchy edge it appears in, as one atomic unit.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_subsources(self, parent: str) -> List[str]:
        """Names of the direct subsources of ``parent``, sorted by name."""
        raise NotImplementedError

    # Sensor data

    @abstractmethod
    async def get_sensor_data(self, source: str, timestamp: datetime) -> SensorData:
        """Reading at exactly ``timestamp`` or NotFoundError."""
        raise NotImplementedError

    @abstractmethod
    async def has_sensor_data(self, source: str, timestamp: datetime) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def get_sensor_data_range(
        self,
        source: str,
        start: datetime,
        end: Optional[datetime] = None
    ) -> List[SensorData]:
        """
        Readings with start <= timestamp <= end, ascending by timestamp.

        An omitted end means open-ended up to the newest reading.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_latest_sensor_data(self, source: str) -> SensorData:
        """Newest reading of a non-virtual source, or NotFoundError if it has none."""
        raise NotImplementedError

    @abstractmethod
    async def get_sensor_data_before(self, source: str, timestamp: datetime) -> Optional[SensorData]:
        """Reading with the greatest timestamp <= ``timestamp``, or None."""
        raise NotImplementedError

    @abstractmethod
    async def get_sensor_data_after(self, source: str, timestamp: datetime) -> Optional[SensorData]:
        """Reading with the smallest timestamp >= ``timestamp``, or None."""
        raise NotImplementedError

    @abstractmethod
    async def get_sensor_data_stats(self, source: str) -> SensorDataStats:
        """Row count and first/last timestamps of one source's readings."""
        raise NotImplementedError

    @abstractmethod
    async def put_sensor_data(self, data: SensorData) -> None:
        """
        Insert a reading. Readings are never overwritten.

        Raises:
            ConflictError: A reading already exists at (source, timestamp)
            ReferentialError: The source does not exist
            BadArgumentError: The source is virtual
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_sensor_data(self, source: str, timestamp: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_all_sensor_data(self, source: str) -> None:
        """Delete every reading of a source atomically; NotFoundError if the source is unknown."""
        raise NotImplementedError

    # Shared argument checks

    @staticmethod
    def _require_name(value: Optional[str], what: str = "name") -> str:
        if value is None or not str(value).strip():
            raise BadArgumentError(f"A non-empty {what} is required")
        return value

    @staticmethod
    def _check_interval(start: datetime, end: Optional[datetime]) -> None:
        if start is None:
            raise BadArgumentError("A start timestamp is required")
        if end is not None and start > end:
            raise BadIntervalError(start, end)
