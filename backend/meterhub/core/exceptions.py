"""
Error taxonomy shared by the persistence backends and the query services.

Every kind carries the HTTP status the front end maps it to, so the
services never need to know about HTTP.
"""
from datetime import datetime
from typing import Optional


class MeterHubError(Exception):
    """Base class for all errors raised by storage and query code."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadArgumentError(MeterHubError):
    """A required identifier is missing/empty, or a value is malformed."""

    status_code = 400
    code = "bad_argument"


class BadIntervalError(MeterHubError):
    """Start after end, or a sampling interval longer than the range."""

    status_code = 400
    code = "bad_interval"

    def __init__(
        self,
        start: datetime,
        end: Optional[datetime],
        message: Optional[str] = None
    ):
        self.start = start
        self.end = end
        super().__init__(message or f"Invalid interval: {start} to {end}")


class NotFoundError(MeterHubError):
    """Unknown user or source, or a required reading is absent."""

    status_code = 404
    code = "not_found"


class ConflictError(MeterHubError):
    """The entity already exists and no overwrite was requested."""

    status_code = 409
    code = "conflict"


class ReferentialError(MeterHubError):
    """A source references an unknown owner or subsource, or data an unknown source."""

    status_code = 422
    code = "referential_error"


class CyclicHierarchyError(MeterHubError):
    """A virtual source contains itself, directly or transitively."""

    status_code = 422
    code = "cyclic_hierarchy"

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Cyclic source hierarchy: " + " -> ".join(cycle))


class EnergyCounterError(MeterHubError):
    """Energy counters went backwards over the requested range."""

    status_code = 422
    code = "energy_counter_error"


class BackendFailure(MeterHubError):
    """I/O or connectivity failure reported by the persistence layer."""

    status_code = 503
    code = "backend_failure"
