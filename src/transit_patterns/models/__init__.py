"""SQLAlchemy models for Transit Patterns."""

from transit_patterns.models.base import Base
from transit_patterns.models.errors import ErrorRecord, ErrorReference
from transit_patterns.models.gtfs import (
    Location,
    LocationGroup,
    LocationGroupStop,
    Route,
    Stop,
    StopTime,
    Trip,
)

__all__ = [
    "Base",
    "ErrorRecord",
    "ErrorReference",
    "Location",
    "LocationGroup",
    "LocationGroupStop",
    "Route",
    "Stop",
    "StopTime",
    "Trip",
]
