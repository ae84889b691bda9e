"""Pattern exceptions and structured (non-fatal) error storage."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol

from sqlalchemy import text

from transit_patterns.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class PatternError(Exception):
    """Base class for pattern discovery, persistence and editing failures."""


class PatternFinderStateError(PatternError):
    """Raised when the finder is used after its patterns were created."""


class PatternPersistenceError(PatternError):
    """Raised when patterns cannot be written. The load is rolled back."""


class ReconciliationError(PatternError):
    """Raised when an edit to a pattern's halts cannot be applied to its trips."""


class MissingReferenceIdError(ReconciliationError):
    """Raised for a halt without exactly one stop, location group or location id."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "A pattern stop must contain a value for either stop_id, "
            "location_group_id or location_id."
        )


class InterpolationError(PatternError):
    """Raised when stop times cannot be interpolated between timepoints."""


class PatternBusyError(PatternError):
    """Raised when another edit of the same pattern holds its lock too long."""


class Priority(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ErrorType(enum.Enum):
    """Non-fatal data-quality problems found while building patterns."""

    MULTIPLE_SHAPES_FOR_PATTERN = (
        Priority.MEDIUM,
        "Multiple shapes found for a single unique sequence of stops (i.e, trip pattern).",
    )

    def __init__(self, priority: Priority, message: str) -> None:
        self.priority = priority
        self.message = message


@dataclass
class GtfsError:
    """One structured error about a feed entity."""

    error_type: ErrorType
    entity_type: str
    entity_id: Optional[str] = None
    bad_value: Optional[str] = None
    line_number: Optional[int] = None
    sequence_number: Optional[int] = None

    @classmethod
    def for_entity(
        cls,
        entity_type: str,
        entity_id: str,
        error_type: ErrorType,
        bad_value: str | None = None,
    ) -> GtfsError:
        return cls(
            error_type=error_type,
            entity_type=entity_type,
            entity_id=entity_id,
            bad_value=bad_value,
        )

    def __str__(self) -> str:
        text_ = f"{self.error_type.name} {self.entity_type} {self.entity_id}"
        if self.bad_value is not None:
            text_ += f" (bad value: {self.bad_value})"
        return text_

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.error_type.name,
            "priority": self.error_type.priority.value,
            "message": self.error_type.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "bad_value": self.bad_value,
        }


class ErrorSink(Protocol):
    def store_error(self, error: GtfsError) -> None: ...


class ErrorCollector:
    """Keeps reported errors in memory."""

    def __init__(self) -> None:
        self.errors: list[GtfsError] = []

    def store_error(self, error: GtfsError) -> None:
        self.errors.append(error)

    def __len__(self) -> int:
        return len(self.errors)


class SqlErrorStorage(ErrorCollector):
    """Buffers errors and writes them to the ``errors``/``error_refs`` tables.

    Rows are only written by :meth:`finish`, inside the caller's transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__()
        self.session = session

    async def finish(self) -> int:
        """Write buffered errors.

        Returns:
            Number of errors written.
        """
        if not self.errors:
            return 0

        result = await self.session.execute(
            text("SELECT COALESCE(MAX(error_id), -1) + 1 FROM errors")
        )
        next_id = int(result.scalar() or 0)

        error_rows: list[dict[str, Any]] = []
        ref_rows: list[dict[str, Any]] = []
        for offset, error in enumerate(self.errors):
            error_id = next_id + offset
            error_rows.append(
                {"error_id": error_id, "type": error.error_type.name, "problems": error.bad_value}
            )
            ref_rows.append(
                {
                    "error_id": error_id,
                    "entity_type": error.entity_type,
                    "line_number": error.line_number,
                    "entity_id": error.entity_id,
                    "sequence_number": error.sequence_number,
                }
            )

        await self.session.execute(
            text("INSERT INTO errors (error_id, type, problems) VALUES (:error_id, :type, :problems)"),
            error_rows,
        )
        await self.session.execute(
            text(
                "INSERT INTO error_refs (error_id, entity_type, line_number, entity_id, sequence_number) "
                "VALUES (:error_id, :entity_type, :line_number, :entity_id, :sequence_number)"
            ),
            ref_rows,
        )
        logger.info("Stored pattern errors", count=len(error_rows))
        written = len(self.errors)
        self.errors.clear()
        return written
