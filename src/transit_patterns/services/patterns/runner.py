"""Pattern build orchestration: read trips, discover, name, persist."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from transit_patterns.config import get_settings
from transit_patterns.database import get_session_context
from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.builder import PatternBuilder
from transit_patterns.services.patterns.errors import SqlErrorStorage
from transit_patterns.services.patterns.feed import FeedReader
from transit_patterns.services.patterns.finder import PatternFinder

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class PatternBuildReport:
    """Collects pattern build metrics, warnings, and errors."""

    def __init__(self, build_id: str | None = None) -> None:
        self.build_id = build_id or str(uuid.uuid4())
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None
        self.duration_ms: int | None = None
        self.trip_count = 0
        self.pattern_count = 0
        self.trips_assigned = 0
        self.reused_feed_patterns = False
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def finish(self) -> None:
        self.ended_at = datetime.now(timezone.utc)
        self.duration_ms = int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "failed" if self.errors else "success",
            "build_id": self.build_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "trip_count": self.trip_count,
            "pattern_count": self.pattern_count,
            "trips_assigned": self.trips_assigned,
            "reused_feed_patterns": self.reused_feed_patterns,
            "warnings": self.warnings[:100],  # cap for response size
            "errors": self.errors[:100],
        }


class PatternBuildRunner:
    """Runs pattern discovery over the stored feed and persists the result.

    Non-fatal data-quality errors end up in the report's warnings and in the
    ``errors`` table. Persistence failures propagate as
    :class:`~transit_patterns.services.patterns.errors.PatternPersistenceError`.
    """

    def __init__(self, batch_size: int | None = None) -> None:
        settings = get_settings()
        self.batch_size = batch_size if batch_size is not None else settings.pattern_batch_size

    async def run(self, session_override: AsyncSession | None = None) -> PatternBuildReport:
        """Execute the full pattern build.

        Args:
            session_override: Optional session for testing (skips context manager).

        Returns:
            PatternBuildReport with counts and warnings.
        """
        report = PatternBuildReport()
        logger.info("Starting pattern build", build_id=report.build_id)

        if session_override:
            await self._build(session_override, report)
        else:
            async with get_session_context() as session:
                await self._build(session, report)

        report.finish()
        logger.info(
            "Pattern build complete",
            build_id=report.build_id,
            duration_ms=report.duration_ms,
            trips=report.trip_count,
            patterns=report.pattern_count,
            warnings_count=len(report.warnings),
        )
        return report

    async def _build(self, session: AsyncSession, report: PatternBuildReport) -> None:
        reader = FeedReader(session)
        lookups = await reader.load_lookups()
        feed_patterns = await reader.load_feed_patterns()

        finder = PatternFinder()
        async for trip, stop_times in reader.iter_trips_with_stop_times():
            finder.process_trip(trip, stop_times)
        report.trip_count = finder.trips_processed

        error_storage = SqlErrorStorage(session)
        report.reused_feed_patterns = finder.can_use_feed_patterns(feed_patterns)
        patterns = finder.create_pattern_objects(lookups, feed_patterns, error_storage)
        report.pattern_count = len(patterns)
        report.warnings.extend(str(error) for error in error_storage.errors)
        await error_storage.finish()

        builder = PatternBuilder(session, batch_size=self.batch_size)
        report.trips_assigned = await builder.create(patterns, report.reused_feed_patterns)
