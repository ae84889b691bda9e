"""Edit a persisted pattern's halts and keep its trips' stop times in step."""

from __future__ import annotations

import asyncio
import dataclasses
import weakref
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from transit_patterns.config import get_settings
from transit_patterns.logging import get_logger, pattern_log_context
from transit_patterns.services.patterns.batch import InsertBatch
from transit_patterns.services.patterns.errors import PatternBusyError
from transit_patterns.services.patterns.normalization import StopTimeNormalizer
from transit_patterns.services.patterns.reconciliation import PatternReconciler, apply_reconciliation
from transit_patterns.services.patterns.tables import DEFAULT_TABLES

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_patterns.services.patterns.records import PatternHalt
    from transit_patterns.services.patterns.tables import PatternTables

logger = get_logger(__name__)

# One lock per pattern id; serializes edits within this process only. An
# entry lives only while some caller holds or waits on the lock.
_pattern_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def get_pattern_lock(pattern_id: str) -> asyncio.Lock:
    lock = _pattern_locks.get(pattern_id)
    if lock is None:
        lock = _pattern_locks[pattern_id] = asyncio.Lock()
    return lock


@asynccontextmanager
async def pattern_lock(pattern_id: str, timeout: float | None = None) -> AsyncIterator[None]:
    """Hold the pattern's lock, raising PatternBusyError after ``timeout`` seconds."""
    lock = get_pattern_lock(pattern_id)
    wait = timeout if timeout is not None else get_settings().pattern_lock_timeout_sec
    try:
        await asyncio.wait_for(lock.acquire(), timeout=wait)
    except asyncio.TimeoutError as exc:
        raise PatternBusyError(f"Pattern {pattern_id} is being edited, try again later") from exc
    try:
        yield
    finally:
        lock.release()


@dataclass
class PatternEditResult:
    pattern_id: str
    operation: str
    reconciled: bool
    halt_count: int
    stop_times_updated: int

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class PatternEditor:
    """Applies halt edits and normalization for one pattern per call, committing on success."""

    def __init__(self, session: AsyncSession, tables: PatternTables = DEFAULT_TABLES) -> None:
        self.session = session
        self.tables = tables

    async def _replace_pattern_stops(self, pattern_id: str, halts: Sequence[PatternHalt]) -> None:
        await self.session.execute(
            text(f"DELETE FROM {self.tables.pattern_stops.name} WHERE pattern_id = :pattern_id"),
            {"pattern_id": pattern_id},
        )
        batch = InsertBatch(self.session, self.tables.pattern_stops)
        for halt in halts:
            await batch.add(halt.to_row())
        await batch.execute_remaining()

    async def update_halts(
        self,
        pattern_id: str,
        new_halts: Sequence[PatternHalt],
        *,
        normalize: bool = True,
        use_frequency: bool = False,
    ) -> PatternEditResult:
        """Reconcile trips with ``new_halts``, store the halts, then retime.

        Halts are renumbered 0..n-1 in the given order.

        Raises:
            ReconciliationError: If the edit is rejected. Nothing is committed.
        """
        halts = [
            dataclasses.replace(halt, pattern_id=pattern_id, stop_sequence=index)
            for index, halt in enumerate(new_halts)
        ]

        with pattern_log_context(pattern_id):
            async with pattern_lock(pattern_id):
                try:
                    reconciler = PatternReconciler(self.session, self.tables)
                    diff = await reconciler.stage(pattern_id, halts)
                    if diff.changed:
                        await apply_reconciliation(self.session, diff, self.tables)
                    await self._replace_pattern_stops(pattern_id, halts)

                    normalizer = StopTimeNormalizer(self.session, self.tables)
                    updated = 0
                    if use_frequency:
                        updated = await normalizer.update_pattern_frequencies(halts)
                    elif normalize:
                        begin = diff.first_changed_index if diff.changed else 0
                        updated = await normalizer.normalize_from(begin, pattern_id)

                    await self.session.commit()
                except Exception as exc:
                    await self.session.rollback()
                    logger.error("Pattern edit failed", error=str(exc))
                    raise

            logger.info(
                "Pattern edited",
                operation=diff.kind.value,
                halts=len(halts),
                updated=updated,
            )
        return PatternEditResult(
            pattern_id=pattern_id,
            operation=diff.kind.value,
            reconciled=diff.changed,
            halt_count=len(halts),
            stop_times_updated=updated,
        )

    async def normalize(
        self, pattern_id: str, begin_stop_sequence: int = 0, interpolate: bool = False
    ) -> int:
        """Retime the pattern's fixed stops. Returns the number of stop time updates.

        Raises:
            InterpolationError: If interpolation is requested but not possible.
        """
        with pattern_log_context(pattern_id):
            async with pattern_lock(pattern_id):
                try:
                    normalizer = StopTimeNormalizer(self.session, self.tables)
                    updated = await normalizer.normalize_stop_times(
                        pattern_id, begin_stop_sequence, interpolate
                    )
                    await self.session.commit()
                except Exception as exc:
                    await self.session.rollback()
                    logger.error("Stop time normalization failed", error=str(exc))
                    raise
            logger.info("Stop times normalized", updated=updated)
        return updated
