"""Bounded statement batches executed in submission order."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from transit_patterns.config import get_settings
from transit_patterns.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy import TextClause
    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_patterns.services.patterns.tables import TableDef

logger = get_logger(__name__)


class BatchTracker:
    """Collects parameter sets for one statement and executes them every
    ``batch_size`` rows. Nothing is committed here; the caller owns the
    transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        label: str,
        statement: TextClause | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.session = session
        self.label = label
        self.statement = statement
        self.batch_size = batch_size or get_settings().pattern_batch_size
        self.pending: list[dict[str, Any]] = []
        self.executed = 0

    async def add(self, params: dict[str, Any]) -> None:
        self.pending.append(params)
        if len(self.pending) >= self.batch_size:
            await self.flush()

    async def flush(self) -> int:
        if not self.pending:
            return 0
        batch, self.pending = self.pending, []
        await self._execute(batch)
        self.executed += len(batch)
        logger.debug("Executed batch", label=self.label, rows=len(batch), total=self.executed)
        return len(batch)

    async def execute_remaining(self) -> int:
        """Flush what is left and return the total number of rows executed."""
        await self.flush()
        return self.executed

    async def _execute(self, batch: list[dict[str, Any]]) -> None:
        if self.statement is None:
            raise ValueError(f"Batch {self.label} has no statement to execute")
        await self.session.execute(self.statement, batch)


class InsertBatch(BatchTracker):
    """Batch of rows for one table, written as multi-row INSERTs.

    A batch larger than one statement can bind is split into several INSERTs.
    """

    def __init__(
        self, session: AsyncSession, table: TableDef, batch_size: int | None = None
    ) -> None:
        super().__init__(session, table.name, batch_size=batch_size)
        self.table = table

    async def _execute(self, batch: list[dict[str, Any]]) -> None:
        step = self.table.max_rows_per_statement
        for start in range(0, len(batch), step):
            chunk = batch[start : start + step]
            await self.session.execute(
                self.table.insert_sql(len(chunk)), self.table.insert_params(chunk)
            )
