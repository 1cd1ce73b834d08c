"""
Pulse Probes - Knowledge base.

Shallow: the document table exists.
Deep: document count plus one search query, run in a worker thread.
PostgreSQL searches with full-text matching; other dialects fall
back to LIKE on the same column.
"""

import asyncio
from typing import Optional

from sqlalchemy import column, func, inspect, literal, select, table
from sqlalchemy.engine import Engine

from core.clock import ClockProtocol
from pulse.metrics.collector import MetricCollector
from pulse.probes.base import CheckOutcome, HealthProbe


SEARCH_TERM = "test"
DOCUMENTS_GAUGE = "knowledge.documents.total"


class KnowledgeProbe(HealthProbe):
    """Knowledge document store probe."""

    def __init__(
        self,
        engine: Optional[Engine],
        table_name: str,
        deep: bool,
        search_column: str = "search_vector",
        collector: Optional[MetricCollector] = None,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("knowledge", deep, timeout_seconds, clock)
        self._engine = engine
        self._table_name = table_name
        self._search_column = search_column
        self._collector = collector

    async def _check(self) -> CheckOutcome:
        if self._engine is None:
            return CheckOutcome(False, "DATABASE_URL not configured")

        if not self.is_deep:
            exists = await asyncio.to_thread(self._table_exists)
            if not exists:
                return CheckOutcome(
                    False,
                    f"Table '{self._table_name}' not found",
                    {"tableExists": False},
                )
            return CheckOutcome(True, details={"tableExists": True})

        count = await asyncio.to_thread(self._count_and_search)
        if self._collector is not None:
            self._collector.set_gauge(DOCUMENTS_GAUGE, count)

        return CheckOutcome(
            True,
            details={"documentCount": count, "ftsOperational": True},
        )

    def _table_exists(self) -> bool:
        return inspect(self._engine).has_table(self._table_name)

    def _count_and_search(self) -> int:
        documents = table(self._table_name, column(self._search_column))
        searched = documents.c[self._search_column]

        if self._engine.dialect.name == "postgresql":
            match = searched.op("@@")(func.plainto_tsquery("english", SEARCH_TERM))
        else:
            match = searched.like(f"%{SEARCH_TERM}%")

        with self._engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(documents)).scalar_one()
            conn.execute(select(literal(1)).select_from(documents).where(match).limit(1)).fetchall()
        return int(count)
