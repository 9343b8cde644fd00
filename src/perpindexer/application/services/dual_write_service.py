# src/perpindexer/application/services/dual_write_service.py
"""
Dual-write coordinator.

commit(event):
  1. acquire the event's keyed locks (sorted order)
  2. run the primary transaction in a worker thread
  3. release the locks
  4. if the event was applied and a secondary store is configured, schedule
     the mirrored row writes as one background task and return

The primary write decides the outcome of `commit`. Secondary writes run
concurrently, bounded by a semaphore and a per-call timeout; a failure is
logged, counted and kept in `failures`, never raised.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Deque, Hashable, List, Mapping, Optional, Set

from perpindexer.domain.events import Event, MarketCreated
from perpindexer.domain.ports import SecondaryStore
from perpindexer.infrastructure import records
from perpindexer.infrastructure.monitoring.metrics import SECONDARY_FAILURES
from perpindexer.infrastructure.sched.keyed_lock import KeyedLock
from .processing_service import EventProcessor, ProcessResult

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DualWriteConfig:
    secondary_enabled: bool = False
    max_inflight: int = 16
    timeout_seconds: float = 10.0
    failure_history: int = 256


@dataclass(frozen=True)
class SecondaryWrite:
    table: str
    key: str
    row: Mapping[str, Any]
    filters: Optional[Mapping[str, Any]] = None  # set -> PATCH update, unset -> upsert


@dataclass(frozen=True)
class FailedSecondaryWrite:
    table: str
    key: str
    identity: Optional[str]
    detail: str


def lock_keys(event: Event) -> List[Hashable]:
    if isinstance(event, MarketCreated):
        return [("market", event.market_index)]
    return [("holding", event.user, event.engine), ("position", event.engine, event.position_id)]


def secondary_writes(result: ProcessResult) -> List[SecondaryWrite]:
    """Rows an applied event mirrors to the secondary store."""
    w = result.writes
    ops: List[SecondaryWrite] = []
    if w is None:
        return ops
    if w.market is not None:
        ops.append(SecondaryWrite("markets", w.market.market_index, records.market_to_record(w.market)))
    if w.trade is not None:
        ops.append(SecondaryWrite("trades", w.trade.id, records.trade_to_record(w.trade)))
    if w.price_point is not None:
        row = records.price_point_to_record(w.price_point)
        ops.append(SecondaryWrite("price_points", row["id"], row))
    if result.opened_position is not None:
        row = records.position_to_record(result.opened_position)
        ops.append(SecondaryWrite("positions", row["id"], row))
    if result.closed_position is not None:
        row_id = records.position_to_record(result.closed_position)["id"]
        ops.append(SecondaryWrite("positions", row_id, records.position_closing_fields(result.closed_position),
                                  filters={"id": row_id}))
    if result.holding is not None:
        row = records.holding_to_record(result.holding)
        ops.append(SecondaryWrite("user_holdings", row["id"], row))
    return ops


class DualWriteCoordinator:
    def __init__(self, processor: EventProcessor, config: DualWriteConfig,
                 secondary: Optional[SecondaryStore] = None, locks: Optional[KeyedLock] = None):
        self.processor = processor
        self.config = config
        self.secondary = secondary
        self.locks = locks or KeyedLock()
        self.failures: Deque[FailedSecondaryWrite] = deque(maxlen=config.failure_history)
        self._semaphore = asyncio.Semaphore(config.max_inflight)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def secondary_enabled(self) -> bool:
        return self.config.secondary_enabled and self.secondary is not None

    async def commit(self, event: Event) -> ProcessResult:
        """Apply one event. Raises MalformedEvent or PrimaryStoreFailure; never a secondary error."""
        async with self.locks.acquire(lock_keys(event)):
            result = await asyncio.to_thread(self.processor.process, event)
        if result.applied and self.secondary_enabled:
            ops = secondary_writes(result)
            if ops:
                task = asyncio.create_task(self._mirror(result.writes.identity, ops))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        return result

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _call(self, op: SecondaryWrite) -> None:
        async with self._semaphore:
            if op.filters is not None:
                call: Awaitable[None] = self.secondary.update(op.table, op.row, op.filters)
            else:
                call = self.secondary.upsert(op.table, op.row)
            await asyncio.wait_for(call, timeout=self.config.timeout_seconds)

    async def _mirror(self, identity: Optional[str], ops: List[SecondaryWrite]) -> None:
        outcomes = await asyncio.gather(*(self._call(op) for op in ops), return_exceptions=True)
        for op, outcome in zip(ops, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                continue
            if isinstance(outcome, Exception):
                self._record_failure(op, identity, outcome)

    def _record_failure(self, op: SecondaryWrite, identity: Optional[str], error: Exception) -> None:
        if isinstance(error, asyncio.TimeoutError):
            detail = f"timed out after {self.config.timeout_seconds}s"
        else:
            detail = str(error) or type(error).__name__
        SECONDARY_FAILURES.labels(table=op.table).inc()
        self.failures.append(FailedSecondaryWrite(op.table, op.key, identity, detail))
        log.error(f"Secondary write failed: table={op.table} key={op.key} event={identity}: {detail}")

    async def drain(self) -> None:
        """Wait for every scheduled secondary write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self.secondary is not None:
            await self.secondary.aclose()
