# src/perpindexer/application/services/indexer_service.py
"""
Server-side ingestion: decoded log payloads in, derived state out.

Malformed payloads are reported per item and never block the rest of a
batch. Each event's block number goes through the continuity monitor before
the event is committed; a reset wipes the derived tables (cursors are kept)
so the restarted chain starts from empty state.

A PrimaryStoreFailure stops the batch and propagates; the sender is
expected to redeliver, which replay idempotency makes safe.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from perpindexer.domain.errors import MalformedEvent
from perpindexer.domain.events import parse_event, payload_identity
from perpindexer.domain.ports import DerivedStateStore
from perpindexer.infrastructure.monitoring.metrics import EVENTS_MALFORMED
from .continuity_service import StreamContinuityMonitor, StreamDiscontinuity
from .dual_write_service import DualWriteCoordinator
from .processing_service import APPLIED, DUPLICATE

log = logging.getLogger(__name__)

MALFORMED = "malformed"


@dataclass(frozen=True)
class IngestOutcome:
    status: str
    identity: Optional[str] = None
    event_name: Optional[str] = None
    detail: Optional[str] = None


class IndexerService:
    def __init__(self, coordinator: DualWriteCoordinator, monitor: StreamContinuityMonitor,
                 store: DerivedStateStore, stream: str = "default"):
        self.coordinator = coordinator
        self.monitor = monitor
        self.store = store
        self.stream = stream
        self.monitor.add_listener(self._on_reset)

    def restore_cursor(self) -> int:
        """Load the persisted progress cursor into the monitor."""
        with self.store.session() as s:
            self.monitor.cursor = s.get_cursor(self.stream)
        log.info(f"Stream '{self.stream}' resumes at block {self.monitor.cursor}.")
        return self.monitor.cursor

    def _save_cursor(self, previous: int) -> None:
        if self.monitor.cursor == previous:
            return
        with self.store.session() as s:
            s.set_cursor(self.stream, self.monitor.cursor)

    async def ingest(self, payload: Mapping[str, Any]) -> IngestOutcome:
        try:
            event = parse_event(payload)
        except MalformedEvent as e:
            EVENTS_MALFORMED.inc()
            log.error(f"Rejected payload: {e}")
            return IngestOutcome(MALFORMED, identity=e.identity or payload_identity(payload), detail=e.reason)

        identity = str(event.identity) if event.identity is not None else None
        # observed first: a reset must clear the old chain's state before this event lands
        previous = self.monitor.cursor
        self.monitor.observe(event.block_number)
        try:
            result = await self.coordinator.commit(event)
        except MalformedEvent as e:
            self._save_cursor(previous)
            return IngestOutcome(MALFORMED, identity=identity, event_name=event.name, detail=e.reason)

        self._save_cursor(previous)
        return IngestOutcome(APPLIED if result.applied else DUPLICATE, identity=identity, event_name=event.name)

    def _on_reset(self, discontinuity: StreamDiscontinuity) -> None:
        self.store.clear()
        log.warning(f"Derived state cleared after stream reset to block {discontinuity.observed}.")

    async def ingest_batch(self, payloads: List[Mapping[str, Any]]) -> List[IngestOutcome]:
        outcomes = []
        for payload in payloads:
            outcomes.append(await self.ingest(payload))
        applied = sum(1 for o in outcomes if o.status == APPLIED)
        log.info(f"Ingested batch of {len(outcomes)} events ({applied} applied).")
        return outcomes
