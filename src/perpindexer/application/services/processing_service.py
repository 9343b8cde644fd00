# src/perpindexer/application/services/processing_service.py
"""
One event -> one atomic primary-store transaction.

The processor is synchronous. The dual-write coordinator runs it in a worker
thread while holding the event's keyed locks.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from perpindexer.domain.entities import Position, UserHolding
from perpindexer.domain.errors import IndexerError, MalformedEvent, PrimaryStoreFailure
from perpindexer.domain.events import Event
from perpindexer.domain.ports import DerivedStateStore, StoreSession
from perpindexer.infrastructure.monitoring.metrics import (EVENTS_DUPLICATE, EVENTS_MALFORMED,
                                                           EVENTS_PROCESSED)
from .holding_service import HoldingService
from .upsert_service import EntityWrites, UpsertService

log = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ProcessResult:
    event: Event
    status: str
    writes: Optional[EntityWrites] = None
    opened_position: Optional[Position] = None
    closed_position: Optional[Position] = None
    holding: Optional[UserHolding] = None

    @property
    def applied(self) -> bool:
        return self.status == APPLIED

    @property
    def duplicate(self) -> bool:
        return self.status == DUPLICATE


class EventProcessor:
    def __init__(self, store: DerivedStateStore, upsert: Optional[UpsertService] = None,
                 holdings: Optional[HoldingService] = None):
        self.store = store
        self.upsert = upsert or UpsertService()
        self.holdings = holdings or HoldingService()

    def process(self, event: Event) -> ProcessResult:
        try:
            writes = self.upsert.apply(event)
        except MalformedEvent as e:
            EVENTS_MALFORMED.inc()
            log.error(f"Rejected event: {e}")
            raise

        try:
            with self.store.session() as s:
                result = self._apply(s, event, writes)
        except IndexerError:
            raise
        except Exception as e:
            log.error(f"Primary store write failed for {event.name} {writes.identity}: {e}", exc_info=True)
            raise PrimaryStoreFailure(f"Primary store write failed: {e}", writes.identity) from e

        if result.duplicate:
            EVENTS_DUPLICATE.inc()
            log.debug(f"Duplicate {event.name} {writes.identity} ignored.")
        else:
            EVENTS_PROCESSED.labels(event_type=event.name).inc()
        return result

    def _apply(self, s: StoreSession, event: Event, writes: EntityWrites) -> ProcessResult:
        if writes.market is not None:
            if s.get_market(writes.market.market_index) is not None:
                return ProcessResult(event=event, status=DUPLICATE, writes=writes)
            s.put_market(writes.market)
            return ProcessResult(event=event, status=APPLIED, writes=writes)

        if writes.trade is not None and s.has_trade(writes.trade.id):
            return ProcessResult(event=event, status=DUPLICATE, writes=writes)

        s.put_trade(writes.trade)
        if writes.price_point is not None:
            s.put_price_point(writes.price_point)

        opened = closed = None
        if writes.position is not None:
            existing = s.get_position(writes.position.engine, writes.position.position_id)
            if existing is not None and not existing.is_open:
                log.warning(f"Position {existing.engine}/{existing.position_id} already "
                            f"{existing.status.name}; open {writes.identity} not applied to it.")
            else:
                s.put_position(writes.position)
                opened = writes.position

        if writes.transition is not None:
            t = writes.transition
            existing = s.get_position(t.engine, t.position_id)
            if existing is None:
                log.debug(f"{event.name} {writes.identity} for unknown position {t.engine}/{t.position_id}.")
            elif existing.is_open:
                closed = existing.transition(
                    t.status, realized_pnl=t.realized_pnl, close_price=t.close_price, closed_block=t.closed_block
                )
                s.put_position(closed)

        holding = None
        if writes.holding_delta is not None:
            holding = self.holdings.update_holding(s, writes.user, writes.engine, writes.holding_delta)

        return ProcessResult(
            event=event,
            status=APPLIED,
            writes=writes,
            opened_position=opened,
            closed_position=closed,
            holding=holding,
        )
