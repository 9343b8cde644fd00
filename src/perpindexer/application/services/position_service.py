# src/perpindexer/application/services/position_service.py
"""
Open-position reconstruction.

DirectPositionReconstructor reads the store, which the event processor keeps
current. LogReplayReconstructor fills a client store from a bounded window of
recent logs: every position opened in that window and not closed or
liquidated in it is seeded unless the store already holds it. Positions
restored from disk are never dropped.

Known limitation of the windowed scan: a position opened before
`head - window_blocks` and still open at `head` is never seen, so a fresh
client does not list it until some later event touches it. Widen the window
or use the indexer's read API when that matters.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from perpindexer.domain.entities import Position, PositionStatus
from perpindexer.domain.errors import MalformedEvent
from perpindexer.domain.events import (CLOSURE_EVENT_NAMES, PositionOpened, parse_event)
from perpindexer.domain.ports import DerivedStateStore, EventSource
from .upsert_service import position_from_open

log = logging.getLogger(__name__)


def replay_open_positions(opens: Iterable[PositionOpened], closures: Iterable[Any]) -> List[Position]:
    """Every open whose (engine, position_id) has no closure, in log order."""
    closed: Set[Tuple[str, int]] = {(c.engine, c.position_id) for c in closures}
    result = {}
    for event in sorted(opens, key=lambda e: e.ordering_key):
        key = (event.engine, event.position_id)
        if key not in closed:
            result[key] = position_from_open(event)
    return list(result.values())


class DirectPositionReconstructor:
    def __init__(self, store: DerivedStateStore):
        self.store = store

    def open_positions(self, engine: Optional[str] = None) -> List[Position]:
        with self.store.session() as s:
            return s.list_positions(engine=engine, status=PositionStatus.OPEN)

    def user_positions(self, user: str) -> List[Position]:
        with self.store.session() as s:
            return s.list_positions(user=user, status=PositionStatus.OPEN)


class LogReplayReconstructor(DirectPositionReconstructor):
    def __init__(self, source: EventSource, store: DerivedStateStore, window_blocks: int = 10_000):
        super().__init__(store)
        self.source = source
        self.window_blocks = window_blocks

    @staticmethod
    def _parse_all(payloads: Sequence[Mapping[str, Any]]) -> List[Any]:
        events = []
        for payload in payloads:
            try:
                events.append(parse_event(payload))
            except MalformedEvent as e:
                log.error(f"Skipping log during reconstruction: {e}")
        return events

    async def rebuild(self, engine: str) -> List[Position]:
        """
        Seed the store with the window's open positions it does not already hold.

        Rows already in the store (restored from disk or applied live) are
        kept as they are; the window only fills gaps.
        """
        head = await self.source.block_number()
        from_block = max(0, head - self.window_blocks)
        opens = await self.source.get_logs(engine, from_block, head, [PositionOpened.name])
        closures = await self.source.get_logs(engine, from_block, head, list(CLOSURE_EVENT_NAMES))

        open_events = [e for e in self._parse_all(opens) if isinstance(e, PositionOpened)]
        positions = replay_open_positions(open_events, self._parse_all(closures))

        seeded = []
        with self.store.session() as s:
            for p in positions:
                if s.get_position(p.engine, p.position_id) is None:
                    s.put_position(p)
                    seeded.append(p)
        log.info(f"Window {from_block}..{head} for {engine}: {len(positions)} open, "
                 f"{len(seeded)} seeded into the store.")
        return seeded
