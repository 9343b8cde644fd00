# src/perpindexer/infrastructure/local/state_store.py
"""
In-memory primary store for the client mirror.

Sessions stage their writes and only fold them into the shared tables when
the `with` block exits cleanly, so an exception halfway through an event
leaves no partial state behind. Folding happens under a lock; sessions may
run on worker threads.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Hashable, List, Optional

from perpindexer.domain.entities import (Market, Position, PositionStatus,
                                          PricePoint, Trade, UserHolding)

log = logging.getLogger(__name__)

MARKETS = "markets"
TRADES = "trades"
PRICE_POINTS = "price_points"
POSITIONS = "positions"
HOLDINGS = "holdings"
TABLES = (MARKETS, TRADES, PRICE_POINTS, POSITIONS, HOLDINGS)


@dataclass
class LocalState:
    """Plain snapshot of every table plus the progress cursors."""
    markets: Dict[str, Market] = field(default_factory=dict)
    trades: Dict[str, Trade] = field(default_factory=dict)
    price_points: Dict[Hashable, PricePoint] = field(default_factory=dict)
    positions: Dict[Hashable, Position] = field(default_factory=dict)
    holdings: Dict[Hashable, UserHolding] = field(default_factory=dict)
    cursors: Dict[str, int] = field(default_factory=dict)


class LocalStoreSession:
    def __init__(self, store: "LocalStateStore"):
        self._store = store
        self._staged: Dict[str, Dict[Hashable, Any]] = {t: {} for t in TABLES}
        self._cursors: Dict[str, int] = {}

    # --- staging helpers ---

    def _get(self, table: str, key: Hashable) -> Any:
        if key in self._staged[table]:
            return self._staged[table][key]
        with self._store._lock:
            return getattr(self._store._state, table).get(key)

    def _values(self, table: str) -> List[Any]:
        with self._store._lock:
            merged = dict(getattr(self._store._state, table))
        merged.update(self._staged[table])
        return list(merged.values())

    # --- point reads ---

    def has_trade(self, trade_id: str) -> bool:
        return self._get(TRADES, trade_id) is not None

    def get_market(self, market_index: str) -> Optional[Market]:
        return self._get(MARKETS, market_index)

    def get_position(self, engine: str, position_id: int) -> Optional[Position]:
        return self._get(POSITIONS, (engine, position_id))

    def get_holding(self, user: str, engine: str) -> Optional[UserHolding]:
        return self._get(HOLDINGS, (user, engine))

    # --- upserts ---

    def put_market(self, market: Market) -> None:
        self._staged[MARKETS][market.market_index] = market

    def put_trade(self, trade: Trade) -> None:
        self._staged[TRADES][trade.id] = trade

    def put_price_point(self, point: PricePoint) -> None:
        self._staged[PRICE_POINTS][point.key] = point

    def put_position(self, position: Position) -> None:
        self._staged[POSITIONS][position.key] = position

    def put_holding(self, holding: UserHolding) -> None:
        self._staged[HOLDINGS][holding.key] = holding

    # --- queries ---

    def list_positions(self, user: Optional[str] = None, engine: Optional[str] = None,
                       status: Optional[PositionStatus] = None) -> List[Position]:
        result = [
            p for p in self._values(POSITIONS)
            if (user is None or p.user == user)
            and (engine is None or p.engine == engine)
            and (status is None or p.status == status)
        ]
        return sorted(result, key=lambda p: (p.open_block, p.engine, p.position_id))

    def list_trades(self, user: Optional[str] = None, engine: Optional[str] = None,
                    position_id: Optional[int] = None) -> List[Trade]:
        result = [
            t for t in self._values(TRADES)
            if (user is None or t.user == user)
            and (engine is None or t.engine == engine)
            and (position_id is None or t.position_id == position_id)
        ]
        return sorted(result, key=lambda t: (t.block_number, t.log_index), reverse=True)

    def list_markets(self) -> List[Market]:
        return sorted(self._values(MARKETS), key=lambda m: (m.created_block, m.market_index))

    def list_price_points(self, engine: str) -> List[PricePoint]:
        points = [p for p in self._values(PRICE_POINTS) if p.engine == engine]
        return sorted(points, key=lambda p: (p.block_number, p.log_index))

    # --- progress cursor ---

    def get_cursor(self, stream: str) -> int:
        if stream in self._cursors:
            return self._cursors[stream]
        with self._store._lock:
            return self._store._state.cursors.get(stream, 0)

    def set_cursor(self, stream: str, block_number: int) -> None:
        self._cursors[stream] = block_number


class LocalStateStore:
    """Client-side DerivedStateStore; persisted by LocalStatePersistence."""

    def __init__(self, state: Optional[LocalState] = None):
        self._state = state or LocalState()
        self._lock = threading.RLock()
        self.dirty = False

    @contextmanager
    def session(self) -> Generator[LocalStoreSession, None, None]:
        s = LocalStoreSession(self)
        yield s
        self._fold(s)

    def _fold(self, s: LocalStoreSession) -> None:
        with self._lock:
            for table, writes in s._staged.items():
                if writes:
                    getattr(self._state, table).update(writes)
            self._state.cursors.update(s._cursors)
            if any(s._staged.values()) or s._cursors:
                self.dirty = True

    def clear(self) -> None:
        """Invalidate position, trade, market-history and aggregate caches. Cursors are kept."""
        with self._lock:
            cursors = dict(self._state.cursors)
            self._state = LocalState(cursors=cursors)
            self.dirty = True
        log.warning("Local state caches cleared.")

    def snapshot(self) -> LocalState:
        with self._lock:
            return LocalState(
                markets=dict(self._state.markets),
                trades=dict(self._state.trades),
                price_points=dict(self._state.price_points),
                positions=dict(self._state.positions),
                holdings=dict(self._state.holdings),
                cursors=dict(self._state.cursors),
            )

    def restore(self, state: LocalState) -> None:
        with self._lock:
            self._state = state
            self.dirty = False
