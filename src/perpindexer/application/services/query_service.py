# src/perpindexer/application/services/query_service.py
from typing import List, Optional

from perpindexer.domain.entities import Market, Position, PositionStatus, PricePoint, Trade, UserHolding
from perpindexer.domain.ports import DerivedStateStore


class QueryService:
    """Read side of the derived state. Each call is its own short session."""

    def __init__(self, store: DerivedStateStore, stream: str = "default"):
        self.store = store
        self.stream = stream

    def get_user_positions(self, user: str, status: Optional[PositionStatus] = None) -> List[Position]:
        with self.store.session() as s:
            return s.list_positions(user=user, status=status)

    def get_positions_by_market(self, engine: str, status: Optional[PositionStatus] = None) -> List[Position]:
        with self.store.session() as s:
            return s.list_positions(engine=engine, status=status)

    def get_trades_by_user(self, user: str) -> List[Trade]:
        with self.store.session() as s:
            return s.list_trades(user=user)

    def get_trades_by_position(self, engine: str, position_id: int) -> List[Trade]:
        with self.store.session() as s:
            return s.list_trades(engine=engine, position_id=position_id)

    def get_trades_by_market(self, engine: str) -> List[Trade]:
        with self.store.session() as s:
            return s.list_trades(engine=engine)

    def get_holding(self, user: str, engine: str) -> UserHolding:
        """Zero-valued holding when the user never traded on the engine."""
        with self.store.session() as s:
            return s.get_holding(user, engine) or UserHolding.zero(user, engine)

    def get_price_history(self, engine: str) -> List[PricePoint]:
        with self.store.session() as s:
            return s.list_price_points(engine)

    def list_markets(self) -> List[Market]:
        with self.store.session() as s:
            return s.list_markets()

    def get_market(self, market_index: str) -> Optional[Market]:
        with self.store.session() as s:
            return s.get_market(market_index)

    def get_cursor(self) -> int:
        with self.store.session() as s:
            return s.get_cursor(self.stream)
