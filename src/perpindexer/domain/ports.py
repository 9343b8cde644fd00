# src/perpindexer/domain/ports.py
"""
Interfaces the application layer depends on.

Two primary stores implement DerivedStateStore: the SQL repository (indexer)
and the local in-memory store (client mirror). The secondary store and the
event source are external collaborators.
"""
from __future__ import annotations

from typing import (Any, AsyncIterator, ContextManager, Dict, List, Mapping,
                    Optional, Protocol, Sequence)

from .entities import Market, Position, PositionStatus, PricePoint, Trade, UserHolding


class StoreSession(Protocol):
    """A unit of work against the primary store. Writes become visible only on commit."""

    # point reads
    def has_trade(self, trade_id: str) -> bool: ...
    def get_market(self, market_index: str) -> Optional[Market]: ...
    def get_position(self, engine: str, position_id: int) -> Optional[Position]: ...
    def get_holding(self, user: str, engine: str) -> Optional[UserHolding]: ...

    # upserts
    def put_market(self, market: Market) -> None: ...
    def put_trade(self, trade: Trade) -> None: ...
    def put_price_point(self, point: PricePoint) -> None: ...
    def put_position(self, position: Position) -> None: ...
    def put_holding(self, holding: UserHolding) -> None: ...

    # queries
    def list_positions(self, user: Optional[str] = None, engine: Optional[str] = None,
                       status: Optional[PositionStatus] = None) -> List[Position]: ...
    def list_trades(self, user: Optional[str] = None, engine: Optional[str] = None,
                    position_id: Optional[int] = None) -> List[Trade]: ...
    def list_markets(self) -> List[Market]: ...
    def list_price_points(self, engine: str) -> List[PricePoint]: ...

    # progress cursor
    def get_cursor(self, stream: str) -> int: ...
    def set_cursor(self, stream: str, block_number: int) -> None: ...


class DerivedStateStore(Protocol):
    def session(self) -> ContextManager[StoreSession]: ...
    def clear(self) -> None: ...


class SecondaryStore(Protocol):
    """Best-effort external mirror (PostgREST-style)."""

    async def upsert(self, table: str, row: Mapping[str, Any]) -> None: ...
    async def update(self, table: str, row: Mapping[str, Any], filters: Mapping[str, Any]) -> None: ...
    async def aclose(self) -> None: ...


class EventSource(Protocol):
    """Decoded-log feed: range scan plus live subscription."""

    async def block_number(self) -> int: ...
    async def get_logs(self, engine: str, from_block: int, to_block: int,
                       event_names: Sequence[str]) -> List[Dict[str, Any]]: ...
    def subscribe(self, engine: str) -> AsyncIterator[Dict[str, Any]]: ...
