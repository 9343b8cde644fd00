# src/perpindexer/application/services/upsert_service.py
"""
Idempotent upsert layer.

`UpsertService.apply(event)` is pure: it validates one event and describes
the entity writes it implies. It never touches a store; the event processor
applies the writes inside one primary-store transaction.

Event -> writes:
    MarketCreated       Market
    PositionOpened      Trade(open), PricePoint, Position(OPEN), holding Open(notional)
    PositionClosed      Trade(close), PricePoint, Position -> CLOSED, holding Close(pnl)
    PositionLiquidated  Trade(liquidate), Position -> LIQUIDATED, holding Liquidate
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from perpindexer.domain.entities import (DeltaKind, HoldingDelta, Market, Position,
                                          PositionStatus, PricePoint, Trade, TradeType,
                                          from_timestamp)
from perpindexer.domain.errors import MalformedEvent
from perpindexer.domain.events import (EVENT_TYPES, Event, MarketCreated, PositionClosed,
                                        PositionLiquidated, PositionOpened)
from perpindexer.domain.value_objects import mul_wad, normalize_address

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionTransition:
    engine: str
    position_id: int
    status: PositionStatus
    realized_pnl: int = 0
    close_price: Optional[int] = None
    closed_block: Optional[int] = None


@dataclass(frozen=True)
class EntityWrites:
    """Everything one event writes. Unused slots stay None."""
    event_name: str
    identity: Optional[str]
    user: Optional[str] = None
    engine: Optional[str] = None
    market: Optional[Market] = None
    trade: Optional[Trade] = None
    price_point: Optional[PricePoint] = None
    position: Optional[Position] = None
    transition: Optional[PositionTransition] = None
    holding_delta: Optional[HoldingDelta] = None


def position_from_open(event: PositionOpened) -> Position:
    return Position(
        position_id=event.position_id,
        engine=event.engine,
        user=event.user,
        is_long=event.is_long,
        base_size=event.base_size,
        entry_price=event.entry_price,
        entry_notional=mul_wad(event.base_size, event.entry_price),
        margin=event.margin,
        leverage=event.leverage,
        carry_snapshot=0,
        open_block=event.block_number,
    )


# --- validation ---

def _require(event: Event, identity: Optional[str], *fields: str) -> None:
    for name in fields:
        if getattr(event, name) is None:
            raise MalformedEvent(f"{event.name}: missing required field '{name}'", identity)


def _non_negative(event: Event, identity: Optional[str], *fields: str) -> None:
    for name in fields:
        value = getattr(event, name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedEvent(f"{event.name}: field '{name}' must be an integer", identity)
        if value < 0:
            raise MalformedEvent(f"{event.name}: field '{name}' must be non-negative, got {value}", identity)


def _addresses(event: Event, identity: Optional[str], *fields: str) -> None:
    for name in fields:
        value = getattr(event, name)
        if value is None:
            continue
        try:
            if normalize_address(value) != value:
                raise ValueError("not normalized")
        except ValueError:
            raise MalformedEvent(f"{event.name}: field '{name}' is not a valid address: {value!r}", identity)


class UpsertService:
    """Maps every event class to its handler; refuses to build if one is missing."""

    HANDLERS: Dict[type, str] = {
        MarketCreated: "_on_market_created",
        PositionOpened: "_on_position_opened",
        PositionClosed: "_on_position_closed",
        PositionLiquidated: "_on_position_liquidated",
    }

    def __init__(self):
        missing = [t.__name__ for t in EVENT_TYPES if t not in self.HANDLERS]
        if missing:
            raise TypeError(f"No upsert handler for event type(s): {', '.join(missing)}")
        self._dispatch: Dict[type, Callable[[Event, Optional[str]], EntityWrites]] = {
            t: getattr(self, name) for t, name in self.HANDLERS.items()
        }

    def apply(self, event: Event) -> EntityWrites:
        handler = self._dispatch.get(type(event))
        if handler is None:
            raise MalformedEvent(f"unsupported event type {type(event).__name__}")
        identity = str(event.identity) if event.identity is not None else None
        self._validate(event, identity)
        return handler(event, identity)

    def _validate(self, event: Event, identity: Optional[str]) -> None:
        _non_negative(event, identity, "block_number", "block_timestamp")
        if isinstance(event, MarketCreated):
            _require(event, identity, "market_index", "engine", "market", "collateral_token")
            _addresses(event, identity, "engine", "market", "collateral_token")
            if not str(event.market_index).isdigit():
                raise MalformedEvent(f"MarketCreated: invalid market index {event.market_index!r}", identity)
            return
        _require(event, identity, "position_id", "engine", "user", "block_hash", "log_index")
        _non_negative(event, identity, "position_id", "log_index")
        _addresses(event, identity, "engine", "user")
        if isinstance(event, PositionOpened):
            _require(event, identity, "is_long", "entry_price", "base_size", "margin", "leverage")
            _non_negative(event, identity, "entry_price", "base_size", "margin", "leverage", "fee", "total_to_use")
        elif isinstance(event, PositionClosed):
            _require(event, identity, "avg_close_price", "total_pnl")
            _non_negative(event, identity, "avg_close_price")
        elif isinstance(event, PositionLiquidated):
            _non_negative(event, identity, "liquidator_reward")
            _addresses(event, identity, "liquidator")

    # --- handlers ---

    def _on_market_created(self, event: MarketCreated, identity: Optional[str]) -> EntityWrites:
        market = Market(
            market_index=event.market_index,
            engine=event.engine,
            market=event.market,
            collateral_token=event.collateral_token,
            created_at=from_timestamp(event.block_timestamp),
            created_block=event.block_number,
        )
        return EntityWrites(event_name=event.name, identity=identity, engine=event.engine, market=market)

    def _on_position_opened(self, event: PositionOpened, identity: Optional[str]) -> EntityWrites:
        ts = from_timestamp(event.block_timestamp)
        position = position_from_open(event)
        trade = Trade(
            id=identity,
            engine=event.engine,
            user=event.user,
            position_id=event.position_id,
            event_type=TradeType.OPEN,
            price=event.entry_price,
            base_size=event.base_size,
            margin=event.margin,
            notional=position.entry_notional,
            pnl=None,
            is_long=event.is_long,
            timestamp=ts,
            block_number=event.block_number,
            log_index=event.log_index,
            tx_hash=event.transaction_hash or "",
            leverage=event.leverage,
            fee=event.fee,
        )
        return EntityWrites(
            event_name=event.name,
            identity=identity,
            user=event.user,
            engine=event.engine,
            trade=trade,
            price_point=PricePoint(event.engine, event.block_number, event.log_index, event.entry_price, ts),
            position=position,
            holding_delta=HoldingDelta(DeltaKind.OPEN, ts, notional=position.entry_notional),
        )

    def _on_position_closed(self, event: PositionClosed, identity: Optional[str]) -> EntityWrites:
        ts = from_timestamp(event.block_timestamp)
        trade = Trade(
            id=identity,
            engine=event.engine,
            user=event.user,
            position_id=event.position_id,
            event_type=TradeType.CLOSE,
            price=event.avg_close_price,
            base_size=0,
            margin=0,
            notional=0,
            pnl=event.total_pnl,
            is_long=False,
            timestamp=ts,
            block_number=event.block_number,
            log_index=event.log_index,
            tx_hash=event.transaction_hash or "",
        )
        return EntityWrites(
            event_name=event.name,
            identity=identity,
            user=event.user,
            engine=event.engine,
            trade=trade,
            price_point=PricePoint(event.engine, event.block_number, event.log_index, event.avg_close_price, ts),
            transition=PositionTransition(
                engine=event.engine,
                position_id=event.position_id,
                status=PositionStatus.CLOSED,
                realized_pnl=event.total_pnl,
                close_price=event.avg_close_price,
                closed_block=event.block_number,
            ),
            holding_delta=HoldingDelta(DeltaKind.CLOSE, ts, pnl=event.total_pnl),
        )

    def _on_position_liquidated(self, event: PositionLiquidated, identity: Optional[str]) -> EntityWrites:
        ts = from_timestamp(event.block_timestamp)
        trade = Trade(
            id=identity,
            engine=event.engine,
            user=event.user,
            position_id=event.position_id,
            event_type=TradeType.LIQUIDATE,
            price=0,
            base_size=0,
            margin=0,
            notional=0,
            pnl=None,
            is_long=False,
            timestamp=ts,
            block_number=event.block_number,
            log_index=event.log_index,
            tx_hash=event.transaction_hash or "",
            liquidator=event.liquidator,
            liquidator_reward=event.liquidator_reward,
        )
        return EntityWrites(
            event_name=event.name,
            identity=identity,
            user=event.user,
            engine=event.engine,
            trade=trade,
            transition=PositionTransition(
                engine=event.engine,
                position_id=event.position_id,
                status=PositionStatus.LIQUIDATED,
                closed_block=event.block_number,
            ),
            holding_delta=HoldingDelta(DeltaKind.LIQUIDATE, ts),
        )
