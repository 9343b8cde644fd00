# src/perpindexer/domain/entities.py
"""
Derived entities maintained by the aggregation engine.

All monetary fields are raw fixed-point integers (see value_objects).
Entities are plain dataclasses; state transitions return new instances so a
staged write never aliases the stored one.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional, Tuple


def from_timestamp(ts: int) -> datetime:
    """Block timestamp (seconds) to an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


# --- ENUMERATIONS ---

class TradeType(Enum):
    OPEN = "open"
    CLOSE = "close"
    LIQUIDATE = "liquidate"


class PositionStatus(IntEnum):
    """Mirrors the on-chain status byte: 0=Open, 1=Closed, 2=Liquidated."""
    OPEN = 0
    CLOSED = 1
    LIQUIDATED = 2


class DeltaKind(Enum):
    OPEN = "open"
    CLOSE = "close"
    LIQUIDATE = "liquidate"


# --- ENTITIES ---

@dataclass(frozen=True)
class Market:
    market_index: str
    engine: str
    market: str
    collateral_token: str
    created_at: datetime
    created_block: int


@dataclass(frozen=True)
class Trade:
    """One observed event projected into the append-only trade log."""
    id: str
    engine: str
    user: str
    position_id: int
    event_type: TradeType
    price: int
    base_size: int
    margin: int
    notional: int
    pnl: Optional[int]
    is_long: bool
    timestamp: datetime
    block_number: int
    log_index: int
    tx_hash: str
    leverage: Optional[int] = None
    fee: Optional[int] = None
    liquidator: Optional[str] = None
    liquidator_reward: Optional[int] = None


@dataclass(frozen=True)
class Position:
    position_id: int
    engine: str
    user: str
    is_long: bool
    base_size: int
    entry_price: int
    entry_notional: int
    margin: int
    leverage: int
    carry_snapshot: int
    open_block: int
    status: PositionStatus = PositionStatus.OPEN
    realized_pnl: int = 0
    close_price: Optional[int] = None
    closed_block: Optional[int] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.engine, self.position_id)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def transition(self, status: PositionStatus, *, realized_pnl: int = 0,
                   close_price: Optional[int] = None, closed_block: Optional[int] = None) -> "Position":
        """
        Move an open position to CLOSED or LIQUIDATED.
        A position that already left OPEN is returned unchanged.
        """
        if not self.is_open:
            return self
        if status == PositionStatus.OPEN:
            raise ValueError("Cannot transition a position back to OPEN.")
        return replace(
            self,
            status=status,
            realized_pnl=realized_pnl,
            close_price=close_price,
            closed_block=closed_block,
        )


@dataclass(frozen=True)
class HoldingDelta:
    kind: DeltaKind
    timestamp: datetime
    notional: int = 0
    pnl: int = 0


@dataclass(frozen=True)
class UserHolding:
    user: str
    engine: str
    open_position_count: int = 0
    total_trades: int = 0
    total_volume: int = 0
    realized_pnl: int = 0
    last_trade_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user, self.engine)

    @classmethod
    def zero(cls, user: str, engine: str) -> "UserHolding":
        return cls(user=user, engine=engine)

    def apply(self, delta: HoldingDelta) -> "UserHolding":
        """Fold one Open/Close/Liquidate delta into the aggregate."""
        if delta.kind == DeltaKind.OPEN:
            return replace(
                self,
                open_position_count=self.open_position_count + 1,
                total_trades=self.total_trades + 1,
                total_volume=self.total_volume + delta.notional,
                last_trade_at=delta.timestamp,
            )
        if delta.kind == DeltaKind.CLOSE:
            return replace(
                self,
                open_position_count=max(0, self.open_position_count - 1),
                total_trades=self.total_trades + 1,
                realized_pnl=self.realized_pnl + delta.pnl,
                last_trade_at=delta.timestamp,
            )
        if delta.kind == DeltaKind.LIQUIDATE:
            return replace(
                self,
                open_position_count=max(0, self.open_position_count - 1),
                total_trades=self.total_trades + 1,
                last_trade_at=delta.timestamp,
            )
        raise ValueError(f"Unknown holding delta kind: {delta.kind!r}")


@dataclass(frozen=True)
class PricePoint:
    engine: str
    block_number: int
    log_index: int
    price: int
    timestamp: datetime

    @property
    def key(self) -> Tuple[str, int, int]:
        return (self.engine, self.block_number, self.log_index)
