# src/perpindexer/interfaces/api/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List

from pydantic import BaseModel, ConfigDict, field_validator

from perpindexer.domain.value_objects import encode_fixed


def _fixed(v: Any) -> str | None:
    if v is None: return None
    if isinstance(v, str): return v
    return encode_fixed(v)


def _enum_value(v: Any) -> Any:
    return v.value if hasattr(v, "value") else v


class PositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    position_id: str
    engine: str
    user: str
    is_long: bool
    base_size: str
    entry_price: str
    entry_notional: str
    margin: str
    leverage: str
    carry_snapshot: str
    open_block: int
    status: str
    realized_pnl: str
    close_price: str | None = None
    closed_block: int | None = None

    @field_validator("position_id", "base_size", "entry_price", "entry_notional", "margin",
                     "leverage", "carry_snapshot", "realized_pnl", "close_price", mode="before")
    def _v_fixed(cls, v): return _fixed(v)
    @field_validator("status", mode="before")
    def _v_status(cls, v): return v.name if hasattr(v, "name") else str(v)


class TradeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    engine: str
    user: str
    position_id: str
    event_type: str
    price: str
    base_size: str
    margin: str
    notional: str
    pnl: str | None = None
    is_long: bool
    timestamp: datetime
    block_number: int
    log_index: int
    tx_hash: str
    leverage: str | None = None
    fee: str | None = None
    liquidator: str | None = None
    liquidator_reward: str | None = None

    @field_validator("position_id", "price", "base_size", "margin", "notional", "pnl",
                     "leverage", "fee", "liquidator_reward", mode="before")
    def _v_fixed(cls, v): return _fixed(v)
    @field_validator("event_type", mode="before")
    def _v_type(cls, v): return _enum_value(v)


class HoldingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    user: str
    engine: str
    open_position_count: int
    total_trades: int
    total_volume: str
    realized_pnl: str
    last_trade_at: datetime | None = None

    @field_validator("total_volume", "realized_pnl", mode="before")
    def _v_fixed(cls, v): return _fixed(v)


class MarketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    market_index: str
    engine: str
    market: str
    collateral_token: str
    created_at: datetime
    created_block: int


class PricePointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    block_number: int
    log_index: int
    price: str
    timestamp: datetime

    @field_validator("price", mode="before")
    def _v_fixed(cls, v): return _fixed(v)


class CursorOut(BaseModel):
    stream: str
    block_number: int


class IngestResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    status: str
    identity: str | None = None
    event_name: str | None = None
    detail: str | None = None


class IngestResponse(BaseModel):
    results: List[IngestResultOut]
    applied: int
    duplicate: int
    malformed: int
