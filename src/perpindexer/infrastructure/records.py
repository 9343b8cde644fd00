# src/perpindexer/infrastructure/records.py
"""
Entity <-> flat record codec.

One record shape serves both the local JSON files and the secondary REST
rows: snake_case keys, an `id` primary key, fixed-point values as decimal
strings, datetimes as ISO-8601 strings. Decoding is strict: a float where a
fixed-point value is expected raises ValueError instead of being coerced.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from perpindexer.domain.entities import (Market, Position, PositionStatus,
                                          PricePoint, Trade, TradeType, UserHolding)
from perpindexer.domain.value_objects import (decode_fixed, decode_optional,
                                               encode_fixed, encode_optional)

Record = Dict[str, Any]


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer, got {value!r}")
    return value


# --- Market ---

def market_to_record(m: Market) -> Record:
    return {
        "id": m.market_index,
        "engine": m.engine,
        "market": m.market,
        "collateral_token": m.collateral_token,
        "created_at": _dt(m.created_at),
        "created_block": m.created_block,
    }


def market_from_record(r: Mapping[str, Any]) -> Market:
    return Market(
        market_index=str(r["id"]),
        engine=r["engine"],
        market=r["market"],
        collateral_token=r["collateral_token"],
        created_at=_parse_dt(r["created_at"]),
        created_block=_int(r["created_block"]),
    )


# --- Trade ---

def trade_to_record(t: Trade) -> Record:
    return {
        "id": t.id,
        "engine": t.engine,
        "user": t.user,
        "position_id": encode_fixed(t.position_id),
        "event_type": t.event_type.value,
        "price": encode_fixed(t.price),
        "base_size": encode_fixed(t.base_size),
        "margin": encode_fixed(t.margin),
        "notional": encode_fixed(t.notional),
        "pnl": encode_optional(t.pnl),
        "is_long": t.is_long,
        "timestamp": _dt(t.timestamp),
        "block_number": t.block_number,
        "log_index": t.log_index,
        "tx_hash": t.tx_hash,
        "leverage": encode_optional(t.leverage),
        "fee": encode_optional(t.fee),
        "liquidator": t.liquidator,
        "liquidator_reward": encode_optional(t.liquidator_reward),
    }


def trade_from_record(r: Mapping[str, Any]) -> Trade:
    return Trade(
        id=r["id"],
        engine=r["engine"],
        user=r["user"],
        position_id=decode_fixed(r["position_id"]),
        event_type=TradeType(r["event_type"]),
        price=decode_fixed(r["price"]),
        base_size=decode_fixed(r["base_size"]),
        margin=decode_fixed(r["margin"]),
        notional=decode_fixed(r["notional"]),
        pnl=decode_optional(r.get("pnl")),
        is_long=bool(r["is_long"]),
        timestamp=_parse_dt(r["timestamp"]),
        block_number=_int(r["block_number"]),
        log_index=_int(r["log_index"]),
        tx_hash=r["tx_hash"],
        leverage=decode_optional(r.get("leverage")),
        fee=decode_optional(r.get("fee")),
        liquidator=r.get("liquidator"),
        liquidator_reward=decode_optional(r.get("liquidator_reward")),
    )


# --- Position ---

def position_to_record(p: Position) -> Record:
    return {
        "id": f"{p.engine}-{p.position_id}",
        "position_id": encode_fixed(p.position_id),
        "engine": p.engine,
        "user": p.user,
        "is_long": p.is_long,
        "base_size": encode_fixed(p.base_size),
        "entry_price": encode_fixed(p.entry_price),
        "entry_notional": encode_fixed(p.entry_notional),
        "margin": encode_fixed(p.margin),
        "leverage": encode_fixed(p.leverage),
        "carry_snapshot": encode_fixed(p.carry_snapshot),
        "open_block": p.open_block,
        "status": int(p.status),
        "realized_pnl": encode_fixed(p.realized_pnl),
        "close_price": encode_optional(p.close_price),
        "closed_block": p.closed_block,
    }


def position_closing_fields(p: Position) -> Record:
    """Columns that change on the OPEN -> CLOSED/LIQUIDATED transition."""
    record = position_to_record(p)
    return {k: record[k] for k in ("status", "realized_pnl", "close_price", "closed_block")}


def position_from_record(r: Mapping[str, Any]) -> Position:
    return Position(
        position_id=decode_fixed(r["position_id"]),
        engine=r["engine"],
        user=r["user"],
        is_long=bool(r["is_long"]),
        base_size=decode_fixed(r["base_size"]),
        entry_price=decode_fixed(r["entry_price"]),
        entry_notional=decode_fixed(r["entry_notional"]),
        margin=decode_fixed(r["margin"]),
        leverage=decode_fixed(r["leverage"]),
        carry_snapshot=decode_fixed(r["carry_snapshot"]),
        open_block=_int(r["open_block"]),
        status=PositionStatus(_int(r["status"])),
        realized_pnl=decode_fixed(r["realized_pnl"]),
        close_price=decode_optional(r.get("close_price")),
        closed_block=r.get("closed_block"),
    )


# --- UserHolding ---

def holding_to_record(h: UserHolding) -> Record:
    return {
        "id": f"{h.user}-{h.engine}",
        "user": h.user,
        "engine": h.engine,
        "open_position_count": h.open_position_count,
        "total_trades": h.total_trades,
        "total_volume": encode_fixed(h.total_volume),
        "realized_pnl": encode_fixed(h.realized_pnl),
        "last_trade_at": _dt(h.last_trade_at),
    }


def holding_from_record(r: Mapping[str, Any]) -> UserHolding:
    return UserHolding(
        user=r["user"],
        engine=r["engine"],
        open_position_count=_int(r["open_position_count"]),
        total_trades=_int(r["total_trades"]),
        total_volume=decode_fixed(r["total_volume"]),
        realized_pnl=decode_fixed(r["realized_pnl"]),
        last_trade_at=_parse_dt(r.get("last_trade_at")),
    )


# --- PricePoint ---

def price_point_to_record(p: PricePoint) -> Record:
    return {
        "id": f"{p.engine}-{p.block_number}-{p.log_index}",
        "engine": p.engine,
        "block_number": p.block_number,
        "log_index": p.log_index,
        "price": encode_fixed(p.price),
        "timestamp": _dt(p.timestamp),
    }


def price_point_from_record(r: Mapping[str, Any]) -> PricePoint:
    return PricePoint(
        engine=r["engine"],
        block_number=_int(r["block_number"]),
        log_index=_int(r["log_index"]),
        price=decode_fixed(r["price"]),
        timestamp=_parse_dt(r["timestamp"]),
    )
