# src/perpindexer/domain/events.py
"""
The closed set of domain events emitted by the venue.

Events are immutable. Every position event carries its identity key
``(block_hash, log_index)``; ``parse_event`` turns a decoded log payload into
one of the typed events below or raises ``MalformedEvent``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from .errors import MalformedEvent
from .value_objects import IdentityKey, normalize_address, normalize_hash


@dataclass(frozen=True)
class MarketCreated:
    market_index: str
    engine: str
    market: str
    collateral_token: str
    block_timestamp: int
    block_number: int
    block_hash: Optional[str] = None
    log_index: Optional[int] = None

    name = "MarketCreated"

    @property
    def identity(self) -> Optional[IdentityKey]:
        if self.block_hash is None or self.log_index is None:
            return None
        return IdentityKey(self.block_hash, self.log_index)

    @property
    def ordering_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index or 0)


@dataclass(frozen=True)
class _PositionEvent:
    position_id: int
    engine: str
    user: str
    block_hash: str
    block_number: int
    log_index: int
    block_timestamp: int

    @property
    def identity(self) -> IdentityKey:
        return IdentityKey(self.block_hash, self.log_index)

    @property
    def ordering_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class PositionOpened(_PositionEvent):
    is_long: Optional[bool] = None
    entry_price: Optional[int] = None
    base_size: Optional[int] = None
    margin: Optional[int] = None
    leverage: Optional[int] = None
    fee: Optional[int] = None
    total_to_use: Optional[int] = None
    transaction_hash: Optional[str] = None

    name = "PositionOpened"


@dataclass(frozen=True)
class PositionClosed(_PositionEvent):
    avg_close_price: Optional[int] = None
    total_pnl: Optional[int] = None
    transaction_hash: Optional[str] = None

    name = "PositionClosed"


@dataclass(frozen=True)
class PositionLiquidated(_PositionEvent):
    liquidator: Optional[str] = None
    liquidator_reward: Optional[int] = None
    transaction_hash: Optional[str] = None

    name = "PositionLiquidated"


Event = Union[MarketCreated, PositionOpened, PositionClosed, PositionLiquidated]
EVENT_TYPES: Tuple[type, ...] = (MarketCreated, PositionOpened, PositionClosed, PositionLiquidated)
POSITION_EVENT_NAMES = (PositionOpened.name, PositionClosed.name, PositionLiquidated.name)
CLOSURE_EVENT_NAMES = (PositionClosed.name, PositionLiquidated.name)


# --- Payload parsing ---

def _field(payload: Mapping[str, Any], *names: str) -> Any:
    for n in names:
        if n in payload and payload[n] is not None:
            return payload[n]
    return None


def _as_int(value: Any, field: str, *, signed: bool = False) -> int:
    if value is None:
        raise ValueError(f"missing required field '{field}'")
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"field '{field}' must be an integer, got {type(value).__name__}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        s = value.strip()
        try:
            result = int(s, 16) if s.lower().startswith("0x") else int(s)
        except ValueError:
            raise ValueError(f"field '{field}' is not an integer: {value!r}")
    else:
        raise ValueError(f"field '{field}' must be an integer, got {type(value).__name__}")
    if not signed and result < 0:
        raise ValueError(f"field '{field}' must be non-negative, got {result}")
    return result


def _as_optional_int(value: Any, field: str) -> Optional[int]:
    return None if value is None else _as_int(value, field)


def _as_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"field '{field}' must be a boolean, got {value!r}")


def _as_address(value: Any, field: str) -> str:
    if value is None:
        raise ValueError(f"missing required field '{field}'")
    return normalize_address(value)


def _base_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    block_hash = _field(payload, "blockHash", "block_hash")
    if block_hash is None:
        raise ValueError("missing required field 'blockHash'")
    return {
        "block_hash": normalize_hash(block_hash),
        "block_number": _as_int(_field(payload, "blockNumber", "block_number"), "blockNumber"),
        "log_index": _as_int(_field(payload, "logIndex", "log_index"), "logIndex"),
        "block_timestamp": _as_int(_field(payload, "blockTimestamp", "block_timestamp", "timestamp"), "blockTimestamp"),
    }


def _tx_hash(payload: Mapping[str, Any]) -> Optional[str]:
    value = _field(payload, "transactionHash", "transaction_hash")
    return normalize_hash(value) if value is not None else None


def _parse_market_created(payload: Mapping[str, Any], args: Mapping[str, Any]) -> MarketCreated:
    block_hash = _field(payload, "blockHash", "block_hash")
    log_index = _field(payload, "logIndex", "log_index")
    return MarketCreated(
        market_index=str(_as_int(_field(args, "marketIndex", "market_index"), "marketIndex")),
        engine=_as_address(_field(args, "engine"), "engine"),
        market=_as_address(_field(args, "market"), "market"),
        collateral_token=_as_address(_field(args, "collateralToken", "collateral_token"), "collateralToken"),
        block_timestamp=_as_int(_field(payload, "blockTimestamp", "block_timestamp", "timestamp"), "blockTimestamp"),
        block_number=_as_int(_field(payload, "blockNumber", "block_number"), "blockNumber"),
        block_hash=normalize_hash(block_hash) if block_hash is not None else None,
        log_index=_as_int(log_index, "logIndex") if log_index is not None else None,
    )


def _position_common(payload: Mapping[str, Any], args: Mapping[str, Any]) -> Dict[str, Any]:
    fields = _base_fields(payload)
    fields["position_id"] = _as_int(_field(args, "positionId", "position_id"), "positionId")
    fields["engine"] = _as_address(_field(payload, "address", "engine"), "address")
    fields["user"] = _as_address(_field(args, "user"), "user")
    return fields


def _parse_position_opened(payload: Mapping[str, Any], args: Mapping[str, Any]) -> PositionOpened:
    is_long = _field(args, "isLong", "is_long")
    if is_long is None:
        raise ValueError("missing required field 'isLong'")
    return PositionOpened(
        **_position_common(payload, args),
        is_long=_as_bool(is_long, "isLong"),
        entry_price=_as_int(_field(args, "entryPrice", "entry_price"), "entryPrice"),
        base_size=_as_int(_field(args, "baseSize", "base_size"), "baseSize"),
        margin=_as_int(_field(args, "margin"), "margin"),
        leverage=_as_int(_field(args, "leverage"), "leverage"),
        fee=_as_optional_int(_field(args, "fee"), "fee"),
        total_to_use=_as_optional_int(_field(args, "totalToUse", "total_to_use"), "totalToUse"),
        transaction_hash=_tx_hash(payload),
    )


def _parse_position_closed(payload: Mapping[str, Any], args: Mapping[str, Any]) -> PositionClosed:
    return PositionClosed(
        **_position_common(payload, args),
        avg_close_price=_as_int(_field(args, "avgClosePrice", "avg_close_price"), "avgClosePrice"),
        total_pnl=_as_int(_field(args, "totalPnl", "total_pnl"), "totalPnl", signed=True),
        transaction_hash=_tx_hash(payload),
    )


def _parse_position_liquidated(payload: Mapping[str, Any], args: Mapping[str, Any]) -> PositionLiquidated:
    liquidator = _field(args, "liquidator")
    return PositionLiquidated(
        **_position_common(payload, args),
        liquidator=normalize_address(liquidator) if liquidator is not None else None,
        liquidator_reward=_as_optional_int(_field(args, "liqFee", "liquidatorReward", "liquidator_reward"), "liqFee"),
        transaction_hash=_tx_hash(payload),
    )


_PARSERS: Dict[str, Callable[[Mapping[str, Any], Mapping[str, Any]], Event]] = {
    MarketCreated.name: _parse_market_created,
    PositionOpened.name: _parse_position_opened,
    PositionClosed.name: _parse_position_closed,
    PositionLiquidated.name: _parse_position_liquidated,
}


def payload_identity(payload: Mapping[str, Any]) -> Optional[str]:
    """Best-effort identity string for logging payloads that failed to parse."""
    if not isinstance(payload, Mapping):
        return None
    block_hash = _field(payload, "blockHash", "block_hash")
    log_index = _field(payload, "logIndex", "log_index")
    if block_hash is None or log_index is None:
        return None
    return f"{str(block_hash).lower()}-{log_index}"


def parse_event(payload: Mapping[str, Any]) -> Event:
    """
    Decode a log payload into a typed event.

    Expected shape (camelCase or snake_case keys)::

        {"eventName": "PositionOpened", "address": "0x..", "blockHash": "0x..",
         "blockNumber": 12, "logIndex": 0, "blockTimestamp": 1700000000,
         "args": {"positionId": 7, "user": "0x..", ...}}
    """
    identity = payload_identity(payload)
    if not isinstance(payload, Mapping):
        raise MalformedEvent(f"payload must be a mapping, got {type(payload).__name__}")
    name = _field(payload, "eventName", "event_name", "event")
    parser = _PARSERS.get(name)
    if parser is None:
        raise MalformedEvent(f"unknown event name {name!r}", identity)
    args = _field(payload, "args") or {}
    if not isinstance(args, Mapping):
        raise MalformedEvent("'args' must be a mapping", identity)
    try:
        return parser(payload, args)
    except ValueError as e:
        raise MalformedEvent(str(e), identity) from e
