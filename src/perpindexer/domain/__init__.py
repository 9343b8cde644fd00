# src/perpindexer/domain/__init__.py
"""Domain layer: fixed-point values, events, derived entities and ports."""

from .entities import (
    DeltaKind,
    HoldingDelta,
    Market,
    Position,
    PositionStatus,
    PricePoint,
    Trade,
    TradeType,
    UserHolding,
)
from .errors import IndexerError, MalformedEvent, PrimaryStoreFailure, SecondaryStoreFailure
from .events import (
    EVENT_TYPES,
    Event,
    MarketCreated,
    PositionClosed,
    PositionLiquidated,
    PositionOpened,
    parse_event,
)

__all__ = [
    "DeltaKind",
    "HoldingDelta",
    "Market",
    "Position",
    "PositionStatus",
    "PricePoint",
    "Trade",
    "TradeType",
    "UserHolding",
    "IndexerError",
    "MalformedEvent",
    "PrimaryStoreFailure",
    "SecondaryStoreFailure",
    "EVENT_TYPES",
    "Event",
    "MarketCreated",
    "PositionClosed",
    "PositionLiquidated",
    "PositionOpened",
    "parse_event",
]
