# --- src/perpindexer/infrastructure/db/models/__init__.py ---
"""
Makes the 'models' directory a package and ensures all SQLAlchemy ORM
models are registered on Base.metadata for Alembic and create_all().
"""

from .base import Base, FixedPoint
from .market import MarketRow, PricePointRow
from .trading import PositionRow, ProgressCursorRow, TradeRow, UserHoldingRow

__all__ = [
    "Base",
    "FixedPoint",
    "MarketRow",
    "PricePointRow",
    "PositionRow",
    "ProgressCursorRow",
    "TradeRow",
    "UserHoldingRow",
]
