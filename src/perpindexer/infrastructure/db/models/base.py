# --- START OF FILE: src/perpindexer/infrastructure/db/models/base.py ---
from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from perpindexer.domain.value_objects import decode_fixed, encode_fixed


class Base(DeclarativeBase):
    """The base class for all SQLAlchemy ORM models."""
    pass


class FixedPoint(TypeDecorator):
    """
    Raw fixed-point integer stored as a decimal string.

    uint256/int256 values overflow every native SQL integer type and lose
    precision in NUMERIC on SQLite, so the column holds the exact digits.
    """
    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encode_fixed(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decode_fixed(value)
# --- END OF FILE ---
