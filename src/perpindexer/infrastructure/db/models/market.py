# src/perpindexer/infrastructure/db/models/market.py
"""
SQLAlchemy ORM models for markets and their price history.
Both tables are write-once: rows are upserted with identical content on replay.
"""

from sqlalchemy import BigInteger, Column, DateTime, Integer, String

from .base import Base, FixedPoint


class MarketRow(Base):
    __tablename__ = "markets"
    id = Column(String, primary_key=True)  # marketIndex
    engine = Column(String(42), nullable=False, index=True)
    market = Column(String(42), nullable=False)
    collateral_token = Column(String(42), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    created_block = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<MarketRow(id={self.id}, engine='{self.engine}')>"


class PricePointRow(Base):
    __tablename__ = "price_points"
    # "{engine}-{blockNumber}-{logIndex}"
    id = Column(String, primary_key=True)
    engine = Column(String(42), nullable=False, index=True)
    block_number = Column(BigInteger, nullable=False, index=True)
    log_index = Column(Integer, nullable=False)
    price = Column(FixedPoint, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
