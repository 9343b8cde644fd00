# src/perpindexer/infrastructure/db/models/trading.py
"""
SQLAlchemy ORM models for trades, positions and per-user holdings.

`trades` is the append-only event log keyed by "{blockHash}-{logIndex}";
its primary key is what makes replays detectable.
"""

from sqlalchemy import (BigInteger, Boolean, Column, DateTime, Enum, Integer,
                        String, UniqueConstraint)

from perpindexer.domain.entities import PositionStatus, TradeType
from .base import Base, FixedPoint


class TradeRow(Base):
    __tablename__ = "trades"
    id = Column(String, primary_key=True)
    engine = Column(String(42), nullable=False, index=True)
    user = Column(String(42), nullable=False, index=True)
    position_id = Column(FixedPoint, nullable=False, index=True)
    event_type = Column(Enum(TradeType, name="tradetype", values_callable=lambda e: [m.value for m in e]), nullable=False)
    price = Column(FixedPoint, nullable=False)
    base_size = Column(FixedPoint, nullable=False)
    margin = Column(FixedPoint, nullable=False)
    notional = Column(FixedPoint, nullable=False)
    pnl = Column(FixedPoint, nullable=True)
    is_long = Column(Boolean, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    block_number = Column(BigInteger, nullable=False, index=True)
    log_index = Column(Integer, nullable=False)
    tx_hash = Column(String(66), nullable=False)
    leverage = Column(FixedPoint, nullable=True)
    fee = Column(FixedPoint, nullable=True)
    liquidator = Column(String(42), nullable=True)
    liquidator_reward = Column(FixedPoint, nullable=True)

    def __repr__(self):
        return f"<TradeRow(id={self.id}, type='{self.event_type}', position={self.position_id})>"


class PositionRow(Base):
    __tablename__ = "positions"
    __table_args__ = (UniqueConstraint("engine", "position_id", name="uq_positions_engine_position"),)

    id = Column(String, primary_key=True)  # "{engine}-{positionId}"
    position_id = Column(FixedPoint, nullable=False)
    engine = Column(String(42), nullable=False, index=True)
    user = Column(String(42), nullable=False, index=True)
    is_long = Column(Boolean, nullable=False)
    base_size = Column(FixedPoint, nullable=False)
    entry_price = Column(FixedPoint, nullable=False)
    entry_notional = Column(FixedPoint, nullable=False)
    margin = Column(FixedPoint, nullable=False)
    leverage = Column(FixedPoint, nullable=False)
    carry_snapshot = Column(FixedPoint, nullable=False)
    open_block = Column(BigInteger, nullable=False)
    status = Column(Enum(PositionStatus, name="positionstatus"), nullable=False, default=PositionStatus.OPEN, index=True)
    realized_pnl = Column(FixedPoint, nullable=False)
    close_price = Column(FixedPoint, nullable=True)
    closed_block = Column(BigInteger, nullable=True)


class UserHoldingRow(Base):
    __tablename__ = "user_holdings"
    id = Column(String, primary_key=True)  # "{user}-{engine}"
    user = Column(String(42), nullable=False, index=True)
    engine = Column(String(42), nullable=False, index=True)
    open_position_count = Column(Integer, nullable=False, default=0)
    total_trades = Column(Integer, nullable=False, default=0)
    total_volume = Column(FixedPoint, nullable=False)
    realized_pnl = Column(FixedPoint, nullable=False)
    last_trade_at = Column(DateTime(timezone=True), nullable=True)


class ProgressCursorRow(Base):
    __tablename__ = "progress_cursors"
    stream = Column(String, primary_key=True)
    block_number = Column(BigInteger, nullable=False, default=0)
