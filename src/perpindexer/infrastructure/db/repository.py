# File: src/perpindexer/infrastructure/db/repository.py
"""
SQL implementation of the primary derived-state store.

All writes are upserts (`Session.merge` by primary key), so re-applying an
identical row leaves the table unchanged. Rows are mapped to and from domain
entities here; nothing outside this module sees ORM objects.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from perpindexer.domain.entities import (Market, Position, PositionStatus,
                                          PricePoint, Trade, UserHolding)
from .models import (Base, MarketRow, PositionRow, PricePointRow,
                     ProgressCursorRow, TradeRow, UserHoldingRow)
from .uow import session_scope

logger = logging.getLogger(__name__)


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back.
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def position_row_id(engine: str, position_id: int) -> str:
    return f"{engine}-{position_id}"


def holding_row_id(user: str, engine: str) -> str:
    return f"{user}-{engine}"


def price_point_row_id(engine: str, block_number: int, log_index: int) -> str:
    return f"{engine}-{block_number}-{log_index}"


# ==========================================================
# ROW <-> ENTITY MAPPING
# ==========================================================

def _market_to_entity(row: MarketRow) -> Market:
    return Market(
        market_index=row.id,
        engine=row.engine,
        market=row.market,
        collateral_token=row.collateral_token,
        created_at=_utc(row.created_at),
        created_block=row.created_block,
    )


def _trade_to_entity(row: TradeRow) -> Trade:
    return Trade(
        id=row.id,
        engine=row.engine,
        user=row.user,
        position_id=row.position_id,
        event_type=row.event_type,
        price=row.price,
        base_size=row.base_size,
        margin=row.margin,
        notional=row.notional,
        pnl=row.pnl,
        is_long=row.is_long,
        timestamp=_utc(row.timestamp),
        block_number=row.block_number,
        log_index=row.log_index,
        tx_hash=row.tx_hash,
        leverage=row.leverage,
        fee=row.fee,
        liquidator=row.liquidator,
        liquidator_reward=row.liquidator_reward,
    )


def _position_to_entity(row: PositionRow) -> Position:
    return Position(
        position_id=row.position_id,
        engine=row.engine,
        user=row.user,
        is_long=row.is_long,
        base_size=row.base_size,
        entry_price=row.entry_price,
        entry_notional=row.entry_notional,
        margin=row.margin,
        leverage=row.leverage,
        carry_snapshot=row.carry_snapshot,
        open_block=row.open_block,
        status=PositionStatus(row.status),
        realized_pnl=row.realized_pnl,
        close_price=row.close_price,
        closed_block=row.closed_block,
    )


def _holding_to_entity(row: UserHoldingRow) -> UserHolding:
    return UserHolding(
        user=row.user,
        engine=row.engine,
        open_position_count=row.open_position_count,
        total_trades=row.total_trades,
        total_volume=row.total_volume,
        realized_pnl=row.realized_pnl,
        last_trade_at=_utc(row.last_trade_at),
    )


def _price_point_to_entity(row: PricePointRow) -> PricePoint:
    return PricePoint(
        engine=row.engine,
        block_number=row.block_number,
        log_index=row.log_index,
        price=row.price,
        timestamp=_utc(row.timestamp),
    )


# ==========================================================
# SESSION (UNIT OF WORK)
# ==========================================================

class SqlStoreSession:
    """StoreSession over one SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    # --- point reads ---

    def has_trade(self, trade_id: str) -> bool:
        return self.session.get(TradeRow, trade_id) is not None

    def get_market(self, market_index: str) -> Optional[Market]:
        row = self.session.get(MarketRow, market_index)
        return _market_to_entity(row) if row else None

    def get_position(self, engine: str, position_id: int) -> Optional[Position]:
        row = self.session.get(PositionRow, position_row_id(engine, position_id))
        return _position_to_entity(row) if row else None

    def get_holding(self, user: str, engine: str) -> Optional[UserHolding]:
        row = self.session.get(UserHoldingRow, holding_row_id(user, engine))
        return _holding_to_entity(row) if row else None

    # --- upserts ---

    def put_market(self, market: Market) -> None:
        self.session.merge(MarketRow(
            id=market.market_index,
            engine=market.engine,
            market=market.market,
            collateral_token=market.collateral_token,
            created_at=market.created_at,
            created_block=market.created_block,
        ))

    def put_trade(self, trade: Trade) -> None:
        self.session.merge(TradeRow(
            id=trade.id,
            engine=trade.engine,
            user=trade.user,
            position_id=trade.position_id,
            event_type=trade.event_type,
            price=trade.price,
            base_size=trade.base_size,
            margin=trade.margin,
            notional=trade.notional,
            pnl=trade.pnl,
            is_long=trade.is_long,
            timestamp=trade.timestamp,
            block_number=trade.block_number,
            log_index=trade.log_index,
            tx_hash=trade.tx_hash,
            leverage=trade.leverage,
            fee=trade.fee,
            liquidator=trade.liquidator,
            liquidator_reward=trade.liquidator_reward,
        ))

    def put_price_point(self, point: PricePoint) -> None:
        self.session.merge(PricePointRow(
            id=price_point_row_id(point.engine, point.block_number, point.log_index),
            engine=point.engine,
            block_number=point.block_number,
            log_index=point.log_index,
            price=point.price,
            timestamp=point.timestamp,
        ))

    def put_position(self, position: Position) -> None:
        self.session.merge(PositionRow(
            id=position_row_id(position.engine, position.position_id),
            position_id=position.position_id,
            engine=position.engine,
            user=position.user,
            is_long=position.is_long,
            base_size=position.base_size,
            entry_price=position.entry_price,
            entry_notional=position.entry_notional,
            margin=position.margin,
            leverage=position.leverage,
            carry_snapshot=position.carry_snapshot,
            open_block=position.open_block,
            status=position.status,
            realized_pnl=position.realized_pnl,
            close_price=position.close_price,
            closed_block=position.closed_block,
        ))

    def put_holding(self, holding: UserHolding) -> None:
        self.session.merge(UserHoldingRow(
            id=holding_row_id(holding.user, holding.engine),
            user=holding.user,
            engine=holding.engine,
            open_position_count=holding.open_position_count,
            total_trades=holding.total_trades,
            total_volume=holding.total_volume,
            realized_pnl=holding.realized_pnl,
            last_trade_at=holding.last_trade_at,
        ))

    # --- queries ---

    def list_positions(self, user: Optional[str] = None, engine: Optional[str] = None,
                       status: Optional[PositionStatus] = None) -> List[Position]:
        query = self.session.query(PositionRow)
        if user is not None:
            query = query.filter(PositionRow.user == user)
        if engine is not None:
            query = query.filter(PositionRow.engine == engine)
        if status is not None:
            query = query.filter(PositionRow.status == status)
        rows = query.order_by(PositionRow.open_block.asc(), PositionRow.id.asc()).all()
        return [_position_to_entity(r) for r in rows]

    def list_trades(self, user: Optional[str] = None, engine: Optional[str] = None,
                    position_id: Optional[int] = None) -> List[Trade]:
        query = self.session.query(TradeRow)
        if user is not None:
            query = query.filter(TradeRow.user == user)
        if engine is not None:
            query = query.filter(TradeRow.engine == engine)
        if position_id is not None:
            query = query.filter(TradeRow.position_id == position_id)
        # newest first, like the client trade log
        rows = query.order_by(TradeRow.block_number.desc(), TradeRow.log_index.desc()).all()
        return [_trade_to_entity(r) for r in rows]

    def list_markets(self) -> List[Market]:
        rows = self.session.query(MarketRow).order_by(MarketRow.created_block.asc()).all()
        return [_market_to_entity(r) for r in rows]

    def list_price_points(self, engine: str) -> List[PricePoint]:
        rows = (
            self.session.query(PricePointRow)
            .filter(PricePointRow.engine == engine)
            .order_by(PricePointRow.block_number.asc(), PricePointRow.log_index.asc())
            .all()
        )
        return [_price_point_to_entity(r) for r in rows]

    # --- progress cursor ---

    def get_cursor(self, stream: str) -> int:
        row = self.session.get(ProgressCursorRow, stream)
        return row.block_number if row else 0

    def set_cursor(self, stream: str, block_number: int) -> None:
        self.session.merge(ProgressCursorRow(stream=stream, block_number=block_number))


# ==========================================================
# STORE
# ==========================================================

class SqlDerivedStore:
    """Durable primary store for the indexer."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Generator[SqlStoreSession, None, None]:
        with session_scope(self.session_factory) as s:
            yield SqlStoreSession(s)

    def clear(self) -> None:
        """Drop every derived row. Progress cursors are kept."""
        with session_scope(self.session_factory) as s:
            for table in reversed(Base.metadata.sorted_tables):
                if table.name != ProgressCursorRow.__tablename__:
                    s.execute(table.delete())
        logger.warning("Primary store cleared.")
