# src/perpindexer/interfaces/api/routers/queries.py
"""Read endpoints over the derived state. Addresses are matched case-insensitively."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from perpindexer.application.services.position_service import DirectPositionReconstructor
from perpindexer.application.services.query_service import QueryService
from perpindexer.domain.entities import PositionStatus
from perpindexer.domain.value_objects import normalize_address
from perpindexer.interfaces.api.deps import get_position_reconstructor, get_query_service
from perpindexer.interfaces.api.schemas import (CursorOut, HoldingOut, MarketOut, PositionOut,
                                                PricePointOut, TradeOut)

router = APIRouter(tags=["Derived State"])


def _address(value: str) -> str:
    try:
        return normalize_address(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _status(value: Optional[str]) -> Optional[PositionStatus]:
    if value is None:
        return None
    try:
        return PositionStatus[value.upper()]
    except KeyError:
        raise HTTPException(status_code=422, detail=f"Unknown position status '{value}'")


@router.get("/users/{user}/positions", response_model=List[PositionOut])
def user_positions(user: str, status: Optional[str] = None, svc: QueryService = Depends(get_query_service)):
    return svc.get_user_positions(_address(user), status=_status(status))


@router.get("/markets/{engine}/positions", response_model=List[PositionOut])
def market_positions(engine: str, status: Optional[str] = None, svc: QueryService = Depends(get_query_service)):
    return svc.get_positions_by_market(_address(engine), status=_status(status))


@router.get("/users/{user}/trades", response_model=List[TradeOut])
def user_trades(user: str, svc: QueryService = Depends(get_query_service)):
    return svc.get_trades_by_user(_address(user))


@router.get("/markets/{engine}/trades", response_model=List[TradeOut])
def market_trades(engine: str, position_id: Optional[int] = None,
                  svc: QueryService = Depends(get_query_service)):
    engine = _address(engine)
    if position_id is not None:
        return svc.get_trades_by_position(engine, position_id)
    return svc.get_trades_by_market(engine)


@router.get("/users/{user}/holdings/{engine}", response_model=HoldingOut)
def user_holding(user: str, engine: str, svc: QueryService = Depends(get_query_service)):
    return svc.get_holding(_address(user), _address(engine))


@router.get("/positions/open", response_model=List[PositionOut])
def open_positions(engine: Optional[str] = None,
                   positions: DirectPositionReconstructor = Depends(get_position_reconstructor)):
    return positions.open_positions(engine=_address(engine) if engine is not None else None)


@router.get("/markets", response_model=List[MarketOut])
def markets(svc: QueryService = Depends(get_query_service)):
    return svc.list_markets()


@router.get("/markets/{engine}/prices", response_model=List[PricePointOut])
def price_history(engine: str, svc: QueryService = Depends(get_query_service)):
    return svc.get_price_history(_address(engine))


@router.get("/cursor", response_model=CursorOut)
def cursor(svc: QueryService = Depends(get_query_service)):
    return CursorOut(stream=svc.stream, block_number=svc.get_cursor())
