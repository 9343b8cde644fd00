# tests/conftest.py
"""
Fixtures and test setup for the Pytest suite.
"""

import asyncio
import os

# Set test environment variables BEFORE any application code is imported.
os.environ["DATABASE_URL"] = "sqlite:///./test_perpindexer.db"
os.environ["ENV"] = "test"
os.environ["API_KEY"] = "test_api_key"
os.environ["SECONDARY_STORE_URL"] = ""

from typing import Any, Dict, List, Optional

import pytest

from perpindexer.domain.events import (MarketCreated, PositionClosed, PositionLiquidated,
                                        PositionOpened)
from perpindexer.domain.value_objects import WAD
from perpindexer.infrastructure.db.base import build_engine, build_session_factory
from perpindexer.infrastructure.db.repository import SqlDerivedStore
from perpindexer.infrastructure.db.uow import create_tables
from perpindexer.infrastructure.local import LocalStateStore

ENGINE = "0x" + "e1" * 20
OTHER_ENGINE = "0x" + "e2" * 20
USER = "0x" + "a1" * 20
OTHER_USER = "0x" + "b2" * 20
MARKET = "0x" + "c3" * 20
COLLATERAL = "0x" + "d4" * 20
BASE_TS = 1_700_000_000


def block_hash(block: int) -> str:
    return "0x" + f"{block:064x}"


class EventFactory:
    """Builds typed events and raw payloads with sensible defaults."""

    def opened(self, position_id: int, *, user: str = USER, engine: str = ENGINE, block: int = 100,
               log_index: int = 0, price: int = 2000 * WAD, size: int = WAD, margin: int = 400 * 10**6,
               leverage: int = 5 * WAD, is_long: bool = True, fee: Optional[int] = None) -> PositionOpened:
        return PositionOpened(
            position_id=position_id, engine=engine, user=user, block_hash=block_hash(block),
            block_number=block, log_index=log_index, block_timestamp=BASE_TS + block,
            is_long=is_long, entry_price=price, base_size=size, margin=margin, leverage=leverage, fee=fee,
        )

    def closed(self, position_id: int, *, user: str = USER, engine: str = ENGINE, block: int = 200,
               log_index: int = 0, price: int = 2100 * WAD, pnl: int = 100 * WAD) -> PositionClosed:
        return PositionClosed(
            position_id=position_id, engine=engine, user=user, block_hash=block_hash(block),
            block_number=block, log_index=log_index, block_timestamp=BASE_TS + block,
            avg_close_price=price, total_pnl=pnl,
        )

    def liquidated(self, position_id: int, *, user: str = USER, engine: str = ENGINE, block: int = 300,
                   log_index: int = 0, liquidator: Optional[str] = None,
                   reward: Optional[int] = None) -> PositionLiquidated:
        return PositionLiquidated(
            position_id=position_id, engine=engine, user=user, block_hash=block_hash(block),
            block_number=block, log_index=log_index, block_timestamp=BASE_TS + block,
            liquidator=liquidator, liquidator_reward=reward,
        )

    def market(self, index: str = "0", *, engine: str = ENGINE, block: int = 10) -> MarketCreated:
        return MarketCreated(
            market_index=index, engine=engine, market=MARKET, collateral_token=COLLATERAL,
            block_timestamp=BASE_TS + block, block_number=block, block_hash=block_hash(block), log_index=0,
        )

    # --- raw decoded-log payloads ---

    def payload(self, name: str, args: Dict[str, Any], *, engine: str = ENGINE, block: int = 100,
                log_index: int = 0) -> Dict[str, Any]:
        return {
            "eventName": name,
            "address": engine,
            "blockHash": block_hash(block),
            "blockNumber": block,
            "logIndex": log_index,
            "blockTimestamp": BASE_TS + block,
            "transactionHash": "0x" + f"{block * 1000 + log_index:064x}",
            "args": args,
        }

    def opened_payload(self, position_id: int, *, user: str = USER, engine: str = ENGINE, block: int = 100,
                       log_index: int = 0, price: int = 2000 * WAD, size: int = WAD) -> Dict[str, Any]:
        return self.payload("PositionOpened", {
            "positionId": position_id, "user": user, "isLong": True, "totalToUse": str(400 * 10**6),
            "margin": str(400 * 10**6), "fee": "0", "leverage": str(5 * WAD),
            "baseSize": str(size), "entryPrice": str(price),
        }, engine=engine, block=block, log_index=log_index)

    def closed_payload(self, position_id: int, *, user: str = USER, engine: str = ENGINE, block: int = 200,
                       log_index: int = 0, price: int = 2100 * WAD, pnl: int = 100 * WAD) -> Dict[str, Any]:
        return self.payload("PositionClosed", {
            "positionId": position_id, "user": user, "totalPnl": str(pnl), "avgClosePrice": str(price),
        }, engine=engine, block=block, log_index=log_index)

    def liquidated_payload(self, position_id: int, *, user: str = USER, engine: str = ENGINE, block: int = 300,
                           log_index: int = 0) -> Dict[str, Any]:
        return self.payload("PositionLiquidated", {
            "positionId": position_id, "user": user, "liquidator": OTHER_USER, "liqFee": "1000",
        }, engine=engine, block=block, log_index=log_index)


class FakeEventSource:
    """In-memory EventSource: a fixed head block, a log list and a live queue per engine."""

    def __init__(self, head: int = 0, logs: Optional[List[Dict[str, Any]]] = None):
        self.head = head
        self.logs: List[Dict[str, Any]] = list(logs or [])
        self.queues: Dict[str, asyncio.Queue] = {}
        self.get_logs_calls: List[tuple] = []

    async def block_number(self) -> int:
        return self.head

    async def get_logs(self, engine, from_block, to_block, event_names):
        self.get_logs_calls.append((engine, from_block, to_block, tuple(event_names)))
        return [
            p for p in self.logs
            if p["address"] == engine
            and from_block <= p["blockNumber"] <= to_block
            and p["eventName"] in event_names
        ]

    def queue(self, engine: str) -> asyncio.Queue:
        if engine not in self.queues:
            self.queues[engine] = asyncio.Queue()
        return self.queues[engine]

    async def subscribe(self, engine: str):
        q = self.queue(engine)
        while True:
            yield await q.get()


@pytest.fixture
def ev() -> EventFactory:
    return EventFactory()


@pytest.fixture
def sql_store(tmp_path):
    """A SQL primary store on a fresh SQLite file."""
    engine = build_engine(f"sqlite:///{tmp_path / 'primary.db'}")
    create_tables(engine)
    yield SqlDerivedStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def local_store() -> LocalStateStore:
    return LocalStateStore()


@pytest.fixture(params=["sql", "local"])
def store(request, tmp_path):
    """Both primary store implementations; engine behavior must not depend on the backend."""
    if request.param == "local":
        yield LocalStateStore()
        return
    engine = build_engine(f"sqlite:///{tmp_path / 'primary.db'}")
    create_tables(engine)
    yield SqlDerivedStore(build_session_factory(engine))
    engine.dispose()
