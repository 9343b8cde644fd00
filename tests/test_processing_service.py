# tests/test_processing_service.py
"""
Event processor properties, run against both primary stores:
idempotency, aggregate conservation, non-negativity, volume monotonicity
and atomicity of the per-event transaction.
"""

import pytest

from conftest import ENGINE, OTHER_ENGINE, OTHER_USER, USER, block_hash
from perpindexer.application.services.holding_service import HoldingService
from perpindexer.application.services.processing_service import EventProcessor
from perpindexer.application.services.query_service import QueryService
from perpindexer.domain.entities import PositionStatus, TradeType
from perpindexer.domain.errors import MalformedEvent, PrimaryStoreFailure
from perpindexer.domain.value_objects import WAD, mul_wad


@pytest.fixture
def processor(store) -> EventProcessor:
    return EventProcessor(store)


@pytest.fixture
def queries(store) -> QueryService:
    return QueryService(store)


def _snapshot(queries: QueryService):
    return (
        queries.get_trades_by_user(USER),
        queries.get_user_positions(USER),
        queries.get_holding(USER, ENGINE),
        queries.get_price_history(ENGINE),
    )


def test_open_then_close_same_position(processor, queries, ev):
    opened = processor.process(ev.opened(7, block=100, price=2000 * WAD, size=2 * WAD))
    assert opened.applied
    closed = processor.process(ev.closed(7, block=150, price=2100 * WAD, pnl=200 * WAD))
    assert closed.applied

    holding = queries.get_holding(USER, ENGINE)
    assert holding.open_position_count == 0
    assert holding.total_trades == 2
    assert holding.total_volume == 4000 * WAD
    assert holding.realized_pnl == 200 * WAD

    [position] = queries.get_user_positions(USER)
    assert position.status == PositionStatus.CLOSED
    assert position.realized_pnl == 200 * WAD
    assert position.close_price == 2100 * WAD
    assert position.closed_block == 150

    trades = queries.get_trades_by_user(USER)
    assert [t.event_type for t in trades] == [TradeType.CLOSE, TradeType.OPEN]  # newest first
    assert [p.block_number for p in queries.get_price_history(ENGINE)] == [100, 150]


def test_open_close_scenario_for_position_7(processor, queries, ev):
    processor.process(ev.opened(7, block=100, price=2000 * WAD, size=1 * WAD, margin=200 * 10**6,
                                leverage=10 * WAD))
    processor.process(ev.closed(7, block=105, price=2100 * WAD, pnl=100 * WAD))

    holding = queries.get_holding(USER, ENGINE)
    assert holding.open_position_count == 0
    assert holding.total_trades == 2
    assert holding.realized_pnl == 100 * WAD
    assert holding.total_volume == 2000 * WAD

    trades = queries.get_trades_by_position(ENGINE, 7)
    assert len(trades) == 2
    assert {t.id for t in trades} == {f"{block_hash(100)}-0", f"{block_hash(105)}-0"}
    open_trade = next(t for t in trades if t.event_type == TradeType.OPEN)
    assert (open_trade.margin, open_trade.leverage) == (200 * 10**6, 10 * WAD)

    [position] = queries.get_user_positions(USER)
    assert position.status == PositionStatus.CLOSED
    assert (position.margin, position.leverage) == (200 * 10**6, 10 * WAD)


def test_replayed_events_are_noops(processor, queries, ev):
    events = [ev.opened(1, block=10), ev.opened(2, block=11), ev.closed(1, block=12), ev.liquidated(2, block=13)]
    for e in events:
        processor.process(e)
    before = _snapshot(queries)

    results = [processor.process(e) for e in events]
    assert all(r.duplicate for r in results)
    assert _snapshot(queries) == before


def test_duplicate_inside_out_of_order_delivery(processor, queries, ev):
    processor.process(ev.opened(1, block=20))
    processor.process(ev.opened(2, block=10))
    processor.process(ev.opened(1, block=20))  # redelivered
    assert queries.get_holding(USER, ENGINE).open_position_count == 2
    assert len(queries.get_trades_by_user(USER)) == 2


def test_conservation_over_mixed_stream(processor, queries, ev):
    sizes = {i: (i + 1) * WAD for i in range(6)}
    for i, size in sizes.items():
        processor.process(ev.opened(i, block=100 + i, size=size, price=1000 * WAD))
    processor.process(ev.closed(0, block=200, pnl=10 * WAD))
    processor.process(ev.closed(1, block=201, pnl=-4 * WAD))
    processor.process(ev.liquidated(2, block=202))

    holding = queries.get_holding(USER, ENGINE)
    assert holding.open_position_count == 6 - 3
    assert holding.total_volume == sum(mul_wad(s, 1000 * WAD) for s in sizes.values())
    assert holding.realized_pnl == 6 * WAD
    assert holding.total_trades == 9
    open_ids = sorted(p.position_id for p in queries.get_user_positions(USER, status=PositionStatus.OPEN))
    assert open_ids == [3, 4, 5]


def test_volume_never_decreases(processor, queries, ev):
    seen = []
    for e in [ev.opened(1, block=1), ev.closed(1, block=2, pnl=-99 * WAD), ev.opened(2, block=3),
              ev.liquidated(2, block=4)]:
        processor.process(e)
        seen.append(queries.get_holding(USER, ENGINE).total_volume)
    assert seen == sorted(seen)


def test_close_without_open_records_trade_only(processor, queries, ev):
    result = processor.process(ev.closed(9, block=50))
    assert result.applied
    assert result.holding is None
    assert result.closed_position is None
    assert len(queries.get_trades_by_user(USER)) == 1
    assert queries.get_holding(USER, ENGINE).total_trades == 0
    assert queries.get_user_positions(USER) == []


def test_transition_happens_once(processor, queries, ev):
    processor.process(ev.opened(1, block=1))
    processor.process(ev.liquidated(1, block=2))
    processor.process(ev.closed(1, block=3, pnl=5 * WAD))  # distinct event, position already final

    [position] = queries.get_user_positions(USER)
    assert position.status == PositionStatus.LIQUIDATED
    assert position.realized_pnl == 0


def test_holdings_are_per_user_and_engine(processor, queries, ev):
    processor.process(ev.opened(1, block=1))
    processor.process(ev.opened(2, block=2, user=OTHER_USER))
    processor.process(ev.opened(3, block=3, engine=OTHER_ENGINE))
    assert queries.get_holding(USER, ENGINE).open_position_count == 1
    assert queries.get_holding(OTHER_USER, ENGINE).open_position_count == 1
    assert queries.get_holding(USER, OTHER_ENGINE).open_position_count == 1
    assert len(queries.get_positions_by_market(ENGINE)) == 2


def test_market_created_once(processor, queries, ev):
    assert processor.process(ev.market("1")).applied
    assert processor.process(ev.market("1", block=99)).duplicate
    [market] = queries.list_markets()
    assert market.created_block == 10


def test_malformed_event_writes_nothing(processor, queries, ev):
    import dataclasses
    with pytest.raises(MalformedEvent):
        processor.process(dataclasses.replace(ev.opened(1), base_size=None))
    assert queries.get_trades_by_user(USER) == []


def test_failed_transaction_leaves_no_partial_state(store, queries, ev):
    class Exploding(HoldingService):
        def update_holding(self, session, user, engine, delta):
            raise RuntimeError("disk full")

    processor = EventProcessor(store, holdings=Exploding())
    with pytest.raises(PrimaryStoreFailure) as exc:
        processor.process(ev.opened(1, block=5))
    assert exc.value.identity == f"{block_hash(5)}-0"
    assert queries.get_trades_by_user(USER) == []
    assert queries.get_user_positions(USER) == []
    assert queries.get_price_history(ENGINE) == []

    # the same event succeeds once the store recovers
    assert EventProcessor(store).process(ev.opened(1, block=5)).applied
