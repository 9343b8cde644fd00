import pytest

from conftest import ENGINE, OTHER_ENGINE, OTHER_USER, USER, FakeEventSource
from perpindexer.application.services.position_service import (DirectPositionReconstructor,
                                                                LogReplayReconstructor,
                                                                replay_open_positions)
from perpindexer.application.services.processing_service import EventProcessor
from perpindexer.domain.entities import PositionStatus
from perpindexer.domain.events import PositionOpened


def test_replay_open_positions_excludes_closed(ev):
    opens = [ev.opened(1, block=5), ev.opened(2, block=6), ev.opened(3, block=7)]
    closures = [ev.closed(1, block=8), ev.liquidated(3, block=9)]
    result = replay_open_positions(opens, closures)
    assert [p.position_id for p in result] == [2]
    assert result[0].status == PositionStatus.OPEN


def test_replay_keys_on_engine_and_id(ev):
    opens = [ev.opened(1, engine=ENGINE), ev.opened(1, engine=OTHER_ENGINE)]
    result = replay_open_positions(opens, [ev.closed(1, engine=ENGINE)])
    assert [(p.engine, p.position_id) for p in result] == [(OTHER_ENGINE, 1)]


def test_direct_reconstructor_reads_store(local_store, ev):
    processor = EventProcessor(local_store)
    processor.process(ev.opened(1, block=1))
    processor.process(ev.opened(2, block=2, user=OTHER_USER))
    processor.process(ev.closed(1, block=3))

    reconstructor = DirectPositionReconstructor(local_store)
    assert [p.position_id for p in reconstructor.open_positions()] == [2]
    assert reconstructor.user_positions(USER) == []
    assert [p.position_id for p in reconstructor.user_positions(OTHER_USER)] == [2]


@pytest.mark.asyncio
async def test_windowed_rebuild(local_store, ev):
    source = FakeEventSource(head=20_000, logs=[
        ev.opened_payload(1, block=5_000),               # before the window, never closed: invisible
        ev.opened_payload(2, block=15_000),              # open at head
        ev.opened_payload(3, block=12_000),
        ev.closed_payload(3, block=16_000),
        ev.opened_payload(4, block=12_500),
        ev.liquidated_payload(4, block=17_000),
        ev.opened_payload(5, block=18_000, engine=OTHER_ENGINE),
    ])
    reconstructor = LogReplayReconstructor(source, local_store, window_blocks=10_000)

    rebuilt = await reconstructor.rebuild(ENGINE)

    assert [p.position_id for p in rebuilt] == [2]
    assert [p.position_id for p in reconstructor.open_positions(ENGINE)] == [2]
    assert source.get_logs_calls[0][1:3] == (10_000, 20_000)


@pytest.mark.asyncio
async def test_rebuild_keeps_positions_already_in_store(local_store, ev):
    processor = EventProcessor(local_store)
    processor.process(ev.opened(90, block=1))                        # older than any window
    processor.process(ev.opened(2, block=40))
    processor.process(ev.closed(2, block=45))                        # closed locally, open in the window
    processor.process(ev.opened(91, block=1, engine=OTHER_ENGINE))

    source = FakeEventSource(head=100, logs=[ev.opened_payload(2, block=40), ev.opened_payload(3, block=50)])
    seeded = await LogReplayReconstructor(source, local_store, window_blocks=10_000).rebuild(ENGINE)

    assert [p.position_id for p in seeded] == [3]
    with local_store.session() as s:
        statuses = {p.position_id: p.status for p in s.list_positions(engine=ENGINE)}
        assert statuses == {90: PositionStatus.OPEN, 2: PositionStatus.CLOSED, 3: PositionStatus.OPEN}
        assert [p.position_id for p in s.list_positions(engine=OTHER_ENGINE)] == [91]


@pytest.mark.asyncio
async def test_rebuild_near_genesis_clamps_window(sql_store, ev):
    source = FakeEventSource(head=30, logs=[ev.opened_payload(1, block=3)])
    rebuilt = await LogReplayReconstructor(source, sql_store, window_blocks=10_000).rebuild(ENGINE)
    assert source.get_logs_calls[0][1] == 0
    assert rebuilt[0].user == USER
    assert [p.position_id for p in DirectPositionReconstructor(sql_store).open_positions(ENGINE)] == [1]


def test_malformed_logs_are_skipped(ev):
    bad = ev.opened_payload(1)
    bad["args"]["baseSize"] = "nope"
    events = LogReplayReconstructor._parse_all([bad, ev.opened_payload(2)])
    assert len(events) == 1
    assert isinstance(events[0], PositionOpened)
