# tests/test_dual_write_service.py
import asyncio
import json

import httpx
import pytest

from conftest import ENGINE, USER, block_hash
from perpindexer.application.services.dual_write_service import (DualWriteConfig, DualWriteCoordinator,
                                                                 lock_keys)
from perpindexer.application.services.processing_service import EventProcessor
from perpindexer.application.services.query_service import QueryService
from perpindexer.domain.errors import PrimaryStoreFailure
from perpindexer.infrastructure.secondary import RestSecondaryStore

pytestmark = pytest.mark.asyncio

BASE_URL = "https://secondary.test"


class Recorder:
    """httpx.MockTransport handler that records requests and can fail chosen tables."""

    def __init__(self, fail_tables=()):
        self.requests = []
        self.fail_tables = set(fail_tables)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        if table in self.fail_tables:
            return httpx.Response(500, text="upstream exploded")
        return httpx.Response(201)

    def tables(self, method=None):
        return sorted(r.url.path.rsplit("/", 1)[-1] for r in self.requests if method in (None, r.method))


def _coordinator(store, recorder, **config):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    secondary = RestSecondaryStore(BASE_URL, "anon-key", timeout=1.0, client=client)
    cfg = DualWriteConfig(secondary_enabled=True, **config)
    return DualWriteCoordinator(EventProcessor(store), cfg, secondary=secondary), client


async def test_open_mirrors_every_table(local_store, ev):
    recorder = Recorder()
    coordinator, client = _coordinator(local_store, recorder)

    result = await coordinator.commit(ev.opened(7, block=100))
    await coordinator.drain()

    assert result.applied
    assert recorder.tables("POST") == ["positions", "price_points", "trades", "user_holdings"]
    trade_req = next(r for r in recorder.requests if r.url.path.endswith("/trades"))
    assert trade_req.headers["apikey"] == "anon-key"
    assert trade_req.headers["authorization"] == "Bearer anon-key"
    assert "resolution=merge-duplicates" in trade_req.headers["prefer"]
    body = json.loads(trade_req.content)
    assert body["id"] == f"{block_hash(100)}-0"
    assert isinstance(body["price"], str)  # fixed point travels as a decimal string
    await client.aclose()


async def test_close_updates_position_by_id(local_store, ev):
    recorder = Recorder()
    coordinator, client = _coordinator(local_store, recorder)
    await coordinator.commit(ev.opened(7, block=100))
    await coordinator.commit(ev.closed(7, block=110))
    await coordinator.drain()

    [patch] = [r for r in recorder.requests if r.method == "PATCH"]
    assert patch.url.path == "/rest/v1/positions"
    assert patch.url.params["id"] == f"eq.{ENGINE}-7"
    assert json.loads(patch.content)["status"] == 1
    await client.aclose()


async def test_secondary_failure_never_reaches_caller(local_store, ev):
    recorder = Recorder(fail_tables={"trades"})
    coordinator, client = _coordinator(local_store, recorder)

    result = await coordinator.commit(ev.opened(7, block=100))
    await coordinator.drain()

    assert result.applied
    assert QueryService(local_store).get_holding(USER, ENGINE).open_position_count == 1
    [failure] = list(coordinator.failures)
    assert failure.table == "trades"
    assert failure.identity == f"{block_hash(100)}-0"
    assert "upstream exploded" in failure.detail
    assert "user_holdings" in recorder.tables()
    await client.aclose()


async def test_slow_secondary_times_out(local_store, ev):
    class Slow:
        async def upsert(self, table, row):
            await asyncio.sleep(5)

        async def update(self, table, row, filters):
            await asyncio.sleep(5)

        async def aclose(self):
            pass

    coordinator = DualWriteCoordinator(
        EventProcessor(local_store), DualWriteConfig(secondary_enabled=True, timeout_seconds=0.05), secondary=Slow()
    )
    result = await coordinator.commit(ev.opened(1))
    assert result.applied
    await coordinator.aclose()
    assert {f.table for f in coordinator.failures} == {"trades", "price_points", "positions", "user_holdings"}
    assert all("timed out" in f.detail for f in coordinator.failures)


async def test_duplicates_and_disabled_secondary_schedule_nothing(local_store, ev):
    recorder = Recorder()
    coordinator, client = _coordinator(local_store, recorder)
    await coordinator.commit(ev.opened(1))
    await coordinator.drain()
    count = len(recorder.requests)

    assert (await coordinator.commit(ev.opened(1))).duplicate
    assert coordinator.pending == 0
    await coordinator.drain()
    assert len(recorder.requests) == count

    disabled = DualWriteCoordinator(EventProcessor(local_store), DualWriteConfig(secondary_enabled=False),
                                    secondary=RestSecondaryStore(BASE_URL, "k", client=client))
    await disabled.commit(ev.opened(2, block=101))
    assert disabled.pending == 0
    await client.aclose()


async def test_primary_failure_surfaces(local_store, ev):
    class BrokenStore:
        def session(self):
            raise OSError("read-only file system")

        def clear(self):
            pass

    coordinator = DualWriteCoordinator(EventProcessor(BrokenStore()), DualWriteConfig())
    with pytest.raises(PrimaryStoreFailure):
        await coordinator.commit(ev.opened(1))


async def test_concurrent_commits_keep_aggregates_consistent(store, ev):
    coordinator = DualWriteCoordinator(EventProcessor(store), DualWriteConfig())
    opens = [ev.opened(i, block=100 + i) for i in range(20)]
    closes = [ev.closed(i, block=200 + i, pnl=1) for i in range(0, 20, 2)]

    await asyncio.gather(*(coordinator.commit(e) for e in opens + opens))  # every event delivered twice
    await asyncio.gather(*(coordinator.commit(e) for e in closes))

    holding = QueryService(store).get_holding(USER, ENGINE)
    assert holding.open_position_count == 10
    assert holding.total_trades == 30
    assert holding.realized_pnl == 10
    assert len(coordinator.locks) == 0


async def test_lock_keys(ev):
    assert lock_keys(ev.market("5")) == [("market", "5")]
    assert ("holding", USER, ENGINE) in lock_keys(ev.opened(3))
    assert ("position", ENGINE, 3) in lock_keys(ev.closed(3))
