from datetime import datetime, timezone

import pytest

from conftest import ENGINE, USER
from perpindexer.application.services.holding_service import HoldingService
from perpindexer.domain.entities import DeltaKind, HoldingDelta, UserHolding

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 2, tzinfo=timezone.utc)


@pytest.fixture
def holdings() -> HoldingService:
    return HoldingService()


def test_open_creates_holding(store, holdings):
    with store.session() as s:
        h = holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.OPEN, T0, notional=500))
    assert h == UserHolding(USER, ENGINE, open_position_count=1, total_trades=1, total_volume=500,
                            realized_pnl=0, last_trade_at=T0)
    with store.session() as s:
        assert s.get_holding(USER, ENGINE) == h


def test_close_and_liquidate_rules(store, holdings):
    with store.session() as s:
        holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.OPEN, T0, notional=500))
        holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.OPEN, T0, notional=300))
    with store.session() as s:
        h = holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.CLOSE, T1, pnl=-40))
    assert (h.open_position_count, h.total_trades, h.total_volume, h.realized_pnl) == (1, 3, 800, -40)
    assert h.last_trade_at == T1

    with store.session() as s:
        h = holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.LIQUIDATE, T1))
    assert (h.open_position_count, h.total_trades, h.total_volume, h.realized_pnl) == (0, 4, 800, -40)


def test_count_never_goes_negative(store, holdings):
    with store.session() as s:
        holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.OPEN, T0, notional=1))
        holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.CLOSE, T0, pnl=1))
        h = holdings.update_holding(s, USER, ENGINE, HoldingDelta(DeltaKind.CLOSE, T1, pnl=2))
    assert h.open_position_count == 0
    assert h.total_trades == 3
    assert h.realized_pnl == 3


@pytest.mark.parametrize("kind", [DeltaKind.CLOSE, DeltaKind.LIQUIDATE])
def test_closure_without_holding_is_noop(store, holdings, kind):
    with store.session() as s:
        assert holdings.update_holding(s, USER, ENGINE, HoldingDelta(kind, T0, pnl=5)) is None
    with store.session() as s:
        assert s.get_holding(USER, ENGINE) is None
