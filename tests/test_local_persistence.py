import json

from conftest import ENGINE, USER
from perpindexer.application.services.processing_service import EventProcessor
from perpindexer.infrastructure.local import LocalStatePersistence, LocalStateStore
from perpindexer.domain.value_objects import WAD


def _populated_store(ev) -> LocalStateStore:
    store = LocalStateStore()
    processor = EventProcessor(store)
    processor.process(ev.market("0"))
    processor.process(ev.opened(1, block=100, price=3 * 10**40))  # beyond float precision
    processor.process(ev.opened(2, block=101))
    processor.process(ev.closed(1, block=102, pnl=-7 * WAD))
    with store.session() as s:
        s.set_cursor("default", 102)
    return store


def test_save_and_restore_preserves_state(tmp_path, ev):
    store = _populated_store(ev)
    persistence = LocalStatePersistence(str(tmp_path / "state"))
    persistence.save(store)
    assert store.dirty is False

    restored = LocalStateStore()
    state = persistence.restore_into(restored)

    assert state.cursors == {"default": 102}
    assert restored.snapshot() == store.snapshot()


def test_file_layout_uses_decimal_strings(tmp_path, ev):
    persistence = LocalStatePersistence(str(tmp_path))
    persistence.save(_populated_store(ev))

    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["cursor.json", "holdings.json", "market_history.json", "markets.json",
                     "positions.json", "trades.json"]

    trades = json.loads((tmp_path / "trades.json").read_text())
    assert trades["version"] == 1
    newest, oldest = trades["state"]["trades"][0], trades["state"]["trades"][-1]
    assert newest["block_number"] == 102
    assert oldest["price"] == str(3 * 10**40)
    assert newest["pnl"] == str(-7 * WAD)

    history = json.loads((tmp_path / "market_history.json").read_text())["state"]["history"]
    assert [p["block_number"] for p in history] == [100, 101, 102]

    holdings = json.loads((tmp_path / "holdings.json").read_text())["state"]["holdings"]
    assert holdings[0]["id"] == f"{USER}-{ENGINE}"
    assert holdings[0]["open_position_count"] == 1


def test_missing_directory_loads_empty(tmp_path):
    state = LocalStatePersistence(str(tmp_path / "nothing-here")).load()
    assert state.trades == {} and state.positions == {} and state.cursors == {}


def test_corrupt_file_is_treated_as_empty(tmp_path, ev):
    persistence = LocalStatePersistence(str(tmp_path))
    persistence.save(_populated_store(ev))
    (tmp_path / "trades.json").write_text("{not json")

    state = persistence.load()
    assert state.trades == {}
    assert len(state.positions) == 2


def test_float_values_are_rejected_on_load(tmp_path, ev):
    persistence = LocalStatePersistence(str(tmp_path))
    persistence.save(_populated_store(ev))
    payload = json.loads((tmp_path / "positions.json").read_text())
    payload["state"]["positions"][0]["base_size"] = 1.0
    (tmp_path / "positions.json").write_text(json.dumps(payload))

    state = persistence.load()
    assert len(state.positions) == 1


def test_no_temp_files_left_behind(tmp_path, ev):
    persistence = LocalStatePersistence(str(tmp_path))
    store = _populated_store(ev)
    persistence.save(store)
    persistence.save(store)
    assert not [p for p in tmp_path.iterdir() if p.name.startswith(".")]
