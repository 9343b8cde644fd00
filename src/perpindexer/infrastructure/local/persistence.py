# src/perpindexer/infrastructure/local/persistence.py
"""
Persistence adapter for the client mirror.

One JSON file per store inside a state directory::

    positions.json       {"version": 1, "state": {"positions": [...]}}
    trades.json          {"version": 1, "state": {"trades": [...]}}       newest first
    market_history.json  {"version": 1, "state": {"history": [...]}}      oldest first
    holdings.json        {"version": 1, "state": {"holdings": [...]}}
    markets.json         {"version": 1, "state": {"markets": [...]}}
    cursor.json          {"version": 1, "state": {"cursors": {"default": 123}}}

Fixed-point values are decimal strings (see infrastructure.records). Files
are replaced atomically so a crash mid-save keeps the previous copy.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List

from perpindexer.domain.errors import PrimaryStoreFailure
from perpindexer.infrastructure import records
from .state_store import LocalState, LocalStateStore

log = logging.getLogger(__name__)

FORMAT_VERSION = 1

POSITIONS_FILE = "positions.json"
TRADES_FILE = "trades.json"
MARKET_HISTORY_FILE = "market_history.json"
HOLDINGS_FILE = "holdings.json"
MARKETS_FILE = "markets.json"
CURSOR_FILE = "cursor.json"


class LocalStatePersistence:
    def __init__(self, directory: str):
        self.directory = Path(directory)

    # --- save ---

    def save(self, store: LocalStateStore) -> None:
        """Write every store file. Raises PrimaryStoreFailure on I/O errors."""
        state = store.snapshot()
        trades = sorted(state.trades.values(), key=lambda t: (t.block_number, t.log_index), reverse=True)
        history = sorted(state.price_points.values(), key=lambda p: (p.engine, p.block_number, p.log_index))
        files = {
            POSITIONS_FILE: {"positions": [records.position_to_record(p) for p in state.positions.values()]},
            TRADES_FILE: {"trades": [records.trade_to_record(t) for t in trades]},
            MARKET_HISTORY_FILE: {"history": [records.price_point_to_record(p) for p in history]},
            HOLDINGS_FILE: {"holdings": [records.holding_to_record(h) for h in state.holdings.values()]},
            MARKETS_FILE: {"markets": [records.market_to_record(m) for m in state.markets.values()]},
            CURSOR_FILE: {"cursors": dict(state.cursors)},
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for name, payload in files.items():
                self._write_atomic(name, {"version": FORMAT_VERSION, "state": payload})
        except OSError as e:
            raise PrimaryStoreFailure(f"Failed to persist local state to {self.directory}: {e}") from e
        store.dirty = False
        log.debug(f"Local state saved to {self.directory} ({len(trades)} trades, {len(state.positions)} positions).")

    def _write_atomic(self, name: str, payload: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, separators=(",", ":"))
            os.replace(tmp_path, self.directory / name)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # --- load ---

    def load(self) -> LocalState:
        """
        Read every store file that exists. A missing file is an empty store;
        an unreadable one is logged and treated as empty, since the backfill
        rebuilds it.
        """
        state = LocalState()
        for p in self._read_list(POSITIONS_FILE, "positions", records.position_from_record):
            state.positions[p.key] = p
        for t in self._read_list(TRADES_FILE, "trades", records.trade_from_record):
            state.trades[t.id] = t
        for p in self._read_list(MARKET_HISTORY_FILE, "history", records.price_point_from_record):
            state.price_points[p.key] = p
        for h in self._read_list(HOLDINGS_FILE, "holdings", records.holding_from_record):
            state.holdings[h.key] = h
        for m in self._read_list(MARKETS_FILE, "markets", records.market_from_record):
            state.markets[m.market_index] = m
        cursors = self._read_state(CURSOR_FILE).get("cursors", {})
        for stream, block in cursors.items():
            if isinstance(block, int) and not isinstance(block, bool):
                state.cursors[stream] = block
            else:
                log.error(f"Ignoring invalid cursor value for stream '{stream}': {block!r}")
        return state

    def restore_into(self, store: LocalStateStore) -> LocalState:
        state = self.load()
        store.restore(state)
        log.info(f"Restored local state: {len(state.trades)} trades, {len(state.positions)} positions, "
                 f"cursors={state.cursors}")
        return state

    def _read_state(self, name: str) -> Dict[str, Any]:
        path = self.directory / name
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
            return payload.get("state") or {}
        except (OSError, ValueError, AttributeError) as e:
            log.error(f"Unreadable state file {path}: {e}")
            return {}

    def _read_list(self, name: str, key: str, decode: Callable[[Dict[str, Any]], Any]) -> List[Any]:
        items = []
        for raw in self._read_state(name).get(key, []) or []:
            try:
                items.append(decode(raw))
            except (KeyError, TypeError, ValueError) as e:
                log.error(f"Dropping undecodable entry in {name}: {e}")
        return items
