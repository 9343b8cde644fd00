# src/perpindexer/application/services/mirror_service.py
"""
Client mirror: rebuilds the derived state locally from an event source.

Startup restores the persisted files, checks the head block against the
restored cursor, fills open positions the store does not hold from the
recent log window, backfills trades and price history from the same window,
then follows the live subscription per engine. A polling loop refreshes the
head block every `poll_interval` seconds, feeds it to the continuity monitor
and flushes dirty state to disk.

Only head-block readings feed the continuity monitor; live events may
arrive late or out of order and are left to identity-key idempotency. On a
stream discontinuity the local caches are cleared and the next poll tick
runs a full resync.
"""

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence

from perpindexer.domain.errors import IndexerError, MalformedEvent
from perpindexer.domain.events import POSITION_EVENT_NAMES, parse_event
from perpindexer.domain.ports import EventSource
from perpindexer.infrastructure.local import LocalStatePersistence, LocalStateStore
from perpindexer.infrastructure.monitoring.metrics import EVENTS_MALFORMED
from .continuity_service import StreamContinuityMonitor, StreamDiscontinuity
from .dual_write_service import DualWriteCoordinator
from .position_service import LogReplayReconstructor
from .processing_service import ProcessResult

log = logging.getLogger(__name__)


class ClientMirror:
    def __init__(
        self,
        source: EventSource,
        store: LocalStateStore,
        persistence: LocalStatePersistence,
        coordinator: DualWriteCoordinator,
        monitor: StreamContinuityMonitor,
        reconstructor: LogReplayReconstructor,
        engines: Sequence[str],
        poll_interval: float = 5.0,
        backfill_window: int = 10_000,
        stream: str = "default",
    ):
        self.source = source
        self.store = store
        self.persistence = persistence
        self.coordinator = coordinator
        self.monitor = monitor
        self.reconstructor = reconstructor
        self.engines = list(engines)
        self.poll_interval = poll_interval
        self.backfill_window = backfill_window
        self.stream = stream

        self._tasks: List[asyncio.Task] = []
        self._resync_needed = False
        self.monitor.add_listener(self._on_reset)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._tasks:
            log.warning("ClientMirror already running.")
            return
        state = await asyncio.to_thread(self.persistence.restore_into, self.store)
        self.monitor.cursor = state.cursors.get(self.stream, 0)
        # a chain restart while offline must clear the restored state before the backfill lands
        self.monitor.observe(await self.source.block_number())
        await self.resync()
        for engine in self.engines:
            self._tasks.append(asyncio.create_task(self._live_loop(engine), name=f"mirror-live-{engine}"))
        self._tasks.append(asyncio.create_task(self._poll_loop(), name="mirror-poll"))
        log.info(f"ClientMirror started for {len(self.engines)} engine(s) at block {self.monitor.cursor}.")

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.coordinator.drain()
        await self.persist(force=True)
        log.info("ClientMirror stopped.")

    async def persist(self, force: bool = False) -> bool:
        if not (force or self.store.dirty):
            return False
        self._save_cursor()
        await asyncio.to_thread(self.persistence.save, self.store)
        return True

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    async def resync(self) -> None:
        self._resync_needed = False
        for engine in self.engines:
            await self.reconstructor.rebuild(engine)
            await self.backfill(engine)

    async def backfill(self, engine: str) -> int:
        """Replay the recent log window through the normal commit path. Returns events applied."""
        head = await self.source.block_number()
        from_block = max(0, head - self.backfill_window)
        payloads = await self.source.get_logs(engine, from_block, head, list(POSITION_EVENT_NAMES))
        events = []
        for payload in payloads:
            try:
                events.append(parse_event(payload))
            except MalformedEvent as e:
                EVENTS_MALFORMED.inc()
                log.error(f"Skipping backfill log: {e}")
        applied = 0
        for event in sorted(events, key=lambda e: e.ordering_key):
            try:
                result = await self.coordinator.commit(event)
            except MalformedEvent:
                continue
            applied += int(result.applied)
        self.monitor.observe(head)
        log.info(f"Backfilled {engine}: {applied}/{len(events)} events applied from blocks {from_block}..{head}.")
        return applied

    async def ingest(self, payload: Mapping[str, Any]) -> Optional[ProcessResult]:
        try:
            event = parse_event(payload)
        except MalformedEvent as e:
            EVENTS_MALFORMED.inc()
            log.error(f"Dropping live payload: {e}")
            return None
        try:
            return await self.coordinator.commit(event)
        except MalformedEvent:
            return None

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------
    async def _live_loop(self, engine: str) -> None:
        while True:
            try:
                async for payload in self.source.subscribe(engine):
                    await self.ingest(payload)
                log.warning(f"Subscription for {engine} ended; resubscribing.")
            except asyncio.CancelledError:
                raise
            except IndexerError as e:
                log.error(f"Live loop for {engine} failed: {e}")
            except Exception:
                log.exception(f"Live loop for {engine} crashed; resubscribing.")
            await asyncio.sleep(self.poll_interval)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Poll tick failed.")

    async def poll_once(self) -> None:
        head = await self.source.block_number()
        self.monitor.observe(head)
        if self._resync_needed:
            await self.resync()
        await self.persist()

    def _on_reset(self, discontinuity: StreamDiscontinuity) -> None:
        self.store.clear()
        self._resync_needed = True

    def _save_cursor(self) -> None:
        with self.store.session() as s:
            s.set_cursor(self.stream, self.monitor.cursor)
