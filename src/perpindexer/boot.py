# src/perpindexer/boot.py
"""
Service wiring for both deployment sites.

- build_indexer_services: SQL primary store (+ optional secondary mirror),
  used by the FastAPI app.
- build_client_services: local primary store persisted to LOCAL_STATE_DIR,
  fed by an EventSource.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from perpindexer.config import settings
from perpindexer.application.services import (
    ClientMirror,
    DirectPositionReconstructor,
    DualWriteConfig,
    DualWriteCoordinator,
    EventProcessor,
    IndexerService,
    LogReplayReconstructor,
    QueryService,
    StreamContinuityMonitor,
)
from perpindexer.domain.ports import EventSource, SecondaryStore
from perpindexer.infrastructure.db.repository import SqlDerivedStore
from perpindexer.infrastructure.local import LocalStatePersistence, LocalStateStore
from perpindexer.infrastructure.secondary import RestSecondaryStore

log = logging.getLogger(__name__)


def build_secondary_store() -> Optional[SecondaryStore]:
    if not settings.SECONDARY_STORE_URL:
        log.info("SECONDARY_STORE_URL not set; secondary mirroring disabled.")
        return None
    if not settings.SECONDARY_STORE_API_KEY:
        log.warning("SECONDARY_STORE_URL is set without SECONDARY_STORE_API_KEY; secondary mirroring disabled.")
        return None
    return RestSecondaryStore(
        settings.SECONDARY_STORE_URL,
        settings.SECONDARY_STORE_API_KEY,
        timeout=settings.SECONDARY_STORE_TIMEOUT,
    )


def _dual_write_config(secondary: Optional[SecondaryStore]) -> DualWriteConfig:
    return DualWriteConfig(
        secondary_enabled=secondary is not None,
        max_inflight=settings.SECONDARY_MAX_INFLIGHT,
        timeout_seconds=settings.SECONDARY_STORE_TIMEOUT,
    )


def build_indexer_services(session_factory: Optional[sessionmaker] = None,
                           secondary: Optional[SecondaryStore] = None) -> Dict[str, Any]:
    """Build and wire the indexer's services."""
    log.info("Building indexer services...")
    services: Dict[str, Any] = {}
    try:
        if session_factory is None:
            from perpindexer.infrastructure.db.base import SessionLocal
            session_factory = SessionLocal
        if secondary is None:
            secondary = build_secondary_store()

        store = SqlDerivedStore(session_factory)
        processor = EventProcessor(store)
        coordinator = DualWriteCoordinator(processor, _dual_write_config(secondary), secondary=secondary)
        monitor = StreamContinuityMonitor(tolerance=settings.RESET_TOLERANCE_BLOCKS, stream=settings.STREAM_NAME)
        indexer = IndexerService(coordinator, monitor, store, stream=settings.STREAM_NAME)
        indexer.restore_cursor()

        services["store"] = store
        services["processor"] = processor
        services["coordinator"] = coordinator
        services["monitor"] = monitor
        services["indexer_service"] = indexer
        services["query_service"] = QueryService(store, stream=settings.STREAM_NAME)
        services["reconstructor"] = DirectPositionReconstructor(store)

        log.info("Indexer services built.")
        return services
    except Exception as e:
        log.critical(f"Service building failed: {e}", exc_info=True)
        raise


def build_client_services(source: EventSource, engines: Sequence[str],
                          state_dir: Optional[str] = None,
                          secondary: Optional[SecondaryStore] = None) -> Dict[str, Any]:
    """Build and wire a client mirror over `source`. Call `services['mirror'].start()` to run it."""
    store = LocalStateStore()
    persistence = LocalStatePersistence(state_dir or settings.LOCAL_STATE_DIR)
    processor = EventProcessor(store)
    coordinator = DualWriteCoordinator(processor, _dual_write_config(secondary), secondary=secondary)
    monitor = StreamContinuityMonitor(tolerance=settings.RESET_TOLERANCE_BLOCKS, stream=settings.STREAM_NAME)
    reconstructor = LogReplayReconstructor(source, store, window_blocks=settings.BACKFILL_WINDOW_BLOCKS)
    mirror = ClientMirror(
        source=source,
        store=store,
        persistence=persistence,
        coordinator=coordinator,
        monitor=monitor,
        reconstructor=reconstructor,
        engines=engines,
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        backfill_window=settings.BACKFILL_WINDOW_BLOCKS,
        stream=settings.STREAM_NAME,
    )
    return {
        "store": store,
        "persistence": persistence,
        "processor": processor,
        "coordinator": coordinator,
        "monitor": monitor,
        "reconstructor": reconstructor,
        "mirror": mirror,
        "query_service": QueryService(store, stream=settings.STREAM_NAME),
    }
