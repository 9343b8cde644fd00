# src/perpindexer/application/services/__init__.py

from .upsert_service import UpsertService, EntityWrites, PositionTransition
from .holding_service import HoldingService
from .processing_service import EventProcessor, ProcessResult
from .position_service import DirectPositionReconstructor, LogReplayReconstructor, replay_open_positions
from .dual_write_service import DualWriteConfig, DualWriteCoordinator
from .continuity_service import StreamContinuityMonitor, StreamDiscontinuity
from .query_service import QueryService
from .indexer_service import IndexerService, IngestOutcome
from .mirror_service import ClientMirror

__all__ = [
    "UpsertService",
    "EntityWrites",
    "PositionTransition",
    "HoldingService",
    "EventProcessor",
    "ProcessResult",
    "DirectPositionReconstructor",
    "LogReplayReconstructor",
    "replay_open_positions",
    "DualWriteConfig",
    "DualWriteCoordinator",
    "StreamContinuityMonitor",
    "StreamDiscontinuity",
    "QueryService",
    "IndexerService",
    "IngestOutcome",
    "ClientMirror",
]
