# src/perpindexer/domain/errors.py
"""
Error taxonomy for the aggregation engine.

- MalformedEvent: rejected, never retried, logged with its identity key.
- PrimaryStoreFailure: the event is unprocessed and must be retried by the caller.
- SecondaryStoreFailure: non-fatal, logged and swallowed by the coordinator.

A stream discontinuity is a detected condition, not an error; see
``perpindexer.application.services.continuity_service.StreamDiscontinuity``.
"""
from typing import Optional


class IndexerError(Exception):
    """Base class for all perpindexer errors."""


class MalformedEvent(IndexerError):
    def __init__(self, reason: str, identity: Optional[str] = None):
        self.reason = reason
        self.identity = identity
        suffix = f" (event {identity})" if identity else ""
        super().__init__(f"Malformed event: {reason}{suffix}")


class PrimaryStoreFailure(IndexerError):
    def __init__(self, message: str, identity: Optional[str] = None):
        self.identity = identity
        super().__init__(message)


class SecondaryStoreFailure(IndexerError):
    def __init__(self, table: str, key: str, detail: str, status_code: Optional[int] = None):
        self.table = table
        self.key = key
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Secondary store write failed for {table}[{key}]: {detail}")
