# src/perpindexer/interfaces/webhook/events.py
"""
Push ingestion of decoded event payloads.

The sender (a log forwarder or node webhook) posts a JSON list of decoded
logs. Each item is reported as applied, duplicate or malformed. If the
primary store fails the whole request returns 503 and the sender retries;
items already applied come back as duplicates on the retry.
"""

import logging
from typing import Any, List

from fastapi import APIRouter, Body, Depends, HTTPException

from perpindexer.application.services.indexer_service import MALFORMED, IndexerService
from perpindexer.application.services.processing_service import APPLIED, DUPLICATE
from perpindexer.domain.errors import PrimaryStoreFailure
from perpindexer.interfaces.api.deps import get_indexer_service, require_api_key
from perpindexer.interfaces.api.schemas import IngestResponse, IngestResultOut

log = logging.getLogger(__name__)
router = APIRouter(prefix="/webhook", tags=["Webhooks"])


@router.post("/events", response_model=IngestResponse, dependencies=[Depends(require_api_key)])
async def ingest_events(
    payloads: List[Any] = Body(...),
    indexer: IndexerService = Depends(get_indexer_service),
):
    try:
        outcomes = await indexer.ingest_batch(payloads)
    except PrimaryStoreFailure as e:
        log.error(f"Webhook batch aborted: {e}")
        raise HTTPException(status_code=503, detail="Primary store unavailable; retry the batch.")

    return IngestResponse(
        results=[IngestResultOut.model_validate(o) for o in outcomes],
        applied=sum(1 for o in outcomes if o.status == APPLIED),
        duplicate=sum(1 for o in outcomes if o.status == DUPLICATE),
        malformed=sum(1 for o in outcomes if o.status == MALFORMED),
    )
