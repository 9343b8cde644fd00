# src/perpindexer/interfaces/api/deps.py

from fastapi import Header, HTTPException, Request

from perpindexer.config import settings
from perpindexer.application.services.indexer_service import IndexerService
from perpindexer.application.services.position_service import DirectPositionReconstructor
from perpindexer.application.services.query_service import QueryService


def _service(request: Request, name: str, label: str):
    services = request.app.state.services or {}
    service = services.get(name)
    if not service:
        raise HTTPException(status_code=503, detail=f"{label} is currently unavailable.")
    return service


def get_query_service(request: Request) -> QueryService:
    """Dependency to get the QueryService instance from the app state."""
    return _service(request, "query_service", "Query service")


def get_indexer_service(request: Request) -> IndexerService:
    """Dependency to get the IndexerService instance from the app state."""
    return _service(request, "indexer_service", "Indexer service")


def require_api_key(x_api_key: str | None = Header(default=None)):
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return True


def get_position_reconstructor(request: Request) -> DirectPositionReconstructor:
    return _service(request, "reconstructor", "Position reconstructor")
