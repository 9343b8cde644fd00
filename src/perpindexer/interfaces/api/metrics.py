# src/perpindexer/interfaces/api/metrics.py
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

router = APIRouter(prefix="/metrics", tags=["metrics"])

API_REQUESTS = Counter("perpindexer_api_requests_total", "API requests served", ["method", "status"])


async def count_requests(request: Request, call_next):
    response = await call_next(request)
    API_REQUESTS.labels(method=request.method, status=str(response.status_code)).inc()
    return response


@router.get("")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
