# src/perpindexer/infrastructure/secondary/rest_store.py
"""
Best-effort mirror of derived rows to a PostgREST-compatible service.

    upsert -> POST  {base}/rest/v1/{table}                 Prefer: resolution=merge-duplicates
    update -> PATCH {base}/rest/v1/{table}?{col}=eq.{val}

Every failure (transport error, timeout, non-2xx status) is raised as
SecondaryStoreFailure; the dual-write coordinator decides what to do with it.
"""

import logging
from typing import Any, Mapping, Optional

import httpx

from perpindexer.domain.errors import SecondaryStoreFailure

log = logging.getLogger(__name__)

UPSERT_PREFER = "resolution=merge-duplicates,return=minimal"
UPDATE_PREFER = "return=minimal"


def _row_key(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]] = None) -> str:
    if filters:
        return ",".join(f"{k}={v}" for k, v in filters.items())
    return str(row.get("id", "?"))


class RestSecondaryStore:
    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def _send(self, method: str, table: str, key: str, *, json: Any,
                    params: Optional[Mapping[str, str]] = None, prefer: str) -> None:
        headers = dict(self._headers, Prefer=prefer)
        try:
            response = await self._client.request(
                method, self._url(table), json=json, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise SecondaryStoreFailure(table, key, f"{type(e).__name__}: {e}") from e
        if response.status_code >= 300:
            raise SecondaryStoreFailure(table, key, response.text[:200], status_code=response.status_code)
        log.debug(f"Secondary {method} {table}[{key}] -> {response.status_code}")

    async def upsert(self, table: str, row: Mapping[str, Any]) -> None:
        await self._send("POST", table, _row_key(row), json=dict(row), prefer=UPSERT_PREFER)

    async def update(self, table: str, row: Mapping[str, Any], filters: Mapping[str, Any]) -> None:
        params = {column: f"eq.{value}" for column, value in filters.items()}
        await self._send("PATCH", table, _row_key(row, filters), json=dict(row), params=params,
                         prefer=UPDATE_PREFER)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
