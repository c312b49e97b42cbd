"""
Trino REST client

Submits a statement to /v1/statement and follows nextUri until the query
finishes, collecting column metadata and row data along the way.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from vkg.core.config import settings
from vkg.models.pipeline import ColumnMeta, ExecutionResult

logger = logging.getLogger(__name__)


class TrinoQueryError(Exception):
    """Engine-side failure; message is surfaced verbatim as retry feedback"""

    def __init__(self, message: str, error_code: Optional[Any] = None, error_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.error_name = error_name


class TrinoClient:
    """Async client for Trino's statement protocol."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        user: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or settings.TRINO_URL).rstrip("/")
        self.user = user or settings.TRINO_USER
        self.poll_interval = settings.trino_poll_interval_seconds if poll_interval is None else poll_interval
        self.max_poll_attempts = max_poll_attempts or settings.trino_max_poll_attempts
        self.cancel_timeout = 5.0
        self._client = httpx.AsyncClient(
            headers={"X-Trino-User": self.user},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TrinoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def check_connection(self) -> Dict[str, Any]:
        """Probe /v1/info; never raises"""
        try:
            response = await self._client.get(f"{self.base_url}/v1/info")
            response.raise_for_status()
            info = response.json()
            version = info.get("nodeVersion")
            if isinstance(version, dict):
                version = version.get("version")
            return {"connected": True, "version": version, "url": self.base_url}
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Trino connection check failed ({self.base_url}): {e}")
            return {"connected": False, "error": str(e), "url": self.base_url}

    async def cancel(self, next_uri: str) -> None:
        """Best-effort DELETE of a running statement; never raises"""
        try:
            await self._client.delete(next_uri, timeout=self.cancel_timeout)
            logger.info(f"Cancelled Trino statement: {next_uri}")
        except httpx.HTTPError as e:
            logger.warning(f"Trino statement cancel failed ({next_uri}): {e}")

    @staticmethod
    def _raise_for_query_error(payload: Dict[str, Any]) -> None:
        error = payload.get("error")
        if error:
            raise TrinoQueryError(
                f"Trino query error: {error.get('message')} (code: {error.get('errorCode')})",
                error_code=error.get("errorCode"),
                error_name=error.get("errorName"),
            )

    async def execute_sql(
        self,
        sql: str,
        catalog: Optional[str] = None,
        schema: Optional[str] = None,
    ) -> ExecutionResult:
        start = time.perf_counter()
        headers = {"Content-Type": "text/plain"}
        if catalog:
            headers["X-Trino-Catalog"] = catalog
        if schema:
            headers["X-Trino-Schema"] = schema

        response = await self._client.post(f"{self.base_url}/v1/statement", content=sql, headers=headers)
        if response.status_code >= 400:
            raise TrinoQueryError(f"Trino query submission failed ({response.status_code}): {response.text}")

        payload = response.json()
        columns: List[ColumnMeta] = []
        rows: List[List[Any]] = []

        attempts = 0
        next_uri: Optional[str] = None
        try:
            while True:
                if payload.get("columns") and not columns:
                    columns = [ColumnMeta(name=c["name"], type=c.get("type", "unknown")) for c in payload["columns"]]
                if payload.get("data"):
                    rows.extend(payload["data"])
                self._raise_for_query_error(payload)

                next_uri = payload.get("nextUri")
                if not next_uri:
                    break
                if attempts >= self.max_poll_attempts:
                    await self.cancel(next_uri)
                    raise TrinoQueryError(f"Trino query did not finish after {attempts} polls")
                attempts += 1

                if self.poll_interval:
                    await asyncio.sleep(self.poll_interval)
                poll = await self._client.get(next_uri)
                if poll.status_code >= 400:
                    raise TrinoQueryError(f"Trino poll failed ({poll.status_code}): {poll.text}")
                payload = poll.json()
        except asyncio.CancelledError:
            # Deadline hit mid-poll: stop the statement on the coordinator too
            if next_uri:
                await self.cancel(next_uri)
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"Trino query completed: {len(rows)} rows in {duration_ms}ms")
        return ExecutionResult(columns=columns, rows=rows, row_count=len(rows), duration_ms=duration_ms)
