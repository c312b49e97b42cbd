"""
Query Executor

Thin pass-through to the federated engine. No retries here: the retry
orchestrator owns that policy and needs the engine's message verbatim.
"""

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from vkg.core.config import settings
from vkg.core.exceptions import ExecutionFault
from vkg.core.trino_client import TrinoQueryError
from vkg.models.pipeline import ExecutionResult

logger = logging.getLogger(__name__)


class FederatedEngine(Protocol):
    async def execute_sql(self, sql: str) -> ExecutionResult: ...


class QueryExecutor:
    def __init__(self, engine: FederatedEngine, timeout_seconds: Optional[float] = None):
        self.engine = engine
        self.timeout_seconds = timeout_seconds or settings.engine_timeout_seconds

    async def execute(self, sql: str) -> ExecutionResult:
        """Run validated SQL; any engine failure becomes an ExecutionFault with the original message"""
        try:
            async with asyncio.timeout(self.timeout_seconds):
                result = await self.engine.execute_sql(sql)
        except TimeoutError as e:
            raise ExecutionFault(
                f"Query execution timed out after {self.timeout_seconds}s",
                details={"timeout_seconds": self.timeout_seconds},
            ) from e
        except TrinoQueryError as e:
            raise ExecutionFault(e.message, details={"engine_error_code": e.error_code}) from e
        except httpx.HTTPError as e:
            raise ExecutionFault(f"Federated engine unreachable: {e}") from e
        except ExecutionFault:
            raise
        except Exception as e:
            raise ExecutionFault(str(e)) from e

        logger.info(f"Federated execution returned {result.row_count} rows in {result.duration_ms}ms")
        return result
