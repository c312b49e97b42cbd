"""
Tests for Federated Execution

Tests the Trino statement protocol client (nextUri polling, error payloads)
and the QueryExecutor's mapping of engine failures to ExecutionFault.
"""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock

from vkg.core.exceptions import ExecutionFault
from vkg.core.trino_client import TrinoClient, TrinoQueryError
from vkg.models.pipeline import ExecutionResult
from vkg.services.query_executor import QueryExecutor

BASE_URL = "http://trino.test:8080"


def make_client(handler) -> TrinoClient:
    return TrinoClient(
        base_url=BASE_URL,
        user="tester",
        poll_interval=0,
        max_poll_attempts=5,
        transport=httpx.MockTransport(handler),
    )


class TestTrinoClient:
    @pytest.mark.asyncio
    async def test_follows_next_uri_and_collects_rows(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, request.headers.get("X-Trino-User")))
            if request.method == "POST":
                assert request.content == b"SELECT customer_id, name FROM mysql.sales.customers"
                return httpx.Response(200, json={"id": "q1", "nextUri": f"{BASE_URL}/v1/statement/q1/1"})
            if request.url.path.endswith("/1"):
                return httpx.Response(200, json={
                    "columns": [{"name": "customer_id", "type": "integer"}, {"name": "name", "type": "varchar"}],
                    "data": [[1, "Alice"]],
                    "nextUri": f"{BASE_URL}/v1/statement/q1/2",
                })
            return httpx.Response(200, json={"data": [[2, "Bob"]]})

        async with make_client(handler) as client:
            result = await client.execute_sql("SELECT customer_id, name FROM mysql.sales.customers")

        assert isinstance(result, ExecutionResult)
        assert result.column_names == ["customer_id", "name"]
        assert result.rows == [[1, "Alice"], [2, "Bob"]]
        assert result.row_count == 2
        assert seen[0] == ("POST", "/v1/statement", "tester")
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_query_error_payload(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"nextUri": f"{BASE_URL}/v1/statement/q1/1"})
            return httpx.Response(200, json={
                "error": {
                    "message": "line 1:15: Table 'mysql.sales.custmers' does not exist",
                    "errorCode": 46,
                    "errorName": "TABLE_NOT_FOUND",
                },
            })

        async with make_client(handler) as client:
            with pytest.raises(TrinoQueryError) as exc_info:
                await client.execute_sql("SELECT 1 FROM mysql.sales.custmers")

        assert exc_info.value.message == (
            "Trino query error: line 1:15: Table 'mysql.sales.custmers' does not exist (code: 46)"
        )
        assert exc_info.value.error_name == "TABLE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_submission_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="Server is starting")

        async with make_client(handler) as client:
            with pytest.raises(TrinoQueryError, match=r"submission failed \(503\)"):
                await client.execute_sql("SELECT 1")

    @pytest.mark.asyncio
    async def test_poll_limit(self):
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(200, json={"nextUri": f"{BASE_URL}/v1/statement/q1/next"})

        async with make_client(handler) as client:
            with pytest.raises(TrinoQueryError, match="did not finish after 5 polls"):
                await client.execute_sql("SELECT 1")
        assert methods[-1] == "DELETE"

    @pytest.mark.asyncio
    async def test_deadline_cancels_running_statement(self):
        """A statement abandoned by the executor deadline is deleted on the coordinator"""
        deleted = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "DELETE":
                deleted.append(request.url.path)
                return httpx.Response(204)
            return httpx.Response(200, json={"nextUri": f"{BASE_URL}/v1/statement/q1/next"})

        client = TrinoClient(
            base_url=BASE_URL,
            poll_interval=0.01,
            max_poll_attempts=1000,
            transport=httpx.MockTransport(handler),
        )
        async with client:
            with pytest.raises(ExecutionFault, match="timed out"):
                await QueryExecutor(client, timeout_seconds=0.05).execute("SELECT 1")
        assert deleted == ["/v1/statement/q1/next"]

    @pytest.mark.asyncio
    async def test_cancel_never_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        async with make_client(handler) as client:
            await client.cancel(f"{BASE_URL}/v1/statement/q1/next")

    @pytest.mark.asyncio
    async def test_check_connection(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"nodeVersion": {"version": "435"}})

        async with make_client(handler) as client:
            info = await client.check_connection()
        assert info == {"connected": True, "version": "435", "url": BASE_URL}

    @pytest.mark.asyncio
    async def test_check_connection_never_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        async with make_client(handler) as client:
            info = await client.check_connection()
        assert info["connected"] is False


class TestQueryExecutor:
    @pytest.mark.asyncio
    async def test_pass_through(self, engine, orders_result):
        result = await QueryExecutor(engine, timeout_seconds=5).execute("SELECT 1")
        assert result is orders_result
        engine.execute_sql.assert_awaited_once_with("SELECT 1")

    @pytest.mark.asyncio
    async def test_engine_message_is_preserved(self):
        engine = AsyncMock()
        engine.execute_sql.side_effect = TrinoQueryError("Table 'x' not found")

        with pytest.raises(ExecutionFault) as exc_info:
            await QueryExecutor(engine, timeout_seconds=5).execute("SELECT 1")
        assert exc_info.value.message == "Table 'x' not found"

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def hang(sql):
            await asyncio.sleep(10)

        engine = AsyncMock()
        engine.execute_sql.side_effect = hang

        with pytest.raises(ExecutionFault, match="timed out after 0.05s"):
            await QueryExecutor(engine, timeout_seconds=0.05).execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_unreachable_engine(self):
        engine = AsyncMock()
        engine.execute_sql.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(ExecutionFault, match="Federated engine unreachable"):
            await QueryExecutor(engine, timeout_seconds=5).execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_end_to_end_with_trino_client(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "columns": [{"name": "n", "type": "bigint"}],
                "data": [[3]],
            })

        async with make_client(handler) as client:
            result = await QueryExecutor(client, timeout_seconds=5).execute("SELECT count(*) AS n FROM mysql.sales.customers")
        assert result.rows == [[3]]
