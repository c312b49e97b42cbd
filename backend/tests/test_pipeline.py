"""
Tests for the VKG Query Pipeline

End-to-end runs with an in-memory ontology store, a scripted oracle and a
fake federated engine. Covers the success response, the error envelope and
the execution_pipeline audit.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, patch

from vkg.core.config import settings
from vkg.core.trino_client import TrinoClient, TrinoQueryError
from vkg.models.ontology import MappingTable
from vkg.models.pipeline import ContextGraph, ExecutionResult
from vkg.orchestrator.processor import VKGQueryPipeline
from vkg.orchestrator.utils import (
    ANSWER_STEP,
    EXECUTION_STEP,
    GENERATION_STEP,
    GRAPH_STEP,
    LOAD_STEP,
    VALIDATION_STEP,
)
from vkg.services.context_graph_builder import ContextGraphBuilder, MappingColumnClassifier
from vkg.services.ontology_store import InMemoryOntologyStore
from vkg.services.schema_context import SchemaContextLoader

ANSWER = "Alice placed two orders and Bob placed one."


@pytest.fixture
def store(ontology_schema, mapping_table):
    store = InMemoryOntologyStore()
    store.put("t1", "w1", ontology_schema, mapping_table)
    return store


@pytest.fixture
def make_pipeline(store):
    def _make(oracle, engine, graph_builder=None):
        return VKGQueryPipeline(
            loader=SchemaContextLoader(store),
            oracle=oracle,
            engine=engine,
            graph_builder=graph_builder or ContextGraphBuilder(MappingColumnClassifier()),
            max_attempts=3,
        )
    return _make


def step_names(response):
    return [s["name"] for s in response["execution_pipeline"]["steps"]]


def steps_with_prefix(response, prefix):
    return [s for s in response["execution_pipeline"]["steps"] if s["name"].startswith(prefix)]


class TestSuccessfulQuery:
    @pytest.mark.asyncio
    async def test_response_shape(self, make_pipeline, oracle, engine, make_generation, orders_sql):
        oracle.complete.side_effect = [make_generation(orders_sql, entities=["Customer", "Order"]), ANSWER]

        response = await make_pipeline(oracle, engine).query("Who placed orders?", "t1", "w1")

        assert "error" not in response
        assert response["answer"] == ANSWER
        assert response["question"] == "Who placed orders?"
        assert response["query_mode"] == "vkg_federated"
        assert response["citations"] == {"sql": orders_sql, "databases": ["mysql", "postgres"]}
        assert response["plan"]["entities"] == ["Customer", "Order"]

        stats = response["execution_stats"]
        assert stats["rows_returned"] == 3
        assert stats["databases_queried"] == 2
        assert stats["trino_execution_ms"] == 42
        assert stats["attempts"] == 1

        assert response["context_graph"]["statistics"]["nodeCount"] == 5
        assert response["context_graph"]["statistics"]["edgeCount"] == 3
        assert response["reasoning_trace"][-1]["step"].startswith("Result: 3 row(s)")

    @pytest.mark.asyncio
    async def test_execution_pipeline_steps(self, make_pipeline, oracle, engine, make_generation, orders_sql):
        oracle.complete.side_effect = [make_generation(orders_sql), ANSWER]

        response = await make_pipeline(oracle, engine).query("Who placed orders?", "t1", "w1")

        assert step_names(response) == [
            LOAD_STEP, GENERATION_STEP, VALIDATION_STEP, EXECUTION_STEP, GRAPH_STEP, ANSWER_STEP,
        ]
        assert all(s["status"] == "success" for s in response["execution_pipeline"]["steps"])
        assert all("error" not in s for s in response["execution_pipeline"]["steps"])
        assert response["execution_pipeline"]["total_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_zero_rows_skip_answer_oracle(self, make_pipeline, oracle, make_generation, orders_sql):
        oracle.complete.return_value = make_generation(orders_sql)
        engine = AsyncMock()
        engine.execute_sql.return_value = ExecutionResult(columns=[], rows=[], row_count=0)

        response = await make_pipeline(oracle, engine).query("Any orders from Mars?", "t1", "w1")

        assert response["answer"] == "No results found for this query."
        assert oracle.complete.await_count == 1
        assert response["reasoning_trace"][0]["step"] == "Query returned no results"

    @pytest.mark.asyncio
    async def test_graph_failure_is_non_fatal(self, make_pipeline, oracle, engine, make_generation, orders_sql):
        oracle.complete.side_effect = [make_generation(orders_sql), ANSWER]
        classifier = Mock()
        classifier.classify.side_effect = RuntimeError("classifier exploded")

        response = await make_pipeline(oracle, engine, ContextGraphBuilder(classifier)).query("q", "t1", "w1")

        assert "error" not in response
        assert response["answer"] == ANSWER
        graph_step = steps_with_prefix(response, GRAPH_STEP)[0]
        assert graph_step["status"] == "skipped"
        assert "classifier exploded" in graph_step["error"]
        assert response["context_graph"]["statistics"]["nodeCount"] == 0

    @pytest.mark.asyncio
    async def test_success_metrics(self, make_pipeline, oracle, engine, make_generation, orders_sql, metric_value):
        oracle.complete.side_effect = [make_generation(orders_sql), ANSWER]
        labels = {"status": "success", "workspace_id": "w1"}
        before = metric_value("vkg_queries_total", labels)

        await make_pipeline(oracle, engine).query("q", "t1", "w1")

        assert metric_value("vkg_queries_total", labels) == before + 1


class TestFailedQuery:
    @pytest.mark.asyncio
    async def test_all_executions_fail(self, make_pipeline, oracle, make_generation, orders_sql):
        """Every attempt validates, every execution fails"""
        oracle.complete.return_value = make_generation(orders_sql)
        engine = AsyncMock()
        engine.execute_sql.side_effect = TrinoQueryError("Table 'x' not found")

        response = await make_pipeline(oracle, engine).query("Who placed orders?", "t1", "w1")

        assert response["error"] == "Failed after 3 attempts. Last error: Table 'x' not found"
        assert response["answer"] == f"Query failed: {response['error']}"
        assert response["query_mode"] == "vkg_federated"
        assert response["context_graph"] == ContextGraph.empty().model_dump(by_alias=True)
        assert response["context_graph"]["statistics"]["nodeCount"] == 0

        assert len(steps_with_prefix(response, GENERATION_STEP)) == 3
        assert len(steps_with_prefix(response, VALIDATION_STEP)) == 3
        executions = steps_with_prefix(response, EXECUTION_STEP)
        assert len(executions) == 3
        assert all(s["status"] == "failed" for s in executions)
        assert executions[-1]["name"] == f"{EXECUTION_STEP} (attempt 3/3)"
        assert ANSWER_STEP not in step_names(response)
        assert "raw_results" not in response

    @pytest.mark.asyncio
    async def test_answer_fault_returns_raw_results(self, make_pipeline, oracle, engine, make_generation, orders_sql):
        oracle.complete.side_effect = [make_generation(orders_sql), RuntimeError("quota exceeded")]

        response = await make_pipeline(oracle, engine).query("Who placed orders?", "t1", "w1")

        assert response["error"].startswith("Answer generation failed")
        assert response["raw_results"]["row_count"] == 3
        assert response["raw_results"]["columns"][0] == {"name": "customer_id", "type": "integer"}
        assert response["citations"]["databases"] == ["mysql", "postgres"]
        assert steps_with_prefix(response, ANSWER_STEP)[0]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_store_failure(self, oracle, engine):
        store = AsyncMock()
        store.get_schema.side_effect = ConnectionError("ontology store unreachable")
        store.get_mappings.return_value = MappingTable()
        pipeline = VKGQueryPipeline(loader=SchemaContextLoader(store), oracle=oracle, engine=engine)

        response = await pipeline.query("q", "t1", "w-broken")

        assert "ontology store unreachable" in response["error"]
        assert step_names(response) == [LOAD_STEP]
        assert response["execution_pipeline"]["steps"][0]["status"] == "failed"
        oracle.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_metrics(self, make_pipeline, oracle, make_generation, metric_value):
        oracle.complete.return_value = make_generation("SELECT id FROM sales.customers")
        labels = {"error_code": "PIPELINE_FAILURE", "workspace_id": "w1"}
        before = metric_value("vkg_query_failures_total", labels)

        response = await make_pipeline(oracle, AsyncMock()).query("q", "t1", "w1")

        assert response["error"].startswith("Failed after 3 attempts. Last error: SQL validation failed")
        assert metric_value("vkg_query_failures_total", labels) == before + 1


class StallingOracle:
    """Replays scripted responses; None never answers"""

    def __init__(self, responses):
        self.responses = list(responses)

    async def complete(self, messages, *, temperature, max_tokens=None):
        response = self.responses.pop(0)
        if response is None:
            await asyncio.sleep(5)
        return response


class TestOracleDeadline:
    @pytest.fixture(autouse=True)
    def short_deadline(self, monkeypatch):
        monkeypatch.setattr(settings, "oracle_timeout_seconds", 0.05)

    @pytest.mark.asyncio
    async def test_stalled_generation_is_retried(self, make_pipeline, engine, make_generation, orders_sql):
        oracle = StallingOracle([None, make_generation(orders_sql), ANSWER])

        response = await make_pipeline(oracle, engine).query("Who placed orders?", "t1", "w1")

        assert "error" not in response
        assert response["answer"] == ANSWER
        assert response["execution_stats"]["attempts"] == 2
        first = steps_with_prefix(response, GENERATION_STEP)[0]
        assert first["status"] == "failed"
        assert "timed out" in first["error"]

    @pytest.mark.asyncio
    async def test_stalled_answer_is_fatal(self, make_pipeline, engine, make_generation, orders_sql):
        oracle = StallingOracle([make_generation(orders_sql), None])

        response = await make_pipeline(oracle, engine).query("Who placed orders?", "t1", "w1")

        assert response["error"].startswith("Answer generation timed out")
        assert response["raw_results"]["row_count"] == 3
        assert steps_with_prefix(response, ANSWER_STEP)[0]["status"] == "failed"


class TestPipelineLifecycle:
    @pytest.mark.asyncio
    async def test_from_settings_configures_logging(self, store, monkeypatch):
        monkeypatch.setattr(settings, "log_level", "DEBUG")
        monkeypatch.setattr(settings, "log_json", True)

        with patch("vkg.orchestrator.processor.configure_structured_logging") as configure:
            pipeline = VKGQueryPipeline.from_settings(store)

        configure.assert_called_once_with(log_level="DEBUG", json_format=True)
        assert isinstance(pipeline.engine, TrinoClient)
        await pipeline.aclose()
        assert pipeline.engine._client.is_closed

    @pytest.mark.asyncio
    async def test_context_manager_closes_engine(self, make_pipeline, oracle, engine):
        async with make_pipeline(oracle, engine):
            pass
        engine.close.assert_awaited_once()
