"""
Tests for the Retry Orchestrator

Tests:
- Transition function and routing
- Feedback message construction
- Attempt bound and "invalid SQL is never executed"
- Execution error feedback reaching the next prompt
"""

import pytest
from unittest.mock import AsyncMock
from langchain_core.messages import AIMessage, HumanMessage

from vkg.core.exceptions import PipelineFailure
from vkg.core.trino_client import TrinoQueryError
from vkg.models.pipeline import PipelineRun, QueryPlan, StepStatus
from vkg.orchestrator.graph import RetryOrchestrator
from vkg.orchestrator.routing import QUALIFIED_NAMES_REMINDER, build_feedback_messages, next_phase, route_by_phase
from vkg.orchestrator.state import Phase
from vkg.orchestrator.utils import EXECUTION_STEP, GENERATION_STEP, VALIDATION_STEP
from vkg.services.query_executor import QueryExecutor
from vkg.services.sql_generator import PlanSQLGenerator
from vkg.services.sql_validator import SQLValidator

GOOD_SQL = "SELECT c.customer_id, c.name FROM mysql.sales.customers c LIMIT 10"
BAD_SQL = "SELECT id FROM sales.customers LIMIT 10"


def make_orchestrator(oracle, engine, max_attempts=3) -> RetryOrchestrator:
    return RetryOrchestrator(
        generator=PlanSQLGenerator(oracle),
        validator=SQLValidator(),
        executor=QueryExecutor(engine, timeout_seconds=5),
        max_attempts=max_attempts,
    )


def make_run(question="Who are our customers?") -> PipelineRun:
    return PipelineRun(question=question, tenant_id="t1", workspace_id="w1")


def prompt_text(call) -> str:
    messages = call.args[0]
    return "\n".join(str(m.content) for m in messages)


class TestNextPhase:
    """The transition table as a pure function"""

    @pytest.mark.parametrize("phase,expected", [
        (Phase.GENERATING, Phase.VALIDATING),
        (Phase.VALIDATING, Phase.EXECUTING),
        (Phase.EXECUTING, Phase.SUCCEEDED),
    ])
    def test_success_advances(self, phase, expected):
        state = {"phase": phase, "failed": False, "sql": "SELECT 1", "attempt": 1, "max_attempts": 3}
        assert next_phase(state) == expected

    @pytest.mark.parametrize("phase", [Phase.GENERATING, Phase.VALIDATING, Phase.EXECUTING])
    def test_failure_retries_while_attempts_remain(self, phase):
        state = {"phase": phase, "failed": True, "attempt": 2, "max_attempts": 3}
        assert next_phase(state) == Phase.GENERATING

    @pytest.mark.parametrize("phase", [Phase.GENERATING, Phase.VALIDATING, Phase.EXECUTING])
    def test_failure_on_last_attempt_is_terminal(self, phase):
        state = {"phase": phase, "failed": True, "attempt": 3, "max_attempts": 3}
        assert next_phase(state) == Phase.FAILED

    def test_generation_without_sql_is_a_failure(self):
        state = {"phase": Phase.GENERATING, "failed": False, "sql": "", "attempt": 1, "max_attempts": 1}
        assert next_phase(state) == Phase.FAILED

    @pytest.mark.parametrize("phase", [Phase.SUCCEEDED, Phase.FAILED])
    def test_terminal_phases_stay(self, phase):
        assert next_phase({"phase": phase, "failed": True, "attempt": 1, "max_attempts": 3}) == phase

    def test_route_names(self):
        state = {"phase": Phase.VALIDATING, "failed": False, "attempt": 1, "max_attempts": 3}
        assert route_by_phase(state) == "execute"


class TestFeedbackMessages:
    def test_execution_feedback_quotes_engine_error(self):
        plan = QueryPlan(entities=["Customer"], reasoning="lookup")
        messages = build_feedback_messages("execution", "Table 'x' not found", plan, "SELECT * FROM x")

        assert isinstance(messages[0], AIMessage)
        assert '"sql": "SELECT * FROM x"' in messages[0].content
        assert isinstance(messages[1], HumanMessage)
        assert "failed on Trino with error: Table 'x' not found" in messages[1].content
        assert QUALIFIED_NAMES_REMINDER in messages[1].content

    def test_validation_feedback(self):
        messages = build_feedback_messages("validation", "Unknown table reference: a.b", None, "SELECT 1 FROM a.b")
        assert "failed validation: Unknown table reference: a.b" in messages[1].content

    def test_generation_fault_without_output_adds_nothing(self):
        assert build_feedback_messages("generation", "LLM request failed: boom") == []

    def test_generation_with_raw_output(self):
        messages = build_feedback_messages("generation", "LLM returned no SQL", raw_output="I am not sure")
        assert messages[0].content == "I am not sure"
        assert "LLM returned no SQL" in messages[1].content


class TestRetryOrchestrator:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, oracle, engine, ontology_schema, mapping_table, make_generation, orders_result):
        oracle.complete.return_value = make_generation(GOOD_SQL)
        run = make_run()

        outcome = await make_orchestrator(oracle, engine).run(run, ontology_schema, mapping_table)

        assert outcome.attempts == 1
        assert outcome.sql == GOOD_SQL
        assert outcome.execution is orders_result
        assert outcome.validation.valid is True
        assert [s.name for s in run.steps] == [GENERATION_STEP, VALIDATION_STEP, EXECUTION_STEP]
        assert all(s.status == StepStatus.SUCCESS for s in run.steps)
        assert run.conversation_history == []

    @pytest.mark.asyncio
    async def test_execution_error_reaches_next_prompt(self, oracle, ontology_schema, mapping_table, make_generation, orders_result):
        """Engine message is quoted verbatim in attempt 2's prompt"""
        oracle.complete.side_effect = [make_generation(GOOD_SQL), make_generation(GOOD_SQL)]
        engine = AsyncMock()
        engine.execute_sql.side_effect = [TrinoQueryError("Table 'x' not found"), orders_result]
        run = make_run()

        outcome = await make_orchestrator(oracle, engine).run(run, ontology_schema, mapping_table)

        assert outcome.attempts == 2
        assert oracle.complete.await_count == 2
        assert "Table 'x' not found" not in prompt_text(oracle.complete.call_args_list[0])
        assert "Table 'x' not found" in prompt_text(oracle.complete.call_args_list[1])

        generation_steps = run.steps_named(GENERATION_STEP)
        assert len(generation_steps) == 2
        assert generation_steps[1].name == f"{GENERATION_STEP} (attempt 2/3)"
        execution_steps = run.steps_named(EXECUTION_STEP)
        assert [s.status for s in execution_steps] == [StepStatus.FAILED, StepStatus.SUCCESS]
        assert execution_steps[0].error == "Table 'x' not found"
        assert len(run.conversation_history) == 2

    @pytest.mark.asyncio
    async def test_invalid_sql_never_executed(self, oracle, engine, ontology_schema, mapping_table, make_generation):
        oracle.complete.return_value = make_generation(BAD_SQL)
        run = make_run()

        with pytest.raises(PipelineFailure) as exc_info:
            await make_orchestrator(oracle, engine).run(run, ontology_schema, mapping_table)

        engine.execute_sql.assert_not_awaited()
        assert oracle.complete.await_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.message.startswith("Failed after 3 attempts. Last error: SQL validation failed:")
        assert run.steps_named(EXECUTION_STEP) == []
        assert all(s.status == StepStatus.FAILED for s in run.steps_named(VALIDATION_STEP))

    @pytest.mark.asyncio
    async def test_attempt_bound_is_respected(self, oracle, ontology_schema, mapping_table, make_generation):
        oracle.complete.return_value = make_generation(GOOD_SQL)
        engine = AsyncMock()
        engine.execute_sql.side_effect = TrinoQueryError("Query exceeded memory limit")
        run = make_run()

        with pytest.raises(PipelineFailure) as exc_info:
            await make_orchestrator(oracle, engine, max_attempts=2).run(run, ontology_schema, mapping_table)

        assert oracle.complete.await_count == 2
        assert engine.execute_sql.await_count == 2
        assert exc_info.value.last_error == "Query exceeded memory limit"

    @pytest.mark.asyncio
    async def test_generation_fault_adds_no_feedback(self, oracle, engine, ontology_schema, mapping_table, make_generation):
        oracle.complete.side_effect = [RuntimeError("rate limited"), make_generation(GOOD_SQL)]
        run = make_run()

        outcome = await make_orchestrator(oracle, engine).run(run, ontology_schema, mapping_table)

        assert outcome.attempts == 2
        assert len(oracle.complete.call_args_list[1].args[0]) == 2
        assert run.steps[0].status == StepStatus.FAILED
        assert "rate limited" in run.steps[0].error

    @pytest.mark.asyncio
    async def test_empty_sql_is_retried_with_feedback(self, oracle, engine, ontology_schema, mapping_table, make_generation):
        oracle.complete.side_effect = [make_generation(""), make_generation(GOOD_SQL)]
        run = make_run()

        outcome = await make_orchestrator(oracle, engine).run(run, ontology_schema, mapping_table)

        assert outcome.attempts == 2
        assert "LLM returned no SQL" in prompt_text(oracle.complete.call_args_list[1])
        assert run.steps[0].error == "LLM returned no SQL"

    @pytest.mark.asyncio
    async def test_single_attempt_has_no_suffix(self, oracle, ontology_schema, mapping_table, make_generation):
        oracle.complete.return_value = make_generation(BAD_SQL)
        run = make_run()

        with pytest.raises(PipelineFailure):
            await make_orchestrator(oracle, AsyncMock(), max_attempts=1).run(run, ontology_schema, mapping_table)

        assert [s.name for s in run.steps] == [GENERATION_STEP, VALIDATION_STEP]
