"""
Retry Orchestrator Nodes

Each node runs one stage of one attempt, times it into the PipelineRun and
records its outcome (phase + failed) for next_phase(). Collaborators and the
run are read from config["configurable"].
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from langchain_core.runnables import RunnableConfig

from vkg.core.exceptions import ExecutionFault, GenerationFault, ValidationFault
from vkg.models.ontology import MappingTable, OntologySchema
from vkg.models.pipeline import PipelineRun, ValidationResult
from vkg.orchestrator.routing import build_feedback_messages
from vkg.orchestrator.state import Phase, RetryState
from vkg.orchestrator.utils import EXECUTION_STEP, GENERATION_STEP, VALIDATION_STEP, step_name, timed_step
from vkg.services.query_executor import QueryExecutor
from vkg.services.sql_generator import PlanSQLGenerator
from vkg.services.sql_validator import SQLValidator

logger = logging.getLogger(__name__)

EMPTY_SQL_ERROR = "LLM returned no SQL"


@dataclass(frozen=True)
class AttemptContext:
    """Read-only inputs shared by every attempt of one run"""

    generator: PlanSQLGenerator
    validator: SQLValidator
    executor: QueryExecutor
    schema: OntologySchema
    mappings: MappingTable


def _resolve(config: RunnableConfig) -> Tuple[PipelineRun, AttemptContext]:
    configurable = (config or {}).get("configurable", {})
    return configurable["run"], configurable["context"]


async def generate_node(state: RetryState, config: RunnableConfig) -> Dict[str, Any]:
    """Ask the oracle for plan + SQL, carrying prior feedback turns."""
    run, ctx = _resolve(config)
    attempt = state.get("attempt", 0) + 1
    max_attempts = state["max_attempts"]
    updates: Dict[str, Any] = {
        "attempt": attempt,
        "phase": Phase.GENERATING,
        "plan": None,
        "sql": "",
        "raw_output": "",
        "validation": None,
        "execution": None,
    }

    try:
        async with timed_step(run, step_name(GENERATION_STEP, attempt, max_attempts)) as step:
            outcome = await ctx.generator.generate(
                state["question"], ctx.schema, ctx.mappings, list(state.get("messages", []))
            )
            if not outcome.sql:
                step.fail(EMPTY_SQL_ERROR)
    except GenerationFault as e:
        logger.warning(f"SQL generation failed (attempt {attempt}/{max_attempts}): {e.message}")
        return {**updates, "failed": True, "last_error": e.message}

    updates.update(plan=outcome.plan, sql=outcome.sql, raw_output=outcome.raw)
    if not outcome.sql:
        logger.warning(f"SQL generation produced no SQL (attempt {attempt}/{max_attempts})")
        return {
            **updates,
            "failed": True,
            "last_error": EMPTY_SQL_ERROR,
            "messages": build_feedback_messages("generation", EMPTY_SQL_ERROR, raw_output=outcome.raw),
        }

    logger.info(
        f"Plan: entities={outcome.plan.entities}, single_hop={outcome.plan.single_hop}, "
        f"aggregation={outcome.plan.aggregation or 'none'}; SQL generated ({len(outcome.sql)} chars)"
    )
    return {**updates, "failed": False, "last_error": None}


async def validate_node(state: RetryState, config: RunnableConfig) -> Dict[str, Any]:
    """Static checks; an invalid candidate never reaches the executor."""
    run, ctx = _resolve(config)
    attempt, max_attempts = state["attempt"], state["max_attempts"]

    try:
        async with timed_step(run, step_name(VALIDATION_STEP, attempt, max_attempts)):
            validation = ctx.validator.require_valid(state["sql"], ctx.mappings)
    except ValidationFault as e:
        reason = "; ".join(e.errors)
        return {
            "phase": Phase.VALIDATING,
            "validation": ValidationResult(valid=False, errors=e.errors),
            "failed": True,
            "last_error": e.message,
            "messages": build_feedback_messages("validation", reason, state.get("plan"), state["sql"]),
        }

    if validation.warnings:
        logger.info(f"SQL valid ({len(validation.warnings)} warnings)")
    return {"phase": Phase.VALIDATING, "validation": validation, "failed": False}


async def execute_node(state: RetryState, config: RunnableConfig) -> Dict[str, Any]:
    """Run validated SQL on the federated engine."""
    run, ctx = _resolve(config)
    attempt, max_attempts = state["attempt"], state["max_attempts"]

    try:
        async with timed_step(run, step_name(EXECUTION_STEP, attempt, max_attempts)):
            execution = await ctx.executor.execute(state["sql"])
    except ExecutionFault as e:
        logger.warning(f"Federated execution failed (attempt {attempt}/{max_attempts}): {e.message}")
        return {
            "phase": Phase.EXECUTING,
            "failed": True,
            "last_error": e.message,
            "messages": build_feedback_messages("execution", e.message, state.get("plan"), state["sql"]),
        }

    return {"phase": Phase.EXECUTING, "execution": execution, "failed": False, "last_error": None}


async def succeeded_node(state: RetryState) -> Dict[str, Any]:
    return {"phase": Phase.SUCCEEDED}


async def failed_node(state: RetryState) -> Dict[str, Any]:
    logger.error(f"Retry bound exhausted after {state.get('attempt')} attempts: {state.get('last_error')}")
    return {"phase": Phase.FAILED}
