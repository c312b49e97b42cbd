"""
Retry Orchestrator Graph Builder

LangGraph StateGraph binding Generator -> Validator -> Executor with a
bounded retry loop:

START -> generate -> validate -> execute -> succeeded -> END
            ^           |           |
            +-----------+-----------+   (failure, attempts remain)
                                     -> failed -> END   (bound exhausted)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from langchain_core.messages import BaseMessage
from langgraph.graph import END, START, StateGraph

from vkg.core.config import settings
from vkg.core.exceptions import PipelineFailure
from vkg.models.ontology import MappingTable, OntologySchema
from vkg.models.pipeline import ExecutionResult, PipelineRun, QueryPlan, ValidationResult
from vkg.orchestrator.nodes import (
    AttemptContext,
    execute_node,
    failed_node,
    generate_node,
    succeeded_node,
    validate_node,
)
from vkg.orchestrator.routing import route_by_phase
from vkg.orchestrator.state import Phase, RetryState
from vkg.services.query_executor import QueryExecutor
from vkg.services.sql_generator import PlanSQLGenerator
from vkg.services.sql_validator import SQLValidator

logger = logging.getLogger(__name__)

_PHASE_EDGES = {
    "generate": "generate",
    "validate": "validate",
    "execute": "execute",
    "succeeded": "succeeded",
    "failed": "failed",
}


def create_retry_graph():
    """Build and compile the retry state machine."""
    workflow = StateGraph(RetryState)

    workflow.add_node("generate", generate_node)
    workflow.add_node("validate", validate_node)
    workflow.add_node("execute", execute_node)
    workflow.add_node("succeeded", succeeded_node)
    workflow.add_node("failed", failed_node)

    workflow.add_edge(START, "generate")
    for node in ("generate", "validate", "execute"):
        workflow.add_conditional_edges(node, route_by_phase, _PHASE_EDGES)
    workflow.add_edge("succeeded", END)
    workflow.add_edge("failed", END)

    return workflow.compile()


@dataclass(frozen=True)
class RetryOutcome:
    """The winning candidate of a successful run"""

    plan: QueryPlan
    sql: str
    validation: ValidationResult
    execution: ExecutionResult
    attempts: int


class RetryOrchestrator:
    def __init__(
        self,
        generator: PlanSQLGenerator,
        validator: SQLValidator,
        executor: QueryExecutor,
        max_attempts: Optional[int] = None,
    ):
        self.generator = generator
        self.validator = validator
        self.executor = executor
        self.max_attempts = max_attempts or settings.max_sql_attempts
        self._graph = create_retry_graph()

    async def run(self, run: PipelineRun, schema: OntologySchema, mappings: MappingTable) -> RetryOutcome:
        """Drive the state machine to a terminal phase.

        Raises:
            PipelineFailure: every attempt failed; carries the last error
        """
        context = AttemptContext(
            generator=self.generator,
            validator=self.validator,
            executor=self.executor,
            schema=schema,
            mappings=mappings,
        )
        initial: RetryState = {
            "question": run.question,
            "attempt": 0,
            "max_attempts": self.max_attempts,
            "phase": Phase.GENERATING,
            "failed": False,
            "last_error": None,
            "messages": list(run.conversation_history),
        }
        final = await self._graph.ainvoke(
            initial,
            config={
                "configurable": {"run": run, "context": context},
                "recursion_limit": 3 * self.max_attempts + 5,
            },
        )

        history: List[BaseMessage] = list(final.get("messages", []))
        run.conversation_history = history

        attempts = final.get("attempt", 0)
        if final.get("phase") != Phase.SUCCEEDED:
            last_error = final.get("last_error") or "unknown error"
            raise PipelineFailure(
                f"Failed after {attempts} attempts. Last error: {last_error}",
                attempts=attempts,
                last_error=last_error,
            )

        return RetryOutcome(
            plan=final.get("plan") or QueryPlan.placeholder(),
            sql=final["sql"],
            validation=final["validation"],
            execution=final["execution"],
            attempts=attempts,
        )
