"""
Query Processor - Main entry point for the VKG query pipeline

Sequences schema loading, the retry orchestrator, graph building and answer
synthesis for one question. Never raises: every failure becomes the error
envelope with query_mode echoed and `error` populated.
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

from vkg.core.config import settings
from vkg.core.exceptions import BaseVKGException
from vkg.core.llm_config import LangChainOracle, ReasoningOracle
from vkg.core.prometheus_metrics import record_pipeline_failure, record_pipeline_success
from vkg.core.schema_cache import create_schema_cache
from vkg.core.sql_utils import extract_databases
from vkg.core.structured_logging import (
    clear_context,
    configure_structured_logging,
    log_pipeline_lifecycle,
    set_run_context,
    set_trace_id,
)
from vkg.core.trino_client import TrinoClient
from vkg.models.pipeline import ContextGraph, ExecutionResult, PipelineRun, StepStatus
from vkg.orchestrator.graph import RetryOrchestrator
from vkg.orchestrator.utils import ANSWER_STEP, GRAPH_STEP, LOAD_STEP, timed_step
from vkg.services.answer_synthesizer import AnswerSynthesizer
from vkg.services.context_graph_builder import ContextGraphBuilder
from vkg.services.ontology_store import CatalogDirectory, OntologyStore
from vkg.services.query_executor import FederatedEngine, QueryExecutor
from vkg.services.schema_context import SchemaContextLoader
from vkg.services.sql_generator import PlanSQLGenerator
from vkg.services.sql_validator import SQLValidator

logger = logging.getLogger(__name__)


def _error_message(error: Exception) -> str:
    if isinstance(error, BaseVKGException):
        return error.message
    return str(error) or type(error).__name__


class VKGQueryPipeline:
    """Answers one natural-language question per query() call."""

    def __init__(
        self,
        loader: SchemaContextLoader,
        oracle: ReasoningOracle,
        engine: FederatedEngine,
        graph_builder: Optional[ContextGraphBuilder] = None,
        validator: Optional[SQLValidator] = None,
        max_attempts: Optional[int] = None,
    ):
        self.loader = loader
        self.engine = engine
        self.retry = RetryOrchestrator(
            generator=PlanSQLGenerator(oracle),
            validator=validator or SQLValidator(),
            executor=QueryExecutor(engine),
            max_attempts=max_attempts,
        )
        self.graph_builder = graph_builder or ContextGraphBuilder()
        self.synthesizer = AnswerSynthesizer(oracle)

    @classmethod
    def from_settings(cls, store: OntologyStore, directory: Optional[CatalogDirectory] = None) -> "VKGQueryPipeline":
        """Production wiring: structured logging, LangChain oracle, Trino REST engine, configured schema cache"""
        configure_structured_logging(log_level=settings.log_level, json_format=settings.log_json)
        loader = SchemaContextLoader(store, directory, create_schema_cache())
        return cls(loader=loader, oracle=LangChainOracle(), engine=TrinoClient())

    async def aclose(self) -> None:
        """Release the engine's connections when it owns any"""
        close = getattr(self.engine, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "VKGQueryPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def query(self, question: str, tenant_id: str, workspace_id: str) -> Dict[str, Any]:
        run = PipelineRun(question=question, tenant_id=tenant_id, workspace_id=workspace_id)
        set_trace_id(str(uuid.uuid4()))
        set_run_context(tenant_id=tenant_id, workspace_id=workspace_id)
        log_pipeline_lifecycle("started", question, {"tenant_id": tenant_id, "workspace_id": workspace_id})

        sql: Optional[str] = None
        execution: Optional[ExecutionResult] = None
        try:
            async with timed_step(run, LOAD_STEP):
                context = await self.loader.load_context(tenant_id, workspace_id)
            run.warnings.extend(context.warnings)

            outcome = await self.retry.run(run, context.schema, context.mappings)
            sql, execution = outcome.sql, outcome.execution
            databases = extract_databases(sql)
            meta = {"sql": sql, "databases": databases, "query_mode": settings.query_mode}

            graph_start = time.perf_counter()
            built = self.graph_builder.build_safely(
                execution.rows, execution.columns, context.schema, context.mappings, meta, question
            )
            run.record_step(
                GRAPH_STEP,
                int((time.perf_counter() - graph_start) * 1000),
                StepStatus.SUCCESS if built.ok else StepStatus.SKIPPED,
                None if built.ok else built.fault.message,
            )

            async with timed_step(run, ANSWER_STEP):
                answer = await self.synthesizer.answer(question, execution, built.graph)

            total_ms = run.total_ms
            self._record_success(run, total_ms, outcome.attempts, execution.row_count)
            log_pipeline_lifecycle("completed", question, {
                "total_ms": total_ms,
                "attempts": outcome.attempts,
                "rows_returned": execution.row_count,
                "databases": databases,
            })

            return {
                "answer": answer,
                "question": question,
                "context_graph": built.graph.model_dump(by_alias=True),
                "reasoning_trace": [step.model_dump() for step in built.trace],
                "citations": {"sql": sql, "databases": databases},
                "execution_stats": {
                    "total_ms": total_ms,
                    "rows_returned": execution.row_count,
                    "databases_queried": len(databases),
                    "trino_execution_ms": execution.duration_ms,
                    "attempts": outcome.attempts,
                },
                "execution_pipeline": {"total_time_ms": total_ms, "steps": run.steps_payload()},
                "query_mode": settings.query_mode,
                "plan": outcome.plan.model_dump(),
                "warnings": [*outcome.validation.warnings, *run.warnings],
            }

        except Exception as e:
            error = _error_message(e)
            logger.error(f"Pipeline failed after {run.total_ms}ms: {error}", exc_info=not isinstance(e, BaseVKGException))
            log_pipeline_lifecycle("error", question, {
                "error": error,
                "error_code": getattr(e, "error_code", "INTERNAL_ERROR"),
            })
            self._record_failure(run, getattr(e, "error_code", "INTERNAL_ERROR"))
            return self.error_response(run, error, sql=sql, execution=execution)

        finally:
            clear_context()

    @staticmethod
    def error_response(
        run: PipelineRun,
        error: str,
        sql: Optional[str] = None,
        execution: Optional[ExecutionResult] = None,
    ) -> Dict[str, Any]:
        """Uniform failure envelope; carries raw results when execution had succeeded."""
        total_ms = run.total_ms
        response: Dict[str, Any] = {
            "answer": f"Query failed: {error}",
            "question": run.question,
            "context_graph": ContextGraph.empty().model_dump(by_alias=True),
            "reasoning_trace": [{"step": f"Error: {error}", "evidence": [], "sources": []}],
            "citations": {},
            "execution_stats": {"total_ms": total_ms, "error": error},
            "execution_pipeline": {"total_time_ms": total_ms, "steps": run.steps_payload()},
            "query_mode": settings.query_mode,
            "error": error,
        }
        if execution is not None:
            response["raw_results"] = {
                "columns": [c.model_dump() for c in execution.columns],
                "rows": execution.rows,
                "row_count": execution.row_count,
            }
            response["citations"] = {"sql": sql, "databases": extract_databases(sql or "")}
        return response

    @staticmethod
    def _record_success(run: PipelineRun, total_ms: int, attempts: int, row_count: int) -> None:
        try:
            record_pipeline_success(run.workspace_id, total_ms / 1000, attempts, row_count)
        except Exception as e:
            # Metrics are non-critical
            logger.debug(f"Pipeline metrics not recorded: {e}")

    @staticmethod
    def _record_failure(run: PipelineRun, error_code: str) -> None:
        try:
            record_pipeline_failure(run.workspace_id, error_code, run.total_ms / 1000)
        except Exception as e:
            logger.debug(f"Pipeline metrics not recorded: {e}")
