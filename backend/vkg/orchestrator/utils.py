"""
Shared utilities for pipeline stages
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from vkg.core.prometheus_metrics import record_step
from vkg.models.pipeline import PipelineRun, StepStatus

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("vkg.pipeline")

GENERATION_STEP = "LLM Plan+SQL Generation"
VALIDATION_STEP = "SQL Validation"
EXECUTION_STEP = "Federated Execution"
LOAD_STEP = "Load Ontology + Mappings"
GRAPH_STEP = "Context Graph + Trace"
ANSWER_STEP = "LLM Answer Generation"


def step_name(base: str, attempt: int, max_attempts: int) -> str:
    """Attempt-suffixed step name; the first attempt carries no suffix."""
    if max_attempts > 1 and attempt > 1:
        return f"{base} (attempt {attempt}/{max_attempts})"
    return base


class StepHandle:
    """Lets a step body mark itself failed without raising."""

    def __init__(self, name: str):
        self.name = name
        self.status = StepStatus.SUCCESS
        self.error: Optional[str] = None

    def fail(self, error: str) -> None:
        self.status = StepStatus.FAILED
        self.error = error


@asynccontextmanager
async def timed_step(run: PipelineRun, name: str) -> AsyncIterator[StepHandle]:
    """Time a pipeline step into run.steps (and an OpenTelemetry span).

    An exception escaping the body records the step as failed and propagates.
    """
    handle = StepHandle(name)
    start = time.perf_counter()
    with tracer.start_as_current_span(f"vkg.{name}") as span:
        span.set_attribute("vkg.step", name)
        try:
            yield handle
        except Exception as e:
            duration = time.perf_counter() - start
            message = getattr(e, "message", None) or str(e)
            run.record_step(name, int(duration * 1000), StepStatus.FAILED, message)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, message))
            _record_metric(name, StepStatus.FAILED, duration)
            raise

        duration = time.perf_counter() - start
        run.record_step(name, int(duration * 1000), handle.status, handle.error)
        if handle.status == StepStatus.FAILED:
            span.set_status(Status(StatusCode.ERROR, handle.error or ""))
        _record_metric(name, handle.status, duration)


def _record_metric(name: str, status: StepStatus, duration_seconds: float) -> None:
    try:
        record_step(name, status.value, duration_seconds)
    except Exception as e:
        # Metrics are non-critical
        logger.debug(f"Step metric not recorded: {e}")
