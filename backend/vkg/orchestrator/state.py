"""
Retry Orchestrator State Definition
"""

from enum import Enum
from typing import Annotated, Optional, Sequence, TypedDict

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages

from vkg.models.pipeline import ExecutionResult, QueryPlan, ValidationResult


class Phase(str, Enum):
    """Retry state machine phases; SUCCEEDED and FAILED are terminal"""

    GENERATING = "generating"
    VALIDATING = "validating"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({Phase.SUCCEEDED, Phase.FAILED})


class RetryState(TypedDict, total=False):
    """State carried between generate/validate/execute nodes.

    `phase` is the phase whose node ran last and `failed` its outcome;
    next_phase() derives the transition from those two fields.
    """

    # Feedback turns from failed attempts (assistant output + correction)
    messages: Annotated[Sequence[BaseMessage], add_messages]

    question: str
    attempt: int
    max_attempts: int
    phase: Phase
    failed: bool
    last_error: Optional[str]

    # Current candidate
    plan: Optional[QueryPlan]
    sql: str
    raw_output: str
    validation: Optional[ValidationResult]
    execution: Optional[ExecutionResult]
