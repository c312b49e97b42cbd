"""
Retry Orchestrator Routing Logic

next_phase() is the whole transition table of the retry state machine;
the LangGraph conditional edges only translate its result to node names.
build_feedback_messages() is the only place correction turns are written.
"""

import json
import logging
from typing import List, Literal, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from vkg.models.pipeline import QueryPlan
from vkg.orchestrator.state import TERMINAL_PHASES, Phase, RetryState

logger = logging.getLogger(__name__)

FailureKind = Literal["generation", "validation", "execution"]

QUALIFIED_NAMES_REMINDER = (
    "Remember: all table references must use fully-qualified 3-part names "
    "(catalog.schema.table) exactly as shown in the TABLE MAPPINGS."
)


def next_phase(state: RetryState) -> Phase:
    """Pure transition function.

    GENERATING -> VALIDATING on non-empty SQL
    VALIDATING -> EXECUTING when valid
    EXECUTING  -> SUCCEEDED on success
    any failure -> GENERATING while attempts remain, else FAILED
    """
    phase = state.get("phase", Phase.GENERATING)
    if phase in TERMINAL_PHASES:
        return phase

    if not state.get("failed"):
        if phase == Phase.GENERATING and state.get("sql"):
            return Phase.VALIDATING
        if phase == Phase.VALIDATING:
            return Phase.EXECUTING
        if phase == Phase.EXECUTING:
            return Phase.SUCCEEDED

    if state.get("attempt", 0) < state.get("max_attempts", 1):
        return Phase.GENERATING
    return Phase.FAILED


def route_by_phase(state: RetryState) -> Literal["generate", "validate", "execute", "succeeded", "failed"]:
    """Map next_phase() onto graph node names."""
    nxt = next_phase(state)
    if nxt == Phase.GENERATING:
        logger.info(
            f"Retrying with error feedback (attempt {state.get('attempt', 0) + 1}/{state.get('max_attempts')}): "
            f"{state.get('last_error')}"
        )
    return {
        Phase.GENERATING: "generate",
        Phase.VALIDATING: "validate",
        Phase.EXECUTING: "execute",
        Phase.SUCCEEDED: "succeeded",
        Phase.FAILED: "failed",
    }[nxt]


def build_feedback_messages(
    kind: FailureKind,
    reason: str,
    plan: Optional[QueryPlan] = None,
    sql: str = "",
    raw_output: str = "",
) -> List[BaseMessage]:
    """Assistant turn with the rejected candidate followed by a correction request.

    A generation fault that produced no output yields no messages.
    """
    if kind == "generation":
        if not raw_output:
            return []
        return [
            AIMessage(content=raw_output),
            HumanMessage(
                content=(
                    f"Your previous response could not be used: {reason}\n\n"
                    'Return a single JSON object with a "plan" object and a non-empty "sql" string. '
                    f"{QUALIFIED_NAMES_REMINDER}"
                )
            ),
        ]

    candidate = json.dumps({"plan": (plan or QueryPlan.placeholder()).model_dump(), "sql": sql})
    if kind == "validation":
        correction = (
            f"The SQL you generated failed validation: {reason}\n\n"
            "You MUST use ONLY the tables listed in TABLE MAPPINGS and the exact column names from the "
            "SQL COLUMNS section and COLUMN DICTIONARY. Do NOT invent column names from ontology property "
            f"names. Fix the SQL and return corrected JSON. {QUALIFIED_NAMES_REMINDER}"
        )
    else:
        correction = (
            f"The SQL you generated failed on Trino with error: {reason}\n\n"
            f"Please fix the SQL and return the corrected JSON. {QUALIFIED_NAMES_REMINDER}"
        )
    return [AIMessage(content=candidate), HumanMessage(content=correction)]
