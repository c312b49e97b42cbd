"""
Answer Synthesizer
Turns a row sample and graph statistics into a natural-language answer.
"""

import asyncio
import logging
from typing import List

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from vkg.core.config import settings
from vkg.core.exceptions import AnswerFault
from vkg.core.llm_config import ReasoningOracle
from vkg.core.prompt_sanitizer import sanitize_rows, sanitize_value
from vkg.models.pipeline import ContextGraph, ExecutionResult
from vkg.prompts import ANSWER_GENERATOR_PROMPT

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "No results found for this query."


def summarize_results(execution: ExecutionResult, sample_rows: int) -> str:
    columns = execution.column_names
    return "\n".join([
        f"Columns: {', '.join(sanitize_value(c, 100) for c in columns)}",
        f"Total rows: {execution.row_count}",
        "",
        "Sample data:",
        *sanitize_rows(columns, execution.rows, sample_rows),
    ])


def build_answer_messages(question: str, execution: ExecutionResult, graph: ContextGraph) -> List[BaseMessage]:
    summary = summarize_results(execution, settings.answer_sample_rows)
    stats = graph.statistics
    return [
        SystemMessage(content=ANSWER_GENERATOR_PROMPT),
        HumanMessage(
            content=(
                f"Question: {question}\n\n"
                f"Query Results:\n{summary}\n\n"
                f"Graph: {stats.node_count} entities, {stats.edge_count} relationships\n\n"
                "Generate a conversational answer:"
            )
        ),
    ]


class AnswerSynthesizer:
    def __init__(self, oracle: ReasoningOracle):
        self.oracle = oracle

    async def answer(self, question: str, execution: ExecutionResult, graph: ContextGraph) -> str:
        """Empty results short-circuit without an oracle call; oracle failures raise AnswerFault."""
        if execution.row_count == 0:
            return NO_RESULTS_ANSWER

        messages = build_answer_messages(question, execution, graph)
        try:
            async with asyncio.timeout(settings.oracle_timeout_seconds):
                content = await self.oracle.complete(
                    messages,
                    temperature=settings.answer_temperature,
                    max_tokens=settings.answer_max_tokens,
                )
        except TimeoutError as e:
            raise AnswerFault(f"Answer generation timed out after {settings.oracle_timeout_seconds}s") from e
        except Exception as e:
            raise AnswerFault(f"Answer generation failed: {e}") from e
        return (content or "").strip()
