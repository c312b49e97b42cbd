"""
Static prompt templates, read once at import and never mutated
"""

from pathlib import Path

PROMPTS_DIR = Path(__file__).parent


def load_prompt(filename: str) -> str:
    return (PROMPTS_DIR / filename).read_text(encoding="utf-8").strip()


PLAN_AND_SQL_GENERATOR_PROMPT = load_prompt("plan_and_sql_generator.md")
ANSWER_GENERATOR_PROMPT = load_prompt("answer_generator.md")
