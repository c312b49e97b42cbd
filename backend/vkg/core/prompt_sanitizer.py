"""
Prompt value sanitization

Result cells and column names come from user-controlled source databases and
are interpolated into oracle prompts; neutralize injection phrases and cap
their length before they get there.
"""

import re
from typing import Any, List, Sequence

MAX_VALUE_LENGTH = 200

INJECTION_PATTERNS = [
    r"ignore\s+(all\s+)?previous\s+instructions",
    r"ignore\s+all\s+instructions",
    r"disregard\s+(all\s+)?(above|previous)",
    r"forget\s+(everything|all)",
    r"new\s+instructions:",
    r"system\s+prompt:",
    r"override\s+(the\s+)?instructions",
    r"you\s+are\s+now",
    r"\[INST\]",
    r"<<SYS>>",
]

_injection_regex = [re.compile(p, re.IGNORECASE) for p in INJECTION_PATTERNS]
_ZERO_WIDTH_SPACE = "\u200b"


def sanitize_value(value: Any, max_len: int = MAX_VALUE_LENGTH) -> str:
    if value is None:
        return "NULL"
    text = str(value).replace("\x00", "")
    if len(text) > max_len:
        text = text[:max_len] + "..."
    text = text.replace("```", "'''")
    for pattern in _injection_regex:
        text = pattern.sub(lambda m: _ZERO_WIDTH_SPACE.join(m.group(0)), text)
    return text


def sanitize_row(columns: Sequence[str], row: Sequence[Any], max_len: int = MAX_VALUE_LENGTH) -> str:
    """Render one row as 'col=value, ...'"""
    return ", ".join(f"{sanitize_value(col, 100)}={sanitize_value(val, max_len)}" for col, val in zip(columns, row))


def sanitize_rows(columns: Sequence[str], rows: Sequence[Sequence[Any]], max_rows: int) -> List[str]:
    return [sanitize_row(columns, row) for row in rows[:max_rows]]
