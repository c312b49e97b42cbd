"""
SQL Utilities
- Code fence / JSON extraction from oracle output
- Row limiting
- Table reference and catalog extraction
"""
from __future__ import annotations

import re

import sqlparse

_code_fence_re = re.compile(r"```(?:sql|json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_json_fence_re = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_limit_re = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_trailing_semicolon_re = re.compile(r";?\s*$")

# FROM/JOIN followed by a dotted name (2 or 3 parts), optional alias
TABLE_REF_RE = re.compile(
    r"\b(?:FROM|JOIN)\s+((?:\"?\w+\"?\.){1,2}\"?\w+\"?)(?:\s+(?:AS\s+)?(\w+))?",
    re.IGNORECASE,
)
# ", catalog.schema.table alias" continuing a comma-separated FROM list
_LIST_REF_RE = re.compile(
    r"\s*,\s*((?:\"?\w+\"?\.){1,2}\"?\w+\"?)(?:\s+(?:AS\s+)?(\w+))?",
    re.IGNORECASE,
)
UNQUALIFIED_REF_RE = re.compile(r"\b(?:FROM|JOIN)\s+(\w+)\b(?!\s*\.)(?!\s*\()", re.IGNORECASE)
_three_part_re = re.compile(r"\b(\w+)\.(\w+)\.(\w+)\b")
_column_path_re = re.compile(r"(?<![\w.])((?:\w+\.){1,3})(\w+)(?![\w.])")

ALIAS_STOPWORDS = {
    "ON", "WHERE", "LEFT", "RIGHT", "INNER", "OUTER", "CROSS", "FULL", "JOIN",
    "GROUP", "ORDER", "HAVING", "LIMIT", "UNION", "USING", "NATURAL",
}


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the stripped text."""
    if not text:
        return ""
    cleaned = text.strip()
    match = _code_fence_re.search(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def extract_json(content: str) -> str:
    """Trim fences and leading prose so the remainder starts at the first '{'."""
    cleaned = (content or "").strip()
    match = _json_fence_re.search(cleaned)
    if match:
        cleaned = match.group(1).strip()
    first = cleaned.find("{")
    if first > 0:
        cleaned = cleaned[first:]
    last = cleaned.rfind("}")
    if last != -1 and last < len(cleaned) - 1:
        cleaned = cleaned[: last + 1]
    return cleaned


def _has_outer_limit(sql: str) -> bool:
    """LIMIT at parenthesis depth 0, ignoring comments and string literals"""
    masked = mask_string_literals(strip_comments(sql))
    for match in _limit_re.finditer(masked):
        prefix = masked[: match.start()]
        if prefix.count("(") == prefix.count(")"):
            return True
    return False


def ensure_limit(sql: str, limit: int) -> str:
    """Append LIMIT when the outermost statement has no row-limiting clause."""
    if not sql or _has_outer_limit(sql):
        return sql
    return _trailing_semicolon_re.sub("", sql) + f"\nLIMIT {limit}"


def strip_comments(sql: str) -> str:
    return sqlparse.format(sql, strip_comments=True).strip()


def mask_string_literals(sql: str) -> str:
    """Blank out quoted literals so keywords inside them are ignored."""
    return re.sub(r"'(?:[^']|'')*'", "''", sql)


def split_statements(sql: str) -> list[str]:
    return [stmt for stmt in sqlparse.split(sql) if stmt.strip().strip(";").strip()]


def extract_table_references(sql: str) -> list[tuple[str, str | None]]:
    """(qualified table, alias) pairs for every FROM/JOIN reference, in order."""
    refs = []

    def add(match: re.Match) -> None:
        table = match.group(1).replace('"', "")
        alias = match.group(2)
        if alias and alias.upper() in ALIAS_STOPWORDS:
            alias = None
        refs.append((table, alias))

    for match in TABLE_REF_RE.finditer(sql):
        add(match)
        pos = match.end()
        while (item := _LIST_REF_RE.match(sql, pos)) is not None:
            add(item)
            pos = item.end()
    return refs


def extract_databases(sql: str) -> list[str]:
    """Distinct catalogs (first part of every 3-part name), in order of appearance."""
    seen: list[str] = []
    for match in _three_part_re.finditer(sql or ""):
        catalog = match.group(1)
        if catalog not in seen:
            seen.append(catalog)
    return seen


def local_name(value) -> str | None:
    """Tail of an IRI after '#' or '/', or the value itself; first element of lists."""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if not value:
        return None
    s = str(value)
    if "/" in s or "#" in s:
        return re.split(r"[#/]", s)[-1]
    return s


def qualified_column_references(sql: str) -> list[tuple[str, str]]:
    """(table, column) for every dotted column path such as catalog.schema.table.column"""
    refs = []
    for match in _column_path_re.finditer((sql or "").replace('"', "")):
        refs.append((match.group(1).rstrip("."), match.group(2)))
    return refs
