"""
SQL Validator
Offline checks of generated SQL against the mapping table before execution.

Pure and deterministic: no oracle or engine calls, no state between calls.
"""

import logging
import re
from typing import Dict, List, Optional, Set

from vkg.core.exceptions import ValidationFault
from vkg.core.sql_utils import (
    UNQUALIFIED_REF_RE,
    extract_table_references,
    mask_string_literals,
    split_statements,
    strip_comments,
)
from vkg.models.ontology import MappingTable
from vkg.models.pipeline import ValidationResult

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS_RE = re.compile(
    r"\b(CREATE|DROP|ALTER|TRUNCATE|INSERT|UPDATE|DELETE|GRANT|REVOKE|MERGE)\b", re.IGNORECASE
)
FORBIDDEN_PHRASES = [
    (re.compile(r"\bINTO\s+OUTFILE\b", re.IGNORECASE), "INTO OUTFILE"),
    (re.compile(r"\bLOAD\s+DATA\b", re.IGNORECASE), "LOAD DATA"),
]
_select_start_re = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)
_select_star_re = re.compile(r"\bSELECT\s+(?:DISTINCT\s+)?\*", re.IGNORECASE)
_cte_name_re = re.compile(r"\b(\w+)\s+AS\s*\(", re.IGNORECASE)
# alias.column not part of a longer dotted name
_column_ref_re = re.compile(r"(?<![\w.])([A-Za-z_]\w*)\.([A-Za-z_]\w*)(?![\w.])")


def _has_balanced_parentheses(sql: str) -> bool:
    depth = 0
    for char in sql:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if depth < 0:
            return False
    return depth == 0


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


class SQLValidator:
    """Structural, whitelist and column checks for one SQL candidate."""

    def validate(self, sql: Optional[str], mappings: MappingTable) -> ValidationResult:
        if not sql or not sql.strip():
            return ValidationResult(valid=False, errors=["Empty SQL query"])

        cleaned = strip_comments(sql)
        if not cleaned:
            return ValidationResult(valid=False, errors=["Empty SQL query"])

        errors: List[str] = []
        warnings: List[str] = []

        if cleaned.count("'") % 2:
            errors.append("Unbalanced single quotes in SQL query")
        masked = mask_string_literals(cleaned)
        if masked.count('"') % 2:
            errors.append("Unbalanced double quotes in SQL query")

        if not _select_start_re.match(masked):
            errors.append("Only SELECT queries are allowed. Query must start with SELECT or WITH.")

        for keyword in _dedupe([m.group(1).upper() for m in FORBIDDEN_KEYWORDS_RE.finditer(masked)]):
            errors.append(f"Forbidden SQL operation: {keyword}")
        for pattern, phrase in FORBIDDEN_PHRASES:
            if pattern.search(masked):
                errors.append(f"Forbidden SQL operation: {phrase}")
        if len(split_statements(cleaned)) > 1:
            errors.append("Multiple SQL statements are not allowed")

        if not _has_balanced_parentheses(masked):
            errors.append("Unbalanced parentheses in SQL query")

        table_errors, table_warnings, alias_map = self._check_tables(masked, mappings)
        errors.extend(table_errors)
        warnings.extend(table_warnings)
        errors.extend(self._check_columns(masked, mappings, alias_map))

        if _select_star_re.search(masked):
            warnings.append("SELECT * used: list the needed columns explicitly")
        warnings.extend(self._unqualified_table_warnings(masked))

        result = ValidationResult(valid=not errors, errors=_dedupe(errors), warnings=_dedupe(warnings))
        if not result.valid:
            logger.info(f"SQL validation failed: {result.errors}")
        return result

    def require_valid(self, sql: Optional[str], mappings: MappingTable) -> ValidationResult:
        """validate(), raising ValidationFault when any error is found"""
        result = self.validate(sql, mappings)
        if not result.valid:
            raise ValidationFault(f"SQL validation failed: {'; '.join(result.errors)}", errors=result.errors)
        return result

    def _check_tables(self, masked: str, mappings: MappingTable):
        errors: List[str] = []
        warnings: List[str] = []
        alias_map: Dict[str, str] = {}

        refs = extract_table_references(masked)
        aliases = {alias.lower() for _, alias in refs if alias}
        known = mappings.known_tables()

        for table, alias in refs:
            parts = table.split(".")
            # EXTRACT(YEAR FROM o.created_at) is a column, not a table
            if len(parts) == 2 and parts[0].lower() in aliases:
                continue
            if alias:
                alias_map[alias.lower()] = table.lower()

            if not known:
                if len(parts) == 2:
                    warnings.append(
                        f'Table "{table}" may be missing catalog prefix. Trino requires catalog.schema.table format.'
                    )
                continue

            if table.lower() in known:
                continue
            if len(parts) == 2:
                candidates = sorted(k for k in known if k.endswith("." + table.lower()))
                hint = f" (did you mean {candidates[0]}?)" if candidates else ""
                errors.append(
                    f"Unknown table reference: {table}. Use the fully-qualified catalog.schema.table name{hint}"
                )
            else:
                errors.append(f"Unknown table reference: {table}")

        return errors, warnings, alias_map

    def _check_columns(self, masked: str, mappings: MappingTable, alias_map: Dict[str, str]) -> List[str]:
        if not alias_map:
            return []
        columns_by_table: Dict[str, Set[str]] = mappings.columns_by_table()
        errors = []
        for match in _column_ref_re.finditer(masked):
            alias, column = match.group(1), match.group(2)
            table = alias_map.get(alias.lower())
            if table is None:
                continue
            valid_columns = columns_by_table.get(table)
            if not valid_columns or column.lower() in valid_columns:
                continue
            errors.append(
                f'Column "{alias}.{column}" not found in mapped columns for table {table}. '
                f"Valid columns: {', '.join(sorted(valid_columns))}"
            )
        return errors

    def _unqualified_table_warnings(self, masked: str) -> List[str]:
        cte_names = {m.group(1).lower() for m in _cte_name_re.finditer(masked)}
        warnings = []
        for match in UNQUALIFIED_REF_RE.finditer(masked):
            name = match.group(1)
            if name.lower() in cte_names or masked[match.end():].lstrip().startswith(")"):
                continue
            warnings.append(
                f'Table "{name}" is not qualified. Trino requires catalog.schema.table format.'
            )
        return warnings


sql_validator = SQLValidator()


def validate_sql(sql: Optional[str], mappings: MappingTable) -> ValidationResult:
    return sql_validator.validate(sql, mappings)
