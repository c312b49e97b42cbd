"""
Plan+SQL Generator

One oracle call per attempt: the static instruction block, a rendering of the
filtered ontology and mapping table, the question, then any feedback turns
from earlier failed attempts. The response is parsed once into a tagged
result; bad output never raises.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from vkg.core.config import settings
from vkg.core.exceptions import GenerationFault
from vkg.core.llm_config import ReasoningOracle
from vkg.core.sql_utils import ensure_limit, extract_json, local_name, strip_code_fences
from vkg.models.ontology import MappingTable, OntologyProperty, OntologySchema
from vkg.models.pipeline import QueryPlan
from vkg.prompts import PLAN_AND_SQL_GENERATOR_PROMPT

logger = logging.getLogger(__name__)

NO_ONTOLOGY = "No ontology schema available"
NO_MAPPINGS = "No mappings available"

_XSD_TO_SQL = {
    "string": "varchar",
    "integer": "integer",
    "int": "integer",
    "long": "bigint",
    "bigint": "bigint",
    "decimal": "decimal",
    "float": "real",
    "double": "double",
    "boolean": "boolean",
    "date": "date",
    "datetime": "timestamp",
    "datetype": "timestamp",
    "time": "time",
}


@dataclass(frozen=True)
class ParsedPlanSQL:
    """Oracle returned a JSON object with plan and sql"""

    plan: QueryPlan
    sql: str
    raw: str


@dataclass(frozen=True)
class RawFallback:
    """Oracle output was not JSON; the raw text is taken as the SQL"""

    sql: str
    raw: str

    @property
    def plan(self) -> QueryPlan:
        return QueryPlan(reasoning="Fallback: could not parse combined JSON")


GenerationOutcome = Union[ParsedPlanSQL, RawFallback]


def xsd_to_sql_hint(xsd_type: Optional[str]) -> str:
    """Map an XSD range (IRI or local name) to a SQL type hint, or ''"""
    if not xsd_type:
        return ""
    return _XSD_TO_SQL.get(local_name(xsd_type).lower(), "")


def _finalize_sql(sql: str, row_limit: int) -> str:
    sql = strip_code_fences(sql or "")
    return ensure_limit(sql, row_limit) if sql else ""


def parse_generation(content: str, row_limit: Optional[int] = None) -> GenerationOutcome:
    """Decide once between ParsedPlanSQL and RawFallback."""
    row_limit = row_limit or settings.sql_row_limit
    content = content or ""
    try:
        parsed = json.loads(extract_json(content))
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
    except ValueError as e:
        logger.info(f"JSON parse failed ({e}); using raw oracle text as SQL")
        return RawFallback(sql=_finalize_sql(content, row_limit), raw=content)

    raw_sql = parsed.get("sql") or ""
    if not isinstance(raw_sql, str):
        raw_sql = str(raw_sql)
    try:
        plan = QueryPlan.model_validate(parsed.get("plan") or {"reasoning": "Parsed from combined response"})
    except ValidationError:
        plan = QueryPlan(reasoning="Parsed from combined response")

    sql = _finalize_sql(raw_sql.strip(), row_limit)
    if not sql:
        logger.warning(f"Oracle returned valid JSON but sql is empty. Keys: {', '.join(parsed)}")
    return ParsedPlanSQL(plan=plan, sql=sql, raw=content)


def describe_ontology(schema: OntologySchema) -> str:
    lines: List[str] = []
    if schema.classes:
        lines.append("Classes:")
        lines.extend(f"  - {c.display_name}" for c in schema.classes)
    if schema.object_properties:
        lines.append("Relationships:")
        for p in schema.object_properties:
            domain = ", ".join(p.domain_names) or "?"
            lines.append(f"  - {p.display_name}: {domain} → {local_name(p.range) or '?'}")
    if schema.data_properties:
        lines.append("Properties:")
        for p in schema.data_properties:
            domain = ", ".join(p.domain_names) or "?"
            lines.append(f"  - {p.display_name} ({domain}): {local_name(p.range) or 'string'}")
    return "\n".join(lines) or NO_ONTOLOGY


def _property_lookup(properties: Sequence[OntologyProperty]) -> Dict[str, OntologyProperty]:
    return {p.display_name: p for p in properties if p.display_name}


def describe_mappings(schema: OntologySchema, mappings: MappingTable) -> str:
    """Per mapped table: primary key and SQL columns with type hints; then joins and a column dictionary"""
    if mappings.is_empty:
        return NO_MAPPINGS

    data_props = _property_lookup(schema.data_properties)
    object_props = _property_lookup(schema.object_properties)

    props_by_class: Dict[str, List[tuple]] = {}
    for prop_name, meta in mappings.properties.items():
        onto = data_props.get(prop_name)
        domain = (onto.domain_names[0] if onto and onto.domain_names else None) or meta.domain or "Unknown"
        props_by_class.setdefault(domain, []).append((prop_name, meta, onto))

    lines: List[str] = []
    for class_name, meta in mappings.classes.items():
        lines.append(f"TABLE: {meta.source_table or 'unknown'}  (entity: {class_name})")
        lines.append(f"  PRIMARY KEY: {meta.source_id_column or '?'}")
        props = props_by_class.get(class_name, [])
        if props:
            lines.append("  SQL COLUMNS (use ONLY these exact column names in queries):")
            for prop_name, prop_meta, onto in props:
                column = prop_meta.source_column or prop_name
                hint = xsd_to_sql_hint((onto.range if onto else None) or prop_meta.range)
                type_part = f" ({hint})" if hint else ""
                lines.append(f"    - {column}{type_part}    [ontology: {prop_name}]")
        lines.append("")

    if mappings.relationships:
        lines.append("JOINS (use these exact JOIN conditions):")
        for rel_name, meta in mappings.relationships.items():
            onto = object_props.get(rel_name)
            domain = (onto.domain_names[0] if onto and onto.domain_names else None) or meta.domain or "?"
            range_ = (local_name(onto.range) if onto else None) or meta.range or "?"
            lines.append(f"  {rel_name}: {domain} → {range_} ON {meta.join_sql or '?'}")

    if mappings.properties:
        lines.append("")
        lines.append("COLUMN DICTIONARY (ontology property → actual SQL column):")
        for prop_name, meta in mappings.properties.items():
            column = meta.source_column or prop_name
            if column != prop_name:
                lines.append(f'  {prop_name} → USE "{column}" (NOT "{prop_name}")')
            else:
                lines.append(f'  {prop_name} → "{column}"')

    return "\n".join(lines).strip() or NO_MAPPINGS


def build_generation_messages(
    question: str,
    schema: OntologySchema,
    mappings: MappingTable,
    prior_messages: Sequence[BaseMessage] = (),
) -> List[BaseMessage]:
    ontology_desc = describe_ontology(schema)
    mapping_desc = describe_mappings(schema, mappings)
    if ontology_desc == NO_ONTOLOGY and mapping_desc == NO_MAPPINGS:
        logger.warning("Both ontology and mappings are empty; the oracle has no schema context")

    context = "\n".join([
        "=== ONTOLOGY (classes, properties, relationships) ===",
        ontology_desc,
        "",
        "=== TABLE MAPPINGS (ontology → Trino tables/columns) ===",
        mapping_desc,
    ])
    return [
        SystemMessage(content=PLAN_AND_SQL_GENERATOR_PROMPT),
        HumanMessage(content=f"{context}\n\nQuestion: {question}"),
        *prior_messages,
    ]


class PlanSQLGenerator:
    def __init__(self, oracle: ReasoningOracle):
        self.oracle = oracle

    async def generate(
        self,
        question: str,
        schema: OntologySchema,
        mappings: MappingTable,
        prior_messages: Sequence[BaseMessage] = (),
    ) -> GenerationOutcome:
        """Ask the oracle for a plan and one SQL statement.

        Raises:
            GenerationFault: oracle unreachable or timed out
        """
        messages = build_generation_messages(question, schema, mappings, prior_messages)
        if prior_messages:
            logger.info(f"Retrying generation with {len(prior_messages) // 2} prior error(s) in conversation")

        try:
            async with asyncio.timeout(settings.oracle_timeout_seconds):
                content = await self.oracle.complete(
                    messages,
                    temperature=settings.generation_temperature,
                    max_tokens=settings.generation_max_tokens,
                )
        except TimeoutError as e:
            raise GenerationFault(f"LLM request timed out after {settings.oracle_timeout_seconds}s") from e
        except Exception as e:
            raise GenerationFault(f"LLM request failed: {e}") from e

        logger.debug(f"Oracle raw response ({len(content or '')} chars): {(content or '')[:300]}")
        return parse_generation(content)

