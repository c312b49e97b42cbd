"""
Context Graph Builder

Turns federated result rows into a small, per-request evidence graph and a
human-readable reasoning trace. Deterministic and oracle-free.

Which columns produce nodes is decided by a ColumnClassifier:
- MappingColumnClassifier (default): only what the mapping table states
- NamingPatternClassifier (opt-in): also customer_id -> Customer style names
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, Tuple

from vkg.core.config import settings
from vkg.core.exceptions import GraphBuildFault
from vkg.core.sql_utils import local_name
from vkg.models.ontology import MappingTable, OntologySchema
from vkg.models.pipeline import (
    ColumnMeta,
    ContextGraph,
    GraphEdge,
    GraphNode,
    GraphProvenance,
    GraphStatistics,
    TraceStep,
)

logger = logging.getLogger(__name__)

MAX_NODE_KEY_LENGTH = 50
TRACE_EVIDENCE_LIMIT = 5


@dataclass(frozen=True)
class ColumnRole:
    class_name: str
    kind: Literal["identifier", "attribute"]
    property_label: str
    source_table: str = ""


class ColumnClassifier(Protocol):
    def classify(
        self, columns: Sequence[str], schema: OntologySchema, mappings: MappingTable
    ) -> Dict[str, ColumnRole]: ...


class MappingColumnClassifier:
    """Classify result columns strictly from the mapping table.

    A column equal to a class's source_id_column is that class's identifier;
    a column equal to a mapped property's source_column is an attribute of the
    property's domain class. Identifier columns shared by several classes
    (e.g. plain "id") are ambiguous and omitted.
    """

    def classify(self, columns, schema, mappings) -> Dict[str, ColumnRole]:
        roles: Dict[str, ColumnRole] = {}
        by_lower = {c.lower(): c for c in columns}

        id_owners: Dict[str, List[str]] = {}
        for class_name, meta in mappings.classes.items():
            if meta.source_id_column:
                id_owners.setdefault(meta.source_id_column.lower(), []).append(class_name)
        for id_column, owners in id_owners.items():
            column = by_lower.get(id_column)
            if column is None or len(owners) != 1:
                continue
            class_name = owners[0]
            roles[column] = ColumnRole(
                class_name=class_name,
                kind="identifier",
                property_label=column,
                source_table=mappings.classes[class_name].source_table or "",
            )

        ontology_domains = {
            p.display_name: p.domain_names[0] for p in schema.data_properties if p.domain_names
        }
        for prop_name, meta in mappings.properties.items():
            column = by_lower.get((meta.source_column or prop_name).lower())
            if column is None or column in roles:
                continue
            domain = local_name(meta.domain) or ontology_domains.get(prop_name)
            if not domain:
                continue
            class_meta = mappings.classes.get(domain)
            roles[column] = ColumnRole(
                class_name=domain,
                kind="attribute",
                property_label=prop_name,
                source_table=(class_meta.source_table if class_meta else None) or meta.source_table or "",
            )
        return roles


def _pascal_case(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[_\W]+", name) if part)


class NamingPatternClassifier:
    """Mapping-based classification, then naming heuristics for the rest.

    "<class>_id" becomes an identifier and "<class>_<attr>" an attribute of a
    known ontology/mapped class; any other "<x>_id" yields class X.
    """

    def __init__(self, base: Optional[ColumnClassifier] = None):
        self.base = base or MappingColumnClassifier()

    def classify(self, columns, schema, mappings) -> Dict[str, ColumnRole]:
        roles = self.base.classify(columns, schema, mappings)
        known_classes = {c.lower(): c for c in mappings.classes}
        known_classes.update({c.display_name.lower(): c.display_name for c in schema.classes if c.display_name})

        for column in columns:
            if column in roles:
                continue
            lower = column.lower()
            prefix, _, rest = lower.partition("_")
            class_name = known_classes.get(prefix)
            if lower.endswith("_id"):
                class_name = known_classes.get(lower[:-3]) or _pascal_case(lower[:-3])
                kind = "identifier"
            elif class_name and rest:
                kind = "attribute"
            else:
                continue
            class_meta = mappings.classes.get(class_name)
            roles[column] = ColumnRole(
                class_name=class_name,
                kind=kind,
                property_label=column,
                source_table=(class_meta.source_table if class_meta else None) or "",
            )
        return roles


def get_column_classifier(naming_heuristics: Optional[bool] = None) -> ColumnClassifier:
    if naming_heuristics is None:
        naming_heuristics = settings.graph_naming_heuristics
    return NamingPatternClassifier() if naming_heuristics else MappingColumnClassifier()


@dataclass
class GraphBuildOutcome:
    """Graph and trace, or the empty default plus the captured fault"""

    graph: ContextGraph
    trace: List[TraceStep]
    fault: Optional[GraphBuildFault] = None

    @property
    def ok(self) -> bool:
        return self.fault is None


@dataclass
class _RowEntity:
    key_value: Any = None
    key_is_identifier: bool = False
    properties: Dict[str, Any] = field(default_factory=dict)


def _node_id(class_name: str, value: Any) -> str:
    return f"{class_name}_{str(value)[:MAX_NODE_KEY_LENGTH]}"


def _class_source(roles: Dict[str, ColumnRole], class_name: str) -> str:
    for role in roles.values():
        if role.class_name == class_name and role.source_table:
            return role.source_table
    return ""


def _column_names(columns: Sequence[Any]) -> List[str]:
    names = []
    for column in columns:
        if isinstance(column, ColumnMeta):
            names.append(column.name)
        elif isinstance(column, dict):
            names.append(str(column.get("name", "")))
        else:
            names.append(str(column))
    return names


class ContextGraphBuilder:
    def __init__(self, classifier: Optional[ColumnClassifier] = None):
        self.classifier = classifier or get_column_classifier()

    def _relation_index(self, schema: OntologySchema, mappings: MappingTable) -> Dict[Tuple[str, str], str]:
        """(domain, range) -> relation name, from object properties then relationship mappings"""
        index: Dict[Tuple[str, str], str] = {}
        for prop in schema.object_properties:
            range_name = local_name(prop.range)
            if not range_name:
                continue
            for domain in prop.domain_names:
                index.setdefault((domain, range_name), prop.display_name or "relatedTo")
        for rel_name, meta in mappings.relationships.items():
            domain, range_name = local_name(meta.domain), local_name(meta.range)
            if domain and range_name:
                index.setdefault((domain, range_name), rel_name)
        return index

    def build(
        self,
        rows: Sequence[Sequence[Any]],
        columns: Sequence[Any],
        schema: OntologySchema,
        mappings: MappingTable,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ContextGraph:
        meta = meta or {}
        databases = list(meta.get("databases") or [])
        provenance = GraphProvenance(
            sql=meta.get("sql") or "",
            databases=databases,
            query_mode=meta.get("query_mode") or settings.query_mode,
        )
        if not rows:
            return ContextGraph(statistics=GraphStatistics(databases_queried=databases), provenance=provenance)

        col_names = _column_names(columns)
        roles = self.classifier.classify(col_names, schema, mappings)
        relations = self._relation_index(schema, mappings)

        nodes: Dict[str, GraphNode] = {}
        edges: Dict[Tuple[str, str, str], GraphEdge] = {}

        for row in rows:
            entities: Dict[str, _RowEntity] = {}
            for column, value in zip(col_names, row):
                role = roles.get(column)
                if role is None or value is None:
                    continue
                entity = entities.setdefault(role.class_name, _RowEntity())
                entity.properties[column] = value
                if role.kind == "identifier" and not entity.key_is_identifier:
                    entity.key_value, entity.key_is_identifier = value, True
                elif entity.key_value is None:
                    entity.key_value = value

            row_nodes: Dict[str, str] = {}
            for class_name, entity in entities.items():
                node_id = _node_id(class_name, entity.key_value)
                node = nodes.get(node_id)
                if node is None:
                    node = nodes[node_id] = GraphNode(
                        id=node_id,
                        label=str(entity.key_value)[:MAX_NODE_KEY_LENGTH],
                        class_name=class_name,
                        value=str(entity.key_value),
                        source=_class_source(roles, class_name),
                    )
                node.properties.update(entity.properties)
                row_nodes[class_name] = node_id

            classes = list(row_nodes)
            for i, class_a in enumerate(classes):
                for class_b in classes[i + 1:]:
                    for domain, range_name in ((class_a, class_b), (class_b, class_a)):
                        relation = relations.get((domain, range_name))
                        if relation:
                            key = (row_nodes[domain], row_nodes[range_name], relation)
                            edges.setdefault(key, GraphEdge(source=key[0], target=key[1], type=relation))

        cardinality: Dict[str, int] = {}
        for node in nodes.values():
            cardinality[node.class_name] = cardinality.get(node.class_name, 0) + 1

        return ContextGraph(
            nodes=list(nodes.values()),
            edges=list(edges.values()),
            statistics=GraphStatistics(
                node_count=len(nodes),
                edge_count=len(edges),
                cardinality=cardinality,
                row_count=len(rows),
                databases_queried=databases,
            ),
            provenance=provenance,
        )

    def trace(self, graph: ContextGraph, question: str = "", meta: Optional[Dict[str, Any]] = None) -> List[TraceStep]:
        databases = list((meta or {}).get("databases") or [])
        if graph.is_empty:
            return [TraceStep(step="Query returned no results", sources=databases)]

        stats = graph.statistics
        steps: List[TraceStep] = []

        entity_types = list(stats.cardinality.items())
        if entity_types:
            summary = ", ".join(f"{count} {class_name}(s)" for class_name, count in entity_types)
            steps.append(TraceStep(
                step=f"Identified entities: {summary}",
                evidence=[n.id for n in graph.nodes[:TRACE_EVIDENCE_LIMIT]],
                sources=list(dict.fromkeys(n.source for n in graph.nodes if n.source)),
            ))

        if graph.edges:
            relation_types = list(dict.fromkeys(e.type for e in graph.edges))
            steps.append(TraceStep(
                step=f"Traversed {len(graph.edges)} relationship(s): {', '.join(relation_types)}",
                evidence=[f"{e.source}→{e.target}" for e in graph.edges[:TRACE_EVIDENCE_LIMIT]],
                sources=databases,
            ))

        if len(entity_types) > 1:
            steps.append(TraceStep(
                step=f"Entity traversal path: {' → '.join(t for t, _ in entity_types)}",
                evidence=[t for t, _ in entity_types],
                sources=databases,
            ))

        steps.append(TraceStep(
            step=(
                f"Result: {stats.row_count} row(s) spanning {len(databases)} database(s), "
                f"yielding {stats.node_count} unique entities"
            ),
            evidence=[n.id for n in graph.nodes],
            sources=databases,
        ))
        return steps

    def build_safely(
        self,
        rows: Sequence[Sequence[Any]],
        columns: Sequence[Any],
        schema: OntologySchema,
        mappings: MappingTable,
        meta: Optional[Dict[str, Any]] = None,
        question: str = "",
    ) -> GraphBuildOutcome:
        """Build graph and trace; any internal error yields the empty graph and a captured fault."""
        try:
            graph = self.build(rows, columns, schema, mappings, meta)
            return GraphBuildOutcome(graph=graph, trace=self.trace(graph, question, meta))
        except Exception as e:
            logger.warning(f"Context graph build failed (non-fatal): {e}", exc_info=True)
            graph = ContextGraph.empty()
            return GraphBuildOutcome(
                graph=graph,
                trace=self.trace(graph, question, meta),
                fault=GraphBuildFault(f"Context graph build failed: {e}"),
            )
