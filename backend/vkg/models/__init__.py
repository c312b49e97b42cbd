"""
Data models for the VKG query pipeline
"""

from vkg.models.ontology import (
    CatalogInfo,
    ClassMapping,
    ForeignKey,
    MappingTable,
    OntologyClass,
    OntologyProperty,
    OntologySchema,
    PropertyMapping,
    RelationshipMapping,
)
from vkg.models.pipeline import (
    ColumnMeta,
    ContextGraph,
    ExecutionResult,
    GraphEdge,
    GraphNode,
    GraphStatistics,
    PipelineRun,
    PipelineStep,
    QueryPlan,
    StepStatus,
    TraceStep,
    ValidationResult,
)

__all__ = [
    "CatalogInfo",
    "ClassMapping",
    "ColumnMeta",
    "ContextGraph",
    "ExecutionResult",
    "ForeignKey",
    "GraphEdge",
    "GraphNode",
    "GraphStatistics",
    "MappingTable",
    "OntologyClass",
    "OntologyProperty",
    "OntologySchema",
    "PipelineRun",
    "PipelineStep",
    "PropertyMapping",
    "QueryPlan",
    "RelationshipMapping",
    "StepStatus",
    "TraceStep",
    "ValidationResult",
]
