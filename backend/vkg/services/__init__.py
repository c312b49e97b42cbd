"""
Pipeline stage services
"""

from vkg.services.answer_synthesizer import AnswerSynthesizer
from vkg.services.context_graph_builder import ContextGraphBuilder, GraphBuildOutcome
from vkg.services.ontology_store import (
    CatalogDirectory,
    InMemoryCatalogDirectory,
    InMemoryOntologyStore,
    OntologyStore,
)
from vkg.services.query_executor import FederatedEngine, QueryExecutor
from vkg.services.schema_context import SchemaContext, SchemaContextLoader
from vkg.services.sql_generator import ParsedPlanSQL, PlanSQLGenerator, RawFallback
from vkg.services.sql_validator import SQLValidator

__all__ = [
    "AnswerSynthesizer",
    "CatalogDirectory",
    "ContextGraphBuilder",
    "FederatedEngine",
    "GraphBuildOutcome",
    "InMemoryCatalogDirectory",
    "InMemoryOntologyStore",
    "OntologyStore",
    "ParsedPlanSQL",
    "PlanSQLGenerator",
    "QueryExecutor",
    "RawFallback",
    "SQLValidator",
    "SchemaContext",
    "SchemaContextLoader",
]
