"""
Pipeline Models

Per-attempt and per-run value objects: plan, validation and execution results,
the context graph and reasoning trace, and the transient PipelineRun audit.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from langchain_core.messages import BaseMessage
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class QueryPlan(BaseModel):
    """Advisory description of the generator's intent; never executed"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    entities: List[str] = Field(default_factory=list)
    single_hop: bool = Field(default=True, validation_alias=AliasChoices("single_hop", "singleHop"))
    aggregation: Optional[str] = None
    reasoning: str = ""

    @field_validator("entities", mode="before")
    @classmethod
    def coerce_entities(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(e) for e in v]

    @field_validator("aggregation", mode="before")
    @classmethod
    def coerce_aggregation(cls, v: Any) -> Optional[str]:
        if v in (None, "", False, "none", "None"):
            return None
        return str(v)

    @classmethod
    def placeholder(cls) -> "QueryPlan":
        return cls(reasoning="Direct SQL generation")


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ColumnMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "unknown"


class ExecutionResult(BaseModel):
    """Immutable snapshot of one successful federated execution"""

    model_config = ConfigDict(frozen=True)

    columns: List[ColumnMeta] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)
    row_count: int = 0
    duration_ms: int = 0

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


# ==================== Context Graph ====================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GraphNode(_CamelModel):
    id: str
    label: str
    class_name: str = Field(alias="class")
    value: Any = None
    source: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class GraphEdge(_CamelModel):
    source: str
    target: str
    type: str


class GraphStatistics(_CamelModel):
    node_count: int = Field(default=0, alias="nodeCount")
    edge_count: int = Field(default=0, alias="edgeCount")
    cardinality: Dict[str, int] = Field(default_factory=dict)
    row_count: int = Field(default=0, alias="rowCount")
    databases_queried: List[str] = Field(default_factory=list, alias="databasesQueried")


class GraphProvenance(_CamelModel):
    sql: Optional[str] = None
    databases: List[str] = Field(default_factory=list)
    query_mode: str = Field(default="vkg_federated", alias="queryMode")


class ContextGraph(_CamelModel):
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
    statistics: GraphStatistics = Field(default_factory=GraphStatistics)
    provenance: GraphProvenance = Field(default_factory=GraphProvenance)

    @classmethod
    def empty(cls) -> "ContextGraph":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.nodes


class TraceStep(BaseModel):
    step: str
    evidence: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)


# ==================== Pipeline Audit ====================

class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStep(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str
    duration_ms: int = 0
    status: StepStatus = StepStatus.SUCCESS
    error: Optional[str] = None


class PipelineRun(BaseModel):
    """Transient audit trail for one question, owned by one task and then discarded"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    question: str
    tenant_id: str
    workspace_id: str
    steps: List[PipelineStep] = Field(default_factory=list)
    conversation_history: List[BaseMessage] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = Field(default_factory=time.perf_counter, exclude=True)

    @property
    def total_ms(self) -> int:
        return int((time.perf_counter() - self.started_monotonic) * 1000)

    def record_step(
        self,
        name: str,
        duration_ms: int,
        status: Literal["success", "failed", "skipped"] | StepStatus = StepStatus.SUCCESS,
        error: Optional[str] = None,
    ) -> PipelineStep:
        step = PipelineStep(name=name, duration_ms=duration_ms, status=status, error=error)
        self.steps.append(step)
        return step

    def steps_named(self, prefix: str) -> List[PipelineStep]:
        return [s for s in self.steps if s.name.startswith(prefix)]

    def steps_payload(self) -> List[Dict[str, Any]]:
        return [
            {k: v for k, v in s.model_dump().items() if not (k == "error" and v is None)}
            for s in self.steps
        ]
