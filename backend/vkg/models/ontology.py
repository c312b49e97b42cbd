"""
Ontology and Mapping Models

Pydantic models for the read-only ontology schema and the VKG mapping table
handed over by the ontology store. Accepts both the store's camelCase keys
(sourceTable, joinSQL, objectProperties) and snake_case.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from vkg.core.sql_utils import local_name, qualified_column_references

logger = logging.getLogger(__name__)


class _StoreModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ==================== Ontology Schema ====================

class OntologyClass(_StoreModel):
    """A domain entity type"""

    name: str = ""
    label: Optional[str] = None
    iri: Optional[str] = None
    source_table: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_table", "sourceTable"))

    @property
    def display_name(self) -> str:
        return self.label or self.name or local_name(self.iri) or ""

    @property
    def local_name(self) -> str:
        return local_name(self.iri) or ""


class OntologyProperty(_StoreModel):
    """An attribute (kind=data) or relationship (kind=object)"""

    name: str = ""
    label: Optional[str] = None
    iri: Optional[str] = None
    kind: Literal["data", "object"] = "data"
    domain: List[str] = Field(default_factory=list)
    range: Optional[str] = None
    source_column: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_column", "sourceColumn"))
    source_table: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_table", "sourceTable"))
    join_condition: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("join_condition", "joinCondition", "joinSQL")
    )

    @field_validator("domain", mode="before")
    @classmethod
    def normalize_domain(cls, v: Any) -> List[str]:
        """Store returns a single IRI, a list, or nothing"""
        if v is None or v == "":
            return []
        if isinstance(v, (list, tuple)):
            return [str(d) for d in v if d]
        return [str(v)]

    @field_validator("range", mode="before")
    @classmethod
    def normalize_range(cls, v: Any) -> Optional[str]:
        if isinstance(v, (list, tuple)):
            return str(v[0]) if v else None
        return v

    @property
    def display_name(self) -> str:
        return self.label or self.name or local_name(self.iri) or ""

    @property
    def local_name(self) -> str:
        return local_name(self.iri) or ""

    @property
    def domain_names(self) -> List[str]:
        return [name for name in (local_name(d) for d in self.domain) if name]


class OntologySchema(_StoreModel):
    classes: List[OntologyClass] = Field(default_factory=list)
    object_properties: List[OntologyProperty] = Field(
        default_factory=list, validation_alias=AliasChoices("object_properties", "objectProperties")
    )
    data_properties: List[OntologyProperty] = Field(
        default_factory=list, validation_alias=AliasChoices("data_properties", "dataProperties")
    )

    @field_validator("object_properties", mode="before")
    @classmethod
    def mark_object_kind(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{**item, "kind": "object"} if isinstance(item, dict) else item for item in v]
        return v

    @property
    def property_count(self) -> int:
        return len(self.object_properties) + len(self.data_properties)


# ==================== Mapping Table ====================

class ClassMapping(_StoreModel):
    source_table: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_table", "sourceTable"))
    source_id_column: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("source_id_column", "sourceIdColumn")
    )


class PropertyMapping(_StoreModel):
    source_column: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_column", "sourceColumn"))
    source_table: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_table", "sourceTable"))
    domain: Optional[str] = None
    range: Optional[str] = None


class RelationshipMapping(_StoreModel):
    join_sql: Optional[str] = Field(default=None, validation_alias=AliasChoices("join_sql", "joinSQL"))
    domain: Optional[str] = None
    range: Optional[str] = None


class MappingTable(_StoreModel):
    """Name-keyed maps from ontology elements to source tables, columns and joins"""

    classes: Dict[str, ClassMapping] = Field(default_factory=dict)
    properties: Dict[str, PropertyMapping] = Field(default_factory=dict)
    relationships: Dict[str, RelationshipMapping] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.classes or self.properties or self.relationships)

    def known_tables(self) -> set[str]:
        """Lower-cased source tables of every mapped class and property"""
        tables = {m.source_table.lower() for m in self.classes.values() if m.source_table}
        tables.update(m.source_table.lower() for m in self.properties.values() if m.source_table)
        return tables

    def columns_by_table(self) -> Dict[str, set[str]]:
        """Mapped column names (lower-cased) per source table.

        Properties without a source table are attached to every class table.
        Columns named in relationship JOIN conditions count for their table.
        """
        columns: Dict[str, set[str]] = {}
        for meta in self.classes.values():
            if not meta.source_table:
                continue
            cols = columns.setdefault(meta.source_table.lower(), set())
            if meta.source_id_column:
                cols.add(meta.source_id_column.lower())

        floating = []
        for prop_name, meta in self.properties.items():
            col = (meta.source_column or prop_name).lower()
            if meta.source_table:
                columns.setdefault(meta.source_table.lower(), set()).add(col)
            else:
                floating.append(col)
        for cols in columns.values():
            cols.update(floating)

        for meta in self.relationships.values():
            for table, column in qualified_column_references(meta.join_sql or ""):
                table = table.lower()
                targets = [table] if table in columns else [t for t in columns if t.endswith("." + table)]
                for target in targets:
                    columns[target].add(column.lower())
        return columns


# ==================== Catalog Directory ====================

class CatalogInfo(_StoreModel):
    """A registered federated-engine catalog and the database it exposes"""

    catalog_name: str = Field(validation_alias=AliasChoices("catalog_name", "catalogName"))
    database: Optional[str] = None
    schema_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("schema_name", "schema"))

    @property
    def database_name(self) -> str:
        return self.database or self.schema_name or ""


class ForeignKey(_StoreModel):
    """Introspected foreign key between two fully-qualified tables"""

    from_table: str = Field(validation_alias=AliasChoices("from_table", "fromTable"))
    from_column: str = Field(validation_alias=AliasChoices("from_column", "fromColumn"))
    to_table: str = Field(validation_alias=AliasChoices("to_table", "toTable"))
    to_column: str = Field(validation_alias=AliasChoices("to_column", "toColumn"))
