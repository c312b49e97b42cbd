"""
Ontology store and catalog directory interfaces

The pipeline only reads from these collaborators. The in-memory adapters back
tests and single-process deployments that load a workspace from JSON.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from vkg.models.ontology import CatalogInfo, ForeignKey, MappingTable, OntologySchema

logger = logging.getLogger(__name__)


class OntologyStore(Protocol):
    async def get_schema(self, tenant_id: str, workspace_id: str) -> OntologySchema: ...

    async def get_mappings(self, tenant_id: str, workspace_id: str) -> MappingTable: ...


class CatalogDirectory(Protocol):
    async def list_catalogs(self, tenant_id: str) -> List[CatalogInfo]: ...

    async def foreign_keys(self, tenant_id: str, catalog: str) -> List[ForeignKey]: ...

    async def list_tables(self, tenant_id: str, catalog: str) -> Optional[List[str]]: ...


class InMemoryOntologyStore:
    """Workspace schemas and mappings held in process memory"""

    def __init__(self):
        self._schemas: Dict[Tuple[str, str], OntologySchema] = {}
        self._mappings: Dict[Tuple[str, str], MappingTable] = {}

    def put(
        self,
        tenant_id: str,
        workspace_id: str,
        schema: Union[OntologySchema, Dict[str, Any]],
        mappings: Union[MappingTable, Dict[str, Any], None] = None,
    ) -> None:
        key = (tenant_id, workspace_id)
        self._schemas[key] = OntologySchema.model_validate(schema)
        self._mappings[key] = MappingTable.model_validate(mappings or {})

    @classmethod
    def from_json_file(cls, path: Union[str, Path], tenant_id: str, workspace_id: str) -> "InMemoryOntologyStore":
        """Load {"schema": {...}, "mappings": {...}} for one workspace"""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls()
        store.put(tenant_id, workspace_id, data.get("schema", {}), data.get("mappings", {}))
        logger.info(f"Loaded ontology workspace {tenant_id}/{workspace_id} from {path}")
        return store

    async def get_schema(self, tenant_id: str, workspace_id: str) -> OntologySchema:
        return self._schemas.get((tenant_id, workspace_id), OntologySchema())

    async def get_mappings(self, tenant_id: str, workspace_id: str) -> MappingTable:
        return self._mappings.get((tenant_id, workspace_id), MappingTable())


class InMemoryCatalogDirectory:
    """Registered catalogs, introspected foreign keys and live table lists per tenant"""

    def __init__(
        self,
        catalogs: Optional[Dict[str, List[Union[CatalogInfo, Dict[str, Any]]]]] = None,
        foreign_keys: Optional[Dict[Tuple[str, str], List[Union[ForeignKey, Dict[str, Any]]]]] = None,
        tables: Optional[Dict[Tuple[str, str], List[str]]] = None,
    ):
        self._catalogs = {
            tenant: [CatalogInfo.model_validate(c) for c in entries]
            for tenant, entries in (catalogs or {}).items()
        }
        self._foreign_keys = {
            key: [ForeignKey.model_validate(fk) for fk in entries]
            for key, entries in (foreign_keys or {}).items()
        }
        self._tables = dict(tables or {})

    async def list_catalogs(self, tenant_id: str) -> List[CatalogInfo]:
        return list(self._catalogs.get(tenant_id, []))

    async def foreign_keys(self, tenant_id: str, catalog: str) -> List[ForeignKey]:
        return list(self._foreign_keys.get((tenant_id, catalog), []))

    async def list_tables(self, tenant_id: str, catalog: str) -> Optional[List[str]]:
        """Fully-qualified live tables, or None when the catalog was never introspected"""
        tables = self._tables.get((tenant_id, catalog))
        return list(tables) if tables is not None else None
