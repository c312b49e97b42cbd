"""
SchemaContext Loader

Loads the ontology schema and mapping table for a tenant+workspace through
the schema cache, then:
- resolves 2-part "database.table" sources to 3-part catalog names
- corrects/adds relationship joins from introspected foreign keys
- reports mapped tables missing from the live catalogs (drift)
- filters the schema down to mapped elements
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from vkg.core.schema_cache import SchemaCache, mappings_cache_key, schema_cache_key
from vkg.core.sql_utils import local_name
from vkg.models.ontology import CatalogInfo, ForeignKey, MappingTable, OntologySchema, RelationshipMapping
from vkg.services.ontology_store import CatalogDirectory, OntologyStore

logger = logging.getLogger(__name__)

_join_ref_re = re.compile(r"\b(\w+)\.(\w+)\.(\w+)\b")


@dataclass(frozen=True)
class SchemaContext:
    schema: OntologySchema
    mappings: MappingTable
    warnings: List[str] = field(default_factory=list)


def _catalog_lookup(catalogs: Iterable[CatalogInfo]) -> Dict[str, str]:
    lookup = {}
    for catalog in catalogs:
        db_name = catalog.database_name
        if catalog.catalog_name and db_name:
            lookup[db_name.lower()] = catalog.catalog_name
    return lookup


def resolve_table_names(mappings: MappingTable, catalogs: List[CatalogInfo]) -> MappingTable:
    """Rewrite 2-part source tables to catalog.database.table.

    Returns a deep copy; 3-part and unresolvable names pass through unchanged.
    """
    resolved = mappings.model_copy(deep=True)
    db_to_catalog = _catalog_lookup(catalogs)
    if not db_to_catalog:
        return resolved

    def resolve(source_table: Optional[str]) -> Optional[str]:
        if not source_table:
            return source_table
        parts = source_table.split(".")
        if len(parts) == 2:
            catalog = db_to_catalog.get(parts[0].lower())
            if catalog:
                return f"{catalog}.{source_table}"
        return source_table

    for meta in resolved.classes.values():
        meta.source_table = resolve(meta.source_table)
    for meta in resolved.properties.values():
        meta.source_table = resolve(meta.source_table)

    catalog_names = {c.catalog_name for c in catalogs}

    def rewrite_join_ref(match: re.Match) -> str:
        db, table, column = match.groups()
        if db in catalog_names:
            return match.group(0)
        qualified = resolve(f"{db}.{table}")
        return f"{qualified}.{column}" if qualified != f"{db}.{table}" else match.group(0)

    for meta in resolved.relationships.values():
        if meta.join_sql:
            meta.join_sql = _join_ref_re.sub(rewrite_join_ref, meta.join_sql)

    total = sum(1 for m in resolved.classes.values() if m.source_table)
    qualified = sum(1 for m in resolved.classes.values() if m.source_table and m.source_table.count(".") >= 2)
    logger.info(f"Table name resolution: {qualified}/{total} class tables resolved to 3-part names")
    unresolved = [m.source_table for m in resolved.classes.values() if m.source_table and m.source_table.count(".") < 2]
    if unresolved:
        logger.warning(f"Unresolved source tables (no registered catalog): {unresolved}")
    return resolved


def augment_joins(mappings: MappingTable, foreign_keys: List[ForeignKey]) -> Tuple[int, int]:
    """Apply introspected foreign keys to relationship joins in place.

    Returns (corrected, added) counts.
    """
    if not foreign_keys:
        return 0, 0

    class_to_table = {name: m.source_table for name, m in mappings.classes.items() if m.source_table}
    table_to_class = {table.lower(): name for name, table in class_to_table.items()}
    fk_by_table: Dict[str, List[ForeignKey]] = {}
    for fk in foreign_keys:
        fk_by_table.setdefault(fk.from_table.lower(), []).append(fk)

    def join_for(fk: ForeignKey) -> str:
        return f"{fk.from_table}.{fk.from_column} = {fk.to_table}.{fk.to_column}"

    corrected = 0
    for rel_name, meta in mappings.relationships.items():
        domain_table = class_to_table.get(meta.domain or "")
        range_table = class_to_table.get(meta.range or "")
        if not domain_table or not range_table:
            continue
        match = next(
            (fk for fk in fk_by_table.get(domain_table.lower(), []) if fk.to_table.lower() == range_table.lower()),
            None,
        ) or next(
            (fk for fk in fk_by_table.get(range_table.lower(), []) if fk.to_table.lower() == domain_table.lower()),
            None,
        )
        if match and meta.join_sql != join_for(match):
            logger.info(f"Augmented JOIN for {rel_name}: {meta.join_sql or '(missing)'} -> {join_for(match)}")
            meta.join_sql = join_for(match)
            corrected += 1

    added = 0
    for fk in foreign_keys:
        from_class = table_to_class.get(fk.from_table.lower())
        to_class = table_to_class.get(fk.to_table.lower())
        if not from_class or not to_class:
            continue
        covered = any(
            rel.join_sql and fk.from_column in rel.join_sql and fk.to_column in rel.join_sql
            for rel in mappings.relationships.values()
        )
        if covered:
            continue
        rel_name = f"{from_class}_{re.sub(r'_id$', '', fk.from_column)}"
        mappings.relationships[rel_name] = RelationshipMapping(domain=from_class, range=to_class, join_sql=join_for(fk))
        added += 1

    if corrected or added:
        logger.info(f"JOIN augmentation: {corrected} corrected, {added} new from foreign keys")
    return corrected, added


def filter_schema_by_mappings(schema: OntologySchema, mappings: MappingTable) -> OntologySchema:
    """Keep only mapped classes and properties (or properties of a mapped class).

    An empty mapping table means no VKG mapping exists yet: the schema passes
    through unchanged.
    """
    if mappings.is_empty:
        return schema

    mapped_classes = set(mappings.classes)
    mapped_props = set(mappings.properties)
    mapped_rels = set(mappings.relationships)

    def matches(item, names: set) -> bool:
        label = item.label or item.name or ""
        return label in names or item.local_name in names or item.name in names

    def matches_prop_or_domain(item, names: set) -> bool:
        if matches(item, names):
            return True
        return any(d in mapped_classes for d in item.domain_names)

    filtered = OntologySchema(
        classes=[c for c in schema.classes if matches(c, mapped_classes)],
        object_properties=[p for p in schema.object_properties if matches_prop_or_domain(p, mapped_rels)],
        data_properties=[p for p in schema.data_properties if matches_prop_or_domain(p, mapped_props)],
    )
    logger.info(
        f"Schema filtered to mapped elements: {len(filtered.classes)}/{len(schema.classes)} classes, "
        f"{filtered.property_count}/{schema.property_count} properties"
    )
    return filtered


def referenced_catalogs(mappings: MappingTable) -> List[str]:
    catalogs: List[str] = []
    for meta in mappings.classes.values():
        if meta.source_table and meta.source_table.count(".") >= 2:
            catalog = meta.source_table.split(".")[0]
            if catalog not in catalogs:
                catalogs.append(catalog)
    return catalogs


class SchemaContextLoader:
    """Loads schema + mappings for one run; the cache is the only shared state."""

    def __init__(self, store: OntologyStore, directory: Optional[CatalogDirectory] = None, cache: Optional[SchemaCache] = None):
        self.store = store
        self.directory = directory
        self.cache = cache or SchemaCache()

    async def _load_schema(self, tenant_id: str, workspace_id: str) -> OntologySchema:
        async def fetch():
            schema = await self.store.get_schema(tenant_id, workspace_id)
            return schema.model_dump()

        data = await self.cache.get_or_load(schema_cache_key(tenant_id, workspace_id), fetch)
        return OntologySchema.model_validate(data or {})

    async def _load_mappings(self, tenant_id: str, workspace_id: str) -> MappingTable:
        async def fetch():
            mappings = await self.store.get_mappings(tenant_id, workspace_id)
            return mappings.model_dump()

        data = await self.cache.get_or_load(mappings_cache_key(tenant_id, workspace_id), fetch)
        return MappingTable.model_validate(data or {})

    async def _list_catalogs(self, tenant_id: str) -> List[CatalogInfo]:
        if self.directory is None:
            return []
        try:
            return await self.directory.list_catalogs(tenant_id)
        except Exception as e:
            logger.warning(f"Catalog listing failed, table names left unresolved: {e}")
            return []

    async def _augment_from_directory(self, tenant_id: str, mappings: MappingTable) -> None:
        if self.directory is None:
            return
        catalogs = referenced_catalogs(mappings)
        if not catalogs:
            return
        try:
            results = await asyncio.gather(
                *(self.directory.foreign_keys(tenant_id, c) for c in catalogs), return_exceptions=True
            )
            foreign_keys = [fk for r in results if isinstance(r, list) for fk in r]
            augment_joins(mappings, foreign_keys)
        except Exception as e:
            logger.warning(f"FK augmentation failed (non-blocking): {e}")

    async def _detect_drift(self, tenant_id: str, mappings: MappingTable) -> List[str]:
        if self.directory is None:
            return []
        warnings = []
        for catalog in referenced_catalogs(mappings):
            try:
                live = await self.directory.list_tables(tenant_id, catalog)
            except Exception as e:
                logger.warning(f"Drift check skipped for catalog {catalog}: {e}")
                continue
            if live is None:
                continue
            live_tables = {t.lower() for t in live}
            missing = sorted(
                m.source_table
                for m in mappings.classes.values()
                if m.source_table and m.source_table.split(".")[0] == catalog and m.source_table.lower() not in live_tables
            )
            if missing:
                warnings.append(
                    f"Schema drift: {len(missing)} mapped table(s) not found in catalog '{catalog}': {', '.join(missing)}"
                )
        for warning in warnings:
            logger.warning(warning)
        return warnings

    async def load_context(self, tenant_id: str, workspace_id: str) -> SchemaContext:
        schema, mappings, catalogs = await asyncio.gather(
            self._load_schema(tenant_id, workspace_id),
            self._load_mappings(tenant_id, workspace_id),
            self._list_catalogs(tenant_id),
        )

        resolved = resolve_table_names(mappings, catalogs)
        await self._augment_from_directory(tenant_id, resolved)
        warnings = await self._detect_drift(tenant_id, resolved)
        filtered = filter_schema_by_mappings(schema, resolved)

        logger.info(
            f"Schema context loaded: {len(filtered.classes)} classes, "
            f"{len(resolved.classes)} mapped classes, {len(resolved.relationships)} relationships"
        )
        return SchemaContext(schema=filtered, mappings=resolved, warnings=warnings)

    async def load(self, tenant_id: str, workspace_id: str) -> Tuple[OntologySchema, MappingTable]:
        context = await self.load_context(tenant_id, workspace_id)
        return context.schema, context.mappings
