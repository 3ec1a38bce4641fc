"""
Turns human-readable reference columns (company name, contact name, stage
name) into foreign-key identifiers by looking them up in the entity store.

A missing reference is never an error: the name column is dropped and the
identifier stays unset.
"""
import logging
import threading
from typing import Any, Dict, MutableMapping, Optional, Tuple

from crm_import.core.entities import (
    REFERENCE_COMPANY,
    REFERENCE_CONTACT,
    REFERENCE_STAGE,
    get_entity_schema,
)
from crm_import.db.entity_store import EntityStore

logger = logging.getLogger(__name__)

_MISSING = object()


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ReferenceResolver:
    """
    Resolve reference fields row by row.

    With ``cache_enabled`` the resolver remembers every lookup result, hits and
    misses alike, for its own lifetime. One resolver is created per import
    execution and shared by its worker threads.
    """

    def __init__(self, cache_enabled: bool = True):
        self.cache_enabled = cache_enabled
        self._cache: Dict[Tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def _cached(self, kind: str, name: str, lookup):
        if not self.cache_enabled:
            return lookup()
        key = (kind, name.strip().lower())
        with self._lock:
            cached = self._cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        result = lookup()
        with self._lock:
            self._cache[key] = result
        return result

    def _find_contact(self, store: EntityStore, name: str) -> Optional[int]:
        parts = name.split()
        if len(parts) >= 2:
            contact_id = store.find_contact_id_by_name(parts[0], " ".join(parts[1:]))
            if contact_id is not None:
                return contact_id
        return store.find_contact_id_by_email(name)

    def _lookup(self, kind: str, name: str, store: EntityStore):
        if kind == REFERENCE_COMPANY:
            return self._cached(kind, name, lambda: store.find_company_id(name))
        if kind == REFERENCE_CONTACT:
            return self._cached(kind, name, lambda: self._find_contact(store, name))
        if kind == REFERENCE_STAGE:
            return self._cached(kind, name, lambda: store.find_stage(name))
        raise ValueError(f"Unknown reference kind '{kind}'")

    def resolve(self, entity_type: str, row: MutableMapping[str, Any], store: EntityStore) -> MutableMapping[str, Any]:
        """Resolve every reference field of ``row`` in place and return it."""
        schema = get_entity_schema(entity_type)
        if schema is None or not schema.reference_fields:
            return row

        for reference in schema.reference_fields:
            if reference.name_field not in row:
                continue
            name = row.pop(reference.name_field)
            if _is_unset(name) or not _is_unset(row.get(reference.id_field)):
                continue

            name = str(name).strip()
            result = self._lookup(reference.kind, name, store)
            if result is None:
                logger.debug("No %s found for '%s'; leaving %s unset", reference.kind, name, reference.id_field)
                continue

            if reference.kind == REFERENCE_STAGE:
                stage_id, pipeline_id = result
                row[reference.id_field] = stage_id
                if _is_unset(row.get("pipeline_id")):
                    row["pipeline_id"] = pipeline_id
            else:
                row[reference.id_field] = result
        return row


def sanitize_foreign_keys(entity_type: str, row: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Coerce blank, zero or missing foreign-key values to None."""
    schema = get_entity_schema(entity_type)
    if schema is None:
        return row
    for field in schema.foreign_keys:
        value = row.get(field)
        if value is None or value == 0 or (isinstance(value, str) and value.strip() in ("", "0")):
            row[field] = None
    return row
