"""
Column mapping models and the engine that applies them to CSV rows.

Two wire shapes are accepted:

* legacy: a flat ``{csv column: target field}`` object, where an empty target
  drops the column and unmapped columns pass through under their own name;
* structured: a list of entries (or ``{"mappings": [...]}``) carrying source
  column, target field, confidence and an optional transformation.

``resolve_mapping`` turns either shape into a ``LegacyMapping`` or a
``StructuredMapping`` once; ``apply_mapping`` only ever sees those two.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from crm_import.domain.imports.errors import InvalidMappingError
from crm_import.domain.imports.headers import normalize_key
from crm_import.domain.imports.transformations import apply_transformation

logger = logging.getLogger(__name__)

NOTES_SINK = "__notes__"
TAGS_SINK = "__tags__"
CUSTOM_FIELDS_PREFIX = "custom_fields."
NOTES_HEADER = "--- Imported Data ---"


class MappingEntry(BaseModel):
    source_column: str = Field(validation_alias=AliasChoices("source_column", "csv_column", "csvColumn"))
    target_field: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("target_field", "db_field", "dbField"),
    )
    confidence: float = 0
    transformation: Optional[str] = None

    @field_validator("source_column")
    def normalize_source(cls, value: str) -> str:
        return normalize_key(value)

    @field_validator("target_field", "transformation")
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class LegacyMapping(BaseModel):
    kind: Literal["legacy"] = "legacy"
    columns: Dict[str, Optional[str]] = Field(default_factory=dict)

    @field_validator("columns")
    def normalize_columns(cls, value: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        return {normalize_key(k): (v.strip() if isinstance(v, str) else None) or None for k, v in value.items()}


class StructuredMapping(BaseModel):
    kind: Literal["structured"] = "structured"
    entries: List[MappingEntry] = Field(default_factory=list)


ColumnMapping = Union[LegacyMapping, StructuredMapping]


def _is_legacy_shape(raw: Dict[str, Any]) -> bool:
    return all(isinstance(value, str) or value is None for value in raw.values())


def resolve_mapping(raw: Any) -> Optional[ColumnMapping]:
    """
    Normalize a submitted or stored mapping into one of the two mapping models.

    Returns None when no mapping is given. Raises ``InvalidMappingError`` for
    anything that is neither shape.
    """
    if raw is None:
        return None
    if isinstance(raw, (LegacyMapping, StructuredMapping)):
        return raw

    try:
        if isinstance(raw, list):
            return StructuredMapping(entries=raw)
        if isinstance(raw, dict):
            if isinstance(raw.get("mappings"), list):
                return StructuredMapping(entries=raw["mappings"])
            if _is_legacy_shape(raw):
                return LegacyMapping(columns=raw)
    except ValidationError as exc:
        raise InvalidMappingError(f"Invalid column mapping: {exc.errors()[0].get('msg', exc)}") from exc

    raise InvalidMappingError(
        "Column mapping must be an object of column -> field names or a list of mapping entries"
    )


def dump_mapping(mapping: Optional[ColumnMapping]) -> Any:
    """Serialize a resolved mapping back to a wire shape ``resolve_mapping`` accepts."""
    if mapping is None:
        return None
    if isinstance(mapping, LegacyMapping):
        return {column: target or "" for column, target in mapping.columns.items()}
    return {"mappings": [entry.model_dump() for entry in mapping.entries]}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _apply_legacy(row: Dict[str, Any], mapping: LegacyMapping) -> Dict[str, Any]:
    mapped: Dict[str, Any] = {}
    for column, value in row.items():
        if _is_blank(value):
            continue
        if column in mapping.columns:
            target = mapping.columns[column]
            if not target:
                continue
            mapped[target] = value
        else:
            mapped[column] = value
    return mapped


def _set_custom_field(mapped: Dict[str, Any], path: str, value: Any) -> None:
    keys = [key for key in path.split(".") if key]
    if not keys:
        return
    node = mapped.get("custom_fields")
    if not isinstance(node, dict):
        node = mapped["custom_fields"] = {}
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = node[key] = {}
        node = child
    node[keys[-1]] = value


def _existing_tags(value: Any) -> List[str]:
    if _is_blank(value):
        return []
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _apply_structured(row: Dict[str, Any], mapping: StructuredMapping) -> Dict[str, Any]:
    mapped: Dict[str, Any] = {}
    note_lines: List[str] = []
    tags: List[str] = []

    for entry in mapping.entries:
        target = entry.target_field
        if not target:
            continue
        raw_value = row.get(entry.source_column)
        if _is_blank(raw_value):
            continue
        value = str(raw_value).strip()

        if target == NOTES_SINK:
            note_lines.append(f"{entry.source_column}: {value}")
        elif target == TAGS_SINK:
            tags.append(value)
        elif target.startswith(CUSTOM_FIELDS_PREFIX):
            _set_custom_field(
                mapped,
                target[len(CUSTOM_FIELDS_PREFIX):],
                apply_transformation(entry.transformation, value),
            )
        else:
            mapped[target] = apply_transformation(entry.transformation, value)

    if note_lines:
        block = "\n".join([NOTES_HEADER] + note_lines)
        existing = mapped.get("notes")
        mapped["notes"] = f"{existing}\n\n{block}" if not _is_blank(existing) else block

    if tags:
        mapped["tags"] = _existing_tags(mapped.get("tags")) + tags

    return mapped


def apply_mapping(row: Dict[str, Any], mapping: Optional[ColumnMapping]) -> Dict[str, Any]:
    """
    Map one key-normalized CSV row onto target field names.

    Empty source values never create a field, even for required targets; the
    validator and the entity store decide what a missing value means.
    """
    if mapping is None:
        mapping = LegacyMapping()
    if isinstance(mapping, StructuredMapping):
        return _apply_structured(row, mapping)
    return _apply_legacy(row, mapping)
