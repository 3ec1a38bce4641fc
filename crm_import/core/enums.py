"""
Centralized enum values matching the CRM model definitions.

The table is shared by the entity store (validation on create) and the import
pipeline (normalization and dry-run checks), so both always agree on what a
valid value is. It is exposed read-only; callers that need different values
(tests, tenants) pass their own table instead of mutating this one.
"""
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any, Dict, Mapping, MutableMapping, Optional, Sequence

EnumTable = Mapping[str, Mapping[str, Sequence[str]]]

_WHITESPACE_RE = re.compile(r"\s+")


def build_enum_table(raw: Mapping[str, Mapping[str, Sequence[str]]]) -> EnumTable:
    """Freeze a nested ``{entity: {field: values}}`` mapping."""
    return MappingProxyType(
        {
            entity: MappingProxyType({field: tuple(values) for field, values in fields.items()})
            for entity, fields in raw.items()
        }
    )


ENTITY_ENUMS: EnumTable = build_enum_table(
    {
        "contacts": {
            "status": ["active", "inactive", "prospect", "customer", "churned"],
        },
        "leads": {
            "status": ["new", "contacted", "qualified", "unqualified", "converted", "lost"],
        },
        "deals": {
            "status": ["open", "won", "lost"],
            "currency": ["USD", "EUR", "GBP", "INR"],
        },
        "companies": {},
        "tasks": {
            "status": ["pending", "in_progress", "completed", "cancelled"],
            "priority": ["low", "medium", "high", "urgent"],
        },
        "invoices": {
            "status": ["draft", "sent", "paid", "partially_paid", "overdue", "cancelled"],
        },
        "quotes": {
            "status": ["draft", "sent", "accepted", "rejected", "expired"],
        },
        "payments": {
            "payment_method": ["cash", "bank_transfer", "credit_card", "check", "other"],
        },
    }
)


def get_enum_values(
    entity_type: str,
    field: str,
    enum_table: EnumTable = ENTITY_ENUMS,
) -> Optional[Sequence[str]]:
    """Return the valid values for ``entity_type.field`` or None if the field is free-form."""
    return (enum_table.get(entity_type) or {}).get(field)


def canonicalize_enum_token(value: str) -> str:
    """Trim, lowercase and collapse whitespace runs into underscores."""
    return _WHITESPACE_RE.sub("_", value.strip().lower())


def match_enum_value(value: Any, valid_values: Sequence[str]) -> Optional[str]:
    """
    Find the valid value matching ``value`` case-insensitively.

    Returns the valid value in its canonical casing (``"usd"`` -> ``"USD"``),
    or None when nothing matches.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    token = canonicalize_enum_token(value)
    for candidate in valid_values:
        if candidate.lower() == token:
            return candidate
    return None


def normalize_enum_value(
    entity_type: str,
    field: str,
    value: Any,
    enum_table: EnumTable = ENTITY_ENUMS,
) -> Any:
    """
    Normalize one value against the enum table.

    Fields without an enum entry pass through unchanged, and so do values that
    match nothing: rejecting them is the validator's and the store's job.
    """
    valid_values = get_enum_values(entity_type, field, enum_table)
    if not valid_values:
        return value
    matched = match_enum_value(value, valid_values)
    return matched if matched is not None else value


def normalize_enum_fields(
    entity_type: str,
    row: MutableMapping[str, Any],
    enum_table: EnumTable = ENTITY_ENUMS,
) -> MutableMapping[str, Any]:
    """Normalize every enum field present on ``row`` in place and return it."""
    entity_enums: Dict[str, Sequence[str]] = dict(enum_table.get(entity_type) or {})
    for field, valid_values in entity_enums.items():
        value = row.get(field)
        if isinstance(value, str) and value:
            matched = match_enum_value(value, valid_values)
            if matched is not None:
                row[field] = matched
    return row
