"""
Create and lookup operations over the CRM records the importer writes.

The store wraps a single session. ``create`` is the one place type coercion
and business rules are enforced, so an import row ends up exactly as valid as
a record created by hand.
"""
import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import JSON, Boolean, Date, Integer, Numeric, String, func
from sqlalchemy.orm import Session

from crm_import.core.entities import ENTITY_TYPES, get_entity_schema
from crm_import.core.enums import ENTITY_ENUMS, EnumTable, match_enum_value
from crm_import.db.models import ENTITY_MODELS, Company, Contact, Pipeline, PipelineStage
from crm_import.domain.imports.errors import InvalidEntityTypeError, RecordValidationError
from crm_import.utils.date import parse_calendar_date

logger = logging.getLogger(__name__)

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")
_PROTECTED_COLUMNS = {"id", "created_at", "updated_at"}
_TRUE_VALUES = {"true", "yes", "y", "1", "t"}
_FALSE_VALUES = {"false", "no", "n", "0", "f"}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_float(field: str, value: Any) -> float:
    if isinstance(value, bool):
        raise RecordValidationError(f"{field} must be a number", field)
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    try:
        return float(cleaned)
    except ValueError:
        raise RecordValidationError(f"{field} must be a number, got '{value}'", field) from None


class EntityStore:
    def __init__(self, session: Session, enum_table: EnumTable = ENTITY_ENUMS):
        self.session = session
        self.enum_table = enum_table

    # ------------------------------------------------------------------ create

    def _coerce(self, field: str, column, value: Any) -> Any:
        column_type = column.type

        if isinstance(column_type, JSON):
            if _is_blank(value):
                return None
            if isinstance(value, (list, dict)):
                return value
            if field == "tags" and isinstance(value, str):
                return [tag.strip() for tag in value.split(",") if tag.strip()]
            raise RecordValidationError(f"{field} must be structured data", field)

        if _is_blank(value):
            return None

        if isinstance(column_type, Boolean):
            if isinstance(value, bool):
                return value
            token = str(value).strip().lower()
            if token in _TRUE_VALUES:
                return True
            if token in _FALSE_VALUES:
                return False
            raise RecordValidationError(f"{field} must be true or false, got '{value}'", field)

        if isinstance(column_type, Integer):
            return int(_to_float(field, value))

        if isinstance(column_type, Numeric):
            return _to_float(field, value)

        if isinstance(column_type, Date):
            parsed = parse_calendar_date(value)
            if parsed is None:
                raise RecordValidationError(f"{field} is not a valid date: '{value}'", field)
            return parsed

        if isinstance(column_type, String):
            text = str(value).strip()
            if column_type.length and len(text) > column_type.length:
                raise RecordValidationError(
                    f"{field} exceeds {column_type.length} characters", field
                )
            return text

        return value

    def _check_rules(self, entity_type: str, data: Dict[str, Any]) -> None:
        schema = get_entity_schema(entity_type)

        for field in schema.required_fields:
            if _is_blank(data.get(field)):
                raise RecordValidationError(f"{field} is required", field)

        for field, valid_values in (self.enum_table.get(entity_type) or {}).items():
            value = data.get(field)
            if value is None:
                continue
            matched = match_enum_value(value, valid_values)
            if matched is None:
                raise RecordValidationError(
                    f"Invalid {field} '{value}'; expected one of: {', '.join(valid_values)}", field
                )
            data[field] = matched

        for field, (lower, upper) in schema.bounded_fields.items():
            value = data.get(field)
            if value is not None and not lower <= value <= upper:
                raise RecordValidationError(f"{field} must be between {lower} and {upper}", field)

    def create(self, entity_type: str, values: Mapping[str, Any]):
        """Insert one record of ``entity_type`` and flush it; raises ``RecordValidationError``."""
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            raise InvalidEntityTypeError(entity_type, ENTITY_TYPES)

        columns = {column.name: column for column in model.__table__.columns}
        data: Dict[str, Any] = {}
        for field, value in values.items():
            column = columns.get(field)
            if column is None or field in _PROTECTED_COLUMNS:
                logger.debug("Dropping unknown %s field '%s'", entity_type, field)
                continue
            data[field] = self._coerce(field, column, value)

        # Let column defaults apply instead of inserting explicit NULLs
        data = {field: value for field, value in data.items() if value is not None}
        self._check_rules(entity_type, data)

        record = model(**data)
        self.session.add(record)
        self.session.flush()
        return record

    # ----------------------------------------------------------------- lookups

    def find_company_id(self, name: str) -> Optional[int]:
        row = (
            self.session.query(Company.id)
            .filter(func.lower(Company.name) == name.strip().lower())
            .order_by(Company.id)
            .first()
        )
        return row[0] if row else None

    def find_contact_id_by_name(self, first_name: str, last_name: str) -> Optional[int]:
        row = (
            self.session.query(Contact.id)
            .filter(
                func.lower(Contact.first_name) == first_name.strip().lower(),
                func.lower(Contact.last_name) == last_name.strip().lower(),
            )
            .order_by(Contact.id)
            .first()
        )
        return row[0] if row else None

    def find_contact_id_by_email(self, email: str) -> Optional[int]:
        row = (
            self.session.query(Contact.id)
            .filter(func.lower(Contact.email) == email.strip().lower())
            .order_by(Contact.id)
            .first()
        )
        return row[0] if row else None

    def find_stage(self, name: str) -> Optional[Tuple[int, int]]:
        """Return ``(stage_id, pipeline_id)``; the default pipeline wins on duplicate names."""
        row = (
            self.session.query(PipelineStage.id, PipelineStage.pipeline_id)
            .join(Pipeline, Pipeline.id == PipelineStage.pipeline_id)
            .filter(func.lower(PipelineStage.name) == name.strip().lower())
            .order_by(Pipeline.is_default.desc(), PipelineStage.id)
            .first()
        )
        return (row[0], row[1]) if row else None
