"""
Dry-run validation of an import file against its column mapping.

Reads the file, maps a bounded sample of rows and reports aggregated warnings
and a quality score. Nothing is written and references are not resolved:
a row whose company or stage name matches nothing still counts as valid here
and simply ends up without the foreign key during execution.
"""
import logging
import re
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from crm_import.core.entities import NUMERIC_FIELDS, get_entity_schema
from crm_import.core.enums import ENTITY_ENUMS, EnumTable, match_enum_value, normalize_enum_fields
from crm_import.domain.imports.mapping import ColumnMapping, apply_mapping
from crm_import.processors.csv_processor import MalformedRow, SourceFile, open_row_stream

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")
_MAX_SAMPLE_VALUES = 5

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


class ValidationWarning(BaseModel):
    type: str
    field: str
    severity: str
    message: str
    count: int = 0
    rows: List[int] = Field(default_factory=list)
    sample_values: List[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    total_rows: int
    sampled_rows: int
    valid_rows: int
    error_rows: int
    quality_score: int
    warnings: List[ValidationWarning] = Field(default_factory=list)


class _WarningCollector:
    def __init__(self, row_limit: int):
        self.row_limit = row_limit
        self._warnings: "OrderedDict[Tuple[str, str], ValidationWarning]" = OrderedDict()

    def add(self, warning_type: str, field: str, severity: str, message: str, row_number: int, value: Any = None) -> None:
        key = (warning_type, field)
        warning = self._warnings.get(key)
        if warning is None:
            warning = ValidationWarning(type=warning_type, field=field, severity=severity, message=message)
            self._warnings[key] = warning
        warning.count += 1
        if len(warning.rows) < self.row_limit:
            warning.rows.append(row_number)
        if value is not None:
            text = str(value)
            if text not in warning.sample_values and len(warning.sample_values) < _MAX_SAMPLE_VALUES:
                warning.sample_values.append(text)

    def results(self) -> List[ValidationWarning]:
        return list(self._warnings.values())


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return True
    try:
        float(_NON_NUMERIC_RE.sub("", str(value)))
    except ValueError:
        return False
    return True


def _check_row(
    entity_type: str,
    mapped: Dict[str, Any],
    row_number: int,
    collector: _WarningCollector,
    enum_table: EnumTable,
) -> bool:
    """Record warnings for one mapped row; return True when a required field is missing."""
    schema = get_entity_schema(entity_type)
    has_error = False

    for field in schema.required_fields:
        if _is_blank(mapped.get(field)):
            has_error = True
            collector.add(
                "missing_required", field, SEVERITY_ERROR,
                f"Required field '{field}' is missing", row_number,
            )

    for field, valid_values in (enum_table.get(entity_type) or {}).items():
        value = mapped.get(field)
        if _is_blank(value):
            continue
        if match_enum_value(value, valid_values) is None:
            collector.add(
                "invalid_enum", field, SEVERITY_WARNING,
                f"'{field}' must be one of: {', '.join(valid_values)}", row_number, value,
            )

    email = mapped.get("email")
    if not _is_blank(email) and not _EMAIL_RE.match(str(email).strip()):
        collector.add(
            "invalid_email", "email", SEVERITY_WARNING,
            "Email address does not look valid", row_number, email,
        )

    for field in NUMERIC_FIELDS:
        value = mapped.get(field)
        if _is_blank(value):
            continue
        if not _is_number(value):
            collector.add(
                "invalid_number", field, SEVERITY_WARNING,
                f"'{field}' is not a number", row_number, value,
            )

    return has_error


def validate_source(
    source: SourceFile,
    entity_type: str,
    mapping: Optional[ColumnMapping],
    *,
    enum_table: EnumTable = ENTITY_ENUMS,
    sample_rows: int = 100,
    warning_row_limit: int = 10,
    chunk_size: int = 500,
) -> ValidationReport:
    """
    Map the first ``sample_rows`` rows of ``source`` and report problems.

    Every row is counted toward ``total_rows``; only the sample is analysed.
    """
    collector = _WarningCollector(warning_row_limit)
    total_rows = 0
    sampled_rows = 0
    error_rows = 0

    with open_row_stream(source, chunk_size=chunk_size) as rows:
        for row_number, row in enumerate(rows, start=1):
            total_rows += 1
            if sampled_rows >= sample_rows:
                continue
            sampled_rows += 1
            if isinstance(row, MalformedRow):
                error_rows += 1
                collector.add(
                    "malformed_row", "*", SEVERITY_ERROR,
                    "Row has more fields than the header", row_number, row.overflow,
                )
                continue
            mapped = normalize_enum_fields(entity_type, apply_mapping(row, mapping), enum_table)
            if _check_row(entity_type, mapped, row_number, collector, enum_table):
                error_rows += 1

    valid_rows = sampled_rows - error_rows
    quality_score = round(valid_rows / sampled_rows * 100) if sampled_rows else 0
    report = ValidationReport(
        total_rows=total_rows,
        sampled_rows=sampled_rows,
        valid_rows=valid_rows,
        error_rows=error_rows,
        quality_score=quality_score,
        warnings=collector.results(),
    )
    logger.info(
        "Validated %s sample: %d/%d rows valid (score %d), %d warning group(s), %d total rows",
        entity_type, valid_rows, sampled_rows, quality_score, len(report.warnings), total_rows,
    )
    return report
