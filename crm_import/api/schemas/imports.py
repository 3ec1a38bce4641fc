from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from crm_import.domain.imports.validation import ValidationReport


class ImportJobInfo(BaseModel):
    """Metadata and counters of one import job."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_type: str
    filename: str
    status: str
    total_rows: int = 0
    processed_rows: int = 0
    success_count: int = 0
    error_count: int = 0
    column_mapping: Optional[Any] = None
    error_log: Optional[List[Dict[str, Any]]] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportJobResponse(BaseModel):
    """Response wrapper for a single import job."""
    success: bool
    job: ImportJobInfo


class ImportJobListResponse(BaseModel):
    """Response wrapper for a page of import jobs."""
    success: bool
    jobs: List[ImportJobInfo]
    total_count: int
    page: int
    limit: int


class PreviewResponse(BaseModel):
    success: bool
    headers: List[str]
    rows: List[Dict[str, Any]]


class ValidationResponse(BaseModel):
    success: bool
    report: ValidationReport


class MappingRequest(BaseModel):
    # Legacy {column: field} object or structured list / {"mappings": [...]}
    column_mapping: Any


class EntityTypeRequest(BaseModel):
    entity_type: str
