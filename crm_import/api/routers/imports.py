"""
Endpoints for the CSV import pipeline: templates, uploads, preview, mapping,
validation and execution of import jobs.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response

from crm_import.api.dependencies import get_import_service, get_storage
from crm_import.api.schemas.imports import (
    EntityTypeRequest,
    ImportJobInfo,
    ImportJobListResponse,
    ImportJobResponse,
    MappingRequest,
    PreviewResponse,
    ValidationResponse,
)
from crm_import.domain.imports.errors import ImportJobNotFoundError, ImportPipelineError
from crm_import.domain.imports.service import ImportService, UploadedFile
from crm_import.integrations.storage import LocalFileStorage, StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/imports", tags=["imports"])


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ImportJobNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _job_response(job) -> ImportJobResponse:
    return ImportJobResponse(success=True, job=ImportJobInfo.model_validate(job))


@router.get("/template/{entity_type}")
def download_template(entity_type: str, service: ImportService = Depends(get_import_service)):
    try:
        content = service.get_template(entity_type)
    except ImportPipelineError as exc:
        raise _to_http_error(exc)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{entity_type}_template.csv"'},
    )


@router.post("/upload", response_model=ImportJobResponse)
async def upload_import_file(
    file: UploadFile = File(...),
    entity_type: str = Form(...),
    created_by: Optional[int] = Form(None),
    service: ImportService = Depends(get_import_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    content = await file.read()
    filename = file.filename or "upload.csv"
    try:
        path = storage.save(content, filename)
        job = service.upload(UploadedFile(filename=filename, path=path), entity_type, created_by)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except ImportPipelineError as exc:
        raise _to_http_error(exc)
    return _job_response(job)


@router.get("", response_model=ImportJobListResponse)
def list_imports(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    entity_type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    service: ImportService = Depends(get_import_service),
):
    jobs, total = service.get_all(
        page=page, limit=limit, entity_type=entity_type, status=status, search=search
    )
    return ImportJobListResponse(
        success=True,
        jobs=[ImportJobInfo.model_validate(job) for job in jobs],
        total_count=total,
        page=page,
        limit=limit,
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
def get_import(job_id: int, service: ImportService = Depends(get_import_service)):
    try:
        return _job_response(service.get_by_id(job_id))
    except ImportPipelineError as exc:
        raise _to_http_error(exc)


@router.get("/{job_id}/preview", response_model=PreviewResponse)
def preview_import(job_id: int, service: ImportService = Depends(get_import_service)):
    try:
        preview = service.preview(job_id)
    except ImportPipelineError as exc:
        raise _to_http_error(exc)
    return PreviewResponse(success=True, headers=preview["headers"], rows=preview["rows"])


@router.put("/{job_id}/entity-type", response_model=ImportJobResponse)
def update_entity_type(
    job_id: int,
    request: EntityTypeRequest,
    service: ImportService = Depends(get_import_service),
):
    try:
        return _job_response(service.update_entity_type(job_id, request.entity_type))
    except ImportPipelineError as exc:
        raise _to_http_error(exc)


@router.post("/{job_id}/mapping", response_model=ImportJobResponse)
def save_mapping(
    job_id: int,
    request: MappingRequest,
    service: ImportService = Depends(get_import_service),
):
    try:
        return _job_response(service.map_columns(job_id, request.column_mapping))
    except ImportPipelineError as exc:
        raise _to_http_error(exc)


@router.post("/{job_id}/validate", response_model=ValidationResponse)
def validate_import(job_id: int, service: ImportService = Depends(get_import_service)):
    try:
        report = service.validate(job_id)
    except ImportPipelineError as exc:
        raise _to_http_error(exc)
    return ValidationResponse(success=True, report=report)


@router.post("/{job_id}/process", response_model=ImportJobResponse)
def process_import(job_id: int, service: ImportService = Depends(get_import_service)):
    try:
        job = service.process(job_id)
    except ImportPipelineError as exc:
        logger.warning("Import job %s could not be processed: %s", job_id, exc)
        raise _to_http_error(exc)
    return _job_response(job)
