"""
Persistent tracking for import jobs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from crm_import.db.models import ImportJob, ImportJobStatus
from crm_import.domain.imports.errors import ImportJobNotFoundError

MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_import_job(
    db: Session,
    *,
    entity_type: str,
    filename: str,
    file_path: str,
    created_by: Optional[int] = None,
) -> ImportJob:
    job = ImportJob(
        entity_type=entity_type,
        filename=filename,
        file_path=file_path,
        created_by=created_by,
        status=ImportJobStatus.PENDING.value,
        total_rows=0,
        processed_rows=0,
        success_count=0,
        error_count=0,
        error_log=[],
    )
    db.add(job)
    db.flush()
    return job


def get_import_job(db: Session, job_id: int) -> ImportJob:
    job = db.query(ImportJob).filter(ImportJob.id == job_id).first()
    if job is None:
        raise ImportJobNotFoundError(job_id)
    return job


def update_import_job(db: Session, job_id: int, **fields: Any) -> ImportJob:
    job = get_import_job(db, job_id)
    for key, value in fields.items():
        setattr(job, key, value)
    db.flush()
    return job


def mark_job_processing(db: Session, job_id: int) -> ImportJob:
    return update_import_job(
        db,
        job_id,
        status=ImportJobStatus.PROCESSING.value,
        started_at=_utcnow(),
        completed_at=None,
        error_log=[],
        total_rows=0,
        processed_rows=0,
        success_count=0,
        error_count=0,
    )


def record_job_progress(db: Session, job_id: int, counters: Dict[str, int]) -> ImportJob:
    return update_import_job(db, job_id, **counters)


def finalize_import_job(
    db: Session,
    job_id: int,
    *,
    status: str,
    counters: Dict[str, int],
    error_log: List[Dict[str, Any]],
) -> ImportJob:
    return update_import_job(
        db,
        job_id,
        status=status,
        error_log=error_log,
        completed_at=_utcnow(),
        **counters,
    )


def list_import_jobs(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    entity_type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> Tuple[List[ImportJob], int]:
    """Return one page of jobs, newest first, plus the total number of matches."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    query = db.query(ImportJob)
    if entity_type:
        query = query.filter(ImportJob.entity_type == entity_type)
    if status:
        query = query.filter(ImportJob.status == status)
    if search:
        query = query.filter(ImportJob.filename.ilike(f"%{search.strip()}%"))

    total = query.count()
    jobs = (
        query.order_by(ImportJob.created_at.desc(), ImportJob.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jobs, total
