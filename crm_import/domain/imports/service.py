"""
Entry points of the import pipeline: template download, upload, preview,
mapping, dry-run validation, execution and job lookups.

The service reads tuning values from ``Settings`` once and hands them to the
pure components, so tests can build a service with their own settings, enum
table and session factory.
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy.orm import Session, sessionmaker

from crm_import.core.config import Settings, settings as default_settings
from crm_import.core.entities import ENTITY_TYPES, get_entity_schema
from crm_import.core.enums import ENTITY_ENUMS, EnumTable
from crm_import.db.models import ImportJob, ImportJobStatus
from crm_import.db.session import session_scope
from crm_import.domain.imports import jobs
from crm_import.domain.imports.errors import (
    ImportFileMissingError,
    ImportJobStateError,
    ImportStreamError,
    InvalidEntityTypeError,
    InvalidMappingError,
    MappingRequiredError,
)
from crm_import.domain.imports.executor import ImportExecutor
from crm_import.domain.imports.mapping import dump_mapping, resolve_mapping
from crm_import.domain.imports.validation import ValidationReport, validate_source
from crm_import.integrations.storage import LocalFileStorage
from crm_import.processors.csv_processor import SourceFile, normalize_encoding, prepare_source, read_preview

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    """A file already written to local storage."""

    filename: str
    path: str


def _check_entity_type(entity_type: str) -> str:
    if get_entity_schema(entity_type) is None:
        raise InvalidEntityTypeError(entity_type, ENTITY_TYPES)
    return entity_type


def _detach(db: Session, job: ImportJob) -> ImportJob:
    """Load every column and detach ``job`` so it stays readable after the session closes."""
    db.flush()
    db.refresh(job)
    db.expunge(job)
    return job


class ImportService:
    def __init__(
        self,
        session_factory: sessionmaker,
        storage: LocalFileStorage,
        *,
        enum_table: EnumTable = ENTITY_ENUMS,
        config: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.enum_table = enum_table
        self.config = config

    def _executor(self) -> ImportExecutor:
        return ImportExecutor(
            self.session_factory,
            self.storage,
            enum_table=self.enum_table,
            max_workers=self.config.import_max_workers,
            max_in_flight=self.config.import_max_in_flight,
            chunk_size=self.config.import_chunk_size,
            progress_flush_rows=self.config.import_progress_flush_rows,
            error_log_limit=self.config.import_error_log_limit,
            reference_cache=self.config.import_reference_cache,
            sniff_bytes=self.config.delimiter_sniff_bytes,
        )

    def _source_for(self, job: ImportJob) -> SourceFile:
        path = self.storage.get_local_path(job.file_path)
        if not os.path.exists(path):
            raise ImportFileMissingError(path)
        return prepare_source(path, sniff_bytes=self.config.delimiter_sniff_bytes)

    # ---------------------------------------------------------------- templates

    def get_template(self, entity_type: str) -> str:
        """CSV text with the entity's template header and one example row."""
        schema = get_entity_schema(_check_entity_type(entity_type))
        frame = pd.DataFrame([dict(schema.example_row)], columns=list(schema.template_columns))
        return frame.to_csv(index=False)

    # ------------------------------------------------------------------ jobs

    def upload(self, uploaded: UploadedFile, entity_type: str, actor_id: Optional[int] = None) -> ImportJob:
        _check_entity_type(entity_type)
        if not uploaded.path or not os.path.exists(uploaded.path):
            raise ImportFileMissingError(uploaded.path)
        try:
            normalized_path = normalize_encoding(uploaded.path)
        except OSError as exc:
            raise ImportStreamError(f"Could not read uploaded file {uploaded.filename}: {exc}") from exc

        with session_scope(self.session_factory) as db:
            job = jobs.create_import_job(
                db,
                entity_type=entity_type,
                filename=uploaded.filename,
                file_path=normalized_path,
                created_by=actor_id,
            )
            job = _detach(db, job)
        logger.info("Accepted %s upload '%s' as import job %s", entity_type, uploaded.filename, job.id)
        return job

    def preview(self, job_id: int) -> Dict[str, Any]:
        job = self.get_by_id(job_id)
        return read_preview(self._source_for(job), rows=self.config.import_preview_rows)

    def update_entity_type(self, job_id: int, entity_type: str) -> ImportJob:
        _check_entity_type(entity_type)
        with session_scope(self.session_factory) as db:
            job = jobs.get_import_job(db, job_id)
            if job.status != ImportJobStatus.PENDING.value:
                raise ImportJobStateError(job_id, job.status, "change the entity type of")
            job.entity_type = entity_type
            return _detach(db, job)

    def map_columns(self, job_id: int, raw_mapping: Any) -> ImportJob:
        """Replace the job's column mapping with ``raw_mapping`` (legacy or structured)."""
        mapping = resolve_mapping(raw_mapping)
        if mapping is None:
            raise InvalidMappingError("A column mapping is required")
        with session_scope(self.session_factory) as db:
            job = jobs.get_import_job(db, job_id)
            if job.status != ImportJobStatus.PENDING.value:
                raise ImportJobStateError(job_id, job.status, "change the mapping of")
            job.column_mapping = dump_mapping(mapping)
            return _detach(db, job)

    def validate(self, job_id: int) -> ValidationReport:
        job = self.get_by_id(job_id)
        mapping = resolve_mapping(job.column_mapping)
        if mapping is None:
            raise MappingRequiredError(job_id)
        return validate_source(
            self._source_for(job),
            job.entity_type,
            mapping,
            enum_table=self.enum_table,
            sample_rows=self.config.import_validation_sample_rows,
            warning_row_limit=self.config.import_warning_row_limit,
            chunk_size=self.config.import_chunk_size,
        )

    def process(self, job_id: int) -> ImportJob:
        """Execute the job; returns it in its terminal state."""
        self._executor().execute(job_id)
        return self.get_by_id(job_id)

    def get_by_id(self, job_id: int) -> ImportJob:
        with session_scope(self.session_factory) as db:
            return _detach(db, jobs.get_import_job(db, job_id))

    def get_all(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        entity_type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[ImportJob], int]:
        with session_scope(self.session_factory) as db:
            found, total = jobs.list_import_jobs(
                db, page=page, limit=limit, entity_type=entity_type, status=status, search=search
            )
            for job in found:
                db.expunge(job)
            return found, total
