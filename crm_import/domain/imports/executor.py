"""
Streams an import file into CRM records.

Rows are read sequentially and persisted by a fixed-size thread pool; at most
``max_in_flight`` rows are submitted but unsettled at any time, so memory and
connection use stay flat regardless of file size. Each row runs in its own
session and transaction; a failing row is recorded in the job's error log and
never affects any other row.
"""
import heapq
import itertools
import logging
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import sessionmaker

from crm_import.core.enums import ENTITY_ENUMS, EnumTable, normalize_enum_fields
from crm_import.db.entity_store import EntityStore
from crm_import.db.models import ImportJobStatus
from crm_import.db.session import session_scope
from crm_import.domain.imports import jobs
from crm_import.domain.imports.errors import (
    ImportFileMissingError,
    ImportJobStateError,
    ImportStreamError,
)
from crm_import.domain.imports.mapping import ColumnMapping, apply_mapping, resolve_mapping
from crm_import.domain.imports.resolver import ReferenceResolver, sanitize_foreign_keys
from crm_import.integrations.storage import LocalFileStorage
from crm_import.processors.csv_processor import MalformedRow, Row, open_row_stream, prepare_source
from crm_import.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)


@dataclass
class RowOutcome:
    row_number: int
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class _RunContext:
    job_id: int
    entity_type: str
    file_path: str
    mapping: Optional[ColumnMapping]
    created_by: Optional[int]
    resolver: ReferenceResolver


class _ErrorLog:
    """Keeps the ``limit`` lowest-numbered row errors and counts the rest."""

    def __init__(self, limit: int):
        self.limit = limit
        self.dropped = 0
        self._heap: List[Any] = []
        self._sequence = itertools.count()

    def add(self, outcome: RowOutcome) -> None:
        entry = {"row": outcome.row_number, "data": outcome.data, "error": outcome.error}
        heapq.heappush(self._heap, (-outcome.row_number, next(self._sequence), entry))
        if len(self._heap) > self.limit:
            heapq.heappop(self._heap)
            self.dropped += 1

    def entries(self) -> List[Dict[str, Any]]:
        log = sorted((item[2] for item in self._heap), key=lambda entry: entry["row"])
        if self.dropped:
            log.append({
                "row": None,
                "data": None,
                "error": f"Error log truncated: {self.dropped} more failed row(s) not recorded",
                "truncated": self.dropped,
            })
        return log


class ImportExecutor:
    def __init__(
        self,
        session_factory: sessionmaker,
        storage: LocalFileStorage,
        *,
        enum_table: EnumTable = ENTITY_ENUMS,
        max_workers: int = 4,
        max_in_flight: int = 0,
        chunk_size: int = 500,
        progress_flush_rows: int = 100,
        error_log_limit: int = 1000,
        reference_cache: bool = True,
        sniff_bytes: int = 8192,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.enum_table = enum_table
        self.max_workers = max(1, max_workers)
        self.max_in_flight = max_in_flight if max_in_flight > 0 else self.max_workers * 2
        self.chunk_size = chunk_size
        self.progress_flush_rows = max(1, progress_flush_rows)
        self.error_log_limit = max(1, error_log_limit)
        self.reference_cache = reference_cache
        self.sniff_bytes = sniff_bytes

    def process_row(self, context: _RunContext, row_number: int, row: Row) -> RowOutcome:
        """Map, normalize, resolve and persist one row; every exception becomes a failed outcome."""
        if isinstance(row, MalformedRow):
            logger.debug("Import job %s row %d is malformed: %s", context.job_id, row_number, row.overflow)
            return RowOutcome(row_number=row_number, success=False, data=dict(row.values), error=row.error)
        data: Dict[str, Any] = {}
        try:
            data = apply_mapping(row, context.mapping)
            normalize_enum_fields(context.entity_type, data, self.enum_table)
            with session_scope(self.session_factory) as session:
                store = EntityStore(session, self.enum_table)
                context.resolver.resolve(context.entity_type, data, store)
                sanitize_foreign_keys(context.entity_type, data)
                if context.created_by is not None:
                    data["created_by"] = context.created_by
                store.create(context.entity_type, data)
        except Exception as exc:
            logger.debug("Import job %s row %d failed: %s", context.job_id, row_number, exc)
            return RowOutcome(row_number=row_number, success=False, data=make_json_safe(data), error=str(exc))
        return RowOutcome(row_number=row_number, success=True)

    def _start(self, job_id: int) -> _RunContext:
        with session_scope(self.session_factory) as db:
            job = jobs.get_import_job(db, job_id)
            if job.status != ImportJobStatus.PENDING.value:
                raise ImportJobStateError(job_id, job.status, "process")
            file_path = self.storage.get_local_path(job.file_path) if job.file_path else None
            if not file_path or not os.path.exists(file_path):
                raise ImportFileMissingError(file_path or job.file_path)
            context = _RunContext(
                job_id=job.id,
                entity_type=job.entity_type,
                file_path=file_path,
                mapping=resolve_mapping(job.column_mapping),
                created_by=job.created_by,
                resolver=ReferenceResolver(cache_enabled=self.reference_cache),
            )
            jobs.mark_job_processing(db, job_id)
        return context

    def _flush_progress(self, job_id: int, counters: Dict[str, int]) -> None:
        with session_scope(self.session_factory) as db:
            jobs.record_job_progress(db, job_id, dict(counters))

    def _collect(self, done: Iterable[Future], counters: Dict[str, int], error_log: _ErrorLog) -> None:
        for future in done:
            outcome: RowOutcome = future.result()
            counters["processed_rows"] += 1
            if outcome.success:
                counters["success_count"] += 1
            else:
                counters["error_count"] += 1
                error_log.add(outcome)

    def _run(self, context: _RunContext, counters: Dict[str, int], error_log: _ErrorLog) -> None:
        last_flush = 0
        in_flight: Set[Future] = set()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="import-row") as pool:
            try:
                source = prepare_source(context.file_path, sniff_bytes=self.sniff_bytes)
                with open_row_stream(source, chunk_size=self.chunk_size) as rows:
                    for row_number, row in enumerate(rows, start=1):
                        counters["total_rows"] = row_number
                        in_flight.add(pool.submit(self.process_row, context, row_number, row))
                        if len(in_flight) < self.max_in_flight:
                            continue
                        done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                        self._collect(done, counters, error_log)
                        if counters["processed_rows"] - last_flush >= self.progress_flush_rows:
                            self._flush_progress(context.job_id, counters)
                            last_flush = counters["processed_rows"]
            finally:
                done, _ = wait(in_flight)
                self._collect(done, counters, error_log)

    def execute(self, job_id: int) -> None:
        """
        Run a pending job to completion.

        Raises ``ImportJobStateError`` or ``ImportFileMissingError`` before any
        state changes. Once the job is processing, anything that stops the run
        (an unreadable file, a lost database connection) marks the job failed
        with the counts reached so far and is re-raised.
        """
        context = self._start(job_id)
        logger.info("Import job %s started (%s)", job_id, context.entity_type)

        counters = {"total_rows": 0, "processed_rows": 0, "success_count": 0, "error_count": 0}
        error_log = _ErrorLog(self.error_log_limit)

        try:
            self._run(context, counters, error_log)
        except Exception as exc:
            if isinstance(exc, ImportStreamError):
                logger.warning("Import job %s failed while reading its file: %s", job_id, exc)
            else:
                logger.exception("Import job %s aborted after %d row(s)", job_id, counters["processed_rows"])
            self._finalize(job_id, ImportJobStatus.FAILED.value, counters, error_log)
            raise

        if counters["error_count"] > 0 and counters["success_count"] == 0:
            status = ImportJobStatus.FAILED.value
        else:
            status = ImportJobStatus.COMPLETED.value
        self._finalize(job_id, status, counters, error_log)
        logger.info(
            "Import job %s %s: %d processed, %d succeeded, %d failed",
            job_id, status, counters["processed_rows"], counters["success_count"], counters["error_count"],
        )

    def _finalize(self, job_id: int, status: str, counters: Dict[str, int], error_log: _ErrorLog) -> None:
        if error_log.dropped:
            logger.warning(
                "Import job %s error log truncated to %d entries (%d dropped)",
                job_id, error_log.limit, error_log.dropped,
            )
        with session_scope(self.session_factory) as db:
            jobs.finalize_import_job(
                db, job_id, status=status, counters=dict(counters), error_log=error_log.entries()
            )
