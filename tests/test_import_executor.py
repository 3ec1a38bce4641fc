"""
Tests for import execution: per-row isolation, final status, error log and
stream failures.
"""
from contextlib import contextmanager
from pathlib import Path

import pytest

from crm_import.db.entity_store import EntityStore
from crm_import.db.models import (
    Company,
    Contact,
    Deal,
    ImportJob,
    ImportJobStatus,
    Pipeline,
    PipelineStage,
)
from crm_import.db.session import session_scope
from crm_import.domain.imports import executor as executor_module
from crm_import.domain.imports import jobs as jobs_module
from crm_import.domain.imports.errors import (
    ImportFileMissingError,
    ImportJobStateError,
    ImportStreamError,
)
from crm_import.domain.imports.executor import ImportExecutor


def _contacts_csv(rows=10, missing_last=()):
    lines = ["first_name,last_name,email"]
    for i in range(1, rows + 1):
        last = "" if i in missing_last else f"Last{i}"
        lines.append(f"First{i},{last},person{i}@example.com")
    return "\n".join(lines) + "\n"


def _count(session_factory, model):
    with session_factory() as session:
        return session.query(model).count()


def test_partial_failure_isolated_per_row(service, upload_csv, session_factory):
    job = upload_csv(_contacts_csv(10, missing_last=(3, 7)), actor_id=42)
    service.map_columns(job.id, {})

    result = service.process(job.id)

    assert result.status == ImportJobStatus.COMPLETED.value
    assert result.total_rows == 10
    assert result.processed_rows == 10
    assert result.success_count == 8
    assert result.error_count == 2
    assert [entry["row"] for entry in result.error_log] == [3, 7]
    assert result.error_log[0]["data"]["first_name"] == "First3"
    assert "last_name is required" in result.error_log[0]["error"]
    assert result.started_at is not None and result.completed_at is not None

    with session_factory() as session:
        contacts = session.query(Contact).all()
    assert len(contacts) == 8
    assert {contact.created_by for contact in contacts} == {42}


def test_every_row_failing_marks_job_failed(service, upload_csv, monkeypatch, session_factory):
    def failing_create(self, entity_type, values):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(EntityStore, "create", failing_create)
    job = upload_csv(_contacts_csv(4))
    service.map_columns(job.id, {})

    result = service.process(job.id)

    assert result.status == ImportJobStatus.FAILED.value
    assert result.success_count == 0
    assert result.error_count == 4
    assert result.processed_rows == result.success_count + result.error_count
    assert {entry["error"] for entry in result.error_log} == {"database unavailable"}
    assert _count(session_factory, Contact) == 0


def test_empty_file_completes(service, upload_csv):
    job = upload_csv("first_name,last_name\n")
    service.map_columns(job.id, {})

    result = service.process(job.id)

    assert result.status == ImportJobStatus.COMPLETED.value
    assert result.total_rows == 0
    assert result.error_log == []


def test_missing_mapping_passes_columns_through(service, upload_csv, session_factory):
    job = upload_csv("first_name,last_name,status\nAda,Lovelace, Customer \n")

    result = service.process(job.id)

    assert result.success_count == 1
    with session_factory() as session:
        assert session.query(Contact).one().status == "customer"


def test_structured_mapping_with_sinks(service, upload_csv, session_factory):
    job = upload_csv("Name,Mail,Source,Segment\nAda Lovelace,ada@example.com,Expo,vip\n")
    service.map_columns(job.id, [
        {"source_column": "Name", "target_field": "first_name", "transformation": "split_name_first"},
        {"source_column": "Name", "target_field": "last_name", "transformation": "split_name_last"},
        {"source_column": "Mail", "target_field": "email", "transformation": "to_lowercase"},
        {"source_column": "Source", "target_field": "__notes__"},
        {"source_column": "Segment", "target_field": "__tags__"},
        {"source_column": "Segment", "target_field": "custom_fields.segment"},
    ])

    service.process(job.id)

    with session_factory() as session:
        contact = session.query(Contact).one()
    assert (contact.first_name, contact.last_name) == ("Ada", "Lovelace")
    assert contact.notes == "--- Imported Data ---\nSource: Expo"
    assert contact.tags == ["vip"]
    assert contact.custom_fields == {"segment": "vip"}


def test_deal_references_are_resolved(service, upload_csv, session_factory):
    with session_scope(session_factory) as session:
        pipeline = Pipeline(name="Sales", is_default=True)
        session.add_all([Company(name="Acme"), pipeline])
        session.flush()
        session.add(PipelineStage(pipeline_id=pipeline.id, name="Proposal"))

    job = upload_csv(
        "title;value;company_name;stage_name\nFirst;1000;acme;proposal\nSecond;2000;NoSuchCo;\n",
        entity_type="deals",
    )
    service.map_columns(job.id, {})

    result = service.process(job.id)

    assert result.success_count == 2
    with session_factory() as session:
        deals = {deal.title: deal for deal in session.query(Deal).all()}
    assert deals["First"].company_id is not None
    assert deals["First"].stage_id is not None
    assert deals["First"].pipeline_id is not None
    assert deals["Second"].company_id is None
    assert deals["Second"].value == 2000


def test_job_cannot_be_processed_twice(service, upload_csv):
    job = upload_csv(_contacts_csv(1))
    service.process(job.id)

    with pytest.raises(ImportJobStateError):
        service.process(job.id)


def test_missing_file_leaves_job_pending(service, upload_csv, tmp_path):
    job = upload_csv(_contacts_csv(1))
    (tmp_path / "import.csv").unlink()

    with pytest.raises(ImportFileMissingError):
        service.process(job.id)

    assert service.get_by_id(job.id).status == ImportJobStatus.PENDING.value


def test_stream_error_marks_job_failed(service, upload_csv, monkeypatch):
    @contextmanager
    def broken_stream(source, chunk_size=500):
        def rows():
            yield {"first_name": "Ada", "last_name": "Lovelace"}
            yield {"first_name": "Grace", "last_name": "Hopper"}
            raise ImportStreamError("file vanished")

        yield rows()

    monkeypatch.setattr(executor_module, "open_row_stream", broken_stream)
    job = upload_csv(_contacts_csv(2))

    with pytest.raises(ImportStreamError, match="file vanished"):
        service.process(job.id)

    job = service.get_by_id(job.id)
    assert job.status == ImportJobStatus.FAILED.value
    assert job.processed_rows == 2
    assert job.success_count == 2


def test_error_log_is_capped_with_marker(session_factory, storage, upload_csv):
    job = upload_csv(_contacts_csv(6, missing_last=(1, 2, 4, 5, 6)))
    executor = ImportExecutor(session_factory, storage, max_workers=3, error_log_limit=2, progress_flush_rows=1)

    executor.execute(job.id)

    with session_factory() as session:
        stored = session.get(ImportJob, job.id)
        assert stored.error_count == 5
        assert stored.success_count == 1
        assert [entry["row"] for entry in stored.error_log] == [1, 2, None]
        assert stored.error_log[-1]["truncated"] == 3


def test_bounded_window_still_processes_every_row(session_factory, storage, upload_csv):
    job = upload_csv(_contacts_csv(25))
    executor = ImportExecutor(session_factory, storage, max_workers=2, max_in_flight=2, chunk_size=3)

    executor.execute(job.id)

    assert _count(session_factory, Contact) == 25


def test_trailing_delimiter_rows_are_persisted_under_their_headers(service, upload_csv, session_factory):
    job = upload_csv("first_name,last_name,email\nAda,Lovelace,ada@x.io,\nAlan,Turing,alan@x.io,\n")

    result = service.process(job.id)

    assert (result.status, result.success_count, result.error_count) == (ImportJobStatus.COMPLETED.value, 2, 0)
    with session_factory() as session:
        stored = sorted((c.first_name, c.last_name, c.email) for c in session.query(Contact).all())
    assert stored == [("Ada", "Lovelace", "ada@x.io"), ("Alan", "Turing", "alan@x.io")]


def test_malformed_record_fails_only_its_own_row(service, upload_csv, session_factory):
    text = _contacts_csv(10).replace("person8@example.com", "person8@example.com,stray")
    job = upload_csv(text)

    result = service.process(job.id)

    assert result.status == ImportJobStatus.COMPLETED.value
    assert result.total_rows == 10
    assert result.processed_rows == 10
    assert result.success_count == 9
    assert result.error_count == 1
    assert [entry["row"] for entry in result.error_log] == [8]
    assert "Malformed CSV record" in result.error_log[0]["error"]
    assert result.error_log[0]["data"]["first_name"] == "First8"
    assert _count(session_factory, Contact) == 9


def test_unexpected_failure_while_processing_finalizes_job(service, upload_csv, monkeypatch):
    def lost_connection(db, job_id, counters):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(jobs_module, "record_job_progress", lost_connection)
    job = upload_csv(_contacts_csv(10))

    with pytest.raises(RuntimeError, match="connection reset"):
        service.process(job.id)

    job = service.get_by_id(job.id)
    assert job.status == ImportJobStatus.FAILED.value
    assert job.completed_at is not None
    assert job.processed_rows == job.success_count + job.error_count
    assert job.processed_rows > 0


def test_relative_file_path_is_resolved_through_storage(session_factory, storage, import_settings):
    upload_dir = Path(import_settings.upload_dir)
    upload_dir.mkdir(parents=True)
    (upload_dir / "stored.csv").write_text(_contacts_csv(2), encoding="utf-8")
    with session_scope(session_factory) as db:
        job_id = jobs_module.create_import_job(
            db, entity_type="contacts", filename="stored.csv", file_path="stored.csv"
        ).id

    ImportExecutor(session_factory, storage, max_workers=1).execute(job_id)

    assert _count(session_factory, Contact) == 2
