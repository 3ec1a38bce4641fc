"""
Tests for the import service facade: templates, uploads, previews, mapping
and job listing.
"""
import io
from pathlib import Path

import pandas as pd
import pytest

from crm_import.core.entities import ENTITY_SCHEMAS, ENTITY_TYPES
from crm_import.db.models import ImportJobStatus
from crm_import.domain.imports.errors import (
    ImportFileMissingError,
    ImportJobNotFoundError,
    ImportJobStateError,
    InvalidEntityTypeError,
    InvalidMappingError,
)
from crm_import.domain.imports.service import UploadedFile


class TestTemplates:
    @pytest.mark.parametrize("entity_type", ENTITY_TYPES)
    def test_template_has_header_and_example_row(self, service, entity_type):
        frame = pd.read_csv(io.StringIO(service.get_template(entity_type)), dtype=str, keep_default_na=False)

        schema = ENTITY_SCHEMAS[entity_type]
        assert tuple(frame.columns) == schema.template_columns
        assert len(frame) == 1
        assert frame.iloc[0].to_dict() == dict(schema.example_row)

    def test_unknown_entity_type(self, service):
        with pytest.raises(InvalidEntityTypeError):
            service.get_template("invoices")


class TestUpload:
    def test_upload_creates_pending_job(self, upload_csv):
        job = upload_csv("first_name,last_name\nAda,Lovelace\n", actor_id=3)

        assert job.status == ImportJobStatus.PENDING.value
        assert job.entity_type == "contacts"
        assert job.filename == "import.csv"
        assert job.created_by == 3
        assert (job.total_rows, job.processed_rows, job.success_count, job.error_count) == (0, 0, 0, 0)
        assert job.column_mapping is None

    def test_utf16_upload_stores_converted_path(self, upload_csv):
        job = upload_csv("first_name,last_name\nAda,Lovelace\n", bom="utf-16-le")

        assert job.file_path.endswith("import.utf8.csv")
        assert Path(job.file_path).read_text(encoding="utf-8").startswith("first_name")

    def test_invalid_entity_type_creates_nothing(self, service, write_csv):
        path = write_csv("x.csv", "a\n1\n")

        with pytest.raises(InvalidEntityTypeError):
            service.upload(UploadedFile(filename="x.csv", path=path), "workflows", 1)

        assert service.get_all()[1] == 0

    def test_missing_file(self, service, tmp_path):
        with pytest.raises(ImportFileMissingError):
            service.upload(UploadedFile(filename="x.csv", path=str(tmp_path / "nope.csv")), "contacts", 1)


class TestPreview:
    def test_preview_reads_first_rows(self, service, upload_csv):
        lines = ["name;email"] + [f"P{i};p{i}@example.com" for i in range(15)]
        job = upload_csv("\n".join(lines) + "\n")

        preview = service.preview(job.id)

        assert preview["headers"] == ["name", "email"]
        assert len(preview["rows"]) == 10
        assert preview["rows"][0] == {"name": "P0", "email": "p0@example.com"}

    def test_preview_of_unknown_job(self, service):
        with pytest.raises(ImportJobNotFoundError):
            service.preview(404)


class TestMappingAndEntityType:
    def test_mapping_replaces_previous_mapping(self, service, upload_csv):
        job = upload_csv("Mail\na@b.co\n")
        service.map_columns(job.id, {"Mail": "email"})

        job = service.map_columns(job.id, [{"csvColumn": "Mail", "dbField": "email", "confidence": 0.8}])

        assert job.column_mapping == {
            "mappings": [
                {"source_column": "Mail", "target_field": "email", "confidence": 0.8, "transformation": None}
            ]
        }

    def test_invalid_mapping_is_rejected(self, service, upload_csv):
        job = upload_csv("Mail\na@b.co\n")

        with pytest.raises(InvalidMappingError):
            service.map_columns(job.id, "email")
        with pytest.raises(InvalidMappingError):
            service.map_columns(job.id, None)

    def test_mapping_after_processing_is_rejected(self, service, upload_csv):
        job = upload_csv("first_name,last_name\nAda,Lovelace\n")
        service.process(job.id)

        with pytest.raises(ImportJobStateError):
            service.map_columns(job.id, {})
        with pytest.raises(ImportJobStateError):
            service.update_entity_type(job.id, "leads")

    def test_update_entity_type(self, service, upload_csv):
        job = upload_csv("first_name,last_name\nAda,Lovelace\n")

        assert service.update_entity_type(job.id, "leads").entity_type == "leads"
        with pytest.raises(InvalidEntityTypeError):
            service.update_entity_type(job.id, "tasks")


class TestListing:
    def test_filters_search_and_pagination(self, service, upload_csv):
        first = upload_csv("name\nAcme\n", entity_type="companies", name="companies-2024.csv")
        second = upload_csv("first_name,last_name\nAda,Lovelace\n", name="contacts-jan.csv")
        third = upload_csv("first_name,last_name\nAda,Lovelace\n", name="Contacts-Feb.csv")
        service.process(third.id)

        jobs, total = service.get_all()
        assert total == 3
        assert [job.id for job in jobs] == [third.id, second.id, first.id]

        jobs, total = service.get_all(entity_type="contacts", status="pending")
        assert (total, [job.id for job in jobs]) == (1, [second.id])

        jobs, total = service.get_all(search="CONTACTS")
        assert total == 2

        jobs, total = service.get_all(page=2, limit=2)
        assert total == 3
        assert [job.id for job in jobs] == [first.id]

    def test_get_by_id_unknown(self, service):
        with pytest.raises(ImportJobNotFoundError):
            service.get_by_id(12345)
