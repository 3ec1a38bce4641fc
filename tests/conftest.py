"""
Pytest configuration and fixtures for the CRM import tests.

Every test gets its own SQLite database file under ``tmp_path`` with all
tables created, a session factory bound to it, and an ``ImportService`` wired
with small worker and batch sizes.
"""
import codecs
import os

# The app's startup hook must not try to reach the production database.
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest
from sqlalchemy.orm import sessionmaker

from crm_import.core.config import Settings
from crm_import.db import models  # noqa: F401
from crm_import.db.session import Base, build_engine
from crm_import.domain.imports.service import ImportService, UploadedFile
from crm_import.integrations.storage import LocalFileStorage


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'crm.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def import_settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        upload_dir=str(tmp_path / "uploads"),
        import_max_workers=2,
        import_chunk_size=4,
        import_progress_flush_rows=3,
    )


@pytest.fixture
def storage(import_settings):
    return LocalFileStorage(import_settings.upload_dir)


@pytest.fixture
def service(session_factory, storage, import_settings):
    return ImportService(session_factory, storage, config=import_settings)


@pytest.fixture
def write_csv(tmp_path):
    """Write ``text`` to a file under tmp_path; ``bom`` prepends a UTF-16 byte-order mark."""

    def _write(name, text, bom=None):
        path = tmp_path / name
        if bom == "utf-16-le":
            payload = codecs.BOM_UTF16_LE + text.encode("utf-16-le")
        elif bom == "utf-16-be":
            payload = codecs.BOM_UTF16_BE + text.encode("utf-16-be")
        else:
            payload = text.encode("utf-8")
        path.write_bytes(payload)
        return str(path)

    return _write


@pytest.fixture
def upload_csv(service, write_csv):
    """Write a CSV and register it as a pending import job."""

    def _upload(text, entity_type="contacts", name="import.csv", actor_id=7, bom=None):
        path = write_csv(name, text, bom=bom)
        return service.upload(UploadedFile(filename=name, path=path), entity_type, actor_id)

    return _upload
