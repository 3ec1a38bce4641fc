"""
Shared dependencies for the API routers.
"""
from crm_import.core.config import settings
from crm_import.db.session import get_session_local
from crm_import.domain.imports.service import ImportService
from crm_import.integrations.storage import LocalFileStorage

_import_service = None


def get_storage() -> LocalFileStorage:
    return LocalFileStorage(settings.upload_dir)


def get_import_service() -> ImportService:
    """Lazily build the process-wide import service on first request."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService(get_session_local(), get_storage(), config=settings)
    return _import_service
