"""
Local-disk storage for uploaded import files.
"""
import logging
import re
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageUploadError(StorageError):
    """Raised when a file cannot be written."""
    pass


def _safe_filename(filename: str) -> str:
    name = Path(filename or "upload.csv").name
    return _UNSAFE_CHARS_RE.sub("_", name) or "upload.csv"


class LocalFileStorage:
    def __init__(self, upload_dir: str):
        self.upload_dir = Path(upload_dir)

    def save(self, content: bytes, filename: str) -> str:
        """
        Write ``content`` under the upload directory and return its local path.

        Names are prefixed with a random id so repeated uploads of the same file
        never overwrite each other.
        """
        target = self.upload_dir.resolve() / f"{uuid.uuid4().hex}_{_safe_filename(filename)}"
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.error("Failed to store upload %s: %s", filename, exc)
            raise StorageUploadError(f"Could not store {filename}: {exc}") from exc
        logger.debug("Stored upload %s at %s (%d bytes)", filename, target, len(content))
        return str(target)

    def get_local_path(self, file_path: str) -> str:
        """Local path of a stored file; relative keys live under the upload directory."""
        path = Path(file_path)
        return str(path if path.is_absolute() else self.upload_dir / path)
