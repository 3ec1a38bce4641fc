"""
Exceptions raised by the import pipeline.

Input errors reach the caller before any state changes. Stream errors abort an
execution and mark the job failed. Record validation errors are raised per row
by the entity store and never escape the executor.
"""


class ImportPipelineError(Exception):
    """Base class for every import pipeline error."""


class InvalidEntityTypeError(ImportPipelineError):
    def __init__(self, entity_type: str, valid_types=()):
        self.entity_type = entity_type
        message = f"Unsupported entity type '{entity_type}'"
        if valid_types:
            message += f"; expected one of: {', '.join(valid_types)}"
        super().__init__(message)


class ImportJobNotFoundError(ImportPipelineError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Import job {job_id} not found")


class ImportFileMissingError(ImportPipelineError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"Import file not found: {path}")


class InvalidMappingError(ImportPipelineError):
    """The submitted column mapping has neither the legacy nor the structured shape."""


class MappingRequiredError(ImportPipelineError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Import job {job_id} has no column mapping")


class ImportJobStateError(ImportPipelineError):
    def __init__(self, job_id, status: str, action: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Cannot {action} import job {job_id} in status '{status}'")


class ImportStreamError(ImportPipelineError):
    """Reading the source file failed part-way; fatal for the whole execution."""


class RecordValidationError(ImportPipelineError):
    """A mapped row violates the rules of its entity type."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)
