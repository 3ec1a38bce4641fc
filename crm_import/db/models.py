"""
SQLAlchemy models for the CRM records the importer writes and the import jobs
that track each upload.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from crm_import.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class ImportJobStatus(str, enum.Enum):
    """Lifecycle states for an import job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {ImportJobStatus.COMPLETED.value, ImportJobStatus.FAILED.value}


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class Company(TimestampMixin, Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True)
    name = Column(String(200), nullable=False, index=True)
    industry = Column(String(100))
    website = Column(String(255))
    phone = Column(String(50))
    email = Column(String(255))
    employee_count = Column(Integer)
    annual_revenue = Column(Float)
    address_line1 = Column(String(255))
    address_line2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    zip_code = Column(String(20))
    description = Column(Text)
    health_score = Column(Integer, default=50)
    tags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)
    parent_company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    created_by = Column(Integer, nullable=True)


class Contact(TimestampMixin, Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), index=True)
    phone = Column(String(50))
    mobile = Column(String(50))
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    job_title = Column(String(150))
    department = Column(String(100))
    lead_source = Column(String(100))
    status = Column(String(20), nullable=False, default="active")
    address_line1 = Column(String(255))
    address_line2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    zip_code = Column(String(20))
    notes = Column(Text)
    tags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)
    created_by = Column(Integer, nullable=True)

    __table_args__ = (Index("idx_contacts_name", "first_name", "last_name"),)


class Lead(TimestampMixin, Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    company_name = Column(String(200))
    job_title = Column(String(150))
    lead_source = Column(String(100))
    status = Column(String(20), nullable=False, default="new")
    score = Column(Integer, nullable=False, default=0)
    score_reasoning = Column(Text)
    converted = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    tags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)
    created_by = Column(Integer, nullable=True)


class Pipeline(TimestampMixin, Base):
    __tablename__ = "pipelines"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)


class PipelineStage(TimestampMixin, Base):
    __tablename__ = "pipeline_stages"

    id = Column(Integer, primary_key=True, index=True)
    pipeline_id = Column(Integer, ForeignKey("pipelines.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    probability = Column(Integer, default=0)


class Deal(TimestampMixin, Base):
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True)
    title = Column(String(255), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    pipeline_id = Column(Integer, ForeignKey("pipelines.id"), nullable=True)
    stage_id = Column(Integer, ForeignKey("pipeline_stages.id"), nullable=True)
    value = Column(Float, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    probability = Column(Integer, nullable=False, default=0)
    expected_close_date = Column(Date)
    actual_close_date = Column(Date)
    status = Column(String(10), nullable=False, default="open")
    lost_reason = Column(Text)
    notes = Column(Text)
    tags = Column(JSON, default=list)
    created_by = Column(Integer, nullable=True)


class ImportJob(TimestampMixin, Base):
    """One uploaded file moving through preview, mapping, validation and execution."""

    __tablename__ = "import_jobs"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(20), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ImportJobStatus.PENDING.value, index=True)
    error_log = Column(JSON, nullable=True)
    column_mapping = Column(JSON, nullable=True)
    created_by = Column(Integer, nullable=True, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


ENTITY_MODELS = {
    "contacts": Contact,
    "companies": Company,
    "leads": Lead,
    "deals": Deal,
}
