"""
Static description of the business entities the importer can populate.

Each schema lists the template columns (with one illustrative row), the fields
a record cannot be created without, the human-readable reference columns the
importer turns into foreign keys, and the foreign-key columns that must be
NULL rather than blank.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


# Reference lookup kinds understood by the reference resolver
REFERENCE_COMPANY = "company"
REFERENCE_CONTACT = "contact"
REFERENCE_STAGE = "stage"


@dataclass(frozen=True)
class ReferenceField:
    """A column holding a name that must be replaced by an identifier."""

    name_field: str
    id_field: str
    kind: str


@dataclass(frozen=True)
class EntitySchema:
    name: str
    template_columns: Tuple[str, ...]
    example_row: Mapping[str, str]
    required_fields: Tuple[str, ...]
    reference_fields: Tuple[ReferenceField, ...] = ()
    foreign_keys: Tuple[str, ...] = ()
    bounded_fields: Mapping[str, Tuple[float, float]] = field(default_factory=dict)


# Fields checked for numeric content during a dry run, whatever the entity
NUMERIC_FIELDS: Tuple[str, ...] = ("employee_count", "annual_revenue", "value", "probability", "score")


ENTITY_SCHEMAS: Mapping[str, EntitySchema] = MappingProxyType(
    {
        "contacts": EntitySchema(
            name="contacts",
            template_columns=(
                "first_name", "last_name", "email", "phone", "mobile", "company_name",
                "job_title", "department", "lead_source", "status", "address_line1",
                "city", "state", "country", "zip_code",
            ),
            example_row=MappingProxyType({
                "first_name": "Ada",
                "last_name": "Lovelace",
                "email": "ada@analytical.io",
                "phone": "+44 20 7946 0018",
                "mobile": "+44 7700 900123",
                "company_name": "Analytical Engines Ltd",
                "job_title": "Head of Research",
                "department": "R&D",
                "lead_source": "referral",
                "status": "active",
                "address_line1": "12 St James's Square",
                "city": "London",
                "state": "",
                "country": "United Kingdom",
                "zip_code": "SW1Y 4JH",
            }),
            required_fields=("first_name", "last_name"),
            reference_fields=(ReferenceField("company_name", "company_id", REFERENCE_COMPANY),),
            foreign_keys=("company_id", "owner_id"),
        ),
        "companies": EntitySchema(
            name="companies",
            template_columns=(
                "name", "industry", "website", "phone", "email", "employee_count",
                "annual_revenue", "address_line1", "city", "state", "country", "zip_code",
            ),
            example_row=MappingProxyType({
                "name": "Analytical Engines Ltd",
                "industry": "Manufacturing",
                "website": "https://analytical.io",
                "phone": "+44 20 7946 0000",
                "email": "hello@analytical.io",
                "employee_count": "120",
                "annual_revenue": "2500000",
                "address_line1": "12 St James's Square",
                "city": "London",
                "state": "",
                "country": "United Kingdom",
                "zip_code": "SW1Y 4JH",
            }),
            required_fields=("name",),
            foreign_keys=("parent_company_id", "owner_id"),
            bounded_fields=MappingProxyType({"health_score": (0, 100)}),
        ),
        "leads": EntitySchema(
            name="leads",
            template_columns=(
                "first_name", "last_name", "email", "phone", "company_name",
                "job_title", "lead_source", "status", "score",
            ),
            example_row=MappingProxyType({
                "first_name": "Charles",
                "last_name": "Babbage",
                "email": "charles@difference.io",
                "phone": "+44 20 7946 0101",
                "company_name": "Difference Engines",
                "job_title": "Founder",
                "lead_source": "website",
                "status": "new",
                "score": "40",
            }),
            required_fields=("first_name", "last_name"),
            foreign_keys=("owner_id",),
            bounded_fields=MappingProxyType({"score": (0, 100)}),
        ),
        "deals": EntitySchema(
            name="deals",
            template_columns=(
                "title", "value", "currency", "probability", "status", "expected_close_date",
                "contact_name", "company_name", "stage_name",
            ),
            example_row=MappingProxyType({
                "title": "Analytical Engine licence",
                "value": "48000",
                "currency": "GBP",
                "probability": "60",
                "status": "open",
                "expected_close_date": "2025-06-30",
                "contact_name": "Ada Lovelace",
                "company_name": "Analytical Engines Ltd",
                "stage_name": "Proposal",
            }),
            required_fields=("title",),
            reference_fields=(
                ReferenceField("contact_name", "contact_id", REFERENCE_CONTACT),
                ReferenceField("company_name", "company_id", REFERENCE_COMPANY),
                ReferenceField("stage_name", "stage_id", REFERENCE_STAGE),
            ),
            foreign_keys=("contact_id", "company_id", "pipeline_id", "stage_id", "owner_id"),
            bounded_fields=MappingProxyType({"probability": (0, 100)}),
        ),
    }
)

ENTITY_TYPES: Tuple[str, ...] = tuple(ENTITY_SCHEMAS)


def get_entity_schema(entity_type: str) -> Optional[EntitySchema]:
    return ENTITY_SCHEMAS.get(entity_type)

