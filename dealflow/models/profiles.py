"""Buyer, deal and tracker profile models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, Field, field_validator

from .provenance import FieldProvenance


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_empty_value(value: Any) -> bool:
    """True for None, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


class Tracker(BaseModel):
    """A buyer universe for one industry, with its scoring weights."""

    id: str = Field(default_factory=new_id)
    name: str = Field(description="Tracker / industry name")
    geography_weight: Optional[float] = Field(default=None, description="Unset means 1.0")
    service_weight: Optional[float] = None
    size_weight: Optional[float] = None
    owner_goals_weight: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)


class ProfileRecord(BaseModel):
    """Fields shared by every provenance-tracked profile."""

    id: str = Field(default_factory=new_id)
    tracker_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    extraction_sources: dict[str, FieldProvenance] = Field(
        default_factory=dict,
        description="field name -> last writer",
    )
    extraction_evidence: dict[str, str] = Field(
        default_factory=dict,
        description="field name -> supporting quote from the last oracle extraction",
    )

    # Overridden per entity type
    MERGEABLE_FIELDS: ClassVar[frozenset[str]] = frozenset()

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def populated_fields(self) -> list[str]:
        """Mergeable fields currently holding a value."""
        return [
            name for name in sorted(self.MERGEABLE_FIELDS)
            if not is_empty_value(getattr(self, name))
        ]


class BuyerProfile(ProfileRecord):
    """An acquirer (PE-backed platform or PE firm) tracked for deal fit."""

    # Identity
    pe_firm_name: str = Field(description="Sponsor / PE firm name")
    pe_firm_website: Optional[str] = None
    platform_company_name: Optional[str] = None
    platform_website: Optional[str] = None

    # Size preferences ($M)
    min_revenue: Optional[float] = None
    max_revenue: Optional[float] = None
    revenue_sweet_spot: Optional[float] = None
    min_ebitda: Optional[float] = None
    max_ebitda: Optional[float] = None
    ebitda_sweet_spot: Optional[float] = None

    # Targeting
    target_services: list[str] = Field(default_factory=list)
    target_industries: list[str] = Field(default_factory=list)
    target_geographies: list[str] = Field(default_factory=list)
    geographic_footprint: list[str] = Field(default_factory=list)
    deal_breakers: list[str] = Field(default_factory=list)
    key_quotes: list[str] = Field(default_factory=list)

    # Narrative
    thesis_summary: Optional[str] = None
    business_summary: Optional[str] = None
    services_offered: Optional[str] = None
    owner_transition_goals: Optional[str] = None
    acquisition_appetite: Optional[str] = None

    # Location
    hq_city: Optional[str] = None
    hq_state: Optional[str] = None
    hq_country: Optional[str] = None

    fee_agreement_status: Optional[str] = None

    MERGEABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({
        "pe_firm_website",
        "platform_company_name",
        "platform_website",
        "min_revenue",
        "max_revenue",
        "revenue_sweet_spot",
        "min_ebitda",
        "max_ebitda",
        "ebitda_sweet_spot",
        "target_services",
        "target_industries",
        "target_geographies",
        "geographic_footprint",
        "deal_breakers",
        "key_quotes",
        "thesis_summary",
        "business_summary",
        "services_offered",
        "owner_transition_goals",
        "acquisition_appetite",
        "hq_city",
        "hq_state",
        "hq_country",
        "fee_agreement_status",
    })

    @property
    def display_name(self) -> str:
        return self.platform_company_name or self.pe_firm_name


class DealStatus(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"
    ARCHIVED = "Archived"


class DealProfile(ProfileRecord):
    """A company for sale."""

    deal_name: str = Field(description="Deal / company name")
    status: DealStatus = DealStatus.ACTIVE
    deal_score: Optional[float] = Field(
        default=None, ge=0.0, le=100.0, description="Composite deal quality score"
    )

    company_website: Optional[str] = None
    revenue: Optional[float] = None
    ebitda: Optional[float] = None
    employee_count: Optional[int] = None
    location_count: Optional[int] = None
    headquarters: Optional[str] = None
    geography: list[str] = Field(default_factory=list)
    service_mix: Optional[str] = None
    industry_type: Optional[str] = None
    business_model: Optional[str] = None
    owner_goals: Optional[str] = None
    company_overview: Optional[str] = None

    MERGEABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({
        "company_website",
        "revenue",
        "ebitda",
        "employee_count",
        "location_count",
        "headquarters",
        "geography",
        "service_mix",
        "industry_type",
        "business_model",
        "owner_goals",
        "company_overview",
    })


BUYER_MERGEABLE_FIELDS = BuyerProfile.MERGEABLE_FIELDS
DEAL_MERGEABLE_FIELDS = DealProfile.MERGEABLE_FIELDS


class BuyerContact(BaseModel):
    """A person at a buyer, found manually or via contact discovery."""

    id: str = Field(default_factory=new_id)
    buyer_id: str
    name: str
    title: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None


class BuyerTranscript(BaseModel):
    """A call transcript attached to a buyer."""

    id: str = Field(default_factory=new_id)
    buyer_id: str
    title: str
    url: Optional[str] = None
    transcript_text: Optional[str] = None
    call_date: Optional[datetime] = None
