"""SQLAlchemy database models and setup."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from dealflow.config import settings

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DBTracker(Base):
    """Buyer universe and its scoring weights."""

    __tablename__ = "trackers"

    id = Column(String(36), primary_key=True)
    name = Column(String(500), nullable=False)
    geography_weight = Column(Float)
    service_weight = Column(Float)
    size_weight = Column(Float)
    owner_goals_weight = Column(Float)
    created_at = Column(DateTime, default=_utcnow)


class DBBuyer(Base):
    """Stored buyer profile."""

    __tablename__ = "buyers"

    id = Column(String(36), primary_key=True)
    tracker_id = Column(String(36), ForeignKey("trackers.id"), index=True)

    # Identity
    pe_firm_name = Column(String(500), nullable=False)
    pe_firm_website = Column(String(1000))
    platform_company_name = Column(String(500))
    platform_website = Column(String(1000))

    # Size preferences
    min_revenue = Column(Float)
    max_revenue = Column(Float)
    revenue_sweet_spot = Column(Float)
    min_ebitda = Column(Float)
    max_ebitda = Column(Float)
    ebitda_sweet_spot = Column(Float)

    # Targeting
    target_services = Column(JSON, default=list)
    target_industries = Column(JSON, default=list)
    target_geographies = Column(JSON, default=list)
    geographic_footprint = Column(JSON, default=list)
    deal_breakers = Column(JSON, default=list)
    key_quotes = Column(JSON, default=list)

    # Narrative
    thesis_summary = Column(Text)
    business_summary = Column(Text)
    services_offered = Column(Text)
    owner_transition_goals = Column(Text)
    acquisition_appetite = Column(Text)

    # Location
    hq_city = Column(String(200))
    hq_state = Column(String(100))
    hq_country = Column(String(100))

    fee_agreement_status = Column(String(100))

    # Provenance, written with the fields in the same row update
    extraction_sources = Column(JSON, default=dict)
    extraction_evidence = Column(JSON, default=dict)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("idx_buyer_platform_name", "platform_company_name"),
        Index("idx_buyer_platform_website", "platform_website"),
    )


class DBDeal(Base):
    """Stored deal profile."""

    __tablename__ = "deals"

    id = Column(String(36), primary_key=True)
    tracker_id = Column(String(36), ForeignKey("trackers.id"), index=True)
    deal_name = Column(String(500), nullable=False)
    status = Column(String(50), default="Active")
    deal_score = Column(Float)

    company_website = Column(String(1000))
    revenue = Column(Float)
    ebitda = Column(Float)
    employee_count = Column(Integer)
    location_count = Column(Integer)
    headquarters = Column(String(500))
    geography = Column(JSON, default=list)
    service_mix = Column(Text)
    industry_type = Column(String(200))
    business_model = Column(String(200))
    owner_goals = Column(Text)
    company_overview = Column(Text)

    extraction_sources = Column(JSON, default=dict)
    extraction_evidence = Column(JSON, default=dict)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    __table_args__ = (Index("idx_deal_status", "status"),)


class DBBuyerDealMatch(Base):
    """Scores and user decisions for one buyer-deal pair."""

    __tablename__ = "buyer_deal_matches"

    id = Column(String(36), primary_key=True)
    buyer_id = Column(String(36), ForeignKey("buyers.id"), nullable=False)
    deal_id = Column(String(36), ForeignKey("deals.id"), nullable=False)
    buyer_name = Column(String(500), default="")

    # Score fields
    geography_score = Column(Float)
    service_score = Column(Float)
    size_score = Column(Float)
    owner_goals_score = Column(Float)
    thesis_bonus = Column(Float, default=0.0)
    composite_score = Column(Float)
    is_disqualified = Column(Boolean, default=False)
    disqualification_reasons = Column(JSON, default=list)
    data_completeness = Column(String(20))
    needs_review = Column(Boolean, default=False)
    review_reason = Column(Text)
    fit_reasoning = Column(Text)
    scored_at = Column(DateTime)

    # Decision fields
    selected_for_outreach = Column(Boolean, default=False)
    interested = Column(Boolean)
    interested_at = Column(DateTime)
    passed_on_deal = Column(Boolean, default=False)
    pass_category = Column(String(50))
    pass_reason = Column(Text)
    pass_notes = Column(Text)
    passed_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("buyer_id", "deal_id", name="uq_match_buyer_deal"),
        Index("idx_match_deal", "deal_id"),
        Index("idx_match_composite", "composite_score"),
    )


class DBBuyerContact(Base):
    """Contact person at a buyer."""

    __tablename__ = "buyer_contacts"

    id = Column(String(36), primary_key=True)
    buyer_id = Column(String(36), ForeignKey("buyers.id"), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    title = Column(String(500))
    email = Column(String(500))
    linkedin_url = Column(String(1000))


class DBBuyerTranscript(Base):
    """Call transcript attached to a buyer."""

    __tablename__ = "buyer_transcripts"

    id = Column(String(36), primary_key=True)
    buyer_id = Column(String(36), ForeignKey("buyers.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    url = Column(String(1000))
    transcript_text = Column(Text)
    call_date = Column(DateTime)


class DBBulkCheckpoint(Base):
    """Resume point for a bulk operation over one collection."""

    __tablename__ = "bulk_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(String(100), nullable=False)
    collection_id = Column(String(100), nullable=False)
    status = Column(String(20), default="running")  # running, completed, cancelled
    processed_ids = Column(JSON, default=list)
    failed_ids = Column(JSON, default=list)
    updated_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("operation_id", "collection_id", name="uq_checkpoint_op_collection"),
    )


# Database initialization
def init_db(db_url: Optional[str] = None) -> sessionmaker:
    """Initialize database and return session maker."""
    url = db_url or settings.database_url
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory DB
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
