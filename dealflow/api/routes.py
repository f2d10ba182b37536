"""API routes for the deal-flow matching core."""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from dealflow.config import settings
from dealflow.connectors import (
    ClaudeExtractionOracle,
    ClaudeScoringOracle,
    HttpContactDiscovery,
)
from dealflow.enrich import DedupeEngine, RecordLocks
from dealflow.enrich.service import EnrichmentService
from dealflow.errors import InputError
from dealflow.models import BuyerDealMatch, PassCategory
from dealflow.models.repository import Repository
from dealflow.score import MatchingSession, ScoreAggregator

logger = logging.getLogger(__name__)

router = APIRouter()


class ExtractionRequest(BaseModel):
    """Either a ready field patch or raw text for the extraction oracle."""
    source: str = Field(description="transcript | notes | website | csv | manual")
    fields: Optional[dict[str, Any]] = None
    text: Optional[str] = None
    evidence: dict[str, str] = Field(default_factory=dict)
    evidence_timestamp: Optional[datetime] = None


class ExtractionResponse(BaseModel):
    """Outcome of one extraction request."""
    record_id: str
    status: str
    applied_fields: list[str]
    skipped_fields: dict[str, str]
    low_confidence_fields: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class DedupeRequest(BaseModel):
    preview_only: bool = True


class InterestRequest(BaseModel):
    interested: Optional[bool]


class PassRequest(BaseModel):
    category: PassCategory
    reason: str
    notes: Optional[str] = None


# Dependencies, overridden in tests


@lru_cache(maxsize=None)
def get_repository() -> Repository:
    return Repository(db_url=settings.database_url)


@lru_cache(maxsize=None)
def get_enrichment_service() -> EnrichmentService:
    return EnrichmentService(
        get_repository(),
        extraction_oracle=ClaudeExtractionOracle(),
        locks=RecordLocks(),
    )


@lru_cache(maxsize=None)
def get_matching_session() -> MatchingSession:
    discovery = HttpContactDiscovery() if settings.contact_discovery_url else None
    return MatchingSession(
        get_repository(),
        ClaudeScoringOracle(),
        contact_discovery=discovery,
    )


def get_dedupe_engine() -> DedupeEngine:
    return DedupeEngine()


# Extraction


async def _run_extraction(
    kind: str,
    record_id: str,
    request: ExtractionRequest,
    service: EnrichmentService,
) -> ExtractionResponse:
    if (request.fields is None) == (request.text is None):
        raise InputError("Provide exactly one of 'fields' or 'text'")

    if request.fields is not None:
        result = await service.apply_patch(
            kind,
            record_id,
            request.fields,
            request.source,
            evidence_timestamp=request.evidence_timestamp,
            evidence=request.evidence,
        )
        return ExtractionResponse(
            record_id=record_id,
            status="applied" if result.changed else "unchanged",
            applied_fields=result.applied_fields,
            skipped_fields=result.skipped_fields,
        )

    outcome = await service.enrich_from_text(
        kind,
        record_id,
        request.text,
        request.source,
        evidence_timestamp=request.evidence_timestamp,
    )
    return ExtractionResponse(
        record_id=record_id,
        status=outcome.status,
        applied_fields=outcome.applied_fields,
        skipped_fields=outcome.skipped_fields,
        low_confidence_fields=outcome.low_confidence_fields,
        error=outcome.error,
    )


@router.post("/buyers/{buyer_id}/extractions", response_model=ExtractionResponse)
async def extract_buyer_fields(
    buyer_id: str,
    request: ExtractionRequest,
    service: EnrichmentService = Depends(get_enrichment_service),
):
    """Merge extracted fields into a buyer profile."""
    return await _run_extraction("buyer", buyer_id, request, service)


@router.post("/deals/{deal_id}/extractions", response_model=ExtractionResponse)
async def extract_deal_fields(
    deal_id: str,
    request: ExtractionRequest,
    service: EnrichmentService = Depends(get_enrichment_service),
):
    """Merge extracted fields into a deal profile."""
    return await _run_extraction("deal", deal_id, request, service)


# Dedup


@router.post("/trackers/{tracker_id}/dedupe")
async def dedupe_tracker(
    tracker_id: str,
    request: DedupeRequest,
    repository: Repository = Depends(get_repository),
    engine: DedupeEngine = Depends(get_dedupe_engine),
):
    """Preview or execute buyer deduplication for a tracker."""
    repository.get_tracker(tracker_id)
    report = engine.run(repository, tracker_id, preview_only=request.preview_only)
    return report.to_dict()


# Scoring and decisions


@router.post("/deals/{deal_id}/score")
async def score_deal(
    deal_id: str,
    session: MatchingSession = Depends(get_matching_session),
):
    """Score every buyer in the deal's tracker and return them ranked."""
    result = await session.run(deal_id)
    return result.to_dict()


@router.get("/deals/{deal_id}/matches", response_model=list[BuyerDealMatch])
async def list_matches(
    deal_id: str,
    repository: Repository = Depends(get_repository),
):
    """Stored matches for a deal, in ranking order."""
    repository.get_deal(deal_id)
    return ScoreAggregator().rank(repository.list_matches(deal_id))


@router.post("/deals/{deal_id}/matches/{buyer_id}/approve", response_model=BuyerDealMatch)
async def approve_buyer(
    deal_id: str,
    buyer_id: str,
    session: MatchingSession = Depends(get_matching_session),
):
    return await session.approve(deal_id, buyer_id)


@router.post("/deals/{deal_id}/matches/{buyer_id}/interest", response_model=BuyerDealMatch)
async def set_buyer_interest(
    deal_id: str,
    buyer_id: str,
    request: InterestRequest,
    session: MatchingSession = Depends(get_matching_session),
):
    return await session.set_interest(deal_id, buyer_id, request.interested)


@router.post("/deals/{deal_id}/matches/{buyer_id}/pass", response_model=BuyerDealMatch)
async def pass_buyer(
    deal_id: str,
    buyer_id: str,
    request: PassRequest,
    session: MatchingSession = Depends(get_matching_session),
):
    return await session.pass_on_deal(
        deal_id, buyer_id, request.category, request.reason, request.notes
    )
