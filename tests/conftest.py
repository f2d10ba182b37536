"""Shared fixtures: a fresh in-memory repository per test."""

from datetime import datetime, timedelta, timezone

import pytest

from dealflow.models import BuyerProfile, DealProfile, Tracker
from dealflow.models.repository import Repository

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """Fixed timestamp offset from BASE_TIME."""
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture
def repository():
    return Repository(db_url="sqlite://")


@pytest.fixture
def tracker(repository):
    return repository.add_tracker(Tracker(name="HVAC Services"))


@pytest.fixture
def make_buyer(repository, tracker):
    def _make(pe_firm_name: str = "Summit Partners", minutes: int = 0, source: str = "manual", **fields):
        buyer = BuyerProfile(
            tracker_id=tracker.id,
            pe_firm_name=pe_firm_name,
            created_at=at(minutes),
            updated_at=at(minutes),
            **fields,
        )
        return repository.add_buyer(buyer, source)
    return _make


@pytest.fixture
def make_deal(repository, tracker):
    def _make(deal_name: str = "Lone Star HVAC", **fields):
        deal = DealProfile(tracker_id=tracker.id, deal_name=deal_name, **fields)
        return repository.add_deal(deal)
    return _make
