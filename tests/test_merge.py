"""Tests for source-priority field merging and provenance."""

import pytest

from dealflow.enrich import MergeEngine, ProvenanceStore
from dealflow.enrich.merge import (
    SKIP_EMPTY,
    SKIP_INVALID,
    SKIP_LOWER_PRIORITY,
    SKIP_PLACEHOLDER,
    SKIP_UNKNOWN_FIELD,
)
from dealflow.errors import InvalidPatchError, InvalidSourceError
from dealflow.models import BuyerProfile, DealProfile, FieldProvenance, FieldSource

from conftest import at


def make_buyer(**fields) -> BuyerProfile:
    return BuyerProfile(pe_firm_name="Summit Partners", **fields)


class TestSourcePriority:
    """Tests for which source may overwrite which."""

    def test_transcript_value_survives_later_website(self):
        engine = MergeEngine()
        buyer = make_buyer()

        first = engine.apply(buyer, {"min_revenue": 5}, "transcript", at(0))
        second = engine.apply(first.record, {"min_revenue": 3, "hq_city": "Dallas"}, "website", at(10))

        assert second.record.min_revenue == 5.0
        assert second.record.hq_city == "Dallas"
        assert second.skipped_fields == {"min_revenue": SKIP_LOWER_PRIORITY}
        assert second.record.extraction_sources["min_revenue"].source == FieldSource.TRANSCRIPT
        assert second.record.extraction_sources["hq_city"].source == FieldSource.WEBSITE

    def test_higher_source_overwrites_lower(self):
        engine = MergeEngine()
        buyer = engine.apply(make_buyer(), {"max_revenue": 20}, "csv", at(0)).record

        result = engine.apply(buyer, {"max_revenue": 25}, "notes", at(5))

        assert result.record.max_revenue == 25.0
        assert result.applied_fields == ["max_revenue"]

    def test_equal_rank_refreshes_value(self):
        engine = MergeEngine()
        buyer = engine.apply(make_buyer(), {"hq_state": "TX"}, "website", at(0)).record

        result = engine.apply(buyer, {"hq_state": "OK"}, "website", at(5))

        assert result.record.hq_state == "OK"
        assert result.record.extraction_sources["hq_state"].extracted_at == at(5)

    def test_empty_field_accepts_lowest_source(self):
        result = MergeEngine().apply(make_buyer(), {"hq_country": "USA"}, "csv", at(0))
        assert result.record.hq_country == "USA"

    def test_untracked_value_counts_as_manual(self):
        buyer = make_buyer(hq_city="Austin")

        result = MergeEngine().apply(buyer, {"hq_city": "Houston"}, "csv", at(0))

        assert result.record.hq_city == "Houston"

    def test_manual_cannot_overwrite_extracted(self):
        engine = MergeEngine()
        buyer = engine.apply(make_buyer(), {"hq_city": "Dallas"}, "csv", at(0)).record

        result = engine.apply(buyer, {"hq_city": "Austin"}, FieldSource.MANUAL, at(5))

        assert result.record.hq_city == "Dallas"
        assert result.skipped_fields == {"hq_city": SKIP_LOWER_PRIORITY}

    def test_monotonic_across_all_sources(self):
        """A stored value never moves to a lower-ranked source."""
        engine = MergeEngine()
        record = make_buyer()
        order = ["notes", "csv", "transcript", "manual", "website", "notes"]
        best_rank = 0
        for minute, source in enumerate(order):
            record = engine.apply(record, {"min_ebitda": minute + 1}, source, at(minute)).record
            best_rank = max(best_rank, FieldSource(source).rank)
            assert record.extraction_sources["min_ebitda"].source.rank == best_rank

        assert record.min_ebitda == 3.0


class TestMergeSemantics:
    """Tests for patch validation, cleaning and idempotence."""

    def test_placeholder_strings_are_rejected(self):
        engine = MergeEngine()
        for placeholder in ["N/A", "not specified", "  Unknown  ", "TBD", "none"]:
            result = engine.apply(make_buyer(), {"thesis_summary": placeholder}, "notes", at(0))
            assert result.record.thesis_summary is None
            assert result.skipped_fields == {"thesis_summary": SKIP_PLACEHOLDER}

    def test_placeholder_does_not_clobber_existing_value(self):
        engine = MergeEngine()
        buyer = engine.apply(make_buyer(), {"thesis_summary": "Roll-up of HVAC"}, "notes", at(0)).record

        result = engine.apply(buyer, {"thesis_summary": "n/a"}, "transcript", at(5))

        assert result.record.thesis_summary == "Roll-up of HVAC"
        assert result.record.extraction_sources["thesis_summary"].source == FieldSource.NOTES

    def test_empty_values_are_skipped(self):
        result = MergeEngine().apply(
            make_buyer(), {"hq_city": "   ", "target_services": []}, "notes", at(0)
        )

        assert result.skipped_fields == {"hq_city": SKIP_EMPTY, "target_services": SKIP_EMPTY}
        assert not result.changed

    def test_list_items_are_cleaned(self):
        result = MergeEngine().apply(
            make_buyer(), {"target_services": [" HVAC ", "n/a", "", "Plumbing"]}, "notes", at(0)
        )
        assert result.record.target_services == ["HVAC", "Plumbing"]

    def test_list_of_only_placeholders_is_rejected(self):
        result = MergeEngine().apply(make_buyer(), {"target_geographies": ["N/A"]}, "notes", at(0))
        assert result.skipped_fields == {"target_geographies": SKIP_PLACEHOLDER}

    def test_lists_are_replaced_not_unioned(self):
        engine = MergeEngine()
        buyer = engine.apply(make_buyer(), {"target_geographies": ["TX", "OK"]}, "notes", at(0)).record

        result = engine.apply(buyer, {"target_geographies": ["FL"]}, "transcript", at(5))

        assert result.record.target_geographies == ["FL"]

    def test_unknown_and_identity_fields_are_skipped(self):
        result = MergeEngine().apply(
            make_buyer(), {"favorite_color": "blue", "pe_firm_name": "Other"}, "notes", at(0)
        )

        assert result.record.pe_firm_name == "Summit Partners"
        assert result.skipped_fields == {
            "favorite_color": SKIP_UNKNOWN_FIELD,
            "pe_firm_name": SKIP_UNKNOWN_FIELD,
        }

    def test_values_are_coerced_to_field_type(self):
        result = MergeEngine().apply(make_buyer(), {"min_revenue": "7.5"}, "notes", at(0))
        assert result.record.min_revenue == 7.5

    def test_uncoercible_value_is_skipped(self):
        result = MergeEngine().apply(make_buyer(), {"min_revenue": "lots"}, "notes", at(0))
        assert result.skipped_fields == {"min_revenue": SKIP_INVALID}

    def test_idempotent(self):
        engine = MergeEngine()
        patch = {"min_revenue": 5, "target_services": ["HVAC"], "hq_city": "Tulsa"}

        once = engine.apply(make_buyer(id="b1", created_at=at(0)), patch, "transcript", at(1)).record
        twice = engine.apply(once, patch, "transcript", at(1)).record

        assert twice.model_dump() == once.model_dump()

    def test_input_record_is_not_mutated(self):
        buyer = make_buyer()
        MergeEngine().apply(buyer, {"hq_city": "Tulsa"}, "notes", at(0))

        assert buyer.hq_city is None
        assert buyer.extraction_sources == {}

    def test_evidence_follows_value(self):
        engine = MergeEngine()
        buyer = engine.apply(
            make_buyer(), {"min_revenue": 5}, "notes", at(0), evidence={"min_revenue": "at least $5M"}
        ).record
        assert buyer.extraction_evidence == {"min_revenue": "at least $5M"}

        buyer = engine.apply(buyer, {"min_revenue": 6}, "transcript", at(5)).record
        assert "min_revenue" not in buyer.extraction_evidence

    def test_updated_at_tracks_evidence_time(self):
        result = MergeEngine().apply(make_buyer(), {"hq_city": "Tulsa"}, "notes", at(42))
        assert result.record.updated_at == at(42)

    def test_deal_fields_merge(self):
        deal = DealProfile(deal_name="Lone Star HVAC")
        result = MergeEngine().apply(deal, {"revenue": 12, "employee_count": "40"}, "notes", at(0))

        assert result.record.revenue == 12.0
        assert result.record.employee_count == 40

    def test_non_mapping_patch_raises(self):
        with pytest.raises(InvalidPatchError):
            MergeEngine().apply(make_buyer(), [("hq_city", "Tulsa")], "notes")

    def test_non_string_keys_raise(self):
        with pytest.raises(InvalidPatchError):
            MergeEngine().apply(make_buyer(), {1: "Tulsa"}, "notes")

    def test_unknown_source_raises(self):
        with pytest.raises(InvalidSourceError):
            MergeEngine().apply(make_buyer(), {"hq_city": "Tulsa"}, "email")

    def test_source_names_are_case_insensitive(self):
        result = MergeEngine().apply(make_buyer(), {"hq_city": "Tulsa"}, " Transcript ", at(0))
        assert result.record.extraction_sources["hq_city"].source == FieldSource.TRANSCRIPT


class TestProvenanceStore:
    """Tests for per-field provenance lookups."""

    def test_source_of_empty_field(self):
        assert ProvenanceStore(make_buyer()).source_of("hq_city") is None

    def test_source_of_untracked_value(self):
        store = ProvenanceStore(make_buyer(hq_city="Austin"))
        assert store.source_of("hq_city") == FieldSource.MANUAL
        assert store.rank_of("hq_city") == 20

    def test_protected_fields(self):
        buyer = make_buyer(
            hq_city="Austin",
            min_revenue=5,
            extraction_sources={
                "min_revenue": FieldProvenance(source=FieldSource.TRANSCRIPT, extracted_at=at(0)),
            },
        )

        store = ProvenanceStore(buyer)

        assert store.protected_fields("website") == ["min_revenue"]
        assert store.protected_fields("transcript") == []

    def test_stamp_skips_manual(self):
        buyer = make_buyer(hq_city="Austin")
        assert ProvenanceStore(buyer).stamp("manual", at(0)) == []
        assert ProvenanceStore(buyer).stamp("csv", at(0)) == ["hq_city"]
        assert buyer.extraction_sources["hq_city"].source == FieldSource.CSV

    def test_drop_reverts_to_manual_attribution(self):
        buyer = MergeEngine().apply(make_buyer(), {"hq_city": "Tulsa"}, "transcript", at(0)).record
        store = ProvenanceStore(buyer)

        store.drop("hq_city")

        assert store.source_of("hq_city") == FieldSource.MANUAL
        assert store.can_overwrite("hq_city", "csv")
