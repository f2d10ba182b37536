"""Buyer deduplication by website domain and normalized name."""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlparse

from dealflow.errors import MergeAbortedError
from dealflow.models import BuyerProfile, FieldSource
from .merge import MergeEngine

logger = logging.getLogger(__name__)

# Trailing tokens stripped from company names before comparison
LEGAL_SUFFIXES = frozenset({
    "inc", "incorporated", "llc", "corp", "corporation", "co", "company",
    "ltd", "limited", "lp", "llp", "group", "holdings", "partners",
})

# A PE-firm name this much longer than the keeper's, and containing it, wins
MATERIAL_NAME_DELTA = 5


def normalize_domain(value: Optional[str]) -> Optional[str]:
    """Reduce a URL or hostname to a bare lowercase domain, or None."""
    if not value:
        return None

    domain = value.strip()
    if not domain:
        return None

    # Handle full URLs and bare host/path strings alike
    if "://" not in domain:
        domain = f"http://{domain}"
    try:
        parsed = urlparse(domain)
        domain = parsed.netloc or parsed.path
    except ValueError:
        return None

    domain = domain.lower()

    # Remove credentials and port
    domain = domain.rsplit("@", 1)[-1]
    domain = domain.split(":")[0]

    # Remove www prefix
    if domain.startswith("www."):
        domain = domain[4:]

    domain = domain.strip(".")
    if "." not in domain or " " in domain:
        return None
    return domain


def normalize_name(value: Optional[str]) -> Optional[str]:
    """Lowercase, drop punctuation and trailing legal suffixes, collapse spaces."""
    if not value:
        return None

    name = value.lower().replace("&", " and ")
    name = re.sub(r"[^\w\s]", " ", name)
    tokens = name.split()

    stripped = list(tokens)
    while stripped and stripped[-1] in LEGAL_SUFFIXES:
        stripped.pop()

    # A name made only of suffixes ("Holdings Group") stays as-is
    tokens = stripped or tokens
    return " ".join(tokens) or None


@dataclass
class DuplicateGroup:
    """Buyers that look like the same company, with a proposed keeper."""

    key: str
    match_type: str  # 'domain' | 'name'
    buyer_ids: list[str]
    keeper_id: str
    duplicate_ids: list[str]
    merged_display_name: str
    merged_pe_firm_name: str

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "match_type": self.match_type,
            "buyer_ids": self.buyer_ids,
            "keeper_id": self.keeper_id,
            "duplicate_ids": self.duplicate_ids,
            "merged_display_name": self.merged_display_name,
            "merged_pe_firm_name": self.merged_pe_firm_name,
        }


# (group, current member records) -> (survivor, removed ids)
CollapseFn = Callable[[DuplicateGroup, list[BuyerProfile]], tuple[BuyerProfile, list[str]]]


@dataclass
class DedupeReport:
    """Outcome of a dedup run over one buyer collection."""

    groups: list[DuplicateGroup] = field(default_factory=list)
    preview_only: bool = True
    merged: int = 0
    failed: int = 0
    duplicates_deleted: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "preview_only": self.preview_only,
            "groups": [g.to_dict() for g in self.groups],
            "stats": {
                "groups_found": len(self.groups),
                "groups_merged": self.merged,
                "groups_failed": self.failed,
                "duplicates_deleted": self.duplicates_deleted,
            },
            "errors": self.errors,
        }


class DedupeEngine:
    """Find and collapse duplicate buyer records."""

    def __init__(self, merge_engine: Optional[MergeEngine] = None):
        self.merge_engine = merge_engine or MergeEngine()

    def find_groups(self, buyers: list[BuyerProfile]) -> list[DuplicateGroup]:
        """Group probable duplicates; singletons are not reported."""
        domain_buckets: dict[str, list[BuyerProfile]] = defaultdict(list)
        name_pool: list[BuyerProfile] = []

        for buyer in buyers:
            domain = normalize_domain(buyer.platform_website)
            if domain:
                domain_buckets[domain].append(buyer)
            else:
                name_pool.append(buyer)

        groups = []
        for domain in sorted(domain_buckets):
            members = domain_buckets[domain]
            if len(members) >= 2:
                groups.append(self._build_group(domain, "domain", members))
            else:
                # Alone on its domain, still eligible for a name match
                name_pool.extend(members)

        name_buckets: dict[str, list[BuyerProfile]] = defaultdict(list)
        for buyer in name_pool:
            name = normalize_name(buyer.display_name)
            if name:
                name_buckets[name].append(buyer)

        for name in sorted(name_buckets):
            members = name_buckets[name]
            if len(members) >= 2:
                groups.append(self._build_group(name, "name", members))

        logger.info(f"Found {len(groups)} duplicate groups among {len(buyers)} buyers")
        return groups

    def execute_merge(
        self,
        group: DuplicateGroup,
        buyers: list[BuyerProfile],
    ) -> tuple[BuyerProfile, list[str]]:
        """Fold every member of ``group`` into the keeper.

        Every member's fields are replayed through the merge engine at their
        own provenance, lowest rank first and oldest first within a rank, so
        a higher-ranked or newer equal-ranked value wins. On an exact tie of
        source and timestamp the keeper's value wins.
        Pure: persistence and child-record repointing are the caller's job.
        """
        by_id = {b.id: b for b in buyers}
        missing = [bid for bid in group.buyer_ids if bid not in by_id]
        if missing:
            raise MergeAbortedError(
                f"Group '{group.key}' references unknown buyers",
                context={"missing_ids": missing},
            )

        keeper = by_id[group.keeper_id]
        duplicates = self._order_members([by_id[bid] for bid in group.duplicate_ids])
        duplicates.reverse()  # least complete first

        survivor = keeper.model_copy(
            deep=True,
            update={
                **{name: self._empty_value(name) for name in BuyerProfile.MERGEABLE_FIELDS},
                "extraction_sources": {},
                "extraction_evidence": {},
            },
        )
        members = duplicates + [keeper]
        batches = []
        for order, member in enumerate(members):
            batches.extend(self._batches(member, order))
        for (source, extracted_at, _), patch, evidence in sorted(
            batches, key=lambda b: (b[0][0].rank, b[0][1], b[0][2])
        ):
            survivor = self.merge_engine.apply(
                survivor, patch, source, extracted_at, evidence=evidence
            ).record

        survivor.pe_firm_name = group.merged_pe_firm_name or keeper.pe_firm_name
        survivor.created_at = keeper.created_at
        survivor.updated_at = max(m.updated_at for m in members)

        return survivor, list(group.duplicate_ids)

    def run(
        self,
        repository,
        tracker_id: Optional[str],
        preview_only: bool = True,
    ) -> DedupeReport:
        """Find groups for a tracker and, unless previewing, merge each one.

        Every group commits or rolls back on its own; a failed group does not
        stop the others.
        """
        buyers = repository.list_buyers(tracker_id=tracker_id)
        report = DedupeReport(groups=self.find_groups(buyers), preview_only=preview_only)
        if preview_only:
            return report

        for group in report.groups:
            try:
                removed = repository.merge_buyer_group(group, self.execute_merge)
            except MergeAbortedError as e:
                logger.error(f"Dedup merge failed for group '{group.key}': {e}")
                report.failed += 1
                report.errors.append(f"{group.key}: {e.message}")
                continue
            report.merged += 1
            report.duplicates_deleted += len(removed)
            logger.info(
                f"Merged group '{group.key}' into {group.keeper_id}, removed {len(removed)}"
            )

        logger.info(
            f"Dedup complete: {report.merged} merged, {report.failed} failed, "
            f"{report.duplicates_deleted} duplicates deleted"
        )
        return report

    def _build_group(
        self,
        key: str,
        match_type: str,
        members: list[BuyerProfile],
    ) -> DuplicateGroup:
        ordered = self._order_members(members)
        keeper = ordered[0]
        return DuplicateGroup(
            key=key,
            match_type=match_type,
            buyer_ids=[b.id for b in ordered],
            keeper_id=keeper.id,
            duplicate_ids=[b.id for b in ordered[1:]],
            merged_display_name=self._propose_display_name(ordered),
            merged_pe_firm_name=self._propose_pe_firm_name(ordered),
        )

    @staticmethod
    def _order_members(members: list[BuyerProfile]) -> list[BuyerProfile]:
        """Most populated first; ties go to the oldest record, then id."""
        return sorted(
            members,
            key=lambda b: (-len(b.populated_fields()), b.created_at, b.id),
        )

    @staticmethod
    def _propose_display_name(ordered: list[BuyerProfile]) -> str:
        for buyer in ordered:
            if buyer.platform_company_name and buyer.platform_company_name.strip():
                return buyer.platform_company_name.strip()
        return ordered[0].pe_firm_name.strip()

    @staticmethod
    def _propose_pe_firm_name(ordered: list[BuyerProfile]) -> str:
        best = ordered[0].pe_firm_name.strip()
        best_norm = normalize_name(best) or ""
        for buyer in ordered[1:]:
            candidate = buyer.pe_firm_name.strip()
            candidate_norm = normalize_name(candidate) or ""
            if not best_norm:
                if candidate_norm:
                    best, best_norm = candidate, candidate_norm
                continue
            if best_norm in candidate_norm and len(candidate) >= len(best) + MATERIAL_NAME_DELTA:
                best, best_norm = candidate, candidate_norm
        return best

    @staticmethod
    def _empty_value(name: str):
        default = BuyerProfile.model_fields[name].get_default(call_default_factory=True)
        return default

    @staticmethod
    def _batches(member: BuyerProfile, order: int) -> list[tuple[tuple, dict, dict]]:
        """Split a member's populated fields into patches by provenance."""
        grouped: dict[tuple[FieldSource, datetime], dict] = defaultdict(dict)
        for name in member.populated_fields():
            entry = member.extraction_sources.get(name)
            if entry is not None:
                batch_key = (entry.source, entry.extracted_at)
            else:
                batch_key = (FieldSource.MANUAL, member.updated_at)
            grouped[batch_key][name] = getattr(member, name)

        return [
            (
                (source, extracted_at, order),
                patch,
                {
                    name: member.extraction_evidence[name]
                    for name in patch
                    if name in member.extraction_evidence
                },
            )
            for (source, extracted_at), patch in grouped.items()
        ]
