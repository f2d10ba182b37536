"""Persistence for profiles, matches, child records and bulk checkpoints."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from pydantic import BaseModel
from sqlalchemy import DateTime, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dealflow.enrich.dedupe import CollapseFn, DuplicateGroup, normalize_domain
from dealflow.enrich.provenance import ProvenanceStore
from dealflow.errors import (
    InputError,
    MergeAbortedError,
    RecordNotFoundError,
    wrap_persistence_error,
)
from .checkpoint import BulkCheckpoint
from .database import (
    Base,
    DBBulkCheckpoint,
    DBBuyer,
    DBBuyerContact,
    DBBuyerDealMatch,
    DBBuyerTranscript,
    DBDeal,
    DBTracker,
    init_db,
)
from .match import BuyerDealMatch, DECISION_FIELDS, SCORE_FIELDS
from .profiles import (
    BuyerContact,
    BuyerProfile,
    BuyerTranscript,
    DealProfile,
    ProfileRecord,
    Tracker,
    utcnow,
)
from .provenance import FieldSource

logger = logging.getLogger(__name__)

PROFILE_KINDS: dict[str, tuple[type[Base], type[ProfileRecord]]] = {
    "buyer": (DBBuyer, BuyerProfile),
    "deal": (DBDeal, DealProfile),
}


def _to_model(row: Base, model: type[BaseModel]) -> BaseModel:
    data = {column.key: getattr(row, column.key) for column in row.__table__.columns}
    return model.model_validate(data)


def _column_values(model: BaseModel, table) -> dict:
    """Model -> column dict; datetimes stay native, everything else JSON-safe."""
    native = model.model_dump()
    json_safe = model.model_dump(mode="json")
    values = {}
    for column in table.columns:
        if column.key not in native:
            continue
        if isinstance(column.type, DateTime):
            values[column.key] = native[column.key]
        else:
            values[column.key] = json_safe[column.key]
    return values


def _score_or_floor(score: Optional[float]) -> float:
    return -1.0 if score is None else score


def _kind(kind: str) -> tuple[type[Base], type[ProfileRecord]]:
    try:
        return PROFILE_KINDS[kind]
    except KeyError:
        raise InputError(f"Unknown profile kind: {kind!r}") from None


class Repository:
    """Row-level CRUD over the deal-flow tables.

    Read-modify-write paths select with ``FOR UPDATE`` so concurrent writers
    to one row serialize on backends that support row locks.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, db_url: Optional[str] = None):
        self.session_factory = session_factory or init_db(db_url)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise wrap_persistence_error(e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Trackers

    def add_tracker(self, tracker: Tracker) -> Tracker:
        with self.session_scope() as session:
            session.add(DBTracker(**_column_values(tracker, DBTracker.__table__)))
        return tracker

    def get_tracker(self, tracker_id: str) -> Tracker:
        with self.session_scope() as session:
            row = session.get(DBTracker, tracker_id)
            if row is None:
                raise RecordNotFoundError(f"Tracker {tracker_id} not found")
            return _to_model(row, Tracker)

    # Profiles

    def add_profile(
        self,
        kind: str,
        record: ProfileRecord,
        source: Union[FieldSource, str] = FieldSource.MANUAL,
    ) -> ProfileRecord:
        """Insert a new profile; non-manual sources stamp provenance on every populated field."""
        table, _ = _kind(kind)
        record = record.model_copy(deep=True)
        ProvenanceStore(record).stamp(source, record.created_at)
        with self.session_scope() as session:
            session.add(table(**_column_values(record, table.__table__)))
        return record

    def get_profile(self, kind: str, record_id: str) -> ProfileRecord:
        table, model = _kind(kind)
        with self.session_scope() as session:
            row = self._load(session, table, record_id)
            return _to_model(row, model)

    def save_profile(self, kind: str, record: ProfileRecord) -> ProfileRecord:
        """Write every field and its provenance in a single row update."""
        table, _ = _kind(kind)
        with self.session_scope() as session:
            row = self._load(session, table, record.id, for_update=True)
            for key, value in _column_values(record, table.__table__).items():
                setattr(row, key, value)
        return record

    def add_buyer(self, buyer: BuyerProfile, source: Union[FieldSource, str] = FieldSource.MANUAL) -> BuyerProfile:
        return self.add_profile("buyer", buyer, source)

    def get_buyer(self, buyer_id: str) -> BuyerProfile:
        return self.get_profile("buyer", buyer_id)

    def list_buyers(self, tracker_id: Optional[str] = None) -> list[BuyerProfile]:
        with self.session_scope() as session:
            stmt = select(DBBuyer).order_by(DBBuyer.created_at, DBBuyer.id)
            if tracker_id is not None:
                stmt = stmt.where(DBBuyer.tracker_id == tracker_id)
            return [_to_model(row, BuyerProfile) for row in session.scalars(stmt)]

    def add_deal(self, deal: DealProfile, source: Union[FieldSource, str] = FieldSource.MANUAL) -> DealProfile:
        """Insert a deal unless one with the same website already exists in the tracker."""
        existing = self.find_deal_by_website(deal.tracker_id, deal.company_website)
        if existing is not None:
            logger.info(f"Deal {deal.deal_name!r} matches existing deal {existing.id} by website")
            return existing
        return self.add_profile("deal", deal, source)

    def get_deal(self, deal_id: str) -> DealProfile:
        return self.get_profile("deal", deal_id)

    def list_deals(self, tracker_id: Optional[str] = None) -> list[DealProfile]:
        with self.session_scope() as session:
            stmt = select(DBDeal).order_by(DBDeal.created_at, DBDeal.id)
            if tracker_id is not None:
                stmt = stmt.where(DBDeal.tracker_id == tracker_id)
            return [_to_model(row, DealProfile) for row in session.scalars(stmt)]

    def find_deal_by_website(self, tracker_id: Optional[str], website: Optional[str]) -> Optional[DealProfile]:
        domain = normalize_domain(website)
        if not domain:
            return None
        for deal in self.list_deals(tracker_id=tracker_id):
            if normalize_domain(deal.company_website) == domain:
                return deal
        return None

    def delete_buyer(self, buyer_id: str):
        """Delete a buyer with its contacts, transcripts and match rows."""
        with self.session_scope() as session:
            self._load(session, DBBuyer, buyer_id, for_update=True)
            session.execute(delete(DBBuyerContact).where(DBBuyerContact.buyer_id == buyer_id))
            session.execute(delete(DBBuyerTranscript).where(DBBuyerTranscript.buyer_id == buyer_id))
            session.execute(delete(DBBuyerDealMatch).where(DBBuyerDealMatch.buyer_id == buyer_id))
            session.execute(delete(DBBuyer).where(DBBuyer.id == buyer_id))

    def delete_deal(self, deal_id: str):
        with self.session_scope() as session:
            self._load(session, DBDeal, deal_id, for_update=True)
            session.execute(delete(DBBuyerDealMatch).where(DBBuyerDealMatch.deal_id == deal_id))
            session.execute(delete(DBDeal).where(DBDeal.id == deal_id))

    def count_buyers(self, tracker_id: Optional[str] = None) -> int:
        return len(self.list_buyers(tracker_id))

    # Child records

    def add_contact(self, contact: BuyerContact) -> BuyerContact:
        with self.session_scope() as session:
            session.add(DBBuyerContact(**_column_values(contact, DBBuyerContact.__table__)))
        return contact

    def list_contacts(self, buyer_id: str) -> list[BuyerContact]:
        with self.session_scope() as session:
            stmt = select(DBBuyerContact).where(DBBuyerContact.buyer_id == buyer_id).order_by(DBBuyerContact.id)
            return [_to_model(row, BuyerContact) for row in session.scalars(stmt)]

    def add_transcript(self, transcript: BuyerTranscript) -> BuyerTranscript:
        with self.session_scope() as session:
            session.add(DBBuyerTranscript(**_column_values(transcript, DBBuyerTranscript.__table__)))
        return transcript

    def list_transcripts(self, buyer_id: str) -> list[BuyerTranscript]:
        with self.session_scope() as session:
            stmt = (
                select(DBBuyerTranscript)
                .where(DBBuyerTranscript.buyer_id == buyer_id)
                .order_by(DBBuyerTranscript.id)
            )
            return [_to_model(row, BuyerTranscript) for row in session.scalars(stmt)]

    # Matches

    def get_match(self, deal_id: str, buyer_id: str) -> Optional[BuyerDealMatch]:
        with self.session_scope() as session:
            row = self._match_row(session, deal_id, buyer_id)
            return _to_model(row, BuyerDealMatch) if row else None

    def list_matches(self, deal_id: str) -> list[BuyerDealMatch]:
        with self.session_scope() as session:
            stmt = select(DBBuyerDealMatch).where(DBBuyerDealMatch.deal_id == deal_id)
            return [_to_model(row, BuyerDealMatch) for row in session.scalars(stmt)]

    def list_matches_for_buyer(self, buyer_id: str) -> list[BuyerDealMatch]:
        with self.session_scope() as session:
            stmt = select(DBBuyerDealMatch).where(DBBuyerDealMatch.buyer_id == buyer_id)
            return [_to_model(row, BuyerDealMatch) for row in session.scalars(stmt)]

    def save_match_scores(self, matches: list[BuyerDealMatch]):
        """Upsert score fields only; decision columns of existing rows are left alone."""
        with self.session_scope() as session:
            for match in matches:
                values = _column_values(match, DBBuyerDealMatch.__table__)
                row = self._match_row(session, match.deal_id, match.buyer_id, for_update=True)
                if row is None:
                    session.add(DBBuyerDealMatch(**values))
                    continue
                for key in SCORE_FIELDS:
                    setattr(row, key, values[key])

    def save_match_decision(self, match: BuyerDealMatch) -> BuyerDealMatch:
        """Write decision fields only."""
        with self.session_scope() as session:
            row = self._match_row(session, match.deal_id, match.buyer_id, for_update=True)
            if row is None:
                raise RecordNotFoundError(
                    f"No match for buyer {match.buyer_id} on deal {match.deal_id}"
                )
            values = _column_values(match, DBBuyerDealMatch.__table__)
            for key in DECISION_FIELDS:
                setattr(row, key, values[key])
        return match

    # Dedup

    def merge_buyer_group(self, group: DuplicateGroup, collapse: CollapseFn) -> list[str]:
        """Collapse one duplicate group in a single transaction.

        Re-reads the members, writes the survivor, repoints contacts,
        transcripts and match rows to the keeper, then deletes the
        duplicates. Any failure rolls the whole group back.
        """
        session = self.session_factory()
        try:
            rows = [self._load(session, DBBuyer, bid, for_update=True) for bid in group.buyer_ids]
            buyers = [_to_model(row, BuyerProfile) for row in rows]
            survivor, removed_ids = collapse(group, buyers)

            keeper_row = rows[group.buyer_ids.index(group.keeper_id)]
            for key, value in _column_values(survivor, DBBuyer.__table__).items():
                if key != "id":
                    setattr(keeper_row, key, value)
            session.flush()

            for duplicate_id in removed_ids:
                self._repoint_contacts(session, duplicate_id, group.keeper_id)
                self._repoint_transcripts(session, duplicate_id, group.keeper_id)
                self._repoint_matches(session, duplicate_id, group.keeper_id)

            session.execute(delete(DBBuyer).where(DBBuyer.id.in_(removed_ids)))
            session.commit()
            return removed_ids
        except Exception as e:
            session.rollback()
            if isinstance(e, MergeAbortedError):
                raise
            raise MergeAbortedError(
                f"Merge of group '{group.key}' aborted: {e}",
                context={"keeper_id": group.keeper_id, "error_type": type(e).__name__},
            ) from e
        finally:
            session.close()

    def _repoint_contacts(self, session: Session, from_id: str, to_id: str):
        session.execute(
            update(DBBuyerContact).where(DBBuyerContact.buyer_id == from_id).values(buyer_id=to_id)
        )

    def _repoint_transcripts(self, session: Session, from_id: str, to_id: str):
        session.execute(
            update(DBBuyerTranscript).where(DBBuyerTranscript.buyer_id == from_id).values(buyer_id=to_id)
        )

    def _repoint_matches(self, session: Session, from_id: str, to_id: str):
        """Move match rows; on a (buyer, deal) collision keep the higher composite score."""
        stmt = select(DBBuyerDealMatch).where(DBBuyerDealMatch.buyer_id == from_id)
        for row in list(session.scalars(stmt)):
            existing = self._match_row(session, row.deal_id, to_id)
            if existing is None:
                row.buyer_id = to_id
                session.flush()
                continue
            if _score_or_floor(row.composite_score) > _score_or_floor(existing.composite_score):
                session.delete(existing)
                session.flush()
                row.buyer_id = to_id
            else:
                session.delete(row)
            session.flush()

    # Checkpoints

    def get_checkpoint(self, operation_id: str, collection_id: str) -> Optional[BulkCheckpoint]:
        with self.session_scope() as session:
            row = self._checkpoint_row(session, operation_id, collection_id)
            return _to_model(row, BulkCheckpoint) if row else None

    def save_checkpoint(self, checkpoint: BulkCheckpoint) -> BulkCheckpoint:
        checkpoint.updated_at = utcnow()
        with self.session_scope() as session:
            values = _column_values(checkpoint, DBBulkCheckpoint.__table__)
            row = self._checkpoint_row(
                session, checkpoint.operation_id, checkpoint.collection_id, for_update=True
            )
            if row is None:
                session.add(DBBulkCheckpoint(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
        return checkpoint

    def clear_checkpoint(self, operation_id: str, collection_id: str):
        with self.session_scope() as session:
            session.execute(
                delete(DBBulkCheckpoint).where(
                    DBBulkCheckpoint.operation_id == operation_id,
                    DBBulkCheckpoint.collection_id == collection_id,
                )
            )

    # Helpers

    @staticmethod
    def _load(session: Session, table: type[Base], record_id: str, for_update: bool = False):
        stmt = select(table).where(table.id == record_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = session.scalars(stmt).first()
        if row is None:
            raise RecordNotFoundError(
                f"{table.__tablename__} record {record_id} not found",
                context={"id": record_id},
            )
        return row

    @staticmethod
    def _match_row(session: Session, deal_id: str, buyer_id: str, for_update: bool = False):
        stmt = select(DBBuyerDealMatch).where(
            DBBuyerDealMatch.deal_id == deal_id,
            DBBuyerDealMatch.buyer_id == buyer_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    @staticmethod
    def _checkpoint_row(session: Session, operation_id: str, collection_id: str, for_update: bool = False):
        stmt = select(DBBulkCheckpoint).where(
            DBBulkCheckpoint.operation_id == operation_id,
            DBBulkCheckpoint.collection_id == collection_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()
