"""
Claim repository: every read and conditional write against the database.

Each method opens its own short session, so one repository instance can be
shared by the event loop and by agents running in worker threads. Status
writes are conditional UPDATEs: the row only changes if it is still in the
status (and held by the token) the caller expects.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import utcnow
from .db_models import LandClaimDB, SpatialConflictDB, VerificationRunDB
from .exceptions import AuditWriteFailure
from .models import (
    ClaimRecord,
    ClaimStatus,
    OverlapSeverity,
    Polygon,
    SpatialConflictRecord,
    SpatialConflictStatus,
    VerificationRunRecord,
)

logger = logging.getLogger(__name__)


class WriteResult(str, Enum):
    """Outcome of the final conditional status write."""

    APPLIED = "APPLIED"  # row matched and was updated
    STALE = "STALE"  # row no longer matched; results discarded
    FAILED = "FAILED"  # the database rejected the write


class ClaimRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ─── Claims ─────────────────────────────────────────────────────

    def create_claim(
        self,
        owner_id: str,
        latitude: float,
        longitude: float,
        *,
        claim_id: str | None = None,
        polygon: Polygon | None = None,
        grantor_name: str | None = None,
        claimant_name: str | None = None,
        document_ref: str | None = None,
        document_text: str | None = None,
        parcel_id: str | None = None,
        status: ClaimStatus = ClaimStatus.PENDING_VERIFICATION,
    ) -> ClaimRecord:
        """Insert a claim. Used by the submission flow, seeding and tests."""
        row = LandClaimDB(
            id=claim_id or str(uuid.uuid4()),
            owner_id=owner_id,
            latitude=latitude,
            longitude=longitude,
            polygon=polygon.model_dump(mode="json") if polygon else None,
            grantor_name=grantor_name,
            claimant_name=claimant_name,
            document_ref=document_ref,
            document_text=document_text,
            parcel_id=parcel_id,
            verification_status=status.value,
        )
        with self._session_factory.begin() as session:
            session.add(row)
        return _to_claim(row)

    def get_claim(self, claim_id: str) -> Optional[ClaimRecord]:
        with self._session_factory() as session:
            row = session.get(LandClaimDB, claim_id)
            return _to_claim(row) if row else None

    def list_claims(
        self, statuses: Iterable[ClaimStatus], owner_id: str | None = None
    ) -> list[ClaimRecord]:
        """Claims in any of `statuses`, oldest first."""
        stmt = select(LandClaimDB).where(
            LandClaimDB.verification_status.in_([s.value for s in statuses])
        )
        if owner_id is not None:
            stmt = stmt.where(LandClaimDB.owner_id == owner_id)
        stmt = stmt.order_by(LandClaimDB.created_at, LandClaimDB.id)
        with self._session_factory() as session:
            return [_to_claim(row) for row in session.scalars(stmt)]

    def find_in_box(
        self,
        latitude: float,
        longitude: float,
        delta: float,
        *,
        statuses: Iterable[ClaimStatus] | None = None,
        exclude_statuses: Iterable[ClaimStatus] | None = None,
        exclude_claim_id: str | None = None,
    ) -> list[ClaimRecord]:
        """Claims whose point lies inside the inclusive ±delta degree box."""
        stmt = select(LandClaimDB).where(
            LandClaimDB.latitude.between(latitude - delta, latitude + delta),
            LandClaimDB.longitude.between(longitude - delta, longitude + delta),
        )
        if statuses is not None:
            stmt = stmt.where(LandClaimDB.verification_status.in_([s.value for s in statuses]))
        if exclude_statuses is not None:
            stmt = stmt.where(
                LandClaimDB.verification_status.not_in([s.value for s in exclude_statuses])
            )
        if exclude_claim_id is not None:
            stmt = stmt.where(LandClaimDB.id != exclude_claim_id)
        with self._session_factory() as session:
            return [_to_claim(row) for row in session.scalars(stmt)]

    def find_duplicates(self, claim: ClaimRecord) -> list[ClaimRecord]:
        """Other non-rejected claims sharing the document_ref or parcel_id."""
        matches = []
        if claim.document_ref:
            matches.append(LandClaimDB.document_ref == claim.document_ref)
        if claim.parcel_id:
            matches.append(LandClaimDB.parcel_id == claim.parcel_id)
        if not matches:
            return []
        stmt = select(LandClaimDB).where(
            or_(*matches),
            LandClaimDB.id != claim.id,
            LandClaimDB.verification_status != ClaimStatus.REJECTED.value,
        )
        with self._session_factory() as session:
            return [_to_claim(row) for row in session.scalars(stmt)]

    def claims_with_polygons(self, exclude_claim_id: str | None = None) -> list[ClaimRecord]:
        """Non-rejected claims that carry a boundary polygon."""
        stmt = select(LandClaimDB).where(
            LandClaimDB.polygon.is_not(None),
            LandClaimDB.verification_status != ClaimStatus.REJECTED.value,
        )
        if exclude_claim_id is not None:
            stmt = stmt.where(LandClaimDB.id != exclude_claim_id)
        with self._session_factory() as session:
            return [_to_claim(row) for row in session.scalars(stmt) if row.polygon]

    def claims_with_grantor(self, exclude_claim_id: str | None = None) -> list[ClaimRecord]:
        stmt = select(LandClaimDB).where(LandClaimDB.grantor_name.is_not(None))
        if exclude_claim_id is not None:
            stmt = stmt.where(LandClaimDB.id != exclude_claim_id)
        with self._session_factory() as session:
            return [_to_claim(row) for row in session.scalars(stmt)]

    # ─── In-flight Guard & Final Write ──────────────────────────────

    def acquire_verification(self, claim_id: str, token: str, stale_before: datetime) -> bool:
        """Take the single-flight guard. True only for the caller that won."""
        stmt = (
            update(LandClaimDB)
            .where(
                LandClaimDB.id == claim_id,
                LandClaimDB.verification_status == ClaimStatus.PENDING_VERIFICATION.value,
                or_(
                    LandClaimDB.verification_token.is_(None),
                    LandClaimDB.verification_started_at.is_(None),
                    LandClaimDB.verification_started_at < stale_before,
                ),
            )
            .values(verification_token=token, verification_started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        with self._session_factory.begin() as session:
            return session.execute(stmt).rowcount == 1

    def release_verification(self, claim_id: str, token: str) -> bool:
        """Roll the claim back to PENDING_VERIFICATION and drop the guard."""
        stmt = (
            update(LandClaimDB)
            .where(LandClaimDB.id == claim_id, LandClaimDB.verification_token == token)
            .values(
                verification_status=ClaimStatus.PENDING_VERIFICATION.value,
                verification_token=None,
                verification_started_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session_factory.begin() as session:
                return session.execute(stmt).rowcount == 1
        except SQLAlchemyError:
            # The guard expires on its own after the lock TTL.
            logger.exception("Failed to release verification guard for claim %s", claim_id)
            return False

    def apply_verification(
        self,
        claim_id: str,
        token: str,
        *,
        status: ClaimStatus,
        confidence_score: float,
        confidence_level: str,
        recommendation: str,
        fraud_score: float | None,
        metadata: dict,
    ) -> WriteResult:
        """Write the pipeline's verdict if this token still holds the claim."""
        now = utcnow()
        stmt = (
            update(LandClaimDB)
            .where(
                LandClaimDB.id == claim_id,
                LandClaimDB.verification_token == token,
                LandClaimDB.verification_status == ClaimStatus.PENDING_VERIFICATION.value,
            )
            .values(
                verification_status=status.value,
                confidence_score=confidence_score,
                confidence_level=confidence_level,
                recommendation=recommendation,
                fraud_score=fraud_score,
                verification_metadata=metadata,
                ai_verified_at=now if status == ClaimStatus.AI_VERIFIED else None,
                verification_token=None,
                verification_started_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session_factory.begin() as session:
                matched = session.execute(stmt).rowcount
        except SQLAlchemyError:
            logger.exception("Conditional verification write failed for claim %s", claim_id)
            return WriteResult.FAILED
        return WriteResult.APPLIED if matched == 1 else WriteResult.STALE

    def apply_review(
        self,
        claim_id: str,
        new_status: ClaimStatus,
        reviewer_id: str,
        notes: str | None,
    ) -> bool:
        """Move a claim out of PENDING_HUMAN_REVIEW. False if it was not there."""
        now = utcnow()
        stmt = (
            update(LandClaimDB)
            .where(
                LandClaimDB.id == claim_id,
                LandClaimDB.verification_status == ClaimStatus.PENDING_HUMAN_REVIEW.value,
            )
            .values(
                verification_status=new_status.value,
                human_reviewer_id=reviewer_id,
                human_review_notes=notes,
                human_reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session_factory.begin() as session:
            return session.execute(stmt).rowcount == 1

    # ─── Audit Log ──────────────────────────────────────────────────

    def insert_verification_run(self, run: VerificationRunRecord) -> None:
        row = VerificationRunDB(
            **run.model_dump(mode="json", exclude={"created_at"}),
            created_at=run.created_at or utcnow(),
        )
        try:
            with self._session_factory.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            raise AuditWriteFailure(
                f"Could not record verification run {run.run_id}",
                {"claim_id": run.claim_id, "error": str(e)},
            ) from e

    def latest_run(self, claim_id: str) -> Optional[VerificationRunRecord]:
        stmt = (
            select(VerificationRunDB)
            .where(VerificationRunDB.claim_id == claim_id)
            .order_by(VerificationRunDB.created_at.desc())
            .limit(1)
        )
        with self._session_factory() as session:
            row = session.scalars(stmt).first()
            return VerificationRunRecord.model_validate(row) if row else None

    def count_runs(self, claim_id: str) -> int:
        stmt = select(VerificationRunDB.id).where(VerificationRunDB.claim_id == claim_id)
        with self._session_factory() as session:
            return len(session.scalars(stmt).all())

    # ─── Spatial Conflicts ──────────────────────────────────────────

    def upsert_spatial_conflict(
        self,
        claim_id: str,
        conflicting_claim_id: str,
        overlap_area_sqm: float,
        overlap_percentage: float,
        severity: OverlapSeverity,
    ) -> SpatialConflictRecord:
        """Record an overlap, or refresh it while nobody has reviewed it yet.

        A pair has one row whichever claim found the overlap. A refresh
        re-orients the row to the latest caller, since `overlap_percentage`
        is measured against `claim_id`'s area.
        """
        if claim_id == conflicting_claim_id:
            raise ValueError("A claim cannot conflict with itself")
        key = conflict_pair_key(claim_id, conflicting_claim_id)
        pair = SpatialConflictDB.pair_key == key
        try:
            with self._session_factory.begin() as session:
                row = session.scalars(select(SpatialConflictDB).where(pair)).first()
                if row is None:
                    row = SpatialConflictDB(
                        id=str(uuid.uuid4()),
                        claim_id=claim_id,
                        conflicting_claim_id=conflicting_claim_id,
                        pair_key=key,
                        overlap_area_sqm=overlap_area_sqm,
                        overlap_percentage=overlap_percentage,
                        severity=severity.value,
                        status=SpatialConflictStatus.PENDING_REVIEW.value,
                    )
                    session.add(row)
                elif row.status == SpatialConflictStatus.PENDING_REVIEW.value:
                    row.claim_id = claim_id
                    row.conflicting_claim_id = conflicting_claim_id
                    row.overlap_area_sqm = overlap_area_sqm
                    row.overlap_percentage = overlap_percentage
                    row.severity = severity.value
                session.flush()
                return SpatialConflictRecord.model_validate(row)
        except IntegrityError:
            # Lost an insert race for the same pair; the winner's row stands.
            with self._session_factory() as session:
                row = session.scalars(select(SpatialConflictDB).where(pair)).one()
                return SpatialConflictRecord.model_validate(row)

    def get_conflict(self, conflict_id: str) -> Optional[SpatialConflictRecord]:
        with self._session_factory() as session:
            row = session.get(SpatialConflictDB, conflict_id)
            return SpatialConflictRecord.model_validate(row) if row else None

    def list_conflicts(
        self,
        claim_id: str | None = None,
        status: SpatialConflictStatus | None = None,
    ) -> list[SpatialConflictRecord]:
        stmt = select(SpatialConflictDB)
        if claim_id is not None:
            stmt = stmt.where(
                or_(
                    SpatialConflictDB.claim_id == claim_id,
                    SpatialConflictDB.conflicting_claim_id == claim_id,
                )
            )
        if status is not None:
            stmt = stmt.where(SpatialConflictDB.status == status.value)
        stmt = stmt.order_by(SpatialConflictDB.detected_at, SpatialConflictDB.id)
        with self._session_factory() as session:
            return [SpatialConflictRecord.model_validate(row) for row in session.scalars(stmt)]

    def disputed_claim_ids(self, claim_ids: Iterable[str]) -> set[str]:
        """Of `claim_ids`, those involved in a DISPUTED or RESOLVED_INVALID conflict."""
        ids = list(claim_ids)
        if not ids:
            return set()
        bad = [
            SpatialConflictStatus.DISPUTED.value,
            SpatialConflictStatus.RESOLVED_INVALID.value,
        ]
        stmt = select(SpatialConflictDB.claim_id, SpatialConflictDB.conflicting_claim_id).where(
            SpatialConflictDB.status.in_(bad),
            or_(
                SpatialConflictDB.claim_id.in_(ids),
                SpatialConflictDB.conflicting_claim_id.in_(ids),
            ),
        )
        wanted = set(ids)
        with self._session_factory() as session:
            involved = set()
            for claim_id, other_id in session.execute(stmt):
                involved.update({claim_id, other_id} & wanted)
            return involved

    def update_conflict_status(
        self,
        conflict_id: str,
        expected_status: SpatialConflictStatus,
        new_status: SpatialConflictStatus,
        reviewer_id: str,
        notes: str | None,
    ) -> bool:
        now = utcnow()
        resolved = new_status in (
            SpatialConflictStatus.RESOLVED_VALID,
            SpatialConflictStatus.RESOLVED_INVALID,
        )
        stmt = (
            update(SpatialConflictDB)
            .where(
                SpatialConflictDB.id == conflict_id,
                SpatialConflictDB.status == expected_status.value,
            )
            .values(
                status=new_status.value,
                reviewer_id=reviewer_id,
                resolution_notes=notes,
                resolved_at=now if resolved else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session_factory.begin() as session:
            return session.execute(stmt).rowcount == 1


def conflict_pair_key(claim_id: str, other_claim_id: str) -> str:
    first, second = sorted((claim_id, other_claim_id))
    return f"{first}:{second}"


# ─── Row Conversion ──────────────────────────────────────────────────


def _to_claim(row: LandClaimDB) -> ClaimRecord:
    return ClaimRecord.model_validate(row)