"""
SQLAlchemy ORM models.

Statuses are stored as their enum string values so conditional updates can
compare them directly in SQL.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base, utcnow
from .models import ClaimStatus, SpatialConflictStatus


class LandClaimDB(Base):
    """A submitted land claim and its current verification state."""

    __tablename__ = "land_claims"

    id = Column(String(36), primary_key=True)  # UUID
    owner_id = Column(String(36), nullable=False, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    polygon = Column(JSON, nullable=True)  # Polygon schema v1

    grantor_name = Column(String(255), nullable=True, index=True)
    claimant_name = Column(String(255), nullable=True)
    document_ref = Column(String(500), nullable=True, index=True)
    document_text = Column(Text, nullable=True)
    parcel_id = Column(String(64), nullable=True, index=True)

    verification_status = Column(
        String(32), nullable=False, index=True, default=ClaimStatus.PENDING_VERIFICATION.value
    )
    confidence_score = Column(Float, nullable=True)
    confidence_level = Column(String(16), nullable=True)
    recommendation = Column(String(32), nullable=True)
    fraud_score = Column(Float, nullable=True)
    verification_metadata = Column(JSON, nullable=True)  # ReasoningPayload schema v1
    ai_verified_at = Column(DateTime, nullable=True)

    human_reviewer_id = Column(String(36), nullable=True)
    human_review_notes = Column(Text, nullable=True)
    human_reviewed_at = Column(DateTime, nullable=True)

    # Single-flight guard
    verification_token = Column(String(64), nullable=True)
    verification_started_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class VerificationRunDB(Base):
    """Append-only audit log: one row per applied verification."""

    __tablename__ = "verification_runs"

    id = Column(String(36), primary_key=True)
    claim_id = Column(
        String(36), ForeignKey("land_claims.id", ondelete="CASCADE"), nullable=False, index=True
    )
    run_id = Column(String(64), nullable=False, unique=True)

    document_score = Column(Float, nullable=True)
    gps_score = Column(Float, nullable=True)
    cross_reference_score = Column(Float, nullable=True)
    spatial_score = Column(Float, nullable=True)
    overall_confidence = Column(Float, nullable=False)
    confidence_level = Column(String(16), nullable=False)
    recommendation = Column(String(32), nullable=False)
    resulting_status = Column(String(32), nullable=False)

    reasoning = Column(JSON, default=list)
    fraud_indicators = Column(JSON, default=list)
    agent_errors = Column(JSON, default=dict)
    execution_time_ms = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)


class SpatialConflictDB(Base):
    """A recorded overlap between two claims, awaiting or past review."""

    __tablename__ = "spatial_conflicts"
    __table_args__ = (UniqueConstraint("pair_key", name="uq_spatial_conflict_pair"),)

    id = Column(String(36), primary_key=True)
    claim_id = Column(
        String(36), ForeignKey("land_claims.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conflicting_claim_id = Column(
        String(36), ForeignKey("land_claims.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Both claim ids in sorted order; one row per pair whichever side found it
    pair_key = Column(String(80), nullable=False)
    overlap_area_sqm = Column(Float, nullable=False)
    overlap_percentage = Column(Float, nullable=False)
    severity = Column(String(16), nullable=False)
    status = Column(
        String(32), nullable=False, index=True, default=SpatialConflictStatus.PENDING_REVIEW.value
    )

    reviewer_id = Column(String(36), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    detected_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    resolved_at = Column(DateTime, nullable=True)


class CreditChargeDB(Base):
    """One credit debited for one applied verification run."""

    __tablename__ = "credit_charges"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), nullable=False, index=True)
    claim_id = Column(String(36), ForeignKey("land_claims.id", ondelete="CASCADE"), nullable=False)
    run_id = Column(String(64), nullable=False, unique=True)
    amount = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
