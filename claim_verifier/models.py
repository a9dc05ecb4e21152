"""
Pydantic models for claims, agent evidence and verification outcomes.

Every payload that crosses a boundary (API request, database JSON column,
agent result) is parsed into one of these models first. Polygons and the
reasoning payload carry a schema_version so stored JSON can evolve without
guessing at its shape downstream.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator


# ─── Status & Classification Enums ──────────────────────────────────


class ClaimStatus(str, Enum):
    """Lifecycle of a claim's verification."""

    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    AI_VERIFIED = "AI_VERIFIED"
    REJECTED = "REJECTED"
    PENDING_HUMAN_REVIEW = "PENDING_HUMAN_REVIEW"
    APPROVED = "APPROVED"


class ConfidenceLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Recommendation(str, Enum):
    """The pipeline's suggested disposition before any human action."""

    AUTO_APPROVE = "AUTO_APPROVE"
    HUMAN_REVIEW = "HUMAN_REVIEW"
    REJECT = "REJECT"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class OverlapSeverity(str, Enum):
    """Severity of a single polygon overlap, by overlap percentage."""

    LOW = "LOW"  # < 5%
    MEDIUM = "MEDIUM"  # 5-19%
    HIGH = "HIGH"  # 20-49%
    CRITICAL = "CRITICAL"  # >= 50%


class ConflictStatus(str, Enum):
    """Classification of the worst overlap a candidate polygon has."""

    CLEAR = "CLEAR"
    POTENTIAL_DISPUTE = "POTENTIAL_DISPUTE"
    HIGH_RISK = "HIGH_RISK"


class CollisionAlert(str, Enum):
    """Alert level the read-only spatial check raises for the worst overlap."""

    NONE = "NONE"
    WARNING = "WARNING"  # any overlap under 5%
    CRITICAL = "CRITICAL"  # potential double sale, 5-49%
    BLOCKED = "BLOCKED"  # >= 50%, parcel already claimed


class SpatialConflictStatus(str, Enum):
    """Review status of a recorded spatial conflict."""

    PENDING_REVIEW = "PENDING_REVIEW"
    UNDER_INVESTIGATION = "UNDER_INVESTIGATION"
    RESOLVED_VALID = "RESOLVED_VALID"
    RESOLVED_INVALID = "RESOLVED_INVALID"
    DISPUTED = "DISPUTED"


class ReviewAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class AgentKind(str, Enum):
    """The fixed set of evidence checks."""

    DOCUMENT_ANALYSIS = "DOCUMENT_ANALYSIS"
    GPS_VALIDATION = "GPS_VALIDATION"
    CROSS_REFERENCE = "CROSS_REFERENCE"
    SPATIAL_CONFLICT = "SPATIAL_CONFLICT"


# ─── Geometry ───────────────────────────────────────────────────────


class Coordinate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Polygon(BaseModel):
    """Claim boundary, schema v1.

    The ring is closed implicitly: a repeated closing vertex is accepted
    and dropped, so `coordinates` always holds the distinct vertices.
    """

    schema_version: Literal[1] = 1
    coordinates: list[Coordinate]
    srid: int = 4326

    @field_validator("coordinates")
    @classmethod
    def _at_least_three_vertices(cls, coords: list[Coordinate]) -> list[Coordinate]:
        if len(coords) > 1 and coords[0] == coords[-1]:
            coords = coords[:-1]
        if len({(c.lat, c.lng) for c in coords}) < 3:
            raise ValueError("Polygon must have at least 3 distinct vertices")
        return coords


# ─── Claim Snapshot ─────────────────────────────────────────────────


class ClaimRecord(BaseModel):
    """Read-only snapshot of a claim row.

    Agents and the resolver only ever see this model; writes go through
    the repository's conditional updates.
    """

    id: str
    owner_id: str
    latitude: float
    longitude: float
    polygon: Optional[Polygon] = None
    grantor_name: Optional[str] = None
    claimant_name: Optional[str] = None
    document_ref: Optional[str] = None
    document_text: Optional[str] = None
    parcel_id: Optional[str] = None
    verification_status: ClaimStatus = ClaimStatus.PENDING_VERIFICATION
    confidence_score: Optional[float] = None
    confidence_level: Optional[ConfidenceLevel] = None
    recommendation: Optional[Recommendation] = None
    fraud_score: Optional[float] = None
    human_reviewer_id: Optional[str] = None
    human_review_notes: Optional[str] = None
    human_reviewed_at: Optional[datetime] = None
    ai_verified_at: Optional[datetime] = None
    verification_token: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def has_polygon(self) -> bool:
        return self.polygon is not None


# ─── Agent Inputs ───────────────────────────────────────────────────


class DocumentInput(BaseModel):
    claim_id: str
    document_ref: Optional[str] = None
    document_text: Optional[str] = None
    grantor_name: Optional[str] = None
    claimant_name: Optional[str] = None


class GPSInput(BaseModel):
    # Deliberately unconstrained: range problems are reported by the agent.
    latitude: float
    longitude: float


class CrossReferenceInput(BaseModel):
    claim_id: str


class SpatialInput(BaseModel):
    claim_id: str
    polygon: Polygon
    grantor_name: Optional[str] = None


# ─── Agent Evidence ─────────────────────────────────────────────────

DataT = TypeVar("DataT")


class AgentResult(BaseModel, Generic[DataT]):
    """Scored output of one evidence agent. Failures are values, not exceptions."""

    kind: AgentKind
    success: bool
    data: Optional[DataT] = None
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    execution_time_ms: int = 0
    error: Optional[str] = None


class DocumentAssessment(BaseModel):
    """What the document scorer says about the title document."""

    document_type: Optional[str] = None
    grantor_name: Optional[str] = None
    parcel_id: Optional[str] = None
    document_date: Optional[str] = None
    fraud_indicators: list[str] = Field(default_factory=list)
    tampering_indicators: list[str] = Field(default_factory=list)
    is_fraudulent: bool = False
    fraud_score: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str = "heuristic"
    notes: list[str] = Field(default_factory=list)


class GPSValidation(BaseModel):
    is_valid: bool
    in_operating_region: bool
    land_cover_type: str
    confidence: float


class CrossReferenceFindings(BaseModel):
    duplicate_claim_ids: list[str] = Field(default_factory=list)
    proximity_claim_ids: list[str] = Field(default_factory=list)
    confidence: float

    @property
    def conflict_count(self) -> int:
        return len(self.duplicate_claim_ids) + len(self.proximity_claim_ids)


class OverlapFinding(BaseModel):
    """One existing claim that the candidate polygon intersects."""

    conflicting_claim_id: str
    overlap_area_sqm: float
    overlap_percentage: float
    severity: OverlapSeverity
    conflicting_status: ClaimStatus
    grantor_name: Optional[str] = None


class SpatialOverlapResult(BaseModel):
    has_conflict: bool
    overlap_percentage: float = 0.0  # worst overlap across all claims
    status: ConflictStatus = ConflictStatus.CLEAR
    max_severity: Optional[OverlapSeverity] = None
    overlaps: list[OverlapFinding] = Field(default_factory=list)
    reasoning: list[str] = Field(default_factory=list)


class GrantorRiskProfile(BaseModel):
    """Dispute history of claims whose grantor fuzzy-matches this one."""

    grantor_name: str
    total_claims: int = 0
    disputed_claims: int = 0
    rejected_claims: int = 0
    dispute_rate: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    reasoning: str = ""


class SpatialAgentReport(BaseModel):
    overlap: SpatialOverlapResult
    grantor: GrantorRiskProfile
    grantor_risk_level: RiskLevel
    requires_hitl: bool
    confidence: float


class SpatialCheckReport(BaseModel):
    """Read-only spatial check for a polygon that may not be a claim yet."""

    overlap: SpatialOverlapResult
    grantor: Optional[GrantorRiskProfile] = None
    risk_score: int
    requires_hitl: bool
    recommendation: Literal["PROCEED", "REVIEW", "REJECT"]
    alert_level: CollisionAlert = CollisionAlert.NONE
    alert_message: str = ""


# ─── Aggregation & Pipeline Output ──────────────────────────────────


class ScoreBreakdown(BaseModel):
    document_analysis: float
    gps_validation: float
    cross_reference: float
    spatial_check: Optional[float] = None  # None when the claim has no polygon


class AggregateScore(BaseModel):
    overall_confidence: float
    confidence_level: ConfidenceLevel
    recommendation: Recommendation
    weights: dict[str, float]
    hitl_override: bool = False


class SpatialSummary(BaseModel):
    has_conflict: bool
    status: ConflictStatus
    overlap_percentage: float
    requires_hitl: bool
    grantor_risk_level: RiskLevel


class VerificationReport(BaseModel):
    """Everything one pipeline execution produced for a claim."""

    claim_id: str
    aggregate: AggregateScore
    breakdown: ScoreBreakdown
    results: dict[AgentKind, AgentResult] = Field(default_factory=dict)
    reasoning: list[str] = Field(default_factory=list)
    fraud_indicators: list[str] = Field(default_factory=list)
    fraud_score: Optional[float] = None
    spatial: Optional[SpatialSummary] = None
    execution_time_ms: int = 0
    ai_powered: bool = False

    @property
    def agent_errors(self) -> dict[str, str]:
        return {
            kind.value: result.error
            for kind, result in self.results.items()
            if not result.success and result.error
        }


class PipelineOutcome(BaseModel):
    """Explicit result of a pipeline run; the state machine branches on `ok`."""

    ok: bool
    report: Optional[VerificationReport] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, report: VerificationReport) -> PipelineOutcome:
        return cls(ok=True, report=report)

    @classmethod
    def failure(cls, error: str) -> PipelineOutcome:
        return cls(ok=False, error=error)


class ReasoningPayload(BaseModel):
    """Stored in land_claims.verification_metadata, schema v1."""

    schema_version: Literal[1] = 1
    reasoning: list[str] = Field(default_factory=list)
    breakdown: ScoreBreakdown
    fraud_indicators: list[str] = Field(default_factory=list)
    spatial: Optional[SpatialSummary] = None
    agent_errors: dict[str, str] = Field(default_factory=dict)
    execution_time_ms: int = 0
    ai_powered: bool = False

    @classmethod
    def from_report(cls, report: VerificationReport) -> ReasoningPayload:
        return cls(
            reasoning=report.reasoning,
            breakdown=report.breakdown,
            fraud_indicators=report.fraud_indicators,
            spatial=report.spatial,
            agent_errors=report.agent_errors,
            execution_time_ms=report.execution_time_ms,
            ai_powered=report.ai_powered,
        )


class VerificationResponse(BaseModel):
    """Returned to the caller of "start verification"."""

    claim_id: str
    status: ClaimStatus
    confidence: float
    confidence_level: ConfidenceLevel
    recommendation: Recommendation
    breakdown: ScoreBreakdown
    reasoning: list[str] = Field(default_factory=list)
    fraud_indicators: list[str] = Field(default_factory=list)
    spatial: Optional[SpatialSummary] = None
    ai_powered: bool = False
    execution_time_ms: int = 0


# ─── Audit & Review Records ─────────────────────────────────────────


class VerificationRunRecord(BaseModel):
    """One immutable row of the verification audit log."""

    id: str
    claim_id: str
    run_id: str
    document_score: Optional[float] = None
    gps_score: Optional[float] = None
    cross_reference_score: Optional[float] = None
    spatial_score: Optional[float] = None
    overall_confidence: float
    confidence_level: ConfidenceLevel
    recommendation: Recommendation
    resulting_status: ClaimStatus
    reasoning: list[str] = Field(default_factory=list)
    fraud_indicators: list[str] = Field(default_factory=list)
    agent_errors: dict[str, str] = Field(default_factory=dict)
    execution_time_ms: int = 0
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ClaimStatusView(BaseModel):
    claim_id: str
    status: ClaimStatus
    confidence_score: Optional[float] = None
    confidence_level: Optional[ConfidenceLevel] = None
    recommendation: Optional[Recommendation] = None
    ai_verified_at: Optional[datetime] = None
    in_progress: bool = False
    latest_run: Optional[VerificationRunRecord] = None


class SpatialConflictRecord(BaseModel):
    id: str
    claim_id: str
    conflicting_claim_id: str
    overlap_area_sqm: float
    overlap_percentage: float
    severity: OverlapSeverity
    status: SpatialConflictStatus
    reviewer_id: Optional[str] = None
    resolution_notes: Optional[str] = None
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
