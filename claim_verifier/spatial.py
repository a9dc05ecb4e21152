"""
Spatial conflict resolution.

Three checks, cheapest first:
  1. Pre-flight prefilter: any AI_VERIFIED/APPROVED claim whose point sits
     inside a small lat/lng box around the candidate stops verification
     before a single agent runs.
  2. Polygon overlap: the candidate boundary against every other non-rejected
     boundary. Overlaps at or above the reporting threshold are recorded as
     SpatialConflict rows for review.
  3. Grantor risk: how often claims from the same (fuzzy-matched) grantor
     ended up rejected or in a dispute.

The resolver never changes a claim's status. It only reads claims and
records conflicts.
"""

from __future__ import annotations

import logging
from typing import Optional

from .geometry import measure_overlap
from .matching import MIN_NAME_LENGTH, names_match, normalize_name
from .models import (
    ClaimRecord,
    ClaimStatus,
    CollisionAlert,
    ConflictStatus,
    GrantorRiskProfile,
    OverlapFinding,
    OverlapSeverity,
    Polygon,
    RiskLevel,
    SpatialCheckReport,
    SpatialOverlapResult,
)
from .repository import ClaimRepository

logger = logging.getLogger(__name__)

# ─── Thresholds ──────────────────────────────────────────────────────

PREFLIGHT_BOX_DEGREES = 0.001  # roughly 110 m at the equator
PREFLIGHT_STATUSES = (ClaimStatus.AI_VERIFIED, ClaimStatus.APPROVED)

OVERLAP_REPORTING_PERCENT = 5.0
OVERLAP_HIGH_RISK_PERCENT = 20.0
OVERLAP_CRITICAL_PERCENT = 50.0

GRANTOR_DISPUTE_RATE_WARNING = 0.20
GRANTOR_DISPUTE_RATE_HIGH_RISK = 0.40

CONFLICT_CONFIDENCE: dict[ConflictStatus, float] = {
    ConflictStatus.HIGH_RISK: 0.2,
    ConflictStatus.POTENTIAL_DISPUTE: 0.5,
    ConflictStatus.CLEAR: 0.95,
}

GRANTOR_RISK_MULTIPLIER: dict[RiskLevel, float] = {
    RiskLevel.HIGH: 0.5,
    RiskLevel.MEDIUM: 0.75,
    RiskLevel.LOW: 1.0,
}

# Risk score for the read-only spatial check (0-70)
CONFLICT_RISK_POINTS = {ConflictStatus.HIGH_RISK: 40, ConflictStatus.POTENTIAL_DISPUTE: 25}
GRANTOR_RISK_POINTS = {RiskLevel.HIGH: 30, RiskLevel.MEDIUM: 15}
REJECT_RISK_SCORE = 50
REVIEW_RISK_SCORE = 25

_SEVERITY_RANK = {
    OverlapSeverity.LOW: 0,
    OverlapSeverity.MEDIUM: 1,
    OverlapSeverity.HIGH: 2,
    OverlapSeverity.CRITICAL: 3,
}


# ─── Pure Classification ─────────────────────────────────────────────


def classify_severity(overlap_percentage: float) -> OverlapSeverity:
    if overlap_percentage >= OVERLAP_CRITICAL_PERCENT:
        return OverlapSeverity.CRITICAL
    if overlap_percentage >= OVERLAP_HIGH_RISK_PERCENT:
        return OverlapSeverity.HIGH
    if overlap_percentage >= OVERLAP_REPORTING_PERCENT:
        return OverlapSeverity.MEDIUM
    return OverlapSeverity.LOW


def classify_conflict(max_overlap_percentage: float) -> ConflictStatus:
    if max_overlap_percentage >= OVERLAP_HIGH_RISK_PERCENT:
        return ConflictStatus.HIGH_RISK
    if max_overlap_percentage >= OVERLAP_REPORTING_PERCENT:
        return ConflictStatus.POTENTIAL_DISPUTE
    return ConflictStatus.CLEAR


def classify_alert(max_overlap_percentage: float) -> tuple[CollisionAlert, str]:
    overlap = f"{max_overlap_percentage:.1f}%"
    if max_overlap_percentage >= OVERLAP_CRITICAL_PERCENT:
        return CollisionAlert.BLOCKED, f"{overlap} overlap: this land appears to be claimed already"
    if max_overlap_percentage >= OVERLAP_REPORTING_PERCENT:
        return (
            CollisionAlert.CRITICAL,
            f"Potential double sale: {overlap} overlap with an existing claim",
        )
    if max_overlap_percentage > 0:
        return CollisionAlert.WARNING, f"Minor overlap ({overlap}) within boundary tolerance"
    return CollisionAlert.NONE, "No overlapping claims detected"


def classify_grantor_risk(dispute_rate: float) -> RiskLevel:
    if dispute_rate >= GRANTOR_DISPUTE_RATE_HIGH_RISK:
        return RiskLevel.HIGH
    if dispute_rate >= GRANTOR_DISPUTE_RATE_WARNING:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def spatial_confidence(conflict: ConflictStatus, grantor_risk: RiskLevel) -> float:
    """Spatial agent score: overlap base, discounted for grantor risk."""
    return CONFLICT_CONFIDENCE[conflict] * GRANTOR_RISK_MULTIPLIER[grantor_risk]


def requires_human_review(
    max_severity: Optional[OverlapSeverity], grantor_risk: RiskLevel
) -> bool:
    severe = max_severity in (OverlapSeverity.HIGH, OverlapSeverity.CRITICAL)
    return severe or grantor_risk != RiskLevel.LOW


def max_severity(findings: list[OverlapFinding]) -> Optional[OverlapSeverity]:
    if not findings:
        return None
    return max((f.severity for f in findings), key=_SEVERITY_RANK.__getitem__)


# ─── Resolver ────────────────────────────────────────────────────────


class SpatialConflictResolver:
    def __init__(self, repository: ClaimRepository, box_degrees: float = PREFLIGHT_BOX_DEGREES):
        self.repository = repository
        self.box_degrees = box_degrees

    def prefilter(self, claim: ClaimRecord) -> list[str]:
        """IDs of verified/approved claims inside the pre-flight box.

        The box is inclusive on every edge and never contains the claim itself.
        """
        hits = self.repository.find_in_box(
            claim.latitude,
            claim.longitude,
            self.box_degrees,
            statuses=PREFLIGHT_STATUSES,
            exclude_claim_id=claim.id,
        )
        if hits:
            logger.info(
                "Pre-flight conflict for claim %s: %d verified claim(s) within %.4f°",
                claim.id,
                len(hits),
                self.box_degrees,
            )
        return [hit.id for hit in hits]

    def check_overlap(
        self,
        polygon: Polygon,
        claim_id: str | None = None,
        record: bool = True,
    ) -> SpatialOverlapResult:
        """Compare `polygon` against every other non-rejected claim boundary.

        With `record` and a `claim_id`, overlaps at or above the reporting
        threshold are upserted as PENDING_REVIEW conflicts.
        """
        findings: list[OverlapFinding] = []
        for other in self.repository.claims_with_polygons(exclude_claim_id=claim_id):
            overlap = measure_overlap(polygon, other.polygon)
            if overlap.percentage <= 0:
                continue
            severity = classify_severity(overlap.percentage)
            findings.append(
                OverlapFinding(
                    conflicting_claim_id=other.id,
                    overlap_area_sqm=overlap.intersection_area_sqm,
                    overlap_percentage=overlap.percentage,
                    severity=severity,
                    conflicting_status=other.verification_status,
                    grantor_name=other.grantor_name,
                )
            )

        findings.sort(key=lambda f: f.overlap_percentage, reverse=True)
        worst = findings[0].overlap_percentage if findings else 0.0
        status = classify_conflict(worst)

        if record and claim_id is not None:
            for finding in findings:
                if finding.overlap_percentage >= OVERLAP_REPORTING_PERCENT:
                    self.repository.upsert_spatial_conflict(
                        claim_id,
                        finding.conflicting_claim_id,
                        finding.overlap_area_sqm,
                        finding.overlap_percentage,
                        finding.severity,
                    )

        reasoning = [
            f"{f.overlap_percentage:.1f}% overlap with claim {f.conflicting_claim_id} "
            f"({f.severity.value}, status {f.conflicting_status.value})"
            for f in findings
        ]
        if not findings:
            reasoning.append("No overlapping claim boundaries")

        return SpatialOverlapResult(
            has_conflict=status != ConflictStatus.CLEAR,
            overlap_percentage=worst,
            status=status,
            max_severity=max_severity(findings),
            overlaps=findings,
            reasoning=reasoning,
        )

    def grantor_risk(
        self, grantor_name: str | None, exclude_claim_id: str | None = None
    ) -> GrantorRiskProfile:
        """Dispute history of every other claim from a matching grantor."""
        name = (grantor_name or "").strip()
        if len(normalize_name(name)) < MIN_NAME_LENGTH:
            return GrantorRiskProfile(
                grantor_name=name, reasoning="Grantor name too short to assess"
            )

        matched = [
            claim
            for claim in self.repository.claims_with_grantor(exclude_claim_id=exclude_claim_id)
            if names_match(name, claim.grantor_name)
        ]
        if not matched:
            return GrantorRiskProfile(
                grantor_name=name, reasoning="No previous claims from this grantor"
            )

        rejected_ids = {c.id for c in matched if c.verification_status == ClaimStatus.REJECTED}
        disputed_ids = self.repository.disputed_claim_ids(c.id for c in matched) - rejected_ids
        rejected, disputed = len(rejected_ids), len(disputed_ids)
        # A rejected claim that is also disputed counts once, as rejected.
        dispute_rate = (rejected + disputed) / len(matched)
        risk = classify_grantor_risk(dispute_rate)

        if risk != RiskLevel.LOW:
            logger.info(
                "Grantor %r: %d of %d prior claims rejected or disputed (%s)",
                name,
                disputed + rejected,
                len(matched),
                risk.value,
            )

        return GrantorRiskProfile(
            grantor_name=name,
            total_claims=len(matched),
            disputed_claims=disputed,
            rejected_claims=rejected,
            dispute_rate=round(dispute_rate, 4),
            risk_level=risk,
            reasoning=(
                f"{disputed} disputed and {rejected} rejected out of "
                f"{len(matched)} claims ({dispute_rate:.0%})"
            ),
        )

    def spatial_check(
        self,
        polygon: Polygon,
        grantor_name: str | None = None,
        claim_id: str | None = None,
    ) -> SpatialCheckReport:
        """Read-only overlap + grantor check for a polygon; writes nothing."""
        overlap = self.check_overlap(polygon, claim_id=claim_id, record=False)
        grantor = self.grantor_risk(grantor_name, exclude_claim_id=claim_id) if grantor_name else None
        grantor_level = grantor.risk_level if grantor else RiskLevel.LOW

        risk_score = CONFLICT_RISK_POINTS.get(overlap.status, 0) + GRANTOR_RISK_POINTS.get(
            grantor_level, 0
        )
        needs_review = requires_human_review(overlap.max_severity, grantor_level)
        alert_level, alert_message = classify_alert(overlap.overlap_percentage)
        if alert_level in (CollisionAlert.CRITICAL, CollisionAlert.BLOCKED):
            logger.warning(
                "Spatial check alert %s: %.1f%% overlap with claim %s",
                alert_level.value,
                overlap.overlap_percentage,
                overlap.overlaps[0].conflicting_claim_id,
            )

        if risk_score >= REJECT_RISK_SCORE:
            recommendation = "REJECT"
        elif risk_score >= REVIEW_RISK_SCORE or needs_review:
            recommendation = "REVIEW"
        else:
            recommendation = "PROCEED"

        return SpatialCheckReport(
            overlap=overlap,
            grantor=grantor,
            risk_score=risk_score,
            requires_hitl=needs_review,
            recommendation=recommendation,
            alert_level=alert_level,
            alert_message=alert_message,
        )
