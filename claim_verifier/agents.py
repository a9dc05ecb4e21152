"""
Evidence agents.

Each agent answers one question about a claim and returns a scored
AgentResult. Agents are stateless and never raise: whatever goes wrong
inside `_run` becomes `success=False, confidence_score=0` with the reason in
`error`, so one broken check can lower a claim's score but cannot abort
the pipeline. None of them writes to the claim.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import ClassVar, Generic, TypeVar

from .document_scoring import DocumentScorer
from .models import (
    AgentKind,
    AgentResult,
    ClaimStatus,
    CrossReferenceFindings,
    CrossReferenceInput,
    DocumentAssessment,
    DocumentInput,
    GPSInput,
    GPSValidation,
    SpatialAgentReport,
    SpatialInput,
)
from .repository import ClaimRepository
from .spatial import SpatialConflictResolver, requires_human_review, spatial_confidence

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
DataT = TypeVar("DataT")


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class Agent(ABC, Generic[InputT, DataT]):
    kind: ClassVar[AgentKind]

    def execute(self, payload: InputT) -> AgentResult:
        started = time.perf_counter()
        try:
            data, confidence = self._run(payload)
        except Exception as e:  # noqa: BLE001  failures are reported, not raised
            logger.warning("%s agent failed: %s", self.kind.value, e)
            return AgentResult(
                kind=self.kind,
                success=False,
                confidence_score=0.0,
                execution_time_ms=elapsed_ms(started),
                error=str(e) or type(e).__name__,
            )
        return AgentResult(
            kind=self.kind,
            success=True,
            data=data,
            confidence_score=min(max(confidence, 0.0), 1.0),
            execution_time_ms=elapsed_ms(started),
        )

    @abstractmethod
    def _run(self, payload: InputT) -> tuple[DataT, float]:
        """Return (evidence, confidence in [0, 1]). Raise on failure."""


# ─── Document Analysis ───────────────────────────────────────────────


class DocumentAnalysisAgent(Agent[DocumentInput, DocumentAssessment]):
    kind = AgentKind.DOCUMENT_ANALYSIS

    def __init__(self, scorer: DocumentScorer):
        self.scorer = scorer

    def _run(self, payload: DocumentInput) -> tuple[DocumentAssessment, float]:
        assessment = self.scorer.score(payload)
        return assessment, assessment.confidence


# ─── GPS Validation ──────────────────────────────────────────────────

# West African operating region
REGION_LAT_RANGE = (4.0, 18.0)
REGION_LNG_RANGE = (-18.0, 16.0)
IN_REGION_CONFIDENCE = 0.85
OUT_OF_REGION_CONFIDENCE = 0.4


def estimate_land_cover(latitude: float) -> str:
    """Coarse land-cover band by latitude."""
    if latitude > 14:
        return "Sahel"
    if latitude > 10:
        return "Savanna"
    if latitude > 7:
        return "Forest/Agricultural"
    return "Coastal/Urban"


class GPSValidationAgent(Agent[GPSInput, GPSValidation]):
    kind = AgentKind.GPS_VALIDATION

    def _run(self, payload: GPSInput) -> tuple[GPSValidation, float]:
        lat, lng = payload.latitude, payload.longitude
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise ValueError(f"Coordinates out of range: ({lat}, {lng})")

        in_region = (
            REGION_LAT_RANGE[0] <= lat <= REGION_LAT_RANGE[1]
            and REGION_LNG_RANGE[0] <= lng <= REGION_LNG_RANGE[1]
        )
        confidence = IN_REGION_CONFIDENCE if in_region else OUT_OF_REGION_CONFIDENCE
        return (
            GPSValidation(
                is_valid=True,
                in_operating_region=in_region,
                land_cover_type=estimate_land_cover(lat),
                confidence=confidence,
            ),
            confidence,
        )


# ─── Cross Reference ─────────────────────────────────────────────────

PROXIMITY_DEGREES = 0.005
CLEAN_CONFIDENCE = 0.90
DUPLICATE_CONFIDENCE = 0.30
PROXIMITY_PENALTY = 0.05
PROXIMITY_FLOOR = 0.70


class CrossReferenceAgent(Agent[CrossReferenceInput, CrossReferenceFindings]):
    """Looks for the same title used twice and crowded neighbourhoods."""

    kind = AgentKind.CROSS_REFERENCE

    def __init__(self, repository: ClaimRepository):
        self.repository = repository

    def _run(self, payload: CrossReferenceInput) -> tuple[CrossReferenceFindings, float]:
        claim = self.repository.get_claim(payload.claim_id)
        if claim is None:
            raise LookupError(f"Claim {payload.claim_id} not found")

        duplicates = [c.id for c in self.repository.find_duplicates(claim)]
        nearby = self.repository.find_in_box(
            claim.latitude,
            claim.longitude,
            PROXIMITY_DEGREES,
            exclude_statuses=(ClaimStatus.REJECTED,),
            exclude_claim_id=claim.id,
        )
        proximity = [c.id for c in nearby if c.id not in duplicates]

        if duplicates:
            confidence = DUPLICATE_CONFIDENCE
        elif proximity:
            confidence = max(CLEAN_CONFIDENCE - PROXIMITY_PENALTY * len(proximity), PROXIMITY_FLOOR)
        else:
            confidence = CLEAN_CONFIDENCE

        return (
            CrossReferenceFindings(
                duplicate_claim_ids=duplicates,
                proximity_claim_ids=proximity,
                confidence=confidence,
            ),
            confidence,
        )


# ─── Spatial Conflict ────────────────────────────────────────────────


class SpatialConflictAgent(Agent[SpatialInput, SpatialAgentReport]):
    kind = AgentKind.SPATIAL_CONFLICT

    def __init__(self, resolver: SpatialConflictResolver):
        self.resolver = resolver

    def _run(self, payload: SpatialInput) -> tuple[SpatialAgentReport, float]:
        overlap = self.resolver.check_overlap(payload.polygon, claim_id=payload.claim_id)
        grantor = self.resolver.grantor_risk(payload.grantor_name, exclude_claim_id=payload.claim_id)
        confidence = spatial_confidence(overlap.status, grantor.risk_level)
        return (
            SpatialAgentReport(
                overlap=overlap,
                grantor=grantor,
                grantor_risk_level=grantor.risk_level,
                requires_hitl=requires_human_review(overlap.max_severity, grantor.risk_level),
                confidence=confidence,
            ),
            confidence,
        )
