"""
Confidence aggregation: per-agent scores → one weighted confidence, a
confidence level and a recommendation.

Pure functions, no I/O. The weights depend only on whether the claim has a
boundary polygon; without one the spatial check does not run and its weight
is redistributed to the other three agents.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .models import AgentKind, AggregateScore, ConfidenceLevel, Recommendation

WEIGHTS_WITH_POLYGON: Mapping[AgentKind, float] = MappingProxyType(
    {
        AgentKind.DOCUMENT_ANALYSIS: 0.25,
        AgentKind.GPS_VALIDATION: 0.25,
        AgentKind.CROSS_REFERENCE: 0.20,
        AgentKind.SPATIAL_CONFLICT: 0.30,
    }
)

WEIGHTS_WITHOUT_POLYGON: Mapping[AgentKind, float] = MappingProxyType(
    {
        AgentKind.DOCUMENT_ANALYSIS: 0.35,
        AgentKind.GPS_VALIDATION: 0.35,
        AgentKind.CROSS_REFERENCE: 0.30,
        AgentKind.SPATIAL_CONFLICT: 0.0,
    }
)

HIGH_CONFIDENCE_THRESHOLD = 0.85
MEDIUM_CONFIDENCE_THRESHOLD = 0.60


@dataclass(frozen=True)
class AgentScores:
    """One score in [0, 1] per agent. Failed agents score 0."""

    document_analysis: float
    gps_validation: float
    cross_reference: float
    spatial_conflict: float = 0.0

    def by_kind(self) -> dict[AgentKind, float]:
        return {
            AgentKind.DOCUMENT_ANALYSIS: self.document_analysis,
            AgentKind.GPS_VALIDATION: self.gps_validation,
            AgentKind.CROSS_REFERENCE: self.cross_reference,
            AgentKind.SPATIAL_CONFLICT: self.spatial_conflict,
        }


def weights_for(has_polygon: bool) -> Mapping[AgentKind, float]:
    return WEIGHTS_WITH_POLYGON if has_polygon else WEIGHTS_WITHOUT_POLYGON


def weighted_confidence(scores: AgentScores, has_polygon: bool) -> float:
    """Σ score × weight, summed in AgentKind order."""
    weights = weights_for(has_polygon)
    total = 0.0
    for kind, score in scores.by_kind().items():
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"{kind.value} score {score!r} is outside [0, 1]")
        total += score * weights[kind]
    return total


def classify(
    overall: float, requires_hitl: bool = False
) -> tuple[ConfidenceLevel, Recommendation]:
    """Map a confidence to its level and recommendation.

    A human-in-the-loop flag always lands in MEDIUM/HUMAN_REVIEW, even when
    the score alone would have auto-approved or rejected.
    """
    if requires_hitl:
        return ConfidenceLevel.MEDIUM, Recommendation.HUMAN_REVIEW
    if overall >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH, Recommendation.AUTO_APPROVE
    if overall >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM, Recommendation.HUMAN_REVIEW
    return ConfidenceLevel.LOW, Recommendation.REJECT


def aggregate(
    scores: AgentScores, has_polygon: bool, requires_hitl: bool = False
) -> AggregateScore:
    overall = weighted_confidence(scores, has_polygon)
    level, recommendation = classify(overall, requires_hitl)
    return AggregateScore(
        overall_confidence=overall,
        confidence_level=level,
        recommendation=recommendation,
        weights={kind.value: weight for kind, weight in weights_for(has_polygon).items()},
        hitl_override=requires_hitl,
    )
