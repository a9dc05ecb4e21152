"""
Agent orchestrator: fans the evidence agents out and folds their results
into one VerificationReport.

Flow:
  ┌───────────┐
  │   Claim   │
  └─────┬─────┘
        │
  ┌─────▼─────┬───────────┬────────────┬────────────┐
  │ Document  │    GPS    │ Cross-ref  │  Spatial   │   ← concurrent, each with
  │ analysis  │ validation│            │ (polygon)  │     its own timeout
  └─────┬─────┴─────┬─────┴──────┬─────┴──────┬─────┘
        └───────────┴─────┬──────┴────────────┘
                   ┌──────▼──────┐
                   │ Aggregator  │   ← weighted confidence + HITL override
                   └──────┬──────┘
                   ┌──────▼──────┐
                   │   Report    │   ← scores, reasoning, fraud indicators
                   └─────────────┘

Design principles:
  - Agents are synchronous; each runs in a worker thread via asyncio.to_thread.
  - A slow agent is reported as a timed-out failure, never awaited forever.
  - The whole fan-out is bounded by the pipeline budget.
  - The orchestrator never writes a claim status and never raises: it
    returns a PipelineOutcome the state machine branches on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from .agents import (
    Agent,
    CrossReferenceAgent,
    DocumentAnalysisAgent,
    GPSValidationAgent,
    SpatialConflictAgent,
    elapsed_ms,
)
from .aggregator import AgentScores, aggregate
from .models import (
    AgentKind,
    AgentResult,
    ClaimRecord,
    CrossReferenceInput,
    DocumentInput,
    GPSInput,
    PipelineOutcome,
    RiskLevel,
    ScoreBreakdown,
    SpatialInput,
    SpatialSummary,
    VerificationReport,
)

logger = logging.getLogger(__name__)

DEFAULT_AGENT_TIMEOUT_SECONDS = 10.0
DEFAULT_PIPELINE_BUDGET_SECONDS = 25.0


class AgentOrchestrator:
    """Runs every evidence agent for a claim and aggregates the results.

    Usage:
        outcome = await orchestrator.run(claim)
        if outcome.ok:
            print(outcome.report.aggregate.recommendation)
    """

    def __init__(
        self,
        document_agent: DocumentAnalysisAgent,
        gps_agent: GPSValidationAgent,
        cross_reference_agent: CrossReferenceAgent,
        spatial_agent: SpatialConflictAgent,
        agent_timeout: float = DEFAULT_AGENT_TIMEOUT_SECONDS,
        pipeline_budget: float = DEFAULT_PIPELINE_BUDGET_SECONDS,
        ai_powered: bool = False,
    ):
        self.document_agent = document_agent
        self.gps_agent = gps_agent
        self.cross_reference_agent = cross_reference_agent
        self.spatial_agent = spatial_agent
        self.agent_timeout = agent_timeout
        self.pipeline_budget = pipeline_budget
        self.ai_powered = ai_powered

    async def run(self, claim: ClaimRecord) -> PipelineOutcome:
        started = time.perf_counter()
        logger.info("Starting verification pipeline for claim %s", claim.id)
        try:
            # ── Step 1: Fan out evidence agents ─────────────────────
            results = await self._fan_out(claim)

            # ── Step 2: Aggregate + compile report ──────────────────
            report = self._compile(claim, results, started)
        except Exception as e:  # noqa: BLE001  surfaced as a failed outcome
            logger.exception("Verification pipeline failed for claim %s", claim.id)
            return PipelineOutcome.failure(f"{type(e).__name__}: {e}")

        logger.info(
            "Pipeline finished for claim %s: %.3f %s in %dms",
            claim.id,
            report.aggregate.overall_confidence,
            report.aggregate.recommendation.value,
            report.execution_time_ms,
        )
        return PipelineOutcome.success(report)

    # ── Fan-out ─────────────────────────────────────────────────────

    def _calls(self, claim: ClaimRecord) -> dict[AgentKind, tuple[Agent, Any]]:
        calls: dict[AgentKind, tuple[Agent, Any]] = {
            AgentKind.DOCUMENT_ANALYSIS: (
                self.document_agent,
                DocumentInput(
                    claim_id=claim.id,
                    document_ref=claim.document_ref,
                    document_text=claim.document_text,
                    grantor_name=claim.grantor_name,
                    claimant_name=claim.claimant_name,
                ),
            ),
            AgentKind.GPS_VALIDATION: (
                self.gps_agent,
                GPSInput(latitude=claim.latitude, longitude=claim.longitude),
            ),
            AgentKind.CROSS_REFERENCE: (
                self.cross_reference_agent,
                CrossReferenceInput(claim_id=claim.id),
            ),
        }
        if claim.polygon is not None:
            calls[AgentKind.SPATIAL_CONFLICT] = (
                self.spatial_agent,
                SpatialInput(
                    claim_id=claim.id, polygon=claim.polygon, grantor_name=claim.grantor_name
                ),
            )
        return calls

    async def _fan_out(self, claim: ClaimRecord) -> dict[AgentKind, AgentResult]:
        tasks = {
            kind: asyncio.ensure_future(self._call(agent, payload))
            for kind, (agent, payload) in self._calls(claim).items()
        }
        done, pending = await asyncio.wait(tasks.values(), timeout=self.pipeline_budget)

        results: dict[AgentKind, AgentResult] = {}
        for kind, task in tasks.items():
            if task in done:
                results[kind] = task.result()
            else:
                # The worker thread keeps running; its result is dropped.
                task.cancel()
                logger.warning(
                    "%s agent still running after %.1fs pipeline budget",
                    kind.value,
                    self.pipeline_budget,
                )
                results[kind] = _timed_out(kind, self.pipeline_budget, self.pipeline_budget)
        return results

    async def _call(self, agent: Agent, payload: Any) -> AgentResult:
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(agent.execute, payload), timeout=self.agent_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("%s agent timed out after %.1fs", agent.kind.value, self.agent_timeout)
            return _timed_out(agent.kind, self.agent_timeout, time.perf_counter() - started)

    # ── Report ──────────────────────────────────────────────────────

    def _compile(
        self, claim: ClaimRecord, results: dict[AgentKind, AgentResult], started: float
    ) -> VerificationReport:
        has_polygon = claim.polygon is not None
        document = results[AgentKind.DOCUMENT_ANALYSIS]
        gps = results[AgentKind.GPS_VALIDATION]
        cross_reference = results[AgentKind.CROSS_REFERENCE]
        spatial = results.get(AgentKind.SPATIAL_CONFLICT)

        spatial_report = spatial.data if spatial is not None and spatial.success else None
        requires_hitl = bool(spatial_report and spatial_report.requires_hitl)

        scores = AgentScores(
            document_analysis=document.confidence_score,
            gps_validation=gps.confidence_score,
            cross_reference=cross_reference.confidence_score,
            spatial_conflict=spatial.confidence_score if spatial is not None else 0.0,
        )
        verdict = aggregate(scores, has_polygon=has_polygon, requires_hitl=requires_hitl)

        breakdown = ScoreBreakdown(
            document_analysis=scores.document_analysis,
            gps_validation=scores.gps_validation,
            cross_reference=scores.cross_reference,
            spatial_check=scores.spatial_conflict if has_polygon else None,
        )

        summary = None
        if spatial_report is not None:
            summary = SpatialSummary(
                has_conflict=spatial_report.overlap.has_conflict,
                status=spatial_report.overlap.status,
                overlap_percentage=spatial_report.overlap.overlap_percentage,
                requires_hitl=spatial_report.requires_hitl,
                grantor_risk_level=spatial_report.grantor_risk_level,
            )

        assessment = document.data if document.success else None
        return VerificationReport(
            claim_id=claim.id,
            aggregate=verdict,
            breakdown=breakdown,
            results=results,
            reasoning=_reasoning(results, verdict.hitl_override),
            fraud_indicators=list(assessment.fraud_indicators) if assessment else [],
            fraud_score=assessment.fraud_score if assessment else None,
            spatial=summary,
            execution_time_ms=elapsed_ms(started),
            ai_powered=self.ai_powered,
        )


def _timed_out(kind: AgentKind, limit: float, waited: float) -> AgentResult:
    return AgentResult(
        kind=kind,
        success=False,
        confidence_score=0.0,
        execution_time_ms=int(waited * 1000),
        error=f"timed out after {limit:.1f}s",
    )


def _reasoning(results: dict[AgentKind, AgentResult], hitl_override: bool) -> list[str]:
    """Human-readable trail of what each agent concluded."""
    lines = []

    document = results[AgentKind.DOCUMENT_ANALYSIS]
    if document.success:
        d = document.data
        lines.append(
            f"Document: {d.document_type or 'unknown type'}, confidence {document.confidence_score:.2f}"
        )
        lines.extend(f"Document flag: {flag}" for flag in d.fraud_indicators)
    else:
        lines.append(f"Document analysis failed: {document.error}")

    gps = results[AgentKind.GPS_VALIDATION]
    if gps.success:
        g = gps.data
        region = "inside" if g.in_operating_region else "outside"
        lines.append(f"GPS: {region} operating region, land cover {g.land_cover_type}")
    else:
        lines.append(f"GPS validation failed: {gps.error}")

    cross = results[AgentKind.CROSS_REFERENCE]
    if cross.success:
        c = cross.data
        if c.duplicate_claim_ids:
            lines.append(
                f"Cross-reference: duplicate document/parcel on {len(c.duplicate_claim_ids)} claim(s)"
            )
        elif c.proximity_claim_ids:
            lines.append(f"Cross-reference: {len(c.proximity_claim_ids)} claim(s) nearby")
        else:
            lines.append("Cross-reference: no duplicates or nearby claims")
    else:
        lines.append(f"Cross-reference failed: {cross.error}")

    spatial = results.get(AgentKind.SPATIAL_CONFLICT)
    if spatial is None:
        lines.append("Spatial check skipped: claim has no boundary polygon")
    elif spatial.success:
        s = spatial.data
        lines.extend(f"Spatial: {line}" for line in s.overlap.reasoning)
        if s.grantor.risk_level != RiskLevel.LOW:
            lines.append(f"Grantor risk {s.grantor.risk_level.value}: {s.grantor.reasoning}")
    else:
        lines.append(f"Spatial check failed: {spatial.error}")

    if hitl_override:
        lines.append("Routed to human review: spatial conflict or grantor risk")
    return lines
