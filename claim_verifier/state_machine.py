"""
Claim verification state machine.

The only code path (besides human review) that changes a claim's status.

  PENDING_VERIFICATION ──► AI_VERIFIED
          │           ├──► REJECTED
          │           └──► PENDING_HUMAN_REVIEW ──► APPROVED
          │                                     └──► REJECTED
          └── (pipeline or write failure: stays PENDING_VERIFICATION)

"Start verification" runs, in order:
  1. ownership and status checks (no side effects)
  2. pre-flight spatial prefilter (no agents, no charge on a hit)
  3. atomic in-flight guard: one run per claim at a time
  4. agent pipeline → explicit PipelineOutcome
  5. conditional write keyed on the guard token → APPLIED / STALE / FAILED
  6. audit row, credit charge, owner notification (best effort, logged)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Mapping

from .collaborators import ClaimEvent, CreditLedger, Notifier
from .database import utcnow
from .exceptions import (
    AlreadyVerified,
    AuditWriteFailure,
    ConflictDetected,
    CreditChargeFailure,
    Forbidden,
    InvalidTransition,
    NotFound,
    NotificationFailure,
    PersistenceFailure,
    PipelineFailure,
    Unauthorized,
    VerificationInProgress,
)
from .models import (
    ClaimRecord,
    ClaimStatus,
    ClaimStatusView,
    ReasoningPayload,
    Recommendation,
    VerificationReport,
    VerificationResponse,
    VerificationRunRecord,
)
from .orchestrator import AgentOrchestrator
from .repository import ClaimRepository, WriteResult
from .spatial import SpatialConflictResolver

logger = logging.getLogger(__name__)

# ─── Transition Table ────────────────────────────────────────────────

TRANSITIONS: Mapping[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING_VERIFICATION: frozenset(
        {ClaimStatus.AI_VERIFIED, ClaimStatus.REJECTED, ClaimStatus.PENDING_HUMAN_REVIEW}
    ),
    ClaimStatus.PENDING_HUMAN_REVIEW: frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED}),
    ClaimStatus.AI_VERIFIED: frozenset(),
    ClaimStatus.APPROVED: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
}

VERIFIED_STATUSES = frozenset({ClaimStatus.AI_VERIFIED, ClaimStatus.APPROVED})

RECOMMENDATION_STATUS: Mapping[Recommendation, ClaimStatus] = {
    Recommendation.AUTO_APPROVE: ClaimStatus.AI_VERIFIED,
    Recommendation.HUMAN_REVIEW: ClaimStatus.PENDING_HUMAN_REVIEW,
    Recommendation.REJECT: ClaimStatus.REJECTED,
}

DEFAULT_LOCK_TTL_SECONDS = 300.0


def can_transition(from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def require_transition(from_status: ClaimStatus, to_status: ClaimStatus) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransition(
            f"Cannot move a claim from {from_status.value} to {to_status.value}",
            {"from": from_status.value, "to": to_status.value},
        )


def status_for(recommendation: Recommendation) -> ClaimStatus:
    return RECOMMENDATION_STATUS[recommendation]


# ─── State Machine ───────────────────────────────────────────────────


class ClaimVerificationStateMachine:
    def __init__(
        self,
        repository: ClaimRepository,
        resolver: SpatialConflictResolver,
        orchestrator: AgentOrchestrator,
        ledger: CreditLedger,
        notifier: Notifier,
        lock_ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
        credit_cost: int = 1,
    ):
        self.repository = repository
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.notifier = notifier
        self.lock_ttl_seconds = lock_ttl_seconds
        self.credit_cost = credit_cost
        self._background: set[asyncio.Task] = set()

    async def start_verification(self, user_id: str, claim_id: str) -> VerificationResponse:
        """Verify a claim end to end. See the module docstring for the sequence."""
        # ── Step 1: Ownership + status ──────────────────────────────
        claim = self._owned_claim(user_id, claim_id)
        if claim.verification_status in VERIFIED_STATUSES:
            raise AlreadyVerified(
                f"Claim {claim_id} is already {claim.verification_status.value}",
                {"status": claim.verification_status.value},
            )
        if claim.verification_status != ClaimStatus.PENDING_VERIFICATION:
            raise InvalidTransition(
                f"Claim {claim_id} is {claim.verification_status.value}; "
                "only PENDING_VERIFICATION claims can be verified",
                {"status": claim.verification_status.value},
            )

        # ── Step 2: Pre-flight prefilter ────────────────────────────
        conflicting = self.resolver.prefilter(claim)
        if conflicting:
            raise ConflictDetected(
                "A verified claim already exists at this location",
                {"conflicting_claim_ids": conflicting},
            )

        # ── Step 3: In-flight guard ─────────────────────────────────
        token = uuid.uuid4().hex
        stale_before = utcnow() - timedelta(seconds=self.lock_ttl_seconds)
        if not self.repository.acquire_verification(claim_id, token, stale_before):
            current = self.repository.get_claim(claim_id)
            if current is not None and current.verification_status in VERIFIED_STATUSES:
                raise AlreadyVerified(f"Claim {claim_id} is already verified")
            raise VerificationInProgress(f"Claim {claim_id} is already being verified")

        # ── Step 4: Agent pipeline ──────────────────────────────────
        outcome = await self.orchestrator.run(claim)
        if not outcome.ok:
            self.repository.release_verification(claim_id, token)
            raise PipelineFailure(
                f"Verification pipeline failed for claim {claim_id}", {"error": outcome.error}
            )
        report = outcome.report

        # ── Step 5: Conditional write ───────────────────────────────
        new_status = status_for(report.aggregate.recommendation)
        require_transition(ClaimStatus.PENDING_VERIFICATION, new_status)
        write = self.repository.apply_verification(
            claim_id,
            token,
            status=new_status,
            confidence_score=report.aggregate.overall_confidence,
            confidence_level=report.aggregate.confidence_level.value,
            recommendation=report.aggregate.recommendation.value,
            fraud_score=report.fraud_score,
            metadata=ReasoningPayload.from_report(report).model_dump(mode="json"),
        )
        if write == WriteResult.FAILED:
            self.repository.release_verification(claim_id, token)
            raise PersistenceFailure(
                f"Could not save verification result for claim {claim_id}; "
                "claim left in PENDING_VERIFICATION"
            )
        if write == WriteResult.STALE:
            logger.warning(
                "Discarding stale verification results for claim %s (token %s)", claim_id, token
            )
            raise AlreadyVerified(f"Claim {claim_id} was updated while verification ran")

        logger.info("Claim %s verified: %s", claim_id, new_status.value)

        # ── Step 6: Side effects (best effort) ──────────────────────
        self._record_run(claim_id, token, report, new_status)
        self._charge(claim, token)
        self._notify_later(
            ClaimEvent(
                kind="verification_completed",
                claim_id=claim_id,
                owner_id=claim.owner_id,
                status=new_status.value,
                detail={"confidence": report.aggregate.overall_confidence},
            )
        )

        return VerificationResponse(
            claim_id=claim_id,
            status=new_status,
            confidence=report.aggregate.overall_confidence,
            confidence_level=report.aggregate.confidence_level,
            recommendation=report.aggregate.recommendation,
            breakdown=report.breakdown,
            reasoning=report.reasoning,
            fraud_indicators=report.fraud_indicators,
            spatial=report.spatial,
            ai_powered=report.ai_powered,
            execution_time_ms=report.execution_time_ms,
        )

    def get_status(self, user_id: str, claim_id: str, is_reviewer: bool = False) -> ClaimStatusView:
        claim = self.repository.get_claim(claim_id)
        if claim is None:
            raise NotFound(f"Claim {claim_id} not found")
        if claim.owner_id != user_id and not is_reviewer:
            raise Forbidden("Only the owner or a reviewer can see this claim")

        in_progress = (
            claim.verification_token is not None
            and claim.verification_status == ClaimStatus.PENDING_VERIFICATION
        )
        return ClaimStatusView(
            claim_id=claim.id,
            status=claim.verification_status,
            confidence_score=claim.confidence_score,
            confidence_level=claim.confidence_level,
            recommendation=claim.recommendation,
            ai_verified_at=claim.ai_verified_at,
            in_progress=in_progress,
            latest_run=self.repository.latest_run(claim_id),
        )

    async def drain(self) -> None:
        """Wait for pending notifications (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ── Internals ───────────────────────────────────────────────────

    def _owned_claim(self, user_id: str, claim_id: str) -> ClaimRecord:
        claim = self.repository.get_claim(claim_id)
        if claim is None:
            raise NotFound(f"Claim {claim_id} not found")
        if claim.owner_id != user_id:
            raise Unauthorized("You do not own this claim")
        return claim

    def _record_run(
        self, claim_id: str, run_id: str, report: VerificationReport, status: ClaimStatus
    ) -> None:
        breakdown = report.breakdown
        run = VerificationRunRecord(
            id=str(uuid.uuid4()),
            claim_id=claim_id,
            run_id=run_id,
            document_score=breakdown.document_analysis,
            gps_score=breakdown.gps_validation,
            cross_reference_score=breakdown.cross_reference,
            spatial_score=breakdown.spatial_check,
            overall_confidence=report.aggregate.overall_confidence,
            confidence_level=report.aggregate.confidence_level,
            recommendation=report.aggregate.recommendation,
            resulting_status=status,
            reasoning=report.reasoning,
            fraud_indicators=report.fraud_indicators,
            agent_errors=report.agent_errors,
            execution_time_ms=report.execution_time_ms,
        )
        try:
            self.repository.insert_verification_run(run)
        except AuditWriteFailure as e:
            logger.error("Audit write failed for claim %s: %s (%s)", claim_id, e, e.details)

    def _charge(self, claim: ClaimRecord, run_id: str) -> None:
        try:
            self.ledger.charge(claim.owner_id, claim.id, run_id, self.credit_cost)
        except CreditChargeFailure as e:
            logger.error("Credit charge failed for claim %s: %s (%s)", claim.id, e, e.details)

    def _notify_later(self, event: ClaimEvent) -> None:
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(_deliver, self.notifier, event)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _deliver(notifier: Notifier, event: ClaimEvent) -> bool:
    try:
        notifier.notify(event)
    except NotificationFailure as e:
        logger.error("Notification failed for claim %s: %s", event.claim_id, e)
        return False
    return True
