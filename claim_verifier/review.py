"""
Human review: the reviewer queue, approve/reject decisions, and spatial
conflict resolution.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .auth import Principal
from .collaborators import ClaimEvent, Notifier
from .exceptions import Forbidden, InvalidTransition, NotFound, NotificationFailure
from .models import (
    ClaimRecord,
    ClaimStatus,
    ReviewAction,
    SpatialConflictRecord,
    SpatialConflictStatus,
)
from .repository import ClaimRepository
from .state_machine import require_transition

logger = logging.getLogger(__name__)

REVIEW_OUTCOME: Mapping[ReviewAction, ClaimStatus] = {
    ReviewAction.APPROVE: ClaimStatus.APPROVED,
    ReviewAction.REJECT: ClaimStatus.REJECTED,
}

CONFLICT_TRANSITIONS: Mapping[SpatialConflictStatus, frozenset[SpatialConflictStatus]] = {
    SpatialConflictStatus.PENDING_REVIEW: frozenset(
        {
            SpatialConflictStatus.UNDER_INVESTIGATION,
            SpatialConflictStatus.RESOLVED_VALID,
            SpatialConflictStatus.RESOLVED_INVALID,
            SpatialConflictStatus.DISPUTED,
        }
    ),
    SpatialConflictStatus.UNDER_INVESTIGATION: frozenset(
        {
            SpatialConflictStatus.RESOLVED_VALID,
            SpatialConflictStatus.RESOLVED_INVALID,
            SpatialConflictStatus.DISPUTED,
        }
    ),
    SpatialConflictStatus.DISPUTED: frozenset(
        {SpatialConflictStatus.RESOLVED_VALID, SpatialConflictStatus.RESOLVED_INVALID}
    ),
    SpatialConflictStatus.RESOLVED_VALID: frozenset(),
    SpatialConflictStatus.RESOLVED_INVALID: frozenset(),
}

OWNER_VISIBLE_STATUSES = (ClaimStatus.PENDING_VERIFICATION, ClaimStatus.PENDING_HUMAN_REVIEW)


class HumanReviewWorkflow:
    def __init__(self, repository: ClaimRepository, notifier: Notifier):
        self.repository = repository
        self.notifier = notifier

    def list_pending_review(self, principal: Principal) -> list[ClaimRecord]:
        """Reviewers get the whole review queue; owners get their own open claims."""
        if principal.is_reviewer:
            return self.repository.list_claims([ClaimStatus.PENDING_HUMAN_REVIEW])
        return self.repository.list_claims(OWNER_VISIBLE_STATUSES, owner_id=principal.user_id)

    def review(
        self,
        principal: Principal,
        claim_id: str,
        action: ReviewAction,
        notes: Optional[str] = None,
    ) -> ClaimRecord:
        if not principal.is_reviewer:
            raise Forbidden("Only verifiers and admins can review claims")

        claim = self.repository.get_claim(claim_id)
        if claim is None:
            raise NotFound(f"Claim {claim_id} not found")

        new_status = REVIEW_OUTCOME[action]
        require_transition(claim.verification_status, new_status)

        if not self.repository.apply_review(claim_id, new_status, principal.user_id, notes):
            current = self.repository.get_claim(claim_id)
            status = current.verification_status.value if current else "missing"
            raise InvalidTransition(
                f"Claim {claim_id} is no longer awaiting review (now {status})",
                {"status": status},
            )

        logger.info(
            "Claim %s %s by reviewer %s", claim_id, new_status.value, principal.user_id
        )
        self._notify(
            ClaimEvent(
                kind="claim_reviewed",
                claim_id=claim_id,
                owner_id=claim.owner_id,
                status=new_status.value,
                detail={"notes": notes} if notes else {},
            )
        )
        return self.repository.get_claim(claim_id)

    # ── Spatial conflicts ───────────────────────────────────────────

    def list_conflicts(
        self, principal: Principal, claim_id: Optional[str] = None
    ) -> list[SpatialConflictRecord]:
        if not principal.is_reviewer:
            if claim_id is None:
                raise Forbidden("Only reviewers can list every spatial conflict")
            claim = self.repository.get_claim(claim_id)
            if claim is None:
                raise NotFound(f"Claim {claim_id} not found")
            if claim.owner_id != principal.user_id:
                raise Forbidden("You do not own this claim")
        return self.repository.list_conflicts(claim_id=claim_id)

    def resolve_conflict(
        self,
        principal: Principal,
        conflict_id: str,
        new_status: SpatialConflictStatus,
        notes: Optional[str] = None,
    ) -> SpatialConflictRecord:
        if not principal.is_reviewer:
            raise Forbidden("Only verifiers and admins can resolve conflicts")

        conflict = self.repository.get_conflict(conflict_id)
        if conflict is None:
            raise NotFound(f"Spatial conflict {conflict_id} not found")
        if new_status not in CONFLICT_TRANSITIONS[conflict.status]:
            raise InvalidTransition(
                f"Cannot move a conflict from {conflict.status.value} to {new_status.value}",
                {"from": conflict.status.value, "to": new_status.value},
            )

        if not self.repository.update_conflict_status(
            conflict_id, conflict.status, new_status, principal.user_id, notes
        ):
            raise InvalidTransition(
                f"Spatial conflict {conflict_id} changed while it was being resolved"
            )
        logger.info(
            "Spatial conflict %s → %s by %s", conflict_id, new_status.value, principal.user_id
        )
        return self.repository.get_conflict(conflict_id)

    def _notify(self, event: ClaimEvent) -> None:
        try:
            self.notifier.notify(event)
        except NotificationFailure as e:
            logger.error("Notification failed for claim %s: %s", event.claim_id, e)
