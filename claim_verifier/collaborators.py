"""
Side-effect collaborators: owner notifications and the credit ledger.

Both are called only after a claim's status has been written. Their
failures are raised as NotificationFailure / CreditChargeFailure and the
callers log them; they never undo a verdict.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db_models import CreditChargeDB
from .exceptions import CreditChargeFailure, NotificationFailure

logger = logging.getLogger(__name__)


@dataclass
class ClaimEvent:
    """Something the claim owner should hear about."""

    kind: str  # "verification_completed" | "claim_reviewed"
    claim_id: str
    owner_id: str
    status: str
    detail: dict = field(default_factory=dict)


# ─── Notifiers ───────────────────────────────────────────────────────


class Notifier(Protocol):
    def notify(self, event: ClaimEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: writes the event to the log."""

    def __init__(self):
        self.sent: list[ClaimEvent] = []

    def notify(self, event: ClaimEvent) -> None:
        self.sent.append(event)
        logger.info(
            "Notify owner %s: claim %s %s (%s)",
            event.owner_id,
            event.claim_id,
            event.kind,
            event.status,
        )


class WebhookNotifier:
    """POSTs each event as JSON to NOTIFICATION_WEBHOOK_URL."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def notify(self, event: ClaimEvent) -> None:
        try:
            response = self._client.post(self.url, json=asdict(event))
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationFailure(
                f"Webhook delivery failed for claim {event.claim_id}",
                {"url": self.url, "error": str(e)},
            ) from e

    def close(self) -> None:
        self._client.close()


# ─── Credit Ledger ───────────────────────────────────────────────────


class CreditLedger(Protocol):
    def charge(self, owner_id: str, claim_id: str, run_id: str, amount: int) -> bool: ...


class DatabaseCreditLedger:
    """Debits credits in the credit_charges table, at most once per run id."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def charge(self, owner_id: str, claim_id: str, run_id: str, amount: int) -> bool:
        """Record a charge. False if this run was already charged."""
        row = CreditChargeDB(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            claim_id=claim_id,
            run_id=run_id,
            amount=amount,
        )
        try:
            with self._session_factory.begin() as session:
                session.add(row)
        except IntegrityError:
            logger.info("Run %s was already charged", run_id)
            return False
        except SQLAlchemyError as e:
            raise CreditChargeFailure(
                f"Could not charge {amount} credit(s) for claim {claim_id}",
                {"owner_id": owner_id, "run_id": run_id, "error": str(e)},
            ) from e
        return True

    def total_charged(self, owner_id: str) -> int:
        with self._session_factory() as session:
            rows = session.query(CreditChargeDB.amount).filter(CreditChargeDB.owner_id == owner_id)
            return sum(amount for (amount,) in rows)
