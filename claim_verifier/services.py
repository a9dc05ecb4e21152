"""Wires settings into a ready-to-use set of services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .agents import (
    CrossReferenceAgent,
    DocumentAnalysisAgent,
    GPSValidationAgent,
    SpatialConflictAgent,
)
from .collaborators import DatabaseCreditLedger, LoggingNotifier, Notifier, WebhookNotifier
from .config import Settings
from .database import create_db_engine, create_session_factory, init_db
from .document_scoring import DocumentScorer, build_document_scorer
from .orchestrator import AgentOrchestrator
from .repository import ClaimRepository
from .review import HumanReviewWorkflow
from .spatial import SpatialConflictResolver
from .state_machine import ClaimVerificationStateMachine

logger = logging.getLogger(__name__)


@dataclass
class VerificationServices:
    settings: Settings
    engine: Engine
    repository: ClaimRepository
    resolver: SpatialConflictResolver
    orchestrator: AgentOrchestrator
    state_machine: ClaimVerificationStateMachine
    review: HumanReviewWorkflow
    ledger: DatabaseCreditLedger
    notifier: Notifier

    def close(self) -> None:
        if isinstance(self.notifier, WebhookNotifier):
            self.notifier.close()
        self.engine.dispose()


def build_services(
    settings: Settings,
    scorer: Optional[DocumentScorer] = None,
    notifier: Optional[Notifier] = None,
) -> VerificationServices:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    repository = ClaimRepository(session_factory)
    resolver = SpatialConflictResolver(repository, box_degrees=settings.preflight_box_degrees)
    scorer = scorer or build_document_scorer(settings)

    if notifier is None:
        if settings.notification_webhook_url:
            notifier = WebhookNotifier(settings.notification_webhook_url)
        else:
            notifier = LoggingNotifier()

    orchestrator = AgentOrchestrator(
        document_agent=DocumentAnalysisAgent(scorer),
        gps_agent=GPSValidationAgent(),
        cross_reference_agent=CrossReferenceAgent(repository),
        spatial_agent=SpatialConflictAgent(resolver),
        agent_timeout=settings.agent_timeout_seconds,
        pipeline_budget=settings.pipeline_budget_seconds,
        ai_powered=scorer.name == "openai",
    )
    ledger = DatabaseCreditLedger(session_factory)

    state_machine = ClaimVerificationStateMachine(
        repository=repository,
        resolver=resolver,
        orchestrator=orchestrator,
        ledger=ledger,
        notifier=notifier,
        lock_ttl_seconds=settings.verification_lock_ttl_seconds,
        credit_cost=settings.verification_credit_cost,
    )
    logger.info("Verification services ready (scorer=%s)", scorer.name)
    return VerificationServices(
        settings=settings,
        engine=engine,
        repository=repository,
        resolver=resolver,
        orchestrator=orchestrator,
        state_machine=state_machine,
        review=HumanReviewWorkflow(repository, notifier),
        ledger=ledger,
        notifier=notifier,
    )
