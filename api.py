"""
Claim Verifier: FastAPI Server
==============================

HTTP surface for land-claim verification and spatial conflict review.

Endpoints:
    POST  /verification/start          Verify a claim (owner only)
    GET   /verification/start          Capability probe
    GET   /verification/status/{id}    Claim status + latest audit run
    GET   /verification/queue          Pending review queue
    PATCH /verification/review         Approve / reject a claim (reviewers)
    POST  /spatial/check               Read-only overlap + grantor risk check
    GET   /spatial/conflicts           Recorded spatial conflicts
    PATCH /spatial/conflicts/{id}      Resolve a spatial conflict (reviewers)
    GET   /health                      Health check / readiness probe

Auth:
    Authorization: Bearer <JWT with "sub" = user id and "role">

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from claim_verifier import __version__
from claim_verifier.auth import Principal, decode_token
from claim_verifier.config import Settings, configure_logging
from claim_verifier.exceptions import ClaimVerificationError, InvalidInput, Unauthorized
from claim_verifier.models import (
    ClaimRecord,
    ClaimStatus,
    ClaimStatusView,
    ConfidenceLevel,
    Polygon,
    Recommendation,
    ReviewAction,
    SpatialCheckReport,
    SpatialConflictRecord,
    SpatialConflictStatus,
    VerificationResponse,
)
from claim_verifier.services import VerificationServices, build_services

# ─── Application Lifespan ───────────────────────────────────────────

_services: VerificationServices | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the database, agents and state machine once on startup."""
    global _services  # noqa: PLW0603
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    _services = build_services(settings)
    yield
    await _services.state_machine.drain()
    _services.close()
    _services = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Claim Verifier API",
    description=(
        "Trust decisions for land claims. Concurrent evidence agents, "
        "weighted confidence aggregation, spatial conflict detection and "
        "human review."
    ),
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ClaimVerificationError)
async def _claim_error_handler(request: Request, exc: ClaimVerificationError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": str(exc), "details": exc.details},
    )


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InvalidInput("Malformed request", {"errors": jsonable_encoder(exc.errors())})
    return await _claim_error_handler(request, error)


# ─── Request / Response Schemas ─────────────────────────────────────


class StartVerificationRequest(BaseModel):
    claim_id: str = Field(
        ...,
        min_length=1,
        description="ID of a PENDING_VERIFICATION claim owned by the caller.",
        json_schema_extra={"example": "8f14e45f-ceea-4e7a-9c1b-2d1c5b0f8e21"},
    )


class ReviewRequest(BaseModel):
    claim_id: str = Field(..., min_length=1)
    action: ReviewAction
    notes: Optional[str] = Field(default=None, max_length=2000)


class SpatialCheckRequest(BaseModel):
    polygon: Polygon
    grantor_name: Optional[str] = None
    claim_id: Optional[str] = Field(
        default=None, description="Exclude this claim from the comparison."
    )

    model_config = {"json_schema_extra": {"example": {
        "polygon": {
            "schema_version": 1,
            "coordinates": [
                {"lat": 5.6037, "lng": -0.1870},
                {"lat": 5.6037, "lng": -0.1860},
                {"lat": 5.6047, "lng": -0.1860},
                {"lat": 5.6047, "lng": -0.1870},
            ],
            "srid": 4326,
        },
        "grantor_name": "Nii Adjei Onano Family",
    }}}


class ConflictResolutionRequest(BaseModel):
    status: SpatialConflictStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


class CapabilityFeatures(BaseModel):
    document_analysis: bool
    fraud_detection: bool
    tampering_detection: bool
    gps_validation: bool
    spatial_conflict_check: bool


class CapabilityResponse(BaseModel):
    ai_configured: bool
    features: CapabilityFeatures


class ClaimSummary(BaseModel):
    """Queue entry; leaves out document text and guard fields."""

    id: str
    owner_id: str
    status: ClaimStatus
    latitude: float
    longitude: float
    grantor_name: Optional[str] = None
    confidence_score: Optional[float] = None
    confidence_level: Optional[ConfidenceLevel] = None
    recommendation: Optional[Recommendation] = None
    human_reviewer_id: Optional[str] = None
    human_review_notes: Optional[str] = None
    created_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    ai_configured: bool


# ─── Helpers ─────────────────────────────────────────────────────────

_bearer = HTTPBearer(auto_error=False)


def _get_services() -> VerificationServices:
    if _services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return _services


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Principal:
    if credentials is None:
        raise Unauthorized("Missing bearer token")
    settings = _get_services().settings
    return decode_token(credentials.credentials, settings.jwt_secret_key, settings.jwt_algorithm)


def _summary(claim: ClaimRecord) -> ClaimSummary:
    return ClaimSummary(
        id=claim.id,
        owner_id=claim.owner_id,
        status=claim.verification_status,
        latitude=claim.latitude,
        longitude=claim.longitude,
        grantor_name=claim.grantor_name,
        confidence_score=claim.confidence_score,
        confidence_level=claim.confidence_level,
        recommendation=claim.recommendation,
        human_reviewer_id=claim.human_reviewer_id,
        human_review_notes=claim.human_review_notes,
        created_at=claim.created_at,
    )


# ─── Verification Endpoints ──────────────────────────────────────────


@app.post(
    "/verification/start",
    summary="Verify a claim",
    tags=["Verification"],
    responses={
        400: {"description": "Already verified, invalid transition or malformed input"},
        401: {"description": "Not authenticated, or not the claim owner"},
        404: {"description": "Claim not found"},
        409: {"description": "Potential conflict, or verification already in progress"},
        500: {"description": "Pipeline or persistence failure"},
    },
)
async def start_verification(
    request: StartVerificationRequest, principal: Principal = Depends(get_principal)
) -> VerificationResponse:
    """Run every evidence agent on the claim and record the verdict.

    Returns the new status with:
    - **confidence** / **confidence_level** / **recommendation**
    - **breakdown**: per-agent scores (`spatial_check` is null without a polygon)
    - **reasoning**: what each agent concluded
    - **spatial**: overlap summary when the claim has a boundary
    """
    services = _get_services()
    return await services.state_machine.start_verification(principal.user_id, request.claim_id)


@app.get("/verification/start", summary="Capability probe", tags=["Verification"])
def verification_capabilities() -> CapabilityResponse:
    ai = _get_services().settings.ai_configured
    return CapabilityResponse(
        ai_configured=ai,
        features=CapabilityFeatures(
            document_analysis=True,
            fraud_detection=ai,
            tampering_detection=ai,
            gps_validation=True,
            spatial_conflict_check=True,
        ),
    )


@app.get(
    "/verification/status/{claim_id}",
    summary="Claim status and latest audit run",
    tags=["Verification"],
)
def verification_status(
    claim_id: str, principal: Principal = Depends(get_principal)
) -> ClaimStatusView:
    return _get_services().state_machine.get_status(
        principal.user_id, claim_id, is_reviewer=principal.is_reviewer
    )


@app.get("/verification/queue", summary="Pending review queue", tags=["Review"])
def verification_queue(principal: Principal = Depends(get_principal)) -> list[ClaimSummary]:
    """Reviewers see every claim awaiting review; owners see their own open claims."""
    claims = _get_services().review.list_pending_review(principal)
    return [_summary(c) for c in claims]


@app.patch(
    "/verification/review",
    summary="Approve or reject a claim",
    tags=["Review"],
    responses={
        400: {"description": "Claim is not awaiting review"},
        403: {"description": "Caller is not a reviewer"},
        404: {"description": "Claim not found"},
    },
)
def review_claim(
    request: ReviewRequest, principal: Principal = Depends(get_principal)
) -> ClaimSummary:
    claim = _get_services().review.review(
        principal, request.claim_id, request.action, request.notes
    )
    return _summary(claim)


# ─── Spatial Endpoints ───────────────────────────────────────────────


@app.post("/spatial/check", summary="Read-only spatial check", tags=["Spatial"])
def spatial_check(
    request: SpatialCheckRequest, principal: Principal = Depends(get_principal)
) -> SpatialCheckReport:
    """Overlap and grantor risk for a boundary. Records nothing."""
    return _get_services().resolver.spatial_check(
        request.polygon, grantor_name=request.grantor_name, claim_id=request.claim_id
    )


@app.get("/spatial/conflicts", summary="List spatial conflicts", tags=["Spatial"])
def list_spatial_conflicts(
    claim_id: Optional[str] = None, principal: Principal = Depends(get_principal)
) -> list[SpatialConflictRecord]:
    return _get_services().review.list_conflicts(principal, claim_id=claim_id)


@app.patch(
    "/spatial/conflicts/{conflict_id}",
    summary="Resolve a spatial conflict",
    tags=["Spatial"],
)
def resolve_spatial_conflict(
    conflict_id: str,
    request: ConflictResolutionRequest,
    principal: Principal = Depends(get_principal),
) -> SpatialConflictRecord:
    return _get_services().review.resolve_conflict(
        principal, conflict_id, request.status, request.notes
    )


# ─── System ──────────────────────────────────────────────────────────


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Services not yet initialised"}},
)
def health_check() -> HealthResponse:
    services = _get_services()
    return HealthResponse(
        status="healthy",
        version=__version__,
        ai_configured=services.settings.ai_configured,
    )
