"""
FastAPI endpoint tests for the Claim Verifier API.

Uses FastAPI TestClient: no real server, no LLM calls. Each test gets fresh
services on its own SQLite file; the lifespan is bypassed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from claim_verifier.auth import create_access_token
from claim_verifier.database import utcnow
from claim_verifier.models import ClaimStatus, OverlapSeverity, Polygon

client = TestClient(app)

SECRET = "test-secret"


@pytest.fixture(autouse=True)
def _wire_services(services):
    """Point the app at this test's services (bypasses lifespan)."""
    api._services = services
    yield
    api._services = None


def _auth(user_id: str = "owner-1", role: str = "USER") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role, SECRET)}"}


REVIEWER = _auth("verifier-1", "VERIFIER")

SQUARE = [
    {"lat": 5.6030, "lng": -0.1880},
    {"lat": 5.6030, "lng": -0.1860},
    {"lat": 5.6050, "lng": -0.1860},
    {"lat": 5.6050, "lng": -0.1880},
]


# ─── System ──────────────────────────────────────────────────────────


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["ai_configured"] is False

    def test_503_before_startup(self) -> None:
        api._services = None
        assert client.get("/health").status_code == 503


class TestCapabilities:
    def test_capability_probe(self) -> None:
        data = client.get("/verification/start").json()
        assert data["ai_configured"] is False
        assert data["features"] == {
            "document_analysis": True,
            "fraud_detection": False,
            "tampering_detection": False,
            "gps_validation": True,
            "spatial_conflict_check": True,
        }

    def test_ai_features_follow_openai_configuration(self, services, monkeypatch) -> None:
        monkeypatch.setattr(services, "settings", replace(services.settings, openai_api_key="sk-test"))
        data = client.get("/verification/start").json()
        assert data["ai_configured"] is True
        assert data["features"]["fraud_detection"] is True
        assert data["features"]["tampering_detection"] is True


# ─── Auth ────────────────────────────────────────────────────────────


class TestAuth:
    def test_missing_token(self, make_claim) -> None:
        claim = make_claim()
        resp = client.post("/verification/start", json={"claim_id": claim.id})
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"

    def test_bad_token(self, make_claim) -> None:
        claim = make_claim()
        resp = client.post(
            "/verification/start",
            json={"claim_id": claim.id},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401

    def test_token_signed_with_another_secret(self) -> None:
        token = create_access_token("owner-1", "USER", "another-secret")
        resp = client.get("/verification/queue", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


# ─── Verification ────────────────────────────────────────────────────


class TestStartVerification:
    def test_clean_claim_is_verified(self, make_claim) -> None:
        claim = make_claim("owner-1")
        resp = client.post("/verification/start", json={"claim_id": claim.id}, headers=_auth())

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "AI_VERIFIED"
        assert data["recommendation"] == "AUTO_APPROVE"
        assert data["confidence"] == pytest.approx(0.9175)
        assert data["breakdown"]["spatial_check"] is None
        assert data["spatial"] is None

    def test_second_start_is_already_verified(self, make_claim) -> None:
        claim = make_claim("owner-1")
        client.post("/verification/start", json={"claim_id": claim.id}, headers=_auth())
        resp = client.post("/verification/start", json={"claim_id": claim.id}, headers=_auth())
        assert resp.status_code == 400
        assert resp.json()["error"] == "ALREADY_VERIFIED"

    def test_not_the_owner(self, make_claim) -> None:
        claim = make_claim("owner-1")
        resp = client.post(
            "/verification/start", json={"claim_id": claim.id}, headers=_auth("owner-2")
        )
        assert resp.status_code == 401

    def test_unknown_claim(self) -> None:
        resp = client.post("/verification/start", json={"claim_id": "missing"}, headers=_auth())
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"

    @pytest.mark.parametrize("body", [{}, {"claim_id": ""}, {"claim_id": 42}])
    def test_malformed_body(self, body) -> None:
        resp = client.post("/verification/start", json=body, headers=_auth())
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "INVALID_INPUT"
        assert data["details"]["errors"]

    def test_preflight_conflict(self, make_claim) -> None:
        approved = make_claim("registry", 5.6040, -0.1872, status=ClaimStatus.APPROVED)
        claim = make_claim("kojo", 5.6037, -0.1870)

        resp = client.post(
            "/verification/start", json={"claim_id": claim.id}, headers=_auth("kojo")
        )

        assert resp.status_code == 409
        data = resp.json()
        assert data["error"] == "POTENTIAL_CONFLICT"
        assert data["details"]["conflicting_claim_ids"] == [approved.id]

    def test_in_progress(self, repository, make_claim) -> None:
        claim = make_claim("owner-1")
        repository.acquire_verification(claim.id, "other-run", utcnow() - timedelta(minutes=5))

        resp = client.post("/verification/start", json={"claim_id": claim.id}, headers=_auth())

        assert resp.status_code == 409
        assert resp.json()["error"] == "VERIFICATION_IN_PROGRESS"


class TestStatusEndpoint:
    def test_owner_sees_status_and_latest_run(self, make_claim) -> None:
        claim = make_claim("owner-1")
        client.post("/verification/start", json={"claim_id": claim.id}, headers=_auth())

        resp = client.get(f"/verification/status/{claim.id}", headers=_auth())

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "AI_VERIFIED"
        assert data["latest_run"]["resulting_status"] == "AI_VERIFIED"

    def test_reviewer_sees_any_claim(self, make_claim) -> None:
        claim = make_claim("owner-1")
        resp = client.get(f"/verification/status/{claim.id}", headers=REVIEWER)
        assert resp.status_code == 200

    def test_stranger_is_forbidden(self, make_claim) -> None:
        claim = make_claim("owner-1")
        resp = client.get(f"/verification/status/{claim.id}", headers=_auth("owner-2"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"


# ─── Review ──────────────────────────────────────────────────────────


class TestReviewEndpoints:
    def test_queue_for_reviewer(self, make_claim) -> None:
        waiting = make_claim("owner-1", status=ClaimStatus.PENDING_HUMAN_REVIEW)
        make_claim("owner-2")

        resp = client.get("/verification/queue", headers=REVIEWER)

        assert resp.status_code == 200
        data = resp.json()
        assert [c["id"] for c in data] == [waiting.id]
        assert "document_text" not in data[0]

    def test_queue_for_owner(self, make_claim) -> None:
        mine = make_claim("owner-1")
        make_claim("owner-2")
        data = client.get("/verification/queue", headers=_auth()).json()
        assert [c["id"] for c in data] == [mine.id]

    def test_reviewer_approves(self, make_claim) -> None:
        claim = make_claim("owner-1", status=ClaimStatus.PENDING_HUMAN_REVIEW)

        resp = client.patch(
            "/verification/review",
            json={"claim_id": claim.id, "action": "APPROVE", "notes": "Site visited"},
            headers=REVIEWER,
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "APPROVED"
        assert data["human_reviewer_id"] == "verifier-1"

    def test_owner_cannot_review(self, make_claim) -> None:
        claim = make_claim("owner-1", status=ClaimStatus.PENDING_HUMAN_REVIEW)
        resp = client.patch(
            "/verification/review", json={"claim_id": claim.id, "action": "APPROVE"}, headers=_auth()
        )
        assert resp.status_code == 403

    def test_claim_not_awaiting_review(self, make_claim) -> None:
        claim = make_claim("owner-1")
        resp = client.patch(
            "/verification/review", json={"claim_id": claim.id, "action": "REJECT"}, headers=REVIEWER
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_TRANSITION"

    def test_unknown_action(self, make_claim) -> None:
        claim = make_claim("owner-1", status=ClaimStatus.PENDING_HUMAN_REVIEW)
        resp = client.patch(
            "/verification/review", json={"claim_id": claim.id, "action": "MAYBE"}, headers=REVIEWER
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_INPUT"


# ─── Spatial ─────────────────────────────────────────────────────────


class TestSpatialEndpoints:
    def test_clear_polygon(self) -> None:
        resp = client.post("/spatial/check", json={"polygon": {"coordinates": SQUARE}}, headers=_auth())
        assert resp.status_code == 200
        data = resp.json()
        assert data["recommendation"] == "PROCEED"
        assert data["overlap"]["status"] == "CLEAR"

    def test_overlap_is_reported_but_not_recorded(self, repository, make_claim) -> None:
        make_claim(
            "registry",
            5.6040,
            -0.1872,
            polygon=Polygon(coordinates=SQUARE),
            status=ClaimStatus.APPROVED,
        )

        resp = client.post(
            "/spatial/check",
            json={"polygon": {"coordinates": SQUARE}, "grantor_name": "Ghana Lands Commission"},
            headers=_auth(),
        )

        data = resp.json()
        assert data["overlap"]["status"] == "HIGH_RISK"
        assert data["recommendation"] == "REVIEW"
        assert data["risk_score"] == 40
        assert data["alert_level"] == "BLOCKED"
        assert repository.list_conflicts() == []

    def test_too_few_vertices(self) -> None:
        resp = client.post(
            "/spatial/check", json={"polygon": {"coordinates": SQUARE[:2]}}, headers=_auth()
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_INPUT"

    def test_unknown_schema_version(self) -> None:
        resp = client.post(
            "/spatial/check",
            json={"polygon": {"schema_version": 2, "coordinates": SQUARE}},
            headers=_auth(),
        )
        assert resp.status_code == 400

    def test_requires_auth(self) -> None:
        resp = client.post("/spatial/check", json={"polygon": {"coordinates": SQUARE}})
        assert resp.status_code == 401

    def test_list_and_resolve_conflicts(self, repository, make_claim) -> None:
        a = make_claim("owner-1", 5.60, -0.20)
        b = make_claim("owner-2", 5.60, -0.20)
        conflict = repository.upsert_spatial_conflict(a.id, b.id, 2500.0, 25.0, OverlapSeverity.HIGH)

        listed = client.get("/spatial/conflicts", headers=REVIEWER).json()
        assert [c["id"] for c in listed] == [conflict.id]

        own = client.get("/spatial/conflicts", params={"claim_id": a.id}, headers=_auth()).json()
        assert [c["id"] for c in own] == [conflict.id]

        resp = client.patch(
            f"/spatial/conflicts/{conflict.id}",
            json={"status": "RESOLVED_VALID", "notes": "Survey error"},
            headers=REVIEWER,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "RESOLVED_VALID"

    def test_owner_cannot_list_every_conflict(self) -> None:
        resp = client.get("/spatial/conflicts", headers=_auth())
        assert resp.status_code == 403

    def test_owner_cannot_resolve(self, repository, make_claim) -> None:
        a = make_claim("owner-1", 5.60, -0.20)
        b = make_claim("owner-2", 5.60, -0.20)
        conflict = repository.upsert_spatial_conflict(a.id, b.id, 2500.0, 25.0, OverlapSeverity.HIGH)
        resp = client.patch(
            f"/spatial/conflicts/{conflict.id}", json={"status": "DISPUTED"}, headers=_auth()
        )
        assert resp.status_code == 403
