"""Pytest configuration: project root on sys.path, one SQLite file per test, no LLM calls."""

import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from claim_verifier.config import Settings  # noqa: E402
from claim_verifier.document_scoring import HeuristicDocumentScorer  # noqa: E402
from claim_verifier.services import build_services  # noqa: E402

# Scorer clock for every test; keeps document-age checks stable.
TODAY = date(2026, 6, 1)

CLEAN_DOCUMENT = """\
THIS INDENTURE made at Kumasi
Parcel ID: GH20240005678
Vendor/Grantor: ASANTEHENE STOOL LANDS
Date of Issue: 3rd March 2021
"""


@pytest.fixture(autouse=True)
def _no_llm_calls(monkeypatch):
    """Prevent real OpenAI calls during tests."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'claims.db'}",
        openai_api_key=None,
        jwt_secret_key="test-secret",
        agent_timeout_seconds=2.0,
        pipeline_budget_seconds=5.0,
    )


@pytest.fixture
def services(settings):
    built = build_services(settings, scorer=HeuristicDocumentScorer(today=TODAY))
    yield built
    built.close()


@pytest.fixture
def repository(services):
    return services.repository


@pytest.fixture
def make_claim(repository):
    """Factory for claims; defaults to a clean Kumasi claim with a good document."""

    def _make_claim(owner_id="owner-1", latitude=6.6885, longitude=-1.6244, **fields):
        fields.setdefault("document_text", CLEAN_DOCUMENT)
        return repository.create_claim(owner_id, latitude, longitude, **fields)

    return _make_claim
