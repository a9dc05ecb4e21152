#!/usr/bin/env python3
"""
Claim Verifier: Entry Point
===========================

Seeds a throwaway SQLite database with one approved claim in Accra and runs
verification for three new claims against it:

  1. a clean claim in Kumasi                     → verified or queued
  2. a claim right on top of the approved one    → pre-flight conflict
  3. a boundary overlapping the approved parcel  → human review

Usage:
    python main.py                          # Heuristic document scoring
    OPENAI_API_KEY=sk-... python main.py    # OpenAI document analysis
"""

from __future__ import annotations

import asyncio
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

from claim_verifier.config import Settings, configure_logging
from claim_verifier.exceptions import ClaimVerificationError
from claim_verifier.models import ClaimStatus, Coordinate, Polygon, VerificationResponse
from claim_verifier.services import VerificationServices, build_services

# ─── Sample Title Documents ─────────────────────────────────────────

KUMASI_INDENTURE = """\
THIS INDENTURE made at Kumasi
Parcel ID: GH20240005678
Vendor/Grantor: ASANTEHENE STOOL LANDS
Purchaser: Ama Serwaa
Date of Issue: 3rd March 2021
"""

ACCRA_CERTIFICATE = """\
CERTIFICATE OF OCCUPANCY
Parcel ID: GH20260001234
Vendor/Grantor: GHANA LANDS COMMISSION
Date of Issue: 15th January 2026
"""

OVERLAP_DEED = """\
DEED OF ASSIGNMENT
Parcel ID: GH20260009999
Grantor: Nii Adjei Onano Family
Dated: 2nd February 2024
"""


def _square(south: float, west: float, north: float, east: float) -> Polygon:
    return Polygon(
        coordinates=[
            Coordinate(lat=south, lng=west),
            Coordinate(lat=south, lng=east),
            Coordinate(lat=north, lng=east),
            Coordinate(lat=north, lng=west),
        ]
    )


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_STATUS_COLOR = {
    ClaimStatus.AI_VERIFIED: _GREEN,
    ClaimStatus.PENDING_HUMAN_REVIEW: _YELLOW,
    ClaimStatus.REJECTED: _RED,
}


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_result(title: str, result: VerificationResponse) -> None:
    color = _STATUS_COLOR.get(result.status, _CYAN)
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  {title}{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Status:      {color}{_BOLD}{result.status.value}{_RESET}")
    print(f"  Confidence:  {result.confidence:.3f} ({result.confidence_level.value})")
    print(f"  Recommend:   {result.recommendation.value}")
    print(f"{'─' * _WIDTH}")
    b = result.breakdown
    print(f"  Document:    {b.document_analysis:.2f}")
    print(f"  GPS:         {b.gps_validation:.2f}")
    print(f"  Cross-ref:   {b.cross_reference:.2f}")
    spatial = f"{b.spatial_check:.2f}" if b.spatial_check is not None else "n/a (no polygon)"
    print(f"  Spatial:     {spatial}")
    print(f"{'─' * _WIDTH}")
    for line in result.reasoning:
        print(f"  {_DIM}{line}{_RESET}")
    for flag in result.fraud_indicators:
        print(f"  {_RED}! {flag}{_RESET}")
    print(f"{'=' * _WIDTH}")


def print_refusal(title: str, error: ClaimVerificationError) -> None:
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  {title}{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  {_RED}{_BOLD}{error.code}{_RESET}  {error}")
    for k, v in error.details.items():
        print(f"    {_DIM}{k}: {v}{_RESET}")
    print(f"{'=' * _WIDTH}")


# ─── Demo ────────────────────────────────────────────────────────────


def seed(services: VerificationServices) -> dict[str, str]:
    repo = services.repository
    repo.create_claim(
        "registry",
        5.6040,
        -0.1872,
        polygon=_square(5.6030, -0.1880, 5.6050, -0.1860),
        grantor_name="Ghana Lands Commission",
        document_text=ACCRA_CERTIFICATE,
        parcel_id="GH20260001234",
        status=ClaimStatus.APPROVED,
    )
    clean = repo.create_claim(
        "ama",
        6.6885,
        -1.6244,
        grantor_name="Asantehene Stool Lands",
        claimant_name="Ama Serwaa",
        document_text=KUMASI_INDENTURE,
        parcel_id="GH20240005678",
    )
    on_top = repo.create_claim(
        "kojo",
        5.6037,
        -0.1870,
        grantor_name="Ghana Lands Commission",
        document_text=ACCRA_CERTIFICATE,
    )
    overlapping = repo.create_claim(
        "efua",
        5.6060,
        -0.1870,
        polygon=_square(5.6042, -0.1880, 5.6062, -0.1860),
        grantor_name="Nii Adjei Onano Family",
        document_text=OVERLAP_DEED,
        parcel_id="GH20260009999",
    )
    return {"clean": clean.id, "on_top": on_top.id, "overlapping": overlapping.id}


async def run_demo(services: VerificationServices) -> int:
    claims = seed(services)
    machine = services.state_machine
    scenarios = [
        ("CLEAN CLAIM (KUMASI)", "ama", claims["clean"]),
        ("CLAIM ON TOP OF AN APPROVED PARCEL", "kojo", claims["on_top"]),
        ("OVERLAPPING BOUNDARY", "efua", claims["overlapping"]),
    ]
    for title, owner, claim_id in scenarios:
        try:
            result = await machine.start_verification(owner, claim_id)
        except ClaimVerificationError as e:
            print_refusal(title, e)
        else:
            print_result(title, result)
    await machine.drain()
    return 0


def main():
    settings = Settings.from_env()
    configure_logging("WARNING")
    print("\n  Starting Claim Verifier demo...")

    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "demo_claims.db"
        services = build_services(replace(settings, database_url=f"sqlite:///{db_path}"))
        try:
            exit_code = asyncio.run(run_demo(services))
        finally:
            services.close()
    print()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
