"""
Tests for polygons, overlap geometry, grantor matching and the spatial
conflict resolver.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from claim_verifier.agents import SpatialConflictAgent
from claim_verifier.geometry import measure_overlap, polygon_area_sqm
from claim_verifier.matching import name_similarity, names_match, normalize_name
from claim_verifier.models import (
    ClaimStatus,
    CollisionAlert,
    ConflictStatus,
    Coordinate,
    OverlapSeverity,
    Polygon,
    RiskLevel,
    SpatialConflictStatus,
    SpatialInput,
)
from claim_verifier.spatial import (
    SpatialConflictResolver,
    classify_alert,
    classify_conflict,
    classify_grantor_risk,
    classify_severity,
    requires_human_review,
    spatial_confidence,
)


def _square(lat: float, lng: float, size: float = 0.001) -> Polygon:
    return Polygon(
        coordinates=[
            Coordinate(lat=lat, lng=lng),
            Coordinate(lat=lat, lng=lng + size),
            Coordinate(lat=lat + size, lng=lng + size),
            Coordinate(lat=lat + size, lng=lng),
        ]
    )


# ─── Polygon Schema ──────────────────────────────────────────────────


class TestPolygonSchema:
    def test_closing_vertex_is_dropped(self) -> None:
        polygon = Polygon(
            coordinates=[
                {"lat": 5.0, "lng": -0.2},
                {"lat": 5.0, "lng": -0.1},
                {"lat": 5.1, "lng": -0.1},
                {"lat": 5.0, "lng": -0.2},
            ]
        )
        assert len(polygon.coordinates) == 3

    def test_needs_three_distinct_vertices(self) -> None:
        with pytest.raises(ValidationError, match="3 distinct vertices"):
            Polygon(
                coordinates=[
                    {"lat": 5.0, "lng": -0.2},
                    {"lat": 5.1, "lng": -0.1},
                    {"lat": 5.0, "lng": -0.2},
                ]
            )

    def test_rejects_out_of_range_latitude(self) -> None:
        with pytest.raises(ValidationError):
            Polygon(
                coordinates=[
                    {"lat": 95.0, "lng": 0.0},
                    {"lat": 5.0, "lng": 0.1},
                    {"lat": 5.1, "lng": 0.1},
                ]
            )

    def test_only_schema_version_one(self) -> None:
        with pytest.raises(ValidationError):
            Polygon(schema_version=2, coordinates=_square(5.0, -0.2).coordinates)

    def test_defaults_to_wgs84(self) -> None:
        assert _square(5.0, -0.2).srid == 4326


# ─── Geometry ────────────────────────────────────────────────────────


class TestMeasureOverlap:
    def test_sixty_percent_overlap(self) -> None:
        candidate = _square(5.6000, -0.2000)
        other = _square(5.6000, -0.1996)
        overlap = measure_overlap(candidate, other)
        assert overlap.percentage == pytest.approx(60.0, abs=0.01)

    def test_disjoint_polygons(self) -> None:
        overlap = measure_overlap(_square(5.6, -0.2), _square(6.6, -1.2))
        assert overlap.percentage == 0.0
        assert overlap.intersection_area_sqm == 0.0

    def test_identical_polygons(self) -> None:
        polygon = _square(5.6, -0.2)
        assert measure_overlap(polygon, polygon).percentage == pytest.approx(100.0)

    def test_percentage_is_relative_to_candidate(self) -> None:
        small = _square(5.6000, -0.2000, size=0.0005)
        large = _square(5.6000, -0.2000, size=0.001)
        assert measure_overlap(small, large).percentage == pytest.approx(100.0)
        assert measure_overlap(large, small).percentage == pytest.approx(25.0, abs=0.01)

    def test_area_of_small_parcel_in_square_metres(self) -> None:
        # 0.001° × 0.001° near the equator is roughly 110 m × 111 m
        area = polygon_area_sqm(_square(5.6, -0.2))
        assert 11_000 < area < 13_000

    def test_self_intersecting_boundary_does_not_raise(self) -> None:
        bow_tie = Polygon(
            coordinates=[
                {"lat": 5.600, "lng": -0.200},
                {"lat": 5.601, "lng": -0.199},
                {"lat": 5.601, "lng": -0.200},
                {"lat": 5.600, "lng": -0.199},
            ]
        )
        overlap = measure_overlap(bow_tie, _square(5.600, -0.200))
        assert 0.0 <= overlap.percentage <= 100.0


# ─── Classification ──────────────────────────────────────────────────


class TestClassification:
    @pytest.mark.parametrize(
        ("percentage", "severity"),
        [
            (0.5, OverlapSeverity.LOW),
            (4.99, OverlapSeverity.LOW),
            (5.0, OverlapSeverity.MEDIUM),
            (19.99, OverlapSeverity.MEDIUM),
            (20.0, OverlapSeverity.HIGH),
            (49.99, OverlapSeverity.HIGH),
            (50.0, OverlapSeverity.CRITICAL),
            (100.0, OverlapSeverity.CRITICAL),
        ],
    )
    def test_severity(self, percentage: float, severity: OverlapSeverity) -> None:
        assert classify_severity(percentage) == severity

    @pytest.mark.parametrize(
        ("percentage", "status"),
        [
            (0.0, ConflictStatus.CLEAR),
            (4.99, ConflictStatus.CLEAR),
            (5.0, ConflictStatus.POTENTIAL_DISPUTE),
            (20.0, ConflictStatus.HIGH_RISK),
            (60.0, ConflictStatus.HIGH_RISK),
        ],
    )
    def test_conflict_status(self, percentage: float, status: ConflictStatus) -> None:
        assert classify_conflict(percentage) == status

    @pytest.mark.parametrize(
        ("percentage", "alert"),
        [
            (0.0, CollisionAlert.NONE),
            (3.0, CollisionAlert.WARNING),
            (5.0, CollisionAlert.CRITICAL),
            (49.9, CollisionAlert.CRITICAL),
            (50.0, CollisionAlert.BLOCKED),
        ],
    )
    def test_collision_alert(self, percentage: float, alert: CollisionAlert) -> None:
        assert classify_alert(percentage)[0] == alert

    @pytest.mark.parametrize(
        ("rate", "risk"),
        [(0.0, RiskLevel.LOW), (0.19, RiskLevel.LOW), (0.2, RiskLevel.MEDIUM), (0.4, RiskLevel.HIGH)],
    )
    def test_grantor_risk(self, rate: float, risk: RiskLevel) -> None:
        assert classify_grantor_risk(rate) == risk

    def test_spatial_confidence_table(self) -> None:
        assert spatial_confidence(ConflictStatus.HIGH_RISK, RiskLevel.LOW) == pytest.approx(0.2)
        assert spatial_confidence(ConflictStatus.POTENTIAL_DISPUTE, RiskLevel.LOW) == pytest.approx(0.5)
        assert spatial_confidence(ConflictStatus.CLEAR, RiskLevel.LOW) == pytest.approx(0.95)
        assert spatial_confidence(ConflictStatus.CLEAR, RiskLevel.HIGH) == pytest.approx(0.475)
        assert spatial_confidence(ConflictStatus.CLEAR, RiskLevel.MEDIUM) == pytest.approx(0.7125)

    def test_human_review_triggers(self) -> None:
        assert requires_human_review(OverlapSeverity.CRITICAL, RiskLevel.LOW)
        assert requires_human_review(OverlapSeverity.HIGH, RiskLevel.LOW)
        assert requires_human_review(None, RiskLevel.MEDIUM)
        assert not requires_human_review(OverlapSeverity.MEDIUM, RiskLevel.LOW)
        assert not requires_human_review(None, RiskLevel.LOW)


# ─── Name Matching ───────────────────────────────────────────────────


class TestNameMatching:
    def test_normalisation(self) -> None:
        assert normalize_name("Dr. Kofi  Mensah & Co.") == "kofi mensah and company"

    def test_abbreviations_and_case(self) -> None:
        assert names_match("Nii Adjei Onano & Bros.", "NII ADJEI ONANO AND BROTHERS")

    def test_substring_counts_as_match(self) -> None:
        assert names_match("Ghana Lands Commission", "The Ghana Lands Commission, Accra")

    def test_small_typo_matches(self) -> None:
        assert name_similarity("Asantehene Stool Lands", "Asantehene Stol Lands") >= 0.8
        assert names_match("Asantehene Stool Lands", "Asantehene Stol Lands")

    def test_different_names_do_not_match(self) -> None:
        assert not names_match("Ghana Lands Commission", "Nii Adjei Onano")

    def test_missing_or_tiny_names(self) -> None:
        assert not names_match(None, "Ghana Lands Commission")
        assert not names_match("A", "A")


# ─── Resolver ────────────────────────────────────────────────────────


@pytest.fixture
def resolver(repository) -> SpatialConflictResolver:
    return SpatialConflictResolver(repository)


class TestPrefilter:
    def test_verified_claim_nearby_is_a_hit(self, resolver, make_claim) -> None:
        approved = make_claim("registry", 5.6040, -0.1872, status=ClaimStatus.APPROVED)
        candidate = make_claim("kojo", 5.6037, -0.1870)
        assert resolver.prefilter(candidate) == [approved.id]

    def test_ai_verified_counts_too(self, resolver, make_claim) -> None:
        verified = make_claim("registry", 5.6040, -0.1872, status=ClaimStatus.AI_VERIFIED)
        candidate = make_claim("kojo", 5.6037, -0.1870)
        assert resolver.prefilter(candidate) == [verified.id]

    @pytest.mark.parametrize(
        "status",
        [ClaimStatus.PENDING_VERIFICATION, ClaimStatus.PENDING_HUMAN_REVIEW, ClaimStatus.REJECTED],
    )
    def test_unverified_neighbours_are_ignored(self, resolver, make_claim, status) -> None:
        make_claim("someone", 5.6040, -0.1872, status=status)
        candidate = make_claim("kojo", 5.6037, -0.1870)
        assert resolver.prefilter(candidate) == []

    def test_outside_box_is_ignored(self, resolver, make_claim) -> None:
        make_claim("registry", 5.6060, -0.1872, status=ClaimStatus.APPROVED)
        candidate = make_claim("kojo", 5.6037, -0.1870)
        assert resolver.prefilter(candidate) == []

    def test_box_is_inclusive(self, repository, make_claim) -> None:
        resolver = SpatialConflictResolver(repository, box_degrees=0.25)
        edge = make_claim("registry", 10.25, -1.25, status=ClaimStatus.APPROVED)
        candidate = make_claim("kojo", 10.0, -1.0)
        assert resolver.prefilter(candidate) == [edge.id]

    def test_never_matches_itself(self, resolver, make_claim) -> None:
        claim = make_claim("kojo", 5.6037, -0.1870, status=ClaimStatus.AI_VERIFIED)
        assert resolver.prefilter(claim) == []


class TestCheckOverlap:
    def test_sixty_percent_overlap_is_high_risk_and_recorded(
        self, resolver, repository, make_claim
    ) -> None:
        existing = make_claim(
            "registry", 5.6005, -0.1995, polygon=_square(5.6000, -0.1996), status=ClaimStatus.APPROVED
        )
        candidate = make_claim("efua", 5.6005, -0.2000, polygon=_square(5.6000, -0.2000))

        result = resolver.check_overlap(candidate.polygon, claim_id=candidate.id)

        assert result.status == ConflictStatus.HIGH_RISK
        assert result.has_conflict
        assert result.max_severity == OverlapSeverity.CRITICAL
        assert result.overlap_percentage == pytest.approx(60.0, abs=0.01)
        conflicts = repository.list_conflicts(claim_id=candidate.id)
        assert len(conflicts) == 1
        assert conflicts[0].conflicting_claim_id == existing.id
        assert conflicts[0].status == SpatialConflictStatus.PENDING_REVIEW

    def test_small_overlap_is_clear_and_not_recorded(self, resolver, repository, make_claim) -> None:
        make_claim("registry", 5.6, -0.2, polygon=_square(5.6000, -0.19903))
        candidate = make_claim("efua", 5.6, -0.2, polygon=_square(5.6000, -0.2000))

        result = resolver.check_overlap(candidate.polygon, claim_id=candidate.id)

        assert result.status == ConflictStatus.CLEAR
        assert result.overlap_percentage == pytest.approx(3.0, abs=0.01)
        assert result.max_severity == OverlapSeverity.LOW
        assert repository.list_conflicts(claim_id=candidate.id) == []

    def test_rejected_claims_are_ignored(self, resolver, make_claim) -> None:
        make_claim("old", 5.6, -0.2, polygon=_square(5.6, -0.2), status=ClaimStatus.REJECTED)
        candidate = make_claim("efua", 5.6, -0.2, polygon=_square(5.6, -0.2))
        result = resolver.check_overlap(candidate.polygon, claim_id=candidate.id)
        assert result.status == ConflictStatus.CLEAR
        assert result.overlaps == []

    def test_record_false_writes_nothing(self, resolver, repository, make_claim) -> None:
        make_claim("registry", 5.6, -0.2, polygon=_square(5.6, -0.2))
        candidate = make_claim("efua", 5.6, -0.2, polygon=_square(5.6, -0.2))
        resolver.check_overlap(candidate.polygon, claim_id=candidate.id, record=False)
        assert repository.list_conflicts() == []

    def test_conflict_refreshed_only_while_pending_review(self, repository, make_claim) -> None:
        a = make_claim("a", 5.6, -0.2)
        b = make_claim("b", 5.6, -0.2)
        first = repository.upsert_spatial_conflict(a.id, b.id, 100.0, 10.0, OverlapSeverity.MEDIUM)
        refreshed = repository.upsert_spatial_conflict(a.id, b.id, 300.0, 30.0, OverlapSeverity.HIGH)
        assert refreshed.id == first.id
        assert refreshed.overlap_percentage == 30.0

        repository.update_conflict_status(
            first.id,
            SpatialConflictStatus.PENDING_REVIEW,
            SpatialConflictStatus.DISPUTED,
            "reviewer-1",
            "boundary walked",
        )
        untouched = repository.upsert_spatial_conflict(a.id, b.id, 500.0, 50.0, OverlapSeverity.CRITICAL)
        assert untouched.overlap_percentage == 30.0
        assert untouched.status == SpatialConflictStatus.DISPUTED

    def test_one_conflict_per_pair_from_either_side(self, resolver, repository, make_claim) -> None:
        a = make_claim("a", 5.6005, -0.2000, polygon=_square(5.6000, -0.2000))
        b = make_claim("b", 5.6005, -0.1995, polygon=_square(5.6000, -0.1996))

        resolver.check_overlap(a.polygon, claim_id=a.id)
        resolver.check_overlap(b.polygon, claim_id=b.id)

        conflicts = repository.list_conflicts()
        assert len(conflicts) == 1
        assert (conflicts[0].claim_id, conflicts[0].conflicting_claim_id) == (b.id, a.id)

    def test_reviewed_conflict_is_not_reopened_from_the_other_side(
        self, resolver, repository, make_claim
    ) -> None:
        a = make_claim("a", 5.6005, -0.2000, polygon=_square(5.6000, -0.2000))
        b = make_claim("b", 5.6005, -0.1995, polygon=_square(5.6000, -0.1996))
        resolver.check_overlap(a.polygon, claim_id=a.id)
        (conflict,) = repository.list_conflicts()
        repository.update_conflict_status(
            conflict.id,
            SpatialConflictStatus.PENDING_REVIEW,
            SpatialConflictStatus.RESOLVED_VALID,
            "reviewer-1",
            "survey error",
        )

        resolver.check_overlap(b.polygon, claim_id=b.id)

        (after,) = repository.list_conflicts()
        assert after.id == conflict.id
        assert after.status == SpatialConflictStatus.RESOLVED_VALID
        assert after.claim_id == a.id

    def test_conflict_with_itself_is_refused(self, repository, make_claim) -> None:
        a = make_claim("a", 5.6, -0.2)
        with pytest.raises(ValueError):
            repository.upsert_spatial_conflict(a.id, a.id, 1.0, 100.0, OverlapSeverity.CRITICAL)


class TestGrantorRisk:
    def _history(self, make_claim, name: str, rejected: int, total: int) -> list:
        claims = []
        for i in range(total):
            status = ClaimStatus.REJECTED if i < rejected else ClaimStatus.APPROVED
            claims.append(make_claim(f"owner-{i}", 8.0 + i, -1.0, grantor_name=name, status=status))
        return claims

    def test_high_risk_grantor(self, resolver, make_claim) -> None:
        self._history(make_claim, "Nii Adjei Onano", rejected=2, total=5)
        profile = resolver.grantor_risk("NII ADJEI ONANO.")
        assert profile.total_claims == 5
        assert profile.rejected_claims == 2
        assert profile.dispute_rate == pytest.approx(0.4)
        assert profile.risk_level == RiskLevel.HIGH

    def test_disputed_conflicts_count(self, resolver, repository, make_claim) -> None:
        claims = self._history(make_claim, "Kwame Boateng", rejected=0, total=5)
        other = make_claim("neighbour", 9.0, -1.0)
        conflict = repository.upsert_spatial_conflict(
            claims[0].id, other.id, 100.0, 25.0, OverlapSeverity.HIGH
        )
        repository.update_conflict_status(
            conflict.id,
            SpatialConflictStatus.PENDING_REVIEW,
            SpatialConflictStatus.DISPUTED,
            "reviewer-1",
            None,
        )
        profile = resolver.grantor_risk("Kwame Boateng")
        assert profile.disputed_claims == 1
        assert profile.risk_level == RiskLevel.MEDIUM

    def test_rejected_and_disputed_claim_counts_once(self, resolver, repository, make_claim) -> None:
        claims = self._history(make_claim, "Kwame Boateng", rejected=1, total=5)
        other = make_claim("neighbour", 9.0, -1.0)
        conflict = repository.upsert_spatial_conflict(
            claims[0].id, other.id, 100.0, 25.0, OverlapSeverity.HIGH
        )
        repository.update_conflict_status(
            conflict.id,
            SpatialConflictStatus.PENDING_REVIEW,
            SpatialConflictStatus.DISPUTED,
            "reviewer-1",
            None,
        )

        profile = resolver.grantor_risk("Kwame Boateng")

        assert profile.total_claims == 5
        assert profile.rejected_claims == 1
        assert profile.disputed_claims == 0
        assert profile.dispute_rate == pytest.approx(0.2)
        assert profile.risk_level == RiskLevel.MEDIUM

    def test_unknown_grantor_is_low(self, resolver) -> None:
        profile = resolver.grantor_risk("Somebody New")
        assert profile.total_claims == 0
        assert profile.risk_level == RiskLevel.LOW

    @pytest.mark.parametrize("name", [None, "", "A", "  "])
    def test_short_names_are_low_without_lookup(self, resolver, name) -> None:
        assert resolver.grantor_risk(name).risk_level == RiskLevel.LOW

    def test_excludes_the_candidate(self, resolver, make_claim) -> None:
        candidate = make_claim("x", 8.0, -1.0, grantor_name="Kofi Mensah", status=ClaimStatus.REJECTED)
        profile = resolver.grantor_risk("Kofi Mensah", exclude_claim_id=candidate.id)
        assert profile.total_claims == 0


class TestSpatialAgent:
    def test_overlap_drives_score_and_hitl(self, resolver, make_claim) -> None:
        make_claim(
            "registry", 5.6005, -0.1995, polygon=_square(5.6000, -0.1996), status=ClaimStatus.APPROVED
        )
        candidate = make_claim("efua", 5.6005, -0.2000, polygon=_square(5.6000, -0.2000))

        result = SpatialConflictAgent(resolver).execute(
            SpatialInput(claim_id=candidate.id, polygon=candidate.polygon)
        )

        assert result.success
        assert result.confidence_score == pytest.approx(0.2)
        assert result.data.requires_hitl is True
        assert result.data.grantor_risk_level == RiskLevel.LOW

    def test_risky_grantor_discounts_clear_overlap(self, resolver, make_claim) -> None:
        for i in range(5):
            status = ClaimStatus.REJECTED if i < 2 else ClaimStatus.APPROVED
            make_claim(f"o{i}", 9.0 + i, -1.0, grantor_name="Nii Adjei Onano", status=status)
        candidate = make_claim(
            "efua", 5.0, -0.5, polygon=_square(5.0, -0.5), grantor_name="Nii Adjei Onano"
        )

        result = SpatialConflictAgent(resolver).execute(
            SpatialInput(
                claim_id=candidate.id, polygon=candidate.polygon, grantor_name="Nii Adjei Onano"
            )
        )

        assert result.confidence_score == pytest.approx(0.475)
        assert result.data.grantor_risk_level == RiskLevel.HIGH
        assert result.data.requires_hitl is True


class TestSpatialCheck:
    def test_clear_polygon_proceeds(self, resolver) -> None:
        report = resolver.spatial_check(_square(5.0, -0.5))
        assert report.recommendation == "PROCEED"
        assert report.risk_score == 0
        assert report.grantor is None
        assert report.alert_level == CollisionAlert.NONE

    def test_high_risk_overlap_needs_review(self, resolver, make_claim, caplog) -> None:
        make_claim("registry", 5.6, -0.2, polygon=_square(5.6, -0.2), status=ClaimStatus.APPROVED)
        report = resolver.spatial_check(_square(5.6, -0.2))
        assert report.risk_score == 40
        assert report.recommendation == "REVIEW"
        assert report.requires_hitl
        assert report.alert_level == CollisionAlert.BLOCKED
        assert "BLOCKED" in caplog.text

    def test_high_risk_overlap_and_grantor_rejects(self, resolver, repository, make_claim) -> None:
        for i in range(5):
            status = ClaimStatus.REJECTED if i < 2 else ClaimStatus.APPROVED
            make_claim(f"o{i}", 9.0 + i, -1.0, grantor_name="Nii Adjei Onano", status=status)
        make_claim("registry", 5.6, -0.2, polygon=_square(5.6, -0.2), status=ClaimStatus.APPROVED)

        report = resolver.spatial_check(_square(5.6, -0.2), grantor_name="Nii Adjei Onano")

        assert report.risk_score == 70
        assert report.recommendation == "REJECT"
        assert repository.list_conflicts() == []
