"""Tests for risk/quality scoring and tag generation."""
from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from inspection import document
from inspection.models import (
    AccidentType,
    DamageAnalysis,
    DamageFinding,
    DamagePhoto,
    DamageSeverity,
    ExtractedIdData,
    PartyRole,
    VehicleStatus,
)
from inspection.scoring import (
    STATUS_TAG,
    ScoringWeights,
    calculate_quality_score,
    calculate_risk_score,
    generate_tags,
    quality_score_breakdown,
    risk_score_breakdown,
)


@pytest.fixture
def inspection():
    """A freshly started MX inspection: new vehicle, nothing captured."""
    return document.scaffold_inspection(FIXED_NOW, "MX", AccidentType.COLLISION)


def _with_photos(inspection, count):
    for photo in inspection.insured_vehicle.photos[:count]:
        inspection = document.with_vehicle_photo_updated(
            inspection, PartyRole.INSURED, photo.id, FIXED_NOW, {"image_url": f"data:{photo.angle.value}"}
        )
    return inspection


def _with_damage(inspection, *findings, driveable=True):
    analysis = DamageAnalysis(
        has_damage=bool(findings),
        damages=list(findings),
        vehicle_status=VehicleStatus(is_driveable=driveable),
    )
    photo = DamagePhoto(id=document.new_id(), image_url="data:damage", timestamp=FIXED_NOW, analysis=analysis)
    return document.with_damage_photo_added(inspection, photo, FIXED_NOW)


def _finding(severity=DamageSeverity.MINOR, structural=False):
    return DamageFinding(id=document.new_id(), severity=severity, affects_structure=structural)


def test_baseline_scores(inspection):
    # New car, collision, no garage
    assert calculate_risk_score(inspection, FIXED_NOW) == 65
    # 8 photos short (-40), identity (-10), ID front, plate, VIN, address (-5 each)
    assert calculate_quality_score(inspection) == 30


def test_scoring_is_pure(inspection):
    before = inspection.model_dump()
    first = risk_score_breakdown(inspection, FIXED_NOW)
    second = risk_score_breakdown(inspection, FIXED_NOW)
    assert first == second
    assert inspection.model_dump() == before


def test_risk_signals_add_up_and_clamp(inspection):
    inspection = document.with_vehicle(
        inspection, PartyRole.INSURED, FIXED_NOW, {"mileage": 60_000, "year": FIXED_NOW.year - 7, "has_garage": True}
    )
    # +10 mileage, +5 age, +10 collision
    assert calculate_risk_score(inspection, FIXED_NOW) == 75

    inspection = document.with_vehicle(
        inspection, PartyRole.INSURED, FIXED_NOW, {"mileage": 150_000, "year": FIXED_NOW.year - 15}
    )
    inspection = document.with_inspection_fields(inspection, FIXED_NOW, {"accident_type": AccidentType.THEFT})
    inspection = document.with_third_party(inspection, True, FIXED_NOW)
    breakdown = risk_score_breakdown(inspection, FIXED_NOW)

    assert breakdown["score"] == 100
    assert breakdown["base"] == 50
    assert sum(a["points"] for a in breakdown["adjustments"]) == 65


def test_damage_findings_raise_risk(inspection):
    one_minor = _with_damage(inspection, _finding())
    assert calculate_risk_score(one_minor, FIXED_NOW) == 70

    three = _with_damage(inspection, _finding(), _finding(DamageSeverity.SEVERE), _finding())
    # +10 for more than two findings, +10 severe
    assert calculate_risk_score(three, FIXED_NOW) == 85


def test_not_driveable_counts_per_report(inspection):
    inspection = document.with_vehicle(inspection, PartyRole.INSURED, FIXED_NOW, {"has_garage": True})
    inspection = _with_damage(inspection, driveable=False)
    inspection = _with_damage(inspection, driveable=False)
    # collision +10, two not-driveable reports +30
    assert calculate_risk_score(inspection, FIXED_NOW) == 90


def test_risk_never_leaves_range(inspection):
    inspection = _with_damage(
        inspection,
        *[_finding(DamageSeverity.TOTAL_LOSS, structural=True) for _ in range(6)],
        driveable=False,
    )
    assert calculate_risk_score(inspection, FIXED_NOW) == 100

    generous = ScoringWeights(risk_base=0, no_garage_points=-80, accident_type_points={})
    other = document.scaffold_inspection(FIXED_NOW, "MX", AccidentType.OTHER)
    assert calculate_risk_score(other, FIXED_NOW, generous) == 0


def test_each_missing_photo_costs_five_points(inspection):
    seven = quality_score_breakdown(_with_photos(inspection, 7))
    eight = quality_score_breakdown(_with_photos(inspection, 8))

    assert seven["captured_photos"] == 7
    assert eight["score"] - seven["score"] == 5


def test_interior_photos_count_toward_the_minimum(inspection):
    all_twelve = _with_photos(inspection, 12)
    assert quality_score_breakdown(all_twelve)["captured_photos"] == 12


def test_complete_inspection_with_signature_is_capped(inspection):
    inspection = _with_photos(inspection, 8)
    inspection = document.with_identity(
        inspection, PartyRole.INSURED, FIXED_NOW, {"front_image": "data:f", "validated": True}
    )
    inspection = document.with_vehicle(
        inspection, PartyRole.INSURED, FIXED_NOW, {"plate": "ABC1234", "vin": "1HGCM82633A004352"}
    )
    inspection = document.with_scene(inspection, FIXED_NOW, {"location": {"address": "Av. Reforma 1"}})
    assert calculate_quality_score(inspection) == 100

    signed = document.with_consent(inspection, FIXED_NOW, {"accepted": True, "signature_url": "data:sig"})
    assert calculate_quality_score(signed) == 100


def test_signature_bonus(inspection):
    signed = document.with_consent(inspection, FIXED_NOW, {"signature_url": "data:sig"})
    assert calculate_quality_score(signed) == calculate_quality_score(inspection) + 5


def test_third_party_penalties(inspection):
    with_tp = document.with_third_party(inspection, True, FIXED_NOW)
    assert calculate_quality_score(with_tp) == calculate_quality_score(inspection) - 15

    with_tp = document.with_identity(
        with_tp, PartyRole.THIRD_PARTY, FIXED_NOW, {"extracted_data": ExtractedIdData(full_name="Luis Diaz")}
    )
    with_tp = document.with_vehicle(with_tp, PartyRole.THIRD_PARTY, FIXED_NOW, {"plate": "XYZ-9876"})
    assert calculate_quality_score(with_tp) == calculate_quality_score(inspection)


def test_quality_floor_is_zero(inspection):
    harsh = ScoringWeights(missing_photo_penalty=20)
    assert calculate_quality_score(inspection, harsh) == 0


def test_tags(inspection):
    assert generate_tags(inspection, FIXED_NOW) == [STATUS_TAG, "collision"]

    inspection = document.with_vehicle(
        inspection, PartyRole.INSURED, FIXED_NOW, {"mileage": 90_000, "year": FIXED_NOW.year - 9}
    )
    inspection = document.with_third_party(inspection, True, FIXED_NOW)
    inspection = document.with_inspection_fields(inspection, FIXED_NOW, {"accident_type": AccidentType.VANDALISM})
    inspection = document.with_scene(inspection, FIXED_NOW, {"police_present": True, "has_witnesses": True})
    inspection = _with_damage(inspection, _finding(DamageSeverity.SEVERE), _finding(), driveable=False)

    assert generate_tags(inspection, FIXED_NOW) == [
        STATUS_TAG,
        "high-mileage",
        "old-vehicle",
        "third-party",
        "vandalism",
        "police-report",
        "witnesses",
        "2-damages",
        "severe-damage",
        "not-driveable",
    ]


def test_age_uses_the_supplied_clock(inspection):
    inspection = document.with_vehicle(inspection, PartyRole.INSURED, FIXED_NOW, {"year": FIXED_NOW.year - 5})
    assert "old-vehicle" not in generate_tags(inspection, FIXED_NOW)
    assert "old-vehicle" in generate_tags(inspection, FIXED_NOW + timedelta(days=366 * 4))
