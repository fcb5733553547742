"""
Scoring functions computed at submission time.

- Risk score: base 50, additive signals from the vehicle, accident type,
  third party and damage analyses. Clamped to 0-100.
- Quality score: base 100, penalties for missing evidence, bonus for a
  captured signature. Clamped to 0-100.
- Tags: status tag plus conditional labels for triage.

All weights live in `ScoringWeights` so they can be tuned from settings
(SCORING_WEIGHTS) without code changes.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from inspection.document import captured_checklist_photos
from inspection.models import DamageSeverity, Inspection

STATUS_TAG = "Pendiente"


class ScoringWeights(BaseModel):
    # Risk
    risk_base: int = 50
    mileage_high_threshold: int = 100_000
    mileage_high_points: int = 20
    mileage_mid_threshold: int = 50_000
    mileage_mid_points: int = 10
    age_old_years: int = 10
    age_old_points: int = 15
    age_mid_years: int = 5
    age_mid_points: int = 5
    accident_type_points: dict[str, int] = Field(default_factory=lambda: {"collision": 10, "theft": 20})
    third_party_points: int = 10
    no_garage_points: int = 5
    not_driveable_points: int = 15
    # (more than N findings, points), checked in order
    damage_count_points: list[tuple[int, int]] = Field(default_factory=lambda: [(5, 15), (2, 10), (0, 5)])
    severe_damage_points: int = 10
    structural_damage_points: int = 10

    # Quality
    quality_base: int = 100
    min_vehicle_photos: int = 8
    missing_photo_penalty: int = 5
    identity_not_validated_penalty: int = 10
    missing_id_front_penalty: int = 5
    missing_plate_penalty: int = 5
    missing_vin_penalty: int = 5
    missing_address_penalty: int = 5
    third_party_name_penalty: int = 10
    third_party_plate_penalty: int = 5
    signature_bonus: int = 5

    # Tags
    high_mileage_tag_threshold: int = 80_000
    old_vehicle_tag_years: int = 8


DEFAULT_WEIGHTS = ScoringWeights()


def _clamp(score: int) -> int:
    return min(100, max(0, score))


def _vehicle_age(inspection: Inspection, now: datetime) -> int:
    year = inspection.insured_vehicle.year if inspection.insured_vehicle else now.year
    return now.year - year


def _mileage(inspection: Inspection) -> int:
    return inspection.insured_vehicle.mileage if inspection.insured_vehicle else 0


def damage_summary(inspection: Inspection) -> dict[str, Any]:
    """Counts and flags across every damage photo analysis."""
    total = 0
    severe = False
    structural = False
    not_driveable = 0
    for photo in inspection.damage_photos:
        analysis = photo.analysis
        if analysis is None:
            continue
        total += len(analysis.damages)
        for finding in analysis.damages:
            if finding.severity in (DamageSeverity.SEVERE, DamageSeverity.TOTAL_LOSS):
                severe = True
            if finding.affects_structure:
                structural = True
        if not analysis.vehicle_status.is_driveable:
            not_driveable += 1
    return {
        "total_findings": total,
        "has_severe": severe,
        "has_structural": structural,
        "not_driveable_reports": not_driveable,
    }


def risk_score_breakdown(
    inspection: Inspection,
    now: datetime,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> dict[str, Any]:
    adjustments: list[dict[str, Any]] = []

    def add(points: int, reason: str) -> None:
        adjustments.append({"points": points, "reason": reason})

    mileage = _mileage(inspection)
    if mileage > weights.mileage_high_threshold:
        add(weights.mileage_high_points, f"Mileage {mileage} over {weights.mileage_high_threshold}")
    elif mileage > weights.mileage_mid_threshold:
        add(weights.mileage_mid_points, f"Mileage {mileage} over {weights.mileage_mid_threshold}")

    age = _vehicle_age(inspection, now)
    if age > weights.age_old_years:
        add(weights.age_old_points, f"Vehicle is {age} years old")
    elif age > weights.age_mid_years:
        add(weights.age_mid_points, f"Vehicle is {age} years old")

    accident_points = weights.accident_type_points.get(inspection.accident_type.value, 0)
    if accident_points:
        add(accident_points, f"Accident type {inspection.accident_type.value}")

    if inspection.has_third_party:
        add(weights.third_party_points, "Third party involved")
    if not (inspection.insured_vehicle and inspection.insured_vehicle.has_garage):
        add(weights.no_garage_points, "Vehicle not kept in a garage")

    damages = damage_summary(inspection)
    for _ in range(damages["not_driveable_reports"]):
        add(weights.not_driveable_points, "Damage analysis reports the vehicle is not driveable")
    for threshold, points in weights.damage_count_points:
        if damages["total_findings"] > threshold:
            add(points, f"{damages['total_findings']} damage findings")
            break
    if damages["has_severe"]:
        add(weights.severe_damage_points, "Severe damage detected")
    if damages["has_structural"]:
        add(weights.structural_damage_points, "Structural damage detected")

    raw = weights.risk_base + sum(a["points"] for a in adjustments)
    return {
        "score": _clamp(raw),
        "max_score": 100,
        "base": weights.risk_base,
        "adjustments": adjustments,
        "reason": "; ".join(a["reason"] for a in adjustments) or "No risk signals",
    }


def calculate_risk_score(
    inspection: Inspection,
    now: datetime,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> int:
    return risk_score_breakdown(inspection, now, weights)["score"]


def quality_score_breakdown(inspection: Inspection, weights: ScoringWeights = DEFAULT_WEIGHTS) -> dict[str, Any]:
    adjustments: list[dict[str, Any]] = []

    def add(points: int, reason: str) -> None:
        adjustments.append({"points": points, "reason": reason})

    vehicle = inspection.insured_vehicle
    captured = captured_checklist_photos(vehicle)
    if captured < weights.min_vehicle_photos:
        missing = weights.min_vehicle_photos - captured
        add(-missing * weights.missing_photo_penalty, f"{missing} vehicle photo(s) short of {weights.min_vehicle_photos}")

    identity = inspection.insured_person.identity if inspection.insured_person else None
    if not (identity and identity.validated):
        add(-weights.identity_not_validated_penalty, "Identity not validated")
    if not (identity and identity.front_image):
        add(-weights.missing_id_front_penalty, "No ID front image")
    if not (vehicle and vehicle.plate):
        add(-weights.missing_plate_penalty, "No plate")
    if not (vehicle and vehicle.vin):
        add(-weights.missing_vin_penalty, "No VIN")
    scene = inspection.accident_scene
    if not (scene and scene.location.address):
        add(-weights.missing_address_penalty, "No scene address")

    if inspection.has_third_party:
        tp_identity = inspection.third_party_person.identity if inspection.third_party_person else None
        if not (tp_identity and tp_identity.extracted_data and tp_identity.extracted_data.full_name):
            add(-weights.third_party_name_penalty, "Third party name missing")
        if not (inspection.third_party_vehicle and inspection.third_party_vehicle.plate):
            add(-weights.third_party_plate_penalty, "Third party plate missing")

    if inspection.consent.signature_url:
        add(weights.signature_bonus, "Signature captured")

    raw = weights.quality_base + sum(a["points"] for a in adjustments)
    return {
        "score": _clamp(raw),
        "max_score": 100,
        "base": weights.quality_base,
        "captured_photos": captured,
        "adjustments": adjustments,
        "reason": "; ".join(a["reason"] for a in adjustments) or "Complete",
    }


def calculate_quality_score(inspection: Inspection, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    return quality_score_breakdown(inspection, weights)["score"]


def generate_tags(
    inspection: Inspection,
    now: datetime,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[str]:
    tags = [STATUS_TAG]

    if _mileage(inspection) > weights.high_mileage_tag_threshold:
        tags.append("high-mileage")
    if _vehicle_age(inspection, now) > weights.old_vehicle_tag_years:
        tags.append("old-vehicle")
    if inspection.has_third_party:
        tags.append("third-party")
    tags.append(inspection.accident_type.value)

    scene = inspection.accident_scene
    if scene and scene.police_present:
        tags.append("police-report")
    if scene and scene.has_witnesses:
        tags.append("witnesses")

    damages = damage_summary(inspection)
    if damages["total_findings"] > 0:
        tags.append(f"{damages['total_findings']}-damages")
    if damages["has_severe"]:
        tags.append("severe-damage")
    if damages["not_driveable_reports"]:
        tags.append("not-driveable")
    return tags
