"""
Submission assembly.

Flattens the inspection document into the records the backend stores: one
inspection row, one row per photo, one per damage finding and an optional
consent row. Assembly only reads the document and depends on nothing but the
document and `now`.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from inspection.models import (
    DamageSeverity,
    Inspection,
    PartyRole,
    PhotoAngle,
    Vehicle,
    VehiclePhoto,
)
from inspection.scoring import (
    DEFAULT_WEIGHTS,
    STATUS_TAG,
    ScoringWeights,
    calculate_quality_score,
    calculate_risk_score,
    generate_tags,
)

POLICY_TYPE = "Standard"
POLICY_STATUS = "En-Proceso"
DEFAULT_FINDING_CONFIDENCE = 0.85
SCENE_PHOTO_LABEL = "Escena del accidente"

SEVERITY_LABELS: dict[DamageSeverity, str] = {
    DamageSeverity.MINOR: "Leve",
    DamageSeverity.MODERATE: "Moderado",
    DamageSeverity.SEVERE: "Severo",
    DamageSeverity.TOTAL_LOSS: "Pérdida total",
}

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_reference_id(now: datetime) -> str:
    """INS-<epoch milliseconds in base 36>."""
    return f"INS-{_base36(int(now.timestamp() * 1000))}"


class InspectionRecord(BaseModel):
    id: str
    status: str = STATUS_TAG

    client_name: str | None = None
    client_id: str | None = None
    client_phone: str | None = None
    client_email: str | None = None
    client_address: str | None = None
    client_driver_license: str | None = None
    client_id_front_image: str | None = None
    client_id_back_image: str | None = None

    vehicle_vin: str | None = None
    vehicle_plate: str | None = None
    vehicle_brand: str | None = None
    vehicle_model: str | None = None
    vehicle_year: int | None = None
    vehicle_color: str | None = None
    vehicle_mileage: int | None = None
    vehicle_usage: str = "private"
    vehicle_has_garage: bool = False

    has_third_party: bool = False
    third_party_name: str | None = None
    third_party_id: str | None = None
    third_party_phone: str | None = None
    third_party_email: str | None = None
    third_party_id_front_image: str | None = None
    third_party_id_back_image: str | None = None
    third_party_vehicle_plate: str | None = None
    third_party_vehicle_brand: str | None = None
    third_party_vehicle_model: str | None = None
    third_party_vehicle_year: int | None = None
    third_party_vehicle_color: str | None = None

    policy_number: str | None = None
    claim_number: str | None = None
    policy_type: str = POLICY_TYPE
    policy_status: str = POLICY_STATUS

    risk_score: int
    quality_score: int

    accident_type: str | None = None
    accident_date: str
    accident_location: str | None = None
    accident_lat: float | None = None
    accident_lng: float | None = None
    accident_description: str | None = None
    accident_sketch_url: str | None = None
    has_witnesses: bool = False
    witness_info: str | None = None
    police_present: bool = False
    police_report_number: str | None = None
    client_comments: str | None = None

    sla_deadline: str
    tags: list[str] = Field(default_factory=list)
    country: str


class PhotoRecord(BaseModel):
    inspection_id: str
    photo_type: str  # vehicle | scene | damage
    category: str
    angle: str | None = None
    label: str | None = None
    description: str | None = None
    image_url: str | None = None
    thumbnail_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timestamp: str | None = None
    vehicle_type: str | None = None


class DamageRecord(BaseModel):
    inspection_id: str
    part: str
    type: str
    severity: str
    description: str | None = None
    confidence: int
    photo_url: str
    zone: str | None = None
    side: str | None = None
    estimated_repair: str | None = None
    affects_structure: bool = False
    affects_mechanical: bool = False
    affects_safety: bool = False


class ConsentRecord(BaseModel):
    inspection_id: str
    person_type: str = PartyRole.INSURED.value
    accepted: bool = True
    signature_url: str | None = None
    ip_address: str | None = None
    timestamp: str


class SubmissionPayload(BaseModel):
    reference_id: str
    inspection: InspectionRecord
    photos: list[PhotoRecord] = Field(default_factory=list)
    damages: list[DamageRecord] = Field(default_factory=list)
    consent: ConsentRecord | None = None

    def rows(self) -> dict[str, Any]:
        """JSON-ready rows per table."""
        return {
            "inspection": self.inspection.model_dump(mode="json"),
            "photos": [p.model_dump(mode="json") for p in self.photos],
            "damages": [d.model_dump(mode="json") for d in self.damages],
            "consent": self.consent.model_dump(mode="json") if self.consent else None,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _or_none(value: Any) -> Any:
    # Empty strings and zeros are stored as NULL
    return value or None


def _vehicle_photo_records(reference_id: str, vehicle: Vehicle | None) -> list[PhotoRecord]:
    if vehicle is None:
        return []
    return [
        PhotoRecord(
            inspection_id=reference_id,
            photo_type="vehicle",
            category="damage" if photo.angle == PhotoAngle.DAMAGE else "exterior",
            angle=photo.angle.value,
            label=_or_none(photo.label),
            description=_or_none(photo.description),
            image_url=photo.image_url,
            thumbnail_url=photo.thumbnail_url,
            latitude=photo.metadata.latitude if photo.metadata else None,
            longitude=photo.metadata.longitude if photo.metadata else None,
            timestamp=_iso(photo.timestamp),
            vehicle_type=vehicle.role.value,
        )
        for photo in vehicle.photos
        if photo.image_url
    ]


def _scene_photo_record(reference_id: str, photo: VehiclePhoto) -> PhotoRecord:
    return PhotoRecord(
        inspection_id=reference_id,
        photo_type="scene",
        category="scene",
        label=photo.label or SCENE_PHOTO_LABEL,
        description=_or_none(photo.description),
        image_url=photo.image_url,
        thumbnail_url=photo.thumbnail_url,
        latitude=photo.metadata.latitude if photo.metadata else None,
        longitude=photo.metadata.longitude if photo.metadata else None,
        timestamp=_iso(photo.timestamp),
    )


def build_photo_records(inspection: Inspection, reference_id: str) -> list[PhotoRecord]:
    records = _vehicle_photo_records(reference_id, inspection.insured_vehicle)
    records += _vehicle_photo_records(reference_id, inspection.third_party_vehicle)

    if inspection.accident_scene:
        records += [
            _scene_photo_record(reference_id, photo)
            for photo in inspection.accident_scene.photos
            if photo.image_url
        ]

    for index, photo in enumerate(inspection.damage_photos, start=1):
        findings = len(photo.analysis.damages) if photo.analysis else 0
        records.append(PhotoRecord(
            inspection_id=reference_id,
            photo_type="damage",
            category="damage",
            angle=PhotoAngle.DAMAGE.value,
            label=f"Foto de daño {index}",
            description=f"{findings} daños detectados" if findings else "Foto de daño",
            image_url=photo.image_url,
            timestamp=_iso(photo.timestamp),
            vehicle_type=PartyRole.INSURED.value,
        ))
    return records


def build_damage_records(inspection: Inspection, reference_id: str) -> list[DamageRecord]:
    records = []
    for photo in inspection.damage_photos:
        if photo.analysis is None:
            continue
        for finding in photo.analysis.damages:
            records.append(DamageRecord(
                inspection_id=reference_id,
                part=finding.part or "Parte no especificada",
                type=finding.type or "Daño detectado",
                severity=SEVERITY_LABELS.get(finding.severity, "Moderado"),
                description=_or_none(finding.description),
                confidence=round((finding.confidence or DEFAULT_FINDING_CONFIDENCE) * 100),
                photo_url=photo.image_url,
                zone=finding.zone,
                side=finding.side,
                estimated_repair=finding.estimated_repair,
                affects_structure=finding.affects_structure,
                affects_mechanical=finding.affects_mechanical,
                affects_safety=finding.affects_safety,
            ))
    return records


def build_inspection_record(
    inspection: Inspection,
    reference_id: str,
    now: datetime,
    sla_hours: int = 24,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> InspectionRecord:
    person = inspection.insured_person
    identity = person.identity if person else None
    extracted = identity.extracted_data if identity else None
    vehicle = inspection.insured_vehicle

    tp_person = inspection.third_party_person
    tp_identity = tp_person.identity if tp_person else None
    tp_extracted = tp_identity.extracted_data if tp_identity else None
    tp_vehicle = inspection.third_party_vehicle

    scene = inspection.accident_scene

    return InspectionRecord(
        id=reference_id,
        client_name=_or_none(extracted.full_name) if extracted else None,
        client_id=_or_none(extracted.id_number) if extracted else None,
        client_phone=_or_none(person.phone) if person else None,
        client_email=_or_none(person.email) if person else None,
        client_address=_or_none(person.address) if person else None,
        client_driver_license=_or_none(person.driver_license) if person else None,
        client_id_front_image=identity.front_image if identity else None,
        client_id_back_image=identity.back_image if identity else None,
        vehicle_vin=_or_none(vehicle.vin) if vehicle else None,
        vehicle_plate=_or_none(vehicle.plate) if vehicle else None,
        vehicle_brand=_or_none(vehicle.brand) if vehicle else None,
        vehicle_model=_or_none(vehicle.model) if vehicle else None,
        vehicle_year=_or_none(vehicle.year) if vehicle else None,
        vehicle_color=_or_none(vehicle.color) if vehicle else None,
        vehicle_mileage=_or_none(vehicle.mileage) if vehicle else None,
        vehicle_usage=vehicle.usage.value if vehicle else "private",
        vehicle_has_garage=vehicle.has_garage if vehicle else False,
        has_third_party=inspection.has_third_party,
        third_party_name=_or_none(tp_extracted.full_name) if tp_extracted else None,
        third_party_id=_or_none(tp_extracted.id_number) if tp_extracted else None,
        third_party_phone=_or_none(tp_person.phone) if tp_person else None,
        third_party_email=_or_none(tp_person.email) if tp_person else None,
        third_party_id_front_image=tp_identity.front_image if tp_identity else None,
        third_party_id_back_image=tp_identity.back_image if tp_identity else None,
        third_party_vehicle_plate=_or_none(tp_vehicle.plate) if tp_vehicle else None,
        third_party_vehicle_brand=_or_none(tp_vehicle.brand) if tp_vehicle else None,
        third_party_vehicle_model=_or_none(tp_vehicle.model) if tp_vehicle else None,
        third_party_vehicle_year=_or_none(tp_vehicle.year) if tp_vehicle else None,
        third_party_vehicle_color=_or_none(tp_vehicle.color) if tp_vehicle else None,
        policy_number=_or_none(inspection.policy_number),
        claim_number=_or_none(inspection.claim_number),
        risk_score=calculate_risk_score(inspection, now, weights),
        quality_score=calculate_quality_score(inspection, weights),
        accident_type=inspection.accident_type.value,
        accident_date=inspection.created_at.isoformat(),
        accident_location=_or_none(scene.location.address) if scene else None,
        accident_lat=scene.location.latitude if scene else None,
        accident_lng=scene.location.longitude if scene else None,
        accident_description=_or_none(scene.description) if scene else None,
        accident_sketch_url=scene.sketch_url if scene else None,
        has_witnesses=scene.has_witnesses if scene else False,
        witness_info=_or_none(scene.witness_info) if scene else None,
        police_present=scene.police_present if scene else False,
        police_report_number=_or_none(scene.police_report_number) if scene else None,
        client_comments=_or_none(scene.description) if scene else None,
        sla_deadline=(now + timedelta(hours=sla_hours)).isoformat(),
        tags=generate_tags(inspection, now, weights),
        country=inspection.country,
    )


def build_consent_record(inspection: Inspection, reference_id: str, now: datetime) -> ConsentRecord | None:
    consent = inspection.consent
    if not consent.accepted:
        return None
    return ConsentRecord(
        inspection_id=reference_id,
        signature_url=consent.signature_url,
        ip_address=consent.ip_address,
        timestamp=_iso(consent.timestamp) or now.isoformat(),
    )


def assemble(
    inspection: Inspection,
    now: datetime,
    sla_hours: int = 24,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> SubmissionPayload:
    """Build the full submission payload for an inspection."""
    reference_id = generate_reference_id(now)
    return SubmissionPayload(
        reference_id=reference_id,
        inspection=build_inspection_record(inspection, reference_id, now, sla_hours, weights),
        photos=build_photo_records(inspection, reference_id),
        damages=build_damage_records(inspection, reference_id),
        consent=build_consent_record(inspection, reference_id, now),
    )
