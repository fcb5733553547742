"""Tests for flattening an inspection into submission records."""
import re
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
    PhotoMetadata,
    VehiclePhoto,
)
from inspection.submission import (
    POLICY_STATUS,
    POLICY_TYPE,
    SCENE_PHOTO_LABEL,
    assemble,
    generate_reference_id,
)


@pytest.fixture
def inspection():
    """Started inspection with two vehicle photos, one scene photo and one analysed damage photo."""
    inspection = document.scaffold_inspection(FIXED_NOW, "MX", AccidentType.COLLISION)
    front, left = inspection.insured_vehicle.photos[0], inspection.insured_vehicle.photos[2]
    inspection = document.with_vehicle_photo_updated(
        inspection, PartyRole.INSURED, front.id, FIXED_NOW,
        {"image_url": "data:front", "metadata": PhotoMetadata(latitude=19.43, longitude=-99.13)},
    )
    inspection = document.with_vehicle_photo_updated(
        inspection, PartyRole.INSURED, left.id, FIXED_NOW, {"image_url": "data:left"}
    )
    inspection = document.with_identity(inspection, PartyRole.INSURED, FIXED_NOW, {
        "front_image": "data:id-front",
        "extracted_data": ExtractedIdData(full_name="Maria Garcia", id_number="GALM850315MDFRPR09"),
    })
    inspection = document.with_vehicle(
        inspection, PartyRole.INSURED, FIXED_NOW, {"plate": "ABC-1234", "brand": "Toyota", "mileage": 0}
    )
    inspection = document.with_scene(inspection, FIXED_NOW, {"description": "Choque lateral"})
    inspection = document.with_scene_photo_added(
        inspection,
        VehiclePhoto(id="scene-1", angle="scene", label="", image_url="data:scene", timestamp=FIXED_NOW),
        FIXED_NOW,
    )
    analysis = DamageAnalysis(
        has_damage=True,
        damages=[
            DamageFinding(id="d1", severity=DamageSeverity.TOTAL_LOSS, confidence=0.923, affects_structure=True),
            DamageFinding(id="d2", type="scratch", part="door", severity=DamageSeverity.MODERATE),
        ],
    )
    return document.with_damage_photo_added(
        inspection, DamagePhoto(id="dp1", image_url="data:damage", timestamp=FIXED_NOW, analysis=analysis), FIXED_NOW
    )


def test_reference_id_is_base36_epoch_millis():
    reference_id = generate_reference_id(FIXED_NOW)
    assert re.fullmatch(r"INS-[0-9A-Z]+", reference_id)
    assert int(reference_id[4:], 36) == int(FIXED_NOW.timestamp() * 1000)


def test_inspection_record(inspection):
    payload = assemble(inspection, FIXED_NOW, sla_hours=48)
    record = payload.inspection

    assert record.id == payload.reference_id
    assert record.status == "Pendiente"
    assert record.client_name == "Maria Garcia"
    assert record.client_id_front_image == "data:id-front"
    assert record.vehicle_plate == "ABC-1234"
    assert record.policy_type == POLICY_TYPE
    assert record.policy_status == POLICY_STATUS
    assert record.country == "MX"
    assert record.sla_deadline == (FIXED_NOW + timedelta(hours=48)).isoformat()
    assert record.accident_description == record.client_comments == "Choque lateral"
    assert 0 <= record.risk_score <= 100
    assert 0 <= record.quality_score <= 100


def test_empty_values_are_stored_as_null(inspection):
    record = assemble(inspection, FIXED_NOW).inspection
    assert record.vehicle_vin is None
    assert record.vehicle_mileage is None
    assert record.client_phone is None
    assert record.accident_location is None
    assert record.third_party_name is None


def test_photo_records(inspection):
    photos = assemble(inspection, FIXED_NOW).photos

    assert [p.photo_type for p in photos] == ["vehicle", "vehicle", "scene", "damage"]
    front = photos[0]
    assert front.angle == "front"
    assert front.latitude == 19.43
    assert front.vehicle_type == "insured"
    assert photos[2].label == SCENE_PHOTO_LABEL
    assert photos[3].label == "Foto de daño 1"
    assert photos[3].description == "2 daños detectados"


def test_damage_records(inspection):
    damages = assemble(inspection, FIXED_NOW).damages

    assert len(damages) == 2
    first, second = damages
    assert first.severity == "Pérdida total"
    assert first.confidence == 92
    assert first.affects_structure is True
    assert first.photo_url == "data:damage"
    assert second.severity == "Moderado"
    assert second.confidence == 80
    assert second.part == "door"


def test_consent_only_when_accepted(inspection):
    assert assemble(inspection, FIXED_NOW).consent is None

    signed_at = FIXED_NOW - timedelta(minutes=3)
    accepted = document.with_consent(inspection, FIXED_NOW, {
        "accepted": True, "signature_url": "data:sig", "timestamp": signed_at, "ip_address": "10.0.0.8",
    })
    consent = assemble(accepted, FIXED_NOW).consent
    assert consent.signature_url == "data:sig"
    assert consent.ip_address == "10.0.0.8"
    assert consent.timestamp == signed_at.isoformat()
    assert consent.person_type == "insured"


def test_third_party_fields(inspection):
    inspection = document.with_third_party(inspection, True, FIXED_NOW)
    inspection = document.with_vehicle(
        inspection, PartyRole.THIRD_PARTY, FIXED_NOW, {"plate": "XYZ-987", "brand": "Nissan"}
    )
    record = assemble(inspection, FIXED_NOW).inspection

    assert record.has_third_party is True
    assert record.third_party_vehicle_plate == "XYZ-987"
    assert record.third_party_vehicle_brand == "Nissan"
    assert "third-party" in record.tags


def test_rows_are_json_ready(inspection):
    rows = assemble(inspection, FIXED_NOW).rows()

    assert set(rows) == {"inspection", "photos", "damages", "consent"}
    assert rows["inspection"]["accident_type"] == "collision"
    assert isinstance(rows["photos"][0]["timestamp"], (str, type(None)))
    assert rows["consent"] is None


def test_assembly_is_deterministic_for_a_fixed_clock(inspection):
    assert assemble(inspection, FIXED_NOW) == assemble(inspection, FIXED_NOW)


def test_store_driven_collision_without_identity_capture(store):
    store.init_inspection("MX", AccidentType.COLLISION)
    for photo in store.inspection.insured_vehicle.photos:
        store.update_vehicle_photo(PartyRole.INSURED, photo.id, image_url=f"data:{photo.angle.value}")
    store.update_insured_vehicle(plate="ABC1234", brand="Toyota", model="Corolla", color="white")
    store.update_accident_scene(description="Choque en cruce")
    store.update_consent(accepted=True, signature_url="data:sig", timestamp=FIXED_NOW)

    payload = assemble(store.inspection, FIXED_NOW)
    record = payload.inspection

    assert payload.reference_id.startswith("INS-")
    assert record.has_third_party is False
    assert record.vehicle_plate == "ABC1234"
    # Identity (-10), ID front (-5), VIN (-5), scene address (-5), signature (+5)
    assert record.quality_score == 80
    assert len(payload.photos) == 12
