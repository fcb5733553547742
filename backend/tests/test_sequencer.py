"""Tests for step gates and navigation."""
import pytest

from inspection import sequencer
from inspection.models import PartyRole
from inspection.sequencer import Step


@pytest.fixture
def started(store):
    store.init_inspection("MX")
    return store


def _capture_photos(store, count):
    for photo in store.inspection.insured_vehicle.photos[:count]:
        store.update_vehicle_photo(PartyRole.INSURED, photo.id, image_url=f"data:{photo.angle.value}")


def test_start_gate_requires_country_and_vehicle(store):
    assert not sequencer.gate_passes(Step.START, store.inspection)
    store.init_inspection("MX")
    assert sequencer.gate_passes(Step.START, store.inspection)


def test_identity_gate_requires_both_sides(started):
    assert len(sequencer.missing_requirements(Step.IDENTITY, started.inspection)) == 2
    started.update_insured_identity(front_image="data:front")
    assert sequencer.missing_requirements(Step.IDENTITY, started.inspection) == [
        "Capture the back of the ID document",
    ]
    started.update_insured_identity(back_image="data:back")
    assert sequencer.gate_passes(Step.IDENTITY, started.inspection)


def test_vehicle_photos_gate_needs_eight(started):
    _capture_photos(started, 7)
    assert not sequencer.gate_passes(Step.VEHICLE_PHOTOS, started.inspection)
    _capture_photos(started, 8)
    assert sequencer.gate_passes(Step.VEHICLE_PHOTOS, started.inspection)


def test_vehicle_data_gate_requires_non_blank_fields(started):
    started.update_insured_vehicle(plate="ABC1234", brand="Toyota", model="Corolla", color="  ")
    assert sequencer.missing_requirements(Step.VEHICLE_DATA, started.inspection) == ["Color is required"]
    started.update_insured_vehicle(color="white")
    assert sequencer.gate_passes(Step.VEHICLE_DATA, started.inspection)


def test_damage_step_is_optional(started):
    assert sequencer.gate_passes(Step.DAMAGE_PHOTOS, started.inspection)
    assert sequencer.step_definition(Step.DAMAGE_PHOTOS).optional


def test_third_party_gate_only_applies_when_declared(started):
    assert sequencer.gate_passes(Step.THIRD_PARTY, started.inspection)
    started.set_has_third_party(True)
    assert sequencer.gate_passes(Step.THIRD_PARTY, started.inspection)
    started.set_has_third_party(False)
    assert started.inspection.third_party_vehicle is None
    assert sequencer.gate_passes(Step.THIRD_PARTY, started.inspection)


def test_scene_and_summary_gates(started):
    assert not sequencer.gate_passes(Step.SCENE, started.inspection)
    started.update_accident_scene(description="Choque en cruce")
    assert sequencer.gate_passes(Step.SCENE, started.inspection)

    started.update_consent(accepted=True)
    assert sequencer.missing_requirements(Step.SUMMARY, started.inspection) == ["Sign the declaration"]
    started.update_consent(signature_url="data:image/png;base64,AAAA")
    assert sequencer.gate_passes(Step.SUMMARY, started.inspection)


def test_advance_refuses_while_gate_fails_and_back_is_free(started):
    assert started.current_step == Step.IDENTITY
    assert sequencer.advance(started) is False
    assert started.current_step == Step.IDENTITY

    started.update_insured_identity(front_image="data:f", back_image="data:b")
    assert sequencer.advance(started) is True
    assert started.current_step == Step.VEHICLE_PHOTOS

    assert sequencer.go_back(started) == Step.IDENTITY
    assert sequencer.go_back(started) == Step.START


def test_advance_stops_at_summary(started):
    started.set_step(Step.SUMMARY)
    started.update_consent(accepted=True, signature_url="data:sig")
    assert sequencer.advance(started) is False
    assert started.current_step == Step.SUMMARY


def test_step_definition_rejects_out_of_range():
    with pytest.raises(ValueError):
        sequencer.step_definition(8)


def test_progress():
    info = sequencer.progress(Step.SCENE)
    assert info["title"] == "Scene"
    assert info["total_steps"] == 8
    assert info["percent"] == 86
