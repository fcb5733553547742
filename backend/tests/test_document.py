"""Tests for copy-on-write document updates."""
from datetime import timedelta

import pytest

from inspection import document
from inspection.models import (
    PHOTO_CHECKLIST,
    AccidentType,
    DamagePhoto,
    InspectionStatus,
    PartyRole,
    PhotoAngle,
    VehiclePhoto,
)


@pytest.fixture
def started(fixed_now):
    return document.scaffold_inspection(fixed_now, "MX", AccidentType.COLLISION)


def test_scaffold_has_fixed_twelve_slot_checklist(started):
    photos = started.insured_vehicle.photos
    assert len(photos) == 12
    assert [p.angle for p in photos] == [angle for angle, _, _ in PHOTO_CHECKLIST]
    assert all(p.image_url is None for p in photos)
    assert len({p.id for p in photos}) == 12
    assert started.status == InspectionStatus.IN_PROGRESS
    assert started.insured_person.role == PartyRole.INSURED


def test_partial_updates_keep_untouched_fields(started, fixed_now):
    later = fixed_now + timedelta(minutes=5)
    updated = document.with_vehicle(started, PartyRole.INSURED, later, {"plate": "ABC1234"})
    updated = document.with_vehicle(updated, PartyRole.INSURED, later, {"brand": "Toyota"})
    updated = document.with_vehicle(updated, PartyRole.INSURED, later, {"mileage": 42000})

    vehicle = updated.insured_vehicle
    assert vehicle.plate == "ABC1234"
    assert vehicle.brand == "Toyota"
    assert vehicle.mileage == 42000
    assert vehicle.photos == started.insured_vehicle.photos
    assert updated.updated_at == later
    assert updated.created_at == started.created_at


def test_updates_never_mutate_the_input(started, fixed_now):
    document.with_vehicle(started, PartyRole.INSURED, fixed_now, {"plate": "XYZ999"})
    assert started.insured_vehicle.plate == ""


def test_identity_merge_keeps_images(started, fixed_now):
    updated = document.with_identity(started, PartyRole.INSURED, fixed_now, {"front_image": "data:front"})
    updated = document.with_identity(updated, PartyRole.INSURED, fixed_now, {"back_image": "data:back"})
    identity = updated.insured_person.identity
    assert identity.front_image == "data:front"
    assert identity.back_image == "data:back"


def test_unknown_fields_are_rejected(started, fixed_now):
    with pytest.raises(ValueError, match="Unknown Vehicle field"):
        document.with_vehicle(started, PartyRole.INSURED, fixed_now, {"wheels": 4})


def test_third_party_toggle_off_then_on_is_fresh(started, fixed_now):
    on = document.with_third_party(started, True, fixed_now)
    dirty = document.with_vehicle(on, PartyRole.THIRD_PARTY, fixed_now, {"plate": "OLD-123"})
    dirty = document.with_person(dirty, PartyRole.THIRD_PARTY, fixed_now, {"phone": "555"})

    off = document.with_third_party(dirty, False, fixed_now)
    assert off.third_party_person is None
    assert off.third_party_vehicle is None

    again = document.with_third_party(off, True, fixed_now)
    assert again.third_party_vehicle.plate == ""
    assert again.third_party_person.phone is None
    assert again.third_party_vehicle.id != dirty.third_party_vehicle.id
    assert len(again.third_party_vehicle.photos) == 12


def test_third_party_toggle_on_always_starts_empty(started, fixed_now):
    on = document.with_third_party(started, True, fixed_now)
    on = document.with_vehicle(on, PartyRole.THIRD_PARTY, fixed_now, {"plate": "OLD-1"})

    again = document.with_third_party(on, True, fixed_now)
    assert again.has_third_party is True
    assert again.third_party_vehicle.plate == ""
    assert again.third_party_vehicle.id != on.third_party_vehicle.id


def test_identity_edit_without_a_person_changes_nothing(started, fixed_now):
    assert started.has_third_party is False
    updated = document.with_identity(started, PartyRole.THIRD_PARTY, fixed_now, {"front_image": "data:tp"})

    assert updated is started
    assert updated.third_party_person is None


def test_damage_photo_add_then_remove_restores_list(started, fixed_now):
    first = DamagePhoto(id="d1", image_url="data:one", timestamp=fixed_now)
    base = document.with_damage_photo_added(started, first, fixed_now)

    extra = DamagePhoto(id="d2", image_url="data:two", timestamp=fixed_now)
    added = document.with_damage_photo_added(base, extra, fixed_now)
    assert [p.id for p in added.damage_photos] == ["d1", "d2"]

    removed = document.with_damage_photo_removed(added, "d2", fixed_now)
    assert removed.damage_photos == base.damage_photos


def test_vehicle_photo_update_targets_one_slot(started, fixed_now):
    rear = next(p for p in started.insured_vehicle.photos if p.angle == PhotoAngle.REAR)
    updated = document.with_vehicle_photo_updated(
        started, PartyRole.INSURED, rear.id, fixed_now, {"image_url": "data:rear"},
    )
    assert document.find_vehicle_photo(updated, PartyRole.INSURED, rear.id).image_url == "data:rear"
    assert document.captured_checklist_photos(updated.insured_vehicle) == 1


def test_photo_updates_without_vehicle_are_noops(fixed_now):
    empty = document.new_inspection(fixed_now)
    photo = VehiclePhoto(id="p", angle=PhotoAngle.FRONT, label="Front")
    assert document.with_vehicle_photo_added(empty, PartyRole.INSURED, photo, fixed_now) is empty
    assert document.with_vehicle_photo_updated(empty, PartyRole.INSURED, "p", fixed_now, {}) is empty
    assert document.with_scene_photo_added(empty, photo, fixed_now) is empty


def test_scene_is_created_on_first_update(fixed_now):
    empty = document.new_inspection(fixed_now, country="CR")
    updated = document.with_scene(empty, fixed_now, {"description": "Choque"})
    assert updated.accident_scene.description == "Choque"
    assert updated.accident_scene.photos == []
