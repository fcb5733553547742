"""
Copy-on-write operations over the inspection document.

Every function takes a snapshot and returns a new one. Updates use shallow
merge: fields present in `changes` overwrite, absent fields are kept. A
missing sub-entity is created from its empty template before the merge.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel

from inspection.models import (
    PHOTO_CHECKLIST,
    AccidentScene,
    AccidentType,
    Consent,
    DamagePhoto,
    IdentityDocument,
    Inspection,
    InspectionStatus,
    PartyRole,
    Person,
    Vehicle,
    VehiclePhoto,
)

M = TypeVar("M", bound=BaseModel)


def new_id() -> str:
    return str(uuid.uuid4())


def merge_fields(entity: M, changes: Mapping[str, Any]) -> M:
    """Return a copy of `entity` with `changes` applied and re-validated."""
    fields = type(entity).model_fields
    unknown = [name for name in changes if name not in fields]
    if unknown:
        raise ValueError(f"Unknown {type(entity).__name__} field(s): {', '.join(sorted(unknown))}")

    # Keep nested models as instances so untouched children are shared, not rebuilt
    data = {name: getattr(entity, name) for name in fields}
    data.update(changes)
    return type(entity).model_validate(data)


# ---- empty templates ----

def default_vehicle_photos() -> list[VehiclePhoto]:
    return [
        VehiclePhoto(id=new_id(), angle=angle, label=label, description=description)
        for angle, label, description in PHOTO_CHECKLIST
    ]


def new_person(role: PartyRole) -> Person:
    return Person(id=new_id(), role=role, identity=IdentityDocument())


def new_vehicle(role: PartyRole, now: datetime) -> Vehicle:
    return Vehicle(id=new_id(), role=role, year=now.year, photos=default_vehicle_photos())


def new_scene() -> AccidentScene:
    return AccidentScene()


def new_inspection(
    now: datetime,
    country: str = "",
    accident_type: AccidentType = AccidentType.COLLISION,
) -> Inspection:
    return Inspection(
        id=new_id(),
        country=country,
        accident_type=accident_type,
        status=InspectionStatus.DRAFT,
        created_at=now,
        updated_at=now,
    )


def scaffold_inspection(now: datetime, country: str, accident_type: AccidentType) -> Inspection:
    """A started inspection: empty insured person and vehicle with the photo checklist."""
    inspection = new_inspection(now, country=country, accident_type=accident_type)
    return merge_fields(inspection, {
        "status": InspectionStatus.IN_PROGRESS,
        "insured_person": new_person(PartyRole.INSURED),
        "insured_vehicle": new_vehicle(PartyRole.INSURED, now),
    })


# ---- helpers ----

def _person_field(role: PartyRole) -> str:
    return "insured_person" if role == PartyRole.INSURED else "third_party_person"


def _vehicle_field(role: PartyRole) -> str:
    return "insured_vehicle" if role == PartyRole.INSURED else "third_party_vehicle"


def _touch(inspection: Inspection, now: datetime, **changes: Any) -> Inspection:
    changes["updated_at"] = now
    return merge_fields(inspection, changes)


def _merge_by_id(items: list, item_id: str, changes: Mapping[str, Any]) -> list:
    return [merge_fields(item, changes) if item.id == item_id else item for item in items]


# ---- updates ----

def with_inspection_fields(inspection: Inspection, now: datetime, changes: Mapping[str, Any]) -> Inspection:
    return _touch(inspection, now, **dict(changes))


def with_person(
    inspection: Inspection,
    role: PartyRole,
    now: datetime,
    changes: Mapping[str, Any],
) -> Inspection:
    person = inspection.person(role) or new_person(role)
    return _touch(inspection, now, **{_person_field(role): merge_fields(person, changes)})


def with_identity(
    inspection: Inspection,
    role: PartyRole,
    now: datetime,
    changes: Mapping[str, Any],
) -> Inspection:
    person = inspection.person(role)
    if person is None:
        return inspection
    identity = merge_fields(person.identity, changes)
    return _touch(inspection, now, **{_person_field(role): merge_fields(person, {"identity": identity})})


def with_vehicle(
    inspection: Inspection,
    role: PartyRole,
    now: datetime,
    changes: Mapping[str, Any],
) -> Inspection:
    vehicle = inspection.vehicle(role) or new_vehicle(role, now)
    return _touch(inspection, now, **{_vehicle_field(role): merge_fields(vehicle, changes)})


def with_vehicle_photo_added(
    inspection: Inspection,
    role: PartyRole,
    photo: VehiclePhoto,
    now: datetime,
) -> Inspection:
    vehicle = inspection.vehicle(role)
    if vehicle is None:
        return inspection
    photos = [*vehicle.photos, photo]
    return _touch(inspection, now, **{_vehicle_field(role): merge_fields(vehicle, {"photos": photos})})


def with_vehicle_photo_updated(
    inspection: Inspection,
    role: PartyRole,
    photo_id: str,
    now: datetime,
    changes: Mapping[str, Any],
) -> Inspection:
    vehicle = inspection.vehicle(role)
    if vehicle is None:
        return inspection
    photos = _merge_by_id(vehicle.photos, photo_id, changes)
    return _touch(inspection, now, **{_vehicle_field(role): merge_fields(vehicle, {"photos": photos})})


def with_scene(inspection: Inspection, now: datetime, changes: Mapping[str, Any]) -> Inspection:
    scene = inspection.accident_scene or new_scene()
    return _touch(inspection, now, accident_scene=merge_fields(scene, changes))


def with_scene_photo_added(inspection: Inspection, photo: VehiclePhoto, now: datetime) -> Inspection:
    scene = inspection.accident_scene
    if scene is None:
        return inspection
    return _touch(inspection, now, accident_scene=merge_fields(scene, {"photos": [*scene.photos, photo]}))


def with_scene_photo_removed(inspection: Inspection, photo_id: str, now: datetime) -> Inspection:
    scene = inspection.accident_scene
    if scene is None:
        return inspection
    photos = [p for p in scene.photos if p.id != photo_id]
    return _touch(inspection, now, accident_scene=merge_fields(scene, {"photos": photos}))


def with_damage_photo_added(inspection: Inspection, photo: DamagePhoto, now: datetime) -> Inspection:
    return _touch(inspection, now, damage_photos=[*inspection.damage_photos, photo])


def with_damage_photo_removed(inspection: Inspection, photo_id: str, now: datetime) -> Inspection:
    return _touch(inspection, now, damage_photos=[p for p in inspection.damage_photos if p.id != photo_id])


def with_damage_photo_updated(
    inspection: Inspection,
    photo_id: str,
    now: datetime,
    changes: Mapping[str, Any],
) -> Inspection:
    return _touch(inspection, now, damage_photos=_merge_by_id(inspection.damage_photos, photo_id, changes))


def with_consent(inspection: Inspection, now: datetime, changes: Mapping[str, Any]) -> Inspection:
    return _touch(inspection, now, consent=merge_fields(inspection.consent, changes))


def with_third_party(inspection: Inspection, present: bool, now: datetime) -> Inspection:
    """Turning off discards both third-party entities; turning on always starts them empty."""
    if not present:
        return _touch(inspection, now, has_third_party=False, third_party_person=None, third_party_vehicle=None)
    return _touch(
        inspection,
        now,
        has_third_party=True,
        third_party_person=new_person(PartyRole.THIRD_PARTY),
        third_party_vehicle=new_vehicle(PartyRole.THIRD_PARTY, now),
    )


def find_vehicle_photo(inspection: Inspection, role: PartyRole, photo_id: str) -> VehiclePhoto | None:
    vehicle = inspection.vehicle(role)
    if vehicle is None:
        return None
    return next((p for p in vehicle.photos if p.id == photo_id), None)


def find_damage_photo(inspection: Inspection, photo_id: str) -> DamagePhoto | None:
    return next((p for p in inspection.damage_photos if p.id == photo_id), None)


def captured_checklist_photos(vehicle: Vehicle | None) -> int:
    if vehicle is None:
        return 0
    return sum(1 for p in vehicle.photos if p.image_url)
