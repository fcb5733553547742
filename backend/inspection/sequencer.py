"""
Wizard step sequencer.

Defines the fixed step order and the gate each step must satisfy before the
wizard moves forward. Going back is never validated.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable

from inspection.document import captured_checklist_photos
from inspection.models import Inspection


class Step(IntEnum):
    START = 0
    IDENTITY = 1
    VEHICLE_PHOTOS = 2
    VEHICLE_DATA = 3
    DAMAGE_PHOTOS = 4
    THIRD_PARTY = 5
    SCENE = 6
    SUMMARY = 7


MIN_VEHICLE_PHOTOS = 8


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def _start(inspection: Inspection) -> list[str]:
    missing = []
    if not inspection.country:
        missing.append("Select a country")
    if inspection.insured_vehicle is None:
        missing.append("Start the inspection")
    return missing


def _identity(inspection: Inspection) -> list[str]:
    person = inspection.insured_person
    identity = person.identity if person else None
    missing = []
    if identity is None or not identity.front_image:
        missing.append("Capture the front of the ID document")
    if identity is None or not identity.back_image:
        missing.append("Capture the back of the ID document")
    return missing


def _vehicle_photos(inspection: Inspection) -> list[str]:
    captured = captured_checklist_photos(inspection.insured_vehicle)
    if captured >= MIN_VEHICLE_PHOTOS:
        return []
    return [f"Capture at least {MIN_VEHICLE_PHOTOS} vehicle photos ({captured} captured)"]


def _vehicle_data(inspection: Inspection) -> list[str]:
    vehicle = inspection.insured_vehicle
    labels = {"plate": "Plate", "brand": "Brand", "model": "Model", "color": "Color"}
    return [
        f"{label} is required"
        for field, label in labels.items()
        if vehicle is None or _blank(getattr(vehicle, field))
    ]


def _damage_photos(inspection: Inspection) -> list[str]:
    return []


def _third_party(inspection: Inspection) -> list[str]:
    if not inspection.has_third_party:
        return []
    missing = []
    if inspection.third_party_person is None:
        missing.append("Add the third party's details")
    if inspection.third_party_vehicle is None:
        missing.append("Add the third party's vehicle")
    return missing


def _scene(inspection: Inspection) -> list[str]:
    scene = inspection.accident_scene
    if scene is None or _blank(scene.description):
        return ["Describe what happened"]
    return []


def _summary(inspection: Inspection) -> list[str]:
    missing = []
    if not inspection.consent.accepted:
        missing.append("Accept the declaration")
    if not inspection.consent.signature_url:
        missing.append("Sign the declaration")
    return missing


@dataclass(frozen=True)
class StepDefinition:
    step: Step
    title: str
    subtitle: str
    section: str
    optional: bool
    requirements: Callable[[Inspection], list[str]]


STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(Step.START, "Start", "Choose country and accident type", "inspection", False, _start),
    StepDefinition(Step.IDENTITY, "Identity", "Capture your ID document", "insured_person.identity", False, _identity),
    StepDefinition(Step.VEHICLE_PHOTOS, "Vehicle photos", "Photograph every angle", "insured_vehicle.photos", False, _vehicle_photos),
    StepDefinition(Step.VEHICLE_DATA, "Vehicle data", "Plate, brand, model and color", "insured_vehicle", False, _vehicle_data),
    StepDefinition(Step.DAMAGE_PHOTOS, "Damage", "Document the damage", "damage_photos", True, _damage_photos),
    StepDefinition(Step.THIRD_PARTY, "Third party", "Other people or vehicles involved", "third_party", True, _third_party),
    StepDefinition(Step.SCENE, "Scene", "Where and how it happened", "accident_scene", False, _scene),
    StepDefinition(Step.SUMMARY, "Summary", "Review, sign and submit", "consent", False, _summary),
)

LAST_STEP = Step.SUMMARY


def step_definition(step: int) -> StepDefinition:
    if step < 0 or step > LAST_STEP:
        raise ValueError(f"Unknown wizard step: {step}")
    return STEPS[step]


def missing_requirements(step: int, inspection: Inspection) -> list[str]:
    return step_definition(step).requirements(inspection)


def gate_passes(step: int, inspection: Inspection) -> bool:
    return not missing_requirements(step, inspection)


def can_advance(store) -> bool:
    step = store.current_step
    return step < LAST_STEP and gate_passes(step, store.inspection)


def advance(store) -> bool:
    """Move to the next step when the current gate holds. Returns whether it moved."""
    if not can_advance(store):
        return False
    store.next_step()
    return True


def go_back(store) -> int:
    return store.prev_step()


def progress(step: int) -> dict:
    step = min(max(step, 0), int(LAST_STEP))
    definition = STEPS[step]
    return {
        "step": step,
        "title": definition.title,
        "subtitle": definition.subtitle,
        "total_steps": len(STEPS),
        "percent": round(step / int(LAST_STEP) * 100),
    }
