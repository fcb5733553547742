from __future__ import annotations

import json
import logging
import uuid
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from inspection.countries import get_country
from inspection.errors import ErrorType, error_context_for
from inspection.image_utils import data_url
from inspection.llm_client import LlmClient, get_llm_client
from inspection.models import (
    AffectedParts,
    BoundingBox,
    DamageAnalysis,
    DamageFinding,
    DamageSeverity,
    VehicleStatus,
)
from inspection.vision_schemas import (
    ImageCategory,
    VisionCaptureCategory,
    VisionDamageReport,
    VisionIdentityFields,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


PROMPT_CAPTURE_CATEGORY = """You check photos taken during a car insurance inspection.
Classify what the photo shows using exactly one category:

- "id_document": an identity card, driver licence or passport
- "vehicle_exterior": the outside of a vehicle
- "vehicle_interior": seats, cabin or trunk of a vehicle
- "vehicle_damage": a close-up of damage on a vehicle
- "vehicle_dashboard": instrument panel, odometer or VIN plate
- "scene_outdoor": a street, road or place where an accident happened
- "screenshot": a phone or computer screenshot rather than a camera photo
- "unknown": none of the above, or you cannot tell

Return ONLY valid JSON: {"category": "<category>", "confidence": 0.0-1.0}"""

PROMPT_IDENTITY = """You read Latin American identity documents ({document_name}, {country_name}).
Extract the holder's data from the front and back images.

Return ONLY valid JSON matching this EXACT structure:
{{
  "full_name": null or "full name as printed",
  "id_number": null or "document number exactly as printed",
  "birth_date": null or "YYYY-MM-DD",
  "expiry_date": null or "YYYY-MM-DD or as printed",
  "nationality": null or "nationality",
  "gender": null or "M|F"
}}

Use null for anything you cannot read. Do not guess."""

PROMPT_DAMAGE = """You are an insurance adjuster assessing vehicle damage. Analyze this photo and report
EVERY visible damage. Only report damage you can actually see; if there is none, say so.

Return ONLY valid JSON matching this EXACT structure:
{
  "has_damage": boolean,
  "impact_zone": "frontal|rear|lateral_left|lateral_right|roof" or null,
  "impact_type": "frontal_collision|rear_collision|side_impact|scrape|unknown" or null,
  "overall_severity": "none|minor|moderate|severe|total_loss",
  "is_driveable": boolean,
  "airbag_deployed": boolean,
  "fluid_leak": boolean,
  "structural_damage": boolean,
  "glass_intact": boolean,
  "damages": [
    {
      "type": "scratch|dent|crack|broken|paint|deformation|glass|puncture|corrosion",
      "severity": "minor|moderate|severe",
      "part": "hood|trunk|front_bumper|rear_bumper|front_fender_left|front_fender_right|rear_fender_left|rear_fender_right|front_door_left|front_door_right|rear_door_left|rear_door_right|side_panel_left|side_panel_right|headlight_left|headlight_right|taillight_left|taillight_right|windshield|rear_window|mirror_left|mirror_right|grille|wheel_front_left|wheel_front_right|frame",
      "zone": "frontal|rear|lateral_left|lateral_right",
      "side": "left|right|center|front|rear",
      "confidence": 0.0-1.0,
      "description": "short description in Spanish",
      "estimated_repair": "paintless_repair|body_repair|part_replacement|structural_repair",
      "affects_structure": boolean,
      "affects_mechanical": boolean,
      "affects_safety": boolean,
      "bounding_box": {"x": 0-1 centre, "y": 0-1 centre, "width": 0-1, "height": 0-1}
    }
  ],
  "recommendations": ["short recommendation in Spanish"]
}"""

PROMPT_REPAIR = """The previous response had validation errors: {errors}

Return only valid JSON matching the structure you were given."""

NO_ANALYSIS_RECOMMENDATION = "No se pudo analizar la imagen. Intenta con otra foto."

VEHICLE_PART_LABELS: dict[str, str] = {
    "hood": "Capó", "trunk": "Maletero", "roof": "Techo",
    "front_bumper": "Parachoques delantero", "rear_bumper": "Parachoques trasero",
    "front_fender_left": "Guardafango del. izq.", "front_fender_right": "Guardafango del. der.",
    "rear_fender_left": "Guardafango tras. izq.", "rear_fender_right": "Guardafango tras. der.",
    "front_door_left": "Puerta del. izq.", "front_door_right": "Puerta del. der.",
    "rear_door_left": "Puerta tras. izq.", "rear_door_right": "Puerta tras. der.",
    "side_panel_left": "Panel lateral izq.", "side_panel_right": "Panel lateral der.",
    "headlight_left": "Faro del. izq.", "headlight_right": "Faro del. der.",
    "taillight_left": "Faro tras. izq.", "taillight_right": "Faro tras. der.",
    "windshield": "Parabrisas", "rear_window": "Ventana trasera",
    "side_window_left": "Ventana lat. izq.", "side_window_right": "Ventana lat. der.",
    "mirror_left": "Espejo izq.", "mirror_right": "Espejo der.",
    "wheel_front_left": "Llanta del. izq.", "wheel_front_right": "Llanta del. der.",
    "wheel_rear_left": "Llanta tras. izq.", "wheel_rear_right": "Llanta tras. der.",
    "grille": "Parrilla", "engine": "Motor", "radiator": "Radiador", "frame": "Chasis",
}


def _image_part(image: bytes | str) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": data_url(image)}}


def _validated_completion(
    client: LlmClient,
    messages: list[dict[str, Any]],
    schema: type[T],
) -> tuple[T | None, str | None]:
    """
    Call the vision model and validate the JSON reply against `schema`.
    Includes single retry with repair on validation failure.
    Returns (model, None) or (None, last validation error).
    """
    validation_errors = None
    content = None

    for attempt in range(2):  # Initial + 1 retry
        raw = client.vision_completion(messages)
        content = raw["choices"][0]["message"]["content"]
        try:
            data = json.loads(content) if isinstance(content, str) else content
            return schema.model_validate(data), None
        except (ValidationError, json.JSONDecodeError) as e:
            validation_errors = str(e)
            if attempt == 0 and content:
                messages.append({
                    "role": "assistant",
                    "content": content if isinstance(content, str) else json.dumps(content),
                })
                messages.append({
                    "role": "user",
                    "content": PROMPT_REPAIR.format(errors=validation_errors),
                })
            else:
                break

    return None, validation_errors


def detect_capture_category(image: bytes | str, client: LlmClient | None = None) -> VisionCaptureCategory:
    """Ask the vision model what a capture shows. Invalid replies degrade to unknown."""
    client = client or get_llm_client()
    messages = [
        {"role": "system", "content": PROMPT_CAPTURE_CATEGORY},
        {"role": "user", "content": [{"type": "text", "text": "Classify this photo."}, _image_part(image)]},
    ]
    result, errors = _validated_completion(client, messages, VisionCaptureCategory)
    if result is None:
        logger.warning("Capture category reply could not be validated: %s", errors)
        return VisionCaptureCategory(category=ImageCategory.UNKNOWN, confidence=0.0)
    return result


def extract_identity_fields(
    front: bytes | str,
    back: bytes | str | None = None,
    country: str | None = None,
    client: LlmClient | None = None,
) -> VisionIdentityFields | None:
    """
    Read identity fields from one or two document images.
    Returns None when the model reply cannot be validated; API errors propagate
    so the caller can fall back to OCR.
    """
    client = client or get_llm_client()
    info = get_country(country)
    prompt = PROMPT_IDENTITY.format(
        document_name=info.id_document_name if info else "identity document",
        country_name=info.name if info else "unknown country",
    )
    content: list[dict[str, Any]] = [{"type": "text", "text": "Front of the document:"}, _image_part(front)]
    if back is not None:
        content += [{"type": "text", "text": "Back of the document:"}, _image_part(back)]

    messages = [{"role": "system", "content": prompt}, {"role": "user", "content": content}]
    result, errors = _validated_completion(client, messages, VisionIdentityFields)
    if result is None:
        logger.warning("Identity extraction reply could not be validated: %s", errors)
    return result


def empty_damage_analysis() -> DamageAnalysis:
    return DamageAnalysis(recommendations=[NO_ANALYSIS_RECOMMENDATION])


def _severity(value: str | None) -> DamageSeverity:
    try:
        return DamageSeverity(value or "minor")
    except ValueError:
        return DamageSeverity.MINOR


def map_damage_report(report: VisionDamageReport) -> DamageAnalysis:
    """Fill defaults for anything the model left out and derive the repair category."""
    findings = []
    for item in report.damages:
        box = None
        if item.bounding_box is not None:
            box = BoundingBox(
                x=item.bounding_box.x,
                y=item.bounding_box.y,
                width=item.bounding_box.width or 0.12,
                height=item.bounding_box.height or 0.12,
            )
        findings.append(DamageFinding(
            id=f"dmg-{uuid.uuid4().hex[:12]}",
            type=item.type or "dent",
            severity=_severity(item.severity),
            part=item.part or "front_bumper",
            zone=item.zone or "frontal",
            side=item.side or "center",
            confidence=item.confidence or 0.8,
            description=item.description or "Daño detectado",
            estimated_repair=item.estimated_repair or "body_repair",
            affects_structure=item.affects_structure,
            affects_mechanical=item.affects_mechanical,
            affects_safety=item.affects_safety,
            bounding_box=box,
        ))

    parts = {"exterior": [], "mechanical": [], "glass": [], "structural": []}
    for finding in findings:
        label = VEHICLE_PART_LABELS.get(finding.part, finding.part)
        if finding.type == "glass":
            parts["glass"].append(label)
        elif finding.affects_structure:
            parts["structural"].append(label)
        elif finding.affects_mechanical:
            parts["mechanical"].append(label)
        else:
            parts["exterior"].append(label)

    severity = report.overall_severity or "none"
    if severity == "total_loss":
        repair_category = "total_loss"
    elif any(f.affects_structure for f in findings):
        repair_category = "major_repair"
    elif severity in ("severe", "moderate"):
        repair_category = "moderate_repair"
    else:
        repair_category = "minor_repair"

    confidence = sum(f.confidence for f in findings) / len(findings) if findings else 0.95

    return DamageAnalysis(
        has_damage=report.has_damage if report.has_damage is not None else bool(findings),
        damages=findings,
        overall_severity=severity,
        confidence=confidence,
        impact_zone=report.impact_zone,
        impact_type=report.impact_type,
        vehicle_status=VehicleStatus(
            is_driveable=report.is_driveable,
            airbag_deployed=report.airbag_deployed,
            fluid_leak=report.fluid_leak,
            structural_damage=report.structural_damage,
            glass_intact=report.glass_intact,
        ),
        affected_parts=AffectedParts(**parts),
        recommendations=report.recommendations,
        repair_category=repair_category,
    )


def analyze_damage(image: bytes | str, client: LlmClient | None = None) -> DamageAnalysis:
    """
    Run damage detection on a photo. Never raises: model or API failures
    return an empty analysis that asks for another photo.
    """
    messages = [
        {"role": "system", "content": PROMPT_DAMAGE},
        {"role": "user", "content": [{"type": "text", "text": "Analyze this vehicle photo."}, _image_part(image)]},
    ]
    try:
        client = client or get_llm_client()
        report, errors = _validated_completion(client, messages, VisionDamageReport)
    except (RuntimeError, KeyError, IndexError) as e:
        context = error_context_for(ErrorType.DAMAGE_ANALYSIS_FAILED, e, "Retake the photo")
        logger.warning("Damage analysis failed: %s", context.message)
        return empty_damage_analysis()

    if report is None:
        logger.warning("Damage analysis reply could not be validated: %s", errors)
        return empty_damage_analysis()
    return map_damage_report(report)
