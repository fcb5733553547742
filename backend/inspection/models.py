"""
Inspection document schema.

All models are frozen: an update always produces a new snapshot (see
`inspection.document`), so a snapshot handed to a reader never changes
underneath it.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PartyRole(str, Enum):
    INSURED = "insured"
    THIRD_PARTY = "third_party"


class AccidentType(str, Enum):
    COLLISION = "collision"
    THEFT = "theft"
    VANDALISM = "vandalism"
    NATURAL_DISASTER = "natural_disaster"
    SELF_DAMAGE = "self_damage"
    OTHER = "other"


class InspectionStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    PROCESSED = "processed"


class VehicleUsage(str, Enum):
    PRIVATE = "private"
    COMMERCIAL = "commercial"
    PUBLIC = "public"


class PhotoAngle(str, Enum):
    """Capture slot tag for a vehicle photo."""
    FRONT = "front"
    FRONT_45_LEFT = "front_45_left"
    LEFT = "left"
    REAR_45_LEFT = "rear_45_left"
    REAR = "rear"
    REAR_45_RIGHT = "rear_45_right"
    RIGHT = "right"
    FRONT_45_RIGHT = "front_45_right"
    DASHBOARD = "dashboard"
    INTERIOR_FRONT = "interior_front"
    INTERIOR_REAR = "interior_rear"
    TRUNK = "trunk"
    DAMAGE = "damage"
    SCENE = "scene"


EXTERIOR_ANGLES = (
    PhotoAngle.FRONT,
    PhotoAngle.FRONT_45_LEFT,
    PhotoAngle.LEFT,
    PhotoAngle.REAR_45_LEFT,
    PhotoAngle.REAR,
    PhotoAngle.REAR_45_RIGHT,
    PhotoAngle.RIGHT,
    PhotoAngle.FRONT_45_RIGHT,
)
INTERIOR_ANGLES = (
    PhotoAngle.DASHBOARD,
    PhotoAngle.INTERIOR_FRONT,
    PhotoAngle.INTERIOR_REAR,
    PhotoAngle.TRUNK,
)

# Ordered checklist created for every new vehicle: (angle, label, description)
PHOTO_CHECKLIST: tuple[tuple[PhotoAngle, str, str], ...] = (
    (PhotoAngle.FRONT, "Front", "Full front view"),
    (PhotoAngle.FRONT_45_LEFT, "Front 45° left", "Front, driver side"),
    (PhotoAngle.LEFT, "Left side", "Driver side"),
    (PhotoAngle.REAR_45_LEFT, "Rear 45° left", "Rear, driver side"),
    (PhotoAngle.REAR, "Rear", "Full rear view"),
    (PhotoAngle.REAR_45_RIGHT, "Rear 45° right", "Rear, passenger side"),
    (PhotoAngle.RIGHT, "Right side", "Passenger side"),
    (PhotoAngle.FRONT_45_RIGHT, "Front 45° right", "Front, passenger side"),
    (PhotoAngle.DASHBOARD, "Dashboard", "Instrument panel"),
    (PhotoAngle.INTERIOR_FRONT, "Front interior", "Front seats"),
    (PhotoAngle.INTERIOR_REAR, "Rear interior", "Rear seats"),
    (PhotoAngle.TRUNK, "Trunk", "Cargo space"),
)


class PhotoMetadata(_Frozen):
    latitude: float | None = None
    longitude: float | None = None
    timestamp: str | None = None
    device_info: str | None = None


class VehiclePhoto(_Frozen):
    id: str
    angle: PhotoAngle
    label: str
    description: str = ""
    image_url: str | None = None
    thumbnail_url: str | None = None
    timestamp: datetime | None = None
    metadata: PhotoMetadata | None = None


class ExtractedIdData(_Frozen):
    full_name: str = ""
    id_number: str = ""
    birth_date: str = ""
    expiry_date: str = ""
    nationality: str | None = None
    gender: str | None = None


class IdentityDocument(_Frozen):
    front_image: str | None = None
    back_image: str | None = None
    extracted_data: ExtractedIdData | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    validated: bool = False


class Person(_Frozen):
    id: str
    role: PartyRole
    identity: IdentityDocument = Field(default_factory=IdentityDocument)
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    driver_license: str | None = None


class Vehicle(_Frozen):
    id: str
    role: PartyRole
    plate: str = ""
    vin: str = ""
    brand: str = ""
    model: str = ""
    year: int
    version: str | None = None
    color: str = ""
    usage: VehicleUsage = VehicleUsage.PRIVATE
    mileage: int = Field(default=0, ge=0)
    has_garage: bool = False
    photos: list[VehiclePhoto] = Field(default_factory=list)


class SceneLocation(_Frozen):
    latitude: float | None = None
    longitude: float | None = None
    address: str = ""


class AccidentScene(_Frozen):
    location: SceneLocation = Field(default_factory=SceneLocation)
    description: str = ""
    sketch_url: str | None = None
    has_witnesses: bool = False
    witness_info: str | None = None
    police_present: bool = False
    police_report_number: str | None = None
    photos: list[VehiclePhoto] = Field(default_factory=list)


# ---- damage analysis (produced by the damage-detection collaborator) ----

class DamageSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    TOTAL_LOSS = "total_loss"


class BoundingBox(_Frozen):
    x: float
    y: float
    width: float = 0.12
    height: float = 0.12


class DamageFinding(_Frozen):
    id: str
    type: str = "dent"
    severity: DamageSeverity = DamageSeverity.MINOR
    part: str = "front_bumper"
    zone: str = "frontal"
    side: str = "center"
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    description: str = ""
    estimated_repair: str = "body_repair"
    affects_structure: bool = False
    affects_mechanical: bool = False
    affects_safety: bool = False
    bounding_box: BoundingBox | None = None


class VehicleStatus(_Frozen):
    is_driveable: bool = True
    airbag_deployed: bool = False
    fluid_leak: bool = False
    structural_damage: bool = False
    glass_intact: bool = True


class AffectedParts(_Frozen):
    exterior: list[str] = Field(default_factory=list)
    mechanical: list[str] = Field(default_factory=list)
    glass: list[str] = Field(default_factory=list)
    structural: list[str] = Field(default_factory=list)


class DamageAnalysis(_Frozen):
    has_damage: bool = False
    damages: list[DamageFinding] = Field(default_factory=list)
    overall_severity: str = "none"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    impact_zone: str | None = None
    impact_type: str | None = None
    vehicle_status: VehicleStatus = Field(default_factory=VehicleStatus)
    affected_parts: AffectedParts = Field(default_factory=AffectedParts)
    recommendations: list[str] = Field(default_factory=list)
    repair_category: str = "minor_repair"


class DamagePhoto(_Frozen):
    id: str
    image_url: str
    timestamp: datetime
    analysis: DamageAnalysis | None = None


class Consent(_Frozen):
    accepted: bool = False
    signature_url: str | None = None
    timestamp: datetime | None = None
    ip_address: str | None = None


class Inspection(_Frozen):
    id: str
    policy_number: str | None = None
    claim_number: str | None = None
    country: str = ""
    accident_type: AccidentType = AccidentType.COLLISION
    status: InspectionStatus = InspectionStatus.DRAFT
    insured_person: Person | None = None
    insured_vehicle: Vehicle | None = None
    has_third_party: bool = False
    third_party_person: Person | None = None
    third_party_vehicle: Vehicle | None = None
    accident_scene: AccidentScene | None = None
    damage_photos: list[DamagePhoto] = Field(default_factory=list)
    consent: Consent = Field(default_factory=Consent)
    created_at: datetime
    updated_at: datetime
    submitted_at: datetime | None = None

    def person(self, role: PartyRole) -> Person | None:
        return self.insured_person if role == PartyRole.INSURED else self.third_party_person

    def vehicle(self, role: PartyRole) -> Vehicle | None:
        return self.insured_vehicle if role == PartyRole.INSURED else self.third_party_vehicle


class WizardSnapshot(BaseModel):
    """The unit written to durable storage after every store mutation."""
    inspection: Inspection
    current_step: int = Field(default=0, ge=0)
