from __future__ import annotations

from enum import Enum
from pydantic import BaseModel, Field


class ImageCategory(str, Enum):
    """Content categories a captured image can be classified as."""
    ID_DOCUMENT = "id_document"
    VEHICLE_EXTERIOR = "vehicle_exterior"
    VEHICLE_INTERIOR = "vehicle_interior"
    VEHICLE_DAMAGE = "vehicle_damage"
    VEHICLE_DASHBOARD = "vehicle_dashboard"
    SCENE_OUTDOOR = "scene_outdoor"
    SCREENSHOT = "screenshot"
    LOW_RESOLUTION = "low_resolution"
    UNKNOWN = "unknown"


class VisionCaptureCategory(BaseModel):
    category: ImageCategory = ImageCategory.UNKNOWN
    confidence: float = Field(ge=0.0, le=1.0, default=0.0)


class VisionIdentityFields(BaseModel):
    """Identity document fields as read by the vision model."""
    full_name: str | None = None
    id_number: str | None = None
    birth_date: str | None = None
    expiry_date: str | None = None
    nationality: str | None = None
    gender: str | None = None


class VisionBoundingBox(BaseModel):
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float | None = Field(default=None, ge=0.0, le=1.0)
    height: float | None = Field(default=None, ge=0.0, le=1.0)


class VisionDamage(BaseModel):
    type: str | None = None
    severity: str | None = None
    part: str | None = None
    zone: str | None = None
    side: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    description: str | None = None
    estimated_repair: str | None = None
    affects_structure: bool = False
    affects_mechanical: bool = False
    affects_safety: bool = False
    bounding_box: VisionBoundingBox | None = None


class VisionDamageReport(BaseModel):
    """Top-level schema for the damage analysis response."""
    has_damage: bool | None = None
    impact_zone: str | None = None
    impact_type: str | None = None
    overall_severity: str = "none"
    is_driveable: bool = True
    airbag_deployed: bool = False
    fluid_leak: bool = False
    structural_damage: bool = False
    glass_intact: bool = True
    damages: list[VisionDamage] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
