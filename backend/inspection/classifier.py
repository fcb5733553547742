"""
Capture classifier.

Checks that a captured image plausibly belongs to the slot it was taken for.
Classification is advisory and fail-open: an uncertain result or an internal
error always lets the capture through.
"""
from __future__ import annotations

import io
import logging
from enum import Enum
from typing import Callable, Mapping

import imagehash
from PIL import Image
from pydantic import BaseModel, Field

from inspection.errors import ErrorType, error_context_for
from inspection.image_utils import has_camera_exif, image_bytes
from inspection.models import EXTERIOR_ANGLES, INTERIOR_ANGLES, PhotoAngle
from inspection.vision_schemas import ImageCategory, VisionCaptureCategory

logger = logging.getLogger(__name__)

COMMON_SCREEN_SIZES = {320, 360, 375, 390, 393, 412, 414, 428, 768, 800, 1024, 1080, 1170, 1284, 1920, 2560}
SCREENSHOT_MIN_PIXELS = 500_000
MIN_DIMENSION = 200
DUPLICATE_DISTANCE = 4


class CaptureSlot(str, Enum):
    IDENTITY_FRONT = "identity_front"
    IDENTITY_BACK = "identity_back"
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

    @classmethod
    def for_angle(cls, angle: PhotoAngle) -> "CaptureSlot":
        return cls(angle.value)


class ClassificationOutcome(str, Enum):
    ACCEPTED = "accepted"
    MISMATCH = "mismatch"
    DEGRADED = "degraded"


class ClassificationResult(BaseModel):
    is_accepted: bool
    detected_category: ImageCategory
    confidence: float = Field(ge=0.0, le=1.0)
    mismatch_reason: str | None = None
    guidance: str | None = None
    outcome: ClassificationOutcome = ClassificationOutcome.ACCEPTED


_ALL = frozenset(ImageCategory)
_VEHICLE = frozenset({
    ImageCategory.VEHICLE_EXTERIOR,
    ImageCategory.VEHICLE_INTERIOR,
    ImageCategory.VEHICLE_DAMAGE,
    ImageCategory.VEHICLE_DASHBOARD,
    ImageCategory.SCENE_OUTDOOR,
    ImageCategory.UNKNOWN,
})

ACCEPTED_CATEGORIES: dict[CaptureSlot, frozenset[ImageCategory]] = {
    # OCR is the real validator for identity documents
    CaptureSlot.IDENTITY_FRONT: _ALL,
    CaptureSlot.IDENTITY_BACK: _ALL,
    **{CaptureSlot.for_angle(angle): _VEHICLE for angle in EXTERIOR_ANGLES + INTERIOR_ANGLES},
    CaptureSlot.DAMAGE: _ALL - {ImageCategory.LOW_RESOLUTION},
    CaptureSlot.SCENE: _ALL,
}

SLOT_GUIDANCE: dict[CaptureSlot, str] = {
    CaptureSlot.IDENTITY_FRONT: "Place the front of the ID on a flat surface and fill the frame.",
    CaptureSlot.IDENTITY_BACK: "Turn the ID over and photograph the back.",
    CaptureSlot.DASHBOARD: "Photograph the instrument panel with the ignition on.",
    CaptureSlot.INTERIOR_FRONT: "Photograph the front seats from an open door.",
    CaptureSlot.INTERIOR_REAR: "Photograph the rear seats from an open door.",
    CaptureSlot.TRUNK: "Open the trunk and photograph the cargo space.",
    CaptureSlot.DAMAGE: "Move closer to the damage and take a clear photo.",
    CaptureSlot.SCENE: "Photograph the place where the accident happened.",
}
DEFAULT_VEHICLE_GUIDANCE = "Use the device camera to photograph the whole vehicle from the indicated angle."

MISMATCH_REASONS: dict[ImageCategory, str] = {
    ImageCategory.SCREENSHOT: "This image looks like a screenshot. Please take a real photo.",
    ImageCategory.LOW_RESOLUTION: "The image is too small. Take a photo with better resolution.",
    ImageCategory.ID_DOCUMENT: "This looks like an identity document, not the requested photo.",
}

CategoryDetector = Callable[[bytes], VisionCaptureCategory]


def guidance_for(slot: CaptureSlot) -> str:
    return SLOT_GUIDANCE.get(slot, DEFAULT_VEHICLE_GUIDANCE)


class CaptureClassifier:
    def __init__(self, detector: CategoryDetector | None = None):
        self._detector = detector

    def classify(self, image: bytes | str, expected_slot: CaptureSlot) -> ClassificationResult:
        try:
            category, confidence = self._analyze(image_bytes(image))
        except Exception as e:  # fail-open: any analysis error accepts the capture
            context = error_context_for(ErrorType.CLASSIFICATION_FAILED, e)
            logger.warning("Classification failed for slot %s: %s", expected_slot.value, context.message)
            return ClassificationResult(
                is_accepted=True,
                detected_category=ImageCategory.UNKNOWN,
                confidence=0.0,
                outcome=ClassificationOutcome.DEGRADED,
            )

        if category == ImageCategory.UNKNOWN or category in ACCEPTED_CATEGORIES[expected_slot]:
            return ClassificationResult(is_accepted=True, detected_category=category, confidence=confidence)

        reason = MISMATCH_REASONS.get(
            category,
            f"This photo looks like {category.value.replace('_', ' ')}, "
            f"not {expected_slot.value.replace('_', ' ')}.",
        )
        return ClassificationResult(
            is_accepted=False,
            detected_category=category,
            confidence=confidence,
            mismatch_reason=reason,
            guidance=guidance_for(expected_slot),
            outcome=ClassificationOutcome.MISMATCH,
        )

    def _analyze(self, content: bytes) -> tuple[ImageCategory, float]:
        with Image.open(io.BytesIO(content)) as img:
            width, height = img.size

        if width < MIN_DIMENSION or height < MIN_DIMENSION:
            return ImageCategory.LOW_RESOLUTION, 0.9

        exact_screen_size = width in COMMON_SCREEN_SIZES or height in COMMON_SCREEN_SIZES
        if exact_screen_size and width * height > SCREENSHOT_MIN_PIXELS and not has_camera_exif(content):
            return ImageCategory.SCREENSHOT, 0.9

        if self._detector is not None:
            detected = self._detector(content)
            return detected.category, detected.confidence

        return ImageCategory.UNKNOWN, 0.5


def find_duplicate(fingerprint: str, others: Mapping[str, str]) -> str | None:
    """Return the key of an already captured image with the same perceptual hash, if any."""
    for key, other in others.items():
        if not other:
            continue
        if len(other) == len(fingerprint) == 16:
            # 64-bit average hashes: allow a few flipped bits
            if imagehash.hex_to_hash(fingerprint) - imagehash.hex_to_hash(other) <= DUPLICATE_DISTANCE:
                return key
        elif other == fingerprint:
            return key
    return None
