"""Tests for the capture classifier."""
from unittest.mock import MagicMock

import pytest
from PIL import Image

from conftest import make_image
from inspection.classifier import (
    CaptureClassifier,
    CaptureSlot,
    ClassificationOutcome,
    find_duplicate,
)
from inspection.image_utils import image_fingerprint, to_data_url
from inspection.models import PhotoAngle
from inspection.vision_schemas import ImageCategory, VisionCaptureCategory


def _detector(category, confidence=0.9):
    return MagicMock(return_value=VisionCaptureCategory(category=category, confidence=confidence))


def test_unknown_category_is_always_accepted(jpeg):
    result = CaptureClassifier().classify(jpeg, CaptureSlot.FRONT)
    assert result.is_accepted
    assert result.detected_category == ImageCategory.UNKNOWN
    assert result.confidence == 0.5


def test_mismatch_carries_reason_and_guidance(jpeg):
    classifier = CaptureClassifier(detector=_detector(ImageCategory.ID_DOCUMENT))
    result = classifier.classify(jpeg, CaptureSlot.DASHBOARD)

    assert not result.is_accepted
    assert result.outcome == ClassificationOutcome.MISMATCH
    assert result.mismatch_reason
    assert result.guidance


def test_expected_category_is_accepted(jpeg):
    classifier = CaptureClassifier(detector=_detector(ImageCategory.VEHICLE_EXTERIOR))
    assert classifier.classify(jpeg, CaptureSlot.REAR).is_accepted


def test_identity_slots_accept_anything_known(jpeg):
    classifier = CaptureClassifier(detector=_detector(ImageCategory.VEHICLE_EXTERIOR))
    assert classifier.classify(jpeg, CaptureSlot.IDENTITY_FRONT).is_accepted


def test_detector_failure_fails_open(jpeg):
    detector = MagicMock(side_effect=RuntimeError("vision model down"))
    result = CaptureClassifier(detector=detector).classify(jpeg, CaptureSlot.FRONT)

    assert result.is_accepted
    assert result.detected_category == ImageCategory.UNKNOWN
    assert result.confidence == 0.0
    assert result.outcome == ClassificationOutcome.DEGRADED


def test_undecodable_bytes_fail_open():
    result = CaptureClassifier().classify(b"not an image", CaptureSlot.DAMAGE)
    assert result.is_accepted
    assert result.confidence == 0.0


def test_low_resolution_is_rejected_for_vehicle_slots():
    small = make_image(120, 90)
    result = CaptureClassifier().classify(small, CaptureSlot.LEFT)
    assert result.detected_category == ImageCategory.LOW_RESOLUTION
    assert not result.is_accepted


def test_screen_sized_image_without_camera_exif_is_a_screenshot():
    screenshot = make_image(1080, 1920, fmt="PNG")
    result = CaptureClassifier().classify(screenshot, CaptureSlot.FRONT)
    assert result.detected_category == ImageCategory.SCREENSHOT
    assert not result.is_accepted


def test_camera_exif_prevents_screenshot_verdict():
    exif = Image.Exif()
    exif[271] = "Apple"
    exif[272] = "iPhone 14"
    photo = make_image(1080, 1920, exif=exif.tobytes())
    result = CaptureClassifier().classify(photo, CaptureSlot.FRONT)
    assert result.detected_category == ImageCategory.UNKNOWN


def test_accepts_data_urls(jpeg):
    result = CaptureClassifier().classify(to_data_url(jpeg), CaptureSlot.SCENE)
    assert result.is_accepted


@pytest.mark.parametrize("angle", list(PhotoAngle))
def test_every_photo_angle_has_a_slot(angle):
    assert CaptureSlot.for_angle(angle).value == angle.value


def test_find_duplicate_matches_same_image():
    first = image_fingerprint(make_image(color=(10, 200, 30)))
    others = {"front": first, "rear": ""}
    assert find_duplicate(first, others) == "front"


def test_find_duplicate_falls_back_to_exact_match():
    assert find_duplicate("a" * 64, {"x": "b" * 64}) is None
    assert find_duplicate("a" * 64, {"x": "a" * 64}) == "x"
