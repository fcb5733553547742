"""Shared fixtures: fixed clock, in-memory snapshot storage, fake recogniser, in-memory images."""
import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from PIL import Image

from inspection.classifier import CaptureClassifier
from inspection.ocr import FieldExtractor, RecognizedText
from inspection.persistence import SubmissionReceipt
from inspection.snapshot import InMemorySnapshotStorage
from inspection.store import InspectionStore
from inspection.wizard import InspectionWizard

FIXED_NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


class FakeRecognizer:
    """Returns canned text; records every call."""

    def __init__(self, text: str = "", confidence: float = 90.0, error: Exception | None = None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.calls: list[str] = []

    def recognize(self, image: bytes, language: str) -> RecognizedText:
        self.calls.append(language)
        if self.error is not None:
            raise self.error
        return RecognizedText(text=self.text, confidence=self.confidence)


def make_image(
    width: int = 640,
    height: int = 480,
    color: tuple[int, int, int] = (120, 130, 140),
    fmt: str = "JPEG",
    exif: bytes | None = None,
) -> bytes:
    img = Image.new("RGB", (width, height), color)
    # A diagonal band so perceptual hashes differ between colours
    for x in range(0, min(width, height), 2):
        img.putpixel((x, x), (255 - color[0], 255 - color[1], 255 - color[2]))
    buf = io.BytesIO()
    kwargs = {"exif": exif} if exif else {}
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def memory_storage():
    return InMemorySnapshotStorage()


@pytest.fixture
def store(memory_storage, clock):
    """Create a store backed by in-memory storage and a fixed clock."""
    return InspectionStore(memory_storage, clock=clock)


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def jpeg():
    """A plain 640x480 camera-like JPEG."""
    return make_image()


@pytest.fixture
def submitter():
    mock = MagicMock()
    mock.submit.side_effect = lambda payload: SubmissionReceipt(reference_id=payload.reference_id)
    mock.retry.side_effect = lambda payload, sections: SubmissionReceipt(reference_id=payload.reference_id)
    return mock


@pytest.fixture
def geocoder():
    return MagicMock()


@pytest.fixture
def wizard(store, recognizer, submitter, geocoder):
    """Wizard wired with local fakes and no remote collaborators."""
    return InspectionWizard(
        store=store,
        classifier=CaptureClassifier(),
        extractor=FieldExtractor(recognizer),
        damage_analyzer=None,
        geocoder=geocoder,
        submitter=submitter,
    )
