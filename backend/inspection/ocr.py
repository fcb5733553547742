"""
Text/field extraction from captured images.

Identity documents go to the remote vision extractor first and fall back to
Tesseract plus country-aware parsing. Plates and VINs are always read with
Tesseract. Every entry point returns a result value; recognition failures are
reported through `status`, never raised.
"""
from __future__ import annotations

import io
import logging
import re
from enum import Enum
from typing import Callable, Protocol

import pytesseract
from PIL import Image
from pydantic import BaseModel, Field

from inspection.countries import plate_search_patterns
from inspection.errors import ErrorType, error_context_for
from inspection.id_parsing import parse_id_document
from inspection.image_utils import image_bytes
from inspection.models import ExtractedIdData
from inspection.validation import validate_vin_checksum
from inspection.vision_schemas import VisionIdentityFields

logger = logging.getLogger(__name__)

IDENTITY_LANGUAGE = "spa+eng"
VEHICLE_LANGUAGE = "eng"
REMOTE_CONFIDENCE = 0.95
SUCCESS_THRESHOLD = 0.7

VIN_RE = re.compile(r"(?<![A-Z0-9])[A-HJ-NPR-Z0-9]{17}(?![A-Z0-9])", re.IGNORECASE)
FALLBACK_TOKEN_RE = re.compile(r"[A-Z0-9]+", re.IGNORECASE)


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    LOW_CONFIDENCE = "low_confidence"
    FAILED = "failed"


class IdentifierKind(str, Enum):
    PLATE = "plate"
    VIN = "vin"


class TextBlock(BaseModel):
    text: str
    confidence: float = Field(ge=0.0, le=100.0)


class RecognizedText(BaseModel):
    text: str
    confidence: float = Field(ge=0.0, le=100.0)
    blocks: list[TextBlock] = Field(default_factory=list)


class IdentityExtraction(BaseModel):
    fields: ExtractedIdData | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ""
    source: str = "none"
    status: ExtractionStatus = ExtractionStatus.FAILED


class IdentifierExtraction(BaseModel):
    kind: IdentifierKind
    value: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ""
    status: ExtractionStatus = ExtractionStatus.FAILED
    checksum_valid: bool | None = None


class TextRecognizer(Protocol):
    def recognize(self, image: bytes, language: str) -> RecognizedText: ...


# (front, back, country) -> fields, e.g. vision.extract_identity_fields
RemoteIdentityExtractor = Callable[..., VisionIdentityFields | None]


def status_for(found: bool, confidence: float) -> ExtractionStatus:
    if not found:
        return ExtractionStatus.FAILED
    return ExtractionStatus.SUCCESS if confidence >= SUCCESS_THRESHOLD else ExtractionStatus.LOW_CONFIDENCE


class TesseractRecognizer:
    """Generic text recognition with pytesseract."""

    def __init__(self, tesseract_cmd: str | None = None, timeout: int = 30):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.timeout = timeout

    def recognize(self, image: bytes, language: str) -> RecognizedText:
        with Image.open(io.BytesIO(image)) as img:
            data = pytesseract.image_to_data(
                img.convert("RGB"),
                lang=language,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )

        lines: dict[tuple[int, int, int], list[str]] = {}
        blocks: dict[int, list[tuple[str, float]]] = {}
        confidences = []
        for i, word in enumerate(data["text"]):
            conf = float(data["conf"][i])
            word = (word or "").strip()
            if not word or conf < 0:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)
            blocks.setdefault(data["block_num"][i], []).append((word, conf))
            confidences.append(conf)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        return RecognizedText(
            text=text,
            confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            blocks=[
                TextBlock(
                    text=" ".join(w for w, _ in words),
                    confidence=sum(c for _, c in words) / len(words),
                )
                for _, words in sorted(blocks.items())
            ],
        )


def find_plate(raw_text: str, country: str | None) -> str | None:
    """First match of the country's plate patterns, separator-normalised."""
    for pattern in plate_search_patterns(country):
        match = pattern.search(raw_text)
        if match:
            plate = re.sub(r"\s+", "-", match.group(0).upper())
            return re.sub(r"-{2,}", "-", plate)

    # Any 5-8 character token with at least one letter and one digit
    for token in FALLBACK_TOKEN_RE.findall(raw_text):
        if 5 <= len(token) <= 8 and re.search(r"[A-Z]", token, re.IGNORECASE) and re.search(r"\d", token):
            return token.upper()
    return None


def find_vin(raw_text: str) -> str | None:
    match = VIN_RE.search(raw_text)
    return match.group(0).upper() if match else None


class FieldExtractor:
    def __init__(
        self,
        recognizer: TextRecognizer,
        remote_identity: RemoteIdentityExtractor | None = None,
    ):
        self._recognizer = recognizer
        self._remote_identity = remote_identity

    def extract_identity(
        self,
        front: bytes | str,
        back: bytes | str | None = None,
        country: str | None = None,
    ) -> IdentityExtraction:
        remote = self._try_remote_identity(front, back, country)
        if remote is not None:
            return remote

        texts: list[str] = []
        confidences: list[float] = []
        for side, image in (("front", front), ("back", back)):
            if image is None:
                continue
            try:
                recognized = self._recognizer.recognize(image_bytes(image), IDENTITY_LANGUAGE)
            except Exception as e:  # recognition failures are expected; the other side may still work
                context = error_context_for(ErrorType.OCR_FAILED, e, "Enter the data manually")
                logger.warning("Identity OCR failed on %s image: %s", side, context.message)
                continue
            texts.append(recognized.text)
            confidences.append(recognized.confidence)

        if not confidences:
            return IdentityExtraction()

        raw_text = "\n".join(texts)
        confidence = sum(confidences) / len(confidences) / 100
        fields = parse_id_document(raw_text, country)
        return IdentityExtraction(
            fields=fields,
            confidence=confidence,
            raw_text=raw_text,
            source="ocr",
            status=status_for(fields is not None, confidence),
        )

    def _try_remote_identity(
        self,
        front: bytes | str,
        back: bytes | str | None,
        country: str | None,
    ) -> IdentityExtraction | None:
        if self._remote_identity is None:
            return None
        try:
            result = self._remote_identity(front, back, country)
        except Exception as e:  # any remote failure falls back to OCR
            context = error_context_for(ErrorType.REMOTE_EXTRACTION_FAILED, e, "Falling back to OCR")
            logger.warning("Remote identity extraction failed: %s", context.message)
            return None

        if result is None or not (result.full_name or result.id_number):
            logger.info("Remote identity extraction returned no name or id; falling back to OCR")
            return None

        fields = ExtractedIdData(
            full_name=result.full_name or "",
            id_number=result.id_number or "",
            birth_date=result.birth_date or "",
            expiry_date=result.expiry_date or "",
            nationality=result.nationality,
            gender=result.gender,
        )
        return IdentityExtraction(
            fields=fields,
            confidence=REMOTE_CONFIDENCE,
            raw_text="",
            source="remote",
            status=ExtractionStatus.SUCCESS,
        )

    def extract_vehicle_identifier(
        self,
        image: bytes | str,
        kind: IdentifierKind,
        country: str | None = None,
    ) -> IdentifierExtraction:
        try:
            recognized = self._recognizer.recognize(image_bytes(image), VEHICLE_LANGUAGE)
        except Exception as e:  # recognition failures are expected and never abort the step
            context = error_context_for(ErrorType.OCR_FAILED, e, "Type the value manually")
            logger.warning("%s OCR failed: %s", kind.value, context.message)
            return IdentifierExtraction(kind=kind)

        confidence = recognized.confidence / 100
        if kind == IdentifierKind.PLATE:
            value = find_plate(recognized.text, country)
            checksum = None
        else:
            value = find_vin(recognized.text)
            checksum = validate_vin_checksum(value) if value else None

        return IdentifierExtraction(
            kind=kind,
            value=value,
            confidence=confidence if value else 0.0,
            raw_text=recognized.text,
            status=status_for(value is not None, confidence),
            checksum_valid=checksum,
        )
