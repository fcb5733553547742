"""
Image preprocessing for captured photos.

Captures travel as data URLs inside the inspection document. These helpers
normalise HEIC, compress to the transport budget, build thumbnails and read
whatever EXIF metadata the device left behind.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import io
import logging
import re

import imagehash
from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener
from pydantic import BaseModel

from inspection.models import PhotoMetadata

# Register HEIF opener for HEIC/HEIF support
register_heif_opener()

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",  # Support both jpg and jpeg
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
}

DEFAULT_MAX_BYTES = 1024 * 1024
DEFAULT_MAX_DIMENSION = 1920
THUMBNAIL_SIZE = 200
THUMBNAIL_QUALITY = 70

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?:;[\w=-]+)*;base64,(?P<data>.*)$", re.DOTALL)

_GPS_IFD = 0x8825
_EXIF_IFD = 0x8769
_TAG_DATETIME_ORIGINAL = 36867


class PreparedImage(BaseModel):
    data_url: str
    thumbnail_url: str
    width: int
    height: int
    metadata: PhotoMetadata
    fingerprint: str


def normalize_content_type(content_type: str | None) -> str | None:
    """Normalize content type for consistent handling. Converts image/jpg to image/jpeg."""
    if not content_type:
        return None
    content_type = content_type.split(";")[0].strip().lower()
    if content_type == "image/jpg":
        return "image/jpeg"
    return content_type


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Split a base64 data URL into (bytes, content type)."""
    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        raise ValueError("Not a base64 data URL")
    try:
        content = base64.b64decode(match.group("data"), validate=False)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return content, match.group("mime") or "application/octet-stream"


def to_data_url(content: bytes, content_type: str = "image/jpeg") -> str:
    return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"


def image_bytes(image: bytes | str) -> bytes:
    """Accept raw bytes or a data URL and return raw bytes."""
    if isinstance(image, bytes):
        return image
    return decode_data_url(image)[0]


def data_url(image: bytes | str, content_type: str = "image/jpeg") -> str:
    if isinstance(image, str):
        return image
    return to_data_url(image, content_type)


def normalize_image_bytes(content: bytes, content_type: str | None) -> tuple[bytes, str]:
    """
    If HEIC/HEIF, convert to JPEG bytes so every downstream engine can read it.
    Otherwise, return as-is.
    """
    normalized_type = normalize_content_type(content_type)
    if normalized_type not in {"image/heic", "image/heif"}:
        return content, normalized_type or "application/octet-stream"

    img = Image.open(io.BytesIO(content))
    exif = img.info.get("exif")
    if img.mode != "RGB":
        img = img.convert("RGB")

    output = io.BytesIO()
    save_kwargs = {"format": "JPEG", "quality": 95}
    if exif:
        save_kwargs["exif"] = exif
    img.save(output, **save_kwargs)
    return output.getvalue(), "image/jpeg"


def validate_image_content(
    content: bytes,
    min_dimension: int = 1,
    max_dimension: int = 10000,
) -> tuple[bool, str | None]:
    """
    Validate that file content is actually a valid image.
    Returns (is_valid, error_message).
    """
    try:
        img = Image.open(io.BytesIO(content))
        img.verify()

        img = Image.open(io.BytesIO(content))  # Reopen after verify
        width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        return False, f"Invalid image file: {e}"

    if width < min_dimension or height < min_dimension:
        return False, f"Image dimensions too small (minimum {min_dimension}x{min_dimension})"
    if width > max_dimension or height > max_dimension:
        return False, f"Image dimensions too large (maximum {max_dimension}x{max_dimension})"
    return True, None


def get_image_dimensions(content: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(content)) as img:
        return img.size


def _encode_jpeg(img: Image.Image, quality: int, exif: bytes | None = None) -> bytes:
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    output = io.BytesIO()
    if exif:
        img.save(output, format="JPEG", quality=quality, optimize=True, exif=exif)
    else:
        img.save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()


def compress_image(
    content: bytes,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
) -> bytes:
    """
    Fit the image within `max_dimension` and re-encode as JPEG, stepping the
    quality down until it fits `max_bytes`. EXIF is carried over. Returns the
    original bytes when the image cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(content)) as source:
            exif = source.getexif()
            img = ImageOps.exif_transpose(source)
            img.thumbnail((max_dimension, max_dimension))
            # Orientation is baked into the pixels now
            exif.pop(ExifTags.Base.Orientation, None)
            exif_bytes = exif.tobytes() if exif else None

            encoded = b""
            for quality in (90, 80, 70, 60, 50):
                encoded = _encode_jpeg(img, quality, exif_bytes)
                if len(encoded) <= max_bytes:
                    break
            return encoded
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Image compression failed, keeping original: %s", e)
        return content


def create_thumbnail(content: bytes, size: int = THUMBNAIL_SIZE, quality: int = THUMBNAIL_QUALITY) -> bytes:
    with Image.open(io.BytesIO(content)) as source:
        img = ImageOps.exif_transpose(source)
        img.thumbnail((size, size))
        return _encode_jpeg(img, quality)


def _to_degrees(value) -> float:
    degrees, minutes, seconds = (float(v) for v in value)
    return degrees + minutes / 60.0 + seconds / 3600.0


def extract_exif_metadata(content: bytes) -> PhotoMetadata:
    """GPS position, capture time and camera model from EXIF; empty metadata when absent."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            exif = img.getexif()
            gps = exif.get_ifd(_GPS_IFD)
            details = exif.get_ifd(_EXIF_IFD)
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("No EXIF metadata: %s", e)
        return PhotoMetadata()

    latitude = longitude = None
    try:
        if gps.get(ExifTags.GPS.GPSLatitude) and gps.get(ExifTags.GPS.GPSLongitude):
            latitude = _to_degrees(gps[ExifTags.GPS.GPSLatitude])
            longitude = _to_degrees(gps[ExifTags.GPS.GPSLongitude])
            if gps.get(ExifTags.GPS.GPSLatitudeRef) == "S":
                latitude = -latitude
            if gps.get(ExifTags.GPS.GPSLongitudeRef) == "W":
                longitude = -longitude
    except (TypeError, ValueError, ZeroDivisionError):
        latitude = longitude = None

    make = str(exif.get(ExifTags.Base.Make) or "").strip("\x00 ")
    model = str(exif.get(ExifTags.Base.Model) or "").strip("\x00 ")
    device = " ".join(part for part in (make, model) if part) or None
    taken = details.get(_TAG_DATETIME_ORIGINAL) or exif.get(ExifTags.Base.DateTime)

    return PhotoMetadata(
        latitude=latitude,
        longitude=longitude,
        timestamp=str(taken) if taken else None,
        device_info=device,
    )


def has_camera_exif(content: bytes) -> bool:
    try:
        with Image.open(io.BytesIO(content)) as img:
            exif = img.getexif()
    except (UnidentifiedImageError, OSError):
        return False
    return bool(exif.get(ExifTags.Base.Make) or exif.get(ExifTags.Base.Model))


def image_fingerprint(content: bytes) -> str:
    """Perceptual hash for duplicate detection. Returns hex string."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            return str(imagehash.average_hash(img))
    except (UnidentifiedImageError, OSError):
        # Fallback to SHA256 when the image cannot be decoded
        return hashlib.sha256(content).hexdigest()


def prepare_capture(
    content: bytes,
    content_type: str | None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
) -> PreparedImage:
    """Normalise, compress and thumbnail a raw capture."""
    content, _ = normalize_image_bytes(content, content_type)
    metadata = extract_exif_metadata(content)
    compressed = compress_image(content, max_bytes=max_bytes, max_dimension=max_dimension)
    width, height = get_image_dimensions(compressed)
    return PreparedImage(
        data_url=to_data_url(compressed, "image/jpeg"),
        thumbnail_url=to_data_url(create_thumbnail(compressed), "image/jpeg"),
        width=width,
        height=height,
        metadata=metadata,
        fingerprint=image_fingerprint(compressed),
    )
