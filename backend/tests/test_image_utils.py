"""Tests for image normalisation, compression and metadata helpers."""
import io

import pytest
from PIL import Image

from conftest import make_image
from inspection.image_utils import (
    compress_image,
    create_thumbnail,
    decode_data_url,
    extract_exif_metadata,
    has_camera_exif,
    image_fingerprint,
    normalize_content_type,
    prepare_capture,
    to_data_url,
    validate_image_content,
)


def _size(content):
    with Image.open(io.BytesIO(content)) as img:
        return img.size


@pytest.mark.parametrize(
    "raw, expected",
    [("image/jpg", "image/jpeg"), ("IMAGE/PNG; charset=binary", "image/png"), (None, None), ("", None)],
)
def test_normalize_content_type(raw, expected):
    assert normalize_content_type(raw) == expected


def test_data_url_helpers():
    url = to_data_url(b"\x89PNG", "image/png")
    assert url.startswith("data:image/png;base64,")
    assert decode_data_url(url) == (b"\x89PNG", "image/png")

    with pytest.raises(ValueError):
        decode_data_url("https://example.com/a.jpg")


def test_validate_image_content():
    assert validate_image_content(make_image(300, 200)) == (True, None)

    ok, error = validate_image_content(b"plain text")
    assert not ok
    assert error.startswith("Invalid image file")

    ok, error = validate_image_content(make_image(50, 50), min_dimension=100)
    assert not ok
    assert "too small" in error


def test_compress_fits_dimension_and_keeps_aspect():
    compressed = compress_image(make_image(4000, 3000, fmt="PNG"), max_dimension=1920)
    assert _size(compressed) == (1920, 1440)
    assert compressed[:2] == b"\xff\xd8"


def test_compress_keeps_camera_exif():
    exif = Image.Exif()
    exif[271] = "Samsung"
    compressed = compress_image(make_image(exif=exif.tobytes()))
    assert has_camera_exif(compressed)


def test_compress_returns_original_on_bad_input():
    assert compress_image(b"not an image") == b"not an image"


def test_thumbnail_defaults_to_200px():
    thumb = create_thumbnail(make_image(800, 400))
    assert _size(thumb) == (200, 100)


def test_has_camera_exif_without_exif():
    assert not has_camera_exif(make_image())
    assert not has_camera_exif(b"garbage")


def test_extract_exif_metadata_device_info():
    exif = Image.Exif()
    exif[271] = "Apple"
    exif[272] = "iPhone 14"
    metadata = extract_exif_metadata(make_image(exif=exif.tobytes()))
    assert metadata.device_info == "Apple iPhone 14"
    assert metadata.latitude is None


def test_fingerprint_is_perceptual_hash_or_sha256():
    assert len(image_fingerprint(make_image())) == 16
    assert len(image_fingerprint(b"not an image")) == 64


def test_prepare_capture():
    prepared = prepare_capture(make_image(3000, 2000, fmt="PNG"), "image/png", max_dimension=1500)

    assert prepared.data_url.startswith("data:image/jpeg;base64,")
    assert prepared.thumbnail_url.startswith("data:image/jpeg;base64,")
    assert (prepared.width, prepared.height) == (1500, 1000)
    assert prepared.fingerprint
