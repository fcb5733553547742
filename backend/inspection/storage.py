from __future__ import annotations

import logging
import mimetypes
import uuid

from supabase import Client

from inspection.image_utils import decode_data_url
from inspection.submission import SubmissionPayload

logger = logging.getLogger(__name__)


def _guess_ext(content_type: str | None, filename: str | None = None) -> str:
    """Guess file extension from content type or filename."""
    if filename and "." in filename:
        return filename.rsplit(".", 1)[-1].lower()
    if content_type:
        ext = mimetypes.guess_extension(content_type)
        if ext:
            return ext.lstrip(".")
    return "bin"


def upload_image_bytes(
    supabase: Client,
    bucket: str,
    reference_id: str,
    name: str,
    content: bytes,
    content_type: str | None,
) -> str:
    """
    Upload image bytes to Supabase storage.

    Returns:
        Storage path of uploaded file, inspections/<reference>/<name>.<ext>
    """
    storage_path = f"inspections/{reference_id}/{name}.{_guess_ext(content_type)}"

    # Only the content-type goes in file_options; some client versions mis-handle other values
    supabase.storage.from_(bucket).upload(
        path=storage_path,
        file=content,
        file_options={
            "content-type": content_type or "application/octet-stream",
        },
    )
    return storage_path


def upload_data_url(supabase: Client, bucket: str, reference_id: str, value: str | None, name: str) -> str | None:
    """Upload a data-URL image and return its storage path. Other references pass through."""
    if not value or not value.startswith("data:"):
        return value
    content, content_type = decode_data_url(value)
    return upload_image_bytes(supabase, bucket, reference_id, name, content, content_type)


def externalize_images(supabase: Client, bucket: str, payload: SubmissionPayload) -> SubmissionPayload:
    """
    Replace inline data-URL images in the payload by storage paths.
    The same data URL is uploaded once even when several records reference it.
    """
    ref = payload.reference_id
    uploaded: dict[str, str | None] = {}

    def store(value: str | None, name: str) -> str | None:
        if not value or not value.startswith("data:"):
            return value
        if value not in uploaded:
            uploaded[value] = upload_data_url(supabase, bucket, ref, value, name)
        return uploaded[value]

    record = payload.inspection.model_copy(update={
        "client_id_front_image": store(payload.inspection.client_id_front_image, "client-id-front"),
        "client_id_back_image": store(payload.inspection.client_id_back_image, "client-id-back"),
        "third_party_id_front_image": store(payload.inspection.third_party_id_front_image, "third-party-id-front"),
        "third_party_id_back_image": store(payload.inspection.third_party_id_back_image, "third-party-id-back"),
        "accident_sketch_url": store(payload.inspection.accident_sketch_url, "sketch"),
    })
    photos = []
    for photo in payload.photos:
        name = f"{photo.photo_type}-{uuid.uuid4().hex[:8]}"
        photos.append(photo.model_copy(update={
            "image_url": store(photo.image_url, name),
            "thumbnail_url": store(photo.thumbnail_url, f"{name}-thumb"),
        }))
    damages = [d.model_copy(update={"photo_url": store(d.photo_url, "damage")}) for d in payload.damages]
    consent = payload.consent
    if consent is not None:
        consent = consent.model_copy(update={"signature_url": store(consent.signature_url, "signature")})

    logger.info("Uploaded %d image(s) for inspection %s", len(uploaded), ref)
    return payload.model_copy(update={"inspection": record, "photos": photos, "damages": damages, "consent": consent})
