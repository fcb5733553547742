"""
Writes an assembled submission to Supabase.

The inspection row is the submission: if it cannot be written the whole
submission fails. Photo, damage and consent rows are best-effort and can be
rewritten later under the same reference id.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from pydantic import BaseModel, Field
from supabase import Client

from inspection.errors import ErrorType, InspectionError, ErrorContext, SubmissionError
from inspection.storage import externalize_images
from inspection.submission import SubmissionPayload

logger = logging.getLogger(__name__)

SECTION_PHOTOS = "photos"
SECTION_DAMAGES = "damages"
SECTION_CONSENT = "consent"
SECONDARY_SECTIONS = (SECTION_PHOTOS, SECTION_DAMAGES, SECTION_CONSENT)


class SubmissionReceipt(BaseModel):
    reference_id: str
    failed_sections: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_sections


def save_inspection(supabase: Client, record: dict[str, Any]) -> None:
    supabase.table("inspections").upsert(record).execute()


def save_photos(supabase: Client, records: list[dict[str, Any]]) -> None:
    if records:
        supabase.table("photos").insert(records).execute()


def save_damages(supabase: Client, records: list[dict[str, Any]]) -> None:
    if records:
        supabase.table("damages").insert(records).execute()


def save_consent(supabase: Client, record: dict[str, Any] | None) -> None:
    if record:
        supabase.table("consents").insert(record).execute()


def _section_writers(supabase: Client, rows: dict[str, Any]) -> dict[str, Callable[[], None]]:
    return {
        SECTION_PHOTOS: lambda: save_photos(supabase, rows["photos"]),
        SECTION_DAMAGES: lambda: save_damages(supabase, rows["damages"]),
        SECTION_CONSENT: lambda: save_consent(supabase, rows["consent"]),
    }


def _write_sections(
    supabase: Client,
    payload: SubmissionPayload,
    sections: Iterable[str],
) -> list[str]:
    rows = payload.rows()
    writers = _section_writers(supabase, rows)
    failed = []
    for section in sections:
        try:
            writers[section]()
        except Exception as e:  # best-effort: record the section for retry and keep going
            logger.error("Failed to save %s for inspection %s: %s", section, payload.reference_id, e)
            failed.append(section)
    return failed


def submit_payload(supabase: Client, payload: SubmissionPayload) -> SubmissionReceipt:
    """
    Write the inspection row, then every secondary section.

    Raises:
        SubmissionError: the inspection row could not be written
    """
    try:
        save_inspection(supabase, payload.rows()["inspection"])
    except Exception as e:
        logger.error("Failed to save inspection %s: %s", payload.reference_id, e)
        raise SubmissionError(
            f"Could not save inspection {payload.reference_id}: {e}",
            reference_id=payload.reference_id,
            original_exception=e,
        ) from e

    failed = _write_sections(supabase, payload, SECONDARY_SECTIONS)
    if failed:
        logger.warning("Inspection %s saved with failed sections: %s", payload.reference_id, ", ".join(failed))
    else:
        logger.info("Inspection %s saved", payload.reference_id)
    return SubmissionReceipt(reference_id=payload.reference_id, failed_sections=failed)


def retry_sections(supabase: Client, payload: SubmissionPayload, sections: Iterable[str]) -> SubmissionReceipt:
    """Rewrite only the given secondary sections under the same reference id."""
    sections = list(sections)
    unknown = [s for s in sections if s not in SECONDARY_SECTIONS]
    if unknown:
        raise ValueError(f"Unknown submission section(s): {', '.join(unknown)}")
    if not sections:
        raise InspectionError(ErrorContext(
            error_type=ErrorType.NOTHING_TO_RETRY,
            message=f"Inspection {payload.reference_id} has no failed sections",
            recoverable=True,
        ))
    failed = _write_sections(supabase, payload, sections)
    return SubmissionReceipt(reference_id=payload.reference_id, failed_sections=failed)


class SupabaseSubmitter:
    """
    Sends payloads to Supabase, optionally moving inline images to storage first.

    Images are uploaded once per reference id; retries reuse the stored paths
    until a submission completes.
    """

    def __init__(
        self,
        client_factory: Callable[[], Client],
        bucket: str = "inspection-photos",
        upload_images: bool = False,
    ):
        self._client_factory = client_factory
        self.bucket = bucket
        self.upload_images = upload_images
        self._externalized: dict[str, SubmissionPayload] = {}

    def _client(self, reference_id: str) -> Client:
        try:
            return self._client_factory()
        except RuntimeError as e:
            raise SubmissionError(str(e), reference_id=reference_id, original_exception=e) from e

    def _prepared(self, supabase: Client, payload: SubmissionPayload) -> SubmissionPayload:
        if not self.upload_images:
            return payload
        cached = self._externalized.get(payload.reference_id)
        if cached is not None:
            return cached
        try:
            prepared = externalize_images(supabase, self.bucket, payload)
        except Exception as e:
            logger.error("Failed to upload images for inspection %s: %s", payload.reference_id, e)
            raise SubmissionError(
                f"Could not upload images for inspection {payload.reference_id}: {e}",
                reference_id=payload.reference_id,
                original_exception=e,
            ) from e
        self._externalized[payload.reference_id] = prepared
        return prepared

    def _settled(self, receipt: SubmissionReceipt) -> SubmissionReceipt:
        # Nothing left to retry for this reference id
        if receipt.complete:
            self._externalized.pop(receipt.reference_id, None)
        return receipt

    def submit(self, payload: SubmissionPayload) -> SubmissionReceipt:
        supabase = self._client(payload.reference_id)
        return self._settled(submit_payload(supabase, self._prepared(supabase, payload)))

    def retry(self, payload: SubmissionPayload, sections: Iterable[str]) -> SubmissionReceipt:
        supabase = self._client(payload.reference_id)
        return self._settled(retry_sections(supabase, self._prepared(supabase, payload), sections))
