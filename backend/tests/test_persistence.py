"""Tests for writing submissions to Supabase (client mocked)."""
from unittest.mock import MagicMock

import pytest

from conftest import FIXED_NOW, make_image
from inspection import document
from inspection.errors import ErrorType, InspectionError, SubmissionError
from inspection.image_utils import to_data_url
from inspection.models import AccidentType, PartyRole
from inspection.persistence import (
    SECONDARY_SECTIONS,
    SupabaseSubmitter,
    retry_sections,
    submit_payload,
)
from inspection.submission import assemble


def fake_supabase(failing=()):
    """MagicMock client whose tables raise on execute() when listed in `failing`."""
    client = MagicMock()
    tables = {}

    def table(name):
        if name not in tables:
            mock = MagicMock(name=f"table:{name}")
            if name in failing:
                error = RuntimeError(f"{name} unavailable")
                mock.upsert.return_value.execute.side_effect = error
                mock.insert.return_value.execute.side_effect = error
            tables[name] = mock
        return tables[name]

    client.table.side_effect = table
    client.tables = tables
    return client


@pytest.fixture
def payload():
    """Payload with one vehicle photo and an accepted, signed consent."""
    inspection = document.scaffold_inspection(FIXED_NOW, "CR", AccidentType.COLLISION)
    front = inspection.insured_vehicle.photos[0]
    inspection = document.with_vehicle_photo_updated(
        inspection, PartyRole.INSURED, front.id, FIXED_NOW, {"image_url": to_data_url(make_image())}
    )
    inspection = document.with_consent(
        inspection, FIXED_NOW, {"accepted": True, "signature_url": to_data_url(b"sig", "image/png")}
    )
    return assemble(inspection, FIXED_NOW)


def test_submit_writes_every_table(payload):
    supabase = fake_supabase()
    receipt = submit_payload(supabase, payload)

    assert receipt.complete
    assert receipt.reference_id == payload.reference_id
    supabase.tables["inspections"].upsert.assert_called_once()
    assert supabase.tables["inspections"].upsert.call_args.args[0]["id"] == payload.reference_id
    supabase.tables["photos"].insert.assert_called_once()
    supabase.tables["consents"].insert.assert_called_once()
    # No damage findings, so no damages write
    assert "damages" not in supabase.tables


def test_primary_failure_raises_submission_error(payload):
    supabase = fake_supabase(failing={"inspections"})

    with pytest.raises(SubmissionError) as exc_info:
        submit_payload(supabase, payload)

    assert exc_info.value.reference_id == payload.reference_id
    assert exc_info.value.context.error_type == ErrorType.PERSISTENCE_FAILED
    assert "photos" not in supabase.tables


def test_secondary_failures_are_reported_not_raised(payload):
    supabase = fake_supabase(failing={"photos", "consents"})
    receipt = submit_payload(supabase, payload)

    assert not receipt.complete
    assert receipt.failed_sections == ["photos", "consent"]


def test_retry_rewrites_only_requested_sections(payload):
    supabase = fake_supabase()
    receipt = retry_sections(supabase, payload, ["photos"])

    assert receipt.complete
    assert "inspections" not in supabase.tables
    assert "consents" not in supabase.tables
    supabase.tables["photos"].insert.assert_called_once()


def test_retry_can_fail_again(payload):
    receipt = retry_sections(fake_supabase(failing={"consents"}), payload, SECONDARY_SECTIONS)
    assert receipt.failed_sections == ["consent"]


def test_retry_rejects_unknown_sections(payload):
    with pytest.raises(ValueError, match="inspection"):
        retry_sections(fake_supabase(), payload, ["inspection"])


def test_retry_with_nothing_to_do(payload):
    with pytest.raises(InspectionError) as exc_info:
        retry_sections(fake_supabase(), payload, [])
    assert exc_info.value.context.error_type == ErrorType.NOTHING_TO_RETRY


def test_submitter_wraps_missing_configuration(payload):
    factory = MagicMock(side_effect=RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"))
    submitter = SupabaseSubmitter(factory)

    with pytest.raises(SubmissionError, match="SUPABASE_URL"):
        submitter.submit(payload)


def test_submitter_uploads_images_once_per_reference(payload):
    supabase = fake_supabase(failing={"consents"})
    submitter = SupabaseSubmitter(lambda: supabase, bucket="photos-bucket", upload_images=True)

    receipt = submitter.submit(payload)
    assert receipt.failed_sections == ["consent"]
    uploads = supabase.storage.from_.return_value.upload.call_count
    # The vehicle photo and the signature
    assert uploads == 2
    supabase.storage.from_.assert_called_with("photos-bucket")

    photo_row = supabase.tables["photos"].insert.call_args.args[0][0]
    assert photo_row["image_url"].startswith(f"inspections/{payload.reference_id}/vehicle-")

    submitter.retry(payload, receipt.failed_sections)
    assert supabase.storage.from_.return_value.upload.call_count == uploads


def test_upload_failure_is_a_submission_error(payload):
    supabase = fake_supabase()
    supabase.storage.from_.return_value.upload.side_effect = RuntimeError("bucket missing")
    submitter = SupabaseSubmitter(lambda: supabase, upload_images=True)

    with pytest.raises(SubmissionError, match="upload images"):
        submitter.submit(payload)
    assert "inspections" not in supabase.tables


def test_completed_submission_releases_uploaded_images(payload):
    supabase = fake_supabase(failing={"consents"})
    submitter = SupabaseSubmitter(lambda: supabase, upload_images=True)
    upload = supabase.storage.from_.return_value.upload

    receipt = submitter.submit(payload)
    assert upload.call_count == 2

    supabase.tables["consents"].insert.return_value.execute.side_effect = None
    assert submitter.retry(payload, receipt.failed_sections).complete
    assert upload.call_count == 2

    # The cached paths were released, so a later send uploads again
    submitter.submit(payload)
    assert upload.call_count == 4
