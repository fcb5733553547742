"""
Step controllers for the inspection wizard.

`InspectionWizard` turns user actions (captures, typed fields, navigation)
into store updates, calling the classifier, extractor, damage analyzer,
geocoder and submitter along the way. Slow results (OCR, damage analysis,
geocoding) are merged into the document by entity id, never by position, so
a result that arrives after the user moved on lands where it belongs.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Iterable, Protocol

from pydantic import BaseModel, Field

from inspection import document, sequencer
from inspection.classifier import CaptureClassifier, CaptureSlot, ClassificationResult, find_duplicate
from inspection.countries import get_country
from inspection.errors import EntityNotFoundError, ErrorContext, ErrorType, InspectionError, StepBlockedError
from inspection.forms import (
    ContactForm,
    IdentityForm,
    SceneForm,
    VehicleDataForm,
    vehicle_data_warnings,
)
from inspection.geolocation import (
    MANUAL_ENTRY_MESSAGE,
    GeocodeResult,
    GeocodeStatus,
    GeoPosition,
    ReverseGeocoder,
)
from inspection.image_utils import (
    PreparedImage,
    image_bytes,
    image_fingerprint,
    normalize_image_bytes,
    prepare_capture,
    validate_image_content,
)
from inspection.logging_config import clear_log_context, set_log_context
from inspection.models import (
    AccidentType,
    DamageAnalysis,
    DamagePhoto,
    ExtractedIdData,
    Inspection,
    InspectionStatus,
    PartyRole,
    Person,
    PhotoAngle,
    SceneLocation,
    VehiclePhoto,
)
from inspection.ocr import (
    FieldExtractor,
    IdentifierExtraction,
    IdentifierKind,
    IdentityExtraction,
    TesseractRecognizer,
)
from inspection.persistence import SubmissionReceipt, SupabaseSubmitter
from inspection.scoring import DEFAULT_WEIGHTS, ScoringWeights
from inspection.settings import Settings, get_settings
from inspection.snapshot import JsonFileSnapshotStorage
from inspection.store import InspectionStore
from inspection.submission import SCENE_PHOTO_LABEL, SubmissionPayload, assemble
from inspection.supabase_client import get_supabase_client
from inspection.vision import analyze_damage, detect_capture_category, extract_identity_fields

logger = logging.getLogger(__name__)

VALIDATION_THRESHOLD = 0.7

DamageAnalyzer = Callable[[str], DamageAnalysis]


class Submitter(Protocol):
    def submit(self, payload: SubmissionPayload) -> SubmissionReceipt: ...

    def retry(self, payload: SubmissionPayload, sections: Iterable[str]) -> SubmissionReceipt: ...


class IdentitySide(str, Enum):
    FRONT = "front"
    BACK = "back"


class CaptureResult(BaseModel):
    """Outcome of a capture. `stored` is False when the classifier rejected it and it was not forced."""

    stored: bool
    photo_id: str | None = None
    classification: ClassificationResult
    duplicate_of: str | None = None
    identifier: IdentifierExtraction | None = None
    analysis: DamageAnalysis | None = None


class VehicleDataResult(BaseModel):
    inspection: Inspection
    warnings: list[str] = Field(default_factory=list)


class SceneLocationResult(BaseModel):
    latitude: float | None = None
    longitude: float | None = None
    address: str = ""
    geocode_status: GeocodeStatus | None = None
    manual_entry_required: bool = False
    message: str | None = None


class SubmitResult(BaseModel):
    reference_id: str
    status: InspectionStatus
    failed_sections: list[str] = Field(default_factory=list)


class WizardStatus(BaseModel):
    step: int
    progress: dict[str, Any]
    can_continue: bool
    missing: list[str] = Field(default_factory=list)
    pending_submission: str | None = None
    failed_sections: list[str] = Field(default_factory=list)
    inspection: Inspection


class InspectionWizard:
    def __init__(
        self,
        store: InspectionStore,
        classifier: CaptureClassifier,
        extractor: FieldExtractor,
        damage_analyzer: DamageAnalyzer | None = None,
        geocoder: ReverseGeocoder | None = None,
        submitter: Submitter | None = None,
        max_image_bytes: int = 1024 * 1024,
        max_image_dimension: int = 1920,
        sla_hours: int = 24,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
    ):
        self.store = store
        self._classifier = classifier
        self._extractor = extractor
        self._damage_analyzer = damage_analyzer
        self._geocoder = geocoder
        self._submitter = submitter
        self._max_image_bytes = max_image_bytes
        self._max_image_dimension = max_image_dimension
        self._sla_hours = sla_hours
        self._weights = weights

        # Kept in memory between a failed submission and its retry.
        # One submission or retry runs at a time.
        self._submit_lock = threading.Lock()
        self._pending: SubmissionPayload | None = None
        self._primary_saved = False
        self._failed_sections: list[str] = []

    @property
    def inspection(self) -> Inspection:
        return self.store.inspection

    # ---- Start ----

    def start(
        self,
        country: str,
        accident_type: AccidentType = AccidentType.COLLISION,
        policy_number: str | None = None,
        claim_number: str | None = None,
    ) -> Inspection:
        info = get_country(country)
        if info is None:
            raise ValueError(f"Unsupported country: {country!r}")

        self._clear_submission()
        inspection = self.store.init_inspection(info.code, accident_type)
        extra = {k: v for k, v in (("policy_number", policy_number), ("claim_number", claim_number)) if v}
        if extra:
            inspection = self.store.update_inspection(**extra)

        set_log_context(inspection_id=inspection.id)
        logger.info("Started %s inspection %s in %s", accident_type.value, inspection.id, info.code)
        return inspection

    # ---- Identity ----

    def capture_identity_image(
        self,
        side: IdentitySide,
        content: bytes,
        content_type: str | None,
        role: PartyRole = PartyRole.INSURED,
        force: bool = False,
    ) -> CaptureResult:
        self._person(role)
        slot = CaptureSlot.IDENTITY_FRONT if side == IdentitySide.FRONT else CaptureSlot.IDENTITY_BACK
        classification, prepared = self._classify_and_prepare(content, content_type, slot, force)
        if prepared is None:
            return CaptureResult(stored=False, classification=classification)

        field = "front_image" if side == IdentitySide.FRONT else "back_image"
        self.store.update_identity(role, **{field: prepared.data_url})
        return CaptureResult(stored=True, classification=classification)

    def extract_identity(self, role: PartyRole = PartyRole.INSURED) -> IdentityExtraction:
        identity = self._person(role).identity
        if not identity.front_image:
            raise ValueError("Capture the front of the identity document first")

        result = self._extractor.extract_identity(identity.front_image, identity.back_image, self.inspection.country)
        if result.fields is not None:
            self.store.update_identity(
                role,
                extracted_data=result.fields,
                confidence=result.confidence,
                validated=result.confidence >= VALIDATION_THRESHOLD,
            )
        else:
            logger.info("No identity fields extracted for %s; manual entry required", role.value)
        return result

    def confirm_identity(self, role: PartyRole = PartyRole.INSURED, **fields: Any) -> Inspection:
        """Accept user-typed or corrected identity fields."""
        form = IdentityForm(**fields)
        current = self._person(role).identity.extracted_data
        merged = document.merge_fields(current or ExtractedIdData(), {
            k: v for k, v in form.changes().items() if v is not None
        })
        validated = bool(merged.full_name.strip() and merged.id_number.strip())
        return self.store.update_identity(role, extracted_data=merged, validated=validated)

    # ---- Vehicle photos ----

    def capture_vehicle_photo(
        self,
        photo_id: str,
        content: bytes,
        content_type: str | None,
        role: PartyRole = PartyRole.INSURED,
        force: bool = False,
    ) -> CaptureResult:
        photo = self._vehicle_photo(role, photo_id)
        classification, prepared = self._classify_and_prepare(
            content, content_type, CaptureSlot.for_angle(photo.angle), force,
        )
        if prepared is None:
            return CaptureResult(stored=False, photo_id=photo_id, classification=classification)

        duplicate_of = self._find_duplicate_photo(role, photo_id, prepared.fingerprint)
        self.store.update_vehicle_photo(
            role,
            photo_id,
            image_url=prepared.data_url,
            thumbnail_url=prepared.thumbnail_url,
            timestamp=self.store.now(),
            metadata=prepared.metadata,
        )

        identifier = None
        vehicle = self.inspection.vehicle(role)
        if photo.angle == PhotoAngle.REAR and vehicle is not None and not vehicle.plate:
            identifier = self._read_plate(role, prepared.data_url)

        return CaptureResult(
            stored=True,
            photo_id=photo_id,
            classification=classification,
            duplicate_of=duplicate_of,
            identifier=identifier,
        )

    def clear_vehicle_photo(self, photo_id: str, role: PartyRole = PartyRole.INSURED) -> Inspection:
        """Empty a checklist slot so it can be retaken. The slot itself stays."""
        self._vehicle_photo(role, photo_id)
        return self.store.update_vehicle_photo(
            role, photo_id, image_url=None, thumbnail_url=None, timestamp=None, metadata=None,
        )

    def scan_vin(
        self,
        content: bytes,
        content_type: str | None,
        role: PartyRole = PartyRole.INSURED,
    ) -> IdentifierExtraction:
        if self.inspection.vehicle(role) is None:
            raise EntityNotFoundError("vehicle", role.value)
        normalized = self._normalized(content, content_type)
        result = self._extractor.extract_vehicle_identifier(normalized, IdentifierKind.VIN)
        if result.value:
            self.store.update_vehicle(role, vin=result.value)
        return result

    def _read_plate(self, role: PartyRole, image: str) -> IdentifierExtraction:
        country = self.inspection.country
        result = self._extractor.extract_vehicle_identifier(image, IdentifierKind.PLATE, country)
        if result.value:
            # The user may have typed a plate while OCR was running
            if not self.store.fill_vehicle_field(role, "plate", result.value):
                logger.info("Plate already set for %s vehicle; OCR result discarded", role.value)
        return result

    # ---- Vehicle data ----

    def save_vehicle_data(self, role: PartyRole = PartyRole.INSURED, **fields: Any) -> VehicleDataResult:
        self._require_party(role)
        form = VehicleDataForm(**fields)
        warnings = vehicle_data_warnings(form, self.inspection.country)
        changes = form.changes()
        inspection = self.store.update_vehicle(role, **changes) if changes else self.inspection
        return VehicleDataResult(inspection=inspection, warnings=warnings)

    # ---- Damage photos ----

    def add_damage_photo(
        self,
        content: bytes,
        content_type: str | None,
        force: bool = False,
        analyze: bool = True,
    ) -> CaptureResult:
        classification, prepared = self._classify_and_prepare(content, content_type, CaptureSlot.DAMAGE, force)
        if prepared is None:
            return CaptureResult(stored=False, classification=classification)

        photo = DamagePhoto(id=document.new_id(), image_url=prepared.data_url, timestamp=self.store.now())
        self.store.add_damage_photo(photo)

        analysis = self.analyze_damage_photo(photo.id) if analyze else None
        return CaptureResult(stored=True, photo_id=photo.id, classification=classification, analysis=analysis)

    def analyze_damage_photo(self, photo_id: str) -> DamageAnalysis | None:
        """Run damage analysis and merge it into the photo with that id, if it still exists."""
        photo = document.find_damage_photo(self.inspection, photo_id)
        if photo is None:
            raise EntityNotFoundError("damage photo", photo_id)
        if self._damage_analyzer is None:
            return None

        try:
            analysis = self._damage_analyzer(photo.image_url)
        except Exception as e:  # analysis is optional; the photo stays without it
            logger.warning("Damage analysis failed for photo %s: %s", photo_id, e)
            return None

        if document.find_damage_photo(self.inspection, photo_id) is None:
            logger.info("Damage photo %s was removed before its analysis finished", photo_id)
            return analysis
        self.store.update_damage_photo(photo_id, analysis=analysis)
        return analysis

    def remove_damage_photo(self, photo_id: str) -> Inspection:
        if document.find_damage_photo(self.inspection, photo_id) is None:
            raise EntityNotFoundError("damage photo", photo_id)
        return self.store.remove_damage_photo(photo_id)

    # ---- Third party ----

    def set_third_party(self, present: bool) -> Inspection:
        return self.store.set_has_third_party(present)

    def save_third_party(
        self,
        person: dict[str, Any] | None = None,
        identity: dict[str, Any] | None = None,
        vehicle: dict[str, Any] | None = None,
    ) -> VehicleDataResult:
        if not self.inspection.has_third_party:
            raise ValueError("No third party has been declared")

        if person:
            changes = ContactForm(**person).changes()
            if changes:
                self.store.update_person(PartyRole.THIRD_PARTY, **changes)
        if identity:
            self.confirm_identity(PartyRole.THIRD_PARTY, **identity)
        if vehicle:
            return self.save_vehicle_data(PartyRole.THIRD_PARTY, **vehicle)
        return VehicleDataResult(inspection=self.inspection)

    # ---- Scene ----

    def locate_scene(self, latitude: float, longitude: float) -> SceneLocationResult:
        position = GeoPosition(latitude=latitude, longitude=longitude)
        self._merge_location(latitude=position.latitude, longitude=position.longitude)

        if self._geocoder is None:
            return SceneLocationResult(
                latitude=position.latitude,
                longitude=position.longitude,
                address=self._scene_location().address,
                manual_entry_required=not self._scene_location().address,
            )

        geocoded: GeocodeResult = self._geocoder.reverse(position)
        if geocoded.status == GeocodeStatus.SUCCESS and geocoded.address:
            self._merge_location(address=geocoded.address)
            return SceneLocationResult(
                latitude=position.latitude,
                longitude=position.longitude,
                address=geocoded.address,
                geocode_status=geocoded.status,
            )

        return SceneLocationResult(
            latitude=position.latitude,
            longitude=position.longitude,
            address=self._scene_location().address,
            geocode_status=geocoded.status,
            manual_entry_required=True,
            message=geocoded.error or MANUAL_ENTRY_MESSAGE,
        )

    def record_location_failure(self, reason: str | None = None) -> SceneLocationResult:
        """The device could not provide a position; the address is entered by hand."""
        logger.warning("Device location unavailable: %s", reason or "no reason given")
        if self.inspection.accident_scene is None:
            self.store.update_accident_scene()
        location = self._scene_location()
        return SceneLocationResult(
            latitude=location.latitude,
            longitude=location.longitude,
            address=location.address,
            manual_entry_required=True,
            message=MANUAL_ENTRY_MESSAGE,
        )

    def save_scene(self, **fields: Any) -> Inspection:
        form = SceneForm(**fields)
        location_changes = form.location_changes()
        if "address" in location_changes:
            location_changes["address"] = location_changes["address"] or ""
        if location_changes:
            self._merge_location(**location_changes)
        return self.store.update_accident_scene(**form.scene_changes())

    def add_scene_photo(self, content: bytes, content_type: str | None, force: bool = False) -> CaptureResult:
        classification, prepared = self._classify_and_prepare(content, content_type, CaptureSlot.SCENE, force)
        if prepared is None:
            return CaptureResult(stored=False, classification=classification)

        if self.inspection.accident_scene is None:
            self.store.update_accident_scene()
        photo = VehiclePhoto(
            id=document.new_id(),
            angle=PhotoAngle.SCENE,
            label=SCENE_PHOTO_LABEL,
            image_url=prepared.data_url,
            thumbnail_url=prepared.thumbnail_url,
            timestamp=self.store.now(),
            metadata=prepared.metadata,
        )
        self.store.add_scene_photo(photo)
        return CaptureResult(stored=True, photo_id=photo.id, classification=classification)

    def remove_scene_photo(self, photo_id: str) -> Inspection:
        scene = self.inspection.accident_scene
        if scene is None or not any(p.id == photo_id for p in scene.photos):
            raise EntityNotFoundError("scene photo", photo_id)
        return self.store.remove_scene_photo(photo_id)

    def _scene_location(self) -> SceneLocation:
        scene = self.inspection.accident_scene
        return scene.location if scene else SceneLocation()

    def _merge_location(self, **changes: Any) -> Inspection:
        location = document.merge_fields(self._scene_location(), changes)
        return self.store.update_accident_scene(location=location)

    # ---- Summary ----

    def sign_consent(self, signature: str, accepted: bool = True, ip_address: str | None = None) -> Inspection:
        if not signature:
            raise ValueError("A signature is required")
        return self.store.update_consent(
            accepted=accepted,
            signature_url=signature,
            timestamp=self.store.now(),
            ip_address=ip_address,
        )

    def submit(self) -> SubmitResult:
        """
        Assemble and persist the inspection.

        Raises:
            StepBlockedError: the summary requirements do not hold
            SubmissionError: the inspection record could not be written; the
                assembled payload is kept for retry_submission()
        """
        if self._submitter is None:
            raise RuntimeError("No submitter configured")
        with self._submit_lock:
            # Checked under the lock: a concurrent submit may have just finished
            inspection = self.inspection
            if inspection.status == InspectionStatus.SUBMITTED:
                raise ValueError(f"Inspection {inspection.id} was already submitted")

            missing = sequencer.missing_requirements(sequencer.Step.SUMMARY, inspection)
            if missing:
                raise StepBlockedError(sequencer.Step.SUMMARY, missing)

            if self._pending is None:
                self._pending = assemble(inspection, self.store.now(), self._sla_hours, self._weights)
            return self._send(self._pending)

    def retry_submission(self) -> SubmitResult:
        """Resubmit the kept payload, or only its failed sections once the inspection row is saved."""
        if self._submitter is None:
            raise RuntimeError("No submitter configured")
        with self._submit_lock:
            payload = self._pending
            if payload is None:
                raise InspectionError(ErrorContext(
                    error_type=ErrorType.NOTHING_TO_RETRY,
                    message="There is no submission to retry",
                    recoverable=True,
                ))
            if not self._primary_saved:
                return self._send(payload)

            receipt = self._submitter.retry(payload, self._failed_sections)
            return self._record_receipt(receipt)

    def _send(self, payload: SubmissionPayload) -> SubmitResult:
        receipt = self._submitter.submit(payload)
        self._primary_saved = True
        self.store.update_inspection(status=InspectionStatus.SUBMITTED, submitted_at=self.store.now())
        return self._record_receipt(receipt)

    def _record_receipt(self, receipt: SubmissionReceipt) -> SubmitResult:
        self._failed_sections = list(receipt.failed_sections)
        if receipt.complete:
            logger.info("Inspection submitted as %s", receipt.reference_id)
            self._pending = None
        return SubmitResult(
            reference_id=receipt.reference_id,
            status=self.inspection.status,
            failed_sections=receipt.failed_sections,
        )

    def _clear_submission(self) -> None:
        with self._submit_lock:
            self._pending = None
            self._primary_saved = False
            self._failed_sections = []

    # ---- Navigation ----

    def continue_step(self) -> int:
        step = self.store.current_step
        if not sequencer.advance(self.store):
            missing = sequencer.missing_requirements(step, self.inspection)
            if missing:
                raise StepBlockedError(step, missing)
        set_log_context(step=self.store.current_step)
        return self.store.current_step

    def back(self) -> int:
        step = sequencer.go_back(self.store)
        set_log_context(step=step)
        return step

    def reset(self) -> Inspection:
        self._clear_submission()
        clear_log_context()
        return self.store.reset_inspection()

    def status(self) -> WizardStatus:
        step = self.store.current_step
        inspection = self.inspection
        missing = sequencer.missing_requirements(min(step, sequencer.LAST_STEP), inspection)
        return WizardStatus(
            step=step,
            progress=sequencer.progress(step),
            can_continue=sequencer.can_advance(self.store),
            missing=missing,
            pending_submission=self._pending.reference_id if self._pending else None,
            failed_sections=self._failed_sections,
            inspection=inspection,
        )

    # ---- internals ----

    def _require_party(self, role: PartyRole) -> None:
        if role == PartyRole.THIRD_PARTY and not self.inspection.has_third_party:
            raise ValueError("No third party has been declared")

    def _person(self, role: PartyRole) -> Person:
        """The party's person. Identity data is never recorded for a missing person."""
        self._require_party(role)
        person = self.inspection.person(role)
        if person is None:
            raise EntityNotFoundError("person", role.value)
        return person

    def _vehicle_photo(self, role: PartyRole, photo_id: str) -> VehiclePhoto:
        if self.inspection.vehicle(role) is None:
            raise EntityNotFoundError("vehicle", role.value)
        photo = document.find_vehicle_photo(self.inspection, role, photo_id)
        if photo is None:
            raise EntityNotFoundError("vehicle photo", photo_id)
        return photo

    def _normalized(self, content: bytes, content_type: str | None) -> bytes:
        valid, message = validate_image_content(content)
        if not valid:
            raise ValueError(message)
        normalized, _ = normalize_image_bytes(content, content_type)
        return normalized

    def _classify_and_prepare(
        self,
        content: bytes,
        content_type: str | None,
        slot: CaptureSlot,
        force: bool,
    ) -> tuple[ClassificationResult, PreparedImage | None]:
        normalized = self._normalized(content, content_type)
        classification = self._classifier.classify(normalized, slot)
        if not classification.is_accepted and not force:
            logger.info(
                "Capture for %s rejected as %s: %s",
                slot.value, classification.detected_category.value, classification.mismatch_reason,
            )
            return classification, None

        prepared = prepare_capture(
            normalized,
            "image/jpeg",
            max_bytes=self._max_image_bytes,
            max_dimension=self._max_image_dimension,
        )
        return classification, prepared

    def _find_duplicate_photo(self, role: PartyRole, photo_id: str, fingerprint: str) -> str | None:
        vehicle = self.inspection.vehicle(role)
        others = {}
        for photo in vehicle.photos if vehicle else []:
            if photo.id == photo_id or not photo.image_url or not photo.image_url.startswith("data:"):
                continue
            others[photo.id] = image_fingerprint(image_bytes(photo.image_url))
        duplicate = find_duplicate(fingerprint, others)
        if duplicate:
            logger.info("Capture for photo %s looks like a duplicate of %s", photo_id, duplicate)
        return duplicate


def create_wizard(settings: Settings | None = None, store: InspectionStore | None = None) -> InspectionWizard:
    """Wire a wizard from settings. Remote collaborators are only used when configured."""
    settings = settings or get_settings()
    store = store or InspectionStore(JsonFileSnapshotStorage(settings.snapshot_path))
    use_openai = settings.openai_configured

    classifier = CaptureClassifier(
        detector=detect_capture_category if use_openai and settings.enable_vision_classifier else None,
    )
    extractor = FieldExtractor(
        TesseractRecognizer(settings.tesseract_cmd, settings.ocr_timeout_seconds),
        remote_identity=(
            extract_identity_fields if use_openai and settings.enable_remote_identity_extraction else None
        ),
    )
    return InspectionWizard(
        store=store,
        classifier=classifier,
        extractor=extractor,
        damage_analyzer=analyze_damage if use_openai and settings.enable_damage_analysis else None,
        geocoder=ReverseGeocoder(
            url=settings.geocoder_url,
            timeout=settings.geocoder_timeout_seconds,
            user_agent=settings.geocoder_user_agent,
        ),
        submitter=SupabaseSubmitter(
            get_supabase_client,
            bucket=settings.supabase_storage_bucket,
            upload_images=settings.upload_images_to_storage,
        ),
        max_image_bytes=settings.max_image_bytes,
        max_image_dimension=settings.max_image_dimension,
        sla_hours=settings.sla_hours,
        weights=settings.scoring_weights,
    )
