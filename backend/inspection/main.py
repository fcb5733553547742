import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import BackgroundTasks, Body, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from inspection.errors import (
    EntityNotFoundError,
    ErrorType,
    InspectionError,
    StepBlockedError,
    SubmissionError,
)
from inspection.forms import IdentityForm, SceneForm, VehicleDataForm
from inspection.image_utils import ALLOWED_CONTENT_TYPES, normalize_content_type
from inspection.logging_config import setup_logging
from inspection.models import AccidentType, PartyRole
from inspection.settings import get_settings
from inspection.wizard import IdentitySide, InspectionWizard, create_wizard

logger = logging.getLogger(__name__)


class StartRequest(BaseModel):
    country: str
    accident_type: AccidentType = AccidentType.COLLISION
    policy_number: str | None = None
    claim_number: str | None = None


class ThirdPartyToggle(BaseModel):
    present: bool


class ThirdPartyRequest(BaseModel):
    person: dict[str, Any] | None = None
    identity: dict[str, Any] | None = None
    vehicle: dict[str, Any] | None = None


class LocateRequest(BaseModel):
    latitude: float
    longitude: float


class LocationFailureRequest(BaseModel):
    reason: str | None = None


class ConsentRequest(BaseModel):
    signature: str
    accepted: bool = True


_wizard: InspectionWizard | None = None


def get_wizard() -> InspectionWizard:
    """Get wizard singleton instance."""
    global _wizard
    if _wizard is None:
        _wizard = create_wizard()
    return _wizard


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(level=settings.log_level, log_file=settings.log_file)
    logger.info("Inspection wizard API starting")
    yield


app = FastAPI(title="Accident Inspection Wizard API", version="0.1.0", lifespan=lifespan)


def _allowed_origins(raw: str | None) -> list[str]:
    origins = [o.strip() for o in (raw or "*").split(",") if o.strip()]
    if not origins or origins == ["*"]:
        return ["*"]
    return [o if o.startswith(("http://", "https://")) else f"https://{o}" for o in origins]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- error mapping ----

@app.exception_handler(StepBlockedError)
async def step_blocked_handler(request: Request, exc: StepBlockedError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.context.message, "missing": exc.missing})


@app.exception_handler(EntityNotFoundError)
async def not_found_handler(request: Request, exc: EntityNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": exc.context.message})


@app.exception_handler(SubmissionError)
async def submission_error_handler(request: Request, exc: SubmissionError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={
            "error": exc.context.message,
            "reference_id": exc.reference_id,
            "retry": "POST /api/inspection/submit/retry",
        },
    )


@app.exception_handler(InspectionError)
async def inspection_error_handler(request: Request, exc: InspectionError) -> JSONResponse:
    status_code = 409 if exc.context.error_type == ErrorType.NOTHING_TO_RETRY else 400
    return JSONResponse(status_code=status_code, content={"error": exc.context.message})


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


def _json(model: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(mode="json"))


def _inspection(wizard: InspectionWizard) -> JSONResponse:
    return JSONResponse(content={"inspection": wizard.inspection.model_dump(mode="json")})


async def _read_upload(photo: UploadFile) -> tuple[bytes, str | None]:
    """Check the upload's content type and size; return its bytes."""
    content_type = normalize_content_type(photo.content_type)
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValueError(f"Unsupported content type: {photo.content_type}")
    max_bytes = get_settings().max_upload_bytes
    if photo.size and photo.size > max_bytes:
        raise ValueError(f"Photo size exceeds {max_bytes // (1024 * 1024)}MB")
    content = await photo.read()
    if len(content) > max_bytes:
        raise ValueError(f"Photo size exceeds {max_bytes // (1024 * 1024)}MB")
    return content, content_type


def run_damage_analysis(wizard: InspectionWizard, photo_id: str) -> None:
    """Run damage analysis for BackgroundTasks. The photo may be gone by then."""
    try:
        wizard.analyze_damage_photo(photo_id)
    except EntityNotFoundError:
        logger.info("Damage photo %s removed before analysis started", photo_id)


# ---- health ----

@app.get("/healthz")
def healthz() -> dict:
    """Liveness check - is the service running?"""
    _ = get_settings()
    return {"ok": True}


@app.get("/readyz")
async def readiness_check() -> dict:
    """Readiness check - which remote collaborators are configured?"""
    settings = get_settings()
    checks = {
        "supabase": settings.supabase_configured,
        "openai": settings.openai_configured,
    }
    return {"status": "ready" if all(checks.values()) else "degraded", "checks": checks}


# ---- wizard ----

@app.get("/api/inspection")
async def get_status(wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    return _json(wizard.status())


@app.post("/api/inspection/start")
async def start_inspection(
    request: StartRequest = Body(...),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    await asyncio.to_thread(
        wizard.start, request.country, request.accident_type, request.policy_number, request.claim_number,
    )
    return JSONResponse(status_code=201, content={"inspection": wizard.inspection.model_dump(mode="json")})


@app.post("/api/inspection/reset")
async def reset_inspection(wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    await asyncio.to_thread(wizard.reset)
    return _inspection(wizard)


@app.post("/api/inspection/continue")
async def continue_step(wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    step = await asyncio.to_thread(wizard.continue_step)
    return JSONResponse(content={"step": step})


@app.post("/api/inspection/back")
async def back_step(wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    step = await asyncio.to_thread(wizard.back)
    return JSONResponse(content={"step": step})


# Identity

@app.post("/api/inspection/identity/{side}/image")
async def upload_identity_image(
    side: IdentitySide,
    photo: UploadFile = File(...),
    role: PartyRole = Form(default=PartyRole.INSURED),
    force: bool = Form(default=False),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    content, content_type = await _read_upload(photo)
    result = await asyncio.to_thread(wizard.capture_identity_image, side, content, content_type, role, force)
    return _json(result, status_code=201 if result.stored else 200)


@app.post("/api/inspection/identity/extract")
async def extract_identity(
    role: PartyRole = PartyRole.INSURED,
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    result = await asyncio.to_thread(wizard.extract_identity, role)
    return _json(result)


@app.put("/api/inspection/identity")
async def confirm_identity(
    fields: dict[str, Any] = Body(...),
    role: PartyRole = PartyRole.INSURED,
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    form = IdentityForm.model_validate(fields)
    await asyncio.to_thread(lambda: wizard.confirm_identity(role, **form.changes()))
    return _inspection(wizard)


# Vehicle

@app.post("/api/inspection/vehicle/photos/{photo_id}")
async def upload_vehicle_photo(
    photo_id: str,
    photo: UploadFile = File(...),
    role: PartyRole = Form(default=PartyRole.INSURED),
    force: bool = Form(default=False),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    content, content_type = await _read_upload(photo)
    result = await asyncio.to_thread(wizard.capture_vehicle_photo, photo_id, content, content_type, role, force)
    return _json(result, status_code=201 if result.stored else 200)


@app.delete("/api/inspection/vehicle/photos/{photo_id}")
async def clear_vehicle_photo(
    photo_id: str,
    role: PartyRole = PartyRole.INSURED,
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    await asyncio.to_thread(wizard.clear_vehicle_photo, photo_id, role)
    return _inspection(wizard)


@app.post("/api/inspection/vehicle/vin")
async def scan_vin(
    photo: UploadFile = File(...),
    role: PartyRole = Form(default=PartyRole.INSURED),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    content, content_type = await _read_upload(photo)
    result = await asyncio.to_thread(wizard.scan_vin, content, content_type, role)
    return _json(result)


@app.put("/api/inspection/vehicle")
async def save_vehicle_data(
    fields: dict[str, Any] = Body(...),
    role: PartyRole = PartyRole.INSURED,
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    form = VehicleDataForm.model_validate(fields)
    result = await asyncio.to_thread(lambda: wizard.save_vehicle_data(role, **form.changes()))
    return _json(result)


# Damage

@app.post("/api/inspection/damage/photos")
async def upload_damage_photo(
    background_tasks: BackgroundTasks,
    photo: UploadFile = File(...),
    force: bool = Form(default=False),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    content, content_type = await _read_upload(photo)
    result = await asyncio.to_thread(wizard.add_damage_photo, content, content_type, force, False)
    if result.stored:
        # The photo is listed right away; its analysis is merged by id when ready
        background_tasks.add_task(run_damage_analysis, wizard, result.photo_id)
    return _json(result, status_code=201 if result.stored else 200)


@app.post("/api/inspection/damage/photos/{photo_id}/analyze")
async def analyze_damage_photo(photo_id: str, wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    analysis = await asyncio.to_thread(wizard.analyze_damage_photo, photo_id)
    return JSONResponse(content={"analysis": analysis.model_dump(mode="json") if analysis else None})


@app.delete("/api/inspection/damage/photos/{photo_id}")
async def remove_damage_photo(photo_id: str, wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    await asyncio.to_thread(wizard.remove_damage_photo, photo_id)
    return _inspection(wizard)


# Third party

@app.put("/api/inspection/third-party/toggle")
async def toggle_third_party(
    request: ThirdPartyToggle = Body(...),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    await asyncio.to_thread(wizard.set_third_party, request.present)
    return _inspection(wizard)


@app.put("/api/inspection/third-party")
async def save_third_party(
    request: ThirdPartyRequest = Body(...),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    result = await asyncio.to_thread(wizard.save_third_party, request.person, request.identity, request.vehicle)
    return _json(result)


# Scene

@app.post("/api/inspection/scene/locate")
async def locate_scene(
    request: LocateRequest = Body(...),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    result = await asyncio.to_thread(wizard.locate_scene, request.latitude, request.longitude)
    return _json(result)


@app.post("/api/inspection/scene/location-failure")
async def location_failure(
    request: LocationFailureRequest = Body(default=LocationFailureRequest()),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    result = await asyncio.to_thread(wizard.record_location_failure, request.reason)
    return _json(result)


@app.put("/api/inspection/scene")
async def save_scene(
    fields: dict[str, Any] = Body(...),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    form = SceneForm.model_validate(fields)
    await asyncio.to_thread(lambda: wizard.save_scene(**form.changes()))
    return _inspection(wizard)


@app.post("/api/inspection/scene/photos")
async def upload_scene_photo(
    photo: UploadFile = File(...),
    force: bool = Form(default=False),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    content, content_type = await _read_upload(photo)
    result = await asyncio.to_thread(wizard.add_scene_photo, content, content_type, force)
    return _json(result, status_code=201 if result.stored else 200)


@app.delete("/api/inspection/scene/photos/{photo_id}")
async def remove_scene_photo(photo_id: str, wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    await asyncio.to_thread(wizard.remove_scene_photo, photo_id)
    return _inspection(wizard)


# Summary

@app.post("/api/inspection/consent")
async def sign_consent(
    http_request: Request,
    request: ConsentRequest = Body(...),
    wizard: InspectionWizard = Depends(get_wizard),
) -> JSONResponse:
    ip_address = http_request.client.host if http_request.client else None
    await asyncio.to_thread(wizard.sign_consent, request.signature, request.accepted, ip_address)
    return _inspection(wizard)


@app.post("/api/inspection/submit")
async def submit_inspection(wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    result = await asyncio.to_thread(wizard.submit)
    return _json(result, status_code=201)


@app.post("/api/inspection/submit/retry")
async def retry_submission(wizard: InspectionWizard = Depends(get_wizard)) -> JSONResponse:
    result = await asyncio.to_thread(wizard.retry_submission)
    return _json(result)


def run() -> None:
    import uvicorn

    uvicorn.run("inspection.main:app", host="0.0.0.0", port=get_settings().port)


if __name__ == "__main__":
    run()
