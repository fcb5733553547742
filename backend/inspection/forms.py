"""
Input schemas for the data-entry steps.

Every form only carries the fields the user actually sent: `changes()`
returns them for a shallow merge, so untouched fields keep their values.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from inspection.countries import is_valid_plate
from inspection.models import VehicleUsage
from inspection.validation import is_vin_format, sanitize_text, validate_vin_checksum


class _Form(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def _clean(v: Any) -> str | None:
    if v is None:
        return None
    return (sanitize_text(str(v)) or "").strip()


class VehicleDataForm(_Form):
    """Validated fields a user types for a vehicle."""

    plate: str | None = Field(None, max_length=15, description="Licence plate")
    vin: str | None = Field(None, max_length=17, description="Vehicle VIN (optional)")
    brand: str | None = Field(None, max_length=100, description="Vehicle make")
    model: str | None = Field(None, max_length=100, description="Vehicle model")
    year: int | None = Field(None, description="Vehicle year")
    version: str | None = Field(None, max_length=100, description="Trim/version")
    color: str | None = Field(None, max_length=50, description="Vehicle color")
    usage: VehicleUsage | None = None
    mileage: int | None = Field(None, description="Odometer reading in km")
    has_garage: bool | None = None

    @field_validator('year')
    @classmethod
    def validate_year(cls, v: Any) -> int | None:
        """Validate year is reasonable."""
        if v is None:
            return None
        latest = datetime.now(timezone.utc).year + 1
        if v < 1900 or v > latest:
            raise ValueError(f"Year must be between 1900 and {latest}")
        return v

    @field_validator('mileage')
    @classmethod
    def validate_mileage(cls, v: Any) -> int | None:
        if v is None:
            return None
        if v < 0:
            raise ValueError("Mileage cannot be negative")
        if v > 2_000_000:
            raise ValueError("Mileage cannot exceed 2,000,000")
        return v

    @field_validator('plate', 'vin', mode='before')
    @classmethod
    def normalize_identifier(cls, v: Any) -> str | None:
        if v is None:
            return None
        return str(v).strip().upper()

    @field_validator('vin')
    @classmethod
    def validate_vin(cls, v: str | None) -> str | None:
        if v and not is_vin_format(v):
            raise ValueError("VIN must be 17 characters and cannot contain I, O or Q")
        return v

    @field_validator('brand', 'model', 'version', 'color')
    @classmethod
    def validate_string_fields(cls, v: Any) -> str | None:
        return _clean(v)


def vehicle_data_warnings(form: VehicleDataForm, country: str | None) -> list[str]:
    """Advisory findings that never block saving."""
    warnings = []
    if form.plate and not is_valid_plate(form.plate, country):
        warnings.append(f"Plate '{form.plate}' does not match the {country or 'expected'} format")
    if form.vin and not validate_vin_checksum(form.vin):
        warnings.append("VIN check digit does not match")
    return warnings


class ContactForm(_Form):
    phone: str | None = Field(None, max_length=30)
    email: str | None = Field(None, max_length=200)
    address: str | None = Field(None, max_length=500)
    driver_license: str | None = Field(None, max_length=50)

    @field_validator('phone', 'email', 'address', 'driver_license')
    @classmethod
    def validate_string_fields(cls, v: Any) -> str | None:
        return _clean(v)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v and "@" not in v:
            raise ValueError("Email address is not valid")
        return v


class IdentityForm(_Form):
    """Identity fields typed or confirmed by the user."""

    full_name: str | None = Field(None, max_length=200)
    id_number: str | None = Field(None, max_length=50)
    birth_date: str | None = Field(None, max_length=20)
    expiry_date: str | None = Field(None, max_length=20)
    nationality: str | None = Field(None, max_length=50)
    gender: str | None = Field(None, max_length=10)

    @field_validator('full_name', 'id_number', 'birth_date', 'expiry_date', 'nationality', 'gender')
    @classmethod
    def validate_string_fields(cls, v: Any) -> str | None:
        return _clean(v)


class SceneForm(_Form):
    address: str | None = Field(None, max_length=500)
    latitude: float | None = Field(None, ge=-90.0, le=90.0)
    longitude: float | None = Field(None, ge=-180.0, le=180.0)
    description: str | None = None
    sketch_url: str | None = None
    has_witnesses: bool | None = None
    witness_info: str | None = Field(None, max_length=2000)
    police_present: bool | None = None
    police_report_number: str | None = Field(None, max_length=50)

    @field_validator('address', 'description', 'witness_info', 'police_report_number')
    @classmethod
    def validate_string_fields(cls, v: Any) -> str | None:
        return _clean(v)

    def location_changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.changes().items() if k in ("address", "latitude", "longitude")}

    def scene_changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.changes().items() if k not in ("address", "latitude", "longitude")}
