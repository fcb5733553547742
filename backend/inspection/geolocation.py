"""Reverse geocoding for the accident scene."""
from __future__ import annotations

import logging
from enum import Enum

import requests
from pydantic import BaseModel, Field

from inspection.errors import ErrorType, error_context_for

logger = logging.getLogger(__name__)

NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
MANUAL_ENTRY_MESSAGE = "Could not get the location. Please enter the address manually."


class GeoPosition(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class GeocodeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class GeocodeResult(BaseModel):
    status: GeocodeStatus
    address: str | None = None
    error: str | None = None


class ReverseGeocoder:
    """Nominatim-compatible reverse geocoder. Failures come back as a result, never raised."""

    def __init__(
        self,
        url: str = NOMINATIM_REVERSE_URL,
        timeout: float = 10.0,
        user_agent: str = "accident-inspection-wizard",
        session: requests.Session | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent

    def reverse(self, position: GeoPosition) -> GeocodeResult:
        try:
            response = self.session.get(
                self.url,
                params={"format": "json", "lat": position.latitude, "lon": position.longitude},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as e:
            logger.warning("Reverse geocoding timed out after %.1fs", self.timeout)
            return GeocodeResult(status=GeocodeStatus.FAILED, error=f"Geocoding timed out: {e}")
        except requests.exceptions.HTTPError as e:
            logger.warning("Reverse geocoding HTTP error: %s", e)
            return GeocodeResult(status=GeocodeStatus.FAILED, error=f"Geocoding error: {e.response.status_code}")
        except (requests.exceptions.RequestException, ValueError) as e:
            context = error_context_for(ErrorType.GEOLOCATION_FAILED, e, MANUAL_ENTRY_MESSAGE)
            logger.warning("Reverse geocoding failed: %s", context.message)
            return GeocodeResult(status=GeocodeStatus.FAILED, error=context.message)

        address = data.get("display_name") if isinstance(data, dict) else None
        if not address:
            return GeocodeResult(status=GeocodeStatus.FAILED, error="No address found for this position")
        return GeocodeResult(status=GeocodeStatus.SUCCESS, address=address)
