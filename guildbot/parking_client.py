"""HTTP executor for the mobile-parking permit endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from guildbot.config import ParkingConfig
from guildbot.schedule_store import ParkingProfile

logger = logging.getLogger(__name__)


class ExecutorError(Exception):
    """The parking request could not be confirmed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_parking_payload(profile: ParkingProfile, config: Optional[ParkingConfig] = None) -> Dict[str, Any]:
    cfg = config or ParkingConfig()
    return {
        "email": "",
        "PhoneNumber": f"{cfg.country_code}{profile.phone_number}",
        "VehicleRegistrationCountry": cfg.vehicle_country,
        "Duration": cfg.duration_minutes,
        "VehicleRegistration": profile.plate,
        "parkingAreas": [
            {
                "ParkingAreaId": cfg.area_id,
                "ParkingAreaKey": cfg.area_key,
            }
        ],
        "UId": cfg.client_uid,
        "Lang": "da",
    }


class MobileParkingClient:
    def __init__(self, config: Optional[ParkingConfig] = None, *, session: Optional[requests.Session] = None) -> None:
        self.config = config or ParkingConfig()
        self.session = session or requests.Session()

    def execute(self, profile: ParkingProfile) -> None:
        payload = build_parking_payload(profile, self.config)
        try:
            r = self.session.post(self.config.api_url, json=payload, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            logger.error("Parking request failed: %s", e)
            raise ExecutorError(f"Request failed: {e}") from e
        if not 200 <= r.status_code < 300:
            body = (r.text or "")[:200]
            logger.error("Parking API error: %s => %s", r.status_code, body)
            raise ExecutorError(f"API request failed: {r.status_code} - {body}", r.status_code)
        logger.info("Parking registered for plate %s", profile.plate)
