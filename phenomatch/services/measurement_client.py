"""
Measurement Service Client

HTTP client for the anthropometric measurement service:

    POST {base_url}/api/measurements   {"imageUrl": "..."}
        -> {"faceWidthToHeightRatio": 0.78, "nasalIndex": 0.66, ...,
            "landmarkCount": 478, "confidence": 0.95}

Measurement is optional. Transport errors, non-2xx responses and invalid
payloads are logged and returned as None.
"""

import logging
import os
from typing import Optional

import httpx
from pydantic import ValidationError

from phenomatch.matching.interfaces import MeasurementProvider
from phenomatch.models import AnthropometricProfile
from phenomatch.services.payloads import parse_signal_payload

logger = logging.getLogger(__name__)


class MeasurementServiceClient(MeasurementProvider):
    """
    Extract facial ratios through the measurement service.

    Args:
        client: Shared httpx.AsyncClient (owned by the caller).
        config: Dictionary with optional keys:
            - base_url: Service root (default http://127.0.0.1:5002)
            - timeout_sec: Request timeout (default 25)
    """

    def __init__(self, client: httpx.AsyncClient, config: dict = None):
        if config is None:
            config = {}
        self.client = client
        self.base_url = (
            os.environ.get("MEASUREMENT_SERVICE_URL")
            or config.get("base_url", "http://127.0.0.1:5002")
        ).rstrip("/")
        self.timeout_sec = float(config.get("timeout_sec", 25.0))

    async def measure(self, image_ref: str) -> Optional[AnthropometricProfile]:
        try:
            response = await self.client.post(
                f"{self.base_url}/api/measurements",
                json={"imageUrl": image_ref},
                timeout=self.timeout_sec,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Measurement service request failed: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Measurement service error ({response.status_code})")
            return None

        try:
            payload = parse_signal_payload("measurement", response.json())
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Measurement service returned an invalid payload: {e}")
            return None

        profile = payload.to_profile()
        if profile.landmark_count == 0:
            logger.warning("No face landmarks detected; measurement unavailable")
        return profile
