"""
Vision-Classifier Adapter

Timeout-bounded wrapper around the external vision-language classifier
(POST {base_url}/classify-url). The classifier is the least reliable
signal, so this adapter never raises: a timeout, a non-2xx response, a
transport error or a payload that fails validation all yield None.
"""

import asyncio
import logging
import os
from typing import Optional

import httpx
from pydantic import ValidationError

from phenomatch.matching.interfaces import VisionProvider
from phenomatch.services.payloads import VisionPayload, parse_signal_payload

logger = logging.getLogger(__name__)


class VisionClassifierAdapter(VisionProvider):
    """
    Classify an image with the vision LLM service.

    Args:
        client: Shared httpx.AsyncClient (owned by the caller).
        config: Dictionary with optional keys:
            - base_url: Service root; None disables classification
            - provider: Provider name passed to the service (default "gpt5")
            - timeout_sec: Per-call deadline in seconds (default 30)
    """

    def __init__(self, client: httpx.AsyncClient, config: dict = None):
        if config is None:
            config = {}
        self.client = client
        self.base_url = os.environ.get("VISION_LLM_API_URL") or config.get("base_url")
        self.provider = os.environ.get("VISION_LLM_PROVIDER") or config.get("provider", "gpt5")
        self.timeout_sec = float(config.get("timeout_sec", 30.0))

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def classify(self, image_ref: str) -> Optional[VisionPayload]:
        """
        Classify one image.

        Returns:
            Validated VisionPayload, or None on any failure.
        """
        if not self.enabled:
            logger.warning("Vision classifier URL not configured; skipping vision signal")
            return None

        url = f"{self.base_url.rstrip('/')}/classify-url"
        params = {"image_url": image_ref}
        if self.provider:
            params["provider"] = self.provider

        try:
            response = await asyncio.wait_for(
                self.client.post(
                    url,
                    params=params,
                    headers={"Accept": "application/json"},
                    timeout=self.timeout_sec,
                ),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Vision classification timed out after {self.timeout_sec:.0f}s")
            return None
        except httpx.TimeoutException as e:
            logger.warning(f"Vision classification timed out: {e}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Vision classification request failed: {e}")
            return None

        if not response.is_success:
            logger.warning(
                f"Vision classification failed: {response.status_code} {response.text[:200]}"
            )
            return None

        try:
            payload = parse_signal_payload("vision", response.json())
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Vision classification returned an unusable payload: {e}")
            return None

        logger.info(
            f"Vision provider {payload.provider or 'unknown'} returned {len(payload.matches)} matches"
        )
        return payload
