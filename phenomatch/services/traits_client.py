"""
Trait Analysis Client

Asks an OpenAI-compatible vision chat model to describe hair colour and
texture, eye colour, skin tone (Fitzpatrick 1-6), facial hair and an age
range. The result only enriches the report narrative and the API response;
it never changes a fused score.

Like the vision classifier, this client never raises: a missing key, a
timeout, a non-2xx response or a reply without a valid JSON object all
yield None.
"""

import asyncio
import json
import logging
import os
import re
from typing import Optional

import httpx
from pydantic import ValidationError

from phenomatch.matching.interfaces import TraitProvider
from phenomatch.services.payloads import TraitPayload, parse_signal_payload

logger = logging.getLogger(__name__)

JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

TRAIT_PROMPT = """Analyze this portrait photo and describe:

1. HAIR: primary color (black, dark brown, brown, light brown, blonde, red, gray, white), specific shade, texture (straight, wavy, curly, coily)
2. EYES: primary color (brown, dark brown, hazel, green, blue, gray), specific shade, pattern (uniform, central heterochromia, limbal ring, ...)
3. SKIN: Fitzpatrick type 1-6, undertone (warm, cool, neutral), short description
4. FACIAL HAIR: whether present, type and color
5. AGE: approximate range such as "25-35"

Return only a JSON object in this format:
{
  "hairColor": {"primary": "dark brown", "shade": "chocolate brown", "texture": "straight", "confidence": 0.9},
  "eyeColor": {"primary": "brown", "shade": "dark brown", "pattern": "uniform", "confidence": 0.95},
  "skinTone": {"fitzpatrick": 3, "undertone": "warm", "description": "medium with warm undertones", "confidence": 0.85},
  "facialHair": {"present": false},
  "ageEstimate": {"range": "25-35", "confidence": 0.7}
}

Be precise and objective. Use only the categories provided."""


def extract_json_object(content: str) -> Optional[dict]:
    """First-to-last brace span of a model reply, parsed; None if there is none."""
    match = JSON_OBJECT.search(content)
    if match is None:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class TraitAnalysisClient(TraitProvider):
    """
    Describe visible traits with a vision chat-completions API.

    Args:
        client: Shared httpx.AsyncClient (owned by the caller).
        config: Dictionary with optional keys:
            - base_url: API root; None disables trait analysis
            - model: Vision model name (default gpt-4o)
            - api_key_env: Environment variable holding the key (default OPENAI_API_KEY)
            - timeout_sec: Per-call deadline in seconds (default 30)
            - max_tokens: Completion limit (default 800)
    """

    def __init__(self, client: httpx.AsyncClient, config: dict = None):
        if config is None:
            config = {}
        self.client = client
        base_url = os.environ.get("TRAITS_API_URL") or config.get("base_url")
        self.base_url = base_url.rstrip("/") if base_url else None
        self.model = config.get("model", "gpt-4o")
        self.api_key_env = config.get("api_key_env", "OPENAI_API_KEY")
        self.timeout_sec = float(config.get("timeout_sec", 30.0))
        self.max_tokens = int(config.get("max_tokens", 800))

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def analyze(self, image_ref: str) -> Optional[TraitPayload]:
        if not self.enabled:
            logger.warning("Trait analysis URL not configured; skipping traits")
            return None

        api_key = os.environ.get(self.api_key_env)
        if not api_key:
            logger.warning(f"{self.api_key_env} not set; skipping trait analysis")
            return None

        body = {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": TRAIT_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_ref}},
                ],
            }],
            "max_tokens": self.max_tokens,
        }

        try:
            response = await asyncio.wait_for(
                self.client.post(
                    f"{self.base_url}/chat/completions",
                    json=body,
                    headers={"Authorization": f"Bearer {api_key}"},
                    timeout=self.timeout_sec,
                ),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Trait analysis timed out after {self.timeout_sec:.0f}s")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Trait analysis request failed: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Trait analysis failed: {response.status_code} {response.text[:200]}")
            return None

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Unexpected trait analysis response shape: {e}")
            return None
        if not isinstance(content, str):
            logger.warning("Trait analysis returned non-text content")
            return None

        data = extract_json_object(content)
        if data is None:
            logger.warning("Trait analysis reply contained no JSON object")
            return None

        try:
            payload = parse_signal_payload("traits", data)
        except (TypeError, ValidationError) as e:
            logger.warning(f"Trait analysis returned an unusable payload: {e}")
            return None

        logger.info(f"Trait analysis: {payload.describe()}")
        return payload
