"""
Narrative Client

Writes the report narrative with an OpenAI-compatible chat-completions
endpoint. Any failure (missing key, timeout, non-2xx, empty content) is
raised as NarrativeError so the caller can fall back to the templated
narrative without losing the numeric result.
"""

import logging
import os
from typing import List, Optional

import httpx

from phenomatch.errors import NarrativeError
from phenomatch.matching.anthropometric import format_measurement_summary
from phenomatch.matching.interfaces import NarrativeProvider
from phenomatch.models import AnalysisResult

logger = logging.getLogger(__name__)

PROMPT_MATCH_COUNT = 5


def build_report_prompt(result: AnalysisResult) -> str:
    """Prompt listing the top matches plus, when present, the facial analysis and visible traits."""
    lines: List[str] = []
    for i, match in enumerate(result.matches[:PROMPT_MATCH_COUNT]):
        regions = f" - {', '.join(match.entity.regions)}" if match.entity.regions else ""
        lines.append(
            f"{i + 1}. {match.entity.name} ({round(match.fused_score * 100)}% match)"
            f"{regions} [{match.confidence.value} confidence]"
        )

    facial_analysis = ""
    if result.measurements is not None and result.facial_features is not None:
        facial_analysis = "\n" + format_measurement_summary(
            result.measurements, result.facial_features
        )

    visible_traits = ""
    if result.traits and result.traits.get("description"):
        visible_traits = f"\nVISIBLE TRAITS:\n{result.traits['description']}\n"

    return f"""You are writing a comprehensive phenotype analysis report based on AI embedding and anthropometric analysis.

COMPUTATIONAL MATCHES (from hybrid analysis):
{chr(10).join(lines)}
{facial_analysis}{visible_traits}

Write a detailed, professional 400-500 word report that:

1. Summarizes the primary phenotype match and what it reveals about facial structure
2. Explains how facial measurements support this classification, if measurements are present
3. Discusses the secondary matches and what they indicate
4. Provides historical and geographic context
5. Emphasizes this is educational facial geometry analysis
6. Includes appropriate scientific disclaimers

Use professional, scientific language. Be factual and educational."""


class NarrativeClient(NarrativeProvider):
    """
    Generate report text with a chat-completions API.

    Args:
        client: Shared httpx.AsyncClient (owned by the caller).
        config: Dictionary with optional keys:
            - base_url: API root (default https://api.openai.com/v1)
            - model: Model name (default gpt-4o-mini)
            - api_key_env: Environment variable holding the key (default OPENAI_API_KEY)
            - timeout_sec: Request timeout (default 30)
            - max_tokens: Completion limit (default 1500)
    """

    def __init__(self, client: httpx.AsyncClient, config: dict = None):
        if config is None:
            config = {}
        self.client = client
        self.base_url = (
            os.environ.get("NARRATIVE_API_URL")
            or config.get("base_url", "https://api.openai.com/v1")
        ).rstrip("/")
        self.model = config.get("model", "gpt-4o-mini")
        self.api_key_env = config.get("api_key_env", "OPENAI_API_KEY")
        self.timeout_sec = float(config.get("timeout_sec", 30.0))
        self.max_tokens = int(config.get("max_tokens", 1500))

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env)

    async def generate(self, result: AnalysisResult) -> str:
        if not result.matches:
            raise NarrativeError("Cannot write a narrative for an empty result")

        api_key = self.api_key
        if not api_key:
            raise NarrativeError(f"{self.api_key_env} not set")

        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": build_report_prompt(result)}],
            "max_tokens": self.max_tokens,
        }

        try:
            response = await self.client.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NarrativeError(f"Narrative generation failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise NarrativeError(f"Unexpected narrative response shape: {e}") from e

        if not isinstance(content, str):
            raise NarrativeError(
                f"Narrative content must be a string, got {type(content).__name__}"
            )
        if not content.strip():
            raise NarrativeError("Narrative service returned empty content")

        logger.info(f"Generated narrative ({len(content)} chars)")
        return content.strip()
